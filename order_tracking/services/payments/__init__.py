"""Payment ledger, payment repository and wallet collaborator."""
