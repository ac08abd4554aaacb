"""Read-only audit timeline of an order."""
