"""Post-commit customer notifications."""
