"""
Order lifecycle package initialization.

Status enums and transition tables, the transition validator, the order
repository and the status coordinator live here.
"""
