"""
Database package initialization.

The package follows a modular structure:
- base: declarative base, mixins and append-only guards
- connection: engine factory, unit of work and conflict retry
- models: SQLAlchemy ORM models for all entities
"""

__all__ = []
