"""Pydantic schemas for requests, read models, audit snapshots and results."""
