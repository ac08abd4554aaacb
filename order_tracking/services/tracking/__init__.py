"""
Order tracking package initialization.

This package holds the public facade together with the staff action
handlers and the repository for driver, processing and issue records.
"""
