"""Domain services: status coordination, payments, timeline and staff actions."""
