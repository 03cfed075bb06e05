"""Enums and pydantic schemas shared across services."""
