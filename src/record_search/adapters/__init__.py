"""Adapters for the record database and the record store."""
