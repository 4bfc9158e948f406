"""Enrolled payees: JSON-file store and REST routes."""
