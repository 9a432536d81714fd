"""Compliance background job definitions."""
