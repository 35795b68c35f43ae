"""Shared helpers for request parsing and validation."""
