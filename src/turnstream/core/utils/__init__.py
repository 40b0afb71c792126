"""Shared core utilities."""
