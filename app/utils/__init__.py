"""Shared helpers: errors, crypto, request parsing."""
