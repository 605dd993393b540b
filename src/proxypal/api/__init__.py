"""Shared API layer helpers (structured errors)."""
