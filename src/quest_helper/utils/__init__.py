"""Utility modules for quest helper."""
