"""Helpers for the library catalog CLI."""
