"""Kova command-line client (kova)."""
