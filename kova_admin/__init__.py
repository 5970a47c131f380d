"""Kova Admin CLI (kova-admin)."""
