"""
Kova Persistence module.

This module contains the database implementation of the project and
account stores. Currently supports SQLite, but can be extended to
PostgreSQL, MySQL, etc.

The persistence layer depends on kova_common for domain models and
interfaces, and is used by kova_server and kova_admin.
"""

from .sqlite_repository import SQLiteStore

__all__ = ["SQLiteStore"]
