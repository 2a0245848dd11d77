"""
Database module with abstraction layer.

This module provides:
- DatabaseAdapter interface: Abstract base class for database implementations
- SQLiteAdapter: SQLite-specific implementation (default)
- Database: engine and session lifecycle for one connection string

To add a new database backend:
1. Create a new adapter class inheriting from DatabaseAdapter
2. Implement all abstract methods (including the increment upsert)
3. Update get_database_adapter() in sqlite_adapter.py to return the new adapter
"""

from app.db.interface import DatabaseAdapter
from app.db.session import Database

__all__ = [
    "DatabaseAdapter",
    "Database",
]
