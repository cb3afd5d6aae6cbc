"""
Storage components for Reddit Archiver

This package contains the SQLite archive store and its schema migrations.
"""

from .migrations import MIGRATIONS, Migration, apply_migrations
from .store import Store, open_store

__all__ = ['MIGRATIONS', 'Migration', 'apply_migrations', 'Store', 'open_store']
