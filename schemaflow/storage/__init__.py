"""
Store backends for the migration engine.

Provides the abstract StoreAdapter/Transaction interface, the SQLAlchemy
async implementation and the database-backed run lock.
"""

from .adapter import StoreAdapter, Transaction
from .lock import MigrationLock
from .sqlalchemy_store import SQLAlchemyStore, SQLAlchemyTransaction, normalize_database_url

__all__ = [
    'StoreAdapter',
    'Transaction',
    'SQLAlchemyStore',
    'SQLAlchemyTransaction',
    'MigrationLock',
    'normalize_database_url',
]
