"""
schemaflow: ordered, transactional database schema migrations.

Example:
    from schemaflow import DirectorySource, MigrationEngine, MigrationRegistry, SQLAlchemyStore

    store = SQLAlchemyStore('sqlite+aiosqlite:///app.db')
    engine = MigrationEngine(store, MigrationRegistry(DirectorySource('db/migrations')))
    await engine.migrate()
"""

from .errors import MigrationError
from .migrations import (
    DirectorySource,
    MigrationEngine,
    MigrationLedger,
    MigrationRegistry,
    MigrationUnit,
    StaticSource,
)
from .storage import MigrationLock, SQLAlchemyStore

__version__ = '0.1.0'

__all__ = [
    'MigrationError',
    'DirectorySource',
    'MigrationEngine',
    'MigrationLedger',
    'MigrationRegistry',
    'MigrationUnit',
    'StaticSource',
    'MigrationLock',
    'SQLAlchemyStore',
]
