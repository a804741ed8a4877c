"""
Global pytest configuration and fixtures for schemaflow tests

Provides:
- File-backed SQLite store per test
- Temporary migrations directory and file writer
- Schema inspection helpers
"""

import textwrap

import pytest

from schemaflow.migrations import DirectorySource, MigrationEngine, MigrationRegistry
from schemaflow.storage import MigrationLock, SQLAlchemyStore


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom settings"""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")


# ============================================================================
# Store Fixtures
# ============================================================================

@pytest.fixture
def db_url(tmp_path):
    """SQLite database file URL inside the test's temp directory."""
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest.fixture
async def store(db_url):
    """Connected store; closed after the test."""
    store = SQLAlchemyStore(db_url)
    await store.connect()
    yield store
    await store.close()


class SchemaInspector:
    """Reads the live SQLite schema through a store."""

    def __init__(self, store):
        self.store = store

    async def tables(self):
        rows = await self.store.query(
            "SELECT name FROM sqlite_master WHERE type = 'table' "
            "AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        return [row['name'] for row in rows]

    async def columns(self, table):
        rows = await self.store.query(f"PRAGMA table_info({table})")
        return [row['name'] for row in rows]

    async def indexes(self, table):
        rows = await self.store.query(f"PRAGMA index_list({table})")
        return [row['name'] for row in rows]


@pytest.fixture
def schema(store):
    """Schema inspector for the test store."""
    return SchemaInspector(store)


# ============================================================================
# Migration Fixtures
# ============================================================================

@pytest.fixture
def migrations_dir(tmp_path):
    """Empty migrations directory."""
    path = tmp_path / "migrations"
    path.mkdir()
    return path


@pytest.fixture
def write_migration(migrations_dir):
    """Write a migration file; content is dedented."""
    def _write(filename, content):
        path = migrations_dir / filename
        path.write_text(textwrap.dedent(content).lstrip())
        return path
    return _write


@pytest.fixture
def registry(migrations_dir):
    return MigrationRegistry(DirectorySource(migrations_dir))


@pytest.fixture
def engine(store, registry):
    """Engine over the test store and migrations directory (fail-fast lock)."""
    return MigrationEngine(store, registry, lock=MigrationLock(store, poll_interval=0.05))
