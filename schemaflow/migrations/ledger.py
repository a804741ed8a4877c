"""
Migration ledger: the persisted record of applied units.

One row per applied unit in the ledger table (schema_migrations by default).
Presence of a row for key K means unit K's apply section committed in full.

Writes (record/erase) take the caller's Transaction so the ledger change
commits atomically with the schema change it describes.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Set

from sqlalchemy import Column, DateTime, MetaData, String, Table, delete, insert, select
from sqlalchemy.schema import CreateTable

from ..errors import AdapterIntegrityError, DuplicateRecordError, NotFoundError
from ..storage.adapter import StoreAdapter, Transaction
from .migration import LedgerRecord, MigrationUnit


def ledger_sort_key(order_key: str):
    """Sort key for ledger strings; numeric keys compare as numbers ("2" before "10")."""
    if order_key.isascii() and order_key.isdigit():
        return (0, int(order_key), order_key)
    return (1, 0, order_key)


class MigrationLedger:
    """
    Tracks applied migration units in the store.

    Example:
        ledger = MigrationLedger(store)
        await ledger.ensure_initialized()

        async with await store.begin() as tx:
            await tx.execute('CREATE TABLE artists (id INTEGER)')
            await ledger.record(tx, unit)

        await ledger.applied_keys()
        # {'1'}
    """

    DEFAULT_TABLE = 'schema_migrations'

    def __init__(self, store: StoreAdapter, table_name: str = DEFAULT_TABLE):
        """
        Args:
            store: Store adapter
            table_name: Ledger table name
        """
        self.store = store
        self.logger = logging.getLogger(__name__)
        self.table = Table(
            table_name,
            MetaData(),
            Column('order_key', String(255), primary_key=True),
            Column('name', String(255), nullable=False),
            Column('checksum', String(64), nullable=False),
            Column('applied_at', DateTime(timezone=True), nullable=False),
        )

    @property
    def table_name(self) -> str:
        return self.table.name

    async def ensure_initialized(self) -> None:
        """
        Ensure the ledger table exists.

        Creates the table if it doesn't exist, in its own transaction.
        Safe to call multiple times (uses CREATE TABLE IF NOT EXISTS).
        """
        await self.store.execute(CreateTable(self.table, if_not_exists=True))
        self.logger.debug("Ensured %s table exists", self.table_name)

    async def _query(self, statement, tx: Optional[Transaction]):
        if tx is not None:
            return await tx.query(statement)
        return await self.store.query(statement)

    async def applied_keys(self, tx: Optional[Transaction] = None) -> Set[str]:
        """Return ledger keys of all applied units."""
        rows = await self._query(select(self.table.c.order_key), tx)
        return {row['order_key'] for row in rows}

    async def records(self, tx: Optional[Transaction] = None) -> List[LedgerRecord]:
        """Return all ledger records ordered by order key."""
        rows = await self._query(select(self.table), tx)
        records = [
            LedgerRecord(
                order_key=row['order_key'],
                name=row['name'],
                checksum=row['checksum'],
                applied_at=row['applied_at'],
            )
            for row in rows
        ]
        records.sort(key=lambda r: ledger_sort_key(r.order_key))
        return records

    async def record(self, tx: Transaction, unit: MigrationUnit) -> None:
        """
        Record a unit as applied, inside the caller's transaction.

        Raises:
            DuplicateRecordError: If the unit is already recorded
        """
        existing = await tx.query(
            select(self.table.c.order_key).where(self.table.c.order_key == unit.ledger_key)
        )
        if existing:
            raise DuplicateRecordError(
                f"Ledger already records migration {unit.label}", unit=unit
            )
        try:
            await tx.execute(
                insert(self.table).values(
                    order_key=unit.ledger_key,
                    name=unit.name,
                    checksum=unit.checksum,
                    applied_at=datetime.now(timezone.utc),
                )
            )
        except AdapterIntegrityError as e:
            raise DuplicateRecordError(
                f"Ledger already records migration {unit.label}", unit=unit, cause=e
            ) from e

    async def erase(self, tx: Transaction, order_key: str, unit: Optional[MigrationUnit] = None) -> None:
        """
        Remove a unit's record, inside the caller's transaction.

        Raises:
            NotFoundError: If no record exists for the key
        """
        deleted = await tx.execute(
            delete(self.table).where(self.table.c.order_key == str(order_key))
        )
        if deleted == 0:
            raise NotFoundError(
                f"Ledger has no record for migration {order_key}", unit=unit
            )
