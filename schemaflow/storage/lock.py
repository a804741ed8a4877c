"""
Lease-based advisory lock for migration runs.

Only one runner may migrate a store at a time. The lock is a single row
in a lock table holding the owner and a lease expiry; a row whose lease
has expired (crashed runner) is taken over by the next runner.

Usage:
    lock = MigrationLock(store, lease_seconds=60, wait_timeout=30)
    await lock.ensure_initialized()
    async with lock.hold():
        ...                      # migrate
        await lock.refresh()     # between units

While held, a background heartbeat also refreshes the lease every
``heartbeat_interval`` seconds so a single long-running unit does not
outlive it.
"""

import asyncio
import logging
import os
import socket
import time
import uuid
from contextlib import asynccontextmanager, suppress
from typing import Optional

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, delete, insert, select, update
from sqlalchemy.schema import CreateTable

from ..errors import AdapterError, AdapterIntegrityError, LockContentionError
from .adapter import StoreAdapter


class MigrationLock:
    """
    Advisory lock stored in the database.

    Attributes:
        owner: Identifier of this runner (host:pid:random)
        lease_seconds: Lease length; refreshed between units and by the heartbeat
        heartbeat_interval: Seconds between background lease refreshes while
            held (default: a third of the lease)
        wait_timeout: Seconds to wait for a busy lock (0 = fail fast)
        poll_interval: Seconds between acquisition attempts while waiting
    """

    LOCK_ID = 1

    # Driver messages meaning "another connection is writing, try again"
    BUSY_MESSAGES = ('database is locked', 'database table is locked')

    def __init__(
        self,
        store: StoreAdapter,
        table_name: str = 'schema_migrations_lock',
        lease_seconds: float = 60.0,
        wait_timeout: float = 0.0,
        poll_interval: float = 0.5,
        owner: Optional[str] = None,
        heartbeat_interval: Optional[float] = None,
    ):
        if lease_seconds <= 0:
            raise ValueError(f"lease_seconds must be > 0, got {lease_seconds}")
        if wait_timeout < 0:
            raise ValueError(f"wait_timeout must be >= 0, got {wait_timeout}")
        if poll_interval <= 0:
            raise ValueError(f"poll_interval must be > 0, got {poll_interval}")
        if heartbeat_interval is None:
            heartbeat_interval = lease_seconds / 3
        if heartbeat_interval <= 0:
            raise ValueError(f"heartbeat_interval must be > 0, got {heartbeat_interval}")

        self.store = store
        self.lease_seconds = lease_seconds
        self.wait_timeout = wait_timeout
        self.poll_interval = poll_interval
        self.heartbeat_interval = heartbeat_interval
        self.owner = owner or f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"
        self.logger = logging.getLogger(__name__)
        self._held = False

        self.table = Table(
            table_name,
            MetaData(),
            Column('lock_id', Integer, primary_key=True, autoincrement=False),
            Column('owner', String(255), nullable=False),
            Column('acquired_at', Float, nullable=False),
            Column('expires_at', Float, nullable=False),
        )

    @property
    def is_held(self) -> bool:
        return self._held

    async def ensure_initialized(self) -> None:
        """Create the lock table if it does not exist. Safe to call repeatedly."""
        await self.store.execute(CreateTable(self.table, if_not_exists=True))

    async def acquire(self) -> None:
        """
        Acquire the lock, waiting up to ``wait_timeout`` seconds.

        Raises:
            LockContentionError: If another runner holds an unexpired lease
        """
        deadline = time.monotonic() + self.wait_timeout
        while True:
            holder = await self._try_acquire()
            if holder is None:
                self._held = True
                self.logger.info('Acquired migration lock (%s)', self.owner)
                return

            if time.monotonic() >= deadline:
                raise LockContentionError(
                    f"Migration already in progress (lock held by {holder})",
                    holder=holder,
                    details={'wait_timeout': self.wait_timeout},
                )

            self.logger.debug('Migration lock busy (%s), retrying', holder)
            await asyncio.sleep(self.poll_interval)

    async def _try_acquire(self) -> Optional[str]:
        """Returns None on success, otherwise the current holder."""
        now = time.time()
        lock = self.table
        try:
            async with await self.store.begin() as tx:
                # Take over a lease abandoned by a crashed runner
                await tx.execute(
                    delete(lock).where(lock.c.lock_id == self.LOCK_ID, lock.c.expires_at < now)
                )
                await tx.execute(
                    insert(lock).values(
                        lock_id=self.LOCK_ID,
                        owner=self.owner,
                        acquired_at=now,
                        expires_at=now + self.lease_seconds,
                    )
                )
            return None
        except AdapterIntegrityError:
            rows = await self.store.query(select(lock.c.owner).where(lock.c.lock_id == self.LOCK_ID))
            return rows[0]['owner'] if rows else 'unknown'
        except AdapterError as e:
            if not self._is_busy(e):
                raise
            return 'unknown (store busy)'

    def _is_busy(self, error: AdapterError) -> bool:
        message = str(error.cause or error).lower()
        return any(text in message for text in self.BUSY_MESSAGES)

    async def refresh(self) -> None:
        """
        Extend the lease.

        Raises:
            LockContentionError: If the lease expired and was taken over
        """
        now = time.time()
        lock = self.table
        updated = await self.store.execute(
            update(lock)
            .where(lock.c.lock_id == self.LOCK_ID, lock.c.owner == self.owner)
            .values(expires_at=now + self.lease_seconds)
        )
        if updated == 0:
            self._held = False
            raise LockContentionError(
                f"Migration lease lost by {self.owner} (expired and taken over)",
                holder=None,
            )

    async def release(self) -> None:
        """Release the lock if we hold it."""
        if not self._held:
            return
        lock = self.table
        self._held = False
        await self.store.execute(
            delete(lock).where(lock.c.lock_id == self.LOCK_ID, lock.c.owner == self.owner)
        )
        self.logger.info('Released migration lock (%s)', self.owner)

    async def _heartbeat(self) -> None:
        while self._held:
            await asyncio.sleep(self.heartbeat_interval)
            if not self._held:
                return
            try:
                await self.refresh()
            except LockContentionError as e:
                # Next refresh() between units raises too and stops the run
                self.logger.error('%s', e)
                return
            except AdapterError as e:
                self.logger.warning('Migration lease heartbeat failed, will retry: %s', e)

    @asynccontextmanager
    async def hold(self):
        """Hold the lock for the duration of the block, heartbeating the lease."""
        await self.acquire()
        heartbeat = asyncio.create_task(self._heartbeat())
        try:
            yield self
        finally:
            heartbeat.cancel()
            with suppress(asyncio.CancelledError):
                await heartbeat
            await self.release()
