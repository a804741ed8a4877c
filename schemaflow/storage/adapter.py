"""
Abstract store adapter for migration execution.

This module defines the StoreAdapter and Transaction abstract base classes
that the migration engine talks to. They provide a narrow, database-agnostic
interface: execute a statement, query rows, and run work inside a
transaction.

Statements are either SQL strings (executed verbatim) or SQLAlchemy
executables (Core insert/select/delete constructs, DDL elements).
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from sqlalchemy.engine import Dialect


class Transaction(ABC):
    """
    One open transaction on the store.

    All statements of one engine-initiated unit of work must be issued
    through the same Transaction handle. Usable as an async context
    manager: commits on clean exit, rolls back on exception (including
    task cancellation).

    Example:
        >>> async with await store.begin() as tx:
        ...     await tx.execute('CREATE TABLE artists (id INTEGER)')
        ...     await tx.execute(insert(ledger).values(order_key='1', ...))
    """

    @property
    @abstractmethod
    def is_active(self) -> bool:
        """True until commit() or rollback() has been called."""

    @abstractmethod
    async def execute(self, statement: Any, params: Optional[Dict[str, Any]] = None) -> int:
        """
        Execute a statement inside the transaction.

        Returns:
            Number of affected rows (-1 when the backend does not report it)

        Raises:
            AdapterIntegrityError: If a constraint is violated
            AdapterError: On any other backend failure
        """

    @abstractmethod
    async def query(self, statement: Any, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Run a query inside the transaction.

        Returns:
            List of row dicts keyed by column name
        """

    @abstractmethod
    async def commit(self) -> None:
        """Commit and release the underlying connection."""

    @abstractmethod
    async def rollback(self) -> None:
        """Roll back and release the underlying connection."""

    async def __aenter__(self) -> 'Transaction':
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if not self.is_active:
            return
        if exc_type is None:
            await self.commit()
        else:
            await self.rollback()


class StoreAdapter(ABC):
    """
    Abstract interface to the persistent store.

    This interface abstracts the backend so the engine, ledger and lock
    work against SQLite or PostgreSQL alike. All methods are async.

    Attributes:
        logger: Logger instance for store events
        is_connected: Store connection status
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        """
        Initialize store adapter.

        Args:
            logger: Optional logger instance. If None, creates default logger.
        """
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        self._is_connected = False

    @abstractmethod
    async def connect(self) -> None:
        """
        Open the store and verify the connection.

        Raises:
            AdapterError: If the connection fails
        """

    @abstractmethod
    async def close(self) -> None:
        """
        Close the store and release pooled connections.

        Safe to call multiple times.
        """

    @property
    def is_connected(self) -> bool:
        """
        Check if store is connected.

        Returns:
            True if connected and ready for operations, False otherwise
        """
        return self._is_connected

    @property
    @abstractmethod
    def dialect(self) -> Dialect:
        """SQLAlchemy dialect used to render change descriptors."""

    @abstractmethod
    async def execute(self, statement: Any, params: Optional[Dict[str, Any]] = None) -> int:
        """
        Execute a single statement in its own transaction.

        Returns:
            Number of affected rows
        """

    @abstractmethod
    async def query(self, statement: Any, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Run a query outside any caller transaction.

        Returns:
            List of row dicts keyed by column name
        """

    @abstractmethod
    async def begin(self) -> Transaction:
        """
        Open a new transaction.

        Returns:
            Transaction handle; caller must commit or roll back

        Raises:
            AdapterError: If a connection cannot be acquired
        """
