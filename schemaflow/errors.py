"""
Migration error types.

This module defines the exception hierarchy for migration discovery,
ledger bookkeeping, locking and execution. Every error carries a stable
code (used in logs and CLI output) and a process exit code so tooling
can tell failure kinds apart without parsing messages.
"""

from typing import Any, Optional


class MigrationError(Exception):
    """
    Base class for migration errors.

    All migration errors include a code, message, and optional unit,
    underlying cause and details dict.

    Attributes:
        code: Stable error code (e.g., "MIGRATION_FAILED")
        message: Human-readable error message
        unit: Offending MigrationUnit, if any
        cause: Underlying exception, if any
        details: Additional structured context
    """

    code = "MIGRATION_ERROR"
    exit_code = 1

    def __init__(
        self,
        message: str,
        unit: Any = None,
        cause: Optional[BaseException] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.unit = unit
        self.cause = cause
        self.details = details or {}
        super().__init__(f"[{self.code}] {message}")

    @property
    def unit_label(self) -> Optional[str]:
        """Key and name of the offending unit (e.g. '2_add_food')."""
        if self.unit is None:
            return None
        return self.unit.label

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to dictionary for JSON output.

        Returns:
            Dict with code, message, unit and cause fields
        """
        return {
            "code": self.code,
            "message": self.message,
            "unit": self.unit_label,
            "cause": str(self.cause) if self.cause is not None else None,
            "details": self.details,
        }


class ConfigurationError(MigrationError):
    """Configuration file or option is invalid."""

    code = "CONFIG_INVALID"
    exit_code = 2


class DuplicateKeyError(MigrationError):
    """
    Two migration units share an order key.

    Raised by the registry during discovery, before the ledger is read.
    """

    code = "DUPLICATE_KEY"
    exit_code = 10


class MalformedUnitError(MigrationError):
    """
    Migration definition cannot be parsed.

    Raised when:
    - UP/DOWN sections are missing or empty
    - A change descriptor has an unknown kind or missing fields
    - Identifiers or column types are invalid
    - Order keys of different types are mixed in one registry
    """

    code = "MALFORMED_UNIT"
    exit_code = 11


class DuplicateRecordError(MigrationError):
    """Ledger already holds a record for the order key."""

    code = "DUPLICATE_RECORD"
    exit_code = 12


class NotFoundError(MigrationError):
    """Ledger holds no record for the order key."""

    code = "NOT_FOUND"
    exit_code = 13


class MissingDefinitionError(MigrationError):
    """
    Ledger records a unit that no longer exists in the definition source.

    The unit was removed while still recorded as applied, so it cannot
    be rolled back.
    """

    code = "MISSING_DEFINITION"
    exit_code = 14


class IrreversibleMigrationError(MigrationError):
    """Rollback requested for a unit without a revert action."""

    code = "IRREVERSIBLE"
    exit_code = 15


class _UnitRunError(MigrationError):
    """Unit failed mid-run; carries the keys completed before it."""

    def __init__(
        self,
        message: str,
        unit: Any = None,
        cause: Optional[BaseException] = None,
        completed: Optional[list] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.completed = list(completed or [])
        super().__init__(message, unit=unit, cause=cause, details=details)


class MigrationFailedError(_UnitRunError):
    """
    Applying a unit failed.

    The unit's transaction was rolled back; units in ``completed`` were
    committed earlier in the same run and remain applied.
    """

    code = "MIGRATION_FAILED"
    exit_code = 16


class RollbackFailedError(_UnitRunError):
    """Reverting a unit failed; its transaction was rolled back."""

    code = "ROLLBACK_FAILED"
    exit_code = 17


class RunCancelledError(_UnitRunError):
    """Run stopped between units by a cancel event or deadline."""

    code = "RUN_CANCELLED"
    exit_code = 21


class LockContentionError(MigrationError):
    """
    Migration lock is held by another process.

    Raised when:
    - Another runner holds an unexpired lease and the wait timed out
    - Our lease expired and was taken over mid-run
    """

    code = "LOCK_CONTENTION"
    exit_code = 18

    def __init__(
        self,
        message: str,
        holder: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.holder = holder
        super().__init__(message, details=details)


class AdapterError(MigrationError):
    """
    Store backend failure.

    Wraps driver and SQLAlchemy errors raised while executing statements,
    opening connections or committing transactions.
    """

    code = "ADAPTER_ERROR"
    exit_code = 19


class AdapterIntegrityError(AdapterError):
    """Backend rejected a write on a constraint (unique, not null, ...)."""

    code = "ADAPTER_INTEGRITY"


class ValidationFailedError(MigrationError):
    """Pending units failed pre-flight validation; nothing was applied."""

    code = "VALIDATION_FAILED"
    exit_code = 20

    def __init__(self, message: str, warnings: Optional[list] = None) -> None:
        self.warnings = list(warnings or [])
        super().__init__(
            message,
            details={"errors": [w.to_dict() for w in self.warnings]},
        )
