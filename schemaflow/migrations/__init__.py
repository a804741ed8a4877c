"""
Migration discovery, bookkeeping and execution.

This package provides:
- Change descriptors (create_table, add_column, raw_sql, ...)
- MigrationUnit: One ordered, checksummed schema change
- MigrationRegistry: Discovery and ordering of units
- MigrationLedger: Persisted record of applied units
- MigrationValidator: Safety checks for pending units
- MigrationEngine: Apply, roll back, status and drift repair
"""

from .changes import (
    AddColumn,
    AddIndex,
    ChangeDescriptor,
    ChangeKind,
    ColumnSpec,
    CreateTable,
    DropTable,
    RawSQL,
    RemoveColumn,
    RemoveIndex,
    RenameColumn,
    RenameTable,
    change_from_dict,
    invert_changes,
)
from .engine import MigrationEngine
from .ledger import MigrationLedger
from .migration import LedgerRecord, MigrationUnit, UnitStatus
from .registry import DirectorySource, MigrationRegistry, StaticSource
from .validator import MigrationValidator, ValidationWarning, WarningLevel

__all__ = [
    'AddColumn',
    'AddIndex',
    'ChangeDescriptor',
    'ChangeKind',
    'ColumnSpec',
    'CreateTable',
    'DropTable',
    'RawSQL',
    'RemoveColumn',
    'RemoveIndex',
    'RenameColumn',
    'RenameTable',
    'change_from_dict',
    'invert_changes',
    'MigrationEngine',
    'MigrationLedger',
    'LedgerRecord',
    'MigrationUnit',
    'UnitStatus',
    'DirectorySource',
    'MigrationRegistry',
    'StaticSource',
    'MigrationValidator',
    'ValidationWarning',
    'WarningLevel',
]
