#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Migration validation for safety and compatibility checks.

Validates migration units for destructive operations, SQLite limitations,
raw SQL syntax errors, and checksum integrity. Provides warnings at
different severity levels (INFO, WARNING, ERROR).

The engine validates pending units before running any of them; an
ERROR-level finding aborts the run with ValidationFailedError.
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List

import sqlparse
from sqlparse.tokens import Comment, String

from .changes import DropTable, RawSQL, RemoveColumn
from .migration import MigrationUnit, OrderKey


class WarningLevel(Enum):
    """Severity levels for validation warnings."""
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


@dataclass
class ValidationWarning:
    """
    Warning from migration validation.

    Attributes:
        level: Severity level (INFO, WARNING, ERROR)
        message: Human-readable warning message
        order_key: Order key of the unit that triggered the warning
        name: Name of the unit that triggered the warning
        category: Warning category ('checksum', 'destructive', 'irreversible',
            'sqlite', 'syntax')

    Example:
        >>> warning = ValidationWarning(
        ...     level=WarningLevel.ERROR,
        ...     message="Unmatched parentheses: 2 open, 1 close",
        ...     order_key=3,
        ...     name="add_index",
        ...     category="syntax"
        ... )
        >>> warning
        [ERROR] Migration 3_add_index: Unmatched parentheses: 2 open, 1 close
    """
    level: WarningLevel
    message: str
    order_key: OrderKey
    name: str
    category: str

    def to_dict(self) -> dict:
        """
        Convert to dictionary for JSON serialization.

        Returns:
            Dictionary with all fields, level as string value
        """
        return {
            'level': self.level.value,
            'message': self.message,
            'order_key': self.order_key,
            'name': self.name,
            'category': self.category
        }

    def __repr__(self) -> str:
        """String representation for logging."""
        return f"[{self.level.value}] Migration {self.order_key}_{self.name}: {self.message}"


class MigrationValidator:
    """
    Validates migration units for safety and compatibility issues.

    Performs multiple validation checks:
    - Destructive operations (drop_table, remove_column, raw DROP/TRUNCATE)
    - Irreversible units (no revert section)
    - SQLite limitations in raw SQL (unsupported ALTER operations)
    - Basic raw SQL syntax (parentheses, string quotes)
    - Checksum verification (definition modified after it was applied)

    Attributes:
        db_type: Database dialect name ('sqlite', 'postgresql', etc.)

    Example:
        >>> validator = MigrationValidator(db_type='sqlite')
        >>> warnings = validator.validate_unit(unit)
        >>> errors = [w for w in warnings if w.level == WarningLevel.ERROR]
    """

    DROP_COLUMN_PATTERN = re.compile(r'\bDROP\s+COLUMN\b', re.IGNORECASE)
    DROP_TABLE_PATTERN = re.compile(r'\bDROP\s+TABLE\b', re.IGNORECASE)
    TRUNCATE_PATTERN = re.compile(r'\bTRUNCATE\b', re.IGNORECASE)
    ALTER_COLUMN_PATTERN = re.compile(r'\bALTER\s+COLUMN\b', re.IGNORECASE)
    ADD_CONSTRAINT_PATTERN = re.compile(r'\bADD\s+CONSTRAINT\b', re.IGNORECASE)

    def __init__(self, db_type: str = 'sqlite'):
        """
        Initialize validator.

        Args:
            db_type: Database dialect name ('sqlite', 'postgresql', etc.)
        """
        self.db_type = db_type.lower()

    def validate_units(self, units: Iterable[MigrationUnit]) -> List[ValidationWarning]:
        """Validate several units, returning all warnings in unit order."""
        warnings = []
        for unit in units:
            warnings.extend(self.validate_unit(unit))
        return warnings

    def validate_unit(self, unit: MigrationUnit) -> List[ValidationWarning]:
        """
        Validate one unit for safety and compatibility issues.

        Args:
            unit: MigrationUnit to validate

        Returns:
            List of ValidationWarning objects (empty if no issues)
        """
        warnings = []
        warnings.extend(self._check_destructive_operations(unit))
        if unit.irreversible:
            warnings.append(self._warning(
                unit, WarningLevel.INFO, 'irreversible',
                "Migration has no revert section and cannot be rolled back."
            ))
        if self.db_type == 'sqlite':
            warnings.extend(self._check_sqlite_limitations(unit))
        warnings.extend(self._check_syntax(unit))
        return warnings

    def verify_checksum(self, unit: MigrationUnit, stored_checksum: str) -> List[ValidationWarning]:
        """
        Verify a unit's checksum matches the checksum recorded when applied.

        Returns:
            List with ERROR warning if mismatch, empty list if match
        """
        if unit.checksum == stored_checksum:
            return []
        return [self._warning(
            unit, WarningLevel.ERROR, 'checksum',
            f"Migration definition has been modified (checksum mismatch). "
            f"Expected: {stored_checksum[:8]}..., Got: {unit.checksum[:8]}..."
        )]

    def _warning(self, unit, level, category, message) -> ValidationWarning:
        return ValidationWarning(
            level=level,
            message=message,
            order_key=unit.order_key,
            name=unit.name,
            category=category,
        )

    @staticmethod
    def _raw_sql(changes) -> str:
        return '\n'.join(c.sql for c in changes or () if isinstance(c, RawSQL))

    def _check_destructive_operations(self, unit: MigrationUnit) -> List[ValidationWarning]:
        """
        Check apply descriptors for operations that destroy data.

        All generate WARNING level (not ERROR) so the run can proceed.
        """
        warnings = []
        sql = self._raw_sql(unit.apply)

        dropped_tables = [c.table for c in unit.apply if isinstance(c, DropTable)]
        if dropped_tables or self.DROP_TABLE_PATTERN.search(sql):
            target = f" ({', '.join(dropped_tables)})" if dropped_tables else ''
            warnings.append(self._warning(
                unit, WarningLevel.WARNING, 'destructive',
                f"Migration drops table{target} (all table data will be deleted). "
                f"Ensure data is backed up or no longer needed."
            ))

        removed = [f"{c.table}.{c.column}" for c in unit.apply if isinstance(c, RemoveColumn)]
        if removed or self.DROP_COLUMN_PATTERN.search(sql):
            target = f" ({', '.join(removed)})" if removed else ''
            warnings.append(self._warning(
                unit, WarningLevel.WARNING, 'destructive',
                f"Migration drops column{target} (potential data loss). "
                f"Ensure column data is no longer needed or backed up."
            ))

        if self.TRUNCATE_PATTERN.search(sql):
            warnings.append(self._warning(
                unit, WarningLevel.WARNING, 'destructive',
                "Migration truncates table (all rows will be deleted). "
                "Ensure data is backed up or no longer needed."
            ))

        return warnings

    def _check_sqlite_limitations(self, unit: MigrationUnit) -> List[ValidationWarning]:
        """
        Check raw SQL for ALTER operations SQLite does not support.

        These generate ERROR warnings that prevent migration execution.
        """
        warnings = []
        sql = self._raw_sql(unit.apply) + '\n' + self._raw_sql(unit.revert)

        if self.ALTER_COLUMN_PATTERN.search(sql):
            warnings.append(self._warning(
                unit, WarningLevel.ERROR, 'sqlite',
                "SQLite does not support ALTER COLUMN directly. "
                "Use table recreation pattern with modified schema."
            ))

        if self.ADD_CONSTRAINT_PATTERN.search(sql):
            warnings.append(self._warning(
                unit, WarningLevel.ERROR, 'sqlite',
                "SQLite does not support ADD CONSTRAINT directly. "
                "Define constraints in initial CREATE TABLE or use table recreation."
            ))

        return warnings

    def _check_syntax(self, unit: MigrationUnit) -> List[ValidationWarning]:
        """
        Check raw SQL in both sections for basic syntax errors.

        Simple heuristics (unmatched parentheses, unterminated string)
        that catch common mistakes before execution. Counts run over
        sqlparse tokens, so string literals, quoted identifiers and
        comments are skipped.
        """
        warnings = []
        for section, changes in (('apply', unit.apply), ('revert', unit.revert)):
            sql = self._raw_sql(changes)
            if not sql:
                continue

            open_parens = close_parens = single_quotes = 0
            for statement in sqlparse.parse(sql):
                for token in statement.flatten():
                    if token.ttype in String or token.ttype in Comment:
                        continue
                    open_parens += token.value.count('(')
                    close_parens += token.value.count(')')
                    # A quote outside any String token never found its closing quote
                    single_quotes += token.value.count("'")

            if open_parens != close_parens:
                warnings.append(self._warning(
                    unit, WarningLevel.ERROR, 'syntax',
                    f"Unmatched parentheses in {section} section: "
                    f"{open_parens} open, {close_parens} close"
                ))

            if single_quotes:
                warnings.append(self._warning(
                    unit, WarningLevel.ERROR, 'syntax',
                    f"Unterminated string in {section} section "
                    f"(odd number of single quotes: {single_quotes})"
                ))

        return warnings
