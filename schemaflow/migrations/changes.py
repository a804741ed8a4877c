#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Declarative change descriptors.

Each descriptor describes one schema mutation and knows how to:
- render itself as DDL for a SQLAlchemy dialect
- produce its structural inverse (or None when information is lost)
- round-trip through plain data for YAML/JSON definitions

Usage:
    from schemaflow.migrations.changes import AddColumn, ColumnSpec

    change = AddColumn('artists', ColumnSpec('favorite_food', 'string'))
    change.render(store.dialect)
    # ['ALTER TABLE artists ADD COLUMN favorite_food VARCHAR(255)']
    change.invert()
    # RemoveColumn(table='artists', column='favorite_food')
"""

import re
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar, Optional

import sqlparse
from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    LargeBinary,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    text,
)
from sqlalchemy.engine import Dialect
from sqlalchemy.schema import (
    CreateColumn,
    CreateIndex,
    CreateTable as CreateTableDDL,
    DropIndex,
    DropTable as DropTableDDL,
)

from ..errors import MalformedUnitError


IDENTIFIER_PATTERN = re.compile(r'^[A-Za-z_][A-Za-z0-9_]{0,62}$')

# Map definition types to SQLAlchemy types
COLUMN_TYPES = {
    'integer': Integer,
    'bigint': BigInteger,
    'string': String,
    'text': Text,
    'float': Float,
    'numeric': Numeric,
    'boolean': Boolean,
    'date': Date,
    'datetime': DateTime,
    'json': JSON,
    'binary': LargeBinary,
}


class ChangeKind(Enum):
    """Kinds of schema mutation."""
    CREATE_TABLE = "create_table"
    DROP_TABLE = "drop_table"
    RENAME_TABLE = "rename_table"
    ADD_COLUMN = "add_column"
    REMOVE_COLUMN = "remove_column"
    RENAME_COLUMN = "rename_column"
    ADD_INDEX = "add_index"
    REMOVE_INDEX = "remove_index"
    RAW_SQL = "raw_sql"


def _check_identifier(value: Any, what: str) -> None:
    if not isinstance(value, str) or not IDENTIFIER_PATTERN.match(value):
        raise MalformedUnitError(
            f"Invalid {what} '{value}'. Must start with a letter or underscore, "
            f"contain only letters, digits, underscores, max 63 chars"
        )


def _check_names(value: Any, what: str) -> tuple:
    if not isinstance(value, (list, tuple)):
        raise MalformedUnitError(f"{what} must be a list, got {value!r}")
    return tuple(value)


def _quote(dialect: Dialect, name: str) -> str:
    return dialect.identifier_preparer.quote(name)


def _compile(element: Any, dialect: Dialect) -> str:
    return str(element.compile(dialect=dialect)).strip()


def split_statements(sql: str) -> list[str]:
    """Split SQL into individual statements.

    Comment-only fragments are dropped and trailing semicolons removed,
    since SQLite executes one statement per call.

    Args:
        sql: SQL string with one or more statements

    Returns:
        List of statements in source order
    """
    statements = []
    for chunk in sqlparse.split(sql):
        stmt = sqlparse.format(chunk, strip_comments=True).strip()
        stmt = stmt.rstrip(';').strip()
        if stmt:
            statements.append(stmt)
    return statements


@dataclass(frozen=True)
class ColumnSpec:
    """
    Column definition used by create_table and add_column.

    Attributes:
        name: Column name
        type: Definition type (see COLUMN_TYPES)
        nullable: Whether NULL is allowed
        primary_key: Whether column is part of the primary key
        default: Literal server default (str, int, float or bool)
        default_sql: Raw SQL server default (e.g. 'CURRENT_TIMESTAMP')
        length: Length for string columns (default 255)
    """
    name: str
    type: str
    nullable: bool = True
    primary_key: bool = False
    default: Any = None
    default_sql: Optional[str] = None
    length: Optional[int] = None

    def __post_init__(self):
        _check_identifier(self.name, 'column name')
        if not isinstance(self.type, str) or self.type not in COLUMN_TYPES:
            raise MalformedUnitError(
                f"Column '{self.name}' has invalid type '{self.type}'. "
                f"Valid types: {', '.join(COLUMN_TYPES)}"
            )
        if self.length is not None and (
                isinstance(self.length, bool) or not isinstance(self.length, int)):
            raise MalformedUnitError(f"Column '{self.name}' has invalid length {self.length!r}")
        if self.default is not None and self.default_sql is not None:
            raise MalformedUnitError(
                f"Column '{self.name}' sets both 'default' and 'default_sql'"
            )

    @classmethod
    def from_dict(cls, data: Any) -> 'ColumnSpec':
        if not isinstance(data, dict):
            raise MalformedUnitError(f"Column definition must be a mapping, got {data!r}")
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise MalformedUnitError(
                f"Unknown column attribute(s): {', '.join(sorted(unknown))}"
            )
        if 'name' not in data or 'type' not in data:
            raise MalformedUnitError(f"Column definition needs 'name' and 'type': {data!r}")
        return cls(**data)

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    def to_column(self) -> Column:
        """Build the SQLAlchemy Column for this spec."""
        type_cls = COLUMN_TYPES[self.type]
        if self.type == 'string':
            col_type = type_cls(self.length or 255)
        elif self.type == 'datetime':
            col_type = type_cls(timezone=True)
        else:
            col_type = type_cls()

        server_default = None
        if self.default_sql is not None:
            server_default = text(self.default_sql)
        elif isinstance(self.default, bool):
            server_default = text('TRUE' if self.default else 'FALSE')
        elif isinstance(self.default, (int, float)):
            server_default = text(repr(self.default))
        elif self.default is not None:
            server_default = str(self.default)

        return Column(
            self.name,
            col_type,
            primary_key=self.primary_key,
            nullable=self.nullable and not self.primary_key,
            server_default=server_default,
        )


@dataclass(frozen=True)
class ChangeDescriptor:
    """
    Base class for one schema mutation.

    Subclasses set ``kind`` and implement ``render``; invertible kinds
    override ``invert``.
    """

    kind: ClassVar[ChangeKind]

    def render(self, dialect: Dialect) -> list[str]:
        raise NotImplementedError

    def invert(self) -> Optional['ChangeDescriptor']:
        """Return the structural inverse, or None if information is lost."""
        return None

    @property
    def invertible(self) -> bool:
        return self.invert() is not None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {'kind': self.kind.value}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, ColumnSpec):
                value = value.to_dict()
            elif isinstance(value, tuple):
                value = [v.to_dict() if isinstance(v, ColumnSpec) else v for v in value]
            data[f.name] = value
        return data

    def describe(self) -> str:
        return self.kind.value


@dataclass(frozen=True)
class CreateTable(ChangeDescriptor):
    kind: ClassVar[ChangeKind] = ChangeKind.CREATE_TABLE

    table: str
    columns: tuple[ColumnSpec, ...] = field(default_factory=tuple)

    def __post_init__(self):
        _check_identifier(self.table, 'table name')
        columns = _check_names(self.columns, f"create_table '{self.table}' columns")
        object.__setattr__(self, 'columns', columns)
        if not self.columns:
            raise MalformedUnitError(f"create_table '{self.table}' needs at least one column")
        if not all(isinstance(c, ColumnSpec) for c in self.columns):
            raise MalformedUnitError(f"create_table '{self.table}' columns must be mappings")
        names = [c.name for c in self.columns]
        if len(names) != len(set(names)):
            raise MalformedUnitError(f"create_table '{self.table}' has duplicate column names")

    def render(self, dialect: Dialect) -> list[str]:
        table = Table(self.table, MetaData(), *[c.to_column() for c in self.columns])
        return [_compile(CreateTableDDL(table), dialect)]

    def invert(self) -> ChangeDescriptor:
        return DropTable(self.table)

    def describe(self) -> str:
        return f"create_table {self.table}"


@dataclass(frozen=True)
class DropTable(ChangeDescriptor):
    kind: ClassVar[ChangeKind] = ChangeKind.DROP_TABLE

    table: str

    def __post_init__(self):
        _check_identifier(self.table, 'table name')

    def render(self, dialect: Dialect) -> list[str]:
        return [_compile(DropTableDDL(Table(self.table, MetaData())), dialect)]

    def describe(self) -> str:
        return f"drop_table {self.table}"


@dataclass(frozen=True)
class RenameTable(ChangeDescriptor):
    kind: ClassVar[ChangeKind] = ChangeKind.RENAME_TABLE

    table: str
    new_name: str

    def __post_init__(self):
        _check_identifier(self.table, 'table name')
        _check_identifier(self.new_name, 'table name')

    def render(self, dialect: Dialect) -> list[str]:
        return [
            f"ALTER TABLE {_quote(dialect, self.table)} "
            f"RENAME TO {_quote(dialect, self.new_name)}"
        ]

    def invert(self) -> ChangeDescriptor:
        return RenameTable(self.new_name, self.table)

    def describe(self) -> str:
        return f"rename_table {self.table} -> {self.new_name}"


@dataclass(frozen=True)
class AddColumn(ChangeDescriptor):
    kind: ClassVar[ChangeKind] = ChangeKind.ADD_COLUMN

    table: str
    column: ColumnSpec

    def __post_init__(self):
        _check_identifier(self.table, 'table name')
        if isinstance(self.column, dict):
            object.__setattr__(self, 'column', ColumnSpec.from_dict(self.column))
        elif not isinstance(self.column, ColumnSpec):
            raise MalformedUnitError(f"add_column '{self.table}' column must be a mapping")

    def render(self, dialect: Dialect) -> list[str]:
        # Column must be bound to a table for dialect-specific specification
        column = self.column.to_column()
        Table(self.table, MetaData(), column)
        return [
            f"ALTER TABLE {_quote(dialect, self.table)} "
            f"ADD COLUMN {_compile(CreateColumn(column), dialect)}"
        ]

    def invert(self) -> ChangeDescriptor:
        return RemoveColumn(self.table, self.column.name)

    def describe(self) -> str:
        return f"add_column {self.table}.{self.column.name}"


@dataclass(frozen=True)
class RemoveColumn(ChangeDescriptor):
    kind: ClassVar[ChangeKind] = ChangeKind.REMOVE_COLUMN

    table: str
    column: str

    def __post_init__(self):
        _check_identifier(self.table, 'table name')
        _check_identifier(self.column, 'column name')

    def render(self, dialect: Dialect) -> list[str]:
        return [
            f"ALTER TABLE {_quote(dialect, self.table)} "
            f"DROP COLUMN {_quote(dialect, self.column)}"
        ]

    def describe(self) -> str:
        return f"remove_column {self.table}.{self.column}"


@dataclass(frozen=True)
class RenameColumn(ChangeDescriptor):
    kind: ClassVar[ChangeKind] = ChangeKind.RENAME_COLUMN

    table: str
    column: str
    new_name: str

    def __post_init__(self):
        _check_identifier(self.table, 'table name')
        _check_identifier(self.column, 'column name')
        _check_identifier(self.new_name, 'column name')

    def render(self, dialect: Dialect) -> list[str]:
        return [
            f"ALTER TABLE {_quote(dialect, self.table)} "
            f"RENAME COLUMN {_quote(dialect, self.column)} "
            f"TO {_quote(dialect, self.new_name)}"
        ]

    def invert(self) -> ChangeDescriptor:
        return RenameColumn(self.table, self.new_name, self.column)

    def describe(self) -> str:
        return f"rename_column {self.table}.{self.column} -> {self.new_name}"


def _index_for(table_name: str, name: str, columns: tuple, unique: bool) -> Index:
    table = Table(table_name, MetaData(), *[Column(c) for c in columns])
    return Index(name, *[table.c[c] for c in columns], unique=unique)


@dataclass(frozen=True)
class AddIndex(ChangeDescriptor):
    kind: ClassVar[ChangeKind] = ChangeKind.ADD_INDEX

    table: str
    name: str
    columns: tuple[str, ...] = field(default_factory=tuple)
    unique: bool = False

    def __post_init__(self):
        _check_identifier(self.table, 'table name')
        _check_identifier(self.name, 'index name')
        columns = _check_names(self.columns, f"{self.kind.value} '{self.name}' columns")
        object.__setattr__(self, 'columns', columns)
        if not self.columns:
            raise MalformedUnitError(f"{self.kind.value} '{self.name}' needs at least one column")
        for column in self.columns:
            _check_identifier(column, 'column name')

    def render(self, dialect: Dialect) -> list[str]:
        index = _index_for(self.table, self.name, self.columns, self.unique)
        return [_compile(CreateIndex(index), dialect)]

    def invert(self) -> ChangeDescriptor:
        return RemoveIndex(self.table, self.name, self.columns, self.unique)

    def describe(self) -> str:
        return f"add_index {self.name} on {self.table}({', '.join(self.columns)})"


@dataclass(frozen=True)
class RemoveIndex(AddIndex):
    """Drop an index; columns are kept so the drop can be inverted."""

    kind: ClassVar[ChangeKind] = ChangeKind.REMOVE_INDEX

    def render(self, dialect: Dialect) -> list[str]:
        index = _index_for(self.table, self.name, self.columns, self.unique)
        return [_compile(DropIndex(index), dialect)]

    def invert(self) -> ChangeDescriptor:
        return AddIndex(self.table, self.name, self.columns, self.unique)

    def describe(self) -> str:
        return f"remove_index {self.name} on {self.table}"


@dataclass(frozen=True)
class RawSQL(ChangeDescriptor):
    kind: ClassVar[ChangeKind] = ChangeKind.RAW_SQL

    sql: str

    def __post_init__(self):
        if not isinstance(self.sql, str) or not split_statements(self.sql):
            raise MalformedUnitError("raw_sql must contain at least one statement")

    def render(self, dialect: Dialect) -> list[str]:
        return split_statements(self.sql)

    def describe(self) -> str:
        first = split_statements(self.sql)[0].split('\n', 1)[0]
        return f"raw_sql {first[:60]}"


CHANGE_TYPES: dict[str, type] = {
    cls.kind.value: cls
    for cls in (
        CreateTable, DropTable, RenameTable,
        AddColumn, RemoveColumn, RenameColumn,
        AddIndex, RemoveIndex, RawSQL,
    )
}


def change_from_dict(data: Any) -> ChangeDescriptor:
    """
    Build a change descriptor from plain data.

    Accepts either ``{'kind': 'add_column', 'table': ..., 'column': {...}}``
    or the single-key form ``{'add_column': {'table': ..., 'column': {...}}}``.
    ``raw_sql`` may also be given as ``{'raw_sql': 'CREATE VIEW ...'}``.

    Raises:
        MalformedUnitError: If kind is unknown or attributes are invalid
    """
    if not isinstance(data, dict):
        raise MalformedUnitError(f"Change must be a mapping, got {data!r}")

    if 'kind' in data:
        kind = data['kind']
        body = {k: v for k, v in data.items() if k != 'kind'}
    elif len(data) == 1:
        kind, body = next(iter(data.items()))
        if kind == ChangeKind.RAW_SQL.value and isinstance(body, str):
            body = {'sql': body}
    else:
        raise MalformedUnitError(f"Change has no 'kind': {data!r}")

    cls = CHANGE_TYPES.get(kind) if isinstance(kind, str) else None
    if cls is None:
        raise MalformedUnitError(
            f"Unknown change kind '{kind}'. Valid kinds: {', '.join(CHANGE_TYPES)}"
        )
    if not isinstance(body, dict):
        raise MalformedUnitError(f"Change '{kind}' attributes must be a mapping")

    if cls is CreateTable and 'columns' in body:
        columns = _check_names(body['columns'] or [], "create_table columns")
        body = dict(body, columns=[ColumnSpec.from_dict(c) for c in columns])
    elif cls is AddColumn and 'column' in body:
        body = dict(body, column=ColumnSpec.from_dict(body['column']))

    try:
        return cls(**body)
    except TypeError as e:
        raise MalformedUnitError(f"Invalid attributes for '{kind}': {e}") from e


def invert_changes(changes: tuple) -> Optional[tuple]:
    """
    Compute the revert sequence for a list of changes.

    Returns the inverses in reverse order, or None if any change is
    not invertible (the unit is then irreversible).
    """
    inverses = []
    for change in reversed(changes):
        inverse = change.invert()
        if inverse is None:
            return None
        inverses.append(inverse)
    return tuple(inverses)
