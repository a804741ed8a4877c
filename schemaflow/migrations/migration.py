"""
Migration data models.

This module defines the core data structures for managing migrations:
- MigrationUnit: One ordered schema change with apply/revert descriptors
- LedgerRecord: A row of the ledger table (a unit that has been applied)
- UnitStatus: One line of the status report

These models are shared by the registry, ledger and engine.
"""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence, Union

from ..errors import MalformedUnitError
from .changes import ChangeDescriptor, invert_changes

OrderKey = Union[int, str]

AUTO_REVERT = 'auto'
IRREVERSIBLE = 'irreversible'


def parse_order_key(value: str) -> OrderKey:
    """Convert a ledger key back to its order key type.

    Only keys in canonical integer form become ints, so a padded string
    key such as '007' is returned unchanged.
    """
    if value.isascii() and value.isdigit() and str(int(value)) == value:
        return int(value)
    return value


def compute_checksum(content: Union[str, bytes]) -> str:
    """
    Compute SHA-256 checksum of definition content.

    Used to detect definitions modified after they were applied.

    Returns:
        Hexadecimal SHA-256 hash (64 characters)
    """
    if isinstance(content, str):
        content = content.encode('utf-8')
    return hashlib.sha256(content).hexdigest()


@dataclass(frozen=True)
class MigrationUnit:
    """
    Represents a single migration unit.

    Attributes:
        order_key: Sortable unique key (int from filename prefix, or str)
        name: Descriptive name (e.g., 'create_artists')
        apply: Change descriptors executed in order to apply the unit
        revert: Change descriptors executed in order to revert the unit,
            or None if the unit is irreversible
        checksum: SHA-256 of the definition content
        source: Path of the definition file, if any

    Example:
        >>> unit = MigrationUnit.create(
        ...     1, 'create_artists',
        ...     [CreateTable('artists', (ColumnSpec('id', 'integer', primary_key=True),))],
        ... )
        >>> unit
        <MigrationUnit(1, create_artists)>
        >>> unit.revert
        (DropTable(table='artists'),)
    """

    order_key: OrderKey
    name: str
    apply: tuple[ChangeDescriptor, ...]
    revert: Optional[tuple[ChangeDescriptor, ...]]
    checksum: str = ''
    source: Optional[str] = field(default=None, compare=False)

    def __post_init__(self):
        """Validate unit after initialization."""
        if isinstance(self.order_key, bool) or not isinstance(self.order_key, (int, str)):
            raise MalformedUnitError(
                f"Order key must be int or str, got {type(self.order_key).__name__}"
            )
        if isinstance(self.order_key, int) and self.order_key < 0:
            raise MalformedUnitError(f"Order key must be >= 0, got {self.order_key}")
        if isinstance(self.order_key, str) and not self.order_key.strip():
            raise MalformedUnitError("Order key must not be empty")
        if not self.name:
            raise MalformedUnitError(f"Migration {self.order_key} has no name")

        object.__setattr__(self, 'apply', tuple(self.apply))
        if not self.apply:
            raise MalformedUnitError(f"Migration {self.label} has empty apply section")
        if self.revert is not None:
            object.__setattr__(self, 'revert', tuple(self.revert))
            if not self.revert:
                raise MalformedUnitError(f"Migration {self.label} has empty revert section")

        if not self.checksum:
            canonical = json.dumps(
                {
                    'apply': [c.to_dict() for c in self.apply],
                    'revert': None if self.revert is None else [c.to_dict() for c in self.revert],
                },
                sort_keys=True,
                default=str,
            )
            object.__setattr__(self, 'checksum', compute_checksum(canonical))

    @classmethod
    def create(
        cls,
        order_key: OrderKey,
        name: str,
        apply: Sequence[ChangeDescriptor],
        revert: Union[str, Sequence[ChangeDescriptor]] = AUTO_REVERT,
        checksum: str = '',
        source: Optional[str] = None,
    ) -> 'MigrationUnit':
        """
        Build a unit, computing the revert sequence when asked to.

        Args:
            revert: 'auto' to invert ``apply`` (irreversible if any change
                cannot be inverted), 'irreversible', or explicit descriptors
        """
        apply = tuple(apply)
        if isinstance(revert, str):
            if revert == AUTO_REVERT:
                revert_changes = invert_changes(apply)
            elif revert == IRREVERSIBLE:
                revert_changes = None
            else:
                raise MalformedUnitError(
                    f"Migration {order_key}_{name}: revert must be "
                    f"'{AUTO_REVERT}', '{IRREVERSIBLE}' or a list of changes, got '{revert}'"
                )
        else:
            revert_changes = tuple(revert)
        return cls(
            order_key=order_key,
            name=name,
            apply=apply,
            revert=revert_changes,
            checksum=checksum,
            source=source,
        )

    @property
    def irreversible(self) -> bool:
        return self.revert is None

    @property
    def ledger_key(self) -> str:
        """Order key as stored in the ledger table."""
        return str(self.order_key)

    @property
    def label(self) -> str:
        return f"{self.order_key}_{self.name}"

    def __lt__(self, other: 'MigrationUnit') -> bool:
        """Allow sorting units by order key."""
        if not isinstance(other, MigrationUnit):
            return NotImplemented
        return self.order_key < other.order_key

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<MigrationUnit({self.order_key}, {self.name})>"


@dataclass
class LedgerRecord:
    """
    Represents a unit that has been applied to the database.

    This corresponds to a row in the ledger table (schema_migrations).

    Attributes:
        order_key: Applied unit's key (ledger string form)
        name: Unit name at time of application
        checksum: Checksum at time of application
        applied_at: When the unit was committed
    """

    order_key: str
    name: str
    checksum: str
    applied_at: datetime

    def __repr__(self) -> str:
        return f"<LedgerRecord({self.order_key}, {self.name})>"


@dataclass
class UnitStatus:
    """
    Status report entry for one unit.

    Attributes:
        order_key: Unit order key
        name: Unit name
        state: 'applied', 'pending' or 'orphaned' (recorded but no definition)
        applied_at: When applied, None if pending
        modified: Definition changed since it was applied
    """

    APPLIED = 'applied'
    PENDING = 'pending'
    ORPHANED = 'orphaned'

    order_key: OrderKey
    name: str
    state: str
    applied_at: Optional[datetime] = None
    modified: bool = False

    def to_dict(self) -> dict:
        return {
            'order_key': self.order_key,
            'name': self.name,
            'state': self.state,
            'applied_at': self.applied_at.isoformat() if self.applied_at else None,
            'modified': self.modified,
        }
