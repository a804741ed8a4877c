"""
Migration registry and definition sources.

This module provides:
- DirectorySource: Discovery and parsing of migration definition files
- StaticSource: Units defined in code
- MigrationRegistry: Ordering and de-duplication of discovered units

Migration files follow the naming convention: NNN_description.ext
Example: 001_create_artists.yaml, 002_add_favorite_food.sql

SQL file format:
    -- UP
    CREATE TABLE artists (id INTEGER PRIMARY KEY, name TEXT);

    -- DOWN
    DROP TABLE artists;

A SQL file with no DOWN section must carry an ``-- IRREVERSIBLE`` marker.

YAML/JSON file format:
    up:
      - create_table:
          table: artists
          columns:
            - {name: id, type: integer, primary_key: true}
            - {name: name, type: string}
    down: auto          # default; or 'irreversible', or a list of changes
"""

import json
import logging
import re
from pathlib import Path
from typing import Iterable, List, Optional

import yaml

from ..errors import DuplicateKeyError, MalformedUnitError
from .changes import RawSQL, change_from_dict
from .migration import AUTO_REVERT, MigrationUnit, OrderKey, compute_checksum

logger = logging.getLogger(__name__)


class DirectorySource:
    """
    Loads migration units from a directory of definition files.

    Example:
        >>> source = DirectorySource(Path('db/migrations'))
        >>> source.load()
        [<MigrationUnit(1, create_artists)>, <MigrationUnit(2, add_favorite_food)>]
    """

    # Migration filename pattern: NNN_description.ext
    MIGRATION_PATTERN = re.compile(r'^(\d+)_([A-Za-z0-9_]+)\.(sql|yaml|yml|json)$')

    # Section markers in SQL migration files
    UP_MARKER = '-- UP'
    DOWN_MARKER = '-- DOWN'
    IRREVERSIBLE_MARKER = '-- IRREVERSIBLE'

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def __repr__(self) -> str:
        return f"<DirectorySource({self.directory})>"

    def load(self) -> List[MigrationUnit]:
        """
        Parse every migration file in the directory.

        Files that do not match the naming pattern are skipped. Units are
        returned in filename order; sorting and duplicate detection are
        the registry's job.

        Raises:
            MalformedUnitError: If a matching file cannot be parsed
        """
        if not self.directory.is_dir():
            logger.warning("Migrations directory not found: %s", self.directory)
            return []

        units = []
        for file_path in sorted(self.directory.iterdir()):
            if not file_path.is_file():
                continue
            if not self.MIGRATION_PATTERN.match(file_path.name):
                logger.warning("Skipping invalid migration filename: %s", file_path.name)
                continue
            unit = self.parse_file(file_path)
            logger.debug("Discovered migration: %r", unit)
            units.append(unit)
        return units

    def parse_file(self, file_path: Path) -> MigrationUnit:
        """
        Parse one migration file.

        Args:
            file_path: Path to migration file

        Returns:
            MigrationUnit with apply/revert descriptors

        Raises:
            MalformedUnitError: If filename or content is invalid
        """
        match = self.MIGRATION_PATTERN.match(file_path.name)
        if not match:
            raise MalformedUnitError(f"Invalid migration filename: {file_path.name}")

        key_str, name, ext = match.groups()
        order_key = int(key_str)
        try:
            content = file_path.read_text(encoding='utf-8')
        except (OSError, UnicodeDecodeError) as e:
            raise MalformedUnitError(f"Cannot read {file_path.name}: {e}", cause=e) from e

        checksum = compute_checksum(content)
        source = str(file_path.absolute())

        if ext == 'sql':
            up_sql, down_sql = self._parse_sections(content, file_path.name)
            return MigrationUnit.create(
                order_key,
                name,
                [RawSQL(up_sql)],
                [RawSQL(down_sql)] if down_sql is not None else 'irreversible',
                checksum=checksum,
                source=source,
            )

        data = self._load_document(content, ext, file_path.name)
        return self._unit_from_document(order_key, name, data, checksum, source, file_path.name)

    def _parse_sections(self, content: str, filename: str) -> tuple[str, Optional[str]]:
        """
        Parse UP and DOWN sections from SQL file content.

        Returns:
            Tuple of (up_sql, down_sql); down_sql is None for
            irreversible migrations

        Raises:
            MalformedUnitError: If markers are missing, misordered or
                a section is empty
        """
        lines = content.split('\n')

        up_start = None
        down_start = None
        irreversible = False

        # Find section markers (case-insensitive)
        for i, line in enumerate(lines):
            line_stripped = line.strip().upper()
            if line_stripped == self.UP_MARKER:
                up_start = i + 1
            elif line_stripped == self.DOWN_MARKER:
                down_start = i + 1
            elif line_stripped == self.IRREVERSIBLE_MARKER:
                irreversible = True

        if up_start is None:
            raise MalformedUnitError(
                f"Migration {filename} missing '{self.UP_MARKER}' marker"
            )

        if down_start is None and not irreversible:
            raise MalformedUnitError(
                f"Migration {filename} missing '{self.DOWN_MARKER}' marker "
                f"(use '{self.IRREVERSIBLE_MARKER}' for one-way migrations)"
            )

        if down_start is not None and irreversible:
            raise MalformedUnitError(
                f"Migration {filename} has both '{self.DOWN_MARKER}' and "
                f"'{self.IRREVERSIBLE_MARKER}'"
            )

        if down_start is not None and up_start >= down_start:
            raise MalformedUnitError(
                f"Migration {filename} has '{self.DOWN_MARKER}' before "
                f"'{self.UP_MARKER}' (UP at line {up_start}, "
                f"DOWN at line {down_start})"
            )

        if down_start is None:
            up_sql = '\n'.join(
                line for line in lines[up_start:]
                if line.strip().upper() != self.IRREVERSIBLE_MARKER
            ).strip()
            down_sql = None
        else:
            up_sql = '\n'.join(lines[up_start:down_start - 1]).strip()
            down_sql = '\n'.join(lines[down_start:]).strip()
            if not down_sql:
                raise MalformedUnitError(f"Migration {filename} has empty DOWN section")

        if not up_sql:
            raise MalformedUnitError(f"Migration {filename} has empty UP section")

        return up_sql, down_sql

    def _load_document(self, content: str, ext: str, filename: str):
        try:
            if ext == 'json':
                return json.loads(content)
            return yaml.safe_load(content)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise MalformedUnitError(f"Cannot parse {filename}: {e}", cause=e) from e

    def _unit_from_document(self, order_key, name, data, checksum, source, filename):
        if not isinstance(data, dict):
            raise MalformedUnitError(f"Migration {filename} must be a mapping with an 'up' list")

        unknown = set(data) - {'up', 'down', 'description'}
        if unknown:
            raise MalformedUnitError(
                f"Migration {filename} has unknown section(s): {', '.join(sorted(map(str, unknown)))}"
            )

        up = data.get('up')
        if not isinstance(up, list) or not up:
            raise MalformedUnitError(f"Migration {filename} needs a non-empty 'up' list")

        down = data.get('down', AUTO_REVERT)
        try:
            apply = [change_from_dict(item) for item in up]
            if isinstance(down, list):
                revert = [change_from_dict(item) for item in down]
            else:
                revert = down
            return MigrationUnit.create(
                order_key, name, apply, revert, checksum=checksum, source=source
            )
        except MalformedUnitError as e:
            raise MalformedUnitError(f"Migration {filename}: {e.message}", cause=e) from e
        except (TypeError, ValueError) as e:
            raise MalformedUnitError(f"Migration {filename}: {e}", cause=e) from e


class StaticSource:
    """Units defined in code, e.g. embedded in an application package."""

    def __init__(self, units: Iterable[MigrationUnit]):
        self.units = list(units)

    def __repr__(self) -> str:
        return f"<StaticSource({len(self.units)} units)>"

    def load(self) -> List[MigrationUnit]:
        return list(self.units)


class MigrationRegistry:
    """
    Orders and de-duplicates migration units from a source.

    Responsibilities:
    - Load units from the definition source
    - Reject duplicate order keys and mixed key types
    - Return units sorted by order key ascending

    Does NOT touch the database (see MigrationLedger / MigrationEngine).

    Example:
        >>> registry = MigrationRegistry(DirectorySource(Path('db/migrations')))
        >>> registry.discover()
        [<MigrationUnit(1, create_artists)>, <MigrationUnit(2, add_favorite_food)>]
    """

    def __init__(self, source):
        """
        Args:
            source: Object with a ``load()`` method returning MigrationUnits
        """
        self.source = source

    def discover(self) -> List[MigrationUnit]:
        """
        Discover all units, sorted by order key.

        Raises:
            DuplicateKeyError: If two units share an order key
            MalformedUnitError: If a definition cannot be parsed or key
                types are mixed
        """
        units = self.source.load()

        key_types = {type(u.order_key) for u in units}
        if len(key_types) > 1:
            raise MalformedUnitError(
                f"Order keys of mixed types in {self.source!r}: "
                f"{', '.join(sorted(t.__name__ for t in key_types))}"
            )

        seen = {}
        for unit in units:
            previous = seen.get(unit.ledger_key)
            if previous is not None:
                raise DuplicateKeyError(
                    f"Duplicate migration order key {unit.order_key}: "
                    f"'{previous.name}' and '{unit.name}'",
                    unit=unit,
                )
            seen[unit.ledger_key] = unit

        return sorted(units)

    def find(self, order_key: OrderKey) -> MigrationUnit:
        """
        Find a unit by order key.

        Raises:
            KeyError: If no unit has this key
        """
        wanted = str(order_key)
        for unit in self.discover():
            if unit.ledger_key == wanted:
                return unit
        raise KeyError(order_key)

    def keys(self) -> List[OrderKey]:
        return [u.order_key for u in self.discover()]
