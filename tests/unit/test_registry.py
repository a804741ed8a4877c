"""
Unit tests for migration discovery.

Tests cover:
- SQL file parsing (UP/DOWN/IRREVERSIBLE sections)
- YAML and JSON descriptor files
- Filename filtering and ordering
- Duplicate and mixed order keys
- Error handling and validation
"""

import json

import pytest

from schemaflow.errors import DuplicateKeyError, MalformedUnitError
from schemaflow.migrations.changes import (
    AddColumn,
    ColumnSpec,
    CreateTable,
    DropTable,
    RawSQL,
    RemoveColumn,
)
from schemaflow.migrations.migration import MigrationUnit, compute_checksum
from schemaflow.migrations.registry import DirectorySource, MigrationRegistry, StaticSource


def raw_unit(key, name):
    return MigrationUnit.create(key, name, [RawSQL('SELECT 1')], [RawSQL('SELECT 2')])


class TestDirectorySource:
    """Test migration file discovery."""

    def test_discovers_and_skips_invalid_names(self, migrations_dir, write_migration):
        write_migration("001_create_quotes.sql", """
            -- UP
            CREATE TABLE quotes (id INTEGER PRIMARY KEY);
            -- DOWN
            DROP TABLE quotes;
        """)
        write_migration("005_add_rating.sql", """
            -- UP
            ALTER TABLE quotes ADD COLUMN rating INTEGER;
            -- DOWN
            ALTER TABLE quotes DROP COLUMN rating;
        """)
        write_migration("invalid_name.sql", "-- UP\nSELECT 1;\n-- DOWN\nSELECT 1;\n")
        write_migration("README.md", "# Migrations")
        (migrations_dir / "002_subdir.sql").mkdir()

        units = DirectorySource(migrations_dir).load()

        assert [u.order_key for u in units] == [1, 5]
        assert [u.name for u in units] == ['create_quotes', 'add_rating']

    def test_missing_directory_yields_nothing(self, tmp_path):
        assert DirectorySource(tmp_path / "nope").load() == []

    def test_sql_sections(self, migrations_dir, write_migration):
        path = write_migration("003_add_index.sql", """
            -- UP
            CREATE INDEX idx_rating ON quotes(rating);

            -- DOWN
            DROP INDEX idx_rating;
        """)

        unit = DirectorySource(migrations_dir).parse_file(path)

        assert unit.order_key == 3
        assert unit.apply == (RawSQL('CREATE INDEX idx_rating ON quotes(rating);'),)
        assert unit.revert == (RawSQL('DROP INDEX idx_rating;'),)
        assert unit.checksum == compute_checksum(path.read_text())
        assert unit.source == str(path.absolute())

    def test_markers_case_insensitive(self, migrations_dir, write_migration):
        path = write_migration("001_lower.sql", "-- up\nSELECT 1;\n-- down\nSELECT 2;\n")
        unit = DirectorySource(migrations_dir).parse_file(path)
        assert unit.revert == (RawSQL('SELECT 2;'),)

    def test_irreversible_marker(self, migrations_dir, write_migration):
        path = write_migration("004_backfill.sql", """
            -- IRREVERSIBLE
            -- UP
            UPDATE quotes SET rating = 0 WHERE rating IS NULL;
        """)
        unit = DirectorySource(migrations_dir).parse_file(path)
        assert unit.irreversible
        assert unit.revert is None

    @pytest.mark.parametrize('content, message', [
        ("CREATE TABLE t (id INTEGER);\n", "missing '-- UP'"),
        ("-- UP\nCREATE TABLE t (id INTEGER);\n", "missing '-- DOWN'"),
        ("-- UP\nSELECT 1;\n-- DOWN\nSELECT 2;\n-- IRREVERSIBLE\n", "both"),
        ("-- DOWN\nSELECT 2;\n-- UP\nSELECT 1;\n", "before"),
        ("-- UP\n\n-- DOWN\nSELECT 2;\n", "empty UP"),
        ("-- UP\nSELECT 1;\n-- DOWN\n\n", "empty DOWN"),
    ])
    def test_malformed_sql(self, migrations_dir, write_migration, content, message):
        path = write_migration("001_bad.sql", content)
        with pytest.raises(MalformedUnitError, match=message):
            DirectorySource(migrations_dir).parse_file(path)

    def test_invalid_filename(self, migrations_dir, write_migration):
        path = write_migration("create_table.sql", "-- UP\nSELECT 1;\n-- DOWN\nSELECT 1;\n")
        with pytest.raises(MalformedUnitError, match="Invalid migration filename"):
            DirectorySource(migrations_dir).parse_file(path)


class TestDescriptorFiles:
    """Test YAML/JSON migration files."""

    def test_yaml_with_auto_revert(self, migrations_dir, write_migration):
        write_migration("001_create_artists.yaml", """
            description: Artists table
            up:
              - create_table:
                  table: artists
                  columns:
                    - {name: id, type: integer, primary_key: true}
                    - {name: name, type: string, nullable: false}
              - add_column:
                  table: artists
                  column: {name: favorite_food, type: string}
        """)

        [unit] = DirectorySource(migrations_dir).load()

        assert unit.order_key == 1
        assert unit.name == 'create_artists'
        assert len(unit.apply) == 2
        assert unit.revert == (
            RemoveColumn('artists', 'favorite_food'),
            DropTable('artists'),
        )

    def test_yml_explicit_down(self, migrations_dir, write_migration):
        write_migration("002_drop_legacy.yml", """
            up:
              - drop_table: {table: legacy}
            down:
              - kind: create_table
                table: legacy
                columns:
                  - {name: id, type: integer}
        """)

        [unit] = DirectorySource(migrations_dir).load()

        assert unit.apply == (DropTable('legacy'),)
        assert unit.revert == (CreateTable('legacy', (ColumnSpec('id', 'integer'),)),)

    def test_auto_revert_of_lossy_change_is_irreversible(self, migrations_dir, write_migration):
        write_migration("003_drop.yaml", "up:\n  - drop_table: {table: legacy}\n")
        [unit] = DirectorySource(migrations_dir).load()
        assert unit.irreversible

    def test_explicit_irreversible(self, migrations_dir, write_migration):
        write_migration("004_col.yaml", """
            up:
              - add_column: {table: artists, column: {name: x, type: integer}}
            down: irreversible
        """)
        [unit] = DirectorySource(migrations_dir).load()
        assert unit.irreversible

    def test_json(self, migrations_dir):
        (migrations_dir / "010_add_food.json").write_text(json.dumps({
            'up': [{'kind': 'add_column', 'table': 'artists',
                    'column': {'name': 'favorite_food', 'type': 'text'}}],
        }))

        [unit] = DirectorySource(migrations_dir).load()

        assert unit.order_key == 10
        assert unit.apply == (AddColumn('artists', ColumnSpec('favorite_food', 'text')),)

    @pytest.mark.parametrize('content, message', [
        ("- create_table: {table: t}\n", "must be a mapping"),
        ("up: []\n", "non-empty 'up' list"),
        ("up:\n  - raw_sql: SELECT 1\nsteps: 2\n", "unknown section"),
        ("up:\n  - raw_sql: SELECT 1\ndown: sometimes\n", "revert must be"),
        ("up:\n  - add_table: {table: t}\n", "Unknown change kind"),
        ("up: [unclosed\n", "Cannot parse"),
        ("up:\n  - create_table: {table: a, columns: [{name: id, type: [integer]}]}\n", "invalid type"),
        ("up:\n  - create_table: {table: a, columns: 5}\n", "columns must be a list"),
        ("up:\n  - create_table: {table: a, columns: [id]}\n", "must be a mapping"),
        ("up:\n  - add_index: {table: a, name: ix_a, columns: name}\n", "columns must be a list"),
        ("up:\n  - {kind: [add_index], table: a}\n", "Unknown change kind"),
        ("up:\n  - add_column: {table: a, column: {name: n, type: string, length: long}}\n", "invalid length"),
        ("up:\n  - raw_sql: SELECT 1\ndown: 5\n", "Migration 001_bad"),
    ])
    def test_malformed_documents(self, migrations_dir, write_migration, content, message):
        write_migration("001_bad.yaml", content)
        with pytest.raises(MalformedUnitError, match=message):
            DirectorySource(migrations_dir).load()


class TestMigrationRegistry:
    """Test ordering and de-duplication."""

    def test_sorted_by_numeric_key(self, migrations_dir, write_migration):
        for filename in ("010_c.sql", "002_b.sql", "001_a.sql"):
            write_migration(filename, "-- UP\nSELECT 1;\n-- DOWN\nSELECT 2;\n")

        registry = MigrationRegistry(DirectorySource(migrations_dir))

        assert registry.keys() == [1, 2, 10]
        assert [u.name for u in registry.discover()] == ['a', 'b', 'c']

    def test_duplicate_key_across_files(self, migrations_dir, write_migration):
        write_migration("001_first.sql", "-- UP\nSELECT 1;\n-- DOWN\nSELECT 2;\n")
        write_migration("1_second.sql", "-- UP\nSELECT 1;\n-- DOWN\nSELECT 2;\n")

        with pytest.raises(DuplicateKeyError, match="Duplicate migration order key 1") as exc_info:
            MigrationRegistry(DirectorySource(migrations_dir)).discover()

        assert exc_info.value.unit.order_key == 1

    def test_duplicate_key_static(self):
        source = StaticSource([raw_unit(1, 'a'), raw_unit(1, 'b')])
        with pytest.raises(DuplicateKeyError):
            MigrationRegistry(source).discover()

    def test_string_keys(self):
        source = StaticSource([raw_unit('2024_02_b', 'b'), raw_unit('2024_01_a', 'a')])
        assert MigrationRegistry(source).keys() == ['2024_01_a', '2024_02_b']

    def test_mixed_key_types_rejected(self):
        source = StaticSource([raw_unit(1, 'a'), raw_unit('2', 'b')])
        with pytest.raises(MalformedUnitError, match="mixed types"):
            MigrationRegistry(source).discover()

    def test_find(self):
        registry = MigrationRegistry(StaticSource([raw_unit(1, 'a'), raw_unit(2, 'b')]))
        assert registry.find(2).name == 'b'
        assert registry.find('2').name == 'b'
        with pytest.raises(KeyError):
            registry.find(3)

    def test_empty(self, migrations_dir):
        assert MigrationRegistry(DirectorySource(migrations_dir)).discover() == []
