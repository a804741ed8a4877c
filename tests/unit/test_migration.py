"""
Unit tests for migration data models and error types.
"""

from datetime import datetime, timezone

import pytest

from schemaflow.errors import (
    AdapterIntegrityError,
    ConfigurationError,
    LockContentionError,
    MalformedUnitError,
    MigrationFailedError,
    RunCancelledError,
    ValidationFailedError,
)
from schemaflow.migrations.changes import ColumnSpec, CreateTable, DropTable, RawSQL
from schemaflow.migrations.migration import (
    MigrationUnit,
    UnitStatus,
    compute_checksum,
    parse_order_key,
)
from schemaflow.migrations.validator import ValidationWarning, WarningLevel


@pytest.fixture
def artists():
    return CreateTable('artists', (ColumnSpec('id', 'integer', primary_key=True),))


class TestMigrationUnit:
    """Test MigrationUnit construction and validation."""

    def test_create_auto_revert(self, artists):
        unit = MigrationUnit.create(1, 'create_artists', [artists])
        assert unit.apply == (artists,)
        assert unit.revert == (DropTable('artists'),)
        assert not unit.irreversible
        assert repr(unit) == '<MigrationUnit(1, create_artists)>'
        assert unit.label == '1_create_artists'
        assert unit.ledger_key == '1'

    def test_create_irreversible(self, artists):
        unit = MigrationUnit.create(1, 'create_artists', [artists], 'irreversible')
        assert unit.irreversible

    def test_create_explicit_revert(self, artists):
        unit = MigrationUnit.create(1, 'x', [artists], [RawSQL('DROP TABLE artists')])
        assert unit.revert == (RawSQL('DROP TABLE artists'),)

    def test_create_invalid_revert_mode(self, artists):
        with pytest.raises(MalformedUnitError, match="revert must be"):
            MigrationUnit.create(1, 'x', [artists], 'sometimes')

    def test_checksum_from_descriptors(self, artists):
        first = MigrationUnit.create(1, 'x', [artists])
        second = MigrationUnit.create(1, 'x', [artists])
        changed = MigrationUnit.create(1, 'x', [artists], 'irreversible')

        assert len(first.checksum) == 64
        assert first.checksum == second.checksum
        assert first.checksum != changed.checksum

    def test_explicit_checksum_kept(self, artists):
        unit = MigrationUnit.create(1, 'x', [artists], checksum='abc')
        assert unit.checksum == 'abc'

    @pytest.mark.parametrize('key', [-1, True, 1.5, '', '  ', None])
    def test_invalid_order_key(self, artists, key):
        with pytest.raises(MalformedUnitError):
            MigrationUnit.create(key, 'x', [artists])

    def test_empty_name(self, artists):
        with pytest.raises(MalformedUnitError, match="has no name"):
            MigrationUnit.create(1, '', [artists])

    def test_empty_apply(self):
        with pytest.raises(MalformedUnitError, match="empty apply"):
            MigrationUnit.create(1, 'x', [], 'irreversible')

    def test_empty_revert(self, artists):
        with pytest.raises(MalformedUnitError, match="empty revert"):
            MigrationUnit.create(1, 'x', [artists], [])

    def test_sorting(self, artists):
        units = [MigrationUnit.create(k, f'u{k}', [artists]) for k in (10, 2, 1)]
        assert [u.order_key for u in sorted(units)] == [1, 2, 10]

    def test_frozen(self, artists):
        unit = MigrationUnit.create(1, 'x', [artists])
        with pytest.raises(AttributeError):
            unit.name = 'y'


class TestHelpers:
    def test_parse_order_key(self):
        assert parse_order_key('12') == 12
        assert parse_order_key('2024_01_a') == '2024_01_a'

    def test_parse_order_key_keeps_padded_strings(self):
        assert parse_order_key('007') == '007'
        assert parse_order_key('0') == 0

    def test_compute_checksum(self):
        assert compute_checksum('abc') == compute_checksum(b'abc')
        assert compute_checksum('abc') != compute_checksum('abd')

    def test_unit_status_to_dict(self):
        applied_at = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        status = UnitStatus(1, 'create_artists', UnitStatus.APPLIED, applied_at)
        assert status.to_dict() == {
            'order_key': 1,
            'name': 'create_artists',
            'state': 'applied',
            'applied_at': '2024-05-01T12:00:00+00:00',
            'modified': False,
        }
        assert UnitStatus(2, 'x', UnitStatus.PENDING).to_dict()['applied_at'] is None


class TestErrors:
    """Test error codes, messages and structured output."""

    def test_message_carries_code(self):
        error = ConfigurationError("lock.wait_timeout must be >= 0")
        assert str(error) == "[CONFIG_INVALID] lock.wait_timeout must be >= 0"
        assert error.exit_code == 2

    def test_unit_and_cause(self, artists):
        unit = MigrationUnit.create(3, 'add_food', [artists])
        cause = AdapterIntegrityError("constraint failed")
        error = MigrationFailedError("boom", unit=unit, cause=cause, completed=[1, 2])

        assert error.unit_label == '3_add_food'
        assert error.completed == [1, 2]
        assert error.to_dict() == {
            'code': 'MIGRATION_FAILED',
            'message': 'boom',
            'unit': '3_add_food',
            'cause': '[ADAPTER_INTEGRITY] constraint failed',
            'details': {},
        }

    def test_completed_is_copied(self):
        completed = [1]
        error = RunCancelledError("stopped", completed=completed)
        completed.append(2)
        assert error.completed == [1]

    def test_lock_contention_holder(self):
        error = LockContentionError("busy", holder='host:1:abc')
        assert error.holder == 'host:1:abc'
        assert error.exit_code == 18

    def test_validation_failed_details(self):
        warning = ValidationWarning(WarningLevel.ERROR, "Unmatched parentheses", 1, 'x', 'syntax')
        error = ValidationFailedError("1 error", warnings=[warning])
        assert error.details == {'errors': [warning.to_dict()]}

    def test_exit_codes_distinct(self):
        from schemaflow import errors

        codes = {}
        for name in dir(errors):
            cls = getattr(errors, name)
            if isinstance(cls, type) and issubclass(cls, errors.MigrationError) \
                    and cls is not errors.AdapterIntegrityError and not name.startswith('_'):
                assert cls.exit_code not in codes, f"{name} shares exit code with {codes.get(cls.exit_code)}"
                codes[cls.exit_code] = name
