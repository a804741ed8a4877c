"""
Tests for the command-line runner.

Runs main() end to end against a SQLite file in tmp_path and checks
output and exit codes.
"""

import json

import pytest

from schemaflow.cli import build_parser, main


@pytest.fixture
def cli(tmp_path, migrations_dir, monkeypatch):
    """Invoke main() with database and migrations options filled in."""
    monkeypatch.delenv('SCHEMAFLOW_DATABASE_URL', raising=False)
    monkeypatch.delenv('SCHEMAFLOW_MIGRATIONS_DIR', raising=False)
    db_path = tmp_path / "cli.db"

    def _run(*args):
        return main([
            '--database-url', str(db_path),
            '--migrations-dir', str(migrations_dir),
            '--log-level', 'warning',
            *args,
        ])
    return _run


@pytest.fixture
def two_migrations(write_migration):
    write_migration("001_create_artists.yaml", """
        up:
          - create_table:
              table: artists
              columns:
                - {name: id, type: integer, primary_key: true}
                - {name: name, type: string}
    """)
    write_migration("002_add_favorite_food.sql", """
        -- UP
        ALTER TABLE artists ADD COLUMN favorite_food TEXT;
        -- DOWN
        ALTER TABLE artists DROP COLUMN favorite_food;
    """)


class TestParser:

    def test_subcommand_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_defaults(self):
        args = build_parser().parse_args(['rollback'])
        assert args.steps == 1
        assert not args.dry_run

    def test_migrate_options(self):
        args = build_parser().parse_args(['migrate', '--limit', '2', '--dry-run', '--timeout', '5'])
        assert (args.limit, args.dry_run, args.timeout) == (2, True, 5.0)

    @pytest.mark.parametrize('argv', [
        ['migrate', '--limit', '-1'],
        ['rollback', '--steps', '-1'],
        ['rollback', '--steps', 'two'],
    ])
    def test_counts_must_be_non_negative(self, argv, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(argv)
        assert exc_info.value.code == 2
        assert 'Traceback' not in capsys.readouterr().err


class TestCommands:

    def test_migrate_and_status(self, cli, two_migrations, capsys):
        assert cli('migrate') == 0
        out = capsys.readouterr().out
        assert '✓ Applied 2 migration(s):' in out
        assert '  - 1: create_artists' in out
        assert '  - 2: add_favorite_food' in out

        assert cli('migrate') == 0
        assert 'No pending migrations' in capsys.readouterr().out

        assert cli('status', '--json') == 0
        report = json.loads(capsys.readouterr().out)
        assert [(e['order_key'], e['state']) for e in report] == [(1, 'applied'), (2, 'applied')]

    def test_status_table(self, cli, two_migrations, capsys):
        assert cli('migrate', '--limit', '1') == 0
        capsys.readouterr()

        assert cli('status') == 0
        lines = capsys.readouterr().out.splitlines()
        assert 'applied' in lines[0] and 'create_artists' in lines[0]
        assert 'pending' in lines[1] and 'add_favorite_food' in lines[1]

    def test_rollback(self, cli, two_migrations, capsys):
        cli('migrate')
        capsys.readouterr()

        assert cli('rollback', '--steps', '2') == 0
        out = capsys.readouterr().out
        assert '✓ Reverted 2 migration(s):' in out
        assert out.index('- 2:') < out.index('- 1:')

        assert cli('rollback') == 0
        assert 'Nothing to roll back' in capsys.readouterr().out

    def test_dry_run(self, cli, two_migrations, capsys):
        assert cli('migrate', '--dry-run') == 0
        assert 'would apply 2 migration(s)' in capsys.readouterr().out

        cli('status', '--json')
        report = json.loads(capsys.readouterr().out)
        assert {e['state'] for e in report} == {'pending'}

    def test_forget(self, cli, two_migrations, capsys):
        cli('migrate')
        capsys.readouterr()

        assert cli('forget', '2') == 0
        assert 'Removed ledger record for migration 2' in capsys.readouterr().out

        assert cli('forget', '2') == 13
        assert '[NOT_FOUND]' in capsys.readouterr().err

    def test_failure_exit_code_and_report(self, cli, write_migration, capsys):
        write_migration("001_ok.sql", "-- UP\nCREATE TABLE a (id INTEGER);\n-- DOWN\nDROP TABLE a;\n")
        write_migration("002_broken.sql", "-- UP\nALTER TABLE missing ADD COLUMN x INTEGER;\n-- DOWN\nSELECT 1;\n")

        assert cli('migrate') == 16
        err = capsys.readouterr().err
        assert '✗ [MIGRATION_FAILED]' in err
        assert 'Migration: 2_broken' in err
        assert 'Cause:' in err
        assert 'Completed before failure: 1' in err

    def test_duplicate_key_exit_code(self, cli, write_migration, capsys):
        write_migration("001_a.sql", "-- UP\nSELECT 1;\n-- DOWN\nSELECT 1;\n")
        write_migration("01_b.sql", "-- UP\nSELECT 1;\n-- DOWN\nSELECT 1;\n")

        assert cli('status') == 10
        assert '[DUPLICATE_KEY]' in capsys.readouterr().err

    def test_unknown_database_dialect(self, tmp_path, migrations_dir, capsys):
        code = main([
            '--database-url', 'nosuchdb://host/db',
            '--migrations-dir', str(migrations_dir),
            'status',
        ])
        assert code == 2
        assert '✗ [CONFIG_INVALID] Invalid database URL' in capsys.readouterr().err

    def test_invalid_config_exit_code(self, cli, tmp_path, capsys):
        config = tmp_path / "bad.json"
        config.write_text(json.dumps({'lock': {'wait_timeout': -5}}))

        assert cli('--config', str(config), 'status') == 2
        assert '[CONFIG_INVALID]' in capsys.readouterr().err
