#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Configuration loading and logging setup.

Config files are JSON by default, YAML when the name ends in .yaml/.yml:

    database_url: postgresql://migrator@db/app
    migrations_dir: db/migrations
    ledger_table: schema_migrations
    lock_table: schema_migrations_lock
    lock:
      lease_seconds: 60
      wait_timeout: 30
      poll_interval: 0.5
    logging:
      level: info
      file: migrations.log

Environment variables SCHEMAFLOW_DATABASE_URL and SCHEMAFLOW_MIGRATIONS_DIR
override the file; explicit overrides (command-line options) override both.
"""
import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import yaml

from .errors import ConfigurationError

ENV_DATABASE_URL = 'SCHEMAFLOW_DATABASE_URL'
ENV_MIGRATIONS_DIR = 'SCHEMAFLOW_MIGRATIONS_DIR'

LOG_FORMAT = '[%(asctime).19s] [%(name)s] [%(levelname)s] %(message)s'
LOG_LEVELS = ('debug', 'info', 'warning', 'error', 'critical')

TABLE_NAME_PATTERN = re.compile(r'^[A-Za-z_][A-Za-z0-9_]{0,62}$')


class RobustFileHandler(logging.FileHandler):
    """FileHandler that tolerates flush errors on Windows"""

    def flush(self):
        """Flush the stream, ignoring EINVAL from Windows file handles"""
        try:
            super().flush()
        except OSError as e:
            if e.errno != 22:  # EINVAL
                raise


def configure_logger(logger,
                     log_file=None,
                     log_format=None,
                     log_level=logging.INFO):
    """Configure a logger with a file or stream handler

    Args:
        logger: Logger instance or logger name string
        log_file: File path string or file-like object (None for stderr)
        log_format: Format string for log messages
        log_level: Logging level (e.g., logging.INFO, logging.DEBUG)

    Returns:
        Configured logger instance
    """
    if isinstance(log_file, str):
        handler = RobustFileHandler(
            log_file,
            mode='a',
            encoding='utf-8',
            errors='replace'
        )
    else:
        handler = logging.StreamHandler(log_file)  # Default to stderr if None

    if isinstance(logger, str):
        logger = logging.getLogger(logger)

    handler.setFormatter(logging.Formatter(log_format or LOG_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(log_level)

    return logger


@dataclass
class LockConfig:
    """Migration lock settings (seconds)."""
    lease_seconds: float = 60.0
    wait_timeout: float = 0.0
    poll_interval: float = 0.5


@dataclass
class Config:
    """
    Resolved runner configuration.

    Attributes:
        database_url: SQLAlchemy URL or SQLite file path
        migrations_dir: Directory of migration definition files
        ledger_table: Name of the applied-migrations table
        lock_table: Name of the run lock table
        lock: Lock lease/wait settings
        log_level: Logging level name ('debug', 'info', ...)
        log_file: Optional log file path
    """
    database_url: str = 'sqlite+aiosqlite:///schemaflow.db'
    migrations_dir: str = 'migrations'
    ledger_table: str = 'schema_migrations'
    lock_table: str = 'schema_migrations_lock'
    lock: LockConfig = field(default_factory=LockConfig)
    log_level: str = 'info'
    log_file: Optional[str] = None

    @property
    def logging_level(self) -> int:
        return getattr(logging, self.log_level.upper())


def read_config_file(config_file: str) -> dict:
    """Load a JSON or YAML config file into a dict.

    Raises:
        ConfigurationError: If the file cannot be read or parsed
    """
    try:
        with open(config_file, 'r', encoding='utf-8') as fp:
            if config_file.endswith(('.yaml', '.yml')):
                conf = yaml.safe_load(fp)
            else:
                conf = json.load(fp)
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {config_file}: {e}", cause=e) from e
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot parse config file {config_file}: {e}", cause=e) from e

    if conf is None:
        return {}
    if not isinstance(conf, dict):
        raise ConfigurationError(f"Config file {config_file} must contain a mapping")
    return conf


def _number(section: Mapping[str, Any], key: str, default: float, minimum: float,
            strict: bool) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"lock.{key} must be a number, got {value!r}")
    if value < minimum or (strict and value == minimum):
        bound = '>' if strict else '>='
        raise ConfigurationError(f"lock.{key} must be {bound} {minimum}, got {value}")
    return float(value)


def build_config(conf: Mapping[str, Any]) -> Config:
    """
    Validate a raw config mapping and build a Config.

    Raises:
        ConfigurationError: On unknown keys or invalid values
    """
    known = {'database_url', 'migrations_dir', 'ledger_table', 'lock_table', 'lock', 'logging'}
    unknown = set(conf) - known
    if unknown:
        raise ConfigurationError(f"Unknown config key(s): {', '.join(sorted(unknown))}")

    defaults = Config()
    config = Config()

    for key in ('database_url', 'migrations_dir', 'ledger_table', 'lock_table'):
        value = conf.get(key, getattr(defaults, key))
        if not isinstance(value, str) or not value:
            raise ConfigurationError(f"{key} must be a non-empty string, got {value!r}")
        setattr(config, key, value)

    for key in ('ledger_table', 'lock_table'):
        if not TABLE_NAME_PATTERN.match(getattr(config, key)):
            raise ConfigurationError(f"{key} is not a valid table name: {getattr(config, key)!r}")
    if config.ledger_table == config.lock_table:
        raise ConfigurationError("ledger_table and lock_table must differ")

    lock_conf = conf.get('lock') or {}
    if not isinstance(lock_conf, dict):
        raise ConfigurationError("lock must be a mapping")
    unknown = set(lock_conf) - {'lease_seconds', 'wait_timeout', 'poll_interval'}
    if unknown:
        raise ConfigurationError(f"Unknown lock key(s): {', '.join(sorted(unknown))}")
    config.lock = LockConfig(
        lease_seconds=_number(lock_conf, 'lease_seconds', defaults.lock.lease_seconds, 0, True),
        wait_timeout=_number(lock_conf, 'wait_timeout', defaults.lock.wait_timeout, 0, False),
        poll_interval=_number(lock_conf, 'poll_interval', defaults.lock.poll_interval, 0, True),
    )

    logging_conf = conf.get('logging') or {}
    if not isinstance(logging_conf, dict):
        raise ConfigurationError("logging must be a mapping")
    config.log_level = str(logging_conf.get('level', defaults.log_level)).lower()
    if config.log_level not in LOG_LEVELS:
        raise ConfigurationError(
            f"logging.level must be one of {', '.join(LOG_LEVELS)}, got {config.log_level!r}"
        )
    config.log_file = logging_conf.get('file')

    return config


def load_config(config_file: Optional[str] = None,
                environ: Optional[Mapping[str, str]] = None,
                overrides: Optional[Mapping[str, Any]] = None) -> Config:
    """Load configuration from file, environment and explicit overrides

    Args:
        config_file: Optional JSON/YAML config path
        environ: Environment mapping (defaults to os.environ)
        overrides: Values taking precedence over file and environment;
            None values are ignored. Keys: database_url, migrations_dir,
            log_level

    Returns:
        Validated Config

    Raises:
        ConfigurationError: If the file or a value is invalid
    """
    conf = dict(read_config_file(config_file)) if config_file else {}
    environ = os.environ if environ is None else environ

    if environ.get(ENV_DATABASE_URL):
        conf['database_url'] = environ[ENV_DATABASE_URL]
    if environ.get(ENV_MIGRATIONS_DIR):
        conf['migrations_dir'] = environ[ENV_MIGRATIONS_DIR]

    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if key == 'log_level':
            conf['logging'] = dict(conf.get('logging') or {}, level=value)
        else:
            conf[key] = value

    return build_config(conf)
