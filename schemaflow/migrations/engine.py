#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Migration engine: applies and reverts migration units.

Runs each unit inside its own store transaction together with the ledger
write that records it, so a unit is either fully applied and recorded or
not applied at all. Runs are serialized across processes by the
migration lock.

Usage:
    store = SQLAlchemyStore('sqlite+aiosqlite:///app.db')
    registry = MigrationRegistry(DirectorySource(Path('db/migrations')))
    engine = MigrationEngine(store, registry)

    await engine.migrate()          # apply all pending units
    await engine.rollback(steps=1)  # revert the most recent unit
    await engine.status()           # applied / pending / orphaned report
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional

from ..errors import (
    IrreversibleMigrationError,
    MigrationFailedError,
    MissingDefinitionError,
    RollbackFailedError,
    RunCancelledError,
    ValidationFailedError,
)
from ..storage.adapter import StoreAdapter, Transaction
from ..storage.lock import MigrationLock
from .ledger import MigrationLedger, ledger_sort_key
from .migration import MigrationUnit, OrderKey, UnitStatus, parse_order_key
from .registry import MigrationRegistry
from .validator import MigrationValidator, WarningLevel

UnitStep = Callable[[Transaction, MigrationUnit], Awaitable[None]]

_VERBS = {
    'apply': ('Applying', 'Applied'),
    'revert': ('Reverting', 'Reverted'),
}


class MigrationEngine:
    """
    Applies, reverts and reports on migration units.

    Attributes:
        store: Store adapter the units run against
        registry: Source of migration units
        ledger: Record of applied units
        lock: Cross-process run lock
        validator: Pre-flight checks for pending units

    Example:
        engine = MigrationEngine(store, registry)
        applied = await engine.migrate(limit=2)
        # [1, 2]
    """

    def __init__(
        self,
        store: StoreAdapter,
        registry: MigrationRegistry,
        ledger: Optional[MigrationLedger] = None,
        lock: Optional[MigrationLock] = None,
        validator: Optional[MigrationValidator] = None,
    ):
        self.store = store
        self.registry = registry
        self.ledger = ledger or MigrationLedger(store)
        self.lock = lock or MigrationLock(store)
        self.validator = validator or MigrationValidator(store.dialect.name)
        self.logger = logging.getLogger(__name__)

    async def pending(self) -> List[MigrationUnit]:
        """Units not yet recorded in the ledger, in application order."""
        units = self.registry.discover()
        await self.ledger.ensure_initialized()
        applied = await self.ledger.applied_keys()
        return [u for u in units if u.ledger_key not in applied]

    async def migrate(
        self,
        limit: Optional[int] = None,
        *,
        dry_run: bool = False,
        cancel_event: Optional[asyncio.Event] = None,
        deadline: Optional[float] = None,
    ) -> List[OrderKey]:
        """
        Apply pending units in ascending order.

        Args:
            limit: Apply at most this many units (None = all)
            dry_run: Run every unit in one transaction and roll it back
            cancel_event: Stop between units once set
            deadline: time.monotonic() value after which to stop between units

        Returns:
            Order keys applied (or, for dry runs, that would be applied)

        Raises:
            ValueError: If limit is negative
            DuplicateKeyError, MalformedUnitError: From discovery
            LockContentionError: If another run holds the lock
            ValidationFailedError: If a pending unit fails validation
            MigrationFailedError: If a unit fails; earlier units stay applied
            RunCancelledError: If cancelled between units
        """
        if limit is not None and limit < 0:
            raise ValueError(f"limit must be >= 0, got {limit}")
        if limit == 0:
            return []

        units = self.registry.discover()

        await self.lock.ensure_initialized()
        async with self.lock.hold():
            await self.ledger.ensure_initialized()
            records = {r.order_key: r for r in await self.ledger.records()}

            known = {u.ledger_key for u in units}
            orphaned = [key for key in records if key not in known]
            if orphaned:
                self.logger.warning(
                    'Ledger records migrations with no definition (ignored): %s',
                    ', '.join(orphaned)
                )

            for unit in units:
                record = records.get(unit.ledger_key)
                if record is not None:
                    for warning in self.validator.verify_checksum(unit, record.checksum):
                        self.logger.warning('%r', warning)

            pending = [u for u in units if u.ledger_key not in records]
            if limit is not None:
                pending = pending[:limit]

            if not pending:
                self.logger.info('No pending migrations')
                return []

            self._validate(pending)

            self.logger.info(
                'Applying %d migration(s)%s', len(pending), ' (DRY RUN)' if dry_run else ''
            )
            return await self._run_units(
                pending, self._apply_step, MigrationFailedError, 'apply',
                dry_run, cancel_event, deadline,
            )

    async def rollback(
        self,
        steps: int = 1,
        *,
        dry_run: bool = False,
        cancel_event: Optional[asyncio.Event] = None,
        deadline: Optional[float] = None,
    ) -> List[OrderKey]:
        """
        Revert the most recently applied units, newest first.

        Every selected unit is checked for a revert section before the
        first revert runs, so an irreversible unit anywhere in the batch
        fails the whole call with the ledger and schema unchanged.

        Args:
            steps: Number of units to revert
            dry_run: Run every revert in one transaction and roll it back
            cancel_event: Stop between units once set
            deadline: time.monotonic() value after which to stop between units

        Returns:
            Order keys reverted, in the order they were reverted

        Raises:
            ValueError: If steps is negative
            MissingDefinitionError: If an applied unit has no definition
            IrreversibleMigrationError: If a unit to revert has no revert
                section (checked before anything is reverted)
            RollbackFailedError: If a revert fails; earlier reverts stay
            RunCancelledError: If cancelled between units
        """
        if steps < 0:
            raise ValueError(f"steps must be >= 0, got {steps}")
        if steps == 0:
            return []

        units = self.registry.discover()
        by_key = {u.ledger_key: u for u in units}

        await self.lock.ensure_initialized()
        async with self.lock.hold():
            await self.ledger.ensure_initialized()
            applied = await self.ledger.applied_keys()

            missing = sorted(applied - set(by_key), key=ledger_sort_key)
            if missing:
                raise MissingDefinitionError(
                    f"Cannot roll back: applied migration(s) {', '.join(missing)} "
                    f"have no definition",
                    details={'keys': missing},
                )

            candidates = sorted((by_key[key] for key in applied), reverse=True)[:steps]
            if not candidates:
                self.logger.info('No applied migrations to roll back')
                return []

            for unit in candidates:
                if unit.irreversible:
                    raise IrreversibleMigrationError(
                        f"Migration {unit.label} is irreversible", unit=unit
                    )

            self.logger.info(
                'Rolling back %d migration(s)%s', len(candidates), ' (DRY RUN)' if dry_run else ''
            )
            return await self._run_units(
                candidates, self._revert_step, RollbackFailedError, 'revert',
                dry_run, cancel_event, deadline,
            )

    async def status(self) -> List[UnitStatus]:
        """
        Report every known unit and every orphaned ledger record.

        Defined units come first in registry order, then ledger records
        whose definition no longer exists. Does not take the lock.
        """
        units = self.registry.discover()
        await self.ledger.ensure_initialized()
        records = {r.order_key: r for r in await self.ledger.records()}

        report = []
        for unit in units:
            record = records.pop(unit.ledger_key, None)
            if record is None:
                report.append(UnitStatus(unit.order_key, unit.name, UnitStatus.PENDING))
            else:
                report.append(UnitStatus(
                    unit.order_key,
                    unit.name,
                    UnitStatus.APPLIED,
                    applied_at=record.applied_at,
                    modified=record.checksum != unit.checksum,
                ))

        for record in records.values():
            report.append(UnitStatus(
                parse_order_key(record.order_key),
                record.name,
                UnitStatus.ORPHANED,
                applied_at=record.applied_at,
            ))
        return report

    async def forget(self, order_key: OrderKey) -> None:
        """
        Erase a ledger record without running its revert.

        Repairs drift, e.g. an orphaned record whose definition was deleted
        or a unit whose schema change was undone by hand.

        Raises:
            NotFoundError: If the ledger holds no record for the key
        """
        key = str(order_key)
        await self.lock.ensure_initialized()
        async with self.lock.hold():
            await self.ledger.ensure_initialized()
            async with await self.store.begin() as tx:
                await self.ledger.erase(tx, key)
        self.logger.warning('Removed ledger record for migration %s (schema left unchanged)', key)

    def _validate(self, units: List[MigrationUnit]) -> None:
        warnings = self.validator.validate_units(units)
        errors = [w for w in warnings if w.level == WarningLevel.ERROR]
        for warning in warnings:
            if warning.level == WarningLevel.INFO:
                self.logger.info('%r', warning)
            elif warning.level == WarningLevel.WARNING:
                self.logger.warning('%r', warning)
            else:
                self.logger.error('%r', warning)
        if errors:
            raise ValidationFailedError(
                f"{len(errors)} validation error(s) in pending migrations; "
                f"first: {errors[0]!r}",
                warnings=errors,
            )

    async def _apply_step(self, tx: Transaction, unit: MigrationUnit) -> None:
        for change in unit.apply:
            for statement in change.render(self.store.dialect):
                await tx.execute(statement)
        await self.ledger.record(tx, unit)

    async def _revert_step(self, tx: Transaction, unit: MigrationUnit) -> None:
        for change in unit.revert:
            for statement in change.render(self.store.dialect):
                await tx.execute(statement)
        await self.ledger.erase(tx, unit.ledger_key, unit)

    def _check_cancelled(self, cancel_event, deadline, completed, verb) -> None:
        reason = None
        if cancel_event is not None and cancel_event.is_set():
            reason = 'cancelled'
        elif deadline is not None and time.monotonic() >= deadline:
            reason = 'deadline exceeded'
        if reason is not None:
            raise RunCancelledError(
                f"Stopped before next {verb}: {reason} ({len(completed)} unit(s) completed)",
                completed=completed,
                details={'reason': reason},
            )

    async def _run_units(
        self,
        units: List[MigrationUnit],
        step: UnitStep,
        error_cls: type,
        verb: str,
        dry_run: bool,
        cancel_event: Optional[asyncio.Event],
        deadline: Optional[float],
    ) -> List[OrderKey]:
        completed: List[OrderKey] = []

        if dry_run:
            # One transaction so later units see earlier units' changes
            await self.lock.refresh()
            tx = await self.store.begin()
            try:
                for unit in units:
                    self._check_cancelled(cancel_event, deadline, completed, verb)
                    await self._run_unit(unit, step, error_cls, verb, completed, tx)
                    completed.append(unit.order_key)
            finally:
                await tx.rollback()
            self.logger.info('Dry run complete, rolled back %d migration(s)', len(completed))
            return completed

        for unit in units:
            self._check_cancelled(cancel_event, deadline, completed, verb)
            await self.lock.refresh()
            await self._run_unit(unit, step, error_cls, verb, completed)
            completed.append(unit.order_key)
        return completed

    async def _run_unit(
        self,
        unit: MigrationUnit,
        step: UnitStep,
        error_cls: type,
        verb: str,
        completed: List[OrderKey],
        tx: Optional[Transaction] = None,
    ) -> None:
        start_time = time.monotonic()
        self.logger.info('%s migration %s', _VERBS[verb][0], unit.label)
        try:
            if tx is not None:
                await step(tx, unit)
            else:
                async with await self.store.begin() as own_tx:
                    await step(own_tx, unit)
        except Exception as e:
            execution_time_ms = int((time.monotonic() - start_time) * 1000)
            self.logger.error(
                'Failed to %s migration %s (%dms): %s', verb, unit.label, execution_time_ms, e
            )
            raise error_cls(
                f"Failed to {verb} migration {unit.label}: {e}",
                unit=unit,
                cause=e,
                completed=completed,
            ) from e

        execution_time_ms = int((time.monotonic() - start_time) * 1000)
        self.logger.info('%s migration %s (%dms)', _VERBS[verb][1], unit.label, execution_time_ms)
