"""
inventory_services.ledger_scope -- atomic unit of work over (product, warehouse) pairs.

Responsibility:
    Runs a piece of ledger work with the pair locks it needs, inside one
    database transaction, with every kernel service wired once against that
    transaction's session.  Concurrency conflicts are retried a bounded
    number of times before surfacing as BusyError.

Architecture position:
    Services -- stateful orchestration over engines + kernel.  LedgerContext
    is the per-transaction dependency container; LedgerScope owns the
    transaction boundary (commit/rollback), which kernel services never do.

Invariants enforced:
    - Writers on the same pair are serialized (in-process pair locks, plus
      SELECT ... FOR UPDATE on the stock-level rows / BEGIN IMMEDIATE on
      SQLite); writers on disjoint pairs do not wait for each other.
    - All-or-nothing: if ``work`` raises, the transaction is rolled back and
      nothing it wrote survives.
    - Only concurrency conflicts are retried.  Validation errors and
      invariant violations propagate on the first attempt.

Failure modes:
    - BusyError after ``max_retries`` retries of a lock timeout,
      OperationalError (database busy / deadlock / serialization failure)
      or a lost optimistic version check (OptimisticLockError, StaleDataError).
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from typing import TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from inventory_config import InventoryConfig
from inventory_kernel.db.engine import READ_ONLY_OPTION
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.values import PairKey
from inventory_kernel.exceptions import BusyError, OptimisticLockError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.selectors.lot_selector import LotSelector
from inventory_kernel.selectors.movement_selector import MovementSelector
from inventory_kernel.selectors.planning_selector import PlanningSelector
from inventory_kernel.selectors.stock_selector import StockSelector
from inventory_kernel.services.bom_registry import BomRegistry
from inventory_kernel.services.lot_registry import LotRegistry
from inventory_kernel.services.movement_journal import MovementJournal
from inventory_kernel.services.outbox import EventOutbox
from inventory_kernel.services.pair_locks import PairLockManager, PairLockTimeout
from inventory_kernel.services.stock_ledger import StockLedger

logger = get_logger("services.ledger_scope")

T = TypeVar("T")

_RETRYABLE = (PairLockTimeout, OperationalError, StaleDataError, OptimisticLockError)


class LedgerContext:
    """Every kernel service and selector, constructed once per transaction.

    Contract:
        All members share one Session and one Clock.
    Non-goals:
        - Does NOT commit or roll back; LedgerScope does.
    """

    def __init__(self, session: Session, clock: Clock, config: InventoryConfig):
        self.session = session
        self.clock = clock
        self.config = config

        self.outbox = EventOutbox(session, clock)
        self.lots = LotRegistry(
            session, clock, self.outbox, require_inspection=config.require_inspection
        )
        self.ledger = StockLedger(session, clock, self.outbox)
        self.journal = MovementJournal(session, clock, self.lots, self.ledger)
        self.boms = BomRegistry(session, clock)

        self.lot_selector = LotSelector(session, clock)
        self.stock_selector = StockSelector(session, clock)
        self.movement_selector = MovementSelector(session, clock)
        self.planning = PlanningSelector(session, clock)

    def refresh_lot_pair(self, lot_number: str) -> None:
        """Recompute the stock level holding a lot after a state change."""
        lot = self.lot_selector.get(lot_number)
        self.ledger.recompute(lot.product_code, lot.warehouse_code)


class LedgerScope:
    """
    Transaction runner with pair locking and bounded retry.

    Contract:
        ``run(keys, work)`` calls ``work(ctx)`` with a fresh LedgerContext
        while holding the locks for ``keys``, commits, and returns work's
        result.  ``work`` may be called more than once (on retry), so it
        must not have side effects outside the session.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        config: InventoryConfig | None = None,
        clock: Clock | None = None,
        locks: PairLockManager | None = None,
    ):
        self.session_factory = session_factory
        self.config = config or InventoryConfig()
        self.clock = clock or SystemClock()
        self.locks = locks or PairLockManager(self.config.lock_timeout_seconds)

    def run(self, keys: Iterable[PairKey], work: Callable[[LedgerContext], T]) -> T:
        """Run ``work`` atomically with respect to other writers on ``keys``.

        Raises:
            BusyError: conflicts persisted past the retry budget.
        """
        ordered = tuple(sorted(set(keys)))
        labels = tuple(k.label for k in ordered)
        attempts = self.config.max_retries + 1

        attempt = 0
        while True:
            attempt += 1
            try:
                with self.locks.hold(ordered):
                    return self._run_once(ordered, work)
            except _RETRYABLE as exc:
                if attempt >= attempts:
                    logger.error(
                        "ledger_scope_busy",
                        extra={
                            "pairs": list(labels),
                            "attempts": attempt,
                            "error_type": type(exc).__name__,
                        },
                    )
                    raise BusyError(labels, attempt) from exc
                delay = self.config.retry_backoff_seconds * attempt
                logger.warning(
                    "ledger_scope_retry",
                    extra={
                        "pairs": list(labels),
                        "attempt": attempt,
                        "delay_seconds": delay,
                        "error_type": type(exc).__name__,
                    },
                )
                time.sleep(delay)

    def _run_once(
        self, ordered: tuple[PairKey, ...], work: Callable[[LedgerContext], T]
    ) -> T:
        session = self.session_factory()
        try:
            ctx = LedgerContext(session, self.clock, self.config)
            # Row locks in the same sorted order as the pair locks
            ctx.ledger.lock_existing(ordered)
            result = work(ctx)
            session.commit()
            logger.debug("ledger_scope_committed", extra={"pair_count": len(ordered)})
            return result
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def read(self, work: Callable[[LedgerContext], T]) -> T:
        """Run read-only ``work`` without pair locks; nothing is committed."""
        session = self.session_factory()
        try:
            session.connection(execution_options={READ_ONLY_OPTION: True})
            return work(LedgerContext(session, self.clock, self.config))
        finally:
            session.rollback()
            session.close()

