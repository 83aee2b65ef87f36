"""
StockLedger -- the cached per-(product, warehouse) aggregate.

Responsibility:
    Recomputes StockLevel rows from lots (lot-tracked products) or from the
    raw journal sum (untracked products), numbers movements per pair, keeps
    threshold configuration and reservations, and emits LowStock when a
    recompute moves a pair into a short state.

Architecture position:
    Kernel > Services.  Called by MovementJournal inside the same
    transaction as the movement that changed the pair.

Invariants enforced:
    - Quantity fields are never hand-edited: recompute() is the only writer.
    - available = on_hand - reserved.
    - Reservations never exceed available quantity at the time they are made.
    - StockLevel.version guards against lost updates from another session.

Failure modes:
    - InvalidThresholdError from set_thresholds().
    - InsufficientStockError from reserve().
    - InvalidQuantityError for non-positive reservations.
    - OptimisticLockError when another session bumped the level version.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from inventory_kernel.domain.alerts import classify_stock, is_short
from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.dtos import StockLevelSnapshot
from inventory_kernel.domain.events import DomainEventType
from inventory_kernel.domain.lot_state import effective_availability
from inventory_kernel.domain.values import ZERO, AvailabilityStatus, PairKey
from inventory_kernel.exceptions import (
    InsufficientStockError,
    InvalidQuantityError,
    InvalidThresholdError,
    OptimisticLockError,
    UnknownReferenceError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.lot import Lot
from inventory_kernel.models.reference import Product
from inventory_kernel.models.stock import StockLevel, StockReservation
from inventory_kernel.selectors.movement_selector import MovementSelector
from inventory_kernel.services.base import BaseService
from inventory_kernel.services.outbox import EventOutbox

logger = get_logger("services.stock_ledger")

_BLOCKED = frozenset({AvailabilityStatus.QUARANTINE, AvailabilityStatus.EXPIRED})

_UNSET = object()


class StockLedger(BaseService):
    """Write side of the stock ledger."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        outbox: EventOutbox | None = None,
    ):
        super().__init__(session, clock)
        self.outbox = outbox or EventOutbox(session, self.clock)

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    def _find(self, key: PairKey, for_update: bool = True) -> StockLevel | None:
        stmt = select(StockLevel).where(
            StockLevel.product_code == key.product_code,
            StockLevel.warehouse_code == key.warehouse_code,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.scalar(stmt)

    def ensure_level(self, key: PairKey) -> StockLevel:
        """Locked StockLevel row for the pair, created on first use."""
        level = self._find(key)
        if level is not None:
            return level
        # Another process may create the row at the same moment
        savepoint = self.session.begin_nested()
        try:
            level = StockLevel(
                product_code=key.product_code,
                warehouse_code=key.warehouse_code,
                on_hand_quantity=ZERO,
                reserved_quantity=ZERO,
                available_quantity=ZERO,
                blocked_quantity=ZERO,
                movement_count=0,
            )
            self.session.add(level)
            self.session.flush()
            savepoint.commit()
            logger.debug("stock_level_created", extra={"pair": key.label})
            return level
        except IntegrityError as exc:
            savepoint.rollback()
            logger.debug("stock_level_create_race_retry", extra={"pair": key.label})
            level = self._find(key)
            if level is None:
                # Not a race: the product or warehouse does not exist
                raise UnknownReferenceError("stock pair", key.label) from exc
            return level

    def lock_existing(self, keys: Iterable[PairKey]) -> int:
        """Row-lock the stock levels that already exist for ``keys``, in order."""
        locked = 0
        for key in sorted(set(keys)):
            if self._find(key) is not None:
                locked += 1
        return locked

    def _flush_level(self, key: PairKey) -> None:
        try:
            self.session.flush()
        except StaleDataError as exc:
            raise OptimisticLockError(key.product_code, key.warehouse_code) from exc

    def next_seq(self, key: PairKey, at: datetime) -> int:
        """Number the next movement whose primary pair is ``key``."""
        level = self.ensure_level(key)
        level.movement_count += 1
        level.last_movement_at = at
        self._flush_level(key)
        return level.movement_count

    # ------------------------------------------------------------------
    # Recompute
    # ------------------------------------------------------------------

    def recompute(self, product_code: str, warehouse_code: str) -> StockLevelSnapshot:
        """
        Fold lots (or the raw journal) into the cached aggregate.

        This is the authoritative recomputation path; the quantity fields are
        never written anywhere else.
        """
        key = PairKey(product_code, warehouse_code)
        level = self.ensure_level(key)
        before = classify_stock(
            level.on_hand_quantity,
            level.available_quantity,
            level.min_stock_alert,
            level.max_stock_alert,
            level.reorder_point,
        )

        on_hand, blocked = self._fold(key)
        reserved = self._open_reserved(key)

        level.on_hand_quantity = on_hand
        level.reserved_quantity = reserved
        level.available_quantity = on_hand - reserved
        level.blocked_quantity = blocked
        self._flush_level(key)

        snapshot = StockLevelSnapshot.from_model(level)
        after = snapshot.alerts
        logger.debug(
            "stock_level_recomputed",
            extra={
                "pair": key.label,
                "on_hand": on_hand,
                "reserved": reserved,
                "available": snapshot.available_quantity,
                "blocked": blocked,
            },
        )
        if is_short(after) and not is_short(before):
            self._emit_low_stock(snapshot)
        return snapshot

    def _fold(self, key: PairKey) -> tuple[Decimal, Decimal]:
        tracked = self.session.scalar(
            select(Product.is_lot_tracked).where(Product.code == key.product_code)
        )
        lots = self.session.scalars(
            select(Lot).where(
                Lot.product_code == key.product_code,
                Lot.warehouse_code == key.warehouse_code,
                Lot.availability_status != AvailabilityStatus.DEPLETED.value,
            )
        ).all()
        today = self.clock.today()
        blocked = ZERO
        lot_total = ZERO
        for lot in lots:
            lot_total += lot.remaining_quantity
            status = effective_availability(
                lot.availability_status, lot.remaining_quantity, lot.expiry_date, today
            )
            if status in _BLOCKED:
                blocked += lot.remaining_quantity
        if tracked:
            return lot_total, blocked
        on_hand = MovementSelector(self.session, self.clock).pair_balance(
            key.product_code, key.warehouse_code
        )
        return on_hand, blocked

    def _open_reserved(self, key: PairKey) -> Decimal:
        total = self.session.scalar(
            select(func.coalesce(func.sum(StockReservation.quantity), 0)).where(
                StockReservation.product_code == key.product_code,
                StockReservation.warehouse_code == key.warehouse_code,
                StockReservation.is_open.is_(True),
            )
        )
        return Decimal(str(total))

    def _emit_low_stock(self, snapshot: StockLevelSnapshot) -> None:
        logger.warning(
            "low_stock_detected",
            extra={
                "pair": snapshot.key.label,
                "on_hand": snapshot.on_hand_quantity,
                "available": snapshot.available_quantity,
                "min_stock_alert": snapshot.min_stock_alert,
            },
        )
        self.outbox.emit(
            DomainEventType.LOW_STOCK,
            aggregate_type="stock_level",
            aggregate_id=snapshot.key.label,
            payload={
                "product_code": snapshot.product_code,
                "warehouse_code": snapshot.warehouse_code,
                "on_hand_quantity": snapshot.on_hand_quantity,
                "available_quantity": snapshot.available_quantity,
                "min_stock_alert": snapshot.min_stock_alert,
                "reorder_point": snapshot.reorder_point,
                "alerts": [a.value for a in snapshot.alerts],
            },
        )

    # ------------------------------------------------------------------
    # Thresholds
    # ------------------------------------------------------------------

    def set_thresholds(
        self,
        product_code: str,
        warehouse_code: str,
        *,
        min_stock_alert=_UNSET,
        max_stock_alert=_UNSET,
        reorder_point=_UNSET,
        reorder_quantity=_UNSET,
    ) -> StockLevelSnapshot:
        """
        Update threshold configuration; omitted arguments keep their value,
        ``None`` clears one.

        Raises:
            InvalidThresholdError: negative values, or min > max.
        """
        level = self.ensure_level(PairKey(product_code, warehouse_code))
        values = {
            "min_stock_alert": level.min_stock_alert,
            "max_stock_alert": level.max_stock_alert,
            "reorder_point": level.reorder_point,
            "reorder_quantity": level.reorder_quantity,
        }
        for name, supplied in (
            ("min_stock_alert", min_stock_alert),
            ("max_stock_alert", max_stock_alert),
            ("reorder_point", reorder_point),
            ("reorder_quantity", reorder_quantity),
        ):
            if supplied is _UNSET:
                continue
            if supplied is not None and supplied < ZERO:
                raise InvalidThresholdError(name, supplied, "must not be negative")
            values[name] = supplied

        low, high = values["min_stock_alert"], values["max_stock_alert"]
        if low is not None and high is not None and low > high:
            raise InvalidThresholdError(
                "min_stock_alert", low, f"greater than max_stock_alert {high}"
            )
        if values["reorder_quantity"] is not None and values["reorder_quantity"] == ZERO:
            raise InvalidThresholdError("reorder_quantity", ZERO, "must be positive when set")

        for name, value in values.items():
            setattr(level, name, value)
        self.session.flush()
        logger.info(
            "stock_thresholds_set",
            extra={"pair": f"{product_code}@{warehouse_code}", **values},
        )
        return StockLevelSnapshot.from_model(level)

    # ------------------------------------------------------------------
    # Reservations
    # ------------------------------------------------------------------

    def reserve(
        self,
        product_code: str,
        warehouse_code: str,
        quantity: Decimal,
        order_reference: str,
    ) -> StockLevelSnapshot:
        if quantity <= ZERO:
            raise InvalidQuantityError(quantity)
        current = self.recompute(product_code, warehouse_code)
        if current.available_quantity < quantity:
            raise InsufficientStockError(
                product_code, warehouse_code, current.available_quantity, quantity
            )
        self.session.add(
            StockReservation(
                product_code=product_code,
                warehouse_code=warehouse_code,
                quantity=quantity,
                order_reference=order_reference,
                is_open=True,
            )
        )
        self.session.flush()
        logger.info(
            "stock_reserved",
            extra={
                "pair": f"{product_code}@{warehouse_code}",
                "quantity": quantity,
                "order_reference": order_reference,
            },
        )
        return self.recompute(product_code, warehouse_code)

    def release_reservations(self, order_reference: str) -> list[PairKey]:
        """Close every open reservation held by an order; return the pairs touched."""
        rows = self.session.scalars(
            select(StockReservation).where(
                StockReservation.order_reference == order_reference,
                StockReservation.is_open.is_(True),
            )
        ).all()
        touched = sorted({PairKey(r.product_code, r.warehouse_code) for r in rows})
        now = self.clock.now()
        for row in rows:
            row.is_open = False
            row.released_at = now
        self.session.flush()
        for key in touched:
            self.recompute(key.product_code, key.warehouse_code)
        if rows:
            logger.info(
                "stock_reservations_released",
                extra={"order_reference": order_reference, "count": len(rows)},
            )
        return touched
