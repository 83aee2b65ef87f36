"""
Module: inventory_engines.allocation
Responsibility:
    Choose which lots satisfy an outbound quantity under a FIFO or FEFO
    policy and return the plan as (lot, quantity) lines.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Consumes LotSnapshot DTOs produced by LotSelector.allocation_candidates().

Invariants enforced:
    - Only lots whose effective status is ``available`` with remaining
      quantity are eligible; quarantined, reserved, expired and depleted lots
      are never selected whatever the policy.
    - All-or-nothing: either the whole quantity is planned or
      InsufficientStockError is raised and no plan is returned.
    - Deterministic: ties on the policy key break by lot number.
    - Σ line.quantity == requested quantity.

Failure modes:
    - InvalidQuantityError when the requested quantity is not positive.
    - InsufficientStockError when eligible lots hold less than requested.

Usage:
    from inventory_engines.allocation import LotAllocator

    plan = LotAllocator().allocate(
        product_code="RM-001",
        warehouse_code="WH-A",
        quantity=Decimal("8"),
        policy=AllocationPolicy.FEFO,
        candidates=lot_selector.allocation_candidates("RM-001", "WH-A"),
    )
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

from inventory_engines.tracer import traced_engine
from inventory_kernel.domain.dtos import LotSnapshot
from inventory_kernel.domain.values import ZERO, AllocationPolicy, AvailabilityStatus
from inventory_kernel.exceptions import InsufficientStockError, InvalidQuantityError
from inventory_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")


@dataclass(frozen=True)
class AllocationLine:
    """Quantity taken from one lot."""

    lot_number: str
    quantity: Decimal
    remaining_after: Decimal


@dataclass(frozen=True)
class AllocationPlan:
    """
    Complete allocation result.

    Contract:
        Frozen dataclass; lines are in consumption order.
    Guarantees:
        - ``total == requested``.
    Non-goals:
        - Does not record movements; the caller turns each line into one
          outbound movement inside the same ledger scope.
    """

    product_code: str
    warehouse_code: str
    requested: Decimal
    policy: AllocationPolicy
    lines: tuple[AllocationLine, ...]

    @property
    def total(self) -> Decimal:
        return sum((line.quantity for line in self.lines), ZERO)

    @property
    def lot_count(self) -> int:
        return len(self.lines)

    def as_pairs(self) -> list[tuple[str, Decimal]]:
        return [(line.lot_number, line.quantity) for line in self.lines]


def _naive_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; fresh rows keep their tzinfo
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def fifo_key(lot: LotSnapshot) -> tuple:
    """Oldest manufacture date (receipt date when unknown) first."""
    received = _naive_utc(lot.received_at)
    made = lot.manufacture_date or received.date()
    return (made, received, lot.lot_number)


def fefo_key(lot: LotSnapshot) -> tuple:
    """Soonest expiry first; lots without expiry go last."""
    if lot.expiry_date is None:
        return (1, date.max, lot.lot_number)
    return (0, lot.expiry_date, lot.lot_number)


_SORT_KEYS = {
    AllocationPolicy.FIFO: fifo_key,
    AllocationPolicy.FEFO: fefo_key,
}


def is_eligible(lot: LotSnapshot, as_of: date | None = None) -> bool:
    if lot.availability_status != AvailabilityStatus.AVAILABLE:
        return False
    if lot.remaining_quantity <= ZERO:
        return False
    if as_of is not None and lot.expiry_date is not None and lot.expiry_date < as_of:
        return False
    return True


class LotAllocator:
    """
    Plan lot consumption for an outbound quantity.

    Contract:
        Pure function of its inputs. No I/O, no database access, no clock
        (pass ``as_of`` to exclude lots that expired since the snapshot).
    Guarantees:
        - Greedy in policy order; each lot contributes at most its
          remaining quantity.
    Non-goals:
        - Does not lock anything; atomicity is the caller's ledger scope.
    """

    @traced_engine(
        "allocation", "1.0",
        fingerprint_fields=("product_code", "warehouse_code", "quantity", "policy"),
    )
    def allocate(
        self,
        *,
        product_code: str,
        warehouse_code: str,
        quantity: Decimal,
        policy: AllocationPolicy,
        candidates: Sequence[LotSnapshot],
        as_of: date | None = None,
    ) -> AllocationPlan:
        """
        Allocate ``quantity`` across eligible candidate lots.

        Raises:
            InvalidQuantityError: quantity is not positive.
            InsufficientStockError: eligible lots hold less than requested.
        """
        if quantity <= ZERO:
            raise InvalidQuantityError(quantity)

        policy = AllocationPolicy(policy)
        eligible = [
            lot for lot in candidates
            if lot.product_code == product_code
            and lot.warehouse_code == warehouse_code
            and is_eligible(lot, as_of)
        ]
        available = sum((lot.remaining_quantity for lot in eligible), ZERO)

        logger.info("lot_allocation_started", extra={
            "product_code": product_code,
            "warehouse_code": warehouse_code,
            "quantity": str(quantity),
            "policy": policy.value,
            "candidate_count": len(candidates),
            "eligible_count": len(eligible),
        })

        if available < quantity:
            logger.warning("lot_allocation_insufficient", extra={
                "product_code": product_code,
                "warehouse_code": warehouse_code,
                "available": str(available),
                "requested": str(quantity),
            })
            raise InsufficientStockError(
                product_code, warehouse_code, available, quantity
            )

        ordered = sorted(eligible, key=_SORT_KEYS[policy])
        lines = self._allocate_sequential(quantity, ordered)

        logger.info("lot_allocation_completed", extra={
            "product_code": product_code,
            "warehouse_code": warehouse_code,
            "policy": policy.value,
            "lots_used": [line.lot_number for line in lines],
        })
        return AllocationPlan(
            product_code=product_code,
            warehouse_code=warehouse_code,
            requested=quantity,
            policy=policy,
            lines=tuple(lines),
        )

    def _allocate_sequential(
        self,
        quantity: Decimal,
        ordered: Sequence[LotSnapshot],
    ) -> list[AllocationLine]:
        """Take from each lot in order until the quantity is covered."""
        outstanding = quantity
        lines: list[AllocationLine] = []
        for lot in ordered:
            if outstanding <= ZERO:
                break
            take = min(outstanding, lot.remaining_quantity)
            outstanding -= take
            lines.append(
                AllocationLine(
                    lot_number=lot.lot_number,
                    quantity=take,
                    remaining_after=lot.remaining_quantity - take,
                )
            )
        return lines

