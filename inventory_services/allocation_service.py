"""
inventory_services.allocation_service -- lot allocation turned into outbound movements.

Responsibility:
    Plans lot consumption with the pure LotAllocator and, for issues,
    records one outbound movement per planned lot inside the same ledger
    scope that read the lots.

Architecture position:
    Services -- orchestration over engines + kernel.

Invariants enforced:
    - Allocation atomicity: planning and recording happen under one pair
      lock and one transaction, so two concurrent issues on the same pair
      can never both draw on the same remaining quantity.  One succeeds in
      full; the other sees the reduced lots and fails with
      InsufficientStockError.
    - All-or-nothing: a failure on any planned lot rolls back every
      movement of the issue.
    - Pair-level reservations hold: no issue, tracked or not, may draw more
      than the pair's available (unreserved) quantity.

Failure modes:
    - InsufficientStockError, InvalidQuantityError from the allocator.
    - Any journal error for the individual movements.
    - BusyError from the ledger scope.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select

from inventory_engines.allocation import AllocationPlan, LotAllocator
from inventory_kernel.domain.dtos import MovementRecord, MovementRequest
from inventory_kernel.domain.values import ZERO, AllocationPolicy, MovementType, PairKey
from inventory_kernel.exceptions import (
    InsufficientStockError,
    InvalidQuantityError,
    UnknownReferenceError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.reference import Product
from inventory_services.ledger_scope import LedgerContext, LedgerScope

logger = get_logger("services.allocation")


@dataclass(frozen=True)
class IssueResult:
    """An allocation plan and the movements that carried it out."""

    plan: AllocationPlan | None
    movements: tuple[MovementRecord, ...]

    @property
    def total_issued(self) -> Decimal:
        return -sum((m.quantity for m in self.movements), ZERO)


def _is_lot_tracked(ctx: LedgerContext, product_code: str) -> bool:
    tracked = ctx.session.scalar(
        select(Product.is_lot_tracked).where(
            Product.code == product_code, Product.is_active.is_(True)
        )
    )
    if tracked is None:
        raise UnknownReferenceError("product", product_code)
    return tracked


def require_available(
    ctx: LedgerContext, product_code: str, warehouse_code: str, quantity: Decimal
) -> None:
    """Refuse to draw on stock that open reservations hold."""
    level = ctx.ledger.recompute(product_code, warehouse_code)
    if level.available_quantity < quantity:
        raise InsufficientStockError(
            product_code, warehouse_code, level.available_quantity, quantity
        )


def plan_in(
    ctx: LedgerContext,
    allocator: LotAllocator,
    product_code: str,
    warehouse_code: str,
    quantity: Decimal,
    policy: AllocationPolicy,
) -> AllocationPlan:
    return allocator.allocate(
        product_code=product_code,
        warehouse_code=warehouse_code,
        quantity=quantity,
        policy=policy,
        candidates=ctx.lot_selector.allocation_candidates(product_code, warehouse_code),
        as_of=ctx.clock.today(),
    )


def issue_in(
    ctx: LedgerContext,
    allocator: LotAllocator,
    product_code: str,
    warehouse_code: str,
    quantity: Decimal,
    policy: AllocationPolicy,
    reference_type: str | None = None,
    reference_id: str | None = None,
    actor_id: str = "system",
) -> IssueResult:
    """
    Allocate and record the outbound movements inside ``ctx``.

    The caller's scope must hold the lock for (product, warehouse).
    Every issue is first checked against the pair's available quantity;
    untracked products then go out as one lot-less movement.
    """
    if quantity <= ZERO:
        raise InvalidQuantityError(quantity)

    with LogContext.bind(product_code=product_code, warehouse_code=warehouse_code):
        tracked = _is_lot_tracked(ctx, product_code)
        require_available(ctx, product_code, warehouse_code, quantity)
        if not tracked:
            record = ctx.journal.append(
                MovementRequest(
                    movement_type=MovementType.OUTBOUND,
                    product_code=product_code,
                    quantity=quantity,
                    source_warehouse=warehouse_code,
                    reference_type=reference_type,
                    reference_id=reference_id,
                    actor_id=actor_id,
                )
            )
            return IssueResult(plan=None, movements=(record,))

        plan = plan_in(ctx, allocator, product_code, warehouse_code, quantity, policy)
        movements = []
        for line in plan.lines:
            movements.append(
                ctx.journal.append(
                    MovementRequest(
                        movement_type=MovementType.OUTBOUND,
                        product_code=product_code,
                        quantity=line.quantity,
                        source_warehouse=warehouse_code,
                        lot_number=line.lot_number,
                        reference_type=reference_type,
                        reference_id=reference_id,
                        actor_id=actor_id,
                    )
                )
            )
        logger.info(
            "allocation_issued",
            extra={
                "quantity": quantity,
                "policy": plan.policy.value,
                "lot_count": plan.lot_count,
                "reference_type": reference_type,
                "reference_id": reference_id,
            },
        )
        return IssueResult(plan=plan, movements=tuple(movements))


class AllocationService:
    """Allocation entry points with their own ledger scope."""

    def __init__(self, scope: LedgerScope, allocator: LotAllocator | None = None):
        self.scope = scope
        self.allocator = allocator or LotAllocator()

    def _policy(self, policy: AllocationPolicy | str | None) -> AllocationPolicy:
        if policy is None:
            return self.scope.config.default_allocation_policy
        return AllocationPolicy(policy)

    def plan(
        self,
        product_code: str,
        warehouse_code: str,
        quantity: Decimal,
        policy: AllocationPolicy | str | None = None,
    ) -> AllocationPlan:
        """Read-only plan; nothing is recorded or reserved."""
        chosen = self._policy(policy)
        return self.scope.read(
            lambda ctx: plan_in(
                ctx, self.allocator, product_code, warehouse_code, quantity, chosen
            )
        )

    def allocate_and_issue(
        self,
        product_code: str,
        warehouse_code: str,
        quantity: Decimal,
        policy: AllocationPolicy | str | None = None,
        reference_type: str | None = None,
        reference_id: str | None = None,
        actor_id: str = "system",
    ) -> IssueResult:
        chosen = self._policy(policy)
        return self.scope.run(
            [PairKey(product_code, warehouse_code)],
            lambda ctx: issue_in(
                ctx,
                self.allocator,
                product_code,
                warehouse_code,
                quantity,
                chosen,
                reference_type=reference_type,
                reference_id=reference_id,
                actor_id=actor_id,
            ),
        )
