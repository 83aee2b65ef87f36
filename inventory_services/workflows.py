"""
inventory_services.workflows -- collaborator entry points into the ledger.

Responsibility:
    The calls the receiving, production, quality, physical-count and
    transfer workflows make into the engine.  Each one is an explicit,
    ordered sequence of kernel calls inside a single ledger scope, never an
    implicit cascade triggered by saving a record.

Architecture position:
    Services -- orchestration over engines + kernel.

Invariants enforced:
    - Each workflow call is atomic: it commits completely or not at all.
    - Over-receipt beyond the configured tolerance is recorded as an
      adjustment and holds the lot in quarantine until approved.
    - Production start issues every mandatory direct component under one
      scope covering all touched pairs.

Failure modes:
    - Any kernel validation / invariant error, unchanged.
    - InvalidTransitionError for production orders in the wrong state.
    - BusyError from the ledger scope.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import select

from inventory_engines.allocation import LotAllocator
from inventory_engines.bom_explosion import BomGraph
from inventory_kernel.domain.dtos import LotSnapshot, LotSpec, MovementRecord, MovementRequest
from inventory_kernel.domain.lot_state import release_blocker
from inventory_kernel.domain.values import (
    ZERO,
    AllocationPolicy,
    AvailabilityStatus,
    InspectionResult,
    LotOrigin,
    MovementType,
    PairKey,
    ProductionOrderStatus,
    QualityStatus,
)
from inventory_kernel.exceptions import (
    InvalidQuantityError,
    InvalidTransitionError,
    LotRequiredError,
    UnknownReferenceError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.planning import ProductionOrder
from inventory_kernel.models.reference import Product
from inventory_kernel.selectors.planning_selector import PRODUCTION_ORDER_REFERENCE
from inventory_kernel.services.lot_registry import OVER_RECEIPT_REASON
from inventory_services.allocation_service import IssueResult, issue_in, require_available
from inventory_services.ledger_scope import LedgerContext, LedgerScope

logger = get_logger("services.workflows")

RECEIPT_REFERENCE = "purchase_receipt"
COUNT_REFERENCE = "physical_count"

_STARTABLE = frozenset({
    ProductionOrderStatus.DRAFT,
    ProductionOrderStatus.PLANNED,
    ProductionOrderStatus.CONFIRMED,
})


@dataclass(frozen=True)
class ReceiptResult:
    lot: LotSnapshot | None
    movements: tuple[MovementRecord, ...]
    over_receipt_quantity: Decimal = ZERO

    @property
    def requires_approval(self) -> bool:
        return self.lot is not None and self.lot.requires_approval


@dataclass(frozen=True)
class ProductionStart:
    order_number: str
    issues: tuple[IssueResult, ...]

    @property
    def movements(self) -> tuple[MovementRecord, ...]:
        return tuple(m for issue in self.issues for m in issue.movements)


def _product(ctx: LedgerContext, code: str) -> Product:
    product = ctx.session.scalar(
        select(Product).where(Product.code == code, Product.is_active.is_(True))
    )
    if product is None:
        raise UnknownReferenceError("product", code)
    return product


def _receive_new_lot(
    ctx: LedgerContext,
    spec: LotSpec,
    accepted: Decimal,
    excess: Decimal,
    reference_type: str,
    reference_id: str | None,
    actor_id: str,
) -> ReceiptResult:
    """Create a lot and the creating movements that account for all of it."""
    ctx.lots.create_lot(spec)
    movements = [
        ctx.journal.append(
            MovementRequest(
                movement_type=MovementType.INBOUND,
                product_code=spec.product_code,
                quantity=accepted,
                destination_warehouse=spec.warehouse_code,
                lot_number=spec.lot_number,
                reference_type=reference_type,
                reference_id=reference_id,
                actor_id=actor_id,
                creates_lot=True,
            )
        )
    ]
    if excess > ZERO:
        movements.append(
            ctx.journal.append(
                MovementRequest.for_adjustment(
                    product_code=spec.product_code,
                    warehouse_code=spec.warehouse_code,
                    delta=excess,
                    reason=f"{OVER_RECEIPT_REASON}: {reference_id or spec.lot_number}",
                    lot_number=spec.lot_number,
                    reference_type=reference_type,
                    reference_id=reference_id,
                    actor_id=actor_id,
                    creates_lot=True,
                )
            )
        )
    return ReceiptResult(
        lot=ctx.lot_selector.get(spec.lot_number),
        movements=tuple(movements),
        over_receipt_quantity=excess,
    )


# ----------------------------------------------------------------------
# Receiving
# ----------------------------------------------------------------------


class ReceivingWorkflow:
    """Receipt confirmation: CreateLot + inbound movement."""

    def __init__(self, scope: LedgerScope):
        self.scope = scope

    def receive(
        self,
        product_code: str,
        warehouse_code: str,
        quantity: Decimal,
        lot_number: str | None = None,
        manufacture_date: date | None = None,
        expiry_date: date | None = None,
        receipt_reference: str | None = None,
        ordered_quantity: Decimal | None = None,
        unit_cost: Decimal | None = None,
        actor_id: str = "system",
    ) -> ReceiptResult:
        """
        Record a supplier receipt.

        When ``ordered_quantity`` is given and the receipt exceeds it by more
        than ``receipt_tolerance_percent``, the ordered part is recorded as
        the inbound movement and the excess as an ``over_receipt``
        adjustment; the lot waits in quarantine for approve_over_receipt().
        """
        if quantity <= ZERO:
            raise InvalidQuantityError(quantity)
        if ordered_quantity is not None and ordered_quantity <= ZERO:
            raise InvalidQuantityError(ordered_quantity, "ordered_quantity")

        def work(ctx: LedgerContext) -> ReceiptResult:
            product = _product(ctx, product_code)
            over = (
                ordered_quantity is not None
                and quantity > ctx.config.max_receipt_quantity(ordered_quantity)
            )
            accepted = ordered_quantity if over else quantity
            excess = quantity - accepted

            with LogContext.bind(product_code=product_code, warehouse_code=warehouse_code):
                if over:
                    logger.warning(
                        "over_receipt_detected",
                        extra={
                            "ordered_quantity": ordered_quantity,
                            "received_quantity": quantity,
                            "excess_quantity": excess,
                            "receipt_reference": receipt_reference,
                        },
                    )

                if product.is_lot_tracked:
                    if lot_number is None:
                        raise LotRequiredError(product_code, MovementType.INBOUND.value)
                    spec = LotSpec(
                        lot_number=lot_number,
                        product_code=product_code,
                        warehouse_code=warehouse_code,
                        quantity=quantity,
                        manufacture_date=manufacture_date,
                        expiry_date=expiry_date,
                        origin_type=LotOrigin.SUPPLIER_RECEIPT,
                        origin_reference=receipt_reference,
                        unit_cost=unit_cost,
                        requires_approval=over,
                    )
                    return _receive_new_lot(
                        ctx, spec, accepted, excess,
                        RECEIPT_REFERENCE, receipt_reference, actor_id,
                    )

                movements = [
                    ctx.journal.append(
                        MovementRequest(
                            movement_type=MovementType.INBOUND,
                            product_code=product_code,
                            quantity=accepted,
                            destination_warehouse=warehouse_code,
                            reference_type=RECEIPT_REFERENCE,
                            reference_id=receipt_reference,
                            actor_id=actor_id,
                        )
                    )
                ]
                if excess > ZERO:
                    movements.append(
                        ctx.journal.append(
                            MovementRequest.for_adjustment(
                                product_code=product_code,
                                warehouse_code=warehouse_code,
                                delta=excess,
                                reason=f"{OVER_RECEIPT_REASON}: {receipt_reference}",
                                reference_type=RECEIPT_REFERENCE,
                                reference_id=receipt_reference,
                                actor_id=actor_id,
                            )
                        )
                    )
                return ReceiptResult(
                    lot=None, movements=tuple(movements), over_receipt_quantity=excess
                )

        return self.scope.run([PairKey(product_code, warehouse_code)], work)


# ----------------------------------------------------------------------
# Production
# ----------------------------------------------------------------------


class ProductionWorkflow:
    """Manufacturing orders consuming components and producing finished lots."""

    def __init__(self, scope: LedgerScope, allocator: LotAllocator | None = None):
        self.scope = scope
        self.allocator = allocator or LotAllocator()

    def create_order(
        self,
        order_number: str,
        product_code: str,
        warehouse_code: str,
        quantity: Decimal,
        status: ProductionOrderStatus = ProductionOrderStatus.PLANNED,
        actor_id: str = "system",
    ) -> None:
        if quantity <= ZERO:
            raise InvalidQuantityError(quantity)

        def work(ctx: LedgerContext) -> None:
            _product(ctx, product_code)
            ctx.session.add(
                ProductionOrder(
                    order_number=order_number,
                    product_code=product_code,
                    warehouse_code=warehouse_code,
                    quantity=quantity,
                    status=ProductionOrderStatus(status).value,
                    created_by=actor_id,
                )
            )
            ctx.session.flush()
            logger.info(
                "production_order_created",
                extra={
                    "order_number": order_number,
                    "product_code": product_code,
                    "quantity": quantity,
                    "status": ProductionOrderStatus(status).value,
                },
            )

        self.scope.run((), work)

    def _order(self, ctx: LedgerContext, order_number: str) -> ProductionOrder:
        order = ctx.session.scalar(
            select(ProductionOrder).where(ProductionOrder.order_number == order_number)
        )
        if order is None:
            raise UnknownReferenceError("production order", order_number)
        return order

    def _direct_needs(
        self, ctx: LedgerContext, order: ProductionOrder
    ) -> dict[str, Decimal]:
        """Mandatory direct components of the order's active BOM, in component units."""
        bom = ctx.boms.get_active(order.product_code)
        products = ctx.planning.products()
        graph = BomGraph(
            {bom.product_code: bom},
            units={code: p.unit_of_measure for code, p in products.items()},
        )
        needs: dict[str, Decimal] = {}
        for line in bom.lines:
            if line.is_optional:
                continue
            needs[line.component_code] = (
                needs.get(line.component_code, ZERO)
                + graph.line_quantity(line) * order.quantity
            )
        return needs

    def _component_keys(self, order_number: str) -> list[PairKey]:
        def work(ctx: LedgerContext) -> list[PairKey]:
            order = self._order(ctx, order_number)
            return [
                PairKey(code, order.warehouse_code)
                for code in self._direct_needs(ctx, order)
            ]

        return self.scope.read(work)

    def reserve_components(self, order_number: str) -> list[PairKey]:
        """Reserve the order's direct components at its warehouse."""
        keys = self._component_keys(order_number)

        def work(ctx: LedgerContext) -> list[PairKey]:
            order = self._order(ctx, order_number)
            if ProductionOrderStatus(order.status) not in _STARTABLE:
                raise InvalidTransitionError(order_number, order.status, "reserve for")
            for code, quantity in sorted(self._direct_needs(ctx, order).items()):
                ctx.ledger.reserve(code, order.warehouse_code, quantity, order_number)
            return keys

        return self.scope.run(keys, work)

    def start_order(
        self,
        order_number: str,
        policy: AllocationPolicy | str | None = None,
        actor_id: str = "system",
    ) -> ProductionStart:
        """
        Issue every mandatory direct component and mark the order in progress.

        Allocation of all components and their outbound movements share
        one scope: if any component is short, nothing is issued.
        """
        keys = self._component_keys(order_number)
        chosen = AllocationPolicy(policy) if policy else self.scope.config.default_allocation_policy

        def work(ctx: LedgerContext) -> ProductionStart:
            order = self._order(ctx, order_number)
            status = ProductionOrderStatus(order.status)
            if status not in _STARTABLE:
                raise InvalidTransitionError(order_number, status.value, "start")
            needs = self._direct_needs(ctx, order)
            if {PairKey(c, order.warehouse_code) for c in needs} - set(keys):
                raise InvalidTransitionError(
                    order_number, status.value, "start",
                    "bill of materials changed while starting; try again",
                )
            # The order's own reservations turn into issues
            ctx.ledger.release_reservations(order_number)

            with LogContext.bind(warehouse_code=order.warehouse_code):
                issues = tuple(
                    issue_in(
                        ctx,
                        self.allocator,
                        code,
                        order.warehouse_code,
                        needs[code],
                        chosen,
                        reference_type=PRODUCTION_ORDER_REFERENCE,
                        reference_id=order_number,
                        actor_id=actor_id,
                    )
                    for code in sorted(needs)
                )
            order.status = ProductionOrderStatus.IN_PROGRESS.value
            order.started_at = ctx.clock.now()
            ctx.session.flush()
            logger.info(
                "production_order_started",
                extra={
                    "order_number": order_number,
                    "component_count": len(issues),
                    "policy": chosen.value,
                },
            )
            return ProductionStart(order_number=order_number, issues=issues)

        return self.scope.run(keys, work)

    def complete_order(
        self,
        order_number: str,
        lot_number: str | None = None,
        quantity: Decimal | None = None,
        manufacture_date: date | None = None,
        expiry_date: date | None = None,
        actor_id: str = "system",
    ) -> ReceiptResult:
        """Receive the finished goods and close the order."""

        def read_key(ctx: LedgerContext) -> PairKey:
            order = self._order(ctx, order_number)
            return PairKey(order.product_code, order.warehouse_code)

        key = self.scope.read(read_key)

        def work(ctx: LedgerContext) -> ReceiptResult:
            order = self._order(ctx, order_number)
            if order.status != ProductionOrderStatus.IN_PROGRESS.value:
                raise InvalidTransitionError(order_number, order.status, "complete")
            produced = quantity if quantity is not None else order.quantity
            if produced <= ZERO:
                raise InvalidQuantityError(produced)
            product = _product(ctx, order.product_code)

            if product.is_lot_tracked:
                if lot_number is None:
                    raise LotRequiredError(product.code, MovementType.INBOUND.value)
                result = _receive_new_lot(
                    ctx,
                    LotSpec(
                        lot_number=lot_number,
                        product_code=order.product_code,
                        warehouse_code=order.warehouse_code,
                        quantity=produced,
                        manufacture_date=manufacture_date or ctx.clock.today(),
                        expiry_date=expiry_date,
                        origin_type=LotOrigin.PRODUCTION_ORDER,
                        origin_reference=order_number,
                    ),
                    produced, ZERO,
                    PRODUCTION_ORDER_REFERENCE, order_number, actor_id,
                )
            else:
                record = ctx.journal.append(
                    MovementRequest(
                        movement_type=MovementType.INBOUND,
                        product_code=order.product_code,
                        quantity=produced,
                        destination_warehouse=order.warehouse_code,
                        reference_type=PRODUCTION_ORDER_REFERENCE,
                        reference_id=order_number,
                        actor_id=actor_id,
                    )
                )
                result = ReceiptResult(lot=None, movements=(record,))

            order.status = ProductionOrderStatus.COMPLETED.value
            order.completed_at = ctx.clock.now()
            order.output_lot_number = lot_number
            ctx.session.flush()
            logger.info(
                "production_order_completed",
                extra={
                    "order_number": order_number,
                    "produced_quantity": produced,
                    "output_lot_number": lot_number,
                },
            )
            return result

        return self.scope.run([key], work)

    def cancel_order(self, order_number: str, actor_id: str = "system") -> None:
        keys = self.scope.read(
            lambda ctx: [key for key, _ in ctx.stock_selector.open_reservations(order_number)]
        )

        def work(ctx: LedgerContext) -> None:
            order = self._order(ctx, order_number)
            if ProductionOrderStatus(order.status) not in _STARTABLE:
                raise InvalidTransitionError(order_number, order.status, "cancel")
            ctx.ledger.release_reservations(order_number)
            order.status = ProductionOrderStatus.CANCELLED.value
            ctx.session.flush()
            logger.info(
                "production_order_cancelled",
                extra={"order_number": order_number, "cancelled_by": actor_id},
            )

        self.scope.run(keys, work)


# ----------------------------------------------------------------------
# Quality
# ----------------------------------------------------------------------


class QualityWorkflow:
    """Inspection results gating lot availability."""

    def __init__(self, scope: LedgerScope):
        self.scope = scope

    def _lot_key(self, lot_number: str) -> PairKey:
        def work(ctx: LedgerContext) -> PairKey:
            lot = ctx.lot_selector.get(lot_number)
            return PairKey(lot.product_code, lot.warehouse_code)

        return self.scope.read(work)

    def apply_inspection(
        self,
        lot_number: str,
        result: InspectionResult | str,
        write_off: bool = False,
        reason: str | None = None,
        actor_id: str = "system",
    ) -> LotSnapshot:
        """
        passed      approve, and release if quarantined and nothing else blocks.
        failed      reject (quarantines the lot), optionally write it off.
        conditional record the status only; release stays a manual decision.
        """
        outcome = InspectionResult(result)

        def work(ctx: LedgerContext) -> LotSnapshot:
            with LogContext.bind(lot_number=lot_number, actor_id=actor_id):
                if outcome == InspectionResult.PASSED:
                    lot = ctx.lots.set_quality_status(lot_number, QualityStatus.APPROVED)
                    if lot.availability_status == AvailabilityStatus.QUARANTINE and (
                        release_blocker(
                            lot.availability_status.value,
                            lot.quality_status.value,
                            lot.requires_approval,
                            ctx.config.require_inspection,
                        )
                        is None
                    ):
                        ctx.lots.release(lot_number)
                elif outcome == InspectionResult.FAILED:
                    lot = ctx.lots.set_quality_status(lot_number, QualityStatus.REJECTED)
                    if write_off and lot.remaining_quantity > ZERO:
                        ctx.journal.write_off(
                            lot_number, reason or "inspection failed", actor_id
                        )
                else:
                    ctx.lots.set_quality_status(lot_number, QualityStatus.CONDITIONAL)

                ctx.refresh_lot_pair(lot_number)
                logger.info(
                    "inspection_applied",
                    extra={"result": outcome.value, "write_off": write_off},
                )
                return ctx.lot_selector.get(lot_number)

        return self.scope.run([self._lot_key(lot_number)], work)


# ----------------------------------------------------------------------
# Physical count
# ----------------------------------------------------------------------


class PhysicalCountWorkflow:
    """Counted quantities reconciled through adjustment movements."""

    def __init__(self, scope: LedgerScope):
        self.scope = scope

    def record_count(
        self,
        product_code: str,
        warehouse_code: str,
        counted: Decimal,
        reason: str,
        lot_number: str | None = None,
        count_reference: str | None = None,
        actor_id: str = "system",
    ) -> MovementRecord | None:
        """
        Adjust the book quantity to ``counted``.

        With a lot, the lot is adjusted; without one, the pair is.  A surplus
        on a tracked product without a lot becomes a new physical-count lot.
        A zero difference records nothing and returns None.
        """
        if counted < ZERO:
            raise InvalidQuantityError(counted, "counted")

        def work(ctx: LedgerContext) -> MovementRecord | None:
            product = _product(ctx, product_code)
            if lot_number is not None:
                lot = ctx.lot_selector.get(lot_number)
                if lot.product_code != product_code or lot.warehouse_code != warehouse_code:
                    raise UnknownReferenceError(
                        "lot", f"{lot_number} for {product_code}@{warehouse_code}"
                    )
                current = lot.remaining_quantity
            else:
                current = ctx.ledger.recompute(product_code, warehouse_code).on_hand_quantity

            delta = counted - current
            if delta == ZERO:
                logger.info(
                    "physical_count_matches",
                    extra={"pair": f"{product_code}@{warehouse_code}", "counted": counted},
                )
                return None

            if lot_number is None and product.is_lot_tracked:
                if delta < ZERO:
                    raise LotRequiredError(product_code, MovementType.ADJUSTMENT.value)
                seq = ctx.stock_selector.get_level(product_code, warehouse_code).movement_count
                surplus_lot = f"CNT-{product_code}-{warehouse_code}-{seq + 1}"
                ctx.lots.create_lot(
                    LotSpec(
                        lot_number=surplus_lot,
                        product_code=product_code,
                        warehouse_code=warehouse_code,
                        quantity=delta,
                        origin_type=LotOrigin.PHYSICAL_COUNT,
                        origin_reference=count_reference,
                    )
                )
                return ctx.journal.append(
                    MovementRequest.for_adjustment(
                        product_code=product_code,
                        warehouse_code=warehouse_code,
                        delta=delta,
                        reason=reason,
                        lot_number=surplus_lot,
                        reference_type=COUNT_REFERENCE,
                        reference_id=count_reference,
                        actor_id=actor_id,
                        creates_lot=True,
                    )
                )

            return ctx.journal.append(
                MovementRequest.for_adjustment(
                    product_code=product_code,
                    warehouse_code=warehouse_code,
                    delta=delta,
                    reason=reason,
                    lot_number=lot_number,
                    reference_type=COUNT_REFERENCE,
                    reference_id=count_reference,
                    actor_id=actor_id,
                )
            )

        return self.scope.run([PairKey(product_code, warehouse_code)], work)


# ----------------------------------------------------------------------
# Transfer
# ----------------------------------------------------------------------


class TransferWorkflow:
    """Stock moved between warehouses."""

    def __init__(self, scope: LedgerScope, allocator: LotAllocator | None = None):
        self.scope = scope
        self.allocator = allocator or LotAllocator()

    def transfer(
        self,
        product_code: str,
        from_warehouse: str,
        to_warehouse: str,
        quantity: Decimal,
        lot_number: str | None = None,
        policy: AllocationPolicy | str | None = None,
        reference_id: str | None = None,
        actor_id: str = "system",
    ) -> tuple[MovementRecord, ...]:
        """
        Move ``quantity`` from one warehouse to another.

        Stock reserved at the source stays put.  A tracked product without
        an explicit lot is allocated with the given (or configured) policy
        and moved lot by lot.
        """
        if quantity <= ZERO:
            raise InvalidQuantityError(quantity)
        chosen = AllocationPolicy(policy) if policy else self.scope.config.default_allocation_policy

        def request(lot: str | None, qty: Decimal) -> MovementRequest:
            return MovementRequest(
                movement_type=MovementType.TRANSFER,
                product_code=product_code,
                quantity=qty,
                source_warehouse=from_warehouse,
                destination_warehouse=to_warehouse,
                lot_number=lot,
                reference_type="transfer" if reference_id else None,
                reference_id=reference_id,
                actor_id=actor_id,
            )

        def work(ctx: LedgerContext) -> tuple[MovementRecord, ...]:
            product = _product(ctx, product_code)
            require_available(ctx, product_code, from_warehouse, quantity)
            if lot_number is not None or not product.is_lot_tracked:
                return (ctx.journal.append(request(lot_number, quantity)),)
            plan = self.allocator.allocate(
                product_code=product_code,
                warehouse_code=from_warehouse,
                quantity=quantity,
                policy=chosen,
                candidates=ctx.lot_selector.allocation_candidates(product_code, from_warehouse),
                as_of=ctx.clock.today(),
            )
            return tuple(
                ctx.journal.append(request(line.lot_number, line.quantity))
                for line in plan.lines
            )

        return self.scope.run(
            [PairKey(product_code, from_warehouse), PairKey(product_code, to_warehouse)],
            work,
        )
