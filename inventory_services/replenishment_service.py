"""
inventory_services.replenishment_service -- suggestion runs and their review.

Responsibility:
    Gathers the replenishment inputs (stock levels, open production-order
    requirements, supplier catalog, product costs), runs the pure
    ReplenishmentEngine, and manages persisted runs: storing them,
    superseding older pending suggestions, and the purchasing workflow's
    approve / reject / mark-ordered decisions.

Architecture position:
    Services -- orchestration over engines + kernel.

Invariants enforced:
    - generate() is read-only and runs on a read-consistent session without
      pair locks; it never blocks movement writers.
    - A persisted run supersedes (never edits) earlier pending suggestions.
    - Only pending suggestions can be approved or rejected; only approved
      ones can be marked ordered.

Failure modes:
    - SuggestionStateError for a disallowed decision.
    - UnknownReferenceError for an unknown suggestion id.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select, update

from inventory_engines.bom_explosion import BomGraph
from inventory_engines.replenishment import ReplenishmentEngine, ReplenishmentSuggestion
from inventory_kernel.domain.events import DomainEventType
from inventory_kernel.domain.values import (
    ZERO,
    PairKey,
    SuggestionPriority,
    SuggestionStatus,
)
from inventory_kernel.exceptions import SuggestionStateError, UnknownReferenceError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.planning import ReplenishmentSuggestionRecord
from inventory_services.ledger_scope import LedgerContext, LedgerScope

logger = get_logger("services.replenishment")


@dataclass(frozen=True)
class SuggestionRun:
    run_id: UUID
    suggestions: tuple[ReplenishmentSuggestion, ...]
    record_ids: tuple[UUID, ...]
    superseded_count: int


@dataclass(frozen=True)
class PersistedSuggestion:
    """A stored suggestion as the purchasing workflow reviews it."""

    suggestion_id: UUID
    run_id: UUID
    rank: int
    product_code: str
    warehouse_code: str
    suggested_quantity: Decimal
    supplier_code: str | None
    estimated_cost: Decimal
    priority: SuggestionPriority
    status: SuggestionStatus
    decided_by: str | None
    purchase_order_reference: str | None

    @classmethod
    def from_model(cls, model: ReplenishmentSuggestionRecord) -> PersistedSuggestion:
        return cls(
            suggestion_id=model.id,
            run_id=model.run_id,
            rank=model.rank,
            product_code=model.product_code,
            warehouse_code=model.warehouse_code,
            suggested_quantity=model.suggested_quantity,
            supplier_code=model.supplier_code,
            estimated_cost=model.estimated_cost,
            priority=SuggestionPriority(model.priority),
            status=SuggestionStatus(model.status),
            decided_by=model.decided_by,
            purchase_order_reference=model.purchase_order_reference,
        )


def open_order_requirements(ctx: LedgerContext) -> dict[PairKey, Decimal]:
    """Outstanding mandatory raw-material need of every open production order.

    Components already issued to an order are netted off, so an order that
    is in progress only counts what it still has to draw.  Its open
    reservations at its own warehouse net off the same way: that demand is
    already held out of available_quantity.
    """
    products = ctx.planning.products()
    graph = BomGraph(
        ctx.planning.active_boms(),
        units={code: p.unit_of_measure for code, p in products.items()},
    )
    totals: dict[PairKey, Decimal] = {}
    for order in ctx.planning.open_orders():
        covered = dict(ctx.planning.issued_for_order(order.order_number))
        for key, reserved in ctx.stock_selector.open_reservations(order.order_number):
            if key.warehouse_code == order.warehouse_code:
                covered[key.product_code] = covered.get(key.product_code, ZERO) + reserved
        needs = graph.outstanding_leaves(order.product_code, order.quantity, covered)
        for component, quantity in needs.items():
            key = PairKey(component, order.warehouse_code)
            totals[key] = totals.get(key, ZERO) + quantity
    return totals


def compute_suggestions(
    ctx: LedgerContext, engine: ReplenishmentEngine
) -> list[ReplenishmentSuggestion]:
    products = ctx.planning.products()
    offers = [o for group in ctx.planning.supplier_offers().values() for o in group]
    return engine.generate(
        levels=ctx.stock_selector.all_levels(),
        requirements=open_order_requirements(ctx),
        offers=offers,
        unit_costs={code: p.unit_cost for code, p in products.items()},
    )


class ReplenishmentService:
    """Generate, persist and review replenishment suggestions."""

    def __init__(self, scope: LedgerScope, engine: ReplenishmentEngine | None = None):
        self.scope = scope
        self.engine = engine or ReplenishmentEngine()

    def generate(self) -> list[ReplenishmentSuggestion]:
        """Advisory suggestions from the current state; nothing is stored."""
        return self.scope.read(lambda ctx: compute_suggestions(ctx, self.engine))

    def persist_run(self, actor_id: str = "system") -> SuggestionRun:
        """Store a fresh run and supersede every earlier pending suggestion."""
        return self.scope.run((), lambda ctx: self._persist(ctx, actor_id))

    def _persist(self, ctx: LedgerContext, actor_id: str) -> SuggestionRun:
        suggestions = compute_suggestions(ctx, self.engine)
        superseded = ctx.session.execute(
            update(ReplenishmentSuggestionRecord)
            .where(ReplenishmentSuggestionRecord.status == SuggestionStatus.PENDING.value)
            .values(status=SuggestionStatus.SUPERSEDED.value)
            .execution_options(synchronize_session=False)
        ).rowcount

        run_id = uuid4()
        records = []
        for s in suggestions:
            record = ReplenishmentSuggestionRecord(
                run_id=run_id,
                rank=s.rank,
                product_code=s.product_code,
                warehouse_code=s.warehouse_code,
                on_hand_quantity=s.on_hand_quantity,
                available_quantity=s.available_quantity,
                open_order_requirement=s.open_order_requirement,
                projected_available=s.projected_available,
                suggested_quantity=s.suggested_quantity,
                supplier_code=s.supplier_code,
                estimated_cost=s.estimated_cost,
                priority=s.priority.value,
                status=SuggestionStatus.PENDING.value,
                created_by=actor_id,
            )
            ctx.session.add(record)
            records.append(record)
        ctx.session.flush()

        for s, record in zip(suggestions, records):
            if s.priority == SuggestionPriority.CRITICAL:
                ctx.outbox.emit(
                    DomainEventType.REPLENISHMENT_SUGGESTION_CRITICAL,
                    aggregate_type="replenishment_suggestion",
                    aggregate_id=str(record.id),
                    payload={"run_id": run_id, **s.to_dict()},
                )

        logger.info(
            "replenishment_run_persisted",
            extra={
                "run_id": run_id,
                "suggestion_count": len(records),
                "superseded_count": superseded,
            },
        )
        return SuggestionRun(
            run_id=run_id,
            suggestions=tuple(suggestions),
            record_ids=tuple(r.id for r in records),
            superseded_count=superseded,
        )

    def approve(self, suggestion_id: UUID, actor_id: str) -> None:
        self._decide(
            suggestion_id, actor_id, "approve",
            SuggestionStatus.PENDING, SuggestionStatus.APPROVED,
        )

    def reject(self, suggestion_id: UUID, actor_id: str) -> None:
        self._decide(
            suggestion_id, actor_id, "reject",
            SuggestionStatus.PENDING, SuggestionStatus.REJECTED,
        )

    def mark_ordered(
        self, suggestion_id: UUID, purchase_order_reference: str, actor_id: str
    ) -> None:
        """Record the purchase order the purchasing workflow created."""
        self._decide(
            suggestion_id, actor_id, "mark ordered",
            SuggestionStatus.APPROVED, SuggestionStatus.ORDERED,
            purchase_order_reference=purchase_order_reference,
        )

    def _decide(
        self,
        suggestion_id: UUID,
        actor_id: str,
        action: str,
        required: SuggestionStatus,
        target: SuggestionStatus,
        purchase_order_reference: str | None = None,
    ) -> None:
        def work(ctx: LedgerContext) -> None:
            record = ctx.session.get(ReplenishmentSuggestionRecord, suggestion_id)
            if record is None:
                raise UnknownReferenceError("replenishment suggestion", str(suggestion_id))
            if record.status != required.value:
                raise SuggestionStateError(str(suggestion_id), record.status, action)
            record.status = target.value
            if target == SuggestionStatus.ORDERED:
                record.purchase_order_reference = purchase_order_reference
            else:
                record.decided_by = actor_id
                record.decided_at = ctx.clock.now()
            ctx.session.flush()
            logger.info(
                "replenishment_suggestion_decided",
                extra={
                    "suggestion_id": suggestion_id,
                    "from_status": required.value,
                    "to_status": target.value,
                    "decided_by": actor_id,
                },
            )

        self.scope.run((), work)

    def list_by_status(self, status: SuggestionStatus) -> list[PersistedSuggestion]:
        def work(ctx: LedgerContext) -> list[PersistedSuggestion]:
            rows = ctx.session.scalars(
                select(ReplenishmentSuggestionRecord)
                .where(ReplenishmentSuggestionRecord.status == status.value)
                .order_by(
                    ReplenishmentSuggestionRecord.created_at,
                    ReplenishmentSuggestionRecord.rank,
                )
            ).all()
            return [PersistedSuggestion.from_model(r) for r in rows]

        return self.scope.read(work)
