"""
inventory_services.engine -- InventoryEngine, the single entry point for callers.

Responsibility:
    Wires the ledger scope, allocation, replenishment and collaborator
    workflows together and exposes every engine operation as one method.
    Each method is one atomic scope: kernel work inside it either commits
    completely or not at all.

Architecture position:
    Services -- top of the service layer.  The only place the service
    objects are constructed and composed; nothing below constructs it.
    There is no module-level instance: build one per database.

Invariants enforced:
    - Every mutation runs through LedgerScope.run() with the pair keys it
      touches, so writers on the same (product, warehouse) are serialized.
    - Results crossing this boundary are DTOs, never ORM entities.

Failure modes:
    - Typed InventoryLedgerError subclasses from the kernel and engines;
      callers turn them into user messages with ``to_reason()``.
    - BusyError when concurrency conflicts outlast the retry budget.

Usage:
    from inventory_config import from_env
    from inventory_services import InventoryEngine

    engine = InventoryEngine.from_config(from_env(), create_schema=True)
    engine.add_warehouse("WH-A", "Main warehouse")
    engine.add_product("RM-001", "Resin", is_lot_tracked=True)
    engine.receiving.receive("RM-001", "WH-A", Decimal("100"), lot_number="L-1")
    result = engine.allocate_and_issue("RM-001", "WH-A", Decimal("8"))
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from inventory_config import InventoryConfig
from inventory_engines.allocation import AllocationPlan, LotAllocator
from inventory_engines.bom_explosion import BomExplosion, BomGraph, rollup_cost
from inventory_engines.replenishment import ReplenishmentEngine, ReplenishmentSuggestion
from inventory_kernel.db.engine import create_db_engine, create_session_factory, create_tables
from inventory_kernel.db.immutability import register_immutability_listeners
from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.dtos import (
    BomLine,
    BomView,
    LotSnapshot,
    MovementRecord,
    MovementRequest,
    StockLevelSnapshot,
)
from inventory_kernel.domain.values import (
    ZERO,
    AllocationPolicy,
    PairKey,
    QualityStatus,
    SuggestionStatus,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.domain_event import DomainEventRecord
from inventory_kernel.models.reference import Product, SupplierCatalogEntry, Warehouse
from inventory_kernel.selectors.lot_selector import ConservationGap
from inventory_kernel.selectors.stock_selector import StockAlertRow
from inventory_kernel.services.pair_locks import PairLockManager
from inventory_services.allocation_service import AllocationService, IssueResult
from inventory_services.ledger_scope import LedgerContext, LedgerScope
from inventory_services.replenishment_service import (
    PersistedSuggestion,
    ReplenishmentService,
    SuggestionRun,
)
from inventory_services.workflows import (
    PhysicalCountWorkflow,
    ProductionWorkflow,
    QualityWorkflow,
    ReceivingWorkflow,
    TransferWorkflow,
)

logger = get_logger("services.engine")


@dataclass(frozen=True)
class PendingEvent:
    """An outbox entry awaiting delivery by the notifier."""

    event_id: UUID
    event_type: str
    aggregate_type: str
    aggregate_id: str
    occurred_at: datetime
    payload: dict[str, Any]
    correlation_id: str | None

    @classmethod
    def from_model(cls, model: DomainEventRecord) -> PendingEvent:
        return cls(
            event_id=model.id,
            event_type=model.event_type,
            aggregate_type=model.aggregate_type,
            aggregate_id=model.aggregate_id,
            occurred_at=model.occurred_at,
            payload=dict(model.payload),
            correlation_id=model.correlation_id,
        )


class InventoryEngine:
    """
    Facade over the inventory ledger.

    Contract:
        Constructed with a session factory (or via ``from_config``); owns no
        global state.  Two engines over the same database coordinate through
        database locks only; share a PairLockManager to also serialize them
        in-process.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        config: InventoryConfig | None = None,
        clock: Clock | None = None,
        locks: PairLockManager | None = None,
    ):
        self.scope = LedgerScope(session_factory, config=config, clock=clock, locks=locks)
        self.config = self.scope.config

        allocator = LotAllocator()
        self.allocation = AllocationService(self.scope, allocator)
        self.replenishment = ReplenishmentService(self.scope, ReplenishmentEngine())

        self.receiving = ReceivingWorkflow(self.scope)
        self.production = ProductionWorkflow(self.scope, allocator)
        self.quality = QualityWorkflow(self.scope)
        self.counts = PhysicalCountWorkflow(self.scope)
        self.transfers = TransferWorkflow(self.scope, allocator)

    @classmethod
    def from_config(
        cls,
        config: InventoryConfig,
        clock: Clock | None = None,
        create_schema: bool = False,
    ) -> InventoryEngine:
        """Build an engine (and optionally its tables) for ``config.database_url``."""
        db = create_db_engine(config.database_url)
        if create_schema:
            create_tables(db)
        register_immutability_listeners()
        logger.info(
            "inventory_engine_created",
            extra={
                "create_schema": create_schema,
                "allocation_policy": config.default_allocation_policy.value,
            },
        )
        return cls(create_session_factory(db), config=config, clock=clock)

    # ------------------------------------------------------------------
    # Reference data
    # ------------------------------------------------------------------

    def add_product(
        self,
        code: str,
        name: str,
        unit_of_measure: str = "pcs",
        unit_cost: Decimal = ZERO,
        is_lot_tracked: bool = False,
    ) -> None:
        def work(ctx: LedgerContext) -> None:
            ctx.session.add(
                Product(
                    code=code,
                    name=name,
                    unit_of_measure=unit_of_measure,
                    unit_cost=unit_cost,
                    is_lot_tracked=is_lot_tracked,
                )
            )
            ctx.session.flush()

        self.scope.run((), work)

    def add_warehouse(
        self,
        code: str,
        name: str,
        can_receive: bool = True,
        can_ship: bool = True,
    ) -> None:
        def work(ctx: LedgerContext) -> None:
            ctx.session.add(
                Warehouse(code=code, name=name, can_receive=can_receive, can_ship=can_ship)
            )
            ctx.session.flush()

        self.scope.run((), work)

    def add_supplier_offer(
        self,
        supplier_code: str,
        supplier_name: str,
        product_code: str,
        unit_price: Decimal,
        min_order_quantity: Decimal = ZERO,
        lead_time_days: int = 7,
        is_preferred: bool = False,
    ) -> None:
        def work(ctx: LedgerContext) -> None:
            ctx.session.add(
                SupplierCatalogEntry(
                    supplier_code=supplier_code,
                    supplier_name=supplier_name,
                    product_code=product_code,
                    unit_price=unit_price,
                    min_order_quantity=min_order_quantity,
                    lead_time_days=lead_time_days,
                    is_preferred=is_preferred,
                )
            )
            ctx.session.flush()

        self.scope.run((), work)

    # ------------------------------------------------------------------
    # Movement journal
    # ------------------------------------------------------------------

    def append_movement(self, request: MovementRequest) -> MovementRecord:
        return self.scope.run(request.pair_keys, lambda ctx: ctx.journal.append(request))

    def reverse_movement(
        self, movement_id: UUID, actor_id: str = "system", reason: str = "reversal"
    ) -> MovementRecord:
        original = self.scope.read(lambda ctx: ctx.movement_selector.get(movement_id))
        keys = [
            PairKey(original.product_code, w)
            for w in (original.source_warehouse, original.destination_warehouse)
            if w
        ]
        return self.scope.run(
            keys, lambda ctx: ctx.journal.reverse(movement_id, actor_id, reason)
        )

    def movements_for_lot(self, lot_number: str) -> list[MovementRecord]:
        return self.scope.read(lambda ctx: ctx.movement_selector.for_lot(lot_number))

    def movements_for_pair(self, product_code: str, warehouse_code: str) -> list[MovementRecord]:
        return self.scope.read(
            lambda ctx: ctx.movement_selector.for_pair(product_code, warehouse_code)
        )

    # ------------------------------------------------------------------
    # Lot registry
    # ------------------------------------------------------------------

    def get_lot(self, lot_number: str) -> LotSnapshot:
        return self.scope.read(lambda ctx: ctx.lot_selector.get(lot_number))

    def lots_for_pair(self, product_code: str, warehouse_code: str) -> list[LotSnapshot]:
        return self.scope.read(
            lambda ctx: ctx.lot_selector.list_for_pair(product_code, warehouse_code)
        )

    def _lot_key(self, lot_number: str) -> PairKey:
        lot = self.get_lot(lot_number)
        return PairKey(lot.product_code, lot.warehouse_code)

    def _lot_change(self, lot_number: str, change) -> LotSnapshot:
        """Apply a lot state transition and refresh the pair that holds the lot."""

        def work(ctx: LedgerContext) -> LotSnapshot:
            change(ctx)
            ctx.refresh_lot_pair(lot_number)
            return ctx.lot_selector.get(lot_number)

        return self.scope.run([self._lot_key(lot_number)], work)

    def quarantine(self, lot_number: str, reason: str) -> LotSnapshot:
        return self._lot_change(lot_number, lambda ctx: ctx.lots.quarantine(lot_number, reason))

    def release(self, lot_number: str) -> LotSnapshot:
        return self._lot_change(lot_number, lambda ctx: ctx.lots.release(lot_number))

    def reserve_lot(self, lot_number: str) -> LotSnapshot:
        return self._lot_change(lot_number, lambda ctx: ctx.lots.reserve(lot_number))

    def unreserve_lot(self, lot_number: str) -> LotSnapshot:
        return self._lot_change(lot_number, lambda ctx: ctx.lots.unreserve(lot_number))

    def set_quality_status(self, lot_number: str, status: QualityStatus | str) -> LotSnapshot:
        return self._lot_change(
            lot_number,
            lambda ctx: ctx.lots.set_quality_status(lot_number, QualityStatus(status)),
        )

    def approve_over_receipt(self, lot_number: str, actor_id: str = "system") -> LotSnapshot:
        return self._lot_change(
            lot_number, lambda ctx: ctx.lots.approve_over_receipt(lot_number, actor_id)
        )

    def write_off(self, lot_number: str, reason: str, actor_id: str = "system") -> MovementRecord:
        return self.scope.run(
            [self._lot_key(lot_number)],
            lambda ctx: ctx.journal.write_off(lot_number, reason, actor_id),
        )

    def expiring_lots(self, within_days: int | None = None) -> list[LotSnapshot]:
        days = self.config.expiry_warning_days if within_days is None else within_days
        return self.scope.read(lambda ctx: ctx.lot_selector.expiring(days))

    def conservation_gaps(self) -> list[ConservationGap]:
        """Lots whose quantity does not reconcile with their journal; empty when healthy."""
        return self.scope.read(lambda ctx: ctx.lot_selector.conservation_gaps())

    # ------------------------------------------------------------------
    # Stock ledger
    # ------------------------------------------------------------------

    def get_level(self, product_code: str, warehouse_code: str) -> StockLevelSnapshot:
        return self.scope.read(
            lambda ctx: ctx.stock_selector.get_level(product_code, warehouse_code)
        )

    def set_thresholds(
        self, product_code: str, warehouse_code: str, **thresholds
    ) -> StockLevelSnapshot:
        """Keyword thresholds: min_stock_alert, max_stock_alert, reorder_point, reorder_quantity."""
        return self.scope.run(
            [PairKey(product_code, warehouse_code)],
            lambda ctx: ctx.ledger.set_thresholds(product_code, warehouse_code, **thresholds),
        )

    def list_alerts(self) -> list[StockAlertRow]:
        return self.scope.read(lambda ctx: ctx.stock_selector.list_alerts())

    def reserve_stock(
        self,
        product_code: str,
        warehouse_code: str,
        quantity: Decimal,
        order_reference: str,
    ) -> StockLevelSnapshot:
        return self.scope.run(
            [PairKey(product_code, warehouse_code)],
            lambda ctx: ctx.ledger.reserve(
                product_code, warehouse_code, quantity, order_reference
            ),
        )

    def release_reservations(self, order_reference: str) -> list[PairKey]:
        keys = self.scope.read(
            lambda ctx: [k for k, _ in ctx.stock_selector.open_reservations(order_reference)]
        )
        return self.scope.run(
            keys, lambda ctx: ctx.ledger.release_reservations(order_reference)
        )

    # ------------------------------------------------------------------
    # Bills of materials
    # ------------------------------------------------------------------

    def create_bom(
        self,
        product_code: str,
        version: str,
        components: Sequence[BomLine],
        notes: str | None = None,
        actor_id: str = "system",
    ) -> UUID:
        return self.scope.run(
            (),
            lambda ctx: ctx.boms.create_bom(product_code, version, components, notes, actor_id),
        )

    def activate_bom(self, bom_id: UUID, supersede: bool = False) -> BomView:
        return self.scope.run((), lambda ctx: ctx.boms.activate(bom_id, supersede=supersede))

    def obsolete_bom(self, bom_id: UUID) -> None:
        self.scope.run((), lambda ctx: ctx.boms.obsolete(bom_id))

    def _bom_graph(self, ctx: LedgerContext) -> BomGraph:
        products = ctx.planning.products()
        return BomGraph(
            ctx.planning.active_boms(),
            units={code: p.unit_of_measure for code, p in products.items()},
        )

    def explode(self, product_code: str, quantity: Decimal) -> BomExplosion:
        return self.scope.read(
            lambda ctx: self._bom_graph(ctx).explode(
                product_code=product_code, quantity=quantity
            )
        )

    def rollup_cost(
        self,
        product_code: str,
        quantity: Decimal,
        include_optional: bool = False,
    ) -> Decimal:
        """Material cost of ``quantity`` units from leaf unit costs."""

        def work(ctx: LedgerContext) -> Decimal:
            explosion = self._bom_graph(ctx).explode(
                product_code=product_code, quantity=quantity
            )
            costs = {code: p.unit_cost for code, p in ctx.planning.products().items()}
            return rollup_cost(explosion, costs, include_optional=include_optional)

        return self.scope.read(work)

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------

    def plan_allocation(
        self,
        product_code: str,
        warehouse_code: str,
        quantity: Decimal,
        policy: AllocationPolicy | str | None = None,
    ) -> AllocationPlan:
        return self.allocation.plan(product_code, warehouse_code, quantity, policy)

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
        return self.allocation.allocate_and_issue(
            product_code,
            warehouse_code,
            quantity,
            policy,
            reference_type=reference_type,
            reference_id=reference_id,
            actor_id=actor_id,
        )

    # ------------------------------------------------------------------
    # Replenishment
    # ------------------------------------------------------------------

    def suggestions(self) -> list[ReplenishmentSuggestion]:
        return self.replenishment.generate()

    def persist_suggestions(self, actor_id: str = "system") -> SuggestionRun:
        return self.replenishment.persist_run(actor_id)

    def approve_suggestion(self, suggestion_id: UUID, actor_id: str) -> None:
        self.replenishment.approve(suggestion_id, actor_id)

    def reject_suggestion(self, suggestion_id: UUID, actor_id: str) -> None:
        self.replenishment.reject(suggestion_id, actor_id)

    def mark_suggestion_ordered(
        self, suggestion_id: UUID, purchase_order_reference: str, actor_id: str
    ) -> None:
        self.replenishment.mark_ordered(suggestion_id, purchase_order_reference, actor_id)

    def suggestions_by_status(
        self, status: SuggestionStatus | str = SuggestionStatus.PENDING
    ) -> list[PersistedSuggestion]:
        return self.replenishment.list_by_status(SuggestionStatus(status))

    # ------------------------------------------------------------------
    # Domain events
    # ------------------------------------------------------------------

    def pending_events(self, limit: int = 100) -> list[PendingEvent]:
        return self.scope.read(
            lambda ctx: [PendingEvent.from_model(e) for e in ctx.outbox.pending(limit)]
        )

    def mark_event_delivered(self, event_id: UUID) -> None:
        self.scope.run((), lambda ctx: ctx.outbox.mark_delivered(event_id))
