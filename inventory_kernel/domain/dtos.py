"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that cross the kernel boundary:
    MovementRequest (journal input), MovementRecord (journal output),
    LotSpec / LotSnapshot, StockLevelSnapshot and the supplier/BOM views
    consumed by the planning engines.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods exist as boundary converters but are only
    invoked from the service and selector layers (never from engines).

Invariants enforced:
    - Services accept and return DTOs, never ORM entities, so callers can
      never mutate a persisted row behind the journal's back.
    - Quantities are Decimal.

Failure modes:
    - ValueError on a MovementRequest whose warehouse fields do not match
      its movement type.

Data flow:
    MovementRequest -> MovementJournal.append() -> MovementRecord
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from inventory_kernel.domain.alerts import classify_stock, primary_alert
from inventory_kernel.domain.values import (
    ZERO,
    AvailabilityStatus,
    LotOrigin,
    MovementType,
    PairKey,
    QualityStatus,
    StockAlert,
)

if TYPE_CHECKING:
    from inventory_kernel.models.lot import Lot as LotModel
    from inventory_kernel.models.movement import Movement as MovementModel
    from inventory_kernel.models.stock import StockLevel as StockLevelModel


@dataclass(frozen=True)
class MovementRequest:
    """
    Input to MovementJournal.append().

    ``quantity`` is always a positive magnitude except for adjustments, where
    it is the signed delta.  Adjustments name their location in
    ``destination_warehouse`` (delta > 0) or ``source_warehouse`` (delta < 0);
    ``for_adjustment()`` does this for you.
    """

    movement_type: MovementType
    product_code: str
    quantity: Decimal
    source_warehouse: str | None = None
    destination_warehouse: str | None = None
    lot_number: str | None = None
    reference_type: str | None = None
    reference_id: str | None = None
    actor_id: str = "system"
    reason: str | None = None
    creates_lot: bool = False
    reverses_movement_id: UUID | None = None

    def __post_init__(self) -> None:
        mt = self.movement_type
        if mt == MovementType.INBOUND and (
            self.destination_warehouse is None or self.source_warehouse is not None
        ):
            raise ValueError("inbound movements need only a destination warehouse")
        if mt == MovementType.OUTBOUND and (
            self.source_warehouse is None or self.destination_warehouse is not None
        ):
            raise ValueError("outbound movements need only a source warehouse")
        if mt == MovementType.TRANSFER:
            if self.source_warehouse is None or self.destination_warehouse is None:
                raise ValueError("transfers need a source and a destination warehouse")
            if self.source_warehouse == self.destination_warehouse:
                raise ValueError("transfer source and destination must differ")
        if mt == MovementType.ADJUSTMENT and (
            (self.source_warehouse is None) == (self.destination_warehouse is None)
        ):
            raise ValueError("adjustments name exactly one warehouse")

    @classmethod
    def for_adjustment(
        cls,
        product_code: str,
        warehouse_code: str,
        delta: Decimal,
        reason: str,
        lot_number: str | None = None,
        **kwargs,
    ) -> MovementRequest:
        """Build an adjustment, placing the warehouse on the side the delta implies."""
        if delta >= ZERO:
            return cls(
                movement_type=MovementType.ADJUSTMENT,
                product_code=product_code,
                quantity=delta,
                destination_warehouse=warehouse_code,
                lot_number=lot_number,
                reason=reason,
                **kwargs,
            )
        return cls(
            movement_type=MovementType.ADJUSTMENT,
            product_code=product_code,
            quantity=delta,
            source_warehouse=warehouse_code,
            lot_number=lot_number,
            reason=reason,
            **kwargs,
        )

    @property
    def primary_warehouse(self) -> str:
        """The warehouse whose per-pair counter numbers this movement."""
        if self.movement_type == MovementType.INBOUND:
            return self.destination_warehouse  # type: ignore[return-value]
        if self.movement_type == MovementType.ADJUSTMENT:
            return self.destination_warehouse or self.source_warehouse  # type: ignore[return-value]
        return self.source_warehouse  # type: ignore[return-value]

    @property
    def pair_keys(self) -> tuple[PairKey, ...]:
        """Every (product, warehouse) pair this movement touches, sorted."""
        warehouses = {
            w for w in (self.source_warehouse, self.destination_warehouse) if w
        }
        return tuple(sorted(PairKey(self.product_code, w) for w in warehouses))


@dataclass(frozen=True)
class MovementRecord:
    """A committed journal entry."""

    movement_id: UUID
    seq: int
    occurred_at: datetime
    movement_type: MovementType
    product_code: str
    quantity: Decimal
    lot_delta: Decimal
    source_warehouse: str | None
    destination_warehouse: str | None
    lot_number: str | None
    reference_type: str | None
    reference_id: str | None
    actor_id: str
    reason: str | None
    creates_lot: bool
    reverses_movement_id: UUID | None

    @classmethod
    def from_model(cls, model: MovementModel) -> MovementRecord:
        return cls(
            movement_id=model.id,
            seq=model.seq,
            occurred_at=model.occurred_at,
            movement_type=MovementType(model.movement_type),
            product_code=model.product_code,
            quantity=model.quantity,
            lot_delta=model.lot_delta,
            source_warehouse=model.source_warehouse,
            destination_warehouse=model.destination_warehouse,
            lot_number=model.lot_number,
            reference_type=model.reference_type,
            reference_id=model.reference_id,
            actor_id=model.actor_id,
            reason=model.reason,
            creates_lot=model.creates_lot,
            reverses_movement_id=model.reverses_movement_id,
        )

    def pair_effects(self) -> dict[str, Decimal]:
        """Signed on-hand effect of this movement per warehouse."""
        return pair_effects(
            self.movement_type,
            self.quantity,
            self.source_warehouse,
            self.destination_warehouse,
        )


def pair_effects(
    movement_type: MovementType,
    quantity: Decimal,
    source_warehouse: str | None,
    destination_warehouse: str | None,
) -> dict[str, Decimal]:
    """
    Signed on-hand effect per warehouse for a stored movement.

    Stored quantities are already signed for inbound/outbound/adjustment.
    A transfer stores the moved magnitude, so its source side is negated.
    """
    effects: dict[str, Decimal] = {}
    if destination_warehouse is not None:
        effects[destination_warehouse] = quantity
    if source_warehouse is not None:
        if movement_type == MovementType.TRANSFER:
            effects[source_warehouse] = -quantity
        else:
            effects[source_warehouse] = quantity
    return effects


@dataclass(frozen=True)
class LotSpec:
    """Everything needed to register a new lot."""

    lot_number: str
    product_code: str
    warehouse_code: str
    quantity: Decimal
    manufacture_date: date | None = None
    expiry_date: date | None = None
    origin_type: LotOrigin = LotOrigin.SUPPLIER_RECEIPT
    origin_reference: str | None = None
    unit_cost: Decimal | None = None
    parent_lot_number: str | None = None
    quality_status: QualityStatus = QualityStatus.PENDING
    quarantine_reason: str | None = None
    requires_approval: bool = False


@dataclass(frozen=True)
class LotSnapshot:
    """Read view of a lot with its effective (lazily expired) status."""

    lot_number: str
    product_code: str
    warehouse_code: str
    initial_quantity: Decimal
    remaining_quantity: Decimal
    manufacture_date: date | None
    expiry_date: date | None
    received_at: datetime
    quality_status: QualityStatus
    availability_status: AvailabilityStatus
    origin_type: LotOrigin
    origin_reference: str | None
    parent_lot_number: str | None
    quarantine_reason: str | None
    requires_approval: bool

    @classmethod
    def from_model(
        cls,
        model: LotModel,
        effective_status: AvailabilityStatus | None = None,
    ) -> LotSnapshot:
        return cls(
            lot_number=model.lot_number,
            product_code=model.product_code,
            warehouse_code=model.warehouse_code,
            initial_quantity=model.initial_quantity,
            remaining_quantity=model.remaining_quantity,
            manufacture_date=model.manufacture_date,
            expiry_date=model.expiry_date,
            received_at=model.received_at,
            quality_status=QualityStatus(model.quality_status),
            availability_status=effective_status
            or AvailabilityStatus(model.availability_status),
            origin_type=LotOrigin(model.origin_type),
            origin_reference=model.origin_reference,
            parent_lot_number=model.parent_lot_number,
            quarantine_reason=model.quarantine_reason,
            requires_approval=model.requires_approval,
        )


@dataclass(frozen=True)
class StockLevelSnapshot:
    """Cached aggregate for one (product, warehouse) pair."""

    product_code: str
    warehouse_code: str
    on_hand_quantity: Decimal = ZERO
    reserved_quantity: Decimal = ZERO
    available_quantity: Decimal = ZERO
    blocked_quantity: Decimal = ZERO
    min_stock_alert: Decimal | None = None
    max_stock_alert: Decimal | None = None
    reorder_point: Decimal | None = None
    reorder_quantity: Decimal | None = None
    movement_count: int = 0

    @classmethod
    def from_model(cls, model: StockLevelModel) -> StockLevelSnapshot:
        return cls(
            product_code=model.product_code,
            warehouse_code=model.warehouse_code,
            on_hand_quantity=model.on_hand_quantity,
            reserved_quantity=model.reserved_quantity,
            available_quantity=model.available_quantity,
            blocked_quantity=model.blocked_quantity,
            min_stock_alert=model.min_stock_alert,
            max_stock_alert=model.max_stock_alert,
            reorder_point=model.reorder_point,
            reorder_quantity=model.reorder_quantity,
            movement_count=model.movement_count,
        )

    @classmethod
    def empty(cls, key: PairKey) -> StockLevelSnapshot:
        return cls(product_code=key.product_code, warehouse_code=key.warehouse_code)

    @property
    def key(self) -> PairKey:
        return PairKey(self.product_code, self.warehouse_code)

    @property
    def alerts(self) -> tuple[StockAlert, ...]:
        return classify_stock(
            self.on_hand_quantity,
            self.available_quantity,
            self.min_stock_alert,
            self.max_stock_alert,
            self.reorder_point,
        )

    @property
    def primary_alert(self) -> StockAlert | None:
        return primary_alert(self.alerts)


@dataclass(frozen=True)
class SupplierOffer:
    """An active supplier catalog entry for one product."""

    supplier_code: str
    supplier_name: str
    product_code: str
    unit_price: Decimal
    min_order_quantity: Decimal = ZERO
    lead_time_days: int = 7
    is_preferred: bool = False


@dataclass(frozen=True)
class BomLine:
    """One component edge of an active bill of materials."""

    component_code: str
    quantity_per_unit: Decimal
    unit_of_measure: str | None = None
    is_optional: bool = False


@dataclass(frozen=True)
class BomView:
    """An active bill of materials as consumed by the explosion engine."""

    product_code: str
    version: str
    lines: tuple[BomLine, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ProductInfo:
    code: str
    name: str
    unit_of_measure: str
    unit_cost: Decimal
    is_lot_tracked: bool
