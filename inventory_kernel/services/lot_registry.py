"""
LotRegistry -- lot creation and lot state transitions.

Responsibility:
    Creates lots exactly once, applies journal quantity deltas, and owns the
    quality/availability state machine (quarantine, release, reserve,
    quality disposition, over-receipt approval, lazy expiry).

Architecture position:
    Kernel > Services.  Quantity changes arrive only from MovementJournal
    through ``apply_movement``; there is no public "set quantity".

Invariants enforced:
    - 0 <= remaining_quantity <= initial_quantity, checked before any write.
    - Lot numbers are unique; a lot is never deleted.
    - Quarantine is reversible only through release(), and release() refuses
      rejected lots, lots awaiting over-receipt approval and (when inspection
      is required) lots still pending inspection.

Failure modes:
    - LotNotFoundError, DuplicateLotError, InvalidTransitionError,
      InsufficientLotQuantityError, LotQuantityOverflowError.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.dtos import LotSnapshot, LotSpec
from inventory_kernel.domain.events import DomainEventType
from inventory_kernel.domain.lot_state import (
    effective_availability,
    release_blocker,
    status_after_quantity_change,
)
from inventory_kernel.domain.values import (
    ZERO,
    AvailabilityStatus,
    QualityStatus,
)
from inventory_kernel.exceptions import (
    DuplicateLotError,
    InsufficientLotQuantityError,
    InvalidQuantityError,
    InvalidTransitionError,
    LotNotFoundError,
    LotQuantityOverflowError,
    UnknownReferenceError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.lot import Lot
from inventory_kernel.models.reference import Product, Warehouse
from inventory_kernel.services.base import BaseService
from inventory_kernel.services.outbox import EventOutbox

logger = get_logger("services.lot_registry")

INSPECTION_REASON = "inspection"
OVER_RECEIPT_REASON = "over_receipt"
QUALITY_REJECTED_REASON = "quality_rejected"


class LotRegistry(BaseService):
    """
    Write side of the lot registry.

    Contract:
        Every public method flushes within the caller's transaction.
        State-changing methods return a fresh LotSnapshot.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        outbox: EventOutbox | None = None,
        require_inspection: bool = False,
    ):
        super().__init__(session, clock)
        self.outbox = outbox or EventOutbox(session, self.clock)
        self.require_inspection = require_inspection

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def load(self, lot_number: str) -> Lot:
        """Load a lot for writing, persisting lazy expiry first."""
        lot = self.session.scalar(
            select(Lot).where(Lot.lot_number == lot_number).with_for_update()
        )
        if lot is None:
            raise LotNotFoundError(lot_number)
        self.refresh_expiry(lot)
        return lot

    def refresh_expiry(self, lot: Lot) -> bool:
        """Persist the expired state if the lot's expiry date has passed."""
        effective = effective_availability(
            lot.availability_status,
            lot.remaining_quantity,
            lot.expiry_date,
            self.clock.today(),
        )
        if effective == AvailabilityStatus.EXPIRED and lot.availability_status != effective.value:
            lot.availability_status = effective.value
            self.session.flush()
            logger.info(
                "lot_expired",
                extra={"lot_number": lot.lot_number, "expiry_date": lot.expiry_date},
            )
            return True
        return False

    def snapshot(self, lot: Lot) -> LotSnapshot:
        return LotSnapshot.from_model(lot)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_lot(self, spec: LotSpec) -> LotSnapshot:
        """
        Register a new lot with its full quantity in place.

        The caller records the matching creating movement(s) through the
        journal in the same transaction.

        Raises:
            InvalidQuantityError: quantity <= 0.
            UnknownReferenceError: unknown or inactive product/warehouse.
            DuplicateLotError: lot number already registered.
        """
        if spec.quantity <= ZERO:
            raise InvalidQuantityError(spec.quantity)
        product = self.session.scalar(
            select(Product).where(Product.code == spec.product_code, Product.is_active.is_(True))
        )
        if product is None:
            raise UnknownReferenceError("product", spec.product_code)
        warehouse = self.session.scalar(
            select(Warehouse).where(
                Warehouse.code == spec.warehouse_code, Warehouse.is_active.is_(True)
            )
        )
        if warehouse is None:
            raise UnknownReferenceError("warehouse", spec.warehouse_code)
        existing = self.session.scalar(select(Lot.id).where(Lot.lot_number == spec.lot_number))
        if existing is not None:
            raise DuplicateLotError(spec.lot_number)

        status = AvailabilityStatus.AVAILABLE
        reason = spec.quarantine_reason
        if spec.requires_approval:
            status = AvailabilityStatus.QUARANTINE
            reason = reason or OVER_RECEIPT_REASON
        elif reason is not None:
            status = AvailabilityStatus.QUARANTINE
        elif self.require_inspection and spec.quality_status == QualityStatus.PENDING:
            status = AvailabilityStatus.QUARANTINE
            reason = INSPECTION_REASON
        elif spec.quality_status == QualityStatus.REJECTED:
            status = AvailabilityStatus.QUARANTINE
            reason = QUALITY_REJECTED_REASON

        lot = Lot(
            lot_number=spec.lot_number,
            product_code=spec.product_code,
            warehouse_code=spec.warehouse_code,
            initial_quantity=spec.quantity,
            remaining_quantity=spec.quantity,
            manufacture_date=spec.manufacture_date,
            expiry_date=spec.expiry_date,
            received_at=self.clock.now(),
            quality_status=spec.quality_status.value,
            availability_status=status.value,
            quarantine_reason=reason,
            requires_approval=spec.requires_approval,
            origin_type=spec.origin_type.value,
            origin_reference=spec.origin_reference,
            parent_lot_number=spec.parent_lot_number,
            unit_cost=spec.unit_cost if spec.unit_cost is not None else product.unit_cost,
        )
        self.session.add(lot)
        self.session.flush()

        logger.info(
            "lot_created",
            extra={
                "lot_number": lot.lot_number,
                "product_code": lot.product_code,
                "warehouse_code": lot.warehouse_code,
                "quantity": lot.initial_quantity,
                "availability_status": lot.availability_status,
                "origin_type": lot.origin_type,
            },
        )
        if status == AvailabilityStatus.QUARANTINE:
            self._emit(DomainEventType.LOT_QUARANTINED, lot)
        return self.snapshot(lot)

    # ------------------------------------------------------------------
    # Quantity (journal only)
    # ------------------------------------------------------------------

    def apply_movement(self, lot: Lot, delta: Decimal) -> LotSnapshot:
        """
        Apply a signed journal delta to remaining_quantity.

        Raises:
            InsufficientLotQuantityError: remaining would drop below zero.
            LotQuantityOverflowError: remaining would exceed initial.
        """
        resulting = lot.remaining_quantity + delta
        if resulting < ZERO:
            raise InsufficientLotQuantityError(
                lot.lot_number, lot.remaining_quantity, -delta
            )
        if resulting > lot.initial_quantity:
            raise LotQuantityOverflowError(lot.lot_number, lot.initial_quantity, resulting)

        previous = lot.availability_status
        lot.remaining_quantity = resulting
        lot.availability_status = status_after_quantity_change(
            lot.availability_status, lot.quality_status, resulting
        ).value
        self.session.flush()

        if previous != lot.availability_status:
            logger.info(
                "lot_status_changed",
                extra={
                    "lot_number": lot.lot_number,
                    "from_status": previous,
                    "to_status": lot.availability_status,
                },
            )
        return self.snapshot(lot)

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def quarantine(self, lot_number: str, reason: str) -> LotSnapshot:
        lot = self.load(lot_number)
        if lot.availability_status not in (
            AvailabilityStatus.AVAILABLE.value,
            AvailabilityStatus.RESERVED.value,
        ):
            raise InvalidTransitionError(
                lot_number, lot.availability_status, "quarantine"
            )
        lot.availability_status = AvailabilityStatus.QUARANTINE.value
        lot.quarantine_reason = reason
        self.session.flush()
        logger.info(
            "lot_quarantined",
            extra={"lot_number": lot_number, "reason": reason},
        )
        self._emit(DomainEventType.LOT_QUARANTINED, lot)
        return self.snapshot(lot)

    def release(self, lot_number: str) -> LotSnapshot:
        lot = self.load(lot_number)
        blocker = release_blocker(
            lot.availability_status,
            lot.quality_status,
            lot.requires_approval,
            self.require_inspection,
        )
        if blocker is not None:
            raise InvalidTransitionError(
                lot_number, lot.availability_status, "release", blocker
            )
        lot.availability_status = AvailabilityStatus.AVAILABLE.value
        lot.quarantine_reason = None
        self.session.flush()
        logger.info("lot_released", extra={"lot_number": lot_number})
        self._emit(DomainEventType.LOT_RELEASED, lot)
        return self.snapshot(lot)

    def reserve(self, lot_number: str) -> LotSnapshot:
        lot = self.load(lot_number)
        if lot.availability_status != AvailabilityStatus.AVAILABLE.value:
            raise InvalidTransitionError(lot_number, lot.availability_status, "reserve")
        lot.availability_status = AvailabilityStatus.RESERVED.value
        self.session.flush()
        return self.snapshot(lot)

    def unreserve(self, lot_number: str) -> LotSnapshot:
        lot = self.load(lot_number)
        if lot.availability_status != AvailabilityStatus.RESERVED.value:
            raise InvalidTransitionError(lot_number, lot.availability_status, "unreserve")
        lot.availability_status = AvailabilityStatus.AVAILABLE.value
        self.session.flush()
        return self.snapshot(lot)

    def set_quality_status(self, lot_number: str, status: QualityStatus) -> LotSnapshot:
        """
        Record a quality disposition.

        Rejection also quarantines a usable lot: a rejected lot is
        terminal for use and leaves only through a write-off.
        """
        lot = self.load(lot_number)
        current = QualityStatus(lot.quality_status)
        if current == QualityStatus.REJECTED and status != QualityStatus.REJECTED:
            raise InvalidTransitionError(
                lot_number, current.value, f"set quality to {status.value}",
                "rejection is final",
            )
        lot.quality_status = status.value
        quarantined_now = False
        if status == QualityStatus.REJECTED and lot.availability_status in (
            AvailabilityStatus.AVAILABLE.value,
            AvailabilityStatus.RESERVED.value,
        ):
            lot.availability_status = AvailabilityStatus.QUARANTINE.value
            lot.quarantine_reason = QUALITY_REJECTED_REASON
            quarantined_now = True
        self.session.flush()
        logger.info(
            "lot_quality_changed",
            extra={"lot_number": lot_number, "from_status": current.value, "to_status": status.value},
        )
        if quarantined_now:
            self._emit(DomainEventType.LOT_QUARANTINED, lot)
        return self.snapshot(lot)

    def approve_over_receipt(self, lot_number: str, actor_id: str = "system") -> LotSnapshot:
        """Clear the approval hold; release the lot if that was its only blocker."""
        lot = self.load(lot_number)
        if not lot.requires_approval:
            raise InvalidTransitionError(
                lot_number, lot.availability_status, "approve over-receipt",
                "lot does not await approval",
            )
        lot.requires_approval = False
        self.session.flush()
        logger.info(
            "over_receipt_approved",
            extra={"lot_number": lot_number, "approved_by": actor_id},
        )
        if (
            lot.availability_status == AvailabilityStatus.QUARANTINE.value
            and lot.quarantine_reason == OVER_RECEIPT_REASON
            and release_blocker(
                lot.availability_status,
                lot.quality_status,
                lot.requires_approval,
                self.require_inspection,
            )
            is None
        ):
            return self.release(lot_number)
        return self.snapshot(lot)

    def _emit(self, event_type: DomainEventType, lot: Lot) -> None:
        self.outbox.emit(
            event_type,
            aggregate_type="lot",
            aggregate_id=lot.lot_number,
            payload={
                "lot_number": lot.lot_number,
                "product_code": lot.product_code,
                "warehouse_code": lot.warehouse_code,
                "remaining_quantity": lot.remaining_quantity,
                "quality_status": lot.quality_status,
                "availability_status": lot.availability_status,
                "quarantine_reason": lot.quarantine_reason,
                "expiry_date": lot.expiry_date,
            },
        )
