"""
MovementJournal -- append-only recording of stock-affecting events.

Responsibility:
    Validates a MovementRequest, applies its lot effect through LotRegistry,
    appends the immutable Movement row with its per-pair sequence number,
    and recomputes every touched StockLevel -- all inside the caller's
    transaction.  Also records compensating reversals and lot write-offs.

Architecture position:
    Kernel > Services.  The only writer of the ``movements`` table and the
    only caller of LotRegistry.apply_movement().

Invariants enforced:
    - Conservation: every change to a lot's remaining quantity is a movement
      whose lot_delta equals that change.
    - Movements are rejected only for physical impossibility (bad quantity,
      unknown references, missing lot or reason, warehouse capability,
      insufficient lot quantity), never for business thresholds.
    - A movement is reversed at most once; lot-creating movements are not
      reversible (write the lot off instead).

Failure modes:
    - InvalidQuantityError, UnknownReferenceError, MissingReasonError,
      WarehouseCapabilityError, LotRequiredError (validation).
    - InsufficientLotQuantityError, LotQuantityOverflowError,
      InvalidTransitionError, MovementAlreadyReversedError (invariants).

Data flow:
    MovementRequest -> validate -> LotRegistry.apply_movement
        -> Movement row -> StockLedger.recompute (per touched pair)
        -> MovementRecord
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.dtos import LotSpec, MovementRecord, MovementRequest
from inventory_kernel.domain.lot_state import ISSUABLE
from inventory_kernel.domain.values import (
    ZERO,
    AvailabilityStatus,
    LotOrigin,
    MovementType,
    PairKey,
    QualityStatus,
)
from inventory_kernel.exceptions import (
    InvalidQuantityError,
    InvalidTransitionError,
    LotRequiredError,
    MissingReasonError,
    MovementAlreadyReversedError,
    UnknownReferenceError,
    WarehouseCapabilityError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.lot import Lot
from inventory_kernel.models.movement import Movement
from inventory_kernel.models.reference import Product, Warehouse
from inventory_kernel.services.base import BaseService
from inventory_kernel.services.lot_registry import LotRegistry
from inventory_kernel.services.stock_ledger import StockLedger

logger = get_logger("services.movement_journal")

WRITE_OFF_PREFIX = "write_off"

_OPPOSITE = {
    MovementType.INBOUND: MovementType.OUTBOUND,
    MovementType.OUTBOUND: MovementType.INBOUND,
}


class MovementJournal(BaseService):
    """
    Write side of the movement journal.

    Contract:
        The caller holds the pair locks for ``request.pair_keys`` (LedgerScope
        does this) and owns commit/rollback.  If append() raises, nothing it
        did survives the caller's rollback.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        lots: LotRegistry | None = None,
        ledger: StockLedger | None = None,
    ):
        super().__init__(session, clock)
        self.lots = lots or LotRegistry(session, self.clock)
        self.ledger = ledger or StockLedger(session, self.clock, self.lots.outbox)

    # ------------------------------------------------------------------
    # Append
    # ------------------------------------------------------------------

    def append(self, request: MovementRequest) -> MovementRecord:
        """Validate and record one movement.

        Raises:
            ValidationError subclasses for malformed input,
            InvariantViolationError subclasses for physical impossibility.
        """
        if request.reverses_movement_id is not None:
            raise InvalidTransitionError(
                str(request.reverses_movement_id), "recorded", "append reversal",
                "use reverse() to compensate a movement",
            )
        return self._record(request)

    def _record(
        self,
        request: MovementRequest,
        reversal_lot_delta: Decimal | None = None,
    ) -> MovementRecord:
        reversal = reversal_lot_delta is not None
        with LogContext.bind(
            product_code=request.product_code,
            warehouse_code=request.primary_warehouse,
            lot_number=request.lot_number,
            actor_id=request.actor_id,
        ):
            product = self._validate(request, check_capabilities=not reversal)
            lot = self._resolve_lot(request, product, reversal)

            if reversal:
                lot_delta = reversal_lot_delta
            elif lot is None or request.creates_lot:
                lot_delta = ZERO
            else:
                lot_delta = self._lot_delta(request)
            if lot is not None and lot_delta != ZERO:
                self.lots.apply_movement(lot, lot_delta)

            record = self._insert(request, lot_delta)

            child_lot: str | None = None
            if lot is not None and request.movement_type == MovementType.TRANSFER:
                child_lot = self._split_transferred_lot(lot, request, record)

            for key in request.pair_keys:
                self.ledger.recompute(key.product_code, key.warehouse_code)

            logger.info(
                "movement_reversed" if reversal else "movement_recorded",
                extra={
                    "movement_id": record.movement_id,
                    "movement_type": record.movement_type.value,
                    "quantity": record.quantity,
                    "lot_delta": record.lot_delta,
                    "seq": record.seq,
                    "source_warehouse": record.source_warehouse,
                    "destination_warehouse": record.destination_warehouse,
                    "reference_type": record.reference_type,
                    "reference_id": record.reference_id,
                    "reverses_movement_id": record.reverses_movement_id,
                    "child_lot_number": child_lot,
                },
            )
            return record

    def _validate(self, request: MovementRequest, check_capabilities: bool) -> Product:
        mt = request.movement_type
        if mt == MovementType.ADJUSTMENT:
            if request.quantity == ZERO:
                raise InvalidQuantityError(request.quantity, "delta")
            if not (request.reason and request.reason.strip()):
                raise MissingReasonError(mt.value)
        elif request.quantity <= ZERO:
            raise InvalidQuantityError(request.quantity)

        product = self.session.scalar(
            select(Product).where(
                Product.code == request.product_code, Product.is_active.is_(True)
            )
        )
        if product is None:
            raise UnknownReferenceError("product", request.product_code)

        if request.source_warehouse is not None:
            source = self._warehouse(request.source_warehouse)
            if (
                check_capabilities
                and mt in (MovementType.OUTBOUND, MovementType.TRANSFER)
                and not source.can_ship
            ):
                raise WarehouseCapabilityError(source.code, "can_ship")
        if request.destination_warehouse is not None:
            dest = self._warehouse(request.destination_warehouse)
            if (
                check_capabilities
                and mt in (MovementType.INBOUND, MovementType.TRANSFER)
                and not dest.can_receive
            ):
                raise WarehouseCapabilityError(dest.code, "can_receive")
        return product

    def _warehouse(self, code: str) -> Warehouse:
        warehouse = self.session.scalar(
            select(Warehouse).where(Warehouse.code == code, Warehouse.is_active.is_(True))
        )
        if warehouse is None:
            raise UnknownReferenceError("warehouse", code)
        return warehouse

    def _resolve_lot(
        self, request: MovementRequest, product: Product, reversal: bool
    ) -> Lot | None:
        mt = request.movement_type
        if request.lot_number is None:
            if product.is_lot_tracked:
                raise LotRequiredError(product.code, mt.value)
            return None

        lot = self.lots.load(request.lot_number)
        # The lot sits on the side of the movement that it leaves or enters
        if mt == MovementType.INBOUND:
            expected = request.destination_warehouse
        elif mt == MovementType.ADJUSTMENT:
            expected = request.primary_warehouse
        else:
            expected = request.source_warehouse
        if lot.product_code != request.product_code or lot.warehouse_code != expected:
            raise UnknownReferenceError(
                "lot", f"{request.lot_number} for {request.product_code}@{expected}"
            )

        if request.creates_lot:
            self._check_creating_movement(lot, request)
        elif (
            not reversal
            and mt in (MovementType.OUTBOUND, MovementType.TRANSFER)
            and AvailabilityStatus(lot.availability_status) not in ISSUABLE
        ):
            raise InvalidTransitionError(
                lot.lot_number,
                lot.availability_status,
                "issue from",
                "only available or reserved lots can be issued",
            )
        return lot

    def _check_creating_movement(self, lot: Lot, request: MovementRequest) -> None:
        """Creating movements together account for exactly the lot's initial quantity."""
        if request.movement_type not in (MovementType.INBOUND, MovementType.ADJUSTMENT) or (
            request.quantity <= ZERO
        ):
            raise InvalidTransitionError(
                lot.lot_number, lot.availability_status, "create",
                "only positive inbound or adjustment movements create lots",
            )
        touched = self.session.scalar(
            select(func.count(Movement.id)).where(
                Movement.lot_number == lot.lot_number,
                Movement.creates_lot.is_(False),
            )
        )
        created = self.session.scalar(
            select(func.coalesce(func.sum(Movement.quantity), 0)).where(
                Movement.lot_number == lot.lot_number,
                Movement.creates_lot.is_(True),
            )
        )
        if touched or Decimal(str(created)) + request.quantity > lot.initial_quantity:
            raise InvalidTransitionError(
                lot.lot_number, lot.availability_status, "create",
                "creating movements exceed the lot's initial quantity",
            )

    @staticmethod
    def _lot_delta(request: MovementRequest) -> Decimal:
        if request.movement_type in (MovementType.ADJUSTMENT, MovementType.INBOUND):
            return request.quantity
        # outbound and transfer leave the lot
        return -request.quantity

    def _insert(self, request: MovementRequest, lot_delta: Decimal) -> MovementRecord:
        now = self.clock.now()
        primary = request.primary_warehouse
        seq = self.ledger.next_seq(PairKey(request.product_code, primary), now)
        for key in request.pair_keys:
            if key.warehouse_code != primary:
                self.ledger.next_seq(key, now)

        if request.movement_type == MovementType.OUTBOUND:
            stored = -request.quantity
        else:
            stored = request.quantity

        movement = Movement(
            seq=seq,
            occurred_at=now,
            movement_type=request.movement_type.value,
            product_code=request.product_code,
            quantity=stored,
            source_warehouse=request.source_warehouse,
            destination_warehouse=request.destination_warehouse,
            primary_warehouse=primary,
            lot_number=request.lot_number,
            lot_delta=lot_delta,
            creates_lot=request.creates_lot,
            reference_type=request.reference_type,
            reference_id=request.reference_id,
            actor_id=request.actor_id,
            reason=request.reason,
            reverses_movement_id=request.reverses_movement_id,
        )
        self.session.add(movement)
        self.session.flush()
        return MovementRecord.from_model(movement)

    def _split_transferred_lot(
        self, lot: Lot, request: MovementRequest, record: MovementRecord
    ) -> str:
        """The moved quantity continues as a child lot in the destination."""
        child_number = f"{lot.lot_number}-T{record.seq}"
        self.lots.create_lot(
            LotSpec(
                lot_number=child_number,
                product_code=lot.product_code,
                warehouse_code=request.destination_warehouse,  # type: ignore[arg-type]
                quantity=request.quantity,
                manufacture_date=lot.manufacture_date,
                expiry_date=lot.expiry_date,
                origin_type=LotOrigin.TRANSFER,
                origin_reference=str(record.movement_id),
                unit_cost=lot.unit_cost,
                parent_lot_number=lot.lot_number,
                quality_status=QualityStatus(lot.quality_status),
            )
        )
        return child_number

    # ------------------------------------------------------------------
    # Corrections
    # ------------------------------------------------------------------

    def reverse(
        self,
        movement_id: UUID,
        actor_id: str = "system",
        reason: str = "reversal",
    ) -> MovementRecord:
        """
        Append the compensating movement for ``movement_id``.

        Inbound and outbound reverse into each other, a transfer reverses
        into the opposite transfer and an adjustment into the negated
        adjustment.  The lot effect is mirrored exactly.

        Raises:
            UnknownReferenceError: no such movement.
            MovementAlreadyReversedError: a reversal already exists.
            InvalidTransitionError: the movement is itself a reversal, or it
                created a lot.
        """
        original = self.session.get(Movement, movement_id)
        if original is None:
            raise UnknownReferenceError("movement", str(movement_id))
        if original.reverses_movement_id is not None:
            raise InvalidTransitionError(
                str(movement_id), "reversal", "reverse", "reversals cannot be reversed"
            )
        existing = self.session.scalar(
            select(Movement.id).where(Movement.reverses_movement_id == movement_id)
        )
        if existing is not None:
            raise MovementAlreadyReversedError(str(movement_id), str(existing))
        mt = MovementType(original.movement_type)
        if original.creates_lot or (mt == MovementType.TRANSFER and original.lot_number):
            raise InvalidTransitionError(
                str(movement_id), mt.value, "reverse",
                "movements that created a lot cannot be reversed; write the lot off",
            )

        common = dict(
            product_code=original.product_code,
            lot_number=original.lot_number,
            reference_type=original.reference_type,
            reference_id=original.reference_id,
            actor_id=actor_id,
            reverses_movement_id=original.id,
        )
        if mt == MovementType.ADJUSTMENT:
            request = MovementRequest.for_adjustment(
                warehouse_code=original.primary_warehouse,
                delta=-original.quantity,
                reason=reason,
                **common,
            )
        elif mt == MovementType.TRANSFER:
            request = MovementRequest(
                movement_type=mt,
                quantity=original.quantity,
                source_warehouse=original.destination_warehouse,
                destination_warehouse=original.source_warehouse,
                reason=reason,
                **common,
            )
        else:
            warehouse = original.destination_warehouse or original.source_warehouse
            opposite = _OPPOSITE[mt]
            request = MovementRequest(
                movement_type=opposite,
                quantity=abs(original.quantity),
                source_warehouse=warehouse if opposite == MovementType.OUTBOUND else None,
                destination_warehouse=warehouse if opposite == MovementType.INBOUND else None,
                reason=reason,
                **common,
            )
        return self._record(request, reversal_lot_delta=-original.lot_delta)

    def write_off(self, lot_number: str, reason: str, actor_id: str = "system") -> MovementRecord:
        """Adjust a lot's entire remaining quantity out of stock."""
        lot = self.lots.load(lot_number)
        if lot.remaining_quantity <= ZERO:
            raise InvalidTransitionError(
                lot_number, lot.availability_status, "write off", "lot has no quantity left"
            )
        return self.append(
            MovementRequest.for_adjustment(
                product_code=lot.product_code,
                warehouse_code=lot.warehouse_code,
                delta=-lot.remaining_quantity,
                reason=f"{WRITE_OFF_PREFIX}: {reason}",
                lot_number=lot_number,
                reference_type="lot",
                reference_id=lot_number,
                actor_id=actor_id,
            )
        )
