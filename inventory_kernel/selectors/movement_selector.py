"""
Module: inventory_kernel.selectors.movement_selector
Responsibility: Read-only queries over the movement journal.
Architecture position: Kernel > Selectors.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, func, or_, select

from inventory_kernel.domain.dtos import MovementRecord
from inventory_kernel.domain.values import MovementType
from inventory_kernel.exceptions import UnknownReferenceError
from inventory_kernel.models.movement import Movement
from inventory_kernel.selectors.base import BaseSelector


class MovementSelector(BaseSelector):
    """Read side of the movement journal."""

    def get(self, movement_id: UUID) -> MovementRecord:
        movement = self.session.get(Movement, movement_id)
        if movement is None:
            raise UnknownReferenceError("movement", str(movement_id))
        return MovementRecord.from_model(movement)

    def for_lot(self, lot_number: str) -> list[MovementRecord]:
        rows = self.session.scalars(
            select(Movement)
            .where(Movement.lot_number == lot_number)
            .order_by(Movement.occurred_at, Movement.seq)
        ).all()
        return [MovementRecord.from_model(m) for m in rows]

    def for_pair(self, product_code: str, warehouse_code: str) -> list[MovementRecord]:
        """Movements touching a pair, in that pair's causal order."""
        rows = self.session.scalars(
            select(Movement)
            .where(
                Movement.product_code == product_code,
                or_(
                    Movement.source_warehouse == warehouse_code,
                    Movement.destination_warehouse == warehouse_code,
                ),
            )
            .order_by(Movement.occurred_at, Movement.primary_warehouse, Movement.seq)
        ).all()
        return [MovementRecord.from_model(m) for m in rows]

    def for_reference(self, reference_type: str, reference_id: str) -> list[MovementRecord]:
        rows = self.session.scalars(
            select(Movement)
            .where(
                Movement.reference_type == reference_type,
                Movement.reference_id == reference_id,
            )
            .order_by(Movement.occurred_at, Movement.seq)
        ).all()
        return [MovementRecord.from_model(m) for m in rows]

    def pair_balance(self, product_code: str, warehouse_code: str) -> Decimal:
        """Raw journal sum for a pair (the on-hand of a non-lot-tracked product)."""
        effect = case(
            (Movement.destination_warehouse == warehouse_code, Movement.quantity),
            (Movement.movement_type == MovementType.TRANSFER.value, -Movement.quantity),
            else_=Movement.quantity,
        )
        total = self.session.scalar(
            select(func.coalesce(func.sum(effect), 0)).where(
                Movement.product_code == product_code,
                or_(
                    Movement.source_warehouse == warehouse_code,
                    Movement.destination_warehouse == warehouse_code,
                ),
            )
        )
        return Decimal(str(total))

    def reversal_of(self, movement_id: UUID) -> MovementRecord | None:
        movement = self.session.scalar(
            select(Movement).where(Movement.reverses_movement_id == movement_id)
        )
        return MovementRecord.from_model(movement) if movement is not None else None
