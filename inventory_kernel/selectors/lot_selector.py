"""
Module: inventory_kernel.selectors.lot_selector
Responsibility: Read-only queries over lots: lookup, allocation candidates,
    expiring lots, and conservation verification against the journal.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Effective availability (depletion and lazy expiry) is computed from the
      injected clock; nothing is written.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import func, select

from inventory_kernel.domain.dtos import LotSnapshot
from inventory_kernel.domain.lot_state import effective_availability
from inventory_kernel.domain.values import ZERO, AvailabilityStatus
from inventory_kernel.exceptions import LotNotFoundError
from inventory_kernel.models.lot import Lot
from inventory_kernel.models.movement import Movement
from inventory_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class ConservationGap:
    """A lot whose quantity does not reconcile with its movements."""

    lot_number: str
    initial_quantity: Decimal
    remaining_quantity: Decimal
    journal_sum: Decimal

    @property
    def difference(self) -> Decimal:
        return (self.initial_quantity - self.remaining_quantity) + self.journal_sum


class LotSelector(BaseSelector):
    """Read side of the lot registry."""

    def _snapshot(self, lot: Lot) -> LotSnapshot:
        status = effective_availability(
            lot.availability_status,
            lot.remaining_quantity,
            lot.expiry_date,
            self.clock.today(),
        )
        return LotSnapshot.from_model(lot, effective_status=status)

    def get(self, lot_number: str) -> LotSnapshot:
        lot = self.session.scalar(select(Lot).where(Lot.lot_number == lot_number))
        if lot is None:
            raise LotNotFoundError(lot_number)
        return self._snapshot(lot)

    def find(self, lot_number: str) -> LotSnapshot | None:
        lot = self.session.scalar(select(Lot).where(Lot.lot_number == lot_number))
        return self._snapshot(lot) if lot is not None else None

    def list_for_pair(
        self,
        product_code: str,
        warehouse_code: str,
        include_depleted: bool = False,
    ) -> list[LotSnapshot]:
        stmt = select(Lot).where(
            Lot.product_code == product_code,
            Lot.warehouse_code == warehouse_code,
        )
        if not include_depleted:
            stmt = stmt.where(Lot.availability_status != AvailabilityStatus.DEPLETED.value)
        lots = self.session.scalars(stmt.order_by(Lot.lot_number)).all()
        return [self._snapshot(lot) for lot in lots]

    def allocation_candidates(
        self,
        product_code: str,
        warehouse_code: str,
    ) -> list[LotSnapshot]:
        """Lots an allocator may draw from: effectively available, quantity left."""
        return [
            snap
            for snap in self.list_for_pair(product_code, warehouse_code)
            if snap.availability_status == AvailabilityStatus.AVAILABLE
            and snap.remaining_quantity > ZERO
        ]

    def expiring(self, within_days: int) -> list[LotSnapshot]:
        """Non-depleted lots whose expiry date falls within the window.

        Already-expired lots with quantity left are included; they are the
        most urgent.  Sorted by expiry date then lot number.
        """
        horizon = self.clock.today() + timedelta(days=within_days)
        lots = self.session.scalars(
            select(Lot)
            .where(
                Lot.expiry_date.is_not(None),
                Lot.expiry_date <= horizon,
                Lot.availability_status != AvailabilityStatus.DEPLETED.value,
                Lot.remaining_quantity > 0,
            )
            .order_by(Lot.expiry_date, Lot.lot_number)
        ).all()
        return [self._snapshot(lot) for lot in lots]

    def journal_sum(self, lot_number: str) -> Decimal:
        total = self.session.scalar(
            select(func.coalesce(func.sum(Movement.lot_delta), 0)).where(
                Movement.lot_number == lot_number
            )
        )
        return Decimal(str(total))

    def conservation_gaps(self) -> list[ConservationGap]:
        """Every lot where initial - remaining != -sum(lot_delta). Empty when healthy."""
        sums = dict(
            self.session.execute(
                select(Movement.lot_number, func.sum(Movement.lot_delta))
                .where(Movement.lot_number.is_not(None))
                .group_by(Movement.lot_number)
            ).all()
        )
        gaps = []
        for lot in self.session.scalars(select(Lot).order_by(Lot.lot_number)):
            journal = Decimal(str(sums.get(lot.lot_number, 0)))
            gap = ConservationGap(
                lot_number=lot.lot_number,
                initial_quantity=lot.initial_quantity,
                remaining_quantity=lot.remaining_quantity,
                journal_sum=journal,
            )
            if gap.difference != ZERO:
                gaps.append(gap)
        return gaps
