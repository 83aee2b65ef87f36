"""
Module: inventory_kernel.models.lot
Responsibility: ORM persistence for lots, the traceable batches that carry
    remaining quantity and quality/availability state.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - lot_number is unique; a lot is created exactly once.
    - 0 <= remaining_quantity <= initial_quantity (CHECK constraint, and
      LotRegistry rejects the write before it reaches the database).
    - Lots are never deleted (ORM listener in db/immutability.py).
    - remaining_quantity only changes through a journal movement.

Failure modes:
    - IntegrityError on a duplicate lot_number or a CHECK violation.
    - ImmutabilityViolationError on DELETE.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import TrackedBase


class Lot(TrackedBase):
    """
    A traceable batch of one product in one warehouse.

    Contract:
        Quantities move only through MovementJournal, which calls
        LotRegistry.apply_movement(); state flags move only through the
        LotRegistry transitions.

    Guarantees:
        - availability_status is one of available, reserved, quarantine,
          expired, depleted.
        - quality_status is one of pending, approved, rejected, conditional.
        - parent_lot_number is set for lots split off by a transfer.
    """

    __tablename__ = "lots"

    __table_args__ = (
        CheckConstraint("remaining_quantity >= 0", name="ck_lot_remaining_non_negative"),
        CheckConstraint(
            "remaining_quantity <= initial_quantity",
            name="ck_lot_remaining_within_initial",
        ),
        CheckConstraint("initial_quantity > 0", name="ck_lot_initial_positive"),
        # Query: allocation candidates per pair
        Index("idx_lot_pair_status", "product_code", "warehouse_code", "availability_status"),
        Index("idx_lot_expiry", "expiry_date"),
    )

    lot_number: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    product_code: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("products.code"),
        nullable=False,
    )

    warehouse_code: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("warehouses.code"),
        nullable=False,
    )

    initial_quantity: Mapped[Decimal] = mapped_column(nullable=False)

    remaining_quantity: Mapped[Decimal] = mapped_column(nullable=False)

    manufacture_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # FIFO fallback ordering when manufacture_date is missing
    received_at: Mapped[datetime] = mapped_column(nullable=False)

    quality_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    availability_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="available",
    )

    quarantine_reason: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # Over-receipts wait for an explicit approval before release
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    origin_type: Mapped[str] = mapped_column(String(30), nullable=False)

    origin_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    parent_lot_number: Mapped[str | None] = mapped_column(
        String(100),
        ForeignKey("lots.lot_number"),
        nullable=True,
    )

    unit_cost: Mapped[Decimal | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Lot {self.lot_number}: {self.product_code}@{self.warehouse_code} "
            f"{self.remaining_quantity}/{self.initial_quantity} {self.availability_status}>"
        )
