"""
Module: inventory_kernel.models.movement
Responsibility: ORM persistence for the movement journal -- the append-only
    record of every stock-affecting event and the single source of truth for
    quantity changes.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Movements are immutable once recorded; corrections are compensating
      movements linked by reverses_movement_id (ORM listeners in
      db/immutability.py reject UPDATE and DELETE).
    - A movement is reversed at most once (UNIQUE reverses_movement_id).
    - (product_code, primary_warehouse, seq) is unique: seq is the causal
      order of movements on a pair.
    - Conservation: for every lot,
          initial_quantity - remaining_quantity == -SUM(lot_delta)
      over the movements that reference it.

Failure modes:
    - ImmutabilityViolationError on UPDATE/DELETE.
    - IntegrityError on a second reversal of the same movement.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, UUIDString


class Movement(Base):
    """
    One journal entry.

    Contract:
        quantity is signed per type: inbound +q, outbound -q, transfer +q
        (direction given by source/destination), adjustment +/-delta.
        lot_delta is the signed effect on the referenced lot's remaining
        quantity; it is 0 when creates_lot is set, since the lot was
        registered with its quantity already in place.

    Non-goals:
        - Does not hold the stock level; StockLedger recomputes that.
    """

    __tablename__ = "movements"

    __table_args__ = (
        UniqueConstraint(
            "product_code", "primary_warehouse", "seq", name="uq_movement_pair_seq"
        ),
        Index("idx_movement_lot", "lot_number"),
        Index("idx_movement_product_source", "product_code", "source_warehouse"),
        Index("idx_movement_product_destination", "product_code", "destination_warehouse"),
        Index("idx_movement_reference", "reference_type", "reference_id"),
    )

    seq: Mapped[int] = mapped_column(nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    movement_type: Mapped[str] = mapped_column(String(20), nullable=False)

    product_code: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("products.code"),
        nullable=False,
    )

    quantity: Mapped[Decimal] = mapped_column(nullable=False)

    source_warehouse: Mapped[str | None] = mapped_column(
        String(50),
        ForeignKey("warehouses.code"),
        nullable=True,
    )

    destination_warehouse: Mapped[str | None] = mapped_column(
        String(50),
        ForeignKey("warehouses.code"),
        nullable=True,
    )

    # The warehouse whose stock level numbered this movement
    primary_warehouse: Mapped[str] = mapped_column(String(50), nullable=False)

    lot_number: Mapped[str | None] = mapped_column(
        String(100),
        ForeignKey("lots.lot_number"),
        nullable=True,
    )

    lot_delta: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    creates_lot: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Originating document (purchase_receipt, production_order, physical_count, ...)
    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    reference_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)

    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    reverses_movement_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("movements.id"),
        nullable=True,
        unique=True,
    )

    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<Movement {self.movement_type} {self.product_code} "
            f"{self.quantity} seq={self.seq}>"
        )
