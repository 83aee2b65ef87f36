"""
Module: inventory_kernel.models.stock
Responsibility: ORM persistence for the cached per-(product, warehouse)
    stock aggregate and for open-order reservations against it.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One StockLevel per (product_code, warehouse_code).
    - Quantity fields are written only by StockLedger.recompute(); threshold
      fields only by StockLedger.set_thresholds().
    - version is the SQLAlchemy version_id_col: a concurrent writer that
      read an older version fails its UPDATE with StaleDataError.

Failure modes:
    - StaleDataError on a lost race (retried by LedgerScope).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import TrackedBase


class StockLevel(TrackedBase):
    """
    Derived aggregate for one pair.

    Guarantees:
        - available_quantity == on_hand_quantity - reserved_quantity after
          every recompute.
        - blocked_quantity is the remaining quantity of quarantined or
          expired lots; it stays in on_hand (the goods are physically
          there) and is reported separately.
        - movement_count numbers the movements whose primary pair this is.
    """

    __tablename__ = "stock_levels"

    __table_args__ = (
        UniqueConstraint("product_code", "warehouse_code", name="uq_stock_level_pair"),
    )

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

    on_hand_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    reserved_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    available_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    blocked_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    # Threshold configuration (hand-edited through set_thresholds only)
    min_stock_alert: Mapped[Decimal | None] = mapped_column(nullable=True)

    max_stock_alert: Mapped[Decimal | None] = mapped_column(nullable=True)

    reorder_point: Mapped[Decimal | None] = mapped_column(nullable=True)

    reorder_quantity: Mapped[Decimal | None] = mapped_column(nullable=True)

    movement_count: Mapped[int] = mapped_column(nullable=False, default=0)

    last_movement_at: Mapped[datetime | None] = mapped_column(nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<StockLevel {self.product_code}@{self.warehouse_code} "
            f"on_hand={self.on_hand_quantity} available={self.available_quantity}>"
        )


class StockReservation(TrackedBase):
    """
    Quantity held for an open order on one pair.

    Guarantees:
        - Only open reservations count toward reserved_quantity.
        - order_reference identifies the holder; releasing by reference
          closes every open reservation it holds.
    """

    __tablename__ = "stock_reservations"

    __table_args__ = (
        Index("idx_reservation_pair_open", "product_code", "warehouse_code", "is_open"),
        Index("idx_reservation_order", "order_reference"),
    )

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

    quantity: Mapped[Decimal] = mapped_column(nullable=False)

    order_reference: Mapped[str] = mapped_column(String(100), nullable=False)

    is_open: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    released_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        state = "open" if self.is_open else "released"
        return f"<StockReservation {self.order_reference} {self.quantity} {state}>"
