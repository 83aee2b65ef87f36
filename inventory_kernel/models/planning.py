"""
Module: inventory_kernel.models.planning
Responsibility: ORM persistence for production orders (the open-order
    backlog read by replenishment) and persisted replenishment suggestions.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - order_number is unique.
    - Persisted suggestions are never edited for quantity; a newer run
      supersedes older pending ones by status only.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import TrackedBase, UUIDString


class ProductionOrder(TrackedBase):
    """
    A manufacturing order owned by the production workflow.

    Guarantees:
        - status is one of draft, planned, confirmed, in_progress,
          completed, cancelled.
        - warehouse_code is where components are consumed and the finished
          lot is received.
    """

    __tablename__ = "production_orders"

    __table_args__ = (Index("idx_production_order_status", "status"),)

    order_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

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

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")

    started_at: Mapped[datetime | None] = mapped_column(nullable=True)

    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    output_lot_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<ProductionOrder {self.order_number} {self.status}>"


class ReplenishmentSuggestionRecord(TrackedBase):
    """
    A persisted replenishment suggestion.

    Guarantees:
        - run_id groups the suggestions of one generation run.
        - status is one of pending, approved, rejected, ordered, superseded.
        - rank is the suggestion's position in its run.
    """

    __tablename__ = "replenishment_suggestions"

    __table_args__ = (
        Index("idx_suggestion_run", "run_id"),
        Index("idx_suggestion_status", "status"),
    )

    run_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    rank: Mapped[int] = mapped_column(Integer, nullable=False)

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

    on_hand_quantity: Mapped[Decimal] = mapped_column(nullable=False)

    available_quantity: Mapped[Decimal] = mapped_column(nullable=False)

    open_order_requirement: Mapped[Decimal] = mapped_column(nullable=False)

    projected_available: Mapped[Decimal] = mapped_column(nullable=False)

    suggested_quantity: Mapped[Decimal] = mapped_column(nullable=False)

    supplier_code: Mapped[str | None] = mapped_column(String(50), nullable=True)

    estimated_cost: Mapped[Decimal] = mapped_column(nullable=False)

    priority: Mapped[str] = mapped_column(String(20), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    decided_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    decided_at: Mapped[datetime | None] = mapped_column(nullable=True)

    purchase_order_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<ReplenishmentSuggestion {self.product_code}@{self.warehouse_code} "
            f"{self.suggested_quantity} {self.priority} {self.status}>"
        )
