"""
Module: inventory_kernel.models.bom
Responsibility: ORM persistence for bills of materials and their component
    lines.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - (product_code, version) is unique.
    - At most one active BOM per product: checked by BomRegistry at write
      time and backed by a partial UNIQUE index on product_code where
      status = 'active' (PostgreSQL and SQLite both support it).
    - Acyclicity is checked by BomRegistry on activation; the schema cannot
      express it.

Failure modes:
    - IntegrityError if two writers race past the write-time check.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_kernel.db.base import Base, TrackedBase, UUIDString


class BillOfMaterials(TrackedBase):
    """
    A versioned recipe for one unit of product_code.

    Guarantees:
        - status is one of draft, active, obsolete.
        - components are ordered by position.
    """

    __tablename__ = "bills_of_materials"

    __table_args__ = (
        UniqueConstraint("product_code", "version", name="uq_bom_product_version"),
        Index(
            "uq_bom_one_active_per_product",
            "product_code",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    product_code: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("products.code"),
        nullable=False,
    )

    version: Mapped[str] = mapped_column(String(20), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")

    activated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)

    components: Mapped[list[BomComponent]] = relationship(
        back_populates="bom",
        order_by="BomComponent.position",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<BillOfMaterials {self.product_code} v{self.version} {self.status}>"


class BomComponent(Base):
    """One component line of a bill of materials."""

    __tablename__ = "bom_components"

    __table_args__ = (
        CheckConstraint("quantity_per_unit > 0", name="ck_bom_component_quantity_positive"),
        Index("idx_bom_component_bom", "bom_id"),
    )

    bom_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("bills_of_materials.id"),
        nullable=False,
    )

    component_code: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("products.code"),
        nullable=False,
    )

    quantity_per_unit: Mapped[Decimal] = mapped_column(nullable=False)

    # None means the component product's own unit
    unit_of_measure: Mapped[str | None] = mapped_column(String(20), nullable=True)

    is_optional: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    bom: Mapped[BillOfMaterials] = relationship(back_populates="components")

    def __repr__(self) -> str:
        return f"<BomComponent {self.component_code} x{self.quantity_per_unit}>"
