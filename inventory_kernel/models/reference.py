"""
Module: inventory_kernel.models.reference
Responsibility: ORM persistence for the external reference data the ledger
    validates against: products, warehouses and the supplier catalog.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - Product and warehouse codes are unique and are the foreign-key targets
      for every ledger table.
    - Inactive products and warehouses are treated as unknown references by
      the journal (they are never deleted while history points at them).
    - One catalog entry per (supplier, product).

Failure modes:
    - IntegrityError on duplicate codes.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import TrackedBase


class Product(TrackedBase):
    """
    A stockable product.

    Guarantees:
        - code is unique.
        - unit_cost is used for valuation and as the fallback estimated
          price when no supplier offers the product.
        - is_lot_tracked products require a lot on every movement.
    """

    __tablename__ = "products"

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    unit_of_measure: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pcs",
    )

    unit_cost: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    is_lot_tracked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Product {self.code}>"


class Warehouse(TrackedBase):
    """
    A physical storage location.

    Guarantees:
        - code is unique.
        - can_receive gates inbound and transfer-in movements.
        - can_ship gates outbound and transfer-out movements.
    """

    __tablename__ = "warehouses"

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    can_receive: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    can_ship: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Optional temperature band in degrees Celsius
    temperature_min: Mapped[Decimal | None] = mapped_column(nullable=True)

    temperature_max: Mapped[Decimal | None] = mapped_column(nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Warehouse {self.code}>"


class SupplierCatalogEntry(TrackedBase):
    """
    What one supplier offers for one product.

    Guarantees:
        - lead_time_days defaults to 7.
        - Only active entries are considered for replenishment.
    """

    __tablename__ = "supplier_catalog"

    __table_args__ = (
        UniqueConstraint("supplier_code", "product_code", name="uq_supplier_product"),
        Index("idx_supplier_catalog_product", "product_code"),
    )

    supplier_code: Mapped[str] = mapped_column(String(50), nullable=False)

    supplier_name: Mapped[str] = mapped_column(String(200), nullable=False)

    product_code: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("products.code"),
        nullable=False,
    )

    unit_price: Mapped[Decimal] = mapped_column(nullable=False)

    min_order_quantity: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    lead_time_days: Mapped[int] = mapped_column(Integer, nullable=False, default=7)

    is_preferred: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<SupplierCatalogEntry {self.supplier_code}/{self.product_code}>"
