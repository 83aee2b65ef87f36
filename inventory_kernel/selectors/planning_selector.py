"""
Module: inventory_kernel.selectors.planning_selector
Responsibility: Read-only snapshots of the planning inputs -- products,
    active BOMs, supplier catalog, open production orders and what has
    already been issued to them -- in the DTO shapes the replenishment and
    explosion engines consume.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Every collection is returned in a deterministic order so that
      suggestion generation is reproducible.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import selectinload

from inventory_kernel.domain.dtos import BomLine, BomView, ProductInfo, SupplierOffer
from inventory_kernel.domain.values import (
    OPEN_ORDER_STATUSES,
    BomStatus,
    MovementType,
    ProductionOrderStatus,
)
from inventory_kernel.models.bom import BillOfMaterials
from inventory_kernel.models.movement import Movement
from inventory_kernel.models.planning import ProductionOrder
from inventory_kernel.models.reference import Product, SupplierCatalogEntry
from inventory_kernel.selectors.base import BaseSelector

PRODUCTION_ORDER_REFERENCE = "production_order"


@dataclass(frozen=True)
class OpenOrderView:
    order_number: str
    product_code: str
    warehouse_code: str
    quantity: Decimal
    status: ProductionOrderStatus


class PlanningSelector(BaseSelector):
    """Read-side snapshots for BOM explosion and replenishment."""

    def products(self) -> dict[str, ProductInfo]:
        rows = self.session.scalars(select(Product).order_by(Product.code)).all()
        return {
            p.code: ProductInfo(
                code=p.code,
                name=p.name,
                unit_of_measure=p.unit_of_measure,
                unit_cost=p.unit_cost,
                is_lot_tracked=p.is_lot_tracked,
            )
            for p in rows
        }

    def active_boms(self) -> dict[str, BomView]:
        rows = self.session.scalars(
            select(BillOfMaterials)
            .where(BillOfMaterials.status == BomStatus.ACTIVE.value)
            .options(selectinload(BillOfMaterials.components))
            .order_by(BillOfMaterials.product_code)
        ).all()
        return {bom.product_code: _bom_view(bom) for bom in rows}

    def supplier_offers(self) -> dict[str, tuple[SupplierOffer, ...]]:
        rows = self.session.scalars(
            select(SupplierCatalogEntry)
            .where(SupplierCatalogEntry.is_active.is_(True))
            .order_by(SupplierCatalogEntry.product_code, SupplierCatalogEntry.supplier_code)
        ).all()
        offers: dict[str, list[SupplierOffer]] = {}
        for entry in rows:
            offers.setdefault(entry.product_code, []).append(
                SupplierOffer(
                    supplier_code=entry.supplier_code,
                    supplier_name=entry.supplier_name,
                    product_code=entry.product_code,
                    unit_price=entry.unit_price,
                    min_order_quantity=entry.min_order_quantity,
                    lead_time_days=entry.lead_time_days,
                    is_preferred=entry.is_preferred,
                )
            )
        return {code: tuple(items) for code, items in offers.items()}

    def open_orders(self) -> list[OpenOrderView]:
        rows = self.session.scalars(
            select(ProductionOrder)
            .where(ProductionOrder.status.in_([s.value for s in OPEN_ORDER_STATUSES]))
            .order_by(ProductionOrder.order_number)
        ).all()
        return [
            OpenOrderView(
                order_number=o.order_number,
                product_code=o.product_code,
                warehouse_code=o.warehouse_code,
                quantity=o.quantity,
                status=ProductionOrderStatus(o.status),
            )
            for o in rows
        ]

    def issued_for_order(self, order_number: str) -> dict[str, Decimal]:
        """Net quantity per component already issued to an order.

        Reversed issues come back as inbound movements under the same
        reference and net off.
        """
        rows = self.session.execute(
            select(Movement.product_code, func.sum(Movement.quantity))
            .where(
                Movement.reference_type == PRODUCTION_ORDER_REFERENCE,
                Movement.reference_id == order_number,
                Movement.movement_type.in_(
                    [MovementType.OUTBOUND.value, MovementType.INBOUND.value]
                ),
                Movement.creates_lot.is_(False),
            )
            .group_by(Movement.product_code)
        ).all()
        # Outbound quantities are stored negative
        return {code: -Decimal(str(total)) for code, total in rows}


def _bom_view(bom: BillOfMaterials) -> BomView:
    return BomView(
        product_code=bom.product_code,
        version=bom.version,
        lines=tuple(
            BomLine(
                component_code=c.component_code,
                quantity_per_unit=c.quantity_per_unit,
                unit_of_measure=c.unit_of_measure,
                is_optional=c.is_optional,
            )
            for c in bom.components
        ),
    )
