"""ORM models for the inventory kernel."""

from inventory_kernel.models.bom import BillOfMaterials, BomComponent
from inventory_kernel.models.domain_event import DomainEventRecord
from inventory_kernel.models.lot import Lot
from inventory_kernel.models.movement import Movement
from inventory_kernel.models.planning import (
    ProductionOrder,
    ReplenishmentSuggestionRecord,
)
from inventory_kernel.models.reference import Product, SupplierCatalogEntry, Warehouse
from inventory_kernel.models.stock import StockLevel, StockReservation

__all__ = [
    "BillOfMaterials",
    "BomComponent",
    "DomainEventRecord",
    "Lot",
    "Movement",
    "Product",
    "ProductionOrder",
    "ReplenishmentSuggestionRecord",
    "StockLevel",
    "StockReservation",
    "SupplierCatalogEntry",
    "Warehouse",
]
