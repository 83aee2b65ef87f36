"""
Pure domain layer.

This module contains pure data transfer objects and domain logic
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O (the SystemClock excepted)

All domain objects are immutable and deterministic.
"""

from inventory_kernel.domain.alerts import classify_stock, primary_alert
from inventory_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from inventory_kernel.domain.dtos import (
    BomLine,
    BomView,
    LotSnapshot,
    LotSpec,
    MovementRecord,
    MovementRequest,
    ProductInfo,
    StockLevelSnapshot,
    SupplierOffer,
    pair_effects,
)
from inventory_kernel.domain.events import DomainEvent, DomainEventType
from inventory_kernel.domain.values import (
    ZERO,
    AllocationPolicy,
    AvailabilityStatus,
    BomStatus,
    InspectionResult,
    LotOrigin,
    MovementType,
    PairKey,
    ProductionOrderStatus,
    QualityStatus,
    StockAlert,
    SuggestionPriority,
    SuggestionStatus,
    to_quantity,
)

__all__ = [
    "ZERO",
    "AllocationPolicy",
    "AvailabilityStatus",
    "BomLine",
    "BomStatus",
    "BomView",
    "Clock",
    "DeterministicClock",
    "DomainEvent",
    "DomainEventType",
    "InspectionResult",
    "LotOrigin",
    "LotSnapshot",
    "LotSpec",
    "MovementRecord",
    "MovementRequest",
    "MovementType",
    "PairKey",
    "ProductInfo",
    "ProductionOrderStatus",
    "QualityStatus",
    "StockAlert",
    "StockLevelSnapshot",
    "SuggestionPriority",
    "SuggestionStatus",
    "SupplierOffer",
    "SystemClock",
    "classify_stock",
    "pair_effects",
    "primary_alert",
    "to_quantity",
]
