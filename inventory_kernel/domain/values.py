"""
Values -- enumerations and small value objects shared by every layer.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Quantities are Decimal, never float.  ``to_quantity`` rejects floats
      outright so binary rounding errors never reach the journal.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import NamedTuple

ZERO = Decimal("0")


class MovementType(str, Enum):
    """Kinds of stock-affecting events recorded in the journal."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"
    TRANSFER = "transfer"
    ADJUSTMENT = "adjustment"


class QualityStatus(str, Enum):
    """Quality disposition of a lot."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CONDITIONAL = "conditional"


class AvailabilityStatus(str, Enum):
    """Whether a lot's remaining quantity can be used."""

    AVAILABLE = "available"
    RESERVED = "reserved"
    QUARANTINE = "quarantine"
    EXPIRED = "expired"
    DEPLETED = "depleted"


class LotOrigin(str, Enum):
    """Where a lot came from."""

    SUPPLIER_RECEIPT = "supplier_receipt"
    PRODUCTION_ORDER = "production_order"
    TRANSFER = "transfer"
    PHYSICAL_COUNT = "physical_count"


class AllocationPolicy(str, Enum):
    """Lot selection policy for outbound requests."""

    FIFO = "fifo"  # Oldest manufacture/receipt first
    FEFO = "fefo"  # Soonest expiry first, undated last


class StockAlert(str, Enum):
    """Alert conditions on a stock level, in display priority order."""

    CRITICAL = "critical"
    LOW = "low"
    REORDER = "reorder"
    OVERSTOCK = "overstock"


class SuggestionPriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class SuggestionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ORDERED = "ordered"
    SUPERSEDED = "superseded"


class BomStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    OBSOLETE = "obsolete"


class ProductionOrderStatus(str, Enum):
    DRAFT = "draft"
    PLANNED = "planned"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


OPEN_ORDER_STATUSES: frozenset[ProductionOrderStatus] = frozenset({
    ProductionOrderStatus.DRAFT,
    ProductionOrderStatus.PLANNED,
    ProductionOrderStatus.CONFIRMED,
    ProductionOrderStatus.IN_PROGRESS,
})


class InspectionResult(str, Enum):
    """Outcome reported by the quality workflow."""

    PASSED = "passed"
    FAILED = "failed"
    CONDITIONAL = "conditional"


class PairKey(NamedTuple):
    """The unit of mutual exclusion: one product in one warehouse."""

    product_code: str
    warehouse_code: str

    @property
    def label(self) -> str:
        return f"{self.product_code}@{self.warehouse_code}"


def to_quantity(value: Decimal | int | str) -> Decimal:
    """Coerce an int/str/Decimal into a Decimal quantity.

    Raises:
        TypeError: for floats (lossy) and other unsupported types.
        ValueError: for strings that are not numbers.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"quantities must be Decimal, int or str, got {type(value).__name__}")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, str)):
        try:
            return Decimal(value)
        except InvalidOperation as exc:
            raise ValueError(f"not a quantity: {value!r}") from exc
    raise TypeError(f"quantities must be Decimal, int or str, got {type(value).__name__}")
