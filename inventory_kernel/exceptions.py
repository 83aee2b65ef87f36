"""
Typed Exception Hierarchy for the Inventory Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Calling workflows (receiving, production, quality, physical count) need to
present a corrective action to a person, not a stack trace. Every rejection
therefore carries:
  1. A TYPED exception class (catch by type, not by message)
  2. A static CODE attribute (machine-readable, API-safe)
  3. Structured DATA (lot number, available vs requested, ...)

Example:
    try:
        engine.allocate_and_issue(...)
    except InsufficientStockError as e:
        show(f"Only {e.available} of {e.requested} available")
        respond(e.to_reason())

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    InventoryLedgerError (base)
    |
    +-- ValidationError                 rejected synchronously, never retried
    |   +-- InvalidQuantityError
    |   +-- UnknownReferenceError
    |   +-- MissingReasonError
    |   +-- WarehouseCapabilityError
    |   +-- LotRequiredError
    |   +-- InvalidThresholdError
    |   +-- UnitConversionError
    |   +-- InvalidBOMError
    |
    +-- InvariantViolationError         rejected with context to act on
    |   +-- InsufficientLotQuantityError
    |   +-- InsufficientStockError
    |   +-- InvalidTransitionError
    |   +-- LotNotFoundError
    |   +-- DuplicateLotError
    |   +-- LotQuantityOverflowError
    |   +-- MovementAlreadyReversedError
    |   +-- CircularBOMError
    |   +-- DuplicateActiveBOMError
    |   +-- BOMNotFoundError
    |   +-- SuggestionStateError
    |
    +-- ConcurrencyError                retried by the ledger scope
    |   +-- OptimisticLockError
    |   +-- BusyError                   surfaced after bounded retries
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                        | When Raised
-------------|-----------------------------|------------------------------------
Validation   | INVALID_QUANTITY            | quantity <= 0 in magnitude
             | UNKNOWN_REFERENCE           | product/warehouse/movement unknown
             | MISSING_REASON              | adjustment without a reason
             | WAREHOUSE_CAPABILITY        | can_receive / can_ship violated
             | LOT_REQUIRED                | tracked product without a lot
             | INVALID_THRESHOLD           | min > max, negative thresholds
             | UNIT_CONVERSION             | incompatible units of measure
             | INVALID_BOM                 | malformed bill of materials
-------------|-----------------------------|------------------------------------
Invariant    | INSUFFICIENT_LOT_QUANTITY   | lot remaining < requested
             | INSUFFICIENT_STOCK          | eligible stock < requested
             | INVALID_TRANSITION          | illegal lot state change
             | LOT_NOT_FOUND               | lot number doesn't exist
             | DUPLICATE_LOT               | lot number already registered
             | LOT_QUANTITY_OVERFLOW       | remaining would exceed initial
             | MOVEMENT_ALREADY_REVERSED   | second reversal of one movement
             | CIRCULAR_BOM                | product reappears on its path
             | DUPLICATE_ACTIVE_BOM        | second active BOM for a product
             | BOM_NOT_FOUND               | no BOM with that id / no active BOM
             | SUGGESTION_STATE            | suggestion not pending
-------------|-----------------------------|------------------------------------
Concurrency  | OPTIMISTIC_LOCK_CONFLICT    | stock level changed underneath
             | BUSY                        | retries exhausted on a pair lock
-------------|-----------------------------|------------------------------------
Immutability | IMMUTABILITY_VIOLATION      | UPDATE/DELETE of a movement

===============================================================================
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID


def _qty(value: Any) -> str:
    """Quantity for messages without storage padding (12.000000000 -> 12)."""
    if isinstance(value, Decimal):
        return format(value.normalize(), "f") if value else "0"
    return str(value)


def _json_safe(value: Any) -> Any:
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


class InventoryLedgerError(Exception):
    """
    Base exception for all inventory kernel errors.

    All subclasses have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "INVENTORY_LEDGER_ERROR"

    def to_reason(self) -> dict[str, Any]:
        """Structured, JSON-safe rejection reason for the calling workflow."""
        reason: dict[str, Any] = {"code": self.code, "message": str(self)}
        for key, val in vars(self).items():
            if not key.startswith("_"):
                reason[key] = _json_safe(val)
        return reason


# =============================================================================
# Validation errors
# =============================================================================


class ValidationError(InventoryLedgerError):
    """Malformed or out-of-range input."""

    code: str = "VALIDATION_ERROR"


class InvalidQuantityError(ValidationError):
    """Quantity must be strictly positive in magnitude."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: Decimal, field: str = "quantity"):
        self.quantity = quantity
        self.field = field
        super().__init__(f"invalid {field}: {quantity} (must be greater than zero)")


class UnknownReferenceError(ValidationError):
    """A referenced entity does not exist or is inactive."""

    code: str = "UNKNOWN_REFERENCE"

    def __init__(self, entity_type: str, reference: str):
        self.entity_type = entity_type
        self.reference = reference
        super().__init__(f"unknown {entity_type}: {reference}")


class MissingReasonError(ValidationError):
    """Adjustments must carry a reason string."""

    code: str = "MISSING_REASON"

    def __init__(self, movement_type: str):
        self.movement_type = movement_type
        super().__init__(f"a reason is required for {movement_type} movements")


class WarehouseCapabilityError(ValidationError):
    """Warehouse cannot receive or ship."""

    code: str = "WAREHOUSE_CAPABILITY"

    def __init__(self, warehouse_code: str, capability: str):
        self.warehouse_code = warehouse_code
        self.capability = capability
        super().__init__(
            f"warehouse {warehouse_code} does not allow {capability}"
        )


class LotRequiredError(ValidationError):
    """Movement on a lot-tracked product without a lot reference."""

    code: str = "LOT_REQUIRED"

    def __init__(self, product_code: str, movement_type: str):
        self.product_code = product_code
        self.movement_type = movement_type
        super().__init__(
            f"product {product_code} is lot-tracked: "
            f"{movement_type} movement needs a lot number"
        )


class InvalidThresholdError(ValidationError):
    """Stock alert thresholds are inconsistent."""

    code: str = "INVALID_THRESHOLD"

    def __init__(self, field: str, value: Decimal | None, detail: str):
        self.field = field
        self.value = value
        self.detail = detail
        super().__init__(f"invalid threshold {field}={value}: {detail}")


class UnitConversionError(ValidationError):
    """Two units of measure cannot be converted into each other."""

    code: str = "UNIT_CONVERSION"

    def __init__(self, from_unit: str, to_unit: str):
        self.from_unit = from_unit
        self.to_unit = to_unit
        super().__init__(f"cannot convert {from_unit} to {to_unit}")


class InvalidBOMError(ValidationError):
    """Bill of materials is structurally invalid."""

    code: str = "INVALID_BOM"

    def __init__(self, product_code: str, detail: str):
        self.product_code = product_code
        self.detail = detail
        super().__init__(f"invalid bill of materials for {product_code}: {detail}")


# =============================================================================
# Invariant violations
# =============================================================================


class InvariantViolationError(InventoryLedgerError):
    """Operation would break a ledger invariant."""

    code: str = "INVARIANT_VIOLATION"


class InsufficientLotQuantityError(InvariantViolationError):
    """Lot does not hold enough remaining quantity."""

    code: str = "INSUFFICIENT_LOT_QUANTITY"

    def __init__(self, lot_number: str, available: Decimal, requested: Decimal):
        self.lot_number = lot_number
        self.available = available
        self.requested = requested
        super().__init__(
            f"insufficient quantity in lot {lot_number}: "
            f"{_qty(available)} available, {_qty(requested)} requested"
        )


class InsufficientStockError(InvariantViolationError):
    """Eligible stock for a (product, warehouse) pair is below the request."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        product_code: str,
        warehouse_code: str,
        available: Decimal,
        requested: Decimal,
    ):
        self.product_code = product_code
        self.warehouse_code = warehouse_code
        self.available = available
        self.requested = requested
        super().__init__(
            f"insufficient stock: {_qty(available)} available, {_qty(requested)} requested "
            f"({product_code} @ {warehouse_code})"
        )


class InvalidTransitionError(InvariantViolationError):
    """Lot (or other stateful record) cannot make the requested transition."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, entity_id: str, current_state: str, action: str, detail: str = ""):
        self.entity_id = entity_id
        self.current_state = current_state
        self.action = action
        self.detail = detail
        message = f"cannot {action} {entity_id} in state {current_state}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class LotNotFoundError(InvariantViolationError):
    """Lot number does not exist."""

    code: str = "LOT_NOT_FOUND"

    def __init__(self, lot_number: str):
        self.lot_number = lot_number
        super().__init__(f"lot not found: {lot_number}")


class DuplicateLotError(InvariantViolationError):
    """Lot numbers are unique and lots are created exactly once."""

    code: str = "DUPLICATE_LOT"

    def __init__(self, lot_number: str):
        self.lot_number = lot_number
        super().__init__(f"lot already exists: {lot_number}")


class LotQuantityOverflowError(InvariantViolationError):
    """Remaining quantity would exceed the lot's initial quantity."""

    code: str = "LOT_QUANTITY_OVERFLOW"

    def __init__(self, lot_number: str, initial: Decimal, resulting: Decimal):
        self.lot_number = lot_number
        self.initial = initial
        self.resulting = resulting
        super().__init__(
            f"lot {lot_number} would hold {resulting}, "
            f"above its initial quantity {initial}"
        )


class MovementAlreadyReversedError(InvariantViolationError):
    """A movement can be compensated at most once."""

    code: str = "MOVEMENT_ALREADY_REVERSED"

    def __init__(self, movement_id: str, reversal_id: str):
        self.movement_id = movement_id
        self.reversal_id = reversal_id
        super().__init__(
            f"movement {movement_id} was already reversed by {reversal_id}"
        )


class CircularBOMError(InvariantViolationError):
    """A product reappears on its own ancestry path."""

    code: str = "CIRCULAR_BOM"

    def __init__(self, path: tuple[str, ...]):
        self.path = path
        super().__init__(f"circular bill of materials: {' -> '.join(path)}")


class DuplicateActiveBOMError(InvariantViolationError):
    """Only one active BOM may exist per product."""

    code: str = "DUPLICATE_ACTIVE_BOM"

    def __init__(self, product_code: str, active_version: str):
        self.product_code = product_code
        self.active_version = active_version
        super().__init__(
            f"product {product_code} already has active BOM version {active_version}"
        )


class BOMNotFoundError(InvariantViolationError):
    """No bill of materials matches the request."""

    code: str = "BOM_NOT_FOUND"

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"bill of materials not found: {reference}")


class SuggestionStateError(InvariantViolationError):
    """Replenishment suggestion is not in a state that allows the action."""

    code: str = "SUGGESTION_STATE"

    def __init__(self, suggestion_id: str, status: str, action: str):
        self.suggestion_id = suggestion_id
        self.status = status
        self.action = action
        super().__init__(
            f"cannot {action} suggestion {suggestion_id} with status {status}"
        )


# =============================================================================
# Concurrency
# =============================================================================


class ConcurrencyError(InventoryLedgerError):
    """Two writers raced on the same (product, warehouse) pair."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Stock level row changed between read and write."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, product_code: str, warehouse_code: str):
        self.product_code = product_code
        self.warehouse_code = warehouse_code
        super().__init__(
            f"stock level {product_code} @ {warehouse_code} was modified concurrently"
        )


class BusyError(ConcurrencyError):
    """Pair lock could not be obtained within the bounded retries."""

    code: str = "BUSY"

    def __init__(self, keys: tuple[str, ...], attempts: int):
        self.keys = keys
        self.attempts = attempts
        super().__init__(
            f"ledger busy for {', '.join(keys)} after {attempts} attempt(s); try again"
        )


# =============================================================================
# Immutability
# =============================================================================


class ImmutabilityViolationError(InventoryLedgerError):
    """Attempt to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"{entity_type} {entity_id} is immutable: {reason}"
        )
