"""
Kernel Invariants Contract.

These invariants are structural law. No InventoryConfig setting may
override them.

This module exists solely to declare these invariants explicitly. The
enforcement is distributed across MovementJournal, LotRegistry,
StockLedger, BomRegistry, the immutability listeners and LedgerScope.
"""

from enum import Enum, unique


@unique
class InventoryInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel."""

    CONSERVATION = "conservation"
    """initial_quantity - remaining_quantity == -sum(lot_delta) for every
    lot. Enforced by MovementJournal (every lot change is a movement)."""

    NON_NEGATIVE_LOT = "non_negative_lot"
    """0 <= remaining_quantity <= initial_quantity. Enforced by
    LotRegistry.apply_movement before any row is written."""

    MOVEMENT_IMMUTABILITY = "movement_immutability"
    """Movements are append-only; corrections are compensating movements.
    Enforced by ORM listeners (inventory_kernel.db.immutability)."""

    LOT_PERMANENCE = "lot_permanence"
    """Lots are created exactly once and never deleted. Enforced by the
    unique lot_number (DuplicateLotError) and the immutability listeners."""

    ALLOCATION_ATOMICITY = "allocation_atomicity"
    """Allocation is all-or-nothing and runs inside the same pair-locked
    scope as the movements it produces. Enforced by AllocationService."""

    PAIR_SERIALIZATION = "pair_serialization"
    """Writes on the same (product, warehouse) pair are serialized; disjoint
    pairs never block each other. Enforced by PairLockManager."""

    SINGLE_ACTIVE_BOM = "single_active_bom"
    """At most one active BOM per product. Enforced by BomRegistry and a
    partial unique index."""

    ACYCLIC_BOM = "acyclic_bom"
    """No product transitively contains itself. Enforced at activation and
    again during explosion."""


ALL_INVENTORY_INVARIANTS: frozenset[InventoryInvariant] = frozenset(InventoryInvariant)

# The kernel package may not import from these packages.
# This is enforced by tests/architecture/test_import_boundaries.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "inventory_engines",
    "inventory_services",
    "inventory_config",
)
