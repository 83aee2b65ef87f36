"""
Inventory engines -- pure calculation layer.

Everything here is a function of its arguments: no database access, no
clock, no I/O beyond structured trace logging.  Services feed the engines
DTOs read through the kernel selectors and act on the results.

    LotAllocator          FIFO / FEFO lot selection, all-or-nothing
    BomGraph              multi-level BOM explosion with cycle detection
    ReplenishmentEngine   threshold and open-order driven suggestions
    units                 unit-of-measure conversion
"""

from inventory_engines.allocation import (
    AllocationLine,
    AllocationPlan,
    LotAllocator,
    fefo_key,
    fifo_key,
)
from inventory_engines.bom_explosion import BomExplosion, BomGraph, rollup_cost
from inventory_engines.replenishment import (
    ReplenishmentEngine,
    ReplenishmentSuggestion,
    assign_priority,
    canonical_decimal,
    preferred_offer,
)
from inventory_engines.tracer import traced_engine
from inventory_engines.units import convert

__all__ = [
    "AllocationLine",
    "AllocationPlan",
    "BomExplosion",
    "BomGraph",
    "LotAllocator",
    "ReplenishmentEngine",
    "ReplenishmentSuggestion",
    "assign_priority",
    "canonical_decimal",
    "convert",
    "fefo_key",
    "fifo_key",
    "preferred_offer",
    "rollup_cost",
    "traced_engine",
]
