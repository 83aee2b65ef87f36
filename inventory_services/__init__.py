"""
inventory_services -- Package init and public API.

Responsibility:
    Stateful orchestration that composes the pure engines
    (inventory_engines/) with database sessions and pair locks.  This is
    the **only** layer that owns transaction boundaries (commit/rollback).

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction (enforced by tests/architecture/test_import_boundaries.py):
        inventory_services/ -> inventory_engines/  (allowed)
        inventory_services/ -> inventory_kernel/   (allowed)
        inventory_engines/  -> inventory_services/ (FORBIDDEN)
        inventory_kernel/   -> inventory_services/ (FORBIDDEN)

Invariants enforced:
    - Layer isolation: inventory_kernel and inventory_engines never import
      from this package.
    - DI transparency: service wiring is centralised in InventoryEngine.
"""

from inventory_kernel.logging_config import get_logger

logger = get_logger("services")

from inventory_services.allocation_service import AllocationService, IssueResult
from inventory_services.engine import InventoryEngine, PendingEvent
from inventory_services.ledger_scope import LedgerContext, LedgerScope
from inventory_services.replenishment_service import (
    PersistedSuggestion,
    ReplenishmentService,
    SuggestionRun,
)
from inventory_services.workflows import (
    PhysicalCountWorkflow,
    ProductionStart,
    ProductionWorkflow,
    QualityWorkflow,
    ReceiptResult,
    ReceivingWorkflow,
    TransferWorkflow,
)

__all__ = [
    "AllocationService",
    "InventoryEngine",
    "IssueResult",
    "LedgerContext",
    "LedgerScope",
    "PendingEvent",
    "PersistedSuggestion",
    "PhysicalCountWorkflow",
    "ProductionStart",
    "ProductionWorkflow",
    "QualityWorkflow",
    "ReceiptResult",
    "ReceivingWorkflow",
    "ReplenishmentService",
    "SuggestionRun",
    "TransferWorkflow",
]
