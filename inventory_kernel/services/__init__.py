"""Services for the inventory kernel (write side)."""

from inventory_kernel.services.bom_registry import BomRegistry, find_cycle_through
from inventory_kernel.services.lot_registry import LotRegistry
from inventory_kernel.services.movement_journal import MovementJournal
from inventory_kernel.services.outbox import EventOutbox
from inventory_kernel.services.pair_locks import PairLockManager, PairLockTimeout
from inventory_kernel.services.stock_ledger import StockLedger

__all__ = [
    "BomRegistry",
    "EventOutbox",
    "LotRegistry",
    "MovementJournal",
    "PairLockManager",
    "PairLockTimeout",
    "StockLedger",
    "find_cycle_through",
]
