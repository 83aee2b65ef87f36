"""
Inventory Kernel

The append-only core of the inventory ledger:
- Immutable movement journal as the single source of quantity changes
- Lot registry with quality and availability state machines
- Per (product, warehouse) stock aggregates derived from lots and movements
- Typed, structured errors for every rejected operation
"""

__version__ = "0.1.0"
