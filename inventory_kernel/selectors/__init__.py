"""Selectors for the inventory kernel (read side)."""

from inventory_kernel.selectors.lot_selector import ConservationGap, LotSelector
from inventory_kernel.selectors.movement_selector import MovementSelector
from inventory_kernel.selectors.planning_selector import OpenOrderView, PlanningSelector
from inventory_kernel.selectors.stock_selector import StockAlertRow, StockSelector

__all__ = [
    "ConservationGap",
    "LotSelector",
    "MovementSelector",
    "OpenOrderView",
    "PlanningSelector",
    "StockAlertRow",
    "StockSelector",
]
