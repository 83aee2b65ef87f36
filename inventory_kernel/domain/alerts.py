"""
Stock alert classification.

A pure function of a stock level's quantities and thresholds.  Several
conditions may hold at once; they are returned in display priority order
(critical > low/reorder > overstock).
"""

from __future__ import annotations

from decimal import Decimal

from inventory_kernel.domain.values import ZERO, StockAlert

# low and reorder share a rank
ALERT_RANK: dict[StockAlert, int] = {
    StockAlert.CRITICAL: 0,
    StockAlert.LOW: 1,
    StockAlert.REORDER: 1,
    StockAlert.OVERSTOCK: 2,
}

_ORDER = (StockAlert.CRITICAL, StockAlert.LOW, StockAlert.REORDER, StockAlert.OVERSTOCK)


def classify_stock(
    on_hand: Decimal,
    available: Decimal,
    min_stock_alert: Decimal | None = None,
    max_stock_alert: Decimal | None = None,
    reorder_point: Decimal | None = None,
) -> tuple[StockAlert, ...]:
    """Return every alert condition that holds, highest priority first."""
    found: set[StockAlert] = set()
    if on_hand <= ZERO:
        found.add(StockAlert.CRITICAL)
    if min_stock_alert is not None and available < min_stock_alert:
        found.add(StockAlert.LOW)
    if reorder_point is not None and available <= reorder_point:
        found.add(StockAlert.REORDER)
    if max_stock_alert is not None and on_hand > max_stock_alert:
        found.add(StockAlert.OVERSTOCK)
    return tuple(a for a in _ORDER if a in found)


def primary_alert(alerts: tuple[StockAlert, ...]) -> StockAlert | None:
    """The alert to display first, or None."""
    return alerts[0] if alerts else None


def alert_rank(alerts: tuple[StockAlert, ...]) -> int:
    """Sort key for alert listings; levels without alerts sort last."""
    if not alerts:
        return len(ALERT_RANK)
    return min(ALERT_RANK[a] for a in alerts)


def is_short(alerts: tuple[StockAlert, ...]) -> bool:
    """True when the level is critical or below its minimum."""
    return StockAlert.CRITICAL in alerts or StockAlert.LOW in alerts
