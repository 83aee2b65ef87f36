"""
Module: inventory_kernel.selectors.stock_selector
Responsibility: Read-only queries over cached stock levels and their alerts.
Architecture position: Kernel > Selectors.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select

from inventory_kernel.domain.alerts import alert_rank
from inventory_kernel.domain.dtos import StockLevelSnapshot
from inventory_kernel.domain.values import PairKey, StockAlert
from inventory_kernel.models.stock import StockLevel, StockReservation
from inventory_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class StockAlertRow:
    level: StockLevelSnapshot
    alerts: tuple[StockAlert, ...]

    @property
    def primary(self) -> StockAlert:
        return self.alerts[0]


class StockSelector(BaseSelector):
    """Read side of the stock ledger."""

    def get_level(self, product_code: str, warehouse_code: str) -> StockLevelSnapshot:
        """Cached level for a pair; an all-zero snapshot if none exists yet."""
        level = self.session.scalar(
            select(StockLevel).where(
                StockLevel.product_code == product_code,
                StockLevel.warehouse_code == warehouse_code,
            )
        )
        if level is None:
            return StockLevelSnapshot.empty(PairKey(product_code, warehouse_code))
        return StockLevelSnapshot.from_model(level)

    def all_levels(self) -> list[StockLevelSnapshot]:
        levels = self.session.scalars(
            select(StockLevel).order_by(StockLevel.product_code, StockLevel.warehouse_code)
        ).all()
        return [StockLevelSnapshot.from_model(level) for level in levels]

    def levels_for_product(self, product_code: str) -> list[StockLevelSnapshot]:
        levels = self.session.scalars(
            select(StockLevel)
            .where(StockLevel.product_code == product_code)
            .order_by(StockLevel.warehouse_code)
        ).all()
        return [StockLevelSnapshot.from_model(level) for level in levels]

    def list_alerts(self) -> list[StockAlertRow]:
        """Levels with at least one alert: critical, then low/reorder, then overstock."""
        rows = [
            StockAlertRow(level=snap, alerts=snap.alerts)
            for snap in self.all_levels()
            if snap.alerts
        ]
        rows.sort(
            key=lambda r: (alert_rank(r.alerts), r.level.product_code, r.level.warehouse_code)
        )
        return rows

    def open_reservations(self, order_reference: str) -> list[tuple[PairKey, Decimal]]:
        rows = self.session.scalars(
            select(StockReservation)
            .where(
                StockReservation.order_reference == order_reference,
                StockReservation.is_open.is_(True),
            )
            .order_by(StockReservation.product_code, StockReservation.warehouse_code)
        ).all()
        return [(PairKey(r.product_code, r.warehouse_code), r.quantity) for r in rows]
