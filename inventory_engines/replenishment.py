"""
Module: inventory_engines.replenishment
Responsibility:
    Turn stock levels, open production-order requirements and the supplier
    catalog into ranked purchase replenishment suggestions.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Inputs come from StockSelector / PlanningSelector; persistence of a run
    is ReplenishmentService's job.

Invariants enforced:
    - projected_available = available_quantity - open_order_requirement.
    - A pair is suggested when projected <= reorder_point (reorder point
      set), else projected < min_stock_alert (minimum set), else
      projected < 0.
    - suggested_quantity = max(reorder_quantity, shortfall, supplier minimum).
    - Output order is priority, then product, then warehouse; identical
      inputs give byte-identical ``to_dict()`` output.

Failure modes:
    - None; pairs without anything to order are simply left out.

Usage:
    suggestions = ReplenishmentEngine().generate(
        levels=stock_selector.all_levels(),
        requirements={PairKey("RM-1", "WH-A"): Decimal("40")},
        offers=planning.supplier_offers(),
        unit_costs={"RM-1": Decimal("2.50")},
    )
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from inventory_engines.tracer import traced_engine
from inventory_kernel.domain.dtos import StockLevelSnapshot, SupplierOffer
from inventory_kernel.domain.values import ZERO, PairKey, SuggestionPriority
from inventory_kernel.logging_config import get_logger

logger = get_logger("engines.replenishment")

PRIORITY_RANK = {
    SuggestionPriority.CRITICAL: 0,
    SuggestionPriority.HIGH: 1,
    SuggestionPriority.NORMAL: 2,
    SuggestionPriority.LOW: 3,
}


def canonical_decimal(value: Decimal | None) -> str | None:
    """Fixed-point text without storage padding: 50.000000000 -> "50"."""
    if value is None:
        return None
    if value == ZERO:
        return "0"
    return format(value.normalize(), "f")


@dataclass(frozen=True)
class ReplenishmentSuggestion:
    """One advisory purchase line for a (product, warehouse) pair."""

    rank: int
    product_code: str
    warehouse_code: str
    on_hand_quantity: Decimal
    available_quantity: Decimal
    open_order_requirement: Decimal
    projected_available: Decimal
    threshold: Decimal
    shortfall_amount: Decimal
    suggested_quantity: Decimal
    priority: SuggestionPriority
    supplier_code: str | None
    supplier_name: str | None
    unit_price: Decimal | None
    lead_time_days: int | None
    estimated_cost: Decimal

    @property
    def key(self) -> PairKey:
        return PairKey(self.product_code, self.warehouse_code)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rank": self.rank,
            "product_code": self.product_code,
            "warehouse_code": self.warehouse_code,
            "on_hand_quantity": canonical_decimal(self.on_hand_quantity),
            "available_quantity": canonical_decimal(self.available_quantity),
            "open_order_requirement": canonical_decimal(self.open_order_requirement),
            "projected_available": canonical_decimal(self.projected_available),
            "threshold": canonical_decimal(self.threshold),
            "shortfall_amount": canonical_decimal(self.shortfall_amount),
            "suggested_quantity": canonical_decimal(self.suggested_quantity),
            "priority": self.priority.value,
            "supplier_code": self.supplier_code,
            "supplier_name": self.supplier_name,
            "unit_price": canonical_decimal(self.unit_price),
            "lead_time_days": self.lead_time_days,
            "estimated_cost": canonical_decimal(self.estimated_cost),
        }


def preferred_offer(offers: Sequence[SupplierOffer]) -> SupplierOffer | None:
    """Flagged preferred entry, else shortest lead time; ties by supplier code."""
    if not offers:
        return None
    return min(
        offers,
        key=lambda o: (not o.is_preferred, o.lead_time_days, o.supplier_code),
    )


def suggestion_threshold(level: StockLevelSnapshot) -> Decimal:
    if level.reorder_point is not None:
        return level.reorder_point
    if level.min_stock_alert is not None:
        return level.min_stock_alert
    return ZERO


def needs_replenishment(level: StockLevelSnapshot, projected: Decimal) -> bool:
    if level.reorder_point is not None:
        return projected <= level.reorder_point
    if level.min_stock_alert is not None:
        return projected < level.min_stock_alert
    return projected < ZERO


def assign_priority(level: StockLevelSnapshot, projected: Decimal) -> SuggestionPriority:
    if level.on_hand_quantity <= ZERO:
        return SuggestionPriority.CRITICAL
    if level.min_stock_alert is not None and projected < level.min_stock_alert:
        return SuggestionPriority.HIGH
    if level.reorder_point is not None and projected <= level.reorder_point:
        return SuggestionPriority.NORMAL
    return SuggestionPriority.LOW


class ReplenishmentEngine:
    """
    Compute replenishment suggestions.

    Contract:
        Read-only and idempotent: a pure function of its arguments.
    Guarantees:
        - At most one suggestion per (product, warehouse) pair.
        - Pairs with requirements but no stock level are treated as empty
          with no thresholds.
    Non-goals:
        - Does not forecast demand beyond thresholds and open orders.
        - Does not place purchase orders.
    """

    @traced_engine("replenishment", "1.0", fingerprint_fields=("levels", "requirements"))
    def generate(
        self,
        *,
        levels: Sequence[StockLevelSnapshot],
        requirements: Mapping[PairKey, Decimal] | None = None,
        offers: Sequence[SupplierOffer] = (),
        unit_costs: Mapping[str, Decimal] | None = None,
    ) -> list[ReplenishmentSuggestion]:
        requirements = requirements or {}
        unit_costs = unit_costs or {}

        by_key: dict[PairKey, StockLevelSnapshot] = {lvl.key: lvl for lvl in levels}
        for key in requirements:
            by_key.setdefault(key, StockLevelSnapshot.empty(key))

        offers_by_product: dict[str, list[SupplierOffer]] = {}
        for offer in offers:
            offers_by_product.setdefault(offer.product_code, []).append(offer)

        logger.info("replenishment_started", extra={
            "level_count": len(by_key),
            "requirement_count": len(requirements),
            "offer_count": len(offers),
        })

        drafts = []
        for key in sorted(by_key):
            level = by_key[key]
            requirement = requirements.get(key, ZERO)
            projected = level.available_quantity - requirement
            if not needs_replenishment(level, projected):
                continue

            threshold = suggestion_threshold(level)
            shortfall = max(threshold - projected, ZERO)
            offer = preferred_offer(offers_by_product.get(key.product_code, []))
            quantity = max(
                level.reorder_quantity or ZERO,
                shortfall,
                offer.min_order_quantity if offer is not None else ZERO,
            )
            if quantity <= ZERO:
                logger.debug("replenishment_nothing_to_order", extra={"pair": key.label})
                continue

            if offer is not None:
                cost = quantity * offer.unit_price
            else:
                cost = quantity * unit_costs.get(key.product_code, ZERO)

            drafts.append((
                PRIORITY_RANK[assign_priority(level, projected)],
                key,
                level,
                requirement,
                projected,
                threshold,
                shortfall,
                quantity,
                offer,
                cost,
            ))

        drafts.sort(key=lambda d: (d[0], d[1].product_code, d[1].warehouse_code))

        suggestions = []
        for rank, (_, key, level, requirement, projected, threshold, shortfall,
                   quantity, offer, cost) in enumerate(drafts, start=1):
            suggestions.append(
                ReplenishmentSuggestion(
                    rank=rank,
                    product_code=key.product_code,
                    warehouse_code=key.warehouse_code,
                    on_hand_quantity=level.on_hand_quantity,
                    available_quantity=level.available_quantity,
                    open_order_requirement=requirement,
                    projected_available=projected,
                    threshold=threshold,
                    shortfall_amount=shortfall,
                    suggested_quantity=quantity,
                    priority=assign_priority(level, projected),
                    supplier_code=offer.supplier_code if offer else None,
                    supplier_name=offer.supplier_name if offer else None,
                    unit_price=offer.unit_price if offer else None,
                    lead_time_days=offer.lead_time_days if offer else None,
                    estimated_cost=cost,
                )
            )

        logger.info("replenishment_completed", extra={
            "suggestion_count": len(suggestions),
            "critical_count": sum(
                1 for s in suggestions if s.priority == SuggestionPriority.CRITICAL
            ),
        })
        return suggestions
