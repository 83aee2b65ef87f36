"""
Domain events emitted for external delivery.

The engine never sends notifications itself.  It records an event in the
``domain_events`` table inside the same transaction as the state change
that caused it; a notifier polls the table and delivers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any


class DomainEventType(str, Enum):
    LOW_STOCK = "inventory.low_stock"
    LOT_QUARANTINED = "inventory.lot_quarantined"
    LOT_RELEASED = "inventory.lot_released"
    REPLENISHMENT_SUGGESTION_CRITICAL = "inventory.replenishment_suggestion_critical"


@dataclass(frozen=True)
class DomainEvent:
    """An event with the entity snapshot a notifier needs."""

    event_type: DomainEventType
    aggregate_type: str
    aggregate_id: str
    occurred_at: datetime
    payload: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        if isinstance(self.payload, dict):
            object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))

    def payload_dict(self) -> dict[str, Any]:
        return dict(self.payload)
