"""
EventOutbox -- transactional recording of outbound domain events.

Responsibility:
    Writes LowStock, LotQuarantined, LotReleased and
    ReplenishmentSuggestionCritical events into ``domain_events`` inside the
    caller's transaction.  Delivery (email, webhooks) belongs to an external
    notifier that polls ``pending()`` and calls ``mark_delivered()``.

Architecture position:
    Kernel > Services.

Invariants enforced:
    - An event exists iff the state change that caused it committed.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select

from inventory_kernel.domain.events import DomainEvent, DomainEventType
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.domain_event import DomainEventRecord
from inventory_kernel.services.base import BaseService

logger = get_logger("services.outbox")


def _jsonable(value: Any) -> Any:
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class EventOutbox(BaseService):
    """Append-only event buffer backed by the ``domain_events`` table."""

    def emit(
        self,
        event_type: DomainEventType,
        aggregate_type: str,
        aggregate_id: str,
        payload: dict[str, Any],
    ) -> DomainEvent:
        event = DomainEvent(
            event_type=event_type,
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            occurred_at=self.clock.now(),
            payload=payload,
        )
        self.session.add(
            DomainEventRecord(
                event_type=event_type.value,
                aggregate_type=aggregate_type,
                aggregate_id=aggregate_id,
                occurred_at=event.occurred_at,
                payload=_jsonable(dict(payload)),
                correlation_id=LogContext.get_all().get("correlation_id"),
            )
        )
        self.session.flush()
        logger.info(
            "domain_event_recorded",
            extra={
                "event_type": event_type.value,
                "aggregate_type": aggregate_type,
                "aggregate_id": aggregate_id,
            },
        )
        return event

    def pending(self, limit: int = 100) -> list[DomainEventRecord]:
        return list(
            self.session.scalars(
                select(DomainEventRecord)
                .where(DomainEventRecord.delivered_at.is_(None))
                .order_by(DomainEventRecord.occurred_at, DomainEventRecord.id)
                .limit(limit)
            )
        )

    def mark_delivered(self, event_id: UUID) -> None:
        record = self.session.get(DomainEventRecord, event_id)
        if record is not None and record.delivered_at is None:
            record.delivered_at = self.clock.now()
            self.session.flush()
