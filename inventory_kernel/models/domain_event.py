"""
Module: inventory_kernel.models.domain_event
Responsibility: ORM persistence for outbound domain events awaiting
    delivery by an external notifier.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Events are written in the same transaction as the state change that
      caused them, so a rolled-back operation emits nothing.
    - Only delivered_at may change after insert.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base


class DomainEventRecord(Base):
    """One outbound notification."""

    __tablename__ = "domain_events"

    __table_args__ = (
        Index("idx_domain_event_pending", "delivered_at", "occurred_at"),
        Index("idx_domain_event_type", "event_type"),
    )

    event_type: Mapped[str] = mapped_column(String(100), nullable=False)

    aggregate_type: Mapped[str] = mapped_column(String(50), nullable=False)

    aggregate_id: Mapped[str] = mapped_column(String(100), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    payload: Mapped[dict] = mapped_column(JSON, nullable=False)

    correlation_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<DomainEvent {self.event_type} {self.aggregate_type}:{self.aggregate_id}>"
