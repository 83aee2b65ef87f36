"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The movement journal is the single source of truth for quantity changes.
If a movement could be edited, lot conservation could no longer be checked
against it.  Corrections are therefore new, compensating movements.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check our rules:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |                                                        ^
         v                                                        |
    [before_delete event] --> _check_*_delete() -----------------+
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | Rule                                   | Why
------------------|----------------------------------------|---------------------------
Movement          | No UPDATE, no DELETE                   | Append-only journal
Lot               | No DELETE; identity and initial        | Lots are created once and
                  | quantity never change                  | never deleted
DomainEventRecord | Only delivered_at may change           | Notifier marks delivery

Bulk ``session.execute(update(...))`` statements bypass ORM events; the
kernel never issues them against these tables.

===============================================================================
USAGE
===============================================================================

    from inventory_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event
from sqlalchemy.orm.attributes import get_history

from inventory_kernel.exceptions import ImmutabilityViolationError
from inventory_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_LOT_FROZEN_FIELDS = (
    "lot_number",
    "product_code",
    "warehouse_code",
    "initial_quantity",
    "origin_type",
    "origin_reference",
    "parent_lot_number",
)

_EVENT_MUTABLE_FIELDS = frozenset({"delivered_at"})


def _blocked(entity_type: str, entity_id: str, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


def _check_movement_immutability(mapper, connection, target):
    """Movements are never updated."""
    _blocked(
        "Movement",
        str(target.id),
        "UPDATE",
        "movements are append-only; record a compensating movement instead",
    )


def _check_movement_delete(mapper, connection, target):
    _blocked(
        "Movement",
        str(target.id),
        "DELETE",
        "movements are append-only and can never be deleted",
    )


def _check_lot_immutability(mapper, connection, target):
    """Lot identity and initial quantity are frozen at creation."""
    for field_name in _LOT_FROZEN_FIELDS:
        history = get_history(target, field_name)
        if history.deleted and history.added and history.deleted[0] != history.added[0]:
            _blocked(
                "Lot",
                target.lot_number,
                "UPDATE",
                f"{field_name} cannot change after the lot is created",
            )


def _check_lot_delete(mapper, connection, target):
    _blocked(
        "Lot",
        target.lot_number,
        "DELETE",
        "lots are never deleted; they become depleted",
    )


def _check_domain_event_immutability(mapper, connection, target):
    """Only the delivery marker may change on a recorded event."""
    for attr in target.__mapper__.attrs:
        if attr.key in _EVENT_MUTABLE_FIELDS:
            continue
        history = get_history(target, attr.key)
        if history.deleted and history.added:
            _blocked(
                "DomainEvent",
                str(target.id),
                "UPDATE",
                f"{attr.key} cannot change after the event is recorded",
            )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent; call once after the models are imported and before any
    database operations begin.
    """
    from inventory_kernel.models.domain_event import DomainEventRecord
    from inventory_kernel.models.lot import Lot
    from inventory_kernel.models.movement import Movement

    for target, name, fn in _listeners(Movement, Lot, DomainEventRecord):
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def _listeners(movement, lot, domain_event):
    return (
        (movement, "before_update", _check_movement_immutability),
        (movement, "before_delete", _check_movement_delete),
        (lot, "before_update", _check_lot_immutability),
        (lot, "before_delete", _check_lot_delete),
        (domain_event, "before_update", _check_domain_event_immutability),
    )


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    from inventory_kernel.models.domain_event import DomainEventRecord
    from inventory_kernel.models.lot import Lot
    from inventory_kernel.models.movement import Movement

    for target, name, fn in _listeners(Movement, Lot, DomainEventRecord):
        if event.contains(target, name, fn):
            event.remove(target, name, fn)
