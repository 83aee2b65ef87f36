"""
Lot state rules -- pure transition logic for the lot registry.

Two orthogonal axes:

    quality:       pending -> approved | rejected | conditional
    availability:  available <-> reserved
                   available/reserved <-> quarantine   (explicit Quarantine/Release)
                   available/reserved/quarantine -> expired  (time, evaluated lazily)
                   any -> depleted                     (remaining reaches zero)

Expiry is never driven by a timer.  Callers pass "today" and get the
effective status; write paths persist it, read paths only report it.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from inventory_kernel.domain.values import ZERO, AvailabilityStatus, QualityStatus

_EXPIRABLE = frozenset({
    AvailabilityStatus.AVAILABLE,
    AvailabilityStatus.RESERVED,
    AvailabilityStatus.QUARANTINE,
})

# States from which stock may be issued by an outbound or transfer movement
ISSUABLE = frozenset({AvailabilityStatus.AVAILABLE, AvailabilityStatus.RESERVED})


def effective_availability(
    status: AvailabilityStatus | str,
    remaining: Decimal,
    expiry_date: date | None,
    today: date,
) -> AvailabilityStatus:
    """Status after applying depletion and lazy expiry."""
    status = AvailabilityStatus(status)
    if remaining <= ZERO:
        return AvailabilityStatus.DEPLETED
    if status in _EXPIRABLE and expiry_date is not None and expiry_date < today:
        return AvailabilityStatus.EXPIRED
    return status


def status_after_quantity_change(
    status: AvailabilityStatus | str,
    quality: QualityStatus | str,
    new_remaining: Decimal,
) -> AvailabilityStatus:
    """
    Availability once a movement has changed remaining quantity.

    A depleted lot that gets quantity back (a reversal or a positive count
    adjustment) comes back as available, or quarantined when its quality was
    rejected.
    """
    status = AvailabilityStatus(status)
    if new_remaining <= ZERO:
        return AvailabilityStatus.DEPLETED
    if status == AvailabilityStatus.DEPLETED:
        if QualityStatus(quality) == QualityStatus.REJECTED:
            return AvailabilityStatus.QUARANTINE
        return AvailabilityStatus.AVAILABLE
    return status


def release_blocker(
    status: AvailabilityStatus | str,
    quality: QualityStatus | str,
    requires_approval: bool,
    require_inspection: bool,
) -> str | None:
    """Why a lot cannot be released from quarantine, or None if it can."""
    status = AvailabilityStatus(status)
    quality = QualityStatus(quality)
    if status != AvailabilityStatus.QUARANTINE:
        return "lot is not quarantined"
    if quality == QualityStatus.REJECTED:
        return "rejected lots must be written off, not released"
    if requires_approval:
        return "over-receipt awaits approval"
    if require_inspection and quality == QualityStatus.PENDING:
        return "inspection pending"
    return None
