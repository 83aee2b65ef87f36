"""
Tests for LotRegistry: creation, quarantine gating, quality dispositions,
over-receipt approval and lazy expiry.
"""

from datetime import date
from decimal import Decimal

import pytest

from inventory_kernel.domain.dtos import LotSpec
from inventory_kernel.domain.events import DomainEventType
from inventory_kernel.domain.values import AvailabilityStatus, QualityStatus
from inventory_kernel.exceptions import (
    DuplicateLotError,
    ImmutabilityViolationError,
    InvalidQuantityError,
    InvalidTransitionError,
    LotNotFoundError,
    UnknownReferenceError,
)
from inventory_kernel.models.lot import Lot
from inventory_kernel.services.lot_registry import (
    INSPECTION_REASON,
    OVER_RECEIPT_REASON,
    QUALITY_REJECTED_REASON,
    LotRegistry,
)


def _spec(lot_number="L1", quantity="10", **kwargs) -> LotSpec:
    return LotSpec(
        lot_number=lot_number,
        product_code=kwargs.pop("product_code", "RM-001"),
        warehouse_code=kwargs.pop("warehouse_code", "WH-A"),
        quantity=Decimal(quantity),
        **kwargs,
    )


def _event_types(ctx) -> list[str]:
    return [e.event_type for e in ctx.outbox.pending()]


class TestCreateLot:

    def test_new_lot_is_whole_and_available(self, ctx):
        lot = ctx.lots.create_lot(_spec(expiry_date=date(2026, 12, 31)))
        assert lot.initial_quantity == lot.remaining_quantity == Decimal("10")
        assert lot.availability_status == AvailabilityStatus.AVAILABLE
        assert lot.quality_status == QualityStatus.PENDING
        assert lot.received_at is not None

    def test_unit_cost_defaults_to_product_cost(self, ctx, session):
        ctx.lots.create_lot(_spec())
        row = session.query(Lot).filter_by(lot_number="L1").one()
        assert row.unit_cost == Decimal("4.50")

    def test_duplicate_lot_number(self, ctx):
        ctx.lots.create_lot(_spec())
        with pytest.raises(DuplicateLotError):
            ctx.lots.create_lot(_spec(quantity="3"))

    def test_non_positive_quantity(self, ctx):
        with pytest.raises(InvalidQuantityError):
            ctx.lots.create_lot(_spec(quantity="0"))

    def test_unknown_references(self, ctx):
        with pytest.raises(UnknownReferenceError):
            ctx.lots.create_lot(_spec(product_code="NOPE"))
        with pytest.raises(UnknownReferenceError):
            ctx.lots.create_lot(_spec(warehouse_code="WH-Z"))

    def test_lot_awaiting_approval_starts_quarantined(self, ctx):
        lot = ctx.lots.create_lot(_spec(requires_approval=True))
        assert lot.availability_status == AvailabilityStatus.QUARANTINE
        assert lot.quarantine_reason == OVER_RECEIPT_REASON
        assert DomainEventType.LOT_QUARANTINED.value in _event_types(ctx)

    def test_inspection_required_quarantines_pending_lots(self, session, clock, reference_data):
        registry = LotRegistry(session, clock, require_inspection=True)
        lot = registry.create_lot(_spec())
        assert lot.availability_status == AvailabilityStatus.QUARANTINE
        assert lot.quarantine_reason == INSPECTION_REASON

    def test_lookup_of_missing_lot(self, ctx):
        with pytest.raises(LotNotFoundError):
            ctx.lot_selector.get("GHOST")
        assert ctx.lot_selector.find("GHOST") is None

    def test_lot_identity_frozen(self, ctx, session):
        ctx.lots.create_lot(_spec())
        row = session.query(Lot).filter_by(lot_number="L1").one()
        row.initial_quantity = Decimal("99")
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestQuarantine:

    def test_quarantine_and_release(self, ctx, make_lot, clock):
        make_lot("L1", "10", quality_status=QualityStatus.APPROVED)
        quarantined = ctx.lots.quarantine("L1", "customer complaint")
        assert quarantined.availability_status == AvailabilityStatus.QUARANTINE
        assert quarantined.quarantine_reason == "customer complaint"

        clock.advance(1)
        released = ctx.lots.release("L1")
        assert released.availability_status == AvailabilityStatus.AVAILABLE
        assert released.quarantine_reason is None
        assert _event_types(ctx) == [
            DomainEventType.LOT_QUARANTINED.value,
            DomainEventType.LOT_RELEASED.value,
        ]

    def test_quarantined_lot_is_not_a_candidate(self, ctx, make_lot):
        make_lot("L1", "10")
        make_lot("L2", "5")
        ctx.lots.quarantine("L1", "hold")
        candidates = ctx.lot_selector.allocation_candidates("RM-001", "WH-A")
        assert [lot.lot_number for lot in candidates] == ["L2"]

    def test_quarantine_counts_as_blocked(self, ctx, make_lot):
        make_lot("L1", "10")
        ctx.lots.quarantine("L1", "hold")
        level = ctx.ledger.recompute("RM-001", "WH-A")
        assert level.on_hand_quantity == Decimal("10")
        assert level.blocked_quantity == Decimal("10")

    def test_cannot_quarantine_twice(self, ctx, make_lot):
        make_lot("L1", "10")
        ctx.lots.quarantine("L1", "hold")
        with pytest.raises(InvalidTransitionError):
            ctx.lots.quarantine("L1", "again")

    def test_release_requires_quarantine(self, ctx, make_lot):
        make_lot("L1", "10")
        with pytest.raises(InvalidTransitionError) as exc_info:
            ctx.lots.release("L1")
        assert exc_info.value.detail == "lot is not quarantined"

    def test_rejected_lot_cannot_be_released(self, ctx, make_lot):
        make_lot("L1", "10")
        ctx.lots.set_quality_status("L1", QualityStatus.REJECTED)
        with pytest.raises(InvalidTransitionError) as exc_info:
            ctx.lots.release("L1")
        assert "written off" in exc_info.value.detail

    def test_pending_inspection_blocks_release(self, session, clock, reference_data):
        registry = LotRegistry(session, clock, require_inspection=True)
        registry.create_lot(_spec())
        with pytest.raises(InvalidTransitionError) as exc_info:
            registry.release("L1")
        assert exc_info.value.detail == "inspection pending"

        registry.set_quality_status("L1", QualityStatus.APPROVED)
        assert registry.release("L1").availability_status == AvailabilityStatus.AVAILABLE


class TestReservation:

    def test_reserve_and_unreserve(self, ctx, make_lot):
        make_lot("L1", "10")
        assert ctx.lots.reserve("L1").availability_status == AvailabilityStatus.RESERVED
        assert ctx.lot_selector.allocation_candidates("RM-001", "WH-A") == []
        assert ctx.lots.unreserve("L1").availability_status == AvailabilityStatus.AVAILABLE

    def test_reserve_requires_available(self, ctx, make_lot):
        make_lot("L1", "10")
        ctx.lots.quarantine("L1", "hold")
        with pytest.raises(InvalidTransitionError):
            ctx.lots.reserve("L1")
        with pytest.raises(InvalidTransitionError):
            ctx.lots.unreserve("L1")


class TestQuality:

    def test_rejection_quarantines(self, ctx, make_lot):
        make_lot("L1", "10")
        lot = ctx.lots.set_quality_status("L1", QualityStatus.REJECTED)
        assert lot.quality_status == QualityStatus.REJECTED
        assert lot.availability_status == AvailabilityStatus.QUARANTINE
        assert lot.quarantine_reason == QUALITY_REJECTED_REASON

    def test_rejection_is_final(self, ctx, make_lot):
        make_lot("L1", "10")
        ctx.lots.set_quality_status("L1", QualityStatus.REJECTED)
        with pytest.raises(InvalidTransitionError):
            ctx.lots.set_quality_status("L1", QualityStatus.APPROVED)

    def test_conditional_keeps_availability(self, ctx, make_lot):
        make_lot("L1", "10")
        lot = ctx.lots.set_quality_status("L1", QualityStatus.CONDITIONAL)
        assert lot.availability_status == AvailabilityStatus.AVAILABLE


class TestOverReceiptApproval:

    def test_approval_releases_held_lot(self, ctx):
        ctx.lots.create_lot(_spec(requires_approval=True))
        with pytest.raises(InvalidTransitionError) as exc_info:
            ctx.lots.release("L1")
        assert exc_info.value.detail == "over-receipt awaits approval"

        lot = ctx.lots.approve_over_receipt("L1", "buyer")
        assert not lot.requires_approval
        assert lot.availability_status == AvailabilityStatus.AVAILABLE

    def test_approval_needs_pending_flag(self, ctx, make_lot):
        make_lot("L1", "10")
        with pytest.raises(InvalidTransitionError):
            ctx.lots.approve_over_receipt("L1")


class TestExpiry:

    def test_expiry_is_lazy_on_read(self, ctx, make_lot, clock):
        make_lot("L1", "10", expiry_date=date(2026, 3, 5))
        assert ctx.lot_selector.get("L1").availability_status == AvailabilityStatus.AVAILABLE

        clock.advance_days(4)
        assert ctx.lot_selector.get("L1").availability_status == AvailabilityStatus.EXPIRED
        # reads report it, nothing was written
        row = ctx.session.query(Lot).filter_by(lot_number="L1").one()
        assert row.availability_status == AvailabilityStatus.AVAILABLE.value

    def test_expiry_persisted_on_write_path(self, ctx, make_lot, clock):
        make_lot("L1", "10", expiry_date=date(2026, 3, 5))
        clock.advance_days(10)
        ctx.lots.load("L1")
        row = ctx.session.query(Lot).filter_by(lot_number="L1").one()
        assert row.availability_status == AvailabilityStatus.EXPIRED.value

    def test_expired_lot_cannot_be_reserved_or_issued(self, ctx, make_lot, clock):
        make_lot("L1", "10", expiry_date=date(2026, 3, 1))
        with pytest.raises(InvalidTransitionError):
            ctx.lots.reserve("L1")
        assert ctx.lot_selector.allocation_candidates("RM-001", "WH-A") == []

    def test_expiry_day_itself_is_usable(self, ctx, make_lot):
        make_lot("L1", "10", expiry_date=date(2026, 3, 2))
        assert ctx.lot_selector.get("L1").availability_status == AvailabilityStatus.AVAILABLE

    def test_expiring_window(self, ctx, make_lot):
        make_lot("SOON", "1", expiry_date=date(2026, 3, 20))
        make_lot("LATER", "1", expiry_date=date(2026, 9, 1))
        make_lot("STALE", "1", expiry_date=date(2026, 2, 1))
        make_lot("NEVER", "1")
        assert [lot.lot_number for lot in ctx.lot_selector.expiring(30)] == ["STALE", "SOON"]
