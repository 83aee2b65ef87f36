"""
AllocationService through InventoryEngine: planning is read-only, issuing
records one outbound movement per planned lot, all or nothing.
"""

from datetime import date
from decimal import Decimal

import pytest

from inventory_kernel.domain.values import AllocationPolicy, AvailabilityStatus, MovementType
from inventory_kernel.exceptions import InsufficientStockError, UnknownReferenceError


@pytest.fixture
def resin(inventory, clock):
    """Three resin lots: oldest expires last, newest expires first."""
    inventory.receiving.receive(
        "RM-001", "WH-A", Decimal("10"), lot_number="OLD", expiry_date=date(2026, 12, 1)
    )
    clock.advance_days(1)
    inventory.receiving.receive(
        "RM-001", "WH-A", Decimal("10"), lot_number="MID", expiry_date=date(2026, 9, 1)
    )
    clock.advance_days(1)
    inventory.receiving.receive(
        "RM-001", "WH-A", Decimal("10"), lot_number="NEW", expiry_date=date(2026, 6, 1)
    )
    return inventory


class TestPlan:

    def test_plan_records_nothing(self, resin):
        plan = resin.plan_allocation("RM-001", "WH-A", Decimal("15"))
        assert plan.as_pairs() == [("OLD", Decimal("10")), ("MID", Decimal("5"))]
        assert resin.get_level("RM-001", "WH-A").on_hand_quantity == Decimal("30")

    def test_policy_override(self, resin):
        plan = resin.plan_allocation("RM-001", "WH-A", Decimal("15"), policy="fefo")
        assert plan.policy == AllocationPolicy.FEFO
        assert plan.as_pairs() == [("NEW", Decimal("10")), ("MID", Decimal("5"))]


class TestAllocateAndIssue:

    def test_issue_follows_plan(self, resin, captured_logs):
        result = resin.allocate_and_issue(
            "RM-001", "WH-A", Decimal("15"),
            reference_type="sales_order", reference_id="SO-1",
        )
        assert result.total_issued == Decimal("15")
        assert [(m.lot_number, m.quantity) for m in result.movements] == [
            ("OLD", Decimal("-10")),
            ("MID", Decimal("-5")),
        ]
        assert all(m.movement_type == MovementType.OUTBOUND for m in result.movements)
        assert resin.get_lot("OLD").availability_status == AvailabilityStatus.DEPLETED
        assert resin.get_lot("MID").remaining_quantity == Decimal("5")
        assert resin.get_level("RM-001", "WH-A").on_hand_quantity == Decimal("15")

        issued = [r for r in captured_logs() if r["message"] == "allocation_issued"]
        assert issued[0]["reference_id"] == "SO-1"
        assert issued[0]["lot_count"] == 2

    def test_quarantined_lots_are_skipped(self, resin):
        resin.quarantine("OLD", "supplier recall")
        result = resin.allocate_and_issue("RM-001", "WH-A", Decimal("12"))
        assert result.plan.as_pairs() == [("MID", Decimal("10")), ("NEW", Decimal("2"))]

    def test_expired_lots_are_skipped(self, resin, clock):
        clock.set_time(clock.now().replace(month=7))
        with pytest.raises(InsufficientStockError) as exc_info:
            resin.allocate_and_issue("RM-001", "WH-A", Decimal("25"))
        assert exc_info.value.available == Decimal("20")

    def test_shortage_issues_nothing(self, resin):
        with pytest.raises(InsufficientStockError):
            resin.allocate_and_issue("RM-001", "WH-A", Decimal("31"))
        assert resin.get_level("RM-001", "WH-A").on_hand_quantity == Decimal("30")
        assert resin.conservation_gaps() == []

    def test_untracked_issue_checks_available(self, inventory):
        inventory.receiving.receive("PK-001", "WH-A", Decimal("10"))
        inventory.reserve_stock("PK-001", "WH-A", Decimal("6"), "SO-9")
        with pytest.raises(InsufficientStockError) as exc_info:
            inventory.allocate_and_issue("PK-001", "WH-A", Decimal("5"))
        assert exc_info.value.available == Decimal("4")

        result = inventory.allocate_and_issue("PK-001", "WH-A", Decimal("4"))
        assert result.plan is None
        assert result.total_issued == Decimal("4")

    def test_unknown_product(self, inventory):
        with pytest.raises(UnknownReferenceError):
            inventory.allocate_and_issue("XX-404", "WH-A", Decimal("1"))


class TestReservationsHold:

    @pytest.fixture
    def reserved(self, inventory):
        inventory.receiving.receive("RM-001", "WH-A", Decimal("10"), lot_number="R1")
        inventory.reserve_stock("RM-001", "WH-A", Decimal("8"), "MO-1")
        return inventory

    def test_tracked_issue_cannot_take_reserved_stock(self, reserved):
        with pytest.raises(InsufficientStockError) as exc_info:
            reserved.allocate_and_issue("RM-001", "WH-A", Decimal("10"))
        assert exc_info.value.available == Decimal("2")

        level = reserved.get_level("RM-001", "WH-A")
        assert level.on_hand_quantity == Decimal("10")
        assert level.reserved_quantity == Decimal("8")
        assert level.available_quantity == Decimal("2")

    def test_unreserved_remainder_can_be_issued(self, reserved):
        result = reserved.allocate_and_issue("RM-001", "WH-A", Decimal("2"))
        assert result.plan.as_pairs() == [("R1", Decimal("2"))]
        assert reserved.get_level("RM-001", "WH-A").available_quantity == Decimal("0")

    def test_released_reservation_frees_stock(self, reserved):
        reserved.release_reservations("MO-1")
        result = reserved.allocate_and_issue("RM-001", "WH-A", Decimal("10"))
        assert result.total_issued == Decimal("10")
