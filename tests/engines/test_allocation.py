"""
Tests for the lot allocator.

Covers:
- FEFO ordering (soonest expiry first, no-expiry lots last)
- FIFO ordering (manufacture date, then receipt)
- Eligibility: quarantined, reserved, expired and depleted lots
- All-or-nothing failure with corrective context
- Determinism and plan totals (property based)
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from inventory_engines.allocation import AllocationPlan, LotAllocator, fefo_key, fifo_key
from inventory_kernel.domain.values import AllocationPolicy, AvailabilityStatus
from inventory_kernel.exceptions import InsufficientStockError, InvalidQuantityError
from tests.factories import lot_snapshot


def _allocate(candidates, quantity, policy=AllocationPolicy.FEFO, as_of=None) -> AllocationPlan:
    return LotAllocator().allocate(
        product_code="RM-001",
        warehouse_code="WH-A",
        quantity=Decimal(quantity),
        policy=policy,
        candidates=candidates,
        as_of=as_of,
    )


class TestFefo:
    """Soonest expiry first."""

    def test_two_lots_split(self):
        """8 units from lots of 5 (earlier expiry) and 10 take 5 then 3."""
        lots = [
            lot_snapshot("LOT-2", "10", expiry_date=date(2026, 9, 1)),
            lot_snapshot("LOT-1", "5", expiry_date=date(2026, 6, 1)),
        ]
        plan = _allocate(lots, "8")

        assert plan.as_pairs() == [("LOT-1", Decimal("5")), ("LOT-2", Decimal("3"))]
        assert plan.total == Decimal("8")
        assert plan.lines[1].remaining_after == Decimal("7")

    def test_lots_without_expiry_go_last(self):
        lots = [
            lot_snapshot("A-NOEXP", "10"),
            lot_snapshot("B-EXP", "4", expiry_date=date(2027, 1, 1)),
        ]
        plan = _allocate(lots, "6")
        assert [line.lot_number for line in plan.lines] == ["B-EXP", "A-NOEXP"]

    def test_ties_break_by_lot_number(self):
        same_day = date(2026, 7, 1)
        lots = [
            lot_snapshot("LOT-B", "3", expiry_date=same_day),
            lot_snapshot("LOT-A", "3", expiry_date=same_day),
        ]
        plan = _allocate(lots, "4")
        assert plan.as_pairs() == [("LOT-A", Decimal("3")), ("LOT-B", Decimal("1"))]

    def test_single_lot_exact(self):
        plan = _allocate([lot_snapshot("LOT-1", "5", expiry_date=date(2026, 6, 1))], "5")
        assert plan.lot_count == 1
        assert plan.lines[0].remaining_after == Decimal("0")


class TestFifo:
    """Oldest stock first."""

    def test_manufacture_date_wins_over_receipt(self):
        lots = [
            lot_snapshot(
                "NEWER", "5",
                manufacture_date=date(2026, 2, 1),
                received_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
            ),
            lot_snapshot(
                "OLDER", "5",
                manufacture_date=date(2025, 12, 1),
                received_at=datetime(2026, 2, 10, tzinfo=timezone.utc),
            ),
        ]
        plan = _allocate(lots, "7", policy=AllocationPolicy.FIFO)
        assert plan.as_pairs() == [("OLDER", Decimal("5")), ("NEWER", Decimal("2"))]

    def test_receipt_date_used_without_manufacture_date(self):
        lots = [
            lot_snapshot("LATE", "5", received_at=datetime(2026, 2, 1, tzinfo=timezone.utc)),
            lot_snapshot("EARLY", "5", received_at=datetime(2026, 1, 5, tzinfo=timezone.utc)),
        ]
        plan = _allocate(lots, "3", policy="fifo")
        assert plan.as_pairs() == [("EARLY", Decimal("3"))]
        assert plan.policy == AllocationPolicy.FIFO

    def test_naive_and_aware_receipts_compare(self):
        """SQLite returns naive datetimes; fresh snapshots keep tzinfo."""
        lots = [
            lot_snapshot("AWARE", "1", received_at=datetime(2026, 1, 2, tzinfo=timezone.utc)),
            lot_snapshot("NAIVE", "1", received_at=datetime(2026, 1, 1)),
        ]
        assert fifo_key(lots[1]) < fifo_key(lots[0])


class TestEligibility:
    """Only effectively available lots with quantity are ever selected."""

    @pytest.mark.parametrize(
        "status",
        [
            AvailabilityStatus.QUARANTINE,
            AvailabilityStatus.RESERVED,
            AvailabilityStatus.EXPIRED,
            AvailabilityStatus.DEPLETED,
        ],
    )
    def test_blocked_statuses_skipped(self, status):
        lots = [
            lot_snapshot("BLOCKED", "100", expiry_date=date(2026, 4, 1), status=status),
            lot_snapshot("OK", "10", expiry_date=date(2026, 12, 1)),
        ]
        plan = _allocate(lots, "10")
        assert plan.as_pairs() == [("OK", Decimal("10"))]

    def test_quarantined_lot_never_selected_even_when_short(self):
        lots = [
            lot_snapshot("Q", "100", status=AvailabilityStatus.QUARANTINE),
            lot_snapshot("OK", "2"),
        ]
        with pytest.raises(InsufficientStockError) as exc_info:
            _allocate(lots, "3")
        assert exc_info.value.available == Decimal("2")

    def test_expired_as_of_date_skipped(self):
        lots = [
            lot_snapshot("STALE", "10", expiry_date=date(2026, 2, 28)),
            lot_snapshot("FRESH", "10", expiry_date=date(2026, 8, 1)),
        ]
        plan = _allocate(lots, "5", as_of=date(2026, 3, 2))
        assert plan.as_pairs() == [("FRESH", Decimal("5"))]

    def test_other_pairs_ignored(self):
        lots = [
            lot_snapshot("ELSEWHERE", "50", warehouse_code="WH-B"),
            lot_snapshot("OTHER-PRODUCT", "50", product_code="RM-002"),
            lot_snapshot("HERE", "5"),
        ]
        plan = _allocate(lots, "5")
        assert plan.as_pairs() == [("HERE", Decimal("5"))]


class TestFailures:

    def test_insufficient_stock_carries_context(self):
        lots = [lot_snapshot("L1", "7"), lot_snapshot("L2", "5")]
        with pytest.raises(InsufficientStockError) as exc_info:
            _allocate(lots, "20")

        err = exc_info.value
        assert err.available == Decimal("12")
        assert err.requested == Decimal("20")
        assert "insufficient stock: 12 available, 20 requested" in str(err)
        reason = err.to_reason()
        assert reason["code"] == "INSUFFICIENT_STOCK"
        assert reason["available"] == "12"

    @pytest.mark.parametrize("quantity", ["0", "-3"])
    def test_non_positive_quantity_rejected(self, quantity):
        with pytest.raises(InvalidQuantityError):
            _allocate([lot_snapshot("L1", "5")], quantity)

    def test_no_candidates(self):
        with pytest.raises(InsufficientStockError):
            _allocate([], "1")


class TestTrace:

    def test_engine_trace_logged(self, captured_logs):
        _allocate([lot_snapshot("L1", "5")], "2")
        traces = [r for r in captured_logs() if r["message"] == "INVENTORY_ENGINE_TRACE"]
        assert traces
        assert traces[-1]["engine_name"] == "allocation"
        assert len(traces[-1]["input_fingerprint"]) == 16


_quantities = st.integers(min_value=1, max_value=50).map(Decimal)


class TestAllocationProperties:

    @settings(max_examples=75, deadline=None)
    @given(
        sizes=st.lists(_quantities, min_size=1, max_size=8),
        expiries=st.lists(st.integers(min_value=0, max_value=400), min_size=8, max_size=8),
        data=st.data(),
    )
    def test_plan_covers_request_and_respects_lots(self, sizes, expiries, data):
        lots = [
            lot_snapshot(
                f"LOT-{i:02d}", size,
                expiry_date=date.fromordinal(date(2026, 4, 1).toordinal() + expiries[i]),
            )
            for i, size in enumerate(sizes)
        ]
        total = sum(sizes)
        quantity = data.draw(st.integers(min_value=1, max_value=int(total)).map(Decimal))

        plan = _allocate(lots, quantity)

        assert plan.total == quantity
        by_lot = {lot.lot_number: lot for lot in lots}
        for line in plan.lines:
            assert Decimal("0") < line.quantity <= by_lot[line.lot_number].remaining_quantity
        # Only the last lot in consumption order may be partially used
        for line in plan.lines[:-1]:
            assert line.remaining_after == Decimal("0")
        # Lines follow FEFO order
        keys = [fefo_key(by_lot[line.lot_number]) for line in plan.lines]
        assert keys == sorted(keys)

    @settings(max_examples=50, deadline=None)
    @given(sizes=st.lists(_quantities, min_size=1, max_size=6))
    def test_over_request_always_fails(self, sizes):
        lots = [lot_snapshot(f"LOT-{i}", size) for i, size in enumerate(sizes)]
        with pytest.raises(InsufficientStockError):
            _allocate(lots, sum(sizes) + 1, policy=AllocationPolicy.FIFO)
