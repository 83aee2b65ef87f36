"""
ReplenishmentService through InventoryEngine: advisory generation from
thresholds and open production orders, persisted runs, and the
purchasing decisions on stored suggestions.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from inventory_kernel.domain.dtos import BomLine
from inventory_kernel.domain.events import DomainEventType
from inventory_kernel.domain.values import SuggestionPriority, SuggestionStatus
from inventory_kernel.exceptions import SuggestionStateError, UnknownReferenceError


@pytest.fixture
def below_reorder(inventory):
    """RM-001@WH-A: 12 available against reorder point 15 and minimum 10."""
    inventory.receiving.receive("RM-001", "WH-A", Decimal("20"), lot_number="R1")
    inventory.set_thresholds(
        "RM-001", "WH-A",
        min_stock_alert=Decimal("10"),
        reorder_point=Decimal("15"),
        reorder_quantity=Decimal("50"),
    )
    inventory.allocate_and_issue("RM-001", "WH-A", Decimal("8"))
    return inventory


@pytest.fixture
def empty_cartons(inventory):
    """PK-001@WH-A has a minimum but nothing on hand."""
    inventory.set_thresholds("PK-001", "WH-A", min_stock_alert=Decimal("5"))
    return inventory


def _recipes(inventory):
    """FG-001 = 2 SF-001; SF-001 = 0.8 RM-001 + 5 g RM-002."""
    sf = inventory.create_bom(
        "SF-001", "v1",
        [BomLine("RM-001", Decimal("0.8")), BomLine("RM-002", Decimal("5"), "g")],
    )
    inventory.activate_bom(sf)
    fg = inventory.create_bom("FG-001", "v1", [BomLine("SF-001", Decimal("2"))])
    inventory.activate_bom(fg)


class TestGenerate:

    def test_reorder_point_trigger(self, below_reorder):
        (suggestion,) = below_reorder.suggestions()
        assert suggestion.product_code == "RM-001"
        assert suggestion.projected_available == Decimal("12")
        assert suggestion.priority == SuggestionPriority.NORMAL
        assert suggestion.suggested_quantity == Decimal("50")
        # no supplier offer: priced at the product's unit cost
        assert suggestion.supplier_code is None
        assert suggestion.estimated_cost == Decimal("225.00")

    def test_preferred_supplier_minimum(self, below_reorder):
        below_reorder.add_supplier_offer(
            "SUP-1", "Acme Polymers", "RM-001", Decimal("4.00"),
            min_order_quantity=Decimal("60"), lead_time_days=5, is_preferred=True,
        )
        below_reorder.add_supplier_offer(
            "SUP-2", "Budget Resin", "RM-001", Decimal("3.50"), lead_time_days=2,
        )
        (suggestion,) = below_reorder.suggestions()
        assert suggestion.supplier_code == "SUP-1"
        assert suggestion.suggested_quantity == Decimal("60")
        assert suggestion.estimated_cost == Decimal("240.00")

    def test_critical_ranks_first(self, below_reorder, empty_cartons):
        suggestions = below_reorder.suggestions()
        assert [(s.rank, s.product_code, s.priority) for s in suggestions] == [
            (1, "PK-001", SuggestionPriority.CRITICAL),
            (2, "RM-001", SuggestionPriority.NORMAL),
        ]

    def test_generation_is_repeatable(self, below_reorder, empty_cartons):
        first = [s.to_dict() for s in below_reorder.suggestions()]
        assert [s.to_dict() for s in below_reorder.suggestions()] == first

    def test_nothing_to_suggest(self, inventory):
        inventory.receiving.receive("PK-001", "WH-A", Decimal("10"))
        assert inventory.suggestions() == []


class TestOpenOrderRequirements:

    def test_open_order_exploded_to_raw_materials(self, inventory):
        _recipes(inventory)
        inventory.receiving.receive("RM-001", "WH-A", Decimal("10"), lot_number="R1")
        inventory.production.create_order("MO-1", "FG-001", "WH-A", Decimal("10"))

        by_product = {s.product_code: s for s in inventory.suggestions()}
        assert set(by_product) == {"RM-001", "RM-002"}

        resin = by_product["RM-001"]
        assert resin.open_order_requirement == Decimal("16")
        assert resin.projected_available == Decimal("-6")
        assert resin.suggested_quantity == Decimal("6")
        assert resin.priority == SuggestionPriority.LOW

        pigment = by_product["RM-002"]
        assert pigment.open_order_requirement == Decimal("100")
        assert pigment.priority == SuggestionPriority.CRITICAL

    def test_issued_components_net_off(self, inventory):
        _recipes(inventory)
        inventory.receiving.receive("SF-001", "WH-A", Decimal("20"), lot_number="S1")
        inventory.production.create_order("MO-1", "FG-001", "WH-A", Decimal("10"))
        assert {s.product_code for s in inventory.suggestions()} == {"RM-001", "RM-002"}

        inventory.production.start_order("MO-1")
        assert inventory.suggestions() == []

    def test_reserved_components_net_off(self, inventory):
        carton_fg = inventory.create_bom("FG-001", "v1", [BomLine("PK-001", Decimal("10"))])
        inventory.activate_bom(carton_fg)
        inventory.receiving.receive("PK-001", "WH-A", Decimal("20"))
        inventory.set_thresholds("PK-001", "WH-A", reorder_point=Decimal("5"))
        inventory.production.create_order("MO-1", "FG-001", "WH-A", Decimal("1"))
        assert inventory.suggestions() == []

        inventory.production.reserve_components("MO-1")
        assert inventory.get_level("PK-001", "WH-A").available_quantity == Decimal("10")
        assert inventory.suggestions() == []

        # a second order is not covered by the first one's reservation
        inventory.production.create_order("MO-2", "FG-001", "WH-A", Decimal("1"))
        (suggestion,) = inventory.suggestions()
        assert suggestion.open_order_requirement == Decimal("10")
        assert suggestion.projected_available == Decimal("0")

    def test_cancelled_orders_do_not_count(self, inventory):
        _recipes(inventory)
        inventory.production.create_order("MO-1", "FG-001", "WH-A", Decimal("10"))
        inventory.production.cancel_order("MO-1")
        assert inventory.suggestions() == []


class TestPersistedRuns:

    def test_persist_stores_pending(self, below_reorder, empty_cartons):
        run = below_reorder.persist_suggestions(actor_id="planner")
        assert len(run.record_ids) == 2
        assert run.superseded_count == 0

        pending = below_reorder.suggestions_by_status()
        assert [p.product_code for p in pending] == ["PK-001", "RM-001"]
        assert all(p.run_id == run.run_id for p in pending)

    def test_critical_suggestion_emits_event(self, below_reorder, empty_cartons):
        run = below_reorder.persist_suggestions()
        events = [
            e for e in below_reorder.pending_events()
            if e.event_type == DomainEventType.REPLENISHMENT_SUGGESTION_CRITICAL.value
        ]
        assert len(events) == 1
        assert events[0].aggregate_id == str(run.record_ids[0])
        assert events[0].payload["product_code"] == "PK-001"
        assert events[0].payload["run_id"] == str(run.run_id)

    def test_new_run_supersedes_pending(self, below_reorder):
        first = below_reorder.persist_suggestions()
        second = below_reorder.persist_suggestions()
        assert second.superseded_count == len(first.record_ids)
        superseded = below_reorder.suggestions_by_status(SuggestionStatus.SUPERSEDED)
        assert {s.suggestion_id for s in superseded} == set(first.record_ids)

    def test_decided_suggestions_are_not_superseded(self, below_reorder):
        first = below_reorder.persist_suggestions()
        below_reorder.approve_suggestion(first.record_ids[0], "buyer")
        second = below_reorder.persist_suggestions()
        assert second.superseded_count == 0


class TestDecisions:

    @pytest.fixture
    def suggestion_id(self, below_reorder):
        return below_reorder.persist_suggestions().record_ids[0]

    def test_approve_then_order(self, below_reorder, suggestion_id):
        below_reorder.approve_suggestion(suggestion_id, "buyer")
        below_reorder.mark_suggestion_ordered(suggestion_id, "PO-7781", "buyer")
        (ordered,) = below_reorder.suggestions_by_status("ordered")
        assert ordered.decided_by == "buyer"
        assert ordered.purchase_order_reference == "PO-7781"

    def test_reject(self, below_reorder, suggestion_id):
        below_reorder.reject_suggestion(suggestion_id, "buyer")
        (rejected,) = below_reorder.suggestions_by_status(SuggestionStatus.REJECTED)
        assert rejected.suggestion_id == suggestion_id

    def test_only_pending_can_be_decided(self, below_reorder, suggestion_id):
        below_reorder.reject_suggestion(suggestion_id, "buyer")
        with pytest.raises(SuggestionStateError) as exc_info:
            below_reorder.approve_suggestion(suggestion_id, "buyer")
        assert exc_info.value.status == SuggestionStatus.REJECTED.value

    def test_only_approved_can_be_ordered(self, below_reorder, suggestion_id):
        with pytest.raises(SuggestionStateError):
            below_reorder.mark_suggestion_ordered(suggestion_id, "PO-1", "buyer")

    def test_unknown_suggestion(self, inventory):
        with pytest.raises(UnknownReferenceError):
            inventory.approve_suggestion(uuid4(), "buyer")
