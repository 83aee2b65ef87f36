"""
Tests for BOM explosion and cost roll-up.

Covers:
- Multi-level explosion with aggregation of shared components
- Leaves vs intermediates, optional edges
- Unit conversion on component lines
- Cycle detection on the active graph
- Outstanding need of a partially issued order
"""

from decimal import Decimal

import pytest

from inventory_engines.bom_explosion import BomGraph, rollup_cost
from inventory_kernel.domain.dtos import BomLine, BomView
from inventory_kernel.exceptions import CircularBOMError, InvalidQuantityError, UnitConversionError


def _bom(product: str, *lines: tuple) -> BomView:
    return BomView(
        product_code=product,
        version="1",
        lines=tuple(
            BomLine(
                component_code=line[0],
                quantity_per_unit=Decimal(line[1]),
                unit_of_measure=line[2] if len(line) > 2 else None,
                is_optional=line[3] if len(line) > 3 else False,
            )
            for line in lines
        ),
    )


def _graph(*boms: BomView, units: dict[str, str] | None = None) -> BomGraph:
    return BomGraph({b.product_code: b for b in boms}, units=units)


@pytest.fixture
def p_graph() -> BomGraph:
    """P = 2 A + 1 B; A = 3 C."""
    return _graph(
        _bom("P", ("A", "2"), ("B", "1")),
        _bom("A", ("C", "3")),
    )


class TestExplode:

    def test_two_level_example(self, p_graph):
        explosion = p_graph.explode(product_code="P", quantity=Decimal("10"))

        assert explosion.requirements == {
            "A": Decimal("20"),
            "B": Decimal("10"),
            "C": Decimal("60"),
        }
        assert explosion.leaves == {"B": Decimal("10"), "C": Decimal("60")}
        assert explosion.intermediates == {"A": Decimal("20")}
        assert explosion.optional == frozenset()

    def test_shared_component_aggregated(self):
        graph = _graph(
            _bom("P", ("A", "1"), ("B", "2")),
            _bom("A", ("X", "4")),
            _bom("B", ("X", "1")),
        )
        explosion = graph.explode(product_code="P", quantity=Decimal("3"))
        # 3*1*4 via A + 3*2*1 via B
        assert explosion.leaves == {"X": Decimal("18")}

    def test_product_without_bom_explodes_to_nothing(self, p_graph):
        explosion = p_graph.explode(product_code="C", quantity=Decimal("5"))
        assert explosion.requirements == {}

    def test_zero_quantity(self, p_graph):
        explosion = p_graph.explode(product_code="P", quantity=Decimal("0"))
        assert explosion.leaves == {"B": Decimal("0"), "C": Decimal("0")}

    def test_negative_quantity_rejected(self, p_graph):
        with pytest.raises(InvalidQuantityError):
            p_graph.explode(product_code="P", quantity=Decimal("-1"))

    def test_explosion_is_deterministic(self, p_graph):
        first = p_graph.explode(product_code="P", quantity=Decimal("7"))
        second = p_graph.explode(product_code="P", quantity=Decimal("7"))
        assert first == second


class TestOptionalComponents:

    def test_optional_edge_excluded_from_mandatory(self):
        graph = _graph(
            _bom("P", ("A", "2"), ("GIFT", "1", None, True)),
            _bom("A", ("C", "3")),
        )
        explosion = graph.explode(product_code="P", quantity=Decimal("1"))

        assert explosion.is_optional("GIFT")
        assert explosion.mandatory() == {"C": Decimal("6")}
        assert "GIFT" in explosion.leaves

    def test_component_reached_both_ways_is_mandatory_for_its_mandatory_part(self):
        graph = _graph(
            _bom("P", ("A", "1", None, True), ("C", "2")),
            _bom("A", ("C", "5")),
        )
        explosion = graph.explode(product_code="P", quantity=Decimal("1"))

        assert not explosion.is_optional("C")
        assert explosion.leaves["C"] == Decimal("7")
        assert explosion.mandatory()["C"] == Decimal("2")

    def test_everything_below_optional_edge_is_optional(self):
        graph = _graph(
            _bom("P", ("KIT", "1", None, True), ("B", "1")),
            _bom("KIT", ("K1", "2"), ("K2", "1")),
        )
        explosion = graph.explode(product_code="P", quantity=Decimal("1"))
        assert explosion.optional == frozenset({"KIT", "K1", "K2"})
        assert explosion.mandatory(leaves_only=False) == {"B": Decimal("1")}


class TestUnits:

    def test_line_unit_converted_to_component_unit(self):
        graph = _graph(
            _bom("P", ("PIGMENT", "250", "g")),
            units={"PIGMENT": "kg"},
        )
        explosion = graph.explode(product_code="P", quantity=Decimal("4"))
        assert explosion.leaves == {"PIGMENT": Decimal("1")}

    def test_incompatible_units_raise(self):
        graph = _graph(
            _bom("P", ("SOLVENT", "2", "kg")),
            units={"SOLVENT": "l"},
        )
        with pytest.raises(UnitConversionError):
            graph.explode(product_code="P", quantity=Decimal("1"))

    def test_line_without_unit_uses_component_unit(self):
        graph = _graph(_bom("P", ("SOLVENT", "2")), units={"SOLVENT": "l"})
        assert graph.explode(product_code="P", quantity=Decimal("3")).leaves == {
            "SOLVENT": Decimal("6")
        }


class TestCycles:

    def test_cycle_detected_during_explosion(self):
        graph = _graph(
            _bom("P", ("A", "1")),
            _bom("A", ("B", "1")),
            _bom("B", ("P", "1")),
        )
        with pytest.raises(CircularBOMError) as exc_info:
            graph.explode(product_code="P", quantity=Decimal("1"))
        assert exc_info.value.path == ("P", "A", "B", "P")

    def test_diamond_is_not_a_cycle(self):
        graph = _graph(
            _bom("P", ("A", "1"), ("B", "1")),
            _bom("A", ("C", "1")),
            _bom("B", ("C", "1")),
        )
        assert graph.find_cycle() is None
        assert graph.explode(product_code="P", quantity=Decimal("1")).leaves == {
            "C": Decimal("2")
        }

    def test_find_cycle_returns_closed_path(self):
        graph = _graph(_bom("X", ("Y", "1")), _bom("Y", ("X", "1")))
        cycle = graph.find_cycle()
        assert cycle is not None
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"X", "Y"}


class TestOutstandingLeaves:

    def test_nothing_issued(self, p_graph):
        assert p_graph.outstanding_leaves("P", Decimal("10")) == {
            "C": Decimal("60"),
            "B": Decimal("10"),
        }

    def test_issued_direct_components_netted(self, p_graph):
        outstanding = p_graph.outstanding_leaves(
            "P", Decimal("10"), issued={"A": Decimal("5"), "B": Decimal("10")}
        )
        # 15 A still to draw, exploded to C
        assert outstanding == {"C": Decimal("45")}

    def test_over_issue_counts_as_covered(self, p_graph):
        outstanding = p_graph.outstanding_leaves(
            "P", Decimal("1"), issued={"A": Decimal("9"), "B": Decimal("9")}
        )
        assert outstanding == {}


class TestRollupCost:

    def test_mandatory_leaf_cost(self, p_graph):
        explosion = p_graph.explode(product_code="P", quantity=Decimal("10"))
        cost = rollup_cost(explosion, {"B": Decimal("2.50"), "C": Decimal("0.10")})
        assert cost == Decimal("31.00")

    def test_missing_cost_warns_and_counts_zero(self, p_graph, captured_logs):
        explosion = p_graph.explode(product_code="P", quantity=Decimal("1"))
        assert rollup_cost(explosion, {"B": Decimal("1")}) == Decimal("1")
        warnings = [r for r in captured_logs() if r["message"] == "bom_rollup_missing_cost"]
        assert warnings and warnings[0]["components"] == ["C"]

    def test_optional_included_on_request(self):
        graph = _graph(_bom("P", ("A", "1"), ("GIFT", "1", None, True)))
        explosion = graph.explode(product_code="P", quantity=Decimal("2"))
        costs = {"A": Decimal("3"), "GIFT": Decimal("5")}
        assert rollup_cost(explosion, costs) == Decimal("6")
        assert rollup_cost(explosion, costs, include_optional=True) == Decimal("16")
