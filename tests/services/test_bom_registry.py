"""
Tests for BomRegistry: draft validation, single active version per product,
supersession and cycle rejection at activation time.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from inventory_kernel.domain.dtos import BomLine
from inventory_kernel.domain.values import BomStatus
from inventory_kernel.exceptions import (
    BOMNotFoundError,
    CircularBOMError,
    DuplicateActiveBOMError,
    InvalidBOMError,
    InvalidTransitionError,
    UnknownReferenceError,
)
from inventory_kernel.models.bom import BillOfMaterials
from inventory_kernel.services.bom_registry import find_cycle_through


def _line(code: str, qty: str, unit: str | None = None, optional: bool = False) -> BomLine:
    return BomLine(
        component_code=code,
        quantity_per_unit=Decimal(qty),
        unit_of_measure=unit,
        is_optional=optional,
    )


@pytest.fixture
def active_fg(ctx):
    """FG-001 = 2 SF-001 + 1 PK-001; SF-001 = 0.8 RM-001 + 5 g RM-002."""
    sf = ctx.boms.create_bom("SF-001", "v1", [_line("RM-001", "0.8"), _line("RM-002", "5", "g")])
    ctx.boms.activate(sf)
    fg = ctx.boms.create_bom("FG-001", "v1", [_line("SF-001", "2"), _line("PK-001", "1")])
    ctx.boms.activate(fg)
    return fg


class TestFindCycle:

    def test_no_cycle(self):
        assert find_cycle_through("A", {"A": ["B"], "B": ["C"]}) is None

    def test_reports_walked_path(self):
        edges = {"A": ["B", "X"], "B": ["C"], "C": ["A"], "X": []}
        assert find_cycle_through("A", edges) == ("A", "B", "C", "A")

    def test_cycle_elsewhere_is_not_reported(self):
        edges = {"A": ["B"], "B": ["C"], "C": ["B"]}
        assert find_cycle_through("A", edges) is None


class TestCreateBom:

    def test_draft_created(self, ctx, session):
        bom_id = ctx.boms.create_bom(
            "SF-001", "v1", [_line("RM-001", "0.8")], notes="trial mix", actor_id="eng"
        )
        row = session.get(BillOfMaterials, bom_id)
        assert row.status == BomStatus.DRAFT.value
        assert row.created_by == "eng"
        assert [c.component_code for c in row.components] == ["RM-001"]

    def test_draft_is_not_active(self, ctx):
        ctx.boms.create_bom("SF-001", "v1", [_line("RM-001", "0.8")])
        with pytest.raises(BOMNotFoundError):
            ctx.boms.get_active("SF-001")

    @pytest.mark.parametrize(
        "lines, fragment",
        [
            ([], "needs components"),
            ([_line("SF-001", "1")], "its own component"),
            ([_line("RM-001", "1"), _line("RM-001", "2")], "listed twice"),
            ([_line("RM-001", "0")], "positive quantity"),
        ],
    )
    def test_structural_errors(self, ctx, lines, fragment):
        with pytest.raises(InvalidBOMError) as exc_info:
            ctx.boms.create_bom("SF-001", "v1", lines)
        assert fragment in exc_info.value.detail

    def test_unknown_component(self, ctx):
        with pytest.raises(UnknownReferenceError):
            ctx.boms.create_bom("SF-001", "v1", [_line("XX-999", "1")])

    def test_duplicate_version(self, ctx):
        ctx.boms.create_bom("SF-001", "v1", [_line("RM-001", "1")])
        with pytest.raises(InvalidBOMError):
            ctx.boms.create_bom("SF-001", "v1", [_line("RM-002", "1")])


class TestActivation:

    def test_active_view(self, ctx, active_fg):
        view = ctx.boms.get_active("FG-001")
        assert view.version == "v1"
        assert [(line.component_code, line.quantity_per_unit) for line in view.lines] == [
            ("SF-001", Decimal("2")),
            ("PK-001", Decimal("1")),
        ]
        assert set(ctx.planning.active_boms()) == {"FG-001", "SF-001"}

    def test_second_active_version_refused(self, ctx, active_fg):
        v2 = ctx.boms.create_bom("FG-001", "v2", [_line("SF-001", "3")])
        with pytest.raises(DuplicateActiveBOMError) as exc_info:
            ctx.boms.activate(v2)
        assert exc_info.value.active_version == "v1"
        assert ctx.boms.get_active("FG-001").version == "v1"

    def test_supersede_retires_previous(self, ctx, session, active_fg):
        v2 = ctx.boms.create_bom("FG-001", "v2", [_line("SF-001", "3")])
        view = ctx.boms.activate(v2, supersede=True)
        assert view.version == "v2"
        assert session.get(BillOfMaterials, active_fg).status == BomStatus.OBSOLETE.value

    def test_cycle_refused(self, ctx, active_fg):
        loop = ctx.boms.create_bom("RM-001", "v1", [_line("FG-001", "1")])
        with pytest.raises(CircularBOMError) as exc_info:
            ctx.boms.activate(loop)
        assert exc_info.value.path == ("RM-001", "FG-001", "SF-001", "RM-001")

    def test_cycle_through_draft_is_allowed_until_activated(self, ctx, active_fg):
        # drafts do not take part in the graph
        ctx.boms.create_bom("PK-001", "v1", [_line("FG-001", "1")])
        assert ctx.boms.get_active("FG-001").version == "v1"

    def test_only_drafts_activate(self, ctx, active_fg):
        with pytest.raises(InvalidTransitionError):
            ctx.boms.activate(active_fg)

    def test_obsolete(self, ctx, active_fg):
        ctx.boms.obsolete(active_fg)
        with pytest.raises(BOMNotFoundError):
            ctx.boms.get_active("FG-001")
        with pytest.raises(InvalidTransitionError):
            ctx.boms.obsolete(active_fg)

    def test_unknown_bom_id(self, ctx):
        with pytest.raises(BOMNotFoundError):
            ctx.boms.activate(uuid4())
