"""
Module: inventory_engines.bom_explosion
Responsibility:
    Multi-level bill-of-materials explosion over an explicit product graph:
    accumulate component requirements for a target quantity, separate
    raw-material leaves from semi-finished intermediates, flag optional
    requirements, and roll up material cost.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    The graph is built from BomView DTOs (PlanningSelector.active_boms()).

Invariants enforced:
    - Required quantity accumulates quantity_per_unit x parent requirement
      down every path.
    - A product that reappears on its own ancestry path raises
      CircularBOMError carrying the path.
    - Component quantities are converted to the component product's unit
      of measure before accumulation.

Failure modes:
    - CircularBOMError on a cycle.
    - UnitConversionError on incompatible units.
    - InvalidQuantityError on a negative target quantity.

Usage:
    graph = BomGraph(planning.active_boms(), units={"P": "pcs", "C": "kg"})
    explosion = graph.explode("P", Decimal("10"))
    explosion.requirements   # {"A": 20, "B": 10, "C": 60}
    explosion.mandatory()    # leaf requirements excluding optional paths
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal

from inventory_engines.tracer import traced_engine
from inventory_engines.units import convert
from inventory_kernel.domain.dtos import BomLine, BomView
from inventory_kernel.domain.values import ZERO
from inventory_kernel.exceptions import CircularBOMError, InvalidQuantityError
from inventory_kernel.logging_config import get_logger

logger = get_logger("engines.bom_explosion")


@dataclass(frozen=True)
class BomExplosion:
    """
    Result of exploding one product.

    ``requirements`` holds every component reached (intermediates and
    leaves), ``leaves`` only those without an active BOM.  Quantities reached
    through an optional edge count in ``requirements`` but not in
    ``mandatory()``; keys reached only that way are listed in ``optional``.
    """

    product_code: str
    quantity: Decimal
    requirements: dict[str, Decimal]
    leaves: dict[str, Decimal]
    intermediates: dict[str, Decimal]
    optional: frozenset[str]
    mandatory_requirements: dict[str, Decimal] = field(default_factory=dict)

    def mandatory(self, leaves_only: bool = True) -> dict[str, Decimal]:
        source = self.mandatory_requirements
        if leaves_only:
            return {k: v for k, v in source.items() if k in self.leaves}
        return dict(source)

    def is_optional(self, component_code: str) -> bool:
        return component_code in self.optional


class BomGraph:
    """
    Directed product graph keyed by product code.

    Contract:
        Adjacency list built once from active BOMs; explode() is a pure
        function of the graph and its arguments.
    Non-goals:
        - Does not decide which BOM version is active; the caller passes
          active BOMs only.
    """

    def __init__(
        self,
        boms: Mapping[str, BomView],
        units: Mapping[str, str] | None = None,
    ):
        self._edges: dict[str, tuple[BomLine, ...]] = {
            code: tuple(view.lines) for code, view in boms.items()
        }
        self._units = dict(units or {})

    def has_bom(self, product_code: str) -> bool:
        return product_code in self._edges

    def components(self, product_code: str) -> tuple[BomLine, ...]:
        return self._edges.get(product_code, ())

    def line_quantity(self, line: BomLine) -> Decimal:
        """Quantity per parent unit expressed in the component's own unit."""
        target = self._units.get(line.component_code)
        if line.unit_of_measure is None or target is None:
            return line.quantity_per_unit
        return convert(line.quantity_per_unit, line.unit_of_measure, target)

    @traced_engine("bom_explosion", "1.0", fingerprint_fields=("product_code", "quantity"))
    def explode(self, product_code: str, quantity: Decimal) -> BomExplosion:
        """
        Walk the active BOM of ``product_code`` for ``quantity`` units.

        Raises:
            CircularBOMError: a product reappears on its own ancestry path.
        """
        if quantity < ZERO:
            raise InvalidQuantityError(quantity)

        totals: dict[str, Decimal] = {}
        mandatory: dict[str, Decimal] = {}
        path: list[str] = [product_code]

        def walk(node: str, required: Decimal, optional_path: bool) -> None:
            for line in self.components(node):
                child = line.component_code
                if child in path:
                    cycle = tuple(path[path.index(child):]) + (child,)
                    logger.warning("bom_explosion_cycle", extra={"cycle": list(cycle)})
                    raise CircularBOMError(cycle)
                need = self.line_quantity(line) * required
                via_optional = optional_path or line.is_optional
                totals[child] = totals.get(child, ZERO) + need
                if not via_optional:
                    mandatory[child] = mandatory.get(child, ZERO) + need
                if self.has_bom(child):
                    path.append(child)
                    walk(child, need, via_optional)
                    path.pop()

        walk(product_code, quantity, False)

        leaves = {k: v for k, v in totals.items() if not self.has_bom(k)}
        intermediates = {k: v for k, v in totals.items() if self.has_bom(k)}
        optional = frozenset(k for k in totals if k not in mandatory)

        logger.debug("bom_exploded", extra={
            "product_code": product_code,
            "quantity": str(quantity),
            "leaf_count": len(leaves),
            "intermediate_count": len(intermediates),
            "optional_count": len(optional),
        })
        return BomExplosion(
            product_code=product_code,
            quantity=quantity,
            requirements=totals,
            leaves=leaves,
            intermediates=intermediates,
            optional=optional,
            mandatory_requirements=mandatory,
        )

    def outstanding_leaves(
        self,
        product_code: str,
        quantity: Decimal,
        issued: Mapping[str, Decimal] | None = None,
    ) -> dict[str, Decimal]:
        """
        Mandatory raw-material need still open for an order.

        Direct components already issued to the order are netted off first;
        whatever is left of each direct component is exploded down to its
        leaves.
        """
        issued = issued or {}
        outstanding: dict[str, Decimal] = {}
        for line in self.components(product_code):
            if line.is_optional:
                continue
            child = line.component_code
            need = self.line_quantity(line) * quantity - issued.get(child, ZERO)
            if need <= ZERO:
                continue
            if self.has_bom(child):
                below = self.explode(product_code=child, quantity=need)
                for leaf, qty in below.mandatory().items():
                    outstanding[leaf] = outstanding.get(leaf, ZERO) + qty
            else:
                outstanding[child] = outstanding.get(child, ZERO) + need
        return outstanding

    def find_cycle(self) -> tuple[str, ...] | None:
        """Any cycle in the graph as a closed path, else None."""
        done: set[str] = set()
        for root in sorted(self._edges):
            if root in done:
                continue
            path: list[str] = []
            found = self._cycle_from(root, path, done)
            if found is not None:
                return found
        return None

    def _cycle_from(
        self, node: str, path: list[str], done: set[str]
    ) -> tuple[str, ...] | None:
        if node in path:
            return tuple(path[path.index(node):]) + (node,)
        if node in done:
            return None
        path.append(node)
        for line in self.components(node):
            found = self._cycle_from(line.component_code, path, done)
            if found is not None:
                return found
        path.pop()
        done.add(node)
        return None


def rollup_cost(
    explosion: BomExplosion,
    unit_costs: Mapping[str, Decimal],
    include_optional: bool = False,
) -> Decimal:
    """Material cost of the leaf requirements of an explosion."""
    quantities = explosion.leaves if include_optional else explosion.mandatory()
    total = ZERO
    missing = []
    for code in sorted(quantities):
        cost = unit_costs.get(code)
        if cost is None:
            missing.append(code)
            continue
        total += quantities[code] * cost
    if missing:
        logger.warning("bom_rollup_missing_cost", extra={
            "product_code": explosion.product_code,
            "components": missing,
        })
    return total
