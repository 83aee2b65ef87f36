"""
BomRegistry -- versioned bills of materials with write-time invariants.

Responsibility:
    Stores draft BOMs, activates them (enforcing single-active and
    acyclicity), and retires them.

Architecture position:
    Kernel > Services.

Invariants enforced:
    - At most one active BOM per product (checked here, backed by a partial
      unique index).
    - Activation never closes a cycle in the graph of active BOMs.
    - Components reference existing products, have positive quantities, and
      never list the output product itself.

Failure modes:
    - InvalidBOMError, UnknownReferenceError, BOMNotFoundError,
      DuplicateActiveBOMError, CircularBOMError, InvalidTransitionError.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from inventory_kernel.domain.dtos import BomLine, BomView
from inventory_kernel.domain.values import ZERO, BomStatus
from inventory_kernel.exceptions import (
    BOMNotFoundError,
    CircularBOMError,
    DuplicateActiveBOMError,
    InvalidBOMError,
    InvalidTransitionError,
    UnknownReferenceError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.bom import BillOfMaterials, BomComponent
from inventory_kernel.models.reference import Product
from inventory_kernel.services.base import BaseService

logger = get_logger("services.bom_registry")


def find_cycle_through(
    start: str,
    edges: Mapping[str, Sequence[str]],
) -> tuple[str, ...] | None:
    """Return a path start -> ... -> start if one exists, else None.

    Depth-first with an explicit ancestry path, so the reported cycle is the
    one actually walked.
    """
    path: list[str] = [start]
    on_path: set[str] = {start}
    done: set[str] = set()

    def walk(node: str) -> tuple[str, ...] | None:
        for child in edges.get(node, ()):
            if child == start:
                return tuple(path) + (start,)
            if child in on_path or child in done:
                continue
            path.append(child)
            on_path.add(child)
            found = walk(child)
            if found is not None:
                return found
            path.pop()
            on_path.discard(child)
            done.add(child)
        return None

    return walk(start)


class BomRegistry(BaseService):
    """Write side of the BOM registry."""

    def create_bom(
        self,
        product_code: str,
        version: str,
        components: Sequence[BomLine],
        notes: str | None = None,
        actor_id: str = "system",
    ) -> UUID:
        """Store a draft BOM and return its id."""
        if self._product(product_code) is None:
            raise UnknownReferenceError("product", product_code)
        if not components:
            raise InvalidBOMError(product_code, "a bill of materials needs components")
        seen: set[str] = set()
        for line in components:
            if line.component_code == product_code:
                raise InvalidBOMError(product_code, "a product cannot be its own component")
            if line.component_code in seen:
                raise InvalidBOMError(
                    product_code, f"component {line.component_code} listed twice"
                )
            if line.quantity_per_unit <= ZERO:
                raise InvalidBOMError(
                    product_code,
                    f"component {line.component_code} needs a positive quantity",
                )
            if self._product(line.component_code) is None:
                raise UnknownReferenceError("product", line.component_code)
            seen.add(line.component_code)

        duplicate = self.session.scalar(
            select(BillOfMaterials.id).where(
                BillOfMaterials.product_code == product_code,
                BillOfMaterials.version == version,
            )
        )
        if duplicate is not None:
            raise InvalidBOMError(product_code, f"version {version} already exists")

        bom = BillOfMaterials(
            product_code=product_code,
            version=version,
            status=BomStatus.DRAFT.value,
            notes=notes,
            created_by=actor_id,
            components=[
                BomComponent(
                    component_code=line.component_code,
                    quantity_per_unit=line.quantity_per_unit,
                    unit_of_measure=line.unit_of_measure,
                    is_optional=line.is_optional,
                    position=i,
                )
                for i, line in enumerate(components)
            ],
        )
        self.session.add(bom)
        self.session.flush()
        logger.info(
            "bom_created",
            extra={
                "bom_id": bom.id,
                "product_code": product_code,
                "version": version,
                "component_count": len(components),
            },
        )
        return bom.id

    def activate(self, bom_id: UUID, supersede: bool = False) -> BomView:
        """
        Make a draft BOM the product's active recipe.

        Raises:
            DuplicateActiveBOMError: another version is active and
                ``supersede`` is False.
            CircularBOMError: activation would let a product contain itself.
        """
        bom = self._load(bom_id)
        if bom.status != BomStatus.DRAFT.value:
            raise InvalidTransitionError(str(bom_id), bom.status, "activate")

        current = self.session.scalar(
            select(BillOfMaterials).where(
                BillOfMaterials.product_code == bom.product_code,
                BillOfMaterials.status == BomStatus.ACTIVE.value,
            )
        )
        if current is not None and not supersede:
            raise DuplicateActiveBOMError(bom.product_code, current.version)

        edges = self._active_edges()
        edges[bom.product_code] = [c.component_code for c in bom.components]
        cycle = find_cycle_through(bom.product_code, edges)
        if cycle is not None:
            logger.warning(
                "bom_cycle_rejected",
                extra={"product_code": bom.product_code, "cycle": list(cycle)},
            )
            raise CircularBOMError(cycle)

        if current is not None:
            current.status = BomStatus.OBSOLETE.value
            # The old row must leave the partial unique index first
            self.session.flush()
        bom.status = BomStatus.ACTIVE.value
        bom.activated_at = self.clock.now()
        self.session.flush()
        logger.info(
            "bom_activated",
            extra={
                "bom_id": bom.id,
                "product_code": bom.product_code,
                "version": bom.version,
                "superseded_version": current.version if current is not None else None,
            },
        )
        return _view(bom)

    def obsolete(self, bom_id: UUID) -> None:
        bom = self._load(bom_id)
        if bom.status == BomStatus.OBSOLETE.value:
            raise InvalidTransitionError(str(bom_id), bom.status, "retire")
        bom.status = BomStatus.OBSOLETE.value
        self.session.flush()
        logger.info("bom_obsoleted", extra={"bom_id": bom.id, "version": bom.version})

    def get_active(self, product_code: str) -> BomView:
        bom = self.session.scalar(
            select(BillOfMaterials)
            .where(
                BillOfMaterials.product_code == product_code,
                BillOfMaterials.status == BomStatus.ACTIVE.value,
            )
            .options(selectinload(BillOfMaterials.components))
        )
        if bom is None:
            raise BOMNotFoundError(f"active BOM for {product_code}")
        return _view(bom)

    def _load(self, bom_id: UUID) -> BillOfMaterials:
        bom = self.session.get(BillOfMaterials, bom_id)
        if bom is None:
            raise BOMNotFoundError(str(bom_id))
        return bom

    def _product(self, code: str) -> Product | None:
        return self.session.scalar(
            select(Product).where(Product.code == code, Product.is_active.is_(True))
        )

    def _active_edges(self) -> dict[str, list[str]]:
        rows = self.session.execute(
            select(BillOfMaterials.product_code, BomComponent.component_code)
            .join(BomComponent, BomComponent.bom_id == BillOfMaterials.id)
            .where(BillOfMaterials.status == BomStatus.ACTIVE.value)
            .order_by(BillOfMaterials.product_code, BomComponent.position)
        ).all()
        edges: dict[str, list[str]] = {}
        for product_code, component_code in rows:
            edges.setdefault(product_code, []).append(component_code)
        return edges


def _view(bom: BillOfMaterials) -> BomView:
    return BomView(
        product_code=bom.product_code,
        version=bom.version,
        lines=tuple(
            BomLine(
                component_code=c.component_code,
                quantity_per_unit=c.quantity_per_unit,
                unit_of_measure=c.unit_of_measure,
                is_optional=c.is_optional,
            )
            for c in bom.components
        ),
    )
