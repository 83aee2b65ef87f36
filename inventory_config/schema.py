"""
InventoryConfig schema.

The runtime settings of the inventory engine as one frozen dataclass.
YAML files are parsed into it by ``inventory_config.loader``; services
receive the instance explicitly and never read files or the environment
themselves.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from decimal import Decimal, InvalidOperation
from typing import Any

from inventory_kernel.domain.values import AllocationPolicy

DEFAULT_DATABASE_URL = "sqlite:///inventory.db"


@dataclass(frozen=True)
class InventoryConfig:
    """
    Engine-wide settings.

    Contract:
        Values are validated in ``__post_init__``; an instance that exists is
        usable.
    Raises:
        ValueError: on any out-of-range value.
    """

    default_allocation_policy: AllocationPolicy = AllocationPolicy.FIFO
    require_inspection: bool = False
    receipt_tolerance_percent: Decimal = Decimal("0")
    expiry_warning_days: int = 30
    lock_timeout_seconds: float = 5.0
    max_retries: int = 3
    retry_backoff_seconds: float = 0.05
    database_url: str = DEFAULT_DATABASE_URL

    def __post_init__(self) -> None:
        # Coerce YAML scalars into the declared types
        object.__setattr__(
            self, "default_allocation_policy",
            _policy(self.default_allocation_policy),
        )
        object.__setattr__(
            self, "receipt_tolerance_percent",
            _decimal("receipt_tolerance_percent", self.receipt_tolerance_percent),
        )

        if self.receipt_tolerance_percent < 0:
            raise ValueError("receipt_tolerance_percent must not be negative")
        if not isinstance(self.require_inspection, bool):
            raise ValueError("require_inspection must be true or false")
        if not isinstance(self.expiry_warning_days, int) or self.expiry_warning_days < 0:
            raise ValueError("expiry_warning_days must be a non-negative integer")
        if self.lock_timeout_seconds <= 0:
            raise ValueError("lock_timeout_seconds must be positive")
        if not isinstance(self.max_retries, int) or self.max_retries < 0:
            raise ValueError("max_retries must be a non-negative integer")
        if self.retry_backoff_seconds < 0:
            raise ValueError("retry_backoff_seconds must not be negative")
        if not self.database_url:
            raise ValueError("database_url must not be empty")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InventoryConfig:
        """Build from a parsed mapping; unknown keys are an error."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")
        return cls(**data)

    def with_overrides(self, **changes: Any) -> InventoryConfig:
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["default_allocation_policy"] = self.default_allocation_policy.value
        data["receipt_tolerance_percent"] = str(self.receipt_tolerance_percent)
        return data

    def max_receipt_quantity(self, ordered: Decimal) -> Decimal:
        """Largest receipt accepted without over-receipt approval."""
        return ordered + ordered * self.receipt_tolerance_percent / Decimal("100")


def _policy(value: Any) -> AllocationPolicy:
    try:
        return AllocationPolicy(str(getattr(value, "value", value)).lower())
    except ValueError:
        raise ValueError(
            f"default_allocation_policy must be one of "
            f"{', '.join(p.value for p in AllocationPolicy)}; got {value!r}"
        ) from None


def _decimal(name: str, value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{name} must be a number; got {value!r}") from None
