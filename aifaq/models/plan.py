"""
aifaq/models/plan.py

Plan tiers and their limits.

A limit is either Bounded(n) or UNBOUNDED; "no limit" is a distinct value,
never a numeric sentinel, so callers branch on the type instead of comparing
against infinity or -1.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Tuple, Union

PRODUCTS = "products"
GENERATIONS_PER_MONTH = "generationsPerMonth"
LIMIT_KEYS = (PRODUCTS, GENERATIONS_PER_MONTH)


@dataclass(frozen=True)
class Bounded:
    value: int

    def __post_init__(self):
        if self.value < 0:
            raise ValueError(f"Limit must be non-negative, got {self.value}")


class Unbounded:
    """The absence of a limit. Use the UNBOUNDED singleton."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNBOUNDED"


UNBOUNDED = Unbounded()

Limit = Union[Bounded, Unbounded]


@dataclass(frozen=True)
class PlanLimits:
    products: Limit
    generations_per_month: Limit

    def get(self, limit_key: str) -> Limit:
        if limit_key == PRODUCTS:
            return self.products
        if limit_key == GENERATIONS_PER_MONTH:
            return self.generations_per_month
        raise ValueError(f"Unknown limit key: {limit_key}")


@dataclass(frozen=True)
class Plan:
    """
    A subscription tier.

    price is in major currency units (dollars). rank is the plan's position
    in the catalog's total order, free first.
    """
    id: str
    name: str
    price: Decimal
    billing_interval_days: int
    external_plan_name: Optional[str]
    limits: PlanLimits
    features: Tuple[str, ...] = field(default_factory=tuple)
    rank: int = 0

    @property
    def is_free(self) -> bool:
        return self.price == 0

    def limit_for(self, limit_key: str) -> Limit:
        return self.limits.get(limit_key)

    def to_dict(self) -> dict:
        def _limit(value: Limit) -> Optional[int]:
            return value.value if isinstance(value, Bounded) else None

        return {
            "id": self.id,
            "name": self.name,
            "price": str(self.price),
            "billing_interval_days": self.billing_interval_days,
            "external_plan_name": self.external_plan_name,
            "limits": {
                PRODUCTS: _limit(self.limits.products),
                GENERATIONS_PER_MONTH: _limit(self.limits.generations_per_month),
            },
            "features": list(self.features),
            "rank": self.rank,
        }


@dataclass(frozen=True)
class LimitCheck:
    """Outcome of comparing usage to one plan limit. limit/remaining are None when unbounded."""
    allowed: bool
    limit: Optional[int]
    usage: int
    remaining: Optional[int]
