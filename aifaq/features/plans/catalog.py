"""
aifaq/features/plans/catalog.py

Plan catalog: the ordered set of subscription tiers.

Handles:
- Plan lookup with free-plan fallback
- Tier ordering (upgrade/downgrade comparisons)
- Limit checks against a plan
- Mapping an external charge price back to a tier

The catalog is an immutable value passed to the services that need it;
DEFAULT_CATALOG is the production tier table.
"""

from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Optional, Tuple, Union

from aifaq.models.plan import (
    Bounded,
    LimitCheck,
    Plan,
    PlanLimits,
    UNBOUNDED,
)


class PlanCatalog:
    """Ordered, validated collection of plans."""

    def __init__(self, plans: Iterable[Plan]):
        ordered = tuple(sorted(plans, key=lambda p: p.rank))
        _validate(ordered)
        self._plans: Tuple[Plan, ...] = ordered
        self._by_id = {p.id: p for p in ordered}
        self._free = next(p for p in ordered if p.is_free)

    @property
    def free_plan(self) -> Plan:
        return self._free

    def ordered(self) -> Tuple[Plan, ...]:
        return self._plans

    def ids(self) -> List[str]:
        return [p.id for p in self._plans]

    def __contains__(self, plan_id: object) -> bool:
        return plan_id in self._by_id

    def get_plan(self, plan_id: Optional[str]) -> Plan:
        """Return the plan for plan_id, or the free plan when unknown or missing."""
        if plan_id is None:
            return self._free
        return self._by_id.get(plan_id, self._free)

    def rank_of(self, plan_id: Optional[str]) -> int:
        return self.get_plan(plan_id).rank

    def is_upgrade(self, plan_a: Optional[str], plan_b: Optional[str]) -> bool:
        """True when plan_a sits above plan_b in the tier order."""
        return self.rank_of(plan_a) > self.rank_of(plan_b)

    def upgrade_options(self, plan_id: Optional[str]) -> List[Plan]:
        current = self.rank_of(plan_id)
        return [p for p in self._plans if p.rank > current]

    def check_limit(self, plan_id: Optional[str], limit_key: str, current_usage: int) -> LimitCheck:
        """
        Compare current_usage to the plan's limit_key limit.

        Unbounded limits short-circuit to allowed with limit=None.
        """
        limit = self.get_plan(plan_id).limit_for(limit_key)
        if not isinstance(limit, Bounded):
            return LimitCheck(allowed=True, limit=None, usage=current_usage, remaining=None)
        return LimitCheck(
            allowed=current_usage < limit.value,
            limit=limit.value,
            usage=current_usage,
            remaining=max(0, limit.value - current_usage),
        )

    def match_price(self, amount: Union[Decimal, str, float, int, None]) -> Optional[Plan]:
        """First plan, in tier order, whose price equals amount exactly."""
        if amount is None:
            return None
        try:
            price = amount if isinstance(amount, Decimal) else Decimal(str(amount))
        except InvalidOperation:
            return None
        for plan in self._plans:
            if plan.price == price:
                return plan
        return None


def _validate(plans: Tuple[Plan, ...]) -> None:
    if not plans:
        raise ValueError("Plan catalog must contain at least one plan")

    ids = [p.id for p in plans]
    if len(set(ids)) != len(ids):
        raise ValueError(f"Duplicate plan ids in catalog: {ids}")

    free_plans = [p.id for p in plans if p.is_free]
    if len(free_plans) != 1:
        raise ValueError(f"Catalog needs exactly one zero-priced plan, found {free_plans}")

    # External charges are matched back to tiers by price, so prices must be unique.
    prices = [p.price for p in plans]
    if len(set(prices)) != len(prices):
        raise ValueError(f"Plans must not share a price: {[(p.id, str(p.price)) for p in plans]}")

    ranks = [p.rank for p in plans]
    if len(set(ranks)) != len(ranks):
        raise ValueError(f"Plan ranks must be unique: {ranks}")
    for lower, higher in zip(plans, plans[1:]):
        if not lower.price < higher.price:
            raise ValueError(
                f"Plan rank must increase with price: {lower.id} ({lower.price}) "
                f"ranks below {higher.id} ({higher.price})"
            )


DEFAULT_CATALOG = PlanCatalog([
    Plan(
        id="free",
        name="Free",
        price=Decimal("0"),
        billing_interval_days=30,
        external_plan_name=None,  # no charge for free
        limits=PlanLimits(products=Bounded(3), generations_per_month=Bounded(10)),
        features=(
            "3 products with FAQ",
            "10 AI generations/month",
            "Basic accordion style",
            "1 AI provider",
        ),
        rank=0,
    ),
    Plan(
        id="starter",
        name="Starter",
        price=Decimal("9"),
        billing_interval_days=30,
        external_plan_name="Starter Plan - $9/month",
        limits=PlanLimits(products=Bounded(50), generations_per_month=Bounded(100)),
        features=(
            "50 products with FAQ",
            "100 AI generations/month",
            "Edit & customize FAQs",
            "Both AI providers (OpenAI & Anthropic)",
            "Email support",
        ),
        rank=1,
    ),
    Plan(
        id="growth",
        name="Growth",
        price=Decimal("29"),
        billing_interval_days=30,
        external_plan_name="Growth Plan - $29/month",
        limits=PlanLimits(products=UNBOUNDED, generations_per_month=Bounded(500)),
        features=(
            "Unlimited products with FAQ",
            "500 AI generations/month",
            "Edit & customize FAQs",
            "Both AI providers",
            "Bulk generate for all products",
            "FAQ analytics (clicks & engagement)",
            "Priority support",
        ),
        rank=2,
    ),
    Plan(
        id="pro",
        name="Pro",
        price=Decimal("79"),
        billing_interval_days=30,
        external_plan_name="Pro Plan - $79/month",
        limits=PlanLimits(products=UNBOUNDED, generations_per_month=UNBOUNDED),
        features=(
            "Unlimited products with FAQ",
            "Unlimited AI generations",
            "Edit & customize FAQs",
            "Both AI providers",
            "Bulk generate for all products",
            "FAQ analytics",
            "Custom FAQ templates",
            "White-label (remove AI badge)",
            "Dedicated support + onboarding",
        ),
        rank=3,
    ),
])
