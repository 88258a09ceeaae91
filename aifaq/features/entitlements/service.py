"""
aifaq/features/entitlements/service.py

Entitlement guard for metered actions.

Handles:
- generate: checked against the period's generation counter
- publish_faq: checked against the live published-product count
- Structured denials with upgrade guidance (a result, not an exception)
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol, Tuple
import logging

from aifaq.core.errors import ValidationError
from aifaq.features.plans.catalog import DEFAULT_CATALOG, PlanCatalog
from aifaq.models.plan import GENERATIONS_PER_MONTH, PRODUCTS
from aifaq.models.subscription import Subscription
from aifaq.models.usage import UsageType


logger = logging.getLogger(__name__)


class Action(str, Enum):
    GENERATE = "generate"
    PUBLISH_FAQ = "publish_faq"


class SubscriptionReader(Protocol):
    def get_subscription(self, shop: str) -> Subscription:
        ...


class UsageReader(Protocol):
    def get_usage(self, shop: str, period: Optional[str] = None) -> Dict[str, int]:
        ...


@dataclass(frozen=True)
class EntitlementDecision:
    allowed: bool
    plan: str
    reason: Optional[str] = None
    limit_key: Optional[str] = None
    usage: Optional[int] = None
    limit: Optional[int] = None
    upgrade_options: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        if self.allowed:
            return {"allowed": True, "plan": self.plan}
        return {
            "allowed": False,
            "reason": self.reason,
            "limitKey": self.limit_key,
            "usage": self.usage,
            "limit": self.limit,
            "plan": self.plan,
            "upgradeOptions": list(self.upgrade_options),
        }


def _coerce_action(action) -> Action:
    try:
        return Action(action)
    except ValueError:
        raise ValidationError(f"Unknown action: {action}")


class EntitlementGuard:
    """
    Allow/deny decision for a shop and a metered action.

    Stateless: every call re-reads plan, usage and published count. The
    check is not coupled to the action it guards, so concurrent callers
    can overrun a limit by the number of racers.
    """

    def __init__(
        self,
        subscriptions: SubscriptionReader,
        ledger: UsageReader,
        published_count: Callable[[str], int],
        catalog: PlanCatalog = DEFAULT_CATALOG,
    ):
        self.subscriptions = subscriptions
        self.ledger = ledger
        self.published_count = published_count
        self.catalog = catalog

    def can_perform_action(self, shop: str, action) -> EntitlementDecision:
        """
        Decide whether ``shop`` may perform ``action`` on its current plan.

        Subscription, usage and published count are read one after another,
        each exactly once, and not as a single snapshot: a write landing
        between reads can make the decision stale by one action.
        """
        action = _coerce_action(action)

        plan_id = self.subscriptions.get_subscription(shop).plan or self.catalog.free_plan.id
        usage = self.ledger.get_usage(shop)
        published = self.published_count(shop)
        plan = self.catalog.get_plan(plan_id)

        if action is Action.GENERATE:
            check = self.catalog.check_limit(plan_id, GENERATIONS_PER_MONTH, usage.get(UsageType.GENERATION.value, 0))
            limit_key = GENERATIONS_PER_MONTH
            reason = f"You've used all {check.limit} AI generations this month on the {plan.name} plan."
        else:
            check = self.catalog.check_limit(plan_id, PRODUCTS, published)
            limit_key = PRODUCTS
            reason = f"You've reached the {check.limit}-product limit on the {plan.name} plan."

        if check.allowed:
            return EntitlementDecision(allowed=True, plan=plan_id)

        decision = EntitlementDecision(
            allowed=False,
            plan=plan_id,
            reason=reason,
            limit_key=limit_key,
            usage=check.usage,
            limit=check.limit,
            upgrade_options=tuple(p.id for p in self.catalog.upgrade_options(plan_id)),
        )
        logger.warning(
            "entitlement.denied",
            extra={
                "shop": shop,
                "action": action.value,
                "plan": plan_id,
                "limit_key": limit_key,
                "usage": check.usage,
                "limit": check.limit,
            },
        )
        return decision
