"""
Billing service orchestrator.

Coordinates:
- Lazy per-shop subscription records
- Reconciliation with the external provider (the system of record)
- Charge creation, confirmation callback and cancellation
- Plan/usage summaries for the billing page

Local writes happen only after the provider call succeeds, except the
Pending marker written by create_subscription.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

from sqlalchemy import select

from aifaq.core.config import settings
from aifaq.core.database import get_db_session, insert_if_absent, subscriptions, upsert, utc_now
from aifaq.features.billing.provider import (
    ACTIVE_STATUS,
    BillingConfigurationError,
    BillingProvider,
    ChargeRequest,
    ExternalSubscription,
)
from aifaq.features.plans.catalog import DEFAULT_CATALOG, PlanCatalog
from aifaq.features.shopify.client import gid_tail
from aifaq.models.plan import Bounded, GENERATIONS_PER_MONTH, PRODUCTS, Plan
from aifaq.models.subscription import Subscription, SubscriptionStatus


logger = logging.getLogger(__name__)

_FREE_RESET = {
    "status": SubscriptionStatus.ACTIVE.value,
    "external_charge_id": None,
}


def _percent(used: int, limit: int) -> int:
    if limit <= 0:
        return 100 if used > 0 else 0
    return int((Decimal(used) * 100 / Decimal(limit)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def usage_meter(used: int, plan: Plan, limit_key: str) -> Dict[str, Any]:
    """Billing-page meter for one limit; limit/remaining are None when unbounded."""
    limit = plan.limit_for(limit_key)
    if not isinstance(limit, Bounded):
        return {"used": used, "limit": None, "percent": 0, "remaining": None}
    return {
        "used": used,
        "limit": limit.value,
        "percent": _percent(used, limit.value),
        "remaining": max(0, limit.value - used),
    }


class BillingService:
    """Subscription lifecycle for one billing provider and plan catalog."""

    def __init__(
        self,
        provider: Optional[BillingProvider] = None,
        catalog: PlanCatalog = DEFAULT_CATALOG,
        *,
        currency: Optional[str] = None,
        trial_days: Optional[int] = None,
        test_mode: Optional[bool] = None,
    ):
        self.provider = provider
        self.catalog = catalog
        self.currency = currency or settings.BILLING_CURRENCY
        self.trial_days = trial_days if trial_days is not None else settings.BILLING_TRIAL_DAYS
        self.test_mode = test_mode if test_mode is not None else settings.billing_test_mode

    def _require_provider(self) -> BillingProvider:
        if self.provider is None:
            raise BillingConfigurationError("Billing provider is not configured")
        return self.provider

    def _store(self, shop: str, **fields) -> Subscription:
        """Upsert the shop's row with fields and return the stored record."""
        now = utc_now()
        values = {
            "shop": shop,
            "plan": self.catalog.free_plan.id,
            "status": SubscriptionStatus.ACTIVE.value,
            "created_at": now,
            "updated_at": now,
        }
        values.update(fields)
        with get_db_session() as session:
            session.execute(
                upsert(
                    session,
                    subscriptions,
                    values=values,
                    conflict_columns=("shop",),
                    set_={**fields, "updated_at": now},
                )
            )
            row = session.execute(select(subscriptions).where(subscriptions.c.shop == shop)).one()
        return Subscription.from_row(row)

    def get_subscription(self, shop: str) -> Subscription:
        """Read the shop's subscription, creating it as free/active on first access."""
        now = utc_now()
        with get_db_session() as session:
            session.execute(
                insert_if_absent(
                    session,
                    subscriptions,
                    values={
                        "shop": shop,
                        "plan": self.catalog.free_plan.id,
                        "status": SubscriptionStatus.ACTIVE.value,
                        "created_at": now,
                        "updated_at": now,
                    },
                    conflict_columns=("shop",),
                )
            )
            row = session.execute(select(subscriptions).where(subscriptions.c.shop == shop)).one()
        return Subscription.from_row(row)

    def current_plan(self, shop: str) -> Plan:
        return self.catalog.get_plan(self.get_subscription(shop).plan)

    def resolve_plan(self, external: ExternalSubscription) -> Plan:
        """
        Map a confirmed external charge back to a local tier.

        Order: plan id recorded on the charge, then exact price, then free.
        """
        if external.plan_id and external.plan_id in self.catalog:
            return self.catalog.get_plan(external.plan_id)
        matched = self.catalog.match_price(external.price)
        if matched is not None:
            return matched
        logger.warning(
            "billing.price_unmatched",
            extra={"charge_id": external.id, "price": str(external.price), "charge_name": external.name},
        )
        return self.catalog.free_plan

    async def sync_subscription(self, shop: str) -> Subscription:
        """
        Pull the provider's active subscriptions into the local record.

        No active subscription forces free/active; otherwise the first
        active charge decides the plan.
        """
        provider = self._require_provider()
        active = await provider.query_active_subscriptions(shop)

        if not active:
            sub = self._store(shop, plan=self.catalog.free_plan.id, current_period_end=None, **_FREE_RESET)
            logger.info("billing.sync", extra={"shop": shop, "plan": sub.plan, "external_subscriptions": 0})
            return sub

        external = active[0]
        plan = self.resolve_plan(external)
        status = SubscriptionStatus.ACTIVE if external.status == ACTIVE_STATUS else SubscriptionStatus.CANCELLED
        sub = self._store(
            shop,
            plan=plan.id,
            status=status.value,
            pending_plan=None,
            external_charge_id=external.id,
            external_confirmation_url=None,
            current_period_end=external.current_period_end,
        )
        logger.info(
            "billing.sync",
            extra={
                "shop": shop,
                "plan": sub.plan,
                "status": sub.status.value,
                "external_subscriptions": len(active),
            },
        )
        return sub

    async def create_subscription(self, shop: str, plan_id: str, return_url: str) -> str:
        """
        Create an external recurring charge for plan_id.

        The local plan is left alone; the record goes Pending with the
        requested tier in pending_plan until the charge is confirmed.

        Returns:
            The confirmation URL the merchant must visit

        Raises:
            BillingConfigurationError: plan resolves to the free plan, or no provider
            BillingUserError: the provider rejected the charge
        """
        plan = self.catalog.get_plan(plan_id)
        if plan.is_free:
            raise BillingConfigurationError("Cannot create a charge for the free plan")
        provider = self._require_provider()

        request = ChargeRequest(
            name=plan.external_plan_name or plan.name,
            price=plan.price,
            currency_code=self.currency,
            interval_days=plan.billing_interval_days,
            return_url=return_url,
            trial_days=self.trial_days,
            test_mode=self.test_mode,
            plan_id=plan.id,
        )
        charge = await provider.create_recurring_charge(shop, request)

        self._store(
            shop,
            status=SubscriptionStatus.PENDING.value,
            pending_plan=plan.id,
            external_charge_id=charge.charge_id,
            external_confirmation_url=charge.confirmation_url,
        )
        logger.info(
            "billing.charge_created",
            extra={"shop": shop, "plan": plan.id, "charge_id": charge.charge_id, "test_mode": self.test_mode},
        )
        return charge.confirmation_url

    async def confirm_charge(
        self,
        shop: str,
        charge_id: Optional[str],
        requested_plan: Optional[str] = None,
    ) -> Subscription:
        """
        Reconcile after the merchant returns from the confirmation page.

        The sync result wins. If the provider does not report the charge
        yet (plan still free) and charge_id is the charge this shop
        created, the requested tier is applied as a best-effort fallback;
        the next sync corrects it if needed.
        """
        if not charge_id:
            logger.info("billing.charge_declined", extra={"shop": shop})
            return self.get_subscription(shop)

        before = self.get_subscription(shop)
        sub = await self.sync_subscription(shop)
        if not self.catalog.get_plan(sub.plan).is_free:
            return sub

        recorded = before.external_charge_id
        if not recorded or gid_tail(recorded) != gid_tail(charge_id):
            logger.warning(
                "billing.charge_mismatch",
                extra={"shop": shop, "charge_id": charge_id, "recorded_charge_id": recorded},
            )
            return sub

        candidate = before.pending_plan or requested_plan
        if not candidate or candidate not in self.catalog or self.catalog.get_plan(candidate).is_free:
            return sub

        logger.info("billing.charge_fallback", extra={"shop": shop, "plan": candidate, "charge_id": recorded})
        return self._store(
            shop,
            plan=candidate,
            status=SubscriptionStatus.ACTIVE.value,
            pending_plan=None,
            external_charge_id=recorded,
            external_confirmation_url=None,
        )

    async def cancel_subscription(self, shop: str) -> Subscription:
        """
        Cancel the external charge (if any) and downgrade to free.

        A provider failure propagates and leaves the local record as it was.
        """
        sub = self.get_subscription(shop)
        if sub.external_charge_id:
            provider = self._require_provider()
            status = await provider.cancel_recurring_charge(shop, sub.external_charge_id)
            logger.info(
                "billing.charge_cancelled",
                extra={"shop": shop, "charge_id": sub.external_charge_id, "provider_status": status},
            )

        return self._store(
            shop,
            plan=self.catalog.free_plan.id,
            pending_plan=None,
            external_confirmation_url=None,
            current_period_end=None,
            **_FREE_RESET,
        )

    def get_subscription_summary(self, shop: str, usage: Dict[str, int], published_count: int) -> Dict[str, Any]:
        """Plan, subscription and limit meters for the billing page."""
        sub = self.get_subscription(shop)
        plan = self.catalog.get_plan(sub.plan)
        return {
            "subscription": sub.model_dump(mode="json"),
            "plan": plan.to_dict(),
            "usage": {
                "generations": usage_meter(usage.get("generation", 0), plan, GENERATIONS_PER_MONTH),
                "products": usage_meter(published_count, plan, PRODUCTS),
            },
            "upgrade_options": [p.to_dict() for p in self.catalog.upgrade_options(plan.id)],
        }
