"""
Shopify billing provider implementation.

Implements the BillingProvider protocol with Shopify app subscriptions
(Admin GraphQL appSubscriptionCreate / appSubscriptionCancel).
"""
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from aifaq.features.billing.provider import (
    BillingProviderError,
    ChargeRequest,
    CreatedCharge,
    ExternalSubscription,
)
from aifaq.features.plans.catalog import DEFAULT_CATALOG, PlanCatalog
from aifaq.features.shopify.client import ShopifyAdminClient, raise_for_user_errors


logger = logging.getLogger(__name__)

CREATE_SUBSCRIPTION_MUTATION = """
mutation CreateSubscription(
  $name: String!
  $lineItems: [AppSubscriptionLineItemInput!]!
  $returnUrl: URL!
  $test: Boolean
  $trialDays: Int
) {
  appSubscriptionCreate(
    name: $name
    lineItems: $lineItems
    returnUrl: $returnUrl
    test: $test
    trialDays: $trialDays
  ) {
    appSubscription { id status }
    confirmationUrl
    userErrors { field message }
  }
}
"""

CANCEL_SUBSCRIPTION_MUTATION = """
mutation CancelSubscription($id: ID!) {
  appSubscriptionCancel(id: $id) {
    appSubscription { id status }
    userErrors { field message }
  }
}
"""

ACTIVE_SUBSCRIPTIONS_QUERY = """
query GetSubscription {
  currentAppInstallation {
    activeSubscriptions {
      id
      name
      status
      currentPeriodEnd
      trialDays
      lineItems {
        plan {
          pricingDetails {
            ... on AppRecurringPricing {
              price { amount currencyCode }
              interval
            }
          }
        }
      }
    }
  }
}
"""


def interval_for_days(days: int) -> str:
    """Shopify only bills recurring charges every 30 days or annually."""
    if days == 30:
        return "EVERY_30_DAYS"
    if days in (365, 366):
        return "ANNUAL"
    raise BillingProviderError(f"Unsupported billing interval: {days} days")


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("shopify.bad_timestamp", extra={"value": value})
        return None


def _parse_amount(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


class ShopifyBillingProvider:
    """Shopify implementation of BillingProvider protocol."""

    def __init__(self, client: ShopifyAdminClient, catalog: PlanCatalog = DEFAULT_CATALOG):
        """
        Args:
            client: Admin API client bound to the shop being billed
            catalog: Used to recover plan ids from charge names
        """
        self.client = client
        self.catalog = catalog

    def _plan_id_for_name(self, name: Optional[str]) -> Optional[str]:
        # Shopify charges carry no custom metadata; the charge name is the
        # plan's external name, written at creation time.
        if not name:
            return None
        for plan in self.catalog.ordered():
            if plan.external_plan_name and plan.external_plan_name == name:
                return plan.id
        return None

    def _parse_subscription(self, node: Dict[str, Any]) -> ExternalSubscription:
        line_items = node.get("lineItems") or []
        pricing: Dict[str, Any] = {}
        if line_items:
            pricing = ((line_items[0].get("plan") or {}).get("pricingDetails")) or {}
        price = pricing.get("price") or {}
        return ExternalSubscription(
            id=node["id"],
            name=node.get("name"),
            status=node.get("status") or "",
            current_period_end=_parse_timestamp(node.get("currentPeriodEnd")),
            trial_days=node.get("trialDays"),
            price=_parse_amount(price.get("amount")),
            currency_code=price.get("currencyCode"),
            interval=pricing.get("interval"),
            plan_id=self._plan_id_for_name(node.get("name")),
        )

    async def query_active_subscriptions(self, shop: str) -> List[ExternalSubscription]:
        data = await self.client.graphql(ACTIVE_SUBSCRIPTIONS_QUERY)
        installation = data.get("currentAppInstallation") or {}
        nodes = installation.get("activeSubscriptions") or []
        return [self._parse_subscription(node) for node in nodes]

    async def create_recurring_charge(self, shop: str, request: ChargeRequest) -> CreatedCharge:
        variables = {
            "name": request.name,
            "lineItems": [
                {
                    "plan": {
                        "appRecurringPricingDetails": {
                            "price": {"amount": str(request.price), "currencyCode": request.currency_code},
                            "interval": interval_for_days(request.interval_days),
                        }
                    }
                }
            ],
            "returnUrl": request.return_url,
            "test": request.test_mode,
            "trialDays": request.trial_days,
        }
        data = await self.client.graphql(CREATE_SUBSCRIPTION_MUTATION, variables)
        result = data.get("appSubscriptionCreate") or {}
        raise_for_user_errors(result.get("userErrors"))

        subscription = result.get("appSubscription") or {}
        if not subscription.get("id") or not result.get("confirmationUrl"):
            raise BillingProviderError("Shopify did not return a subscription and confirmation URL")
        return CreatedCharge(charge_id=subscription["id"], confirmation_url=result["confirmationUrl"])

    async def cancel_recurring_charge(self, shop: str, charge_id: str) -> str:
        data = await self.client.graphql(CANCEL_SUBSCRIPTION_MUTATION, {"id": charge_id})
        result = data.get("appSubscriptionCancel") or {}
        raise_for_user_errors(result.get("userErrors"))
        return (result.get("appSubscription") or {}).get("status") or "CANCELLED"
