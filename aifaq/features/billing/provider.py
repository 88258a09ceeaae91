"""
Billing provider protocol.

Defines the interface the billing service needs from an external,
authoritative billing system (Shopify app subscriptions in production,
fakes in tests).
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Protocol

from aifaq.core.errors import (  # noqa: F401  re-exported for provider implementations
    BillingConfigurationError,
    BillingProviderError,
    BillingTransportError,
    BillingUserError,
)

# Provider status string for a live (paid or trialing) subscription
ACTIVE_STATUS = "ACTIVE"


@dataclass(frozen=True)
class UserError:
    """One provider-reported rejection: the field at fault and a readable message."""
    field: Optional[str]
    message: str


@dataclass(frozen=True)
class ExternalSubscription:
    """An active recurring charge as the provider reports it."""
    id: str
    name: Optional[str]
    status: str
    current_period_end: Optional[datetime]
    trial_days: Optional[int]
    price: Optional[Decimal]
    currency_code: Optional[str]
    interval: Optional[str]
    plan_id: Optional[str] = None  # recovered from charge metadata/name when available


@dataclass(frozen=True)
class ChargeRequest:
    name: str
    price: Decimal
    currency_code: str
    interval_days: int
    return_url: str
    trial_days: int
    test_mode: bool
    plan_id: Optional[str] = None


@dataclass(frozen=True)
class CreatedCharge:
    charge_id: str
    confirmation_url: str


class BillingProvider(Protocol):
    """
    Protocol for billing providers.

    Implementations must:
    - Raise BillingUserError when the provider returns any user error,
      regardless of other data in the response
    - Raise BillingTransportError on timeouts and network failures
    - Raise BillingProviderError for every other failure
    """

    async def query_active_subscriptions(self, shop: str) -> List[ExternalSubscription]:
        """
        List the shop's active recurring charges.

        Returns:
            Zero or more subscriptions; empty means no paid plan is active
        """
        ...

    async def create_recurring_charge(self, shop: str, request: ChargeRequest) -> CreatedCharge:
        """
        Create a recurring charge that the merchant must confirm.

        Returns:
            The new charge id and the URL where the merchant approves it
        """
        ...

    async def cancel_recurring_charge(self, shop: str, charge_id: str) -> str:
        """
        Cancel a recurring charge.

        Returns:
            The provider's status for the cancelled charge
        """
        ...
