"""
aifaq/models/subscription.py

Per-shop subscription record.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    PENDING = "pending"
    CANCELLED = "cancelled"


class Subscription(BaseModel):
    """
    Local view of a shop's subscription.

    plan only changes once the billing provider confirms a charge;
    pending_plan holds the tier a merchant asked for while the charge
    awaits confirmation.
    """
    model_config = ConfigDict(frozen=True)

    shop: str
    plan: str = "free"
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    pending_plan: Optional[str] = None
    external_charge_id: Optional[str] = None
    external_confirmation_url: Optional[str] = None
    current_period_end: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Any) -> "Subscription":
        return cls(
            shop=row.shop,
            plan=row.plan,
            status=SubscriptionStatus(row.status),
            pending_plan=row.pending_plan,
            external_charge_id=row.external_charge_id,
            external_confirmation_url=row.external_confirmation_url,
            current_period_end=row.current_period_end,
        )
