"""
Billing API routes.

- GET  /api/billing: plan, usage meters, upgrade options
- POST /api/billing/sync: reconcile with Shopify
- POST /api/billing/subscribe: create a charge, return its confirmation URL
- GET  /api/billing/callback: Shopify return URL after confirm/decline
- POST /api/billing/cancel: cancel and downgrade to free
"""
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from aifaq.api.deps import (
    get_billing_reader,
    get_billing_service,
    get_faq_repository,
    get_ledger,
    get_shop,
)
from aifaq.core.config import settings
from aifaq.core.errors import BillingConfigurationError
from aifaq.features.billing.service import BillingService
from aifaq.features.faqs.repository import FaqRepository
from aifaq.features.usage.service import UsageLedger


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])

BILLING_PAGE = "/app/billing"


class SubscribeRequest(BaseModel):
    plan_id: str


class SubscribeResponse(BaseModel):
    confirmation_url: str


def build_return_url(plan_id: str, app_url: Optional[str] = None) -> str:
    base = app_url or settings.SHOPIFY_APP_URL
    if not base:
        raise BillingConfigurationError("SHOPIFY_APP_URL is not configured")
    return f"{base.rstrip('/')}/api/billing/callback?{urlencode({'plan': plan_id})}"


@router.get("")
def billing_summary(
    shop: str = Depends(get_shop),
    billing: BillingService = Depends(get_billing_reader),
    ledger: UsageLedger = Depends(get_ledger),
    repository: FaqRepository = Depends(get_faq_repository),
) -> Dict[str, Any]:
    return billing.get_subscription_summary(shop, ledger.get_usage(shop), repository.published_count(shop))


@router.post("/sync")
async def sync_billing(
    shop: str = Depends(get_shop),
    billing: BillingService = Depends(get_billing_service),
):
    sub = await billing.sync_subscription(shop)
    return {"subscription": sub.model_dump(mode="json")}


@router.post("/subscribe", response_model=SubscribeResponse)
async def subscribe(
    request: SubscribeRequest,
    shop: str = Depends(get_shop),
    billing: BillingService = Depends(get_billing_service),
):
    """
    Start an upgrade.

    Errors:
        400: free plan requested, or app URL not configured
        502: Shopify rejected the charge (userErrors)
        503: Shopify unreachable (retryable)
    """
    url = await billing.create_subscription(shop, request.plan_id, build_return_url(request.plan_id))
    return {"confirmation_url": url}


@router.get("/callback")
async def billing_callback(
    charge_id: Optional[str] = Query(None),
    plan: Optional[str] = Query(None),
    shop: str = Depends(get_shop),
    billing: BillingService = Depends(get_billing_service),
):
    """Shopify sends the merchant back here; no charge_id means they declined."""
    if not charge_id:
        logger.info("billing.callback_cancelled", extra={"shop": shop, "plan": plan})
        return RedirectResponse(f"{BILLING_PAGE}?cancelled=true", status_code=302)

    await billing.confirm_charge(shop, charge_id, requested_plan=plan)
    return RedirectResponse(f"{BILLING_PAGE}?success=true", status_code=302)


@router.post("/cancel")
async def cancel_billing(
    shop: str = Depends(get_shop),
    billing: BillingService = Depends(get_billing_service),
):
    sub = await billing.cancel_subscription(shop)
    return {
        "success": True,
        "message": "Subscription cancelled. You've been moved to the Free plan.",
        "subscription": sub.model_dump(mode="json"),
    }
