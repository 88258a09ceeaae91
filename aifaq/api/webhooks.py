"""
Shopify webhook routes.

Signature verification happens upstream with the session layer.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException

from aifaq.api.deps import get_billing_service, get_faq_repository, get_settings_service, get_shop
from aifaq.features.billing.service import BillingService
from aifaq.features.faqs.repository import FaqRepository
from aifaq.features.settings.service import ShopSettingsService


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/app-uninstalled")
def app_uninstalled(
    shop: str = Depends(get_shop),
    shop_settings: ShopSettingsService = Depends(get_settings_service),
    repository: FaqRepository = Depends(get_faq_repository),
):
    """Remove the shop's settings and FAQ records. Subscription and usage history are kept."""
    shop_settings.delete(shop)
    removed = repository.delete_all_for_shop(shop)
    logger.info("webhook.app_uninstalled", extra={"shop": shop, "faqs_removed": removed})
    return {"ok": True}


@router.post("/app-subscriptions-update")
async def app_subscriptions_update(
    shop: str = Depends(get_shop),
    billing: BillingService = Depends(get_billing_service),
):
    sub = await billing.sync_subscription(shop)
    logger.info("webhook.subscriptions_update", extra={"shop": shop, "plan": sub.plan})
    return {"ok": True, "plan": sub.plan}


@router.post("/{topic}")
def unhandled_topic(topic: str):
    raise HTTPException(status_code=404, detail=f"Unhandled webhook topic: {topic}")
