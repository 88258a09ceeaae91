"""
Product FAQ routes and entitlement checks.

Entitlement denials are not errors: they come back as 403 with
{"limitHit": true, "limitError": <decision>} for the upgrade prompt.
"""
import asyncio
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from aifaq.api.deps import (
    get_billing_reader,
    get_faq_actions,
    get_faq_repository,
    get_guard,
    get_ledger,
    get_metafield_store,
    get_product_fetcher,
    get_product_lister,
    get_settings_service,
    get_shop,
)
from aifaq.core.errors import NotFoundError, ValidationError
from aifaq.features.billing.service import BillingService
from aifaq.features.entitlements.service import EntitlementDecision, EntitlementGuard
from aifaq.features.faqs.repository import FaqRepository
from aifaq.features.faqs.service import FaqActionResult, FaqActions
from aifaq.features.settings.service import ShopSettingsService
from aifaq.features.shopify.products import PAGE_SIZE, PRODUCT_FILTERS, MetafieldStore, build_search_query
from aifaq.features.usage.service import UsageLedger
from aifaq.models.faq import FaqEntry


router = APIRouter(tags=["products"])


class PublishRequest(BaseModel):
    faqs: List[FaqEntry]


def limit_hit_response(decision: EntitlementDecision) -> JSONResponse:
    return JSONResponse(status_code=403, content={"limitHit": True, "limitError": decision.to_dict()})


def _result_payload(result: FaqActionResult) -> dict:
    return {
        "success": True,
        "faqs": result.faq.faqs_payload() if result.faq else [],
        "isPublished": bool(result.faq and result.faq.is_published),
        "plan": result.decision.plan,
    }


@router.get("/entitlements/{action}")
def check_entitlement(
    action: str,
    shop: str = Depends(get_shop),
    guard: EntitlementGuard = Depends(get_guard),
):
    return guard.can_perform_action(shop, action).to_dict()


@router.get("/products")
async def list_products(
    search: Optional[str] = Query(None),
    faq: str = Query("all"),
    after: Optional[str] = Query(None),
    shop: str = Depends(get_shop),
    lister=Depends(get_product_lister),
):
    """One page of products; ``faq`` narrows to has_faq, no_faq or active."""
    if faq not in PRODUCT_FILTERS:
        raise ValidationError(f"Unknown product filter: {faq}")

    page = await lister(first=PAGE_SIZE, after=after, query=build_search_query(search, faq))
    products = page["products"]
    if faq == "has_faq":
        products = [p for p in products if p["has_faq"]]
    elif faq == "no_faq":
        products = [p for p in products if not p["has_faq"]]
    return {"products": products, "page_info": page["page_info"], "search": search or "", "faq": faq}


@router.get("/products/{product_id}")
async def product_detail(
    product_id: str,
    shop: str = Depends(get_shop),
    fetcher=Depends(get_product_fetcher),
    store: MetafieldStore = Depends(get_metafield_store),
    shop_settings: ShopSettingsService = Depends(get_settings_service),
    billing: BillingService = Depends(get_billing_reader),
    ledger: UsageLedger = Depends(get_ledger),
    repository: FaqRepository = Depends(get_faq_repository),
):
    product, faqs = await asyncio.gather(fetcher(product_id), store.read_faqs(product_id))
    if not product:
        raise NotFoundError(f"Product {product_id} not found")

    current = shop_settings.get(shop)
    return {
        "product": product,
        "faqs": [faq.model_dump() for faq in faqs],
        "has_settings": bool(current and current.api_key),
        "provider": current.ai_provider if current else "openai",
        "subscription": billing.get_subscription_summary(
            shop, ledger.get_usage(shop), repository.published_count(shop)
        ),
    }


@router.post("/products/{product_id}/generate")
async def generate_faqs(
    product_id: str,
    shop: str = Depends(get_shop),
    actions: FaqActions = Depends(get_faq_actions),
):
    result = await actions.generate(shop, product_id)
    if not result.allowed:
        return limit_hit_response(result.decision)
    return _result_payload(result)


@router.post("/products/{product_id}/publish")
async def publish_faqs(
    product_id: str,
    request: PublishRequest,
    shop: str = Depends(get_shop),
    actions: FaqActions = Depends(get_faq_actions),
):
    result = await actions.publish(shop, product_id, request.faqs)
    if not result.allowed:
        return limit_hit_response(result.decision)
    return _result_payload(result)


@router.delete("/products/{product_id}/faqs")
async def unpublish_faqs(
    product_id: str,
    shop: str = Depends(get_shop),
    actions: FaqActions = Depends(get_faq_actions),
):
    deleted = await actions.unpublish(shop, product_id)
    return {"success": True, "deleted": deleted}
