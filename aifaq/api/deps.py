"""
Request-scoped dependencies.

Session authentication happens upstream: the shop domain and its Admin
API token arrive as headers. Every service is built through a dependency
so tests can swap any of them with app.dependency_overrides.
"""
import re
from functools import partial
from typing import Optional

from fastapi import Depends, Header, HTTPException

from aifaq.core.errors import ValidationError
from aifaq.features.billing.service import BillingService
from aifaq.features.billing.shopify_provider import ShopifyBillingProvider
from aifaq.features.entitlements.service import EntitlementGuard
from aifaq.features.faqs.repository import FaqRepository
from aifaq.features.faqs.generator import validate_api_key
from aifaq.features.faqs.service import FaqActions, default_generator_factory
from aifaq.features.plans.catalog import DEFAULT_CATALOG, PlanCatalog
from aifaq.features.settings.service import ShopSettingsService
from aifaq.features.shopify.client import ShopifyAdminClient
from aifaq.features.shopify.products import ShopifyMetafieldStore, fetch_product, fetch_products
from aifaq.features.usage.service import UsageLedger

_SHOP_DOMAIN_RE = re.compile(r"^[a-z0-9][a-z0-9-]*\.myshopify\.com$")


def get_shop(
    x_shop_domain: Optional[str] = Header(None),
    x_shopify_shop_domain: Optional[str] = Header(None),
) -> str:
    shop = (x_shop_domain or x_shopify_shop_domain or "").strip().lower()
    if not shop:
        raise HTTPException(status_code=401, detail="Missing shop session")
    if not _SHOP_DOMAIN_RE.match(shop):
        raise ValidationError(f"Invalid shop domain: {shop}")
    return shop


def get_access_token(x_shopify_access_token: Optional[str] = Header(None)) -> str:
    if not x_shopify_access_token:
        raise HTTPException(status_code=401, detail="Missing Admin API access token")
    return x_shopify_access_token


def get_admin_client(
    shop: str = Depends(get_shop),
    token: str = Depends(get_access_token),
) -> ShopifyAdminClient:
    return ShopifyAdminClient(shop, token)


def get_catalog() -> PlanCatalog:
    return DEFAULT_CATALOG


def get_ledger() -> UsageLedger:
    return UsageLedger()


def get_faq_repository() -> FaqRepository:
    return FaqRepository()


def get_settings_service() -> ShopSettingsService:
    return ShopSettingsService()


def get_billing_reader(catalog: PlanCatalog = Depends(get_catalog)) -> BillingService:
    """Billing service for local reads only; no provider, no token needed."""
    return BillingService(None, catalog)


def get_billing_service(
    client: ShopifyAdminClient = Depends(get_admin_client),
    catalog: PlanCatalog = Depends(get_catalog),
) -> BillingService:
    return BillingService(ShopifyBillingProvider(client, catalog), catalog)


def get_guard(
    billing: BillingService = Depends(get_billing_reader),
    ledger: UsageLedger = Depends(get_ledger),
    repository: FaqRepository = Depends(get_faq_repository),
    catalog: PlanCatalog = Depends(get_catalog),
) -> EntitlementGuard:
    return EntitlementGuard(billing, ledger, repository.published_count, catalog)


def get_metafield_store(client: ShopifyAdminClient = Depends(get_admin_client)) -> ShopifyMetafieldStore:
    return ShopifyMetafieldStore(client)


def get_product_fetcher(client: ShopifyAdminClient = Depends(get_admin_client)):
    return partial(fetch_product, client)


def get_product_lister(client: ShopifyAdminClient = Depends(get_admin_client)):
    return partial(fetch_products, client)


def get_key_validator():
    return validate_api_key


def get_generator_factory():
    return default_generator_factory


def get_faq_actions(
    guard: EntitlementGuard = Depends(get_guard),
    ledger: UsageLedger = Depends(get_ledger),
    repository: FaqRepository = Depends(get_faq_repository),
    shop_settings: ShopSettingsService = Depends(get_settings_service),
    store=Depends(get_metafield_store),
    fetcher=Depends(get_product_fetcher),
    generator_factory=Depends(get_generator_factory),
) -> FaqActions:
    return FaqActions(guard, ledger, repository, shop_settings, store, fetcher, generator_factory)
