"""
aifaq/features/faqs/service.py

Metered FAQ actions.

Every action runs in the same order: entitlement check, external work
(generation or storefront write), usage increment for generate only,
then the local record. A crash between the external work and the
increment under-counts; it never over-counts.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional
import logging

from aifaq.core.errors import BillingConfigurationError, NotFoundError
from aifaq.features.entitlements.service import Action, EntitlementDecision, EntitlementGuard
from aifaq.features.faqs.generator import FaqGenerator, HttpFaqGenerator
from aifaq.features.faqs.repository import FaqRepository
from aifaq.features.settings.service import ShopSettings, ShopSettingsService
from aifaq.features.shopify.products import MetafieldStore
from aifaq.features.usage.service import UsageLedger
from aifaq.models.faq import FaqEntry, ProductFaq
from aifaq.models.usage import UsageType


logger = logging.getLogger(__name__)

ProductFetcher = Callable[[str], Awaitable[Optional[Dict[str, Any]]]]
GeneratorFactory = Callable[[ShopSettings], FaqGenerator]


def default_generator_factory(shop_settings: ShopSettings) -> FaqGenerator:
    return HttpFaqGenerator(shop_settings.ai_provider, shop_settings.api_key, shop_settings.model)


@dataclass(frozen=True)
class FaqActionResult:
    decision: EntitlementDecision
    faq: Optional[ProductFaq] = None

    @property
    def allowed(self) -> bool:
        return self.decision.allowed


class FaqActions:
    def __init__(
        self,
        guard: EntitlementGuard,
        ledger: UsageLedger,
        repository: FaqRepository,
        shop_settings: ShopSettingsService,
        store: MetafieldStore,
        fetch_product: ProductFetcher,
        generator_factory: GeneratorFactory = default_generator_factory,
    ):
        self.guard = guard
        self.ledger = ledger
        self.repository = repository
        self.shop_settings = shop_settings
        self.store = store
        self.fetch_product = fetch_product
        self.generator_factory = generator_factory

    async def generate(self, shop: str, product_id: str) -> FaqActionResult:
        """
        Generate a draft FAQ set for a product.

        Raises:
            BillingConfigurationError: no AI provider key saved for the shop
            NotFoundError: the product does not exist
            GenerationError: the AI provider failed
        """
        decision = self.guard.can_perform_action(shop, Action.GENERATE)
        if not decision.allowed:
            return FaqActionResult(decision=decision)

        shop_settings = self.shop_settings.get(shop)
        if shop_settings is None or not shop_settings.api_key:
            raise BillingConfigurationError("Please configure your AI API key in Settings first.")

        product = await self.fetch_product(product_id)
        if not product:
            raise NotFoundError(f"Product not found: {product_id}")

        generator = self.generator_factory(shop_settings)
        faqs = await generator.generate(product, shop_settings.faq_count)

        self.ledger.increment(shop, UsageType.GENERATION)
        record = self.repository.save_draft(shop, product_id, faqs)
        logger.info(
            "faq.generated",
            extra={"shop": shop, "product_id": product_id, "faq_count": len(faqs), "plan": decision.plan},
        )
        return FaqActionResult(decision=decision, faq=record)

    async def publish(self, shop: str, product_id: str, faqs: List[FaqEntry]) -> FaqActionResult:
        """
        Write FAQs to the storefront and mark the product published.

        A product that is already published does not take another slot, so
        a products-limit denial is ignored for it.
        """
        decision = self.guard.can_perform_action(shop, Action.PUBLISH_FAQ)
        if not decision.allowed:
            existing = self.repository.get(shop, product_id)
            if existing is None or not existing.is_published:
                return FaqActionResult(decision=decision)
            decision = EntitlementDecision(allowed=True, plan=decision.plan)

        await self.store.save_faqs(product_id, faqs)
        record = self.repository.mark_published(shop, product_id, faqs)
        logger.info("faq.published", extra={"shop": shop, "product_id": product_id, "faq_count": len(faqs)})
        return FaqActionResult(decision=decision, faq=record)

    async def unpublish(self, shop: str, product_id: str) -> bool:
        """Clear the storefront metafield and drop the local record, freeing a product slot."""
        await self.store.save_faqs(product_id, [])
        deleted = self.repository.delete(shop, product_id)
        logger.info("faq.unpublished", extra={"shop": shop, "product_id": product_id, "deleted": deleted})
        return deleted
