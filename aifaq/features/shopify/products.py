"""
Product data and FAQ metafield storage on the Shopify storefront.

FAQs live in one JSON metafield per product (namespace ai_faq, key faqs),
which the theme extension renders.
"""
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Protocol

from aifaq.core.errors import BillingProviderError, BillingUserError, StorefrontError
from aifaq.features.shopify.client import ShopifyAdminClient, product_gid, raise_for_user_errors
from aifaq.models.faq import FaqEntry


logger = logging.getLogger(__name__)

FAQ_NAMESPACE = "ai_faq"
FAQ_KEY = "faqs"
PAGE_SIZE = 20
PRODUCT_FILTERS = ("all", "has_faq", "no_faq", "active")

PRODUCT_QUERY = """
query GetProduct($id: ID!) {
  product(id: $id) {
    id
    title
    description
    productType
    vendor
    tags
    status
    options { name values }
    variants(first: 50) {
      edges { node { id title price sku selectedOptions { name value } } }
    }
    metafields(first: 30) {
      edges { node { namespace key value type } }
    }
  }
}
"""

SET_METAFIELD_MUTATION = """
mutation SetProductMetafield($metafields: [MetafieldsSetInput!]!) {
  metafieldsSet(metafields: $metafields) {
    metafields { id namespace key value }
    userErrors { field message }
  }
}
"""

PRODUCTS_LIST_QUERY = """
query GetProducts($first: Int!, $after: String, $query: String) {
  products(first: $first, after: $after, query: $query) {
    pageInfo { hasNextPage endCursor }
    edges {
      node {
        id
        title
        status
        featuredImage { url altText }
        priceRangeV2 { minVariantPrice { amount currencyCode } }
        metafield(namespace: "ai_faq", key: "faqs") { value }
      }
    }
  }
}
"""

GET_FAQ_QUERY = """
query GetFAQ($id: ID!) {
  product(id: $id) {
    metafield(namespace: "ai_faq", key: "faqs") { id value }
  }
}
"""


class MetafieldStore(Protocol):
    async def save_faqs(self, product_id: str, faqs: List[FaqEntry]) -> None:
        ...

    async def read_faqs(self, product_id: str) -> List[FaqEntry]:
        ...


@asynccontextmanager
async def _storefront_errors(operation: str):
    """Re-raise Admin API failures as StorefrontError, keeping retryability."""
    try:
        yield
    except BillingProviderError as exc:
        error = StorefrontError(f"{operation} failed: {exc.message}", retryable=exc.retryable)
        if isinstance(exc, BillingUserError):
            error.errors = exc.errors
        raise error from exc


def _edges(connection: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [edge["node"] for edge in (connection or {}).get("edges", []) if edge.get("node")]


async def fetch_product(client: ShopifyAdminClient, product_id: str) -> Optional[Dict[str, Any]]:
    """
    Fetch a product with variants and metafields flattened to lists.

    The app's own ai_faq metafields are dropped so generated FAQs never
    feed back into the prompt. Returns None when the product does not exist.
    """
    async with _storefront_errors("Product fetch"):
        data = await client.graphql(PRODUCT_QUERY, {"id": product_gid(product_id)})

    product = data.get("product")
    if not product:
        return None

    normalized = dict(product)
    normalized["variants"] = _edges(product.get("variants"))
    normalized["metafields"] = [
        mf for mf in _edges(product.get("metafields")) if mf.get("namespace") != FAQ_NAMESPACE
    ]
    return normalized


def build_search_query(search: Optional[str] = None, faq_filter: Optional[str] = None) -> Optional[str]:
    """Admin API search syntax for the product list; has_faq/no_faq are filtered after the fetch."""
    terms = []
    if search and search.strip():
        terms.append(f"title:*{search.strip()}*")
    if faq_filter == "active":
        terms.append("status:active")
    return " AND ".join(terms) or None


def _faq_count(value: Optional[str]) -> int:
    try:
        items = json.loads(value)
    except (TypeError, ValueError):
        return 0
    return len(items) if isinstance(items, list) else 0


async def fetch_products(
    client: ShopifyAdminClient,
    first: int = PAGE_SIZE,
    after: Optional[str] = None,
    query: Optional[str] = None,
) -> Dict[str, Any]:
    """
    One page of products, each tagged with has_faq and faq_count from the
    ai_faq metafield. page_info carries has_next_page and end_cursor.
    """
    async with _storefront_errors("Product list"):
        data = await client.graphql(PRODUCTS_LIST_QUERY, {"first": first, "after": after, "query": query})

    connection = data.get("products") or {}
    products = []
    for node in _edges(connection):
        value = (node.pop("metafield", None) or {}).get("value")
        products.append({**node, "has_faq": bool(value), "faq_count": _faq_count(value)})

    page_info = connection.get("pageInfo") or {}
    return {
        "products": products,
        "page_info": {
            "has_next_page": bool(page_info.get("hasNextPage")),
            "end_cursor": page_info.get("endCursor"),
        },
    }


class ShopifyMetafieldStore:
    """MetafieldStore backed by product metafields."""

    def __init__(self, client: ShopifyAdminClient):
        self.client = client

    async def save_faqs(self, product_id: str, faqs: List[FaqEntry]) -> None:
        value = json.dumps([faq.model_dump() for faq in faqs])
        variables = {
            "metafields": [
                {
                    "ownerId": product_gid(product_id),
                    "namespace": FAQ_NAMESPACE,
                    "key": FAQ_KEY,
                    "value": value,
                    "type": "json",
                }
            ]
        }
        async with _storefront_errors("Metafield save"):
            data = await self.client.graphql(SET_METAFIELD_MUTATION, variables)
            raise_for_user_errors((data.get("metafieldsSet") or {}).get("userErrors"))
        logger.info(
            "storefront.faqs_saved",
            extra={"shop": self.client.shop, "product_id": product_id, "faq_count": len(faqs)},
        )

    async def read_faqs(self, product_id: str) -> List[FaqEntry]:
        async with _storefront_errors("Metafield read"):
            data = await self.client.graphql(GET_FAQ_QUERY, {"id": product_gid(product_id)})

        metafield = (data.get("product") or {}).get("metafield") or {}
        if not metafield.get("value"):
            return []
        try:
            items = json.loads(metafield["value"])
        except ValueError as exc:
            raise StorefrontError(f"FAQ metafield for {product_id} is not valid JSON") from exc
        return [FaqEntry(**item) for item in items if isinstance(item, dict)]
