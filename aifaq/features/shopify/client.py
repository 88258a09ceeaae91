"""Async client for the Shopify Admin GraphQL API."""
import logging
from typing import Any, Dict, Iterable, List, Optional

import httpx

from aifaq.core.config import settings
from aifaq.core.errors import BillingProviderError, BillingTransportError, BillingUserError
from aifaq.features.billing.provider import UserError


logger = logging.getLogger(__name__)


def gid_tail(value: Optional[str]) -> Optional[str]:
    """
    Numeric part of a Shopify global id.

    "gid://shopify/AppSubscription/42" -> "42"; plain ids come back unchanged.
    """
    if not value:
        return value
    return str(value).rstrip("/").rsplit("/", 1)[-1]


def product_gid(product_id: str) -> str:
    if str(product_id).startswith("gid://"):
        return str(product_id)
    return f"gid://shopify/Product/{product_id}"


def raise_for_user_errors(user_errors: Optional[Iterable[Dict[str, Any]]]) -> None:
    """Any userErrors entry fails the whole call, whatever else the response carried."""
    errors: List[UserError] = []
    for item in user_errors or []:
        field = item.get("field")
        if isinstance(field, list):
            field = ".".join(str(part) for part in field)
        errors.append(UserError(field=field, message=item.get("message") or "Unknown error"))
    if errors:
        raise BillingUserError(errors)


class ShopifyAdminClient:
    """
    GraphQL client bound to one shop's Admin API session.

    Failure mapping:
    - timeouts, network errors, HTTP 429 and 5xx -> BillingTransportError (retryable)
    - any other HTTP error, top-level GraphQL errors, bad JSON -> BillingProviderError
    userErrors are part of a successful response; callers check them with
    raise_for_user_errors.
    """

    def __init__(
        self,
        shop: str,
        access_token: str,
        *,
        api_version: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.shop = shop
        self._access_token = access_token
        self._api_version = api_version or settings.SHOPIFY_API_VERSION
        self._timeout = timeout if timeout is not None else settings.EXTERNAL_HTTP_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def endpoint(self) -> str:
        return f"https://{self.shop}/admin/api/{self._api_version}/graphql.json"

    async def graphql(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Execute a query or mutation and return its `data` object.

        Raises:
            BillingTransportError: Retryable transport failure
            BillingProviderError: Non-retryable failure
        """
        headers = {
            "X-Shopify-Access-Token": self._access_token,
            "Content-Type": "application/json",
        }
        payload: Dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self.endpoint, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.TimeoutException as exc:
            logger.error("shopify.timeout", extra={"shop": self.shop, "error_code": "timeout"})
            raise BillingTransportError(f"Shopify request timed out: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.error(
                "shopify.http_error",
                extra={"shop": self.shop, "status": status, "response_body": exc.response.text},
            )
            if status == 429 or status >= 500:
                raise BillingTransportError(f"Shopify responded with {status}") from exc
            raise BillingProviderError(f"Shopify responded with {status}: {exc.response.text[:200]}") from exc
        except httpx.RequestError as exc:
            logger.error("shopify.network_error", extra={"shop": self.shop, "error_code": "network"})
            raise BillingTransportError(f"Failed to contact Shopify: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise BillingProviderError("Invalid JSON returned by Shopify") from exc

        errors = body.get("errors") if isinstance(body, dict) else None
        if errors:
            if isinstance(errors, list):
                message = ", ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors)
            else:
                message = str(errors)
            raise BillingProviderError(f"Shopify GraphQL error: {message}")

        data = body.get("data") if isinstance(body, dict) else None
        return data or {}
