"""
AI FAQ generation.

Supports OpenAI (chat completions) and Anthropic (messages) over their
REST APIs. Provider failures are mapped to short, merchant-readable
messages.
"""
import json
import logging
import re
from typing import Any, Dict, List, Optional, Protocol

import httpx
from pydantic import ValidationError as PydanticValidationError

from aifaq.core.config import settings
from aifaq.core.errors import GenerationError
from aifaq.features.settings.service import MASK_CHAR
from aifaq.models.faq import FaqEntry


logger = logging.getLogger(__name__)

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"

DEFAULT_OPENAI_MODEL = "gpt-4o"
DEFAULT_ANTHROPIC_MODEL = "claude-3-5-sonnet-20241022"
MAX_TOKENS = 2000

VALIDATION_MODELS = {"openai": "gpt-4o-mini", "anthropic": "claude-3-5-haiku-20241022"}

INVALID_KEY_MESSAGE = "Invalid API key. Please check your settings."
RATE_LIMIT_MESSAGE = "API rate limit or quota exceeded. Please try again later."

SYSTEM_PROMPT = (
    "You are an expert e-commerce copywriter specializing in creating helpful FAQ sections for product pages.\n"
    "Your goal is to generate the most common and useful questions customers would ask about a product, "
    "along with clear, concise answers.\n"
    "Base your FAQs entirely on the product information provided. "
    "Do not invent features or specifications not mentioned.\n"
    "Always respond with valid JSON only, no markdown and no explanation."
)

_TAG_RE = re.compile(r"<[^>]*>")
_SPACE_RE = re.compile(r"\s+")
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")
_RATE_LIMIT_RE = re.compile(r"quota|\brate(?:\b|_limit)", re.IGNORECASE)


class FaqGenerator(Protocol):
    async def generate(self, product: Dict[str, Any], count: int) -> List[FaqEntry]:
        ...


def build_product_context(product: Dict[str, Any]) -> str:
    """Flatten product data into the prompt's context block."""
    lines = [f"Product Title: {product.get('title', '')}"]

    description = product.get("description")
    if description:
        clean = _SPACE_RE.sub(" ", _TAG_RE.sub(" ", description)).strip()
        lines.append(f"\nDescription: {clean}")
    if product.get("productType"):
        lines.append(f"\nProduct Type: {product['productType']}")
    if product.get("vendor"):
        lines.append(f"Vendor: {product['vendor']}")
    if product.get("tags"):
        lines.append(f"Tags: {', '.join(product['tags'])}")

    variants = product.get("variants") or []
    if variants:
        lines.append("\nAvailable Variants:")
        for variant in variants:
            parts = [f"  - {variant.get('title', '')}"]
            if variant.get("price"):
                parts.append(f"Price: ${variant['price']}")
            if variant.get("sku"):
                parts.append(f"SKU: {variant['sku']}")
            lines.append(" | ".join(parts))

    options = product.get("options") or []
    if options:
        lines.append("\nProduct Options:")
        for option in options:
            lines.append(f"  {option.get('name')}: {', '.join(option.get('values') or [])}")

    metafields = [mf for mf in product.get("metafields") or [] if mf.get("value")]
    if metafields:
        lines.append("\nAdditional Product Information:")
        for mf in metafields:
            lines.append(f"  {mf.get('namespace')}.{mf.get('key')}: {mf['value']}")

    return "\n".join(lines)


def build_prompt(product: Dict[str, Any], count: int) -> str:
    return (
        f"Based on the following product data, generate exactly {count} frequently asked questions with answers.\n\n"
        f"{build_product_context(product)}\n\n"
        "Return ONLY a JSON array in this exact format:\n"
        '[\n  {\n    "question": "Question here?",\n    "answer": "Answer here."\n  }\n]\n\n'
        "Focus on: shipping & returns, sizing/fit, materials, care instructions, compatibility, "
        "warranty, usage, and any product-specific concerns.\n"
        "Make answers helpful, honest, and based only on provided data."
    )


def parse_faqs(content: str) -> List[FaqEntry]:
    """
    Parse model output into FAQ entries.

    Accepts a bare JSON array, an object wrapping one (under "faqs" or its
    first key), or prose with an embedded array.
    """
    try:
        parsed: Any = json.loads(content)
    except ValueError:
        match = _ARRAY_RE.search(content or "")
        if not match:
            raise GenerationError("No valid JSON array found in AI response")
        try:
            parsed = json.loads(match.group(0))
        except ValueError as exc:
            raise GenerationError("No valid JSON array found in AI response") from exc

    if isinstance(parsed, dict):
        if isinstance(parsed.get("faqs"), list):
            parsed = parsed["faqs"]
        else:
            parsed = next((v for v in parsed.values() if isinstance(v, list)), None)
    if not isinstance(parsed, list):
        raise GenerationError("AI response did not contain a list of FAQs")

    try:
        faqs = [FaqEntry(**item) for item in parsed if isinstance(item, dict)]
    except PydanticValidationError as exc:
        raise GenerationError("AI response contained malformed FAQ entries") from exc
    if not faqs:
        raise GenerationError("AI response contained no FAQs")
    return faqs


def map_provider_message(message: str) -> str:
    if "API key" in message or "api key" in message.lower():
        return INVALID_KEY_MESSAGE
    if _RATE_LIMIT_RE.search(message):
        return RATE_LIMIT_MESSAGE
    return message


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or f"AI provider responded with {response.status_code}"
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return f"AI provider responded with {response.status_code}"


class HttpFaqGenerator:
    """FaqGenerator calling the provider's REST API directly."""

    def __init__(
        self,
        provider: str,
        api_key: str,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not api_key:
            raise GenerationError("API key is required", status_code=400)
        self.provider = provider
        self.api_key = api_key
        default_model = DEFAULT_ANTHROPIC_MODEL if provider == "anthropic" else DEFAULT_OPENAI_MODEL
        self.model = model or default_model
        self.timeout = timeout if timeout is not None else settings.EXTERNAL_HTTP_TIMEOUT_SECONDS
        self._transport = transport

    def _openai_request(self, prompt: str) -> Dict[str, Any]:
        return {
            "url": OPENAI_URL,
            "headers": {"Authorization": f"Bearer {self.api_key}"},
            "json": {
                "model": self.model,
                "messages": [
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                "temperature": 0.7,
                "max_tokens": MAX_TOKENS,
                "response_format": {"type": "json_object"},
            },
        }

    def _anthropic_request(self, prompt: str) -> Dict[str, Any]:
        return {
            "url": ANTHROPIC_URL,
            "headers": {"x-api-key": self.api_key, "anthropic-version": ANTHROPIC_VERSION},
            "json": {
                "model": self.model,
                "max_tokens": MAX_TOKENS,
                "system": SYSTEM_PROMPT,
                "messages": [{"role": "user", "content": prompt}],
            },
        }

    @staticmethod
    def _content(provider: str, body: Dict[str, Any]) -> str:
        try:
            if provider == "anthropic":
                return body["content"][0]["text"]
            return body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise GenerationError("Unexpected response shape from AI provider") from exc

    async def generate(self, product: Dict[str, Any], count: int) -> List[FaqEntry]:
        if not product:
            raise GenerationError("Product data is required", status_code=400)

        prompt = build_prompt(product, count)
        request = self._anthropic_request(prompt) if self.provider == "anthropic" else self._openai_request(prompt)
        body = await self._post(request)

        faqs = parse_faqs(self._content(self.provider, body))
        logger.info(
            "generation.complete",
            extra={"provider": self.provider, "model": self.model, "faq_count": len(faqs)},
        )
        return faqs

    async def validate_key(self) -> None:
        """Send the smallest possible request; raises GenerationError if the key is refused."""
        if self.provider == "anthropic":
            request = {
                "url": ANTHROPIC_URL,
                "headers": {"x-api-key": self.api_key, "anthropic-version": ANTHROPIC_VERSION},
                "json": {
                    "model": VALIDATION_MODELS["anthropic"],
                    "max_tokens": 10,
                    "messages": [{"role": "user", "content": "Hi"}],
                },
            }
        else:
            request = {
                "url": OPENAI_URL,
                "headers": {"Authorization": f"Bearer {self.api_key}"},
                "json": {
                    "model": VALIDATION_MODELS["openai"],
                    "max_tokens": 5,
                    "messages": [{"role": "user", "content": "Hi"}],
                },
            }
        await self._post(request)

    async def _post(self, request: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(request["url"], headers=request["headers"], json=request["json"])
        except httpx.TimeoutException as exc:
            raise GenerationError("AI provider timed out. Please try again.", status_code=504, retryable=True) from exc
        except httpx.RequestError as exc:
            raise GenerationError(f"Failed to contact AI provider: {exc}", status_code=503, retryable=True) from exc

        if response.status_code >= 400:
            raw = _error_message(response)
            if response.status_code == 401:
                message = INVALID_KEY_MESSAGE
            elif response.status_code == 429:
                message = RATE_LIMIT_MESSAGE
            else:
                message = map_provider_message(raw)
            logger.error(
                "generation.provider_error",
                extra={
                    "provider": self.provider,
                    "model": self.model,
                    "status": response.status_code,
                    "provider_message": raw,
                },
            )
            raise GenerationError(message)

        try:
            return response.json()
        except ValueError as exc:
            raise GenerationError("Invalid JSON returned by AI provider") from exc


async def validate_api_key(
    provider: str,
    api_key: Optional[str],
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    """
    Check a merchant's key with a minimal provider call.

    Returns {"valid": True} or {"valid": False, "error": <message>}. A
    masked key (as echoed back by the settings form) counts as missing.
    """
    if not api_key or MASK_CHAR in api_key:
        return {"valid": False, "error": "Please enter your API key to validate"}
    try:
        await HttpFaqGenerator(provider, api_key, transport=transport).validate_key()
    except GenerationError as exc:
        logger.info("generation.key_rejected", extra={"provider": provider, "error_message": exc.message})
        return {"valid": False, "error": exc.message}
    return {"valid": True}
