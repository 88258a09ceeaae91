"""
aifaq/features/settings/service.py

Per-shop AI provider settings. The provider API key is encrypted at rest.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy import delete, select

from aifaq.core.crypto import CredentialCipher
from aifaq.core.database import get_db_session, shop_settings, upsert, utc_now
from aifaq.core.errors import ValidationError


AI_PROVIDERS = ("openai", "anthropic")
MASK_CHAR = "\u2022"

DEFAULT_MODELS = {
    "openai": [
        {"value": "gpt-4o", "label": "GPT-4o (Recommended)"},
        {"value": "gpt-4o-mini", "label": "GPT-4o Mini (Faster & Cheaper)"},
        {"value": "gpt-4-turbo", "label": "GPT-4 Turbo"},
        {"value": "gpt-3.5-turbo", "label": "GPT-3.5 Turbo (Budget)"},
    ],
    "anthropic": [
        {"value": "claude-3-5-sonnet-20241022", "label": "Claude 3.5 Sonnet (Recommended)"},
        {"value": "claude-3-5-haiku-20241022", "label": "Claude 3.5 Haiku (Faster & Cheaper)"},
        {"value": "claude-3-opus-20240229", "label": "Claude 3 Opus (Most Powerful)"},
    ],
}


class ShopSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    shop: str
    ai_provider: str = "openai"
    model: str = "gpt-4o"
    faq_count: int = 5
    auto_generate: bool = False
    api_key: Optional[str] = None

    def public_dict(self) -> Dict[str, Any]:
        """Settings as shown to the merchant; the key itself never leaves the server."""
        data = self.model_dump(exclude={"api_key"})
        data["has_api_key"] = bool(self.api_key)
        data["api_key_preview"] = MASK_CHAR * 16 + self.api_key[-4:] if self.api_key else None
        return data


def _as_bool(value: Any) -> bool:
    return value is True or value == "true"


def _as_count(value: Any) -> int:
    try:
        count = int(value)
    except (TypeError, ValueError):
        return 5
    return count if count > 0 else 5


class ShopSettingsService:
    def __init__(self, cipher: Optional[CredentialCipher] = None):
        self.cipher = cipher or CredentialCipher()

    def get(self, shop: str) -> Optional[ShopSettings]:
        """Stored settings with the API key decrypted, or None if never saved."""
        with get_db_session() as session:
            row = session.execute(select(shop_settings).where(shop_settings.c.shop == shop)).first()
        if row is None:
            return None
        return ShopSettings(
            shop=row.shop,
            ai_provider=row.ai_provider,
            model=row.model,
            faq_count=row.faq_count,
            auto_generate=bool(row.auto_generate),
            api_key=self.cipher.decrypt(row.api_key) if row.api_key else None,
        )

    def save(self, shop: str, data: Dict[str, Any]) -> ShopSettings:
        """
        Upsert settings, merging ``data`` over the stored row.

        Fields absent from ``data`` keep their stored value; defaults only
        apply to a shop with no row yet. Switching provider without naming
        a model picks that provider's default model. The stored key is
        only replaced when a new one is supplied.
        """
        current = self.get(shop) or ShopSettings(shop=shop)
        provider = data.get("ai_provider") or current.ai_provider
        if provider not in AI_PROVIDERS:
            raise ValidationError(f"Unknown AI provider: {provider}")

        if data.get("model"):
            model = data["model"]
        elif provider == current.ai_provider:
            model = current.model
        else:
            model = DEFAULT_MODELS[provider][0]["value"]

        fields: Dict[str, Any] = {
            "ai_provider": provider,
            "model": model,
            "faq_count": _as_count(data["faq_count"]) if data.get("faq_count") is not None else current.faq_count,
            "auto_generate": (
                _as_bool(data["auto_generate"]) if data.get("auto_generate") is not None else current.auto_generate
            ),
        }
        if data.get("api_key") and MASK_CHAR not in data["api_key"]:
            fields["api_key"] = self.cipher.encrypt(data["api_key"])

        now = utc_now()
        with get_db_session() as session:
            session.execute(
                upsert(
                    session,
                    shop_settings,
                    values={"shop": shop, **fields, "created_at": now, "updated_at": now},
                    conflict_columns=("shop",),
                    set_={**fields, "updated_at": now},
                )
            )
        return self.get(shop)

    def delete(self, shop: str) -> bool:
        with get_db_session() as session:
            result = session.execute(delete(shop_settings).where(shop_settings.c.shop == shop))
        return result.rowcount > 0
