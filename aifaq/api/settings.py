"""Shop settings routes."""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from aifaq.api.deps import get_key_validator, get_settings_service, get_shop
from aifaq.core.errors import ValidationError
from aifaq.features.settings.service import AI_PROVIDERS, DEFAULT_MODELS, ShopSettings, ShopSettingsService


router = APIRouter(prefix="/settings", tags=["settings"])


class SettingsUpdate(BaseModel):
    ai_provider: Optional[str] = None
    model: Optional[str] = None
    faq_count: Optional[int] = None
    auto_generate: Optional[bool] = None
    api_key: Optional[str] = None


@router.get("")
def read_settings(
    shop: str = Depends(get_shop),
    service: ShopSettingsService = Depends(get_settings_service),
):
    current = service.get(shop) or ShopSettings(shop=shop)
    return {"settings": current.public_dict(), "models": DEFAULT_MODELS}


@router.put("")
def update_settings(
    update: SettingsUpdate,
    shop: str = Depends(get_shop),
    service: ShopSettingsService = Depends(get_settings_service),
):
    saved = service.save(shop, update.model_dump(exclude_none=True))
    return {"success": True, "settings": saved.public_dict()}


class ValidateKeyRequest(BaseModel):
    api_key: Optional[str] = None
    provider: str = "openai"


@router.post("/validate")
async def validate_key(
    request: ValidateKeyRequest,
    shop: str = Depends(get_shop),
    validator=Depends(get_key_validator),
):
    """Check a key against its provider without saving it."""
    if request.provider not in AI_PROVIDERS:
        raise ValidationError(f"Unknown AI provider: {request.provider}")
    return await validator(request.provider, request.api_key)
