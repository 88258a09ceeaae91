import logging
from typing import List, Optional

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    DATABASE_URL: Optional[str] = "sqlite:///./aifaq.db"

    # Shopify Admin API
    SHOPIFY_API_VERSION: str = "2024-10"
    SHOPIFY_APP_URL: Optional[str] = None  # public base URL; billing return URLs hang off it

    # Billing
    BILLING_CURRENCY: str = "USD"
    BILLING_TRIAL_DAYS: int = 7
    BILLING_TEST_MODE: Optional[bool] = None  # None = on unless ENV=production

    # Outbound calls (billing provider, storefront, AI providers)
    EXTERNAL_HTTP_TIMEOUT_SECONDS: float = 15.0

    # Secret for encrypting merchant AI API keys at rest
    ENCRYPTION_KEY: Optional[str] = None

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        return self.ENV.lower() == "production"

    @property
    def billing_test_mode(self) -> bool:
        if self.BILLING_TEST_MODE is not None:
            return self.BILLING_TEST_MODE
        return not self.is_production


settings = Settings()

REQUIRED_KEYS = ("DATABASE_URL", "SHOPIFY_APP_URL", "ENCRYPTION_KEY")


def config_problems(cfg: Settings) -> List[str]:
    """Human-readable configuration problems; never includes secret values."""
    problems = []
    missing = [key for key in REQUIRED_KEYS if not getattr(cfg, key, None)]
    if missing:
        problems.append(f"Missing required configuration: {', '.join(missing)}")
    if cfg.is_production:
        if cfg.SHOPIFY_APP_URL and not cfg.SHOPIFY_APP_URL.startswith("https://"):
            problems.append("SHOPIFY_APP_URL must use https in production")
        if cfg.BILLING_TEST_MODE:
            problems.append("BILLING_TEST_MODE is on in production; merchants will not be charged")
    if cfg.BILLING_TRIAL_DAYS < 0:
        problems.append("BILLING_TRIAL_DAYS must not be negative")
    return problems


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """
    Check configuration at startup.

    Strict mode raises RuntimeError on the first report; otherwise each
    problem is logged as a warning and startup continues.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("aifaq.config")
    strict_mode = cfg.CONFIG_STRICT if strict is None else strict

    problems = config_problems(cfg)
    if problems and strict_mode:
        raise RuntimeError("; ".join(problems))
    for problem in problems:
        log.warning(problem)
    return not problems
