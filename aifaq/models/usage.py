"""
aifaq/models/usage.py

Usage counters per shop, metric and billing period.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict


class UsageType(str, Enum):
    """
    Usage Types:
    - generation: one AI generation call
    - product_faq: reserved product-level counter; the products limit is
      evaluated against the live published count, not this counter
    """
    GENERATION = "generation"
    PRODUCT_FAQ = "product_faq"


class UsageRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    shop: str
    type: UsageType
    billing_period: str  # YYYY-MM
    count: int
