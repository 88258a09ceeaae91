"""
aifaq/models/faq.py

FAQ content for a product page.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class FaqEntry(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    question: str = Field(min_length=1)
    answer: str = Field(min_length=1)


class ProductFaq(BaseModel):
    """Local record of a product's FAQ set and whether it is live on the storefront."""
    model_config = ConfigDict(frozen=True)

    shop: str
    product_id: str
    faqs: List[FaqEntry]
    is_published: bool = False
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Any) -> "ProductFaq":
        return cls(
            shop=row.shop,
            product_id=row.product_id,
            faqs=[FaqEntry(**f) for f in (row.faqs or [])],
            is_published=bool(row.is_published),
            updated_at=row.updated_at,
        )

    def faqs_payload(self) -> List[Dict[str, str]]:
        return [f.model_dump() for f in self.faqs]
