"""
aifaq/features/faqs/repository.py

Local FAQ records (product_faqs table).

The published count of this table is what the products limit is
evaluated against.
"""

from typing import List, Optional

from sqlalchemy import delete, func, select

from aifaq.core.database import get_db_session, product_faqs, upsert, utc_now
from aifaq.models.faq import FaqEntry, ProductFaq


class FaqRepository:
    def get(self, shop: str, product_id: str) -> Optional[ProductFaq]:
        with get_db_session() as session:
            row = session.execute(
                select(product_faqs).where(
                    product_faqs.c.shop == shop,
                    product_faqs.c.product_id == product_id,
                )
            ).first()
        return ProductFaq.from_row(row) if row else None

    def _write(self, shop: str, product_id: str, faqs: List[FaqEntry], is_published: bool) -> ProductFaq:
        now = utc_now()
        payload = [f.model_dump() for f in faqs]
        with get_db_session() as session:
            session.execute(
                upsert(
                    session,
                    product_faqs,
                    values={
                        "shop": shop,
                        "product_id": product_id,
                        "faqs": payload,
                        "is_published": is_published,
                        "created_at": now,
                        "updated_at": now,
                    },
                    conflict_columns=("shop", "product_id"),
                    set_={"faqs": payload, "is_published": is_published, "updated_at": now},
                )
            )
        return ProductFaq(shop=shop, product_id=product_id, faqs=list(faqs), is_published=is_published, updated_at=now)

    def save_draft(self, shop: str, product_id: str, faqs: List[FaqEntry]) -> ProductFaq:
        """Store freshly generated FAQs, unpublished."""
        return self._write(shop, product_id, faqs, is_published=False)

    def mark_published(self, shop: str, product_id: str, faqs: List[FaqEntry]) -> ProductFaq:
        return self._write(shop, product_id, faqs, is_published=True)

    def delete(self, shop: str, product_id: str) -> bool:
        with get_db_session() as session:
            result = session.execute(
                delete(product_faqs).where(
                    product_faqs.c.shop == shop,
                    product_faqs.c.product_id == product_id,
                )
            )
        return result.rowcount > 0

    def published_count(self, shop: str) -> int:
        with get_db_session() as session:
            return session.execute(
                select(func.count())
                .select_from(product_faqs)
                .where(product_faqs.c.shop == shop, product_faqs.c.is_published.is_(True))
            ).scalar_one()

    def delete_all_for_shop(self, shop: str) -> int:
        with get_db_session() as session:
            result = session.execute(delete(product_faqs).where(product_faqs.c.shop == shop))
        return result.rowcount
