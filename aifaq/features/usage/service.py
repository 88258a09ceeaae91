"""
aifaq/features/usage/service.py

Usage ledger.

Handles:
- Calendar-month period keys (YYYY-MM, local clock)
- Atomic per-period counter increments
- Current-period and historical usage reads
"""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Union

from sqlalchemy import select

from aifaq.core.database import get_db_session, upsert, usage_records, utc_now
from aifaq.core.errors import ValidationError
from aifaq.models.usage import UsageRecord, UsageType


logger = logging.getLogger(__name__)


def period_key(moment: datetime) -> str:
    """Billing period for a moment: 'YYYY-MM', zero-padded month."""
    return f"{moment.year:04d}-{moment.month:02d}"


def _coerce_type(usage_type: Union[UsageType, str]) -> UsageType:
    try:
        return UsageType(usage_type)
    except ValueError:
        raise ValidationError(f"Unknown usage type: {usage_type}")


class UsageLedger:
    """
    Per-shop, per-metric, per-period counters.

    There is no reset job: a new month produces a new period key, and a
    key with no row reads as zero until its first increment.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or datetime.now

    def current_period_key(self) -> str:
        return period_key(self._clock())

    def increment(self, shop: str, usage_type: Union[UsageType, str]) -> None:
        """
        Add one to (shop, type, current period), creating the row at 1.

        A single INSERT ... ON CONFLICT DO UPDATE so concurrent callers
        never lose an increment.
        """
        kind = _coerce_type(usage_type)
        period = self.current_period_key()
        now = utc_now()
        with get_db_session() as session:
            session.execute(
                upsert(
                    session,
                    usage_records,
                    values={
                        "shop": shop,
                        "type": kind.value,
                        "billing_period": period,
                        "count": 1,
                        "created_at": now,
                        "updated_at": now,
                    },
                    conflict_columns=("shop", "type", "billing_period"),
                    set_={"count": usage_records.c.count + 1, "updated_at": now},
                )
            )
        logger.debug(
            "usage.increment",
            extra={"shop": shop, "usage_type": kind.value, "billing_period": period},
        )

    def get_usage(self, shop: str, period: Optional[str] = None) -> Dict[str, int]:
        """
        Counts for every usage type in a period (default: current).

        Returns:
            {"generation": int, "product_faq": int}, absent metrics as 0
        """
        period = period or self.current_period_key()
        usage = {t.value: 0 for t in UsageType}
        with get_db_session() as session:
            rows = session.execute(
                select(usage_records.c.type, usage_records.c.count).where(
                    usage_records.c.shop == shop,
                    usage_records.c.billing_period == period,
                )
            ).all()
        for row in rows:
            if row.type in usage:
                usage[row.type] = row.count
        return usage

    def history(self, shop: str) -> List[UsageRecord]:
        """Every stored record for the shop, newest period first."""
        with get_db_session() as session:
            rows = session.execute(
                select(usage_records)
                .where(usage_records.c.shop == shop)
                .order_by(usage_records.c.billing_period.desc(), usage_records.c.type)
            ).all()
        return [
            UsageRecord(shop=row.shop, type=UsageType(row.type), billing_period=row.billing_period, count=row.count)
            for row in rows
        ]
