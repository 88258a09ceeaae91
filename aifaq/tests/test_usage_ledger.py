"""Usage ledger: period keys, atomic increments, period isolation."""
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

import pytest

from aifaq.core.errors import ValidationError
from aifaq.features.usage.service import UsageLedger, period_key
from aifaq.models.usage import UsageType


class MutableClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def test_period_key_is_zero_padded():
    assert period_key(datetime(2026, 3, 31, 23, 59)) == "2026-03"
    assert period_key(datetime(2026, 12, 1)) == "2026-12"


def test_usage_defaults_to_zero(shop):
    assert UsageLedger().get_usage(shop) == {"generation": 0, "product_faq": 0}


def test_increment_creates_then_counts(shop):
    ledger = UsageLedger(clock=MutableClock(datetime(2026, 5, 10)))
    ledger.increment(shop, UsageType.GENERATION)
    ledger.increment(shop, "generation")
    ledger.increment(shop, UsageType.PRODUCT_FAQ)

    assert ledger.get_usage(shop) == {"generation": 2, "product_faq": 1}


def test_unknown_usage_type_rejected(shop):
    with pytest.raises(ValidationError):
        UsageLedger().increment(shop, "downloads")


def test_shops_are_independent(shop):
    ledger = UsageLedger()
    ledger.increment(shop, UsageType.GENERATION)
    assert ledger.get_usage("other-shop.myshopify.com")["generation"] == 0


def test_period_isolation(shop):
    clock = MutableClock(datetime(2026, 1, 31, 23, 59, 59))
    ledger = UsageLedger(clock=clock)
    for _ in range(3):
        ledger.increment(shop, UsageType.GENERATION)

    clock.now = datetime(2026, 2, 1, 0, 0, 1)
    assert ledger.current_period_key() == "2026-02"
    assert ledger.get_usage(shop)["generation"] == 0

    ledger.increment(shop, UsageType.GENERATION)
    assert ledger.get_usage(shop)["generation"] == 1
    assert ledger.get_usage(shop, period="2026-01")["generation"] == 3


def test_history_keeps_past_periods_newest_first(shop):
    clock = MutableClock(datetime(2026, 1, 15))
    ledger = UsageLedger(clock=clock)
    ledger.increment(shop, UsageType.GENERATION)
    clock.now = datetime(2026, 2, 15)
    ledger.increment(shop, UsageType.GENERATION)
    ledger.increment(shop, UsageType.GENERATION)

    history = ledger.history(shop)
    assert [(r.billing_period, r.count) for r in history] == [("2026-02", 2), ("2026-01", 1)]


def test_concurrent_increments_are_not_lost(shop, file_db):
    ledger = UsageLedger(clock=lambda: datetime(2026, 6, 1))
    n = 40

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda _: ledger.increment(shop, UsageType.GENERATION), range(n)))

    assert ledger.get_usage(shop)["generation"] == n
