"""HTTP surface with provider, storefront and generator swapped for fakes."""
from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from aifaq.api import deps
from aifaq.core.crypto import CredentialCipher
from aifaq.features.billing.service import BillingService
from aifaq.features.settings.service import ShopSettingsService
from aifaq.features.usage.service import UsageLedger
from aifaq.main import app
from aifaq.models.faq import FaqEntry
from aifaq.tests.mocks import (
    FakeBillingProvider,
    FakeGenerator,
    FakeMetafieldStore,
    FakeProductLister,
    external_subscription,
    product_fetcher,
)

SHOP = "test-shop.myshopify.com"
HEADERS = {"X-Shop-Domain": SHOP}


@pytest.fixture
def provider():
    return FakeBillingProvider()


@pytest.fixture
def store():
    return FakeMetafieldStore()


@pytest.fixture
def lister():
    return FakeProductLister(
        [
            {"id": "gid://shopify/Product/1", "title": "Mug", "has_faq": True, "faq_count": 3},
            {"id": "gid://shopify/Product/2", "title": "Cap", "has_faq": False, "faq_count": 0},
        ],
        end_cursor="cursor-2",
    )


@pytest.fixture
def client(provider, store, lister):
    cipher = CredentialCipher("api-test-secret")
    ledger = UsageLedger(clock=lambda: datetime(2026, 10, 1))
    generator = FakeGenerator()
    app.dependency_overrides[deps.get_billing_service] = lambda: BillingService(provider, test_mode=True)
    app.dependency_overrides[deps.get_settings_service] = lambda: ShopSettingsService(cipher)
    app.dependency_overrides[deps.get_ledger] = lambda: ledger
    app.dependency_overrides[deps.get_metafield_store] = lambda: store
    app.dependency_overrides[deps.get_product_fetcher] = lambda: product_fetcher({"1": {"title": "Mug"}})
    app.dependency_overrides[deps.get_generator_factory] = lambda: (lambda _settings: generator)
    app.dependency_overrides[deps.get_product_lister] = lambda: lister
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_missing_shop_is_unauthorized(client):
    response = client.get("/api/billing")
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "unauthorized"


def test_invalid_shop_domain_rejected(client):
    response = client.get("/api/billing", headers={"X-Shop-Domain": "evil.example.com"})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "validation_error"


def test_billing_summary_for_new_shop(client):
    response = client.get("/api/billing", headers=HEADERS)
    assert response.status_code == 200
    body = response.json()
    assert body["plan"]["id"] == "free"
    assert body["subscription"]["status"] == "active"
    assert body["usage"]["generations"] == {"used": 0, "limit": 10, "percent": 0, "remaining": 10}
    assert [p["id"] for p in body["upgrade_options"]] == ["starter", "growth", "pro"]


def test_subscribe_returns_confirmation_url(client, provider):
    response = client.post("/api/billing/subscribe", json={"plan_id": "starter"}, headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["confirmation_url"].endswith("/confirm")
    assert provider.created[0].return_url == "https://faq-app.example.com/api/billing/callback?plan=starter"


def test_subscribe_free_plan_is_configuration_error(client, provider):
    response = client.post("/api/billing/subscribe", json={"plan_id": "free"}, headers=HEADERS)
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "billing_configuration"
    assert provider.created == []


def test_subscribe_user_errors_surface_message(client, provider):
    from aifaq.features.billing.provider import UserError

    provider.user_errors = [UserError(field="name", message="Name is too long")]
    response = client.post("/api/billing/subscribe", json={"plan_id": "growth"}, headers=HEADERS)
    assert response.status_code == 502
    body = response.json()
    assert body["error"]["code"] == "billing_user_error"
    assert body["detail"] == "Name is too long"
    assert body["error"]["retryable"] is False


def test_provider_outage_is_retryable_with_retry_after(client, provider):
    from aifaq.core.errors import BillingTransportError

    provider.error = BillingTransportError("Shopify request timed out")
    response = client.post("/api/billing/sync", headers=HEADERS)
    assert response.status_code == 503
    assert response.json()["error"]["retryable"] is True
    assert response.headers["Retry-After"] == "5"


def test_callback_without_charge_is_cancelled(client, provider):
    response = client.get("/api/billing/callback?plan=starter", headers=HEADERS, follow_redirects=False)
    assert response.status_code == 302
    assert response.headers["location"] == "/app/billing?cancelled=true"
    assert provider.query_calls == 0


def test_callback_confirms_charge(client, provider):
    client.post("/api/billing/subscribe", json={"plan_id": "growth"}, headers=HEADERS)
    provider.active = [external_subscription(price="29", charge_id="gid://shopify/AppSubscription/2002")]

    response = client.get(
        "/api/billing/callback?charge_id=2002&plan=growth", headers=HEADERS, follow_redirects=False
    )
    assert response.status_code == 302
    assert response.headers["location"] == "/app/billing?success=true"
    assert client.get("/api/billing", headers=HEADERS).json()["plan"]["id"] == "growth"


def test_sync_and_cancel(client, provider):
    provider.active = [external_subscription(price="79")]
    sync = client.post("/api/billing/sync", headers=HEADERS)
    assert sync.json()["subscription"]["plan"] == "pro"

    cancel = client.post("/api/billing/cancel", headers=HEADERS)
    assert cancel.status_code == 200
    assert cancel.json()["subscription"]["plan"] == "free"
    assert provider.cancelled == ["gid://shopify/AppSubscription/1001"]


def test_entitlement_endpoint(client):
    response = client.get("/api/entitlements/generate", headers=HEADERS)
    assert response.json() == {"allowed": True, "plan": "free"}

    unknown = client.get("/api/entitlements/teleport", headers=HEADERS)
    assert unknown.status_code == 400


def test_generate_requires_api_key(client):
    response = client.post("/api/products/1/generate", headers=HEADERS)
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "billing_configuration"


def test_generate_until_limit_hit(client):
    client.put("/api/settings", json={"api_key": "sk-test", "faq_count": 2}, headers=HEADERS)

    for _ in range(10):
        response = client.post("/api/products/1/generate", headers=HEADERS)
        assert response.status_code == 200
        assert len(response.json()["faqs"]) == 2

    denied = client.post("/api/products/1/generate", headers=HEADERS)
    assert denied.status_code == 403
    body = denied.json()
    assert body["limitHit"] is True
    assert body["limitError"]["limitKey"] == "generationsPerMonth"
    assert body["limitError"]["usage"] == 10
    assert body["limitError"]["limit"] == 10


def test_generate_unknown_product(client):
    client.put("/api/settings", json={"api_key": "sk-test"}, headers=HEADERS)
    response = client.post("/api/products/999/generate", headers=HEADERS)
    assert response.status_code == 404


def test_publish_limit_and_unpublish(client, store):
    faqs = {"faqs": [{"question": "Dishwasher safe?", "answer": "Yes."}]}
    for product_id in ("1", "2", "3"):
        assert client.post(f"/api/products/{product_id}/publish", json=faqs, headers=HEADERS).status_code == 200

    denied = client.post("/api/products/4/publish", json=faqs, headers=HEADERS)
    assert denied.status_code == 403
    assert denied.json()["limitError"]["limitKey"] == "products"

    republish = client.post("/api/products/1/publish", json=faqs, headers=HEADERS)
    assert republish.status_code == 200

    removed = client.delete("/api/products/2/faqs", headers=HEADERS)
    assert removed.json() == {"success": True, "deleted": True}
    assert store.saved["2"] == []
    assert client.post("/api/products/4/publish", json=faqs, headers=HEADERS).status_code == 200


def test_settings_round_trip(client):
    initial = client.get("/api/settings", headers=HEADERS).json()
    assert initial["settings"]["ai_provider"] == "openai"
    assert initial["settings"]["has_api_key"] is False
    assert "anthropic" in initial["models"]

    saved = client.put("/api/settings", json={"ai_provider": "anthropic", "api_key": "sk-ant"}, headers=HEADERS)
    assert saved.json()["settings"]["has_api_key"] is True
    assert "api_key" not in saved.json()["settings"]


def test_uninstall_webhook_removes_shop_data(client):
    faqs = {"faqs": [{"question": "Q?", "answer": "A."}]}
    client.put("/api/settings", json={"api_key": "sk-test"}, headers=HEADERS)
    client.post("/api/products/1/publish", json=faqs, headers=HEADERS)

    response = client.post("/api/webhooks/app-uninstalled", headers=HEADERS)
    assert response.status_code == 200
    assert client.get("/api/settings", headers=HEADERS).json()["settings"]["has_api_key"] is False
    assert client.get("/api/billing", headers=HEADERS).json()["usage"]["products"]["used"] == 0


def test_subscription_webhook_runs_sync(client, provider):
    provider.active = [external_subscription(price="9")]
    response = client.post("/api/webhooks/app-subscriptions-update", headers=HEADERS)
    assert response.json() == {"ok": True, "plan": "starter"}


def test_unknown_webhook_topic(client):
    response = client.post("/api/webhooks/products-update", headers=HEADERS)
    assert response.status_code == 404


def test_partial_settings_update_keeps_other_fields(client):
    client.put(
        "/api/settings",
        json={"ai_provider": "anthropic", "model": "claude-3-5-haiku-20241022", "api_key": "sk-ant", "auto_generate": True},
        headers=HEADERS,
    )
    response = client.put("/api/settings", json={"faq_count": 8}, headers=HEADERS)

    settings = response.json()["settings"]
    assert settings["faq_count"] == 8
    assert settings["ai_provider"] == "anthropic"
    assert settings["model"] == "claude-3-5-haiku-20241022"
    assert settings["auto_generate"] is True
    assert settings["has_api_key"] is True


def test_validate_key_route(client):
    calls = []

    async def validator(provider, api_key):
        calls.append((provider, api_key))
        return {"valid": False, "error": "Invalid API key. Please check your settings."}

    app.dependency_overrides[deps.get_key_validator] = lambda: validator
    response = client.post("/api/settings/validate", json={"api_key": "sk-bad", "provider": "anthropic"}, headers=HEADERS)

    assert response.status_code == 200
    assert response.json() == {"valid": False, "error": "Invalid API key. Please check your settings."}
    assert calls == [("anthropic", "sk-bad")]

    unknown = client.post("/api/settings/validate", json={"api_key": "k", "provider": "cohere"}, headers=HEADERS)
    assert unknown.status_code == 400


def test_product_list_search_and_pagination(client, lister):
    response = client.get("/api/products", params={"search": "mu", "after": "cursor-1"}, headers=HEADERS)

    body = response.json()
    assert response.status_code == 200
    assert [p["title"] for p in body["products"]] == ["Mug", "Cap"]
    assert body["page_info"] == {"has_next_page": True, "end_cursor": "cursor-2"}
    assert lister.calls == [{"first": 20, "after": "cursor-1", "query": "title:*mu*"}]


@pytest.mark.parametrize(
    "faq_filter, titles, query",
    [
        ("has_faq", ["Mug"], None),
        ("no_faq", ["Cap"], None),
        ("active", ["Mug", "Cap"], "status:active"),
    ],
)
def test_product_list_faq_filter(client, lister, faq_filter, titles, query):
    body = client.get("/api/products", params={"faq": faq_filter}, headers=HEADERS).json()
    assert [p["title"] for p in body["products"]] == titles
    assert body["faq"] == faq_filter
    assert lister.calls[-1]["query"] == query


def test_product_list_unknown_filter(client):
    response = client.get("/api/products", params={"faq": "everything"}, headers=HEADERS)
    assert response.status_code == 400


def test_product_detail(client, store):
    store.saved["1"] = [FaqEntry(question="Dishwasher safe?", answer="Yes.")]
    client.put("/api/settings", json={"ai_provider": "anthropic", "api_key": "sk-ant"}, headers=HEADERS)

    body = client.get("/api/products/1", headers=HEADERS).json()

    assert body["product"] == {"title": "Mug"}
    assert body["faqs"] == [{"question": "Dishwasher safe?", "answer": "Yes."}]
    assert body["has_settings"] is True
    assert body["provider"] == "anthropic"
    assert body["subscription"]["plan"]["id"] == "free"


def test_product_detail_without_settings(client):
    body = client.get("/api/products/1", headers=HEADERS).json()
    assert body["faqs"] == []
    assert body["has_settings"] is False
    assert body["provider"] == "openai"


def test_product_detail_missing(client):
    response = client.get("/api/products/999", headers=HEADERS)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "not_found"
