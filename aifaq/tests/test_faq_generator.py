"""AI generator: prompt building, response parsing, provider error mapping."""
import json

import httpx
import pytest

from aifaq.core.errors import GenerationError
from aifaq.features.faqs.generator import (
    INVALID_KEY_MESSAGE,
    RATE_LIMIT_MESSAGE,
    HttpFaqGenerator,
    build_product_context,
    validate_api_key,
    map_provider_message,
    parse_faqs,
)

PRODUCT = {
    "title": "Trail Jacket",
    "description": "<p>Light   and <b>warm</b></p>",
    "productType": "Outerwear",
    "vendor": "Northwind",
    "tags": ["hiking", "winter"],
    "variants": [{"title": "Medium", "price": "120.00", "sku": "TJ-M"}],
    "options": [{"name": "Size", "values": ["S", "M", "L"]}],
    "metafields": [{"namespace": "specs", "key": "fill", "value": "down"}],
}

FAQ_JSON = [{"question": "Is it warm?", "answer": "Yes."}, {"question": "Sizes?", "answer": "S to L."}]


def test_context_strips_html_and_includes_details():
    context = build_product_context(PRODUCT)
    assert "Product Title: Trail Jacket" in context
    assert "Description: Light and warm" in context
    assert "  - Medium | Price: $120.00 | SKU: TJ-M" in context
    assert "  Size: S, M, L" in context
    assert "  specs.fill: down" in context


class TestParse:
    def test_bare_array(self):
        faqs = parse_faqs(json.dumps(FAQ_JSON))
        assert [f.question for f in faqs] == ["Is it warm?", "Sizes?"]

    def test_wrapped_object(self):
        assert len(parse_faqs(json.dumps({"faqs": FAQ_JSON}))) == 2
        assert len(parse_faqs(json.dumps({"questions": FAQ_JSON}))) == 2

    def test_array_inside_prose(self):
        content = "Here you go:\n" + json.dumps(FAQ_JSON) + "\nEnjoy!"
        assert len(parse_faqs(content)) == 2

    def test_no_array(self):
        with pytest.raises(GenerationError):
            parse_faqs("I cannot help with that.")

    def test_malformed_entries(self):
        with pytest.raises(GenerationError):
            parse_faqs(json.dumps([{"question": "", "answer": "x"}]))

    @pytest.mark.parametrize("content", ["[]", '{"faqs": []}', '["not an entry"]'])
    def test_empty_list_is_an_error(self, content):
        with pytest.raises(GenerationError, match="no FAQs"):
            parse_faqs(content)


def test_message_mapping():
    assert map_provider_message("Incorrect API key provided: sk-***") == INVALID_KEY_MESSAGE
    assert map_provider_message("You exceeded your current quota") == RATE_LIMIT_MESSAGE
    assert map_provider_message("Model overloaded") == "Model overloaded"
    assert map_provider_message("Rate limit reached for gpt-4o") == RATE_LIMIT_MESSAGE
    assert map_provider_message("rate_limit_error") == RATE_LIMIT_MESSAGE


@pytest.mark.parametrize("message", ["Failed to generate", "Response was not accurate", "Invalid temperature rating"])
def test_words_containing_rate_pass_through(message):
    assert map_provider_message(message) == message


def make_generator(handler, provider="openai"):
    return HttpFaqGenerator(provider, "sk-test", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_openai_request_and_response():
    captured = {}

    def handler(request):
        captured["url"] = str(request.url)
        captured["auth"] = request.headers["Authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": json.dumps({"faqs": FAQ_JSON})}}]})

    faqs = await make_generator(handler).generate(PRODUCT, 2)

    assert len(faqs) == 2
    assert captured["url"] == "https://api.openai.com/v1/chat/completions"
    assert captured["auth"] == "Bearer sk-test"
    assert captured["body"]["model"] == "gpt-4o"
    assert captured["body"]["response_format"] == {"type": "json_object"}
    assert "exactly 2 frequently asked questions" in captured["body"]["messages"][1]["content"]


@pytest.mark.asyncio
async def test_anthropic_request_and_response():
    captured = {}

    def handler(request):
        captured["url"] = str(request.url)
        captured["key"] = request.headers["x-api-key"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"content": [{"type": "text", "text": json.dumps(FAQ_JSON)}]})

    faqs = await make_generator(handler, provider="anthropic").generate(PRODUCT, 2)

    assert len(faqs) == 2
    assert captured["url"] == "https://api.anthropic.com/v1/messages"
    assert captured["key"] == "sk-test"
    assert captured["body"]["model"] == "claude-3-5-sonnet-20241022"
    assert "system" in captured["body"]


@pytest.mark.asyncio
async def test_unauthorized_maps_to_invalid_key():
    def handler(request):
        return httpx.Response(401, json={"error": {"message": "Incorrect API key provided"}})

    with pytest.raises(GenerationError) as exc:
        await make_generator(handler).generate(PRODUCT, 2)
    assert exc.value.message == INVALID_KEY_MESSAGE


@pytest.mark.asyncio
async def test_rate_limited():
    def handler(request):
        return httpx.Response(429, json={"error": {"message": "Too many requests"}})

    with pytest.raises(GenerationError) as exc:
        await make_generator(handler).generate(PRODUCT, 2)
    assert exc.value.message == RATE_LIMIT_MESSAGE


@pytest.mark.asyncio
async def test_timeout_is_retryable():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(GenerationError) as exc:
        await make_generator(handler).generate(PRODUCT, 2)
    assert exc.value.retryable


def test_api_key_required():
    with pytest.raises(GenerationError):
        HttpFaqGenerator("openai", "")


@pytest.mark.asyncio
async def test_empty_provider_answer_is_a_failure():
    def handler(request):
        return httpx.Response(200, json={"choices": [{"message": {"content": '{"faqs": []}'}}]})

    with pytest.raises(GenerationError):
        await make_generator(handler).generate(PRODUCT, 2)


@pytest.mark.asyncio
async def test_validate_openai_key_sends_minimal_request():
    captured = {}

    def handler(request):
        captured["url"] = str(request.url)
        captured["auth"] = request.headers["authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "Hello"}}]})

    result = await validate_api_key("openai", "sk-live", transport=httpx.MockTransport(handler))

    assert result == {"valid": True}
    assert captured["url"] == "https://api.openai.com/v1/chat/completions"
    assert captured["auth"] == "Bearer sk-live"
    assert captured["body"]["model"] == "gpt-4o-mini"
    assert captured["body"]["max_tokens"] == 5


@pytest.mark.asyncio
async def test_validate_anthropic_key_sends_minimal_request():
    captured = {}

    def handler(request):
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"content": [{"type": "text", "text": "Hi"}]})

    result = await validate_api_key("anthropic", "sk-ant", transport=httpx.MockTransport(handler))

    assert result == {"valid": True}
    assert captured["body"]["model"] == "claude-3-5-haiku-20241022"
    assert captured["body"]["max_tokens"] == 10


@pytest.mark.asyncio
async def test_validate_rejected_key():
    def handler(request):
        return httpx.Response(401, json={"error": {"message": "Incorrect API key provided"}})

    result = await validate_api_key("openai", "sk-bad", transport=httpx.MockTransport(handler))
    assert result == {"valid": False, "error": INVALID_KEY_MESSAGE}


@pytest.mark.asyncio
@pytest.mark.parametrize("api_key", [None, "", "••••abcd"])
async def test_validate_missing_or_masked_key_skips_provider(api_key):
    def handler(request):
        raise AssertionError("provider must not be called")

    result = await validate_api_key("openai", api_key, transport=httpx.MockTransport(handler))
    assert result == {"valid": False, "error": "Please enter your API key to validate"}
