import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from product_agent.core.config import settings
from product_agent.prd.analyzers import ClarificationResponse
from product_agent.services.generation import (
    AIProvider,
    GenerationError,
    GenerationService,
    ModelNotFoundError,
    parse_structured,
    split_model_id,
)


@pytest.fixture
def service(monkeypatch):
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(settings, "GROQ_API_KEY", "gsk-test")
    monkeypatch.setattr(settings, "GEMINI_API_KEY", None)
    monkeypatch.setattr(settings, "OPENROUTER_API_KEY", None)
    monkeypatch.setattr(settings, "GENERATION_RETRY_ATTEMPTS", 2)
    monkeypatch.setattr(settings, "GENERATION_RETRY_BACKOFF_MS", 0)
    return GenerationService()


def test_split_model_id():
    assert split_model_id("openai/gpt-4o-mini") == (AIProvider.OPENAI, "gpt-4o-mini")
    assert split_model_id("openrouter/qwen/qwen-2.5-72b-instruct") == (AIProvider.OPENROUTER, "qwen/qwen-2.5-72b-instruct")
    assert split_model_id("llama-3.3-70b") == (None, "llama-3.3-70b")
    assert split_model_id(None) == (None, None)


def test_parse_structured_repairs_and_validates():
    parsed = parse_structured('```json\n{"needsClarification": true, "questions": ["Who?"],}\n```', ClarificationResponse)
    assert parsed.needs_clarification is True
    assert parsed.questions == ["Who?"]

    with pytest.raises(GenerationError, match="ClarificationResponse"):
        parse_structured('{"confidence": "very"}', ClarificationResponse)


@pytest.mark.asyncio
async def test_retries_then_fails_over_to_next_provider(service, monkeypatch):
    calls = []

    async def fake_attempt(provider, model_name, schema, prompt, temperature, max_tokens):
        calls.append(provider)
        if provider == AIProvider.OPENAI:
            raise RuntimeError("rate limited")
        return schema(needs_clarification=False)

    monkeypatch.setattr(service, "_attempt", fake_attempt)

    result = await service.generate_structured(None, ClarificationResponse, "prompt")

    assert result.needs_clarification is False
    assert calls == [AIProvider.OPENAI, AIProvider.OPENAI, AIProvider.GROQ]


@pytest.mark.asyncio
async def test_model_not_found_switches_to_fallback_model(service, monkeypatch):
    calls = []

    async def fake_attempt(provider, model_name, schema, prompt, temperature, max_tokens):
        calls.append((provider, model_name))
        if model_name == "missing-model":
            raise ModelNotFoundError("404 model not found")
        return schema()

    monkeypatch.setattr(service, "_attempt", fake_attempt)

    await service.generate_structured(
        "openai/missing-model", ClarificationResponse, "prompt", fallback_model="openai/gpt-4o-mini",
    )

    assert calls == [(AIProvider.OPENAI, "missing-model"), (AIProvider.OPENAI, "gpt-4o-mini")]


@pytest.mark.asyncio
async def test_all_providers_failing_raises(service, monkeypatch):
    async def fake_attempt(provider, model_name, schema, prompt, temperature, max_tokens):
        raise RuntimeError("down")

    monkeypatch.setattr(service, "_attempt", fake_attempt)

    with pytest.raises(GenerationError, match="All AI providers failed"):
        await service.generate_structured(None, ClarificationResponse, "prompt")


@pytest.mark.asyncio
async def test_no_configured_provider_raises(monkeypatch):
    for key in ("OPENAI_API_KEY", "GROQ_API_KEY", "GEMINI_API_KEY", "OPENROUTER_API_KEY"):
        monkeypatch.setattr(settings, key, None)

    with pytest.raises(GenerationError, match="No AI providers available"):
        await GenerationService().generate_structured(None, ClarificationResponse, "prompt")


@pytest.mark.asyncio
async def test_falls_back_to_json_repair_when_structured_output_is_unsupported(service, monkeypatch):
    chat_model = FakeListChatModel(responses=['Sure!\n{"needsClarification": false, "confidence": 88,}'])
    monkeypatch.setattr(service, "_build_model", lambda provider, model_name, temperature, max_tokens: chat_model)

    result = await service.generate_structured("openai/gpt-4o-mini", ClarificationResponse, "prompt")

    assert result.confidence == 88
