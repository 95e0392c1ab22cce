from types import SimpleNamespace

import pytest

from config import load_settings
from core.enums import LLMProvider
from core.exceptions import LLMError
from llm.client import LLMClient


def openai_stub(*replies):
    """OpenAI-shaped client; an Exception reply is raised instead of returned"""
    calls = []
    replies = list(replies)

    async def create(**kwargs):
        calls.append(kwargs)
        reply = replies.pop(0) if len(replies) > 1 else replies[0]
        if isinstance(reply, Exception):
            raise reply
        message = SimpleNamespace(content=reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    return client, calls


def anthropic_stub(text):
    calls = []

    async def create(**kwargs):
        calls.append(kwargs)
        return SimpleNamespace(content=[SimpleNamespace(text=text)])

    return SimpleNamespace(messages=SimpleNamespace(create=create)), calls


@pytest.fixture
def settings():
    return load_settings(
        LLM_PROVIDER_PRIORITY="openai,anthropic",
        LLM_MAX_RETRIES=1,
        LLM_RETRY_DELAY=0,
        LLM_TIMEOUT=1,
    )


@pytest.mark.asyncio
async def test_first_provider_answers(settings):
    openai_client, openai_calls = openai_stub('{"category": "Travel"}')
    anthropic_client, anthropic_calls = anthropic_stub("unused")
    client = LLMClient(settings, {
        LLMProvider.OPENAI: openai_client,
        LLMProvider.ANTHROPIC: anthropic_client,
    })

    response = await client.complete("prompt", system="system")

    assert response == '{"category": "Travel"}'
    assert len(openai_calls) == 1
    assert openai_calls[0]["messages"][0] == {"role": "system", "content": "system"}
    assert openai_calls[0]["max_tokens"] == settings.LLM_MAX_TOKENS
    assert anthropic_calls == []


@pytest.mark.asyncio
async def test_retries_then_falls_back_to_next_provider(settings):
    openai_client, openai_calls = openai_stub(RuntimeError("rate limited"))
    anthropic_client, anthropic_calls = anthropic_stub('{"category": "Shopping"}')
    client = LLMClient(settings, {
        LLMProvider.OPENAI: openai_client,
        LLMProvider.ANTHROPIC: anthropic_client,
    })

    response = await client.complete("prompt")

    assert response == '{"category": "Shopping"}'
    assert len(openai_calls) == settings.LLM_MAX_RETRIES + 1
    assert len(anthropic_calls) == 1


@pytest.mark.asyncio
async def test_retry_recovers_on_same_provider(settings):
    openai_client, openai_calls = openai_stub(RuntimeError("blip"), "ok")
    client = LLMClient(settings, {LLMProvider.OPENAI: openai_client})

    assert await client.complete("prompt") == "ok"
    assert len(openai_calls) == 2


@pytest.mark.asyncio
async def test_empty_response_counts_as_failure(settings):
    openai_client, _ = openai_stub("")
    client = LLMClient(settings, {LLMProvider.OPENAI: openai_client})

    with pytest.raises(LLMError):
        await client.complete("prompt")


@pytest.mark.asyncio
async def test_all_providers_failing_raises(settings):
    openai_client, _ = openai_stub(RuntimeError("down"))
    client = LLMClient(settings, {LLMProvider.OPENAI: openai_client})

    with pytest.raises(LLMError) as exc_info:
        await client.complete("prompt")

    assert "down" in str(exc_info.value)
    assert exc_info.value.retries == settings.LLM_MAX_RETRIES


@pytest.mark.asyncio
async def test_providers_outside_priority_are_ignored(settings):
    gemini_stub = SimpleNamespace()
    client = LLMClient(settings, {LLMProvider.GEMINI: gemini_stub})

    with pytest.raises(LLMError):
        await client.complete("prompt")


def test_no_providers_raises(settings):
    with pytest.raises(LLMError):
        LLMClient(settings, {})
