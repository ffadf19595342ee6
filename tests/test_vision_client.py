import asyncio

import httpx
import openai
import pytest

from app.services.vision.client import RetryPolicy, VisionModelClient
from app.services.vision.errors import ModelRejected, ModelTimeout, ModelUnavailable
from app.services.vision.prompts import PROMPT_VERSION, TASK_CLOSET_EXTRACTION, TASK_OUTFIT_ANALYSIS, build_messages
from app.services.vision.providers.base import NullProvider
from app.services.vision.providers.openai import OpenAIProvider
from tests.fixtures import clinical_text, make_client

IMAGE_URL = "https://cdn.example.com/u/1/outfit.jpg"


@pytest.mark.asyncio
async def test_transient_failures_are_retried_with_growing_backoff():
    client = make_client(ModelUnavailable("reset"), ModelTimeout("slow"), clinical_text())
    res = await client.invoke_detailed(TASK_OUTFIT_ANALYSIS, IMAGE_URL, {"preference_hints": ["minimal"]})
    assert "92.5" in res.text
    assert res.usage.attempts == 3
    assert res.usage.prompt_version == PROMPT_VERSION
    assert client.sleeps == [0.5, 1.0]
    assert len(client.provider.calls) == 3


@pytest.mark.asyncio
async def test_rate_limit_and_server_errors_are_retried():
    client = make_client(ModelRejected(429, "slow down"), ModelRejected(503, "busy"), "{}")
    assert await client.invoke(TASK_OUTFIT_ANALYSIS, IMAGE_URL) == "{}"
    assert len(client.sleeps) == 2


@pytest.mark.asyncio
async def test_client_errors_are_not_retried():
    client = make_client(ModelRejected(400, "bad image"), clinical_text())
    with pytest.raises(ModelRejected) as exc:
        await client.invoke(TASK_OUTFIT_ANALYSIS, IMAGE_URL)
    assert exc.value.status_code == 400
    assert exc.value.retryable is False
    assert client.sleeps == []
    assert len(client.provider.calls) == 1


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts():
    client = make_client(ModelUnavailable("down"), max_attempts=3)
    with pytest.raises(ModelUnavailable):
        await client.invoke(TASK_OUTFIT_ANALYSIS, IMAGE_URL)
    assert len(client.provider.calls) == 3
    assert len(client.sleeps) == 2


@pytest.mark.asyncio
async def test_unparseable_body_is_returned_not_retried():
    client = make_client("sorry, I cannot help with that")
    assert await client.invoke(TASK_OUTFIT_ANALYSIS, IMAGE_URL) == "sorry, I cannot help with that"
    assert len(client.provider.calls) == 1


@pytest.mark.asyncio
async def test_task_params_follow_task_kind():
    client = make_client("{}")
    await client.invoke(TASK_CLOSET_EXTRACTION, IMAGE_URL, {"mode": "individual_items"})
    call = client.provider.calls[0]
    assert call["temperature"] == client.task_params[TASK_CLOSET_EXTRACTION].temperature
    assert call["max_tokens"] == client.task_params[TASK_CLOSET_EXTRACTION].max_tokens


def test_backoff_is_capped_and_jitter_bounded():
    policy = RetryPolicy(max_attempts=5, base_delay_s=0.5, multiplier=2.0, max_delay_s=8.0, jitter_ratio=0.25)
    assert [policy.backoff(n) for n in (1, 2, 3, 4, 5, 6)] == [0.5, 1.0, 2.0, 4.0, 8.0, 8.0]
    assert policy.delay(1, rng=lambda: 0.0) == 0.5
    assert policy.delay(1, rng=lambda: 1.0) == pytest.approx(0.625)
    for attempt in (1, 2, 3):
        d = policy.delay(attempt)
        assert policy.backoff(attempt) <= d <= policy.backoff(attempt) * 1.25


def test_messages_carry_prompt_and_image():
    messages = build_messages(TASK_OUTFIT_ANALYSIS, IMAGE_URL, {"preference_hints": ["minimal", "earth tones"]})
    assert messages[0]["role"] == "system"
    user_parts = messages[-1]["content"]
    assert {"type": "image_url", "image_url": {"url": IMAGE_URL}} in user_parts
    assert any("earth tones" in p.get("text", "") for p in user_parts if p["type"] == "text")
    with pytest.raises(ValueError):
        build_messages("garment_swap", IMAGE_URL)


@pytest.mark.asyncio
async def test_null_provider_returns_empty_text():
    client = VisionModelClient(provider=NullProvider(), model="disabled", timeout_ms=100)
    assert await client.invoke(TASK_OUTFIT_ANALYSIS, IMAGE_URL) == ""


class _FakeCompletions:
    def __init__(self, exc=None, delay=0.0):
        self.exc = exc
        self.delay = delay

    async def create(self, **kwargs):
        if self.delay:
            await asyncio.sleep(self.delay)
        raise self.exc


class _FakeOpenAI:
    def __init__(self, completions):
        self.chat = type("Chat", (), {"completions": completions})()


_REQ = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


@pytest.mark.asyncio
async def test_openai_errors_are_mapped():
    cases = [
        (openai.APIConnectionError(request=_REQ), ModelUnavailable),
        (openai.RateLimitError("rate limited", response=httpx.Response(429, request=_REQ), body=None), ModelRejected),
        (openai.BadRequestError("bad", response=httpx.Response(400, request=_REQ), body=None), ModelRejected),
    ]
    for exc, expected in cases:
        provider = OpenAIProvider(client=_FakeOpenAI(_FakeCompletions(exc)))
        with pytest.raises(expected):
            await provider.complete([], model="m", max_tokens=10, temperature=0.1, timeout_ms=1000)


@pytest.mark.asyncio
async def test_openai_timeout_is_mapped():
    provider = OpenAIProvider(client=_FakeOpenAI(_FakeCompletions(ModelUnavailable("never"), delay=1.0)))
    with pytest.raises(ModelTimeout):
        await provider.complete([], model="m", max_tokens=10, temperature=0.1, timeout_ms=10)
