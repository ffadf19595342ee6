from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from app.core.config import settings
from app.services.vision.errors import VisionModelError
from app.services.vision.prompts import (
    PROMPT_VERSION,
    TASK_CLOSET_EXTRACTION,
    TASK_OUTFIT_ANALYSIS,
    build_messages,
)
from app.services.vision.providers.base import NullProvider, VisionProvider
from app.services.vision.types import VisionResponse

logger = logging.getLogger("uvicorn.error")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_s: float = 0.5
    multiplier: float = 2.0
    max_delay_s: float = 8.0
    jitter_ratio: float = 0.25

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.LLM_RETRY_MAX_ATTEMPTS,
            base_delay_s=settings.LLM_RETRY_BASE_DELAY_S,
            multiplier=settings.LLM_RETRY_MULTIPLIER,
            max_delay_s=settings.LLM_RETRY_MAX_DELAY_S,
            jitter_ratio=settings.LLM_RETRY_JITTER_RATIO,
        )

    def backoff(self, attempt: int) -> float:
        """Delay before retrying after failed attempt number ``attempt`` (1-based), without jitter."""
        delay = self.base_delay_s * (self.multiplier ** max(attempt - 1, 0))
        return min(delay, self.max_delay_s)

    def delay(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        base = self.backoff(attempt)
        return base + rng() * self.jitter_ratio * base


@dataclass
class TaskParams:
    max_tokens: int
    temperature: float


def _default_task_params() -> Dict[str, TaskParams]:
    return {
        TASK_OUTFIT_ANALYSIS: TaskParams(settings.LLM_ANALYSIS_MAX_TOKENS, settings.LLM_ANALYSIS_TEMPERATURE),
        TASK_CLOSET_EXTRACTION: TaskParams(settings.LLM_EXTRACTION_MAX_TOKENS, settings.LLM_EXTRACTION_TEMPERATURE),
    }


@dataclass
class VisionModelClient:
    """Sends one image plus a task prompt to the vision model, retrying transient failures.

    The client holds no per-call state. A body the provider returned is handed
    back as-is even when it is not valid JSON; interpreting it is the
    normalizer's job.
    """

    provider: VisionProvider
    model: str
    timeout_ms: int
    policy: RetryPolicy = field(default_factory=RetryPolicy)
    task_params: Dict[str, TaskParams] = field(default_factory=_default_task_params)
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    rng: Callable[[], float] = random.random

    async def invoke(self, task_kind: str, image_url: str, prompt_context: Optional[Dict[str, Any]] = None) -> str:
        res = await self.invoke_detailed(task_kind, image_url, prompt_context)
        return res.text

    async def invoke_detailed(
        self, task_kind: str, image_url: str, prompt_context: Optional[Dict[str, Any]] = None
    ) -> VisionResponse:
        messages = build_messages(task_kind, image_url, prompt_context)
        params = self.task_params[task_kind]
        attempts = max(1, self.policy.max_attempts)
        attempt = 0
        while True:
            attempt += 1
            try:
                res = await self.provider.complete(
                    messages,
                    model=self.model,
                    max_tokens=params.max_tokens,
                    temperature=params.temperature,
                    timeout_ms=self.timeout_ms,
                )
            except VisionModelError as e:
                if not e.retryable or attempt >= attempts:
                    logger.warning(
                        "vision:invoke failed task=%s attempt=%s/%s err=%s final=true",
                        task_kind,
                        attempt,
                        attempts,
                        e,
                    )
                    raise
                wait = self.policy.delay(attempt, self.rng)
                logger.info(
                    "vision:invoke retry task=%s attempt=%s/%s err=%s wait_s=%.2f",
                    task_kind,
                    attempt,
                    attempts,
                    type(e).__name__,
                    wait,
                )
                await self.sleep(wait)
                continue
            res.usage.attempts = attempt
            res.usage.prompt_version = PROMPT_VERSION
            logger.info(
                "vision:invoke ok task=%s attempt=%s latency_ms=%s chars=%s",
                task_kind,
                attempt,
                res.usage.latency_ms,
                len(res.text),
            )
            return res


_client: VisionModelClient | None = None


def _build_provider() -> VisionProvider:
    if not settings.LLM_ENABLED:
        return NullProvider()
    name = (settings.LLM_PROVIDER or "").lower()
    if name == "openai":
        from app.services.vision.providers.openai import OpenAIProvider

        return OpenAIProvider()
    logger.warning("vision:provider unknown name=%s using=disabled", name)
    return NullProvider()


def build_client() -> VisionModelClient:
    return VisionModelClient(
        provider=_build_provider(),
        model=settings.LLM_MODEL_VISION,
        timeout_ms=settings.LLM_VISION_TIMEOUT_MS,
        policy=RetryPolicy.from_settings(),
    )


def get_client() -> VisionModelClient:
    global _client
    if _client:
        return _client
    _client = build_client()
    return _client


def set_client(client: VisionModelClient | None) -> None:
    global _client
    _client = client
