from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List

import openai
from openai import AsyncOpenAI

from app.services.vision.errors import ModelRejected, ModelTimeout, ModelUnavailable
from app.services.vision.types import VisionResponse, VisionUsage

logger = logging.getLogger("uvicorn.error")


class OpenAIProvider:
    name = "openai"

    def __init__(self, client: AsyncOpenAI | None = None):
        # retries are owned by VisionModelClient
        self.client = client or AsyncOpenAI(max_retries=0)

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        *,
        model: str,
        max_tokens: int,
        temperature: float,
        timeout_ms: int,
    ) -> VisionResponse:
        start = time.perf_counter()
        logger.info("vision:openai request model=%s timeout_ms=%s", model, timeout_ms)
        try:
            resp = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=model,
                    messages=messages,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    response_format={"type": "json_object"},
                ),
                timeout=timeout_ms / 1000.0,
            )
        except (asyncio.TimeoutError, openai.APITimeoutError) as e:
            logger.warning("vision:openai timeout model=%s timeout_ms=%s", model, timeout_ms)
            raise ModelTimeout(f"timeout after {timeout_ms}ms") from e
        except openai.APIConnectionError as e:
            logger.warning("vision:openai unavailable model=%s err=%s", model, e)
            raise ModelUnavailable(str(e)) from e
        except openai.APIStatusError as e:
            logger.warning("vision:openai rejected model=%s status=%s", model, e.status_code)
            raise ModelRejected(e.status_code, str(e)) from e
        latency_ms = int((time.perf_counter() - start) * 1000)
        content = resp.choices[0].message.content if resp.choices else ""
        return VisionResponse(
            text=content or "",
            usage=VisionUsage(
                model=model,
                tokens_in=getattr(resp.usage, "prompt_tokens", 0) if resp.usage else 0,
                tokens_out=getattr(resp.usage, "completion_tokens", 0) if resp.usage else 0,
                latency_ms=latency_ms,
            ),
        )
