from __future__ import annotations

from typing import Any, Dict, List, Protocol

from app.services.vision.types import VisionResponse, VisionUsage


class VisionProvider(Protocol):
    name: str

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        *,
        model: str,
        max_tokens: int,
        temperature: float,
        timeout_ms: int,
    ) -> VisionResponse:
        ...


class NullProvider:
    """Safety net provider used when the LLM is disabled."""

    name = "disabled"

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        *,
        model: str,
        max_tokens: int,
        temperature: float,
        timeout_ms: int,
    ) -> VisionResponse:
        return VisionResponse(text="", usage=VisionUsage(model=self.name))
