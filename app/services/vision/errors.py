from __future__ import annotations

from typing import Optional


class VisionModelError(Exception):
    """Base class for failures talking to the external vision model."""

    retryable = False


class ModelUnavailable(VisionModelError):
    """Transport-level failure: DNS, connection reset, TLS, etc."""

    retryable = True


class ModelTimeout(VisionModelError):
    retryable = True


class ModelRejected(VisionModelError):
    """The provider answered with a non-2xx status."""

    def __init__(self, status_code: Optional[int], message: str = ""):
        super().__init__(f"model_rejected status={status_code} {message}".strip())
        self.status_code = status_code

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        if self.status_code is None:
            return False
        return self.status_code == 429 or 500 <= self.status_code < 600


class NoStructuredPayload(ValueError):
    """No JSON object could be located in the model's reply."""
