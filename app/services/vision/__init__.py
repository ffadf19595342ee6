from app.services.vision.client import RetryPolicy, VisionModelClient, build_client, get_client, set_client
from app.services.vision.errors import (
    ModelRejected,
    ModelTimeout,
    ModelUnavailable,
    NoStructuredPayload,
    VisionModelError,
)
from app.services.vision.extraction import normalize_extraction
from app.services.vision.normalizer import extract_json_object, fallback_analysis, normalize
from app.services.vision.prompts import TASK_CLOSET_EXTRACTION, TASK_OUTFIT_ANALYSIS

__all__ = [
    "ModelRejected",
    "ModelTimeout",
    "ModelUnavailable",
    "NoStructuredPayload",
    "RetryPolicy",
    "TASK_CLOSET_EXTRACTION",
    "TASK_OUTFIT_ANALYSIS",
    "VisionModelClient",
    "VisionModelError",
    "build_client",
    "extract_json_object",
    "fallback_analysis",
    "get_client",
    "normalize",
    "normalize_extraction",
    "set_client",
]
