"""
Canned vision model replies and a scripted provider for pipeline tests.
"""
import json
from typing import Any, Dict

from app.services.vision.client import RetryPolicy, VisionModelClient
from app.services.vision.types import VisionResponse, VisionUsage

SUB_SCORES = {
    "proportion_silhouette": 88,
    "fit_technical": 90,
    "color_harmony": 95,
    "pattern_texture": 80,
    "layering_logic": 85,
    "formality_occasion": 91,
    "footwear_cohesion": 87,
}


def clinical_payload(**overrides: Any) -> Dict[str, Any]:
    payload = {
        "overall_score": 92.5,
        "style_category": "smart casual",
        "style_score": 90,
        "fit_score": 89,
        "color_score": 94,
        "occasion_score": 91,
        "sub_scores": dict(SUB_SCORES),
        "detected_garments": [
            {
                "detection_id": "jacket_1",
                "category": "jacket",
                "attributes": {"color": "navy", "material": "wool", "fit": "tailored", "layer_order": 2},
                "confidence_scores": {"color": 0.9, "fit": 0.8},
            }
        ],
        "outfit_assessment": {
            "proportions": {"silhouette_shape": "inverted triangle", "top_length_ratio": 0.45},
            "color_analysis": {"palette": ["navy", "white"], "scheme": "complementary"},
            "formality_level": {"score": 62, "reasoning": "Tailored jacket over a tee"},
        },
        "recommendations": {
            "minor_adjustments": ["Roll the sleeves once"],
            "closet_recommendations": ["Swap in the white sneakers"],
            "new_item_suggestions": [],
        },
        "detailed_feedback": {
            "strengths": ["Clean palette"],
            "improvements": ["Shorten the trousers"],
            "style_alignment": "Matches a minimal wardrobe",
        },
    }
    payload.update(overrides)
    return payload


def clinical_text(**overrides: Any) -> str:
    return "Here is the result: " + json.dumps(clinical_payload(**overrides))


def legacy_text() -> str:
    return json.dumps(
        {
            "overall_score": 78,
            "style_category": "casual",
            "style_score": 75,
            "fit_score": 68,
            "color_score": 80,
            "occasion_score": 72,
            "items_detected": [{"category": "shirt", "fit_assessment": "slightly loose"}],
            "detailed_feedback": {"strengths": ["Good colours"], "improvements": ["Tuck the shirt in"]},
        }
    )


def extraction_text() -> str:
    return json.dumps(
        {
            "items": [
                {
                    "item_id": "top_1",
                    "category": "shirt",
                    "description": "White oxford shirt",
                    "bounding_box": {"x1": 20, "y1": 10, "x2": 80, "y2": 55},
                    "attributes": {
                        "color": "white",
                        "material": "cotton",
                        "style_tags": ["Smart Casual"],
                        "season_tags": ["Spring", "Summer"],
                        "formality_level": 55,
                    },
                    "confidence_scores": {"category": 0.95, "color": 0.9},
                    "closet_suitability": 0.9,
                },
                {
                    "item_id": "bottom_1",
                    "category": "trousers",
                    "bounding_box": [0.25, 0.5, 0.75, 0.95],
                    "attributes": {"color": "khaki"},
                    "closet_suitability": 0.4,
                },
            ],
            "image_analysis": {"lighting": "good", "background": "plain"},
        }
    )


class ScriptedProvider:
    """Plays back outcomes in order; strings are returned, exceptions raised. The last one repeats."""

    name = "scripted"

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def complete(self, messages, *, model, max_tokens, temperature, timeout_ms):
        self.calls.append({"messages": messages, "model": model, "max_tokens": max_tokens, "temperature": temperature})
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return VisionResponse(text=outcome, usage=VisionUsage(model=model, tokens_in=10, tokens_out=20, latency_ms=5))


def make_client(*outcomes, max_attempts: int = 3, jitter: float = 0.0) -> VisionModelClient:
    """A client over ScriptedProvider whose sleeps are recorded on ``client.sleeps`` instead of awaited."""
    sleeps = []

    async def _sleep(s):
        sleeps.append(s)

    client = VisionModelClient(
        provider=ScriptedProvider(outcomes),
        model="test-vision",
        timeout_ms=1000,
        policy=RetryPolicy(max_attempts=max_attempts),
        sleep=_sleep,
        rng=lambda: jitter,
    )
    client.sleeps = sleeps
    return client
