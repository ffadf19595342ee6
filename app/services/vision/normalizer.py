"""Turns whatever the vision model returned into a CanonicalAnalysis.

Two payload shapes are in circulation: the clinical shape, identified by a
``sub_scores`` block, and the older flat legacy shape. Both are mapped onto
the same canonical model here so that nothing downstream has to care which
one the model produced. ``normalize`` never raises; unusable input becomes
the deterministic fallback analysis.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any, Dict, Iterable, List, Optional, Sequence

from app.services.vision.errors import NoStructuredPayload
from app.services.vision.types import (
    ATTRIBUTE_KEYS,
    SUB_SCORE_KEYS,
    Adjustments,
    CanonicalAnalysis,
    Feedback,
    GarmentAttributes,
    GarmentDetection,
)

logger = logging.getLogger("uvicorn.error")

NEUTRAL_SCORE = 70.0
DEFAULT_STYLE = "casual"
LEGACY_COMPLETENESS_CAP = 70
FALLBACK_COMPLETENESS = 10
FALLBACK_CONFIDENCE = 0.1

FLAG_PARSING_FAILED = "parsing_failed"
FLAG_LEGACY = "converted_from_legacy_format"

LEGACY_SUB_SCORES = {
    "proportion_silhouette": "style_score",
    "fit_technical": "fit_score",
    "color_harmony": "color_score",
    "formality_occasion": "occasion_score",
}
LEGACY_CONFIDENCE = {"fit": 0.7, "color": 0.5, "pattern": 0.5}

_MAX_DETECTION_ID = 100


def extract_json_object(raw_text: str) -> Dict[str, Any]:
    """Return the first JSON object embedded in ``raw_text``.

    Prose or markdown fences around the object are ignored.
    """
    if not raw_text or not raw_text.strip():
        raise NoStructuredPayload("empty_response")
    decoder = json.JSONDecoder()
    idx = raw_text.find("{")
    while idx != -1:
        try:
            obj, _ = decoder.raw_decode(raw_text, idx)
        except json.JSONDecodeError:
            obj = None
        if isinstance(obj, dict):
            return obj
        idx = raw_text.find("{", idx + 1)
    raise NoStructuredPayload("no_json_object")


def _first(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _num(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(out) or math.isinf(out):
        return None
    return out


def _score(value: Any, default: float = NEUTRAL_SCORE) -> float:
    num = _num(value)
    if num is None:
        return default
    return min(max(num, 0.0), 100.0)


def _unit(value: Any, default: float = 0.0) -> float:
    num = _num(value)
    if num is None:
        return default
    return min(max(num, 0.0), 1.0)


def _str_list(value: Any) -> List[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return []
    return [str(v).strip() for v in value if v is not None and str(v).strip()]


def _text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    out = str(value).strip()
    return out or None


def _confidence_map(value: Any) -> Dict[str, float]:
    out: Dict[str, float] = {}
    for key, raw in _as_dict(value).items():
        num = _num(raw)
        if num is not None:
            out[str(key)] = min(max(num, 0.0), 1.0)
    return out


def _attributes(raw: Dict[str, Any]) -> GarmentAttributes:
    values: Dict[str, Any] = {}
    for key in ATTRIBUTE_KEYS:
        if key == "layer_order":
            num = _num(raw.get(key))
            values[key] = int(num) if num is not None else None
        else:
            values[key] = _text(raw.get(key))
    return GarmentAttributes(**values)


def _detection(raw: Dict[str, Any], index: int) -> GarmentDetection:
    attrs = _as_dict(raw.get("attributes"))
    if not attrs:
        attrs = {k: raw.get(k) for k in ATTRIBUTE_KEYS if k in raw}
    det_id = _text(_first(raw, "detection_id", "item_id", "id", "detectionId", "itemId")) or f"item_{index}"
    return GarmentDetection(
        detection_id=det_id,
        category=_text(raw.get("category")) or "unknown",
        attributes=_attributes(attrs),
        confidence=_confidence_map(_first(raw, "confidence_scores", "confidenceScores", "confidence")),
    )


def _unique_ids(detections: Sequence[GarmentDetection]) -> List[GarmentDetection]:
    seen: set[str] = set()
    out: List[GarmentDetection] = []
    for idx, det in enumerate(detections):
        base = (det.detection_id or f"item_{idx}")[: _MAX_DETECTION_ID - 6]
        candidate = base
        n = 1
        while candidate in seen:
            n += 1
            candidate = f"{base}_{n}"
        seen.add(candidate)
        out.append(det.model_copy(update={"detection_id": candidate}))
    return out


def _feedback(data: Dict[str, Any]) -> Feedback:
    raw = _as_dict(_first(data, "detailed_feedback", "detailedFeedback", "feedback"))
    return Feedback(
        strengths=_str_list(raw.get("strengths")),
        improvements=_str_list(raw.get("improvements")),
        alignment_note=_text(_first(raw, "style_alignment", "styleAlignment", "alignment_note")) or "",
    )


def _adjustments(data: Dict[str, Any]) -> Adjustments:
    raw = _as_dict(_first(data, "recommendations", "adjustments"))
    return Adjustments(
        minor=_str_list(_first(raw, "minor_adjustments", "minorAdjustments", "minor")),
        closet_suggestions=_str_list(
            _first(raw, "closet_recommendations", "closetRecommendations", "closet_suggestions")
        ),
        new_item_suggestions=_str_list(_first(raw, "new_item_suggestions", "newItemSuggestions")),
    )


def _headline(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "overall_score": _score(_first(data, "overall_score", "overallScore")),
        "style_category": _text(_first(data, "style_category", "styleCategory")) or DEFAULT_STYLE,
        "style_score": _score(_first(data, "style_score", "styleScore")),
        "fit_score": _score(_first(data, "fit_score", "fitScore")),
        "color_score": _score(_first(data, "color_score", "colorScore")),
        "occasion_score": _score(
            _first(data, "occasion_score", "occasionScore", "occasion_appropriateness", "occasionAppropriateness")
        ),
    }


def _reported_completeness(data: Dict[str, Any]) -> Optional[float]:
    return _num(_first(data, "completeness", "analysis_completeness", "analysisCompleteness"))


def _detections(raw_list: Any) -> List[GarmentDetection]:
    if not isinstance(raw_list, list):
        return []
    out = [_detection(item, idx) for idx, item in enumerate(raw_list) if isinstance(item, dict)]
    return _unique_ids(out)


def _is_clinical(data: Dict[str, Any]) -> bool:
    return isinstance(_first(data, "sub_scores", "subScores"), dict)


def _from_clinical(data: Dict[str, Any]) -> CanonicalAnalysis:
    raw_subs = _as_dict(_first(data, "sub_scores", "subScores"))
    sub_scores = {key: _score(raw_subs.get(key)) for key in SUB_SCORE_KEYS}
    reported = _reported_completeness(data)
    return CanonicalAnalysis(
        **_headline(data),
        sub_scores=sub_scores,
        feedback=_feedback(data),
        detected_garments=_detections(
            _first(data, "detected_garments", "garment_detection", "detectedGarments", "garmentDetection")
        ),
        assessment=_as_dict(_first(data, "outfit_assessment", "outfitAssessment", "assessment")),
        adjustments=_adjustments(data),
        confidence_flags=_str_list(_first(data, "confidence_flags", "confidenceFlags")),
        completeness=int(round(_score(reported, 100.0))),
    )


def _from_legacy(data: Dict[str, Any]) -> CanonicalAnalysis:
    headline = _headline(data)
    sub_scores = {
        key: headline[LEGACY_SUB_SCORES[key]] if key in LEGACY_SUB_SCORES else NEUTRAL_SCORE
        for key in SUB_SCORE_KEYS
    }

    raw_items = _first(data, "items_detected", "itemsDetected")
    detections: List[GarmentDetection] = []
    if isinstance(raw_items, list):
        for idx, item in enumerate(raw_items):
            if not isinstance(item, dict):
                continue
            detections.append(
                GarmentDetection(
                    detection_id=f"item_{idx}",
                    category=_text(item.get("category")) or "unknown",
                    attributes=GarmentAttributes(fit=_text(_first(item, "fit_assessment", "fitAssessment"))),
                    confidence=dict(LEGACY_CONFIDENCE),
                )
            )

    feedback = _feedback(data)
    adjustments = _adjustments(data)
    if not adjustments.minor:
        adjustments.minor = list(feedback.improvements)

    flags = _str_list(_first(data, "confidence_flags", "confidenceFlags"))
    if FLAG_LEGACY not in flags:
        flags.append(FLAG_LEGACY)

    reported = _reported_completeness(data)
    completeness = min(_score(reported, LEGACY_COMPLETENESS_CAP), LEGACY_COMPLETENESS_CAP)
    return CanonicalAnalysis(
        **headline,
        sub_scores=sub_scores,
        feedback=feedback,
        detected_garments=_unique_ids(detections),
        assessment={},
        adjustments=adjustments,
        confidence_flags=flags,
        completeness=int(round(completeness)),
    )


def fallback_analysis(flags: Iterable[str] = (FLAG_PARSING_FAILED,)) -> CanonicalAnalysis:
    """The neutral analysis returned whenever the model output cannot be used."""
    return CanonicalAnalysis(
        overall_score=NEUTRAL_SCORE,
        style_category=DEFAULT_STYLE,
        style_score=NEUTRAL_SCORE,
        fit_score=NEUTRAL_SCORE,
        color_score=NEUTRAL_SCORE,
        occasion_score=NEUTRAL_SCORE,
        sub_scores={key: NEUTRAL_SCORE for key in SUB_SCORE_KEYS},
        feedback=Feedback(
            strengths=["Outfit photo received"],
            improvements=["Detailed analysis is temporarily unavailable, please try again"],
            alignment_note="",
        ),
        detected_garments=[
            GarmentDetection(
                detection_id="fallback_item",
                category="outfit",
                attributes=GarmentAttributes(),
                confidence={"fit": FALLBACK_CONFIDENCE, "color": FALLBACK_CONFIDENCE, "pattern": FALLBACK_CONFIDENCE},
            )
        ],
        assessment={},
        adjustments=Adjustments(),
        confidence_flags=list(flags),
        completeness=FALLBACK_COMPLETENESS,
    )


def normalize(raw_text: str) -> CanonicalAnalysis:
    try:
        data = extract_json_object(raw_text)
        if _is_clinical(data):
            return _from_clinical(data)
        return _from_legacy(data)
    except Exception as e:
        logger.warning("vision:normalize fallback err=%s", e)
        return fallback_analysis()
