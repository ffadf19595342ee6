from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from app.services.vision.normalizer import (
    FLAG_PARSING_FAILED,
    _as_dict,
    _confidence_map,
    _first,
    _num,
    _str_list,
    _text,
    _unit,
    extract_json_object,
)
from app.services.vision.types import (
    BoundingBox,
    ExtractedAttributes,
    ExtractedGarment,
    ExtractionResult,
)

logger = logging.getLogger("uvicorn.error")

FLAG_BOX_DEFAULTED = "bounding_box_defaulted"
FULL_FRAME = (0.0, 0.0, 1.0, 1.0)


def _box_coords(raw: Any) -> Optional[List[float]]:
    if isinstance(raw, dict):
        values = [raw.get(k) for k in ("x1", "y1", "x2", "y2")]
    elif isinstance(raw, (list, tuple)) and len(raw) == 4:
        values = list(raw)
    else:
        return None
    coords = [_num(v) for v in values]
    if any(c is None for c in coords):
        return None
    return [float(c) for c in coords]  # type: ignore[arg-type]


def normalize_bounding_box(raw: Any) -> Tuple[Optional[BoundingBox], str]:
    """Return the box in 0-1 coordinates and the scale it was reported in.

    The model is asked for percentages but sometimes answers in fractions; a box
    whose four coordinates are all <= 1 is taken as already normalized.
    """
    coords = _box_coords(raw)
    if coords is None:
        return None, "normalized"
    scale = "normalized" if all(c <= 1 for c in coords) else "percent"
    if scale == "percent":
        coords = [c / 100.0 for c in coords]
    x1, y1, x2, y2 = [min(max(c, 0.0), 1.0) for c in coords]
    return BoundingBox(x1=min(x1, x2), y1=min(y1, y2), x2=max(x1, x2), y2=max(y1, y2)), scale


def _formality(value: Any) -> Optional[int]:
    num = _num(value)
    if num is None:
        return None
    return int(round(min(max(num, 0.0), 100.0)))


def _item(raw: Dict[str, Any], index: int, flags: List[str]) -> ExtractedGarment:
    item_id = _text(_first(raw, "item_id", "itemId", "id")) or f"item_{index}"
    box, scale = normalize_bounding_box(_first(raw, "bounding_box", "boundingBox", "bbox"))
    if box is None:
        x1, y1, x2, y2 = FULL_FRAME
        box = BoundingBox(x1=x1, y1=y1, x2=x2, y2=y2)
        if FLAG_BOX_DEFAULTED not in flags:
            flags.append(FLAG_BOX_DEFAULTED)
    attrs = _as_dict(raw.get("attributes"))
    return ExtractedGarment(
        item_id=item_id,
        category=_text(raw.get("category")) or "unknown",
        description=_text(raw.get("description")) or "",
        bounding_box=box,
        box_scale=scale,  # type: ignore[arg-type]
        attributes=ExtractedAttributes(
            color=_text(attrs.get("color")),
            pattern=_text(attrs.get("pattern")),
            material=_text(attrs.get("material")),
            brand=_text(attrs.get("brand")),
            size_estimate=_text(_first(attrs, "size_estimate", "sizeEstimate", "size")),
            style_tags=_str_list(_first(attrs, "style_tags", "styleTags")),
            season_tags=_str_list(_first(attrs, "season_tags", "seasonTags")),
            formality_level=_formality(_first(attrs, "formality_level", "formalityLevel")),
        ),
        confidence=_confidence_map(_first(raw, "confidence_scores", "confidenceScores", "confidence")),
        closet_suitability=_unit(_first(raw, "closet_suitability", "closetSuitability")),
    )


def normalize_extraction(raw_text: str) -> ExtractionResult:
    try:
        data = extract_json_object(raw_text)
    except Exception as e:
        logger.warning("vision:extraction unparseable err=%s", e)
        return ExtractionResult(items=[], image_analysis={}, confidence_flags=[FLAG_PARSING_FAILED])

    flags: List[str] = []
    raw_items = _first(data, "items", "extracted_items")
    items: List[ExtractedGarment] = []
    seen: set[str] = set()
    for idx, raw in enumerate(raw_items if isinstance(raw_items, list) else []):
        if not isinstance(raw, dict):
            continue
        try:
            item = _item(raw, idx, flags)
        except Exception as e:
            logger.warning("vision:extraction item_skipped index=%s err=%s", idx, e)
            continue
        base = item.item_id[:94]
        candidate, n = base, 1
        while candidate in seen:
            n += 1
            candidate = f"{base}_{n}"
        seen.add(candidate)
        items.append(item.model_copy(update={"item_id": candidate}))

    return ExtractionResult(
        items=items,
        image_analysis=_as_dict(_first(data, "image_analysis", "imageAnalysis")),
        confidence_flags=flags,
    )
