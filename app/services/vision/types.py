from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

TaskKind = Literal["outfit_analysis", "closet_extraction"]
ExtractionMode = Literal["outfit", "individual_items"]

SUB_SCORE_KEYS = (
    "proportion_silhouette",
    "fit_technical",
    "color_harmony",
    "pattern_texture",
    "layering_logic",
    "formality_occasion",
    "footwear_cohesion",
)

ATTRIBUTE_KEYS = (
    "color",
    "pattern",
    "material",
    "fit",
    "length",
    "sleeve_length",
    "neckline",
    "waistline",
    "hem_treatment",
    "layer_order",
)


class VisionUsage(BaseModel):
    model: str = ""
    tokens_in: int = 0
    tokens_out: int = 0
    latency_ms: int = 0
    attempts: int = 0
    prompt_version: str = "p1"


class VisionResponse(BaseModel):
    text: str = ""
    usage: VisionUsage = Field(default_factory=VisionUsage)


class GarmentAttributes(BaseModel):
    color: Optional[str] = None
    pattern: Optional[str] = None
    material: Optional[str] = None
    fit: Optional[str] = None
    length: Optional[str] = None
    sleeve_length: Optional[str] = None
    neckline: Optional[str] = None
    waistline: Optional[str] = None
    hem_treatment: Optional[str] = None
    layer_order: Optional[int] = None


class GarmentDetection(BaseModel):
    detection_id: str
    category: str
    attributes: GarmentAttributes = Field(default_factory=GarmentAttributes)
    confidence: Dict[str, float] = Field(default_factory=dict)

    @property
    def mean_confidence(self) -> float:
        return mean_confidence(self.confidence)


class Feedback(BaseModel):
    strengths: List[str] = Field(default_factory=list)
    improvements: List[str] = Field(default_factory=list)
    alignment_note: str = ""


class Adjustments(BaseModel):
    minor: List[str] = Field(default_factory=list)
    closet_suggestions: List[str] = Field(default_factory=list)
    new_item_suggestions: List[str] = Field(default_factory=list)


class CanonicalAnalysis(BaseModel):
    overall_score: float = Field(ge=0, le=100)
    style_category: str = "casual"
    style_score: float = Field(ge=0, le=100)
    fit_score: float = Field(ge=0, le=100)
    color_score: float = Field(ge=0, le=100)
    occasion_score: float = Field(ge=0, le=100)
    sub_scores: Dict[str, float] = Field(default_factory=dict)
    feedback: Feedback = Field(default_factory=Feedback)
    detected_garments: List[GarmentDetection] = Field(default_factory=list)
    assessment: Dict[str, Any] = Field(default_factory=dict)
    adjustments: Adjustments = Field(default_factory=Adjustments)
    confidence_flags: List[str] = Field(default_factory=list)
    completeness: int = Field(default=100, ge=0, le=100)


class BoundingBox(BaseModel):
    """Crop rectangle in 0-1 image coordinates."""

    x1: float = Field(ge=0, le=1)
    y1: float = Field(ge=0, le=1)
    x2: float = Field(ge=0, le=1)
    y2: float = Field(ge=0, le=1)


class ExtractedAttributes(BaseModel):
    color: Optional[str] = None
    pattern: Optional[str] = None
    material: Optional[str] = None
    brand: Optional[str] = None
    size_estimate: Optional[str] = None
    style_tags: List[str] = Field(default_factory=list)
    season_tags: List[str] = Field(default_factory=list)
    formality_level: Optional[int] = Field(default=None, ge=0, le=100)


class ExtractedGarment(BaseModel):
    item_id: str
    category: str
    description: str = ""
    bounding_box: BoundingBox
    box_scale: Literal["normalized", "percent"] = "normalized"
    attributes: ExtractedAttributes = Field(default_factory=ExtractedAttributes)
    confidence: Dict[str, float] = Field(default_factory=dict)
    closet_suitability: float = Field(default=0.0, ge=0, le=1)


class ExtractionResult(BaseModel):
    items: List[ExtractedGarment] = Field(default_factory=list)
    image_analysis: Dict[str, Any] = Field(default_factory=dict)
    confidence_flags: List[str] = Field(default_factory=list)

    def high_confidence_count(self, threshold: float) -> int:
        return sum(1 for item in self.items if item.closet_suitability > threshold)


def mean_confidence(scores: Optional[Dict[str, Any]], default: float = 0.5) -> float:
    values = []
    for v in (scores or {}).values():
        if isinstance(v, bool):
            continue
        try:
            values.append(float(v))
        except (TypeError, ValueError):
            continue
    if not values:
        return default
    return sum(values) / len(values)
