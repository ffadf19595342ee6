from __future__ import annotations

from typing import Any, Dict, List, Sequence

PROMPT_VERSION = "p1"

TASK_OUTFIT_ANALYSIS = "outfit_analysis"
TASK_CLOSET_EXTRACTION = "closet_extraction"

OUTFIT_ANALYSIS_SYS = (
    "You are a professional fashion analyst providing clinical outfit evaluation. "
    "Score the outfit on a 0-100 scale using these weighted sub-metrics: "
    "proportion/silhouette (25%), technical fit (20%), color harmony (20%), "
    "pattern/texture (10%), layering logic (10%), formality/occasion (10%), "
    "footwear cohesion (5%). "
    "For each garment identify category, fit, color, pattern and material with confidence scores (0-1). "
    "Respond ONLY with a single JSON object. Professional tone, specific and actionable."
)

OUTFIT_ANALYSIS_SHAPE = """{
  "overall_score": <0-100>,
  "style_category": "<primary_style>",
  "style_score": <0-100>,
  "fit_score": <0-100>,
  "color_score": <0-100>,
  "occasion_appropriateness": <0-100>,
  "sub_scores": {
    "proportion_silhouette": <0-100>,
    "fit_technical": <0-100>,
    "color_harmony": <0-100>,
    "pattern_texture": <0-100>,
    "layering_logic": <0-100>,
    "formality_occasion": <0-100>,
    "footwear_cohesion": <0-100>
  },
  "detailed_feedback": {
    "strengths": ["..."],
    "improvements": ["..."],
    "style_alignment": "how well the outfit matches the user's preferences"
  },
  "garment_detection": [{
    "item_id": "id",
    "category": "type",
    "attributes": {"fit": "", "color": "", "pattern": "", "material": "", "length": "",
                   "sleeve_length": "", "neckline": "", "waistline": "", "hem_treatment": "", "layer_order": 1},
    "confidence_scores": {"fit": 0.8, "color": 0.9, "pattern": 0.7}
  }],
  "outfit_assessment": {
    "proportions": {"top_length_ratio": 0.6, "silhouette_shape": "shape"},
    "color_analysis": {"palette": ["color"], "scheme": "scheme", "outliers": []},
    "formality_level": {"score": 75, "reasoning": "reason"}
  },
  "recommendations": {
    "minor_adjustments": ["..."],
    "closet_recommendations": ["..."],
    "new_item_suggestions": ["..."]
  },
  "confidence_flags": ["..."],
  "analysis_completeness": <0-100>
}"""

CLOSET_EXTRACTION_SYS = (
    "You are a professional wardrobe cataloging assistant. Extract individual clothing items "
    "from the photo for digital closet management. For each item give a bounding box "
    "(x1,y1,x2,y2) as percentages of the image dimensions; boxes may overlap where garments layer, "
    "and should cover the full extent of the item even when partially hidden. "
    "Include main garments (tops, bottoms, dresses, outerwear, shoes) and accessories "
    "(bags, hats, belts, scarves, jewelry, watches). "
    "Skip glasses, sunglasses, undergarments, reflections and partial items. "
    "Respond ONLY with a single JSON object."
)

CLOSET_EXTRACTION_SHAPE = """{
  "items": [{
    "item_id": "unique_identifier",
    "category": "shirt|pants|dress|shoes|jacket|bag|hat|belt|scarf|jewelry|watch|...",
    "description": "detailed item description",
    "bounding_box": {"x1": <0-100>, "y1": <0-100>, "x2": <0-100>, "y2": <0-100>},
    "attributes": {
      "color": "primary color",
      "pattern": "solid|striped|plaid|floral|...",
      "material": "cotton|wool|polyester|...",
      "brand": "brand if visible",
      "size_estimate": "XS|S|M|L|XL",
      "style_tags": ["casual"],
      "formality_level": <0-100>,
      "season_tags": ["spring", "summer", "fall", "winter", "all-season"]
    },
    "confidence_scores": {"detection": <0-1>, "isolation": <0-1>, "attributes": <0-1>},
    "closet_suitability": <0-1>
  }],
  "image_analysis": {
    "estimated_dimensions": {"width": <px>, "height": <px>},
    "lighting_quality": "excellent|good|fair|poor",
    "background_complexity": "simple|moderate|complex"
  }
}"""

EXTRACTION_USER_TEXT = {
    "outfit": (
        "Extract all individual clothing items from this outfit photo for closet cataloging. "
        "Focus on garments that can be cleanly separated and cataloged."
    ),
    "individual_items": "Catalog this individual clothing item with detailed attributes for wardrobe management.",
}


def _image_part(image_url: str) -> Dict[str, Any]:
    return {"type": "image_url", "image_url": {"url": image_url}}


def _hints_line(hints: Sequence[str] | None) -> str:
    cleaned = [h.strip() for h in (hints or []) if h and h.strip()]
    if not cleaned:
        return "User's style preferences: none given"
    return f"User's style preferences (prioritize these): {', '.join(cleaned)}"


def build_outfit_analysis_prompt(image_url: str, preference_hints: Sequence[str] | None = None) -> List[Dict[str, Any]]:
    text = (
        "Analyze this outfit photo and provide detailed feedback.\n\n"
        f"{_hints_line(preference_hints)}\n\n"
        f"Return JSON with this structure:\n{OUTFIT_ANALYSIS_SHAPE}"
    )
    return [
        {"role": "system", "content": OUTFIT_ANALYSIS_SYS},
        {"role": "user", "content": [{"type": "text", "text": text}, _image_part(image_url)]},
    ]


def build_closet_extraction_prompt(image_url: str, mode: str = "outfit") -> List[Dict[str, Any]]:
    intro = EXTRACTION_USER_TEXT.get(mode, EXTRACTION_USER_TEXT["outfit"])
    text = f"{intro}\n\nReturn JSON with this exact structure:\n{CLOSET_EXTRACTION_SHAPE}"
    return [
        {"role": "system", "content": CLOSET_EXTRACTION_SYS},
        {"role": "user", "content": [{"type": "text", "text": text}, _image_part(image_url)]},
    ]


def build_messages(task_kind: str, image_url: str, prompt_context: Dict[str, Any] | None = None) -> List[Dict[str, Any]]:
    ctx = prompt_context or {}
    if task_kind == TASK_OUTFIT_ANALYSIS:
        return build_outfit_analysis_prompt(image_url, ctx.get("preference_hints"))
    if task_kind == TASK_CLOSET_EXTRACTION:
        return build_closet_extraction_prompt(image_url, ctx.get("mode") or "outfit")
    raise ValueError(f"unknown task_kind: {task_kind}")
