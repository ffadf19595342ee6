from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

Condition = Literal["excellent", "good", "fair", "poor"]
ClosetSource = Literal["manual", "photo_detection", "photo_extraction"]


class ClosetItemCreate(BaseModel):
    category: str = Field(min_length=1, max_length=50)
    subcategory: Optional[str] = None
    color: Optional[str] = None
    pattern: Optional[str] = None
    material: Optional[str] = None
    brand: Optional[str] = None
    size: Optional[str] = None
    style_tags: Optional[List[str]] = None
    formality_level: Optional[int] = Field(None, ge=0, le=100)
    season_tags: Optional[List[str]] = None
    condition: Optional[str] = "good"
    image_refs: Optional[List[str]] = None
    notes: Optional[str] = None


class ClosetItemUpdate(BaseModel):
    category: Optional[str] = Field(None, min_length=1, max_length=50)
    subcategory: Optional[str] = None
    color: Optional[str] = None
    pattern: Optional[str] = None
    material: Optional[str] = None
    brand: Optional[str] = None
    size: Optional[str] = None
    style_tags: Optional[List[str]] = None
    formality_level: Optional[int] = Field(None, ge=0, le=100)
    season_tags: Optional[List[str]] = None
    condition: Optional[str] = None
    image_refs: Optional[List[str]] = None
    notes: Optional[str] = None


class ClosetItemOut(BaseModel):
    id: str
    category: str
    subcategory: Optional[str] = None
    color: Optional[str] = None
    pattern: Optional[str] = None
    material: Optional[str] = None
    brand: Optional[str] = None
    size: Optional[str] = None
    style_tags: List[str] = Field(default_factory=list)
    formality_level: Optional[int] = None
    season_tags: List[str] = Field(default_factory=list)
    condition: Condition = "good"
    source: ClosetSource = "manual"
    source_analysis_id: Optional[str] = None
    source_extraction_id: Optional[str] = None
    detection_confidence: Optional[float] = None
    image_refs: List[str] = Field(default_factory=list)
    notes: Optional[str] = None
    extraction_metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
