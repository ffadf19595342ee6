from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.schemas.closet import ClosetItemOut


class AnalysisIn(BaseModel):
    image_ref: str = Field(min_length=1)
    preference_hints: Optional[List[str]] = None


class AnalysisQueuedOut(BaseModel):
    status: str
    analysis_id: str


class AnalysisStatusOut(BaseModel):
    analysis_id: str
    status: str
    source: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0
    analyzed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AnalysisOut(BaseModel):
    analysis_id: str
    status: str
    source: Optional[str] = None
    image_ref: str
    preference_hints: List[str] = Field(default_factory=list)
    result: Optional[Dict[str, Any]] = None
    model_meta: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    analyzed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class DetectionOut(BaseModel):
    detection_id: str
    category: str
    attributes: Dict[str, Any] = Field(default_factory=dict)
    confidence_scores: Dict[str, float] = Field(default_factory=dict)
    mean_confidence: float
    state: str
    closet_item_id: Optional[str] = None
    match_confidence: Optional[float] = None


class DetectionListOut(BaseModel):
    analysis_id: str
    detections: List[DetectionOut]


class MatchLinkOut(BaseModel):
    detection_id: str
    closet_item_id: str
    match_confidence: float
    user_confirmed: bool
    user_rejected: bool


class ProposedMatchOut(BaseModel):
    detection_id: str
    match: Optional[MatchLinkOut] = None
    closet_item: Optional[ClosetItemOut] = None


class CatalogueIn(BaseModel):
    detection_ids: List[str] = Field(min_length=1)


class CataloguedOut(BaseModel):
    detection_id: str
    closet_item_id: str


class CatalogueFailureOut(BaseModel):
    detection_id: str
    reason: str


class CatalogueOut(BaseModel):
    catalogued: List[CataloguedOut] = Field(default_factory=list)
    failed: List[CatalogueFailureOut] = Field(default_factory=list)
