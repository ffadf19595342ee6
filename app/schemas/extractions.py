from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class ExtractionIn(BaseModel):
    image_ref: str = Field(min_length=1)
    mode: Literal["outfit", "individual_items"] = "outfit"


class ExtractedItemOut(BaseModel):
    item_id: str
    category: str
    description: Optional[str] = None
    bounding_box: Dict[str, float]
    box_scale: str
    attributes: Dict[str, Any] = Field(default_factory=dict)
    confidence_scores: Dict[str, float] = Field(default_factory=dict)
    closet_suitability: float
    user_approved: bool = False
    user_rejected: bool = False
    user_edited_attributes: Optional[Dict[str, Any]] = None
    user_feedback: Optional[str] = None
    created_closet_item_id: Optional[str] = None


class ExtractionOut(BaseModel):
    extraction_id: str
    status: str
    extraction_type: str
    image_ref: str
    extracted_items_count: int = 0
    approved_items_count: int = 0
    user_reviewed: bool = False
    confidence_flags: List[str] = Field(default_factory=list)
    processing_metadata: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    items: List[ExtractedItemOut] = Field(default_factory=list)


class ExtractionListOut(BaseModel):
    extractions: List[ExtractionOut]


class ItemEditIn(BaseModel):
    attributes: Dict[str, Any] = Field(default_factory=dict)
    feedback: Optional[str] = Field(None, max_length=2000)


class ApproveIn(BaseModel):
    item_ids: List[str] = Field(min_length=1)
    edits: Dict[str, ItemEditIn] = Field(default_factory=dict)


class RejectIn(BaseModel):
    feedback: Optional[str] = Field(None, max_length=2000)


class ApprovedOut(BaseModel):
    item_id: str
    closet_item_id: str


class ApprovalFailureOut(BaseModel):
    item_id: str
    reason: str


class ApproveOut(BaseModel):
    approved: List[ApprovedOut] = Field(default_factory=list)
    failed: List[ApprovalFailureOut] = Field(default_factory=list)
