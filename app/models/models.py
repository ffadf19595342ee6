from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Float, Boolean, ForeignKey, DateTime, Text, JSON, Uuid, UniqueConstraint, Index
from sqlalchemy.sql import func
import uuid
from datetime import datetime, timezone
from app.core.db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "user"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str | None] = mapped_column(Text, unique=True, nullable=True)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    style_preferences: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now())


class OutfitAnalysis(Base):
    __tablename__ = "outfit_analysis"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True)
    image_ref: Mapped[str] = mapped_column(Text, nullable=False)
    preference_hints: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(String(24), default="pending", index=True)
    source: Mapped[str | None] = mapped_column(String(24), nullable=True)
    result_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    model_meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    analyzed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)


class OutfitScore(Base):
    __tablename__ = "outfit_score"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    analysis_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("outfit_analysis.id", ondelete="CASCADE"), unique=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("user.id", ondelete="CASCADE"), nullable=False)
    overall_score: Mapped[float] = mapped_column(Float)
    style_score: Mapped[float] = mapped_column(Float)
    fit_score: Mapped[float] = mapped_column(Float)
    color_score: Mapped[float] = mapped_column(Float)
    occasion_score: Mapped[float] = mapped_column(Float)
    style_category: Mapped[str | None] = mapped_column(Text, nullable=True)
    sub_scores: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    completeness: Mapped[int] = mapped_column(Integer, default=100)
    confidence_flags: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    feedback: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now())


class GarmentDetection(Base):
    __tablename__ = "garment_detection"
    __table_args__ = (UniqueConstraint("analysis_id", "detection_id", name="uq_garment_detection_analysis_detection"),)
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    analysis_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("outfit_analysis.id", ondelete="CASCADE"), index=True)
    detection_id: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    color: Mapped[str | None] = mapped_column(String(50), nullable=True)
    pattern: Mapped[str | None] = mapped_column(String(50), nullable=True)
    material: Mapped[str | None] = mapped_column(String(50), nullable=True)
    fit: Mapped[str | None] = mapped_column(String(100), nullable=True)
    length: Mapped[str | None] = mapped_column(String(50), nullable=True)
    sleeve_length: Mapped[str | None] = mapped_column(String(50), nullable=True)
    neckline: Mapped[str | None] = mapped_column(String(50), nullable=True)
    waistline: Mapped[str | None] = mapped_column(String(50), nullable=True)
    hem_treatment: Mapped[str | None] = mapped_column(String(50), nullable=True)
    layer_order: Mapped[int | None] = mapped_column(Integer, nullable=True)
    confidence_scores: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    all_attributes: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now())


class OutfitAssessment(Base):
    __tablename__ = "outfit_assessment"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    analysis_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("outfit_analysis.id", ondelete="CASCADE"), unique=True)
    silhouette_shape: Mapped[str | None] = mapped_column(String(100), nullable=True)
    top_length_ratio: Mapped[float | None] = mapped_column(Float, nullable=True)
    color_palette: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    color_scheme: Mapped[str | None] = mapped_column(String(50), nullable=True)
    formality_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    formality_reasoning: Mapped[str | None] = mapped_column(Text, nullable=True)
    full_assessment: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now())


class OutfitRecommendation(Base):
    __tablename__ = "outfit_recommendation"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    analysis_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("outfit_analysis.id", ondelete="CASCADE"), index=True)
    recommendation_type: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now())


class ClosetItem(Base):
    __tablename__ = "closet_item"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    subcategory: Mapped[str | None] = mapped_column(String(50), nullable=True)
    color: Mapped[str | None] = mapped_column(String(50), nullable=True)
    pattern: Mapped[str | None] = mapped_column(String(50), nullable=True)
    material: Mapped[str | None] = mapped_column(String(50), nullable=True)
    brand: Mapped[str | None] = mapped_column(String(100), nullable=True)
    size: Mapped[str | None] = mapped_column(String(20), nullable=True)
    style_tags: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    formality_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    season_tags: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    condition: Mapped[str] = mapped_column(String(16), default="good")
    source: Mapped[str] = mapped_column(String(32), default="manual")
    source_analysis_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("outfit_analysis.id", ondelete="SET NULL"), nullable=True)
    source_extraction_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("photo_extraction.id", ondelete="SET NULL"), nullable=True)
    source_detection_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("garment_detection.id", ondelete="SET NULL"), nullable=True)
    detection_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    image_refs: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    extraction_metadata: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)


class ClosetMatchLink(Base):
    __tablename__ = "closet_match_link"
    __table_args__ = (
        UniqueConstraint("garment_detection_id", "closet_item_id", name="uq_closet_match_link_detection_item"),
        Index("ix_closet_match_link_active", "garment_detection_id", "user_rejected", "match_confidence"),
    )
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    garment_detection_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("garment_detection.id", ondelete="CASCADE"))
    closet_item_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("closet_item.id", ondelete="CASCADE"), index=True)
    match_confidence: Mapped[float] = mapped_column(Float, nullable=False)
    user_confirmed: Mapped[bool] = mapped_column(Boolean, default=False)
    user_rejected: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)


class PhotoExtraction(Base):
    __tablename__ = "photo_extraction"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True)
    image_ref: Mapped[str] = mapped_column(Text, nullable=False)
    extraction_type: Mapped[str] = mapped_column(String(32), default="outfit")
    status: Mapped[str] = mapped_column(String(24), default="pending")
    extracted_items_count: Mapped[int] = mapped_column(Integer, default=0)
    approved_items_count: Mapped[int] = mapped_column(Integer, default=0)
    processing_metadata: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    confidence_flags: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    user_reviewed: Mapped[bool] = mapped_column(Boolean, default=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)


class ExtractedItem(Base):
    __tablename__ = "extracted_item"
    __table_args__ = (UniqueConstraint("extraction_id", "item_id", name="uq_extracted_item_extraction_item"),)
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    extraction_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("photo_extraction.id", ondelete="CASCADE"), index=True)
    item_id: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    bounding_box: Mapped[dict] = mapped_column(JSON, nullable=False)
    box_scale: Mapped[str] = mapped_column(String(16), default="percent")
    attributes: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    confidence_scores: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    closet_suitability: Mapped[float] = mapped_column(Float, default=0.0)
    user_approved: Mapped[bool] = mapped_column(Boolean, default=False)
    user_rejected: Mapped[bool] = mapped_column(Boolean, default=False)
    user_edited_attributes: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    user_feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_closet_item_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("closet_item.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)
