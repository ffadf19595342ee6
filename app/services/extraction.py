from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.tags import normalize_season_tags, normalize_tag
from app.models.models import ClosetItem, ExtractedItem, PhotoExtraction
from app.services.closet_matcher import acquire_owner_lock
from app.services.vision.client import VisionModelClient, get_client
from app.services.vision.errors import VisionModelError
from app.services.vision.extraction import normalize_extraction
from app.services.vision.prompts import TASK_CLOSET_EXTRACTION
from app.services.vision.types import ExtractedGarment, ExtractionResult
from app.storage.r2 import resolve_image_url

logger = logging.getLogger("uvicorn.error")

EXTRACTION_MODES = ("outfit", "individual_items")


class ExtractionError(Exception):
    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


class ExtractionNotFound(ExtractionError):
    pass


class ExtractionConflict(ExtractionError):
    pass


class ExtractionPersistenceError(ExtractionError):
    pass


@dataclass
class ExtractionRun:
    extraction: PhotoExtraction
    items: List[ExtractedItem] = field(default_factory=list)


@dataclass
class ApprovalReport:
    approved: List[Tuple[str, str]] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)


def _safe_tags(values: Iterable[str]) -> List[str]:
    out: List[str] = []
    for v in values or []:
        try:
            t = normalize_tag(v)
        except ValueError:
            continue
        if t not in out:
            out.append(t)
    return out


def _processing_metadata(result: ExtractionResult, *, model: str, started: float, attempts: int) -> dict:
    return {
        "ai_model_used": model,
        "processing_time_ms": int((time.perf_counter() - started) * 1000),
        "total_items_detected": len(result.items),
        "high_confidence_items": result.high_confidence_count(settings.EXTRACTION_HIGH_CONFIDENCE),
        "attempts": attempts,
        "image_analysis": result.image_analysis,
    }


async def _insert_items(session: AsyncSession, extraction_id: UUID, items: Sequence[ExtractedGarment]) -> int:
    res = await session.execute(select(ExtractedItem.item_id).where(ExtractedItem.extraction_id == extraction_id))
    existing = set(res.scalars().all())
    inserted = 0
    for garment in items:
        if garment.item_id in existing:
            continue
        row = ExtractedItem(
            extraction_id=extraction_id,
            item_id=garment.item_id,
            category=garment.category[:50],
            description=garment.description or None,
            bounding_box=garment.bounding_box.model_dump(),
            box_scale=garment.box_scale,
            attributes=garment.attributes.model_dump(),
            confidence_scores=dict(garment.confidence),
            closet_suitability=garment.closet_suitability,
        )
        try:
            async with session.begin_nested():
                session.add(row)
                await session.flush()
        except IntegrityError:
            logger.info("extraction: item exists extraction_id=%s item_id=%s", extraction_id, garment.item_id)
            continue
        existing.add(garment.item_id)
        inserted += 1
    return inserted


async def _mark_failed(session: AsyncSession, extraction_id: UUID, error: str) -> None:
    extraction = await session.get(PhotoExtraction, extraction_id)
    if not extraction:
        return
    extraction.status = "failed"
    extraction.error = error[:500]
    extraction.updated_at = datetime.now(timezone.utc)
    await session.commit()


async def run_extraction(
    session: AsyncSession,
    owner_id: UUID | str,
    image_ref: str,
    mode: str = "outfit",
    *,
    client: Optional[VisionModelClient] = None,
) -> ExtractionRun:
    if mode not in EXTRACTION_MODES:
        raise ValueError("invalid_extraction_mode")
    started = time.perf_counter()
    extraction = PhotoExtraction(
        user_id=UUID(str(owner_id)),
        image_ref=image_ref,
        extraction_type=mode,
        status="processing",
    )
    try:
        session.add(extraction)
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        raise ExtractionPersistenceError("extraction_persist_failed") from e
    extraction_id = extraction.id
    logger.info("extraction: start extraction_id=%s mode=%s", extraction_id, mode)

    try:
        url = resolve_image_url(image_ref, expires=settings.LLM_VISION_URL_TTL_S)
    except ValueError as e:
        await _mark_failed(session, extraction_id, str(e))
        raise

    vision = client or get_client()
    try:
        response = await vision.invoke_detailed(TASK_CLOSET_EXTRACTION, url, {"mode": mode})
    except VisionModelError as e:
        logger.warning("extraction: model failed extraction_id=%s err=%s", extraction_id, e)
        await _mark_failed(session, extraction_id, f"model_failed:{type(e).__name__}")
        await session.refresh(extraction)
        return ExtractionRun(extraction=extraction, items=[])

    result = normalize_extraction(response.text)
    try:
        extraction.status = "completed"
        extraction.extracted_items_count = len(result.items)
        extraction.confidence_flags = list(result.confidence_flags)
        extraction.processing_metadata = _processing_metadata(
            result, model=response.usage.model, started=started, attempts=response.usage.attempts
        )
        extraction.error = None
        extraction.updated_at = datetime.now(timezone.utc)
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error("extraction: primary write failed extraction_id=%s reason=%s", extraction_id, e)
        raise ExtractionPersistenceError("extraction_persist_failed") from e

    try:
        inserted = await _insert_items(session, extraction_id, result.items)
        await session.commit()
    except Exception as e:
        await session.rollback()
        logger.warning("extraction: item rows failed extraction_id=%s reason=%s", extraction_id, e)
        inserted = 0

    await session.refresh(extraction)
    logger.info(
        "extraction: done extraction_id=%s items=%s inserted=%s flags=%s",
        extraction_id,
        len(result.items),
        inserted,
        ",".join(result.confidence_flags),
    )
    return ExtractionRun(extraction=extraction, items=await list_extracted_items(session, extraction_id))


async def get_extraction(session: AsyncSession, owner_id: UUID | str, extraction_id: UUID | str) -> PhotoExtraction:
    try:
        extraction_uuid = UUID(str(extraction_id))
    except ValueError:
        raise ExtractionNotFound("extraction_not_found")
    extraction = await session.get(PhotoExtraction, extraction_uuid)
    if not extraction or str(extraction.user_id) != str(owner_id):
        raise ExtractionNotFound("extraction_not_found")
    return extraction


async def list_extractions(session: AsyncSession, owner_id: UUID | str, limit: int = 50) -> List[PhotoExtraction]:
    res = await session.execute(
        select(PhotoExtraction)
        .where(PhotoExtraction.user_id == UUID(str(owner_id)))
        .order_by(PhotoExtraction.created_at.desc())
        .limit(limit)
    )
    return list(res.scalars().all())


async def list_extracted_items(session: AsyncSession, extraction_id: UUID) -> List[ExtractedItem]:
    res = await session.execute(
        select(ExtractedItem)
        .where(ExtractedItem.extraction_id == extraction_id)
        .order_by(ExtractedItem.closet_suitability.desc(), ExtractedItem.item_id)
    )
    return list(res.scalars().all())


async def _find_item(session: AsyncSession, extraction_id: UUID, item_id: str) -> Optional[ExtractedItem]:
    res = await session.execute(
        select(ExtractedItem).where(ExtractedItem.extraction_id == extraction_id, ExtractedItem.item_id == item_id)
    )
    return res.scalar_one_or_none()


def _clip(value: Any, length: int) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)[:length]


def _tag_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value]
    return list(value or [])


def _effective_attributes(row: ExtractedItem) -> Dict[str, Any]:
    merged = dict(row.attributes or {})
    merged.update(row.user_edited_attributes or {})
    return merged


def _closet_item_from_extracted(extraction: PhotoExtraction, row: ExtractedItem) -> ClosetItem:
    attrs = _effective_attributes(row)
    formality = attrs.get("formality_level")
    if isinstance(formality, bool) or not isinstance(formality, (int, float)):
        formality = None
    size = attrs.get("size") or attrs.get("size_estimate")
    return ClosetItem(
        user_id=extraction.user_id,
        category=_clip(attrs.get("category"), 50) or row.category,
        color=_clip(attrs.get("color"), 50),
        pattern=_clip(attrs.get("pattern"), 50),
        material=_clip(attrs.get("material"), 50),
        brand=_clip(attrs.get("brand"), 100),
        size=_clip(size, 20),
        style_tags=_safe_tags(_tag_list(attrs.get("style_tags"))),
        formality_level=int(formality) if formality is not None else None,
        season_tags=normalize_season_tags(_safe_tags(_tag_list(attrs.get("season_tags")))),
        condition="good",
        source="photo_extraction",
        source_extraction_id=extraction.id,
        detection_confidence=row.closet_suitability,
        image_refs=[extraction.image_ref] if extraction.image_ref else [],
        notes=row.description,
        extraction_metadata={
            "item_id": row.item_id,
            "bounding_box": dict(row.bounding_box or {}),
            "box_scale": row.box_scale,
            "confidence_scores": dict(row.confidence_scores or {}),
            "original_attributes": dict(row.attributes or {}),
        },
    )


async def approve_extracted_items(
    session: AsyncSession,
    owner_id: UUID | str,
    extraction_id: UUID | str,
    item_ids: Sequence[str],
    *,
    edited_attributes: Optional[Mapping[str, Dict[str, Any]]] = None,
    feedback: Optional[Mapping[str, str]] = None,
) -> ApprovalReport:
    """Turn extracted items into closet items, one savepoint per item.

    ``edited_attributes`` holds the user's corrections per item id; they are
    stored on the extracted row and win over the model's attributes.
    """
    edited_attributes = edited_attributes or {}
    feedback = feedback or {}
    extraction = await get_extraction(session, owner_id, extraction_id)
    await acquire_owner_lock(session, extraction.user_id)
    report = ApprovalReport()
    seen: set[str] = set()
    for item_id in item_ids:
        if item_id in seen:
            report.failed.append((item_id, "duplicate_in_batch"))
            continue
        seen.add(item_id)
        row = await _find_item(session, extraction.id, item_id)
        if not row:
            report.failed.append((item_id, "not_found"))
            continue
        if row.created_closet_item_id:
            report.failed.append((item_id, "already_catalogued"))
            continue
        try:
            async with session.begin_nested():
                if item_id in edited_attributes:
                    row.user_edited_attributes = dict(edited_attributes[item_id])
                if feedback.get(item_id):
                    row.user_feedback = feedback[item_id]
                closet_item = _closet_item_from_extracted(extraction, row)
                session.add(closet_item)
                await session.flush()
                row.created_closet_item_id = closet_item.id
                row.user_approved = True
                row.user_rejected = False
                row.updated_at = datetime.now(timezone.utc)
                await session.flush()
        except SQLAlchemyError as e:
            logger.warning("extraction: approve failed extraction_id=%s item_id=%s reason=%s", extraction.id, item_id, e)
            report.failed.append((item_id, "persist_failed"))
            continue
        report.approved.append((item_id, str(closet_item.id)))

    res = await session.execute(
        select(func.count())
        .select_from(ExtractedItem)
        .where(ExtractedItem.extraction_id == extraction.id, ExtractedItem.user_approved.is_(True))
    )
    extraction.approved_items_count = int(res.scalar_one() or 0)
    extraction.user_reviewed = True
    extraction.updated_at = datetime.now(timezone.utc)
    await session.commit()
    logger.info(
        "extraction: approve extraction_id=%s approved=%s failed=%s",
        extraction.id,
        len(report.approved),
        len(report.failed),
    )
    return report


async def reject_extracted_item(
    session: AsyncSession,
    owner_id: UUID | str,
    extraction_id: UUID | str,
    item_id: str,
    feedback: Optional[str] = None,
) -> ExtractedItem:
    extraction = await get_extraction(session, owner_id, extraction_id)
    row = await _find_item(session, extraction.id, item_id)
    if not row:
        raise ExtractionNotFound("extracted_item_not_found")
    if row.created_closet_item_id:
        raise ExtractionConflict("already_catalogued")
    if row.user_rejected:
        raise ExtractionConflict("already_rejected")
    now = datetime.now(timezone.utc)
    row.user_rejected = True
    row.user_approved = False
    if feedback:
        row.user_feedback = feedback
    row.updated_at = now
    extraction.user_reviewed = True
    extraction.updated_at = now
    await session.commit()
    await session.refresh(row)
    return row


async def delete_extraction(session: AsyncSession, owner_id: UUID | str, extraction_id: UUID | str) -> None:
    """Remove an extraction and its extracted items.

    Closet items created from it are kept and lose only their source link.
    """
    extraction = await get_extraction(session, owner_id, extraction_id)
    eid = extraction.id
    await session.execute(
        update(ClosetItem)
        .where(ClosetItem.source_extraction_id == eid)
        .values(source_extraction_id=None)
    )
    res = await session.execute(delete(ExtractedItem).where(ExtractedItem.extraction_id == eid))
    await session.delete(extraction)
    await session.commit()
    logger.info("extraction: deleted extraction_id=%s items=%s", eid, res.rowcount)
