"""Outfit analysis orchestration: resolve image -> vision model -> normalize -> fan-out."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.models import OutfitAnalysis, User
from app.services.analysis_writer import (
    AnalysisAlreadyCompleted,
    AnalysisPersistenceError,
    FanOutReport,
    commit_analysis,
)
from app.services.vision.client import VisionModelClient, get_client
from app.services.vision.errors import VisionModelError
from app.services.vision.normalizer import fallback_analysis, normalize
from app.services.vision.prompts import TASK_OUTFIT_ANALYSIS
from app.storage.r2 import ImageRefError, resolve_image_url

logger = logging.getLogger("uvicorn.error")

FLAG_MODEL_UNAVAILABLE = "model_unavailable"
OPEN_STATUSES = ("pending", "processing")


class AnalysisNotFound(Exception):
    pass


@dataclass
class AnalysisOutcome:
    analysis: OutfitAnalysis
    report: FanOutReport


def _clean_hints(hints: Optional[Sequence[str]]) -> List[str]:
    out: List[str] = []
    for h in hints or []:
        v = (h or "").strip()
        if v and v not in out:
            out.append(v)
    return out


async def _default_hints(session: AsyncSession, owner_id: UUID) -> List[str]:
    user = await session.get(User, owner_id)
    return _clean_hints(user.style_preferences if user else None)


async def create_analysis(
    session: AsyncSession,
    owner_id: UUID | str,
    image_ref: str,
    preference_hints: Optional[Sequence[str]] = None,
) -> OutfitAnalysis:
    owner_uuid = UUID(str(owner_id))
    hints = _clean_hints(preference_hints)
    if preference_hints is None:
        hints = await _default_hints(session, owner_uuid)
    analysis = OutfitAnalysis(
        user_id=owner_uuid,
        image_ref=image_ref,
        preference_hints=hints,
        status="pending",
        attempts=0,
    )
    session.add(analysis)
    await session.commit()
    await session.refresh(analysis)
    logger.info("analysis: created analysis_id=%s", analysis.id)
    return analysis


async def _mark_failed(session: AsyncSession, analysis_id: UUID, error: str) -> None:
    try:
        await session.execute(
            update(OutfitAnalysis)
            .where(OutfitAnalysis.id == analysis_id, OutfitAnalysis.status != "completed")
            .values(status="failed", error=error[:500], updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session="evaluate")
        )
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error("analysis: could not mark failed analysis_id=%s reason=%s", analysis_id, e)


async def process_analysis(
    session: AsyncSession,
    analysis_id: UUID | str,
    *,
    client: Optional[VisionModelClient] = None,
) -> FanOutReport:
    """Run the model for an existing analysis record and persist the result.

    Model failures never fail the run: once retries are exhausted the neutral
    fallback analysis is stored with ``source=fallback``. Only an unusable
    image reference or a failed primary write leaves the record ``failed``.
    """
    analysis = await session.get(OutfitAnalysis, UUID(str(analysis_id)))
    if not analysis:
        raise AnalysisNotFound("analysis_not_found")
    if analysis.status == "completed":
        raise AnalysisAlreadyCompleted("analysis_already_completed")
    aid = analysis.id
    owner_id = analysis.user_id
    image_ref = analysis.image_ref
    hints = list(analysis.preference_hints or [])

    res = await session.execute(
        update(OutfitAnalysis)
        .where(OutfitAnalysis.id == aid, OutfitAnalysis.status != "completed")
        .values(
            status="processing",
            attempts=(analysis.attempts or 0) + 1,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session="evaluate")
    )
    if res.rowcount == 0:
        await session.rollback()
        raise AnalysisAlreadyCompleted("analysis_already_completed")
    await session.commit()

    try:
        url = resolve_image_url(image_ref, expires=settings.LLM_VISION_URL_TTL_S)
    except ImageRefError as e:
        logger.warning("analysis: image unresolved analysis_id=%s reason=%s", aid, e)
        await _mark_failed(session, aid, str(e))
        raise

    vision = client or get_client()
    try:
        response = await vision.invoke_detailed(TASK_OUTFIT_ANALYSIS, url, {"preference_hints": hints})
        canonical = normalize(response.text)
        source = "model"
        model_meta = response.usage.model_dump()
    except VisionModelError as e:
        logger.warning("analysis: model unavailable analysis_id=%s err=%s using=fallback", aid, e)
        canonical = fallback_analysis(flags=(FLAG_MODEL_UNAVAILABLE,))
        source = "fallback"
        model_meta = {"model": vision.model, "error": type(e).__name__}

    try:
        report = await commit_analysis(session, owner_id, aid, canonical, source=source, model_meta=model_meta)
    except AnalysisPersistenceError as e:
        await _mark_failed(session, aid, f"persist_failed:{e}")
        raise
    logger.info(
        "analysis: completed analysis_id=%s source=%s overall=%.1f completeness=%s",
        aid,
        source,
        canonical.overall_score,
        canonical.completeness,
    )
    return report


async def run_analysis(
    session: AsyncSession,
    owner_id: UUID | str,
    image_ref: str,
    preference_hints: Optional[Sequence[str]] = None,
    *,
    client: Optional[VisionModelClient] = None,
) -> AnalysisOutcome:
    analysis = await create_analysis(session, owner_id, image_ref, preference_hints)
    report = await process_analysis(session, analysis.id, client=client)
    await session.refresh(analysis)
    return AnalysisOutcome(analysis=analysis, report=report)


async def enqueue_analysis(
    session: AsyncSession,
    owner_id: UUID | str,
    image_ref: str,
    preference_hints: Optional[Sequence[str]] = None,
) -> OutfitAnalysis:
    from workers.tasks import analyze_outfit

    analysis = await create_analysis(session, owner_id, image_ref, preference_hints)
    analyze_outfit.apply_async(args=[str(analysis.id)], queue="images")
    logger.info("analysis: queued analysis_id=%s", analysis.id)
    return analysis


async def get_analysis(session: AsyncSession, owner_id: UUID | str, analysis_id: UUID | str) -> OutfitAnalysis:
    try:
        analysis_uuid = UUID(str(analysis_id))
    except ValueError:
        raise AnalysisNotFound("analysis_not_found")
    analysis = await session.get(OutfitAnalysis, analysis_uuid)
    if not analysis or str(analysis.user_id) != str(owner_id):
        raise AnalysisNotFound("analysis_not_found")
    return analysis


async def get_status(session: AsyncSession, owner_id: UUID | str, analysis_id: UUID | str) -> OutfitAnalysis:
    return await get_analysis(session, owner_id, analysis_id)


async def fail_stale_analyses(session: AsyncSession, older_than_s: Optional[int] = None) -> int:
    """Mark analyses stuck in pending/processing for too long as failed."""
    cutoff_s = settings.ANALYSIS_STALE_AFTER_S if older_than_s is None else older_than_s
    now = datetime.now(timezone.utc)
    cutoff = now - timedelta(seconds=cutoff_s)
    res = await session.execute(
        select(OutfitAnalysis.id).where(
            OutfitAnalysis.status.in_(OPEN_STATUSES),
            OutfitAnalysis.updated_at < cutoff,
        )
    )
    ids = list(res.scalars().all())
    if not ids:
        return 0
    await session.execute(
        update(OutfitAnalysis)
        .where(OutfitAnalysis.id.in_(ids), OutfitAnalysis.status.in_(OPEN_STATUSES))
        .values(status="failed", error="stale_timeout", updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    logger.warning("analysis: stale sweep failed=%s cutoff_s=%s", len(ids), cutoff_s)
    return len(ids)
