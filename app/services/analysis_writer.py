"""Persists a CanonicalAnalysis across the analysis tables.

The primary ``outfit_analysis`` record is written and committed first; if that
fails the caller gets ``AnalysisPersistenceError``, and a record that is
already ``completed`` is left untouched (``AnalysisAlreadyCompleted``). The derived rows (scores,
detections, assessment, recommendations) are enrichment: each group is
written in its own savepoint and committed on its own, so one bad group never
takes the others or the primary record down with it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.models import (
    GarmentDetection,
    OutfitAnalysis,
    OutfitAssessment,
    OutfitRecommendation,
    OutfitScore,
)
from app.services.vision.types import CanonicalAnalysis

logger = logging.getLogger("uvicorn.error")

RECOMMENDATION_CONFIDENCE = {
    "minor_adjustment": 0.8,
    "closet_item": 0.75,
    "new_purchase": 0.7,
}

STEP_SCORES = "scores"
STEP_DETECTIONS = "detections"
STEP_ASSESSMENT = "assessment"
STEP_RECOMMENDATIONS = "recommendations"

_SKIPPED = object()


class AnalysisPersistenceError(Exception):
    pass


class AnalysisAlreadyCompleted(Exception):
    pass


@dataclass
class FanOutReport:
    analysis_id: str
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    detections_inserted: int = 0

    @property
    def complete(self) -> bool:
        return not self.failed


async def _write_primary(
    session: AsyncSession,
    owner_id: UUID,
    analysis_id: UUID,
    canonical: CanonicalAnalysis,
    source: str,
    model_meta: Optional[Dict[str, Any]],
) -> None:
    analysis = await session.get(OutfitAnalysis, analysis_id)
    if not analysis or analysis.user_id != owner_id:
        raise AnalysisPersistenceError("analysis_not_found")
    now = datetime.now(timezone.utc)
    values: Dict[str, Any] = {
        "result_json": canonical.model_dump(mode="json"),
        "status": "completed",
        "source": source,
        "error": None,
        "analyzed_at": now,
        "updated_at": now,
    }
    if model_meta is not None:
        values["model_meta"] = model_meta
    # completed records are immutable; a second run loses the race here
    res = await session.execute(
        update(OutfitAnalysis)
        .where(OutfitAnalysis.id == analysis_id, OutfitAnalysis.status != "completed")
        .values(**values)
        .execution_options(synchronize_session="evaluate")
    )
    if res.rowcount == 0:
        raise AnalysisAlreadyCompleted("analysis_already_completed")
    await session.commit()


async def _write_scores(session: AsyncSession, owner_id: UUID, analysis_id: UUID, canonical: CanonicalAnalysis) -> Any:
    res = await session.execute(select(OutfitScore).where(OutfitScore.analysis_id == analysis_id))
    row = res.scalar_one_or_none()
    if not row:
        row = OutfitScore(analysis_id=analysis_id, user_id=owner_id)
        session.add(row)
    row.overall_score = canonical.overall_score
    row.style_category = canonical.style_category
    row.style_score = canonical.style_score
    row.fit_score = canonical.fit_score
    row.color_score = canonical.color_score
    row.occasion_score = canonical.occasion_score
    row.sub_scores = dict(canonical.sub_scores)
    row.completeness = canonical.completeness
    row.confidence_flags = list(canonical.confidence_flags)
    row.feedback = canonical.feedback.model_dump()
    await session.flush()
    return None


def _clip(value: Optional[str], column: str) -> Optional[str]:
    if value is None:
        return None
    return value[: GarmentDetection.__table__.c[column].type.length]


async def _write_detections(session: AsyncSession, analysis_id: UUID, canonical: CanonicalAnalysis) -> Any:
    if not canonical.detected_garments:
        return _SKIPPED
    res = await session.execute(
        select(GarmentDetection.detection_id).where(GarmentDetection.analysis_id == analysis_id)
    )
    existing = set(res.scalars().all())
    inserted = 0
    for det in canonical.detected_garments:
        if det.detection_id in existing:
            continue
        attrs = det.attributes
        row = GarmentDetection(
            analysis_id=analysis_id,
            detection_id=_clip(det.detection_id, "detection_id"),
            category=_clip(det.category, "category"),
            color=_clip(attrs.color, "color"),
            pattern=_clip(attrs.pattern, "pattern"),
            material=_clip(attrs.material, "material"),
            fit=_clip(attrs.fit, "fit"),
            length=_clip(attrs.length, "length"),
            sleeve_length=_clip(attrs.sleeve_length, "sleeve_length"),
            neckline=_clip(attrs.neckline, "neckline"),
            waistline=_clip(attrs.waistline, "waistline"),
            hem_treatment=_clip(attrs.hem_treatment, "hem_treatment"),
            layer_order=attrs.layer_order,
            confidence_scores=dict(det.confidence),
            all_attributes=attrs.model_dump(exclude_none=True),
        )
        try:
            async with session.begin_nested():
                session.add(row)
                await session.flush()
        except IntegrityError:
            # written concurrently by another run of the same analysis
            logger.info("analysis-writer: detection exists analysis_id=%s detection_id=%s", analysis_id, det.detection_id)
            continue
        except SQLAlchemyError as e:
            logger.warning(
                "analysis-writer: detection skipped analysis_id=%s detection_id=%s reason=%s",
                analysis_id,
                det.detection_id,
                e,
            )
            continue
        existing.add(det.detection_id)
        inserted += 1
    return inserted


def _assessment_projection(assessment: Dict[str, Any]) -> Dict[str, Any]:
    proportions = assessment.get("proportions") if isinstance(assessment.get("proportions"), dict) else {}
    colors = assessment.get("color_analysis") if isinstance(assessment.get("color_analysis"), dict) else {}
    formality = assessment.get("formality_level") if isinstance(assessment.get("formality_level"), dict) else {}

    def _float(v: Any) -> Optional[float]:
        try:
            return float(v) if v is not None and not isinstance(v, bool) else None
        except (TypeError, ValueError):
            return None

    palette = colors.get("palette")
    score = _float(formality.get("score"))
    return {
        "silhouette_shape": str(proportions["silhouette_shape"])[:100] if proportions.get("silhouette_shape") else None,
        "top_length_ratio": _float(proportions.get("top_length_ratio")),
        "color_palette": [str(c) for c in palette] if isinstance(palette, list) else None,
        "color_scheme": str(colors["scheme"])[:50] if colors.get("scheme") else None,
        "formality_score": int(round(min(max(score, 0.0), 100.0))) if score is not None else None,
        "formality_reasoning": str(formality["reasoning"]) if formality.get("reasoning") else None,
    }


async def _write_assessment(session: AsyncSession, analysis_id: UUID, canonical: CanonicalAnalysis) -> Any:
    if not canonical.assessment:
        return _SKIPPED
    res = await session.execute(select(OutfitAssessment).where(OutfitAssessment.analysis_id == analysis_id))
    row = res.scalar_one_or_none()
    if not row:
        row = OutfitAssessment(analysis_id=analysis_id)
        session.add(row)
    for key, value in _assessment_projection(canonical.assessment).items():
        setattr(row, key, value)
    row.full_assessment = dict(canonical.assessment)
    await session.flush()
    return None


def _recommendation_rows(analysis_id: UUID, canonical: CanonicalAnalysis) -> List[OutfitRecommendation]:
    groups = (
        ("minor_adjustment", canonical.adjustments.minor),
        ("closet_item", canonical.adjustments.closet_suggestions),
        ("new_purchase", canonical.adjustments.new_item_suggestions),
    )
    rows: List[OutfitRecommendation] = []
    for rec_type, texts in groups:
        for pos, text in enumerate(texts):
            rows.append(
                OutfitRecommendation(
                    analysis_id=analysis_id,
                    recommendation_type=rec_type,
                    description=text,
                    position=pos,
                    confidence=RECOMMENDATION_CONFIDENCE[rec_type],
                )
            )
    return rows


async def _write_recommendations(session: AsyncSession, analysis_id: UUID, canonical: CanonicalAnalysis) -> Any:
    rows = _recommendation_rows(analysis_id, canonical)
    if not rows:
        return _SKIPPED
    res = await session.execute(
        select(OutfitRecommendation.id).where(OutfitRecommendation.analysis_id == analysis_id).limit(1)
    )
    if res.first():
        return _SKIPPED
    session.add_all(rows)
    await session.flush()
    return None


async def _run_step(
    session: AsyncSession,
    report: FanOutReport,
    name: str,
    fn: Callable[[], Awaitable[Any]],
) -> None:
    try:
        async with session.begin_nested():
            result = await fn()
        await session.commit()
    except Exception as e:
        await session.rollback()
        logger.warning("analysis-writer: step failed analysis_id=%s step=%s reason=%s", report.analysis_id, name, e)
        report.failed.append(name)
        return
    if result is _SKIPPED:
        report.skipped.append(name)
        return
    if name == STEP_DETECTIONS:
        report.detections_inserted = int(result or 0)
    report.succeeded.append(name)


async def commit_analysis(
    session: AsyncSession,
    owner_id: UUID | str,
    analysis_id: UUID | str,
    canonical: CanonicalAnalysis,
    *,
    source: str = "model",
    model_meta: Optional[Dict[str, Any]] = None,
) -> FanOutReport:
    owner_uuid = UUID(str(owner_id))
    analysis_uuid = UUID(str(analysis_id))
    try:
        await _write_primary(session, owner_uuid, analysis_uuid, canonical, source, model_meta)
    except AnalysisPersistenceError:
        await session.rollback()
        raise
    except AnalysisAlreadyCompleted:
        await session.rollback()
        logger.info("analysis-writer: already completed analysis_id=%s", analysis_uuid)
        raise
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error("analysis-writer: primary write failed analysis_id=%s reason=%s", analysis_uuid, e)
        raise AnalysisPersistenceError(str(e)) from e

    report = FanOutReport(analysis_id=str(analysis_uuid))
    await _run_step(session, report, STEP_SCORES, lambda: _write_scores(session, owner_uuid, analysis_uuid, canonical))
    await _run_step(session, report, STEP_DETECTIONS, lambda: _write_detections(session, analysis_uuid, canonical))
    await _run_step(session, report, STEP_ASSESSMENT, lambda: _write_assessment(session, analysis_uuid, canonical))
    await _run_step(
        session, report, STEP_RECOMMENDATIONS, lambda: _write_recommendations(session, analysis_uuid, canonical)
    )
    logger.info(
        "analysis-writer: committed analysis_id=%s ok=%s failed=%s skipped=%s detections=%s",
        analysis_uuid,
        ",".join(report.succeeded),
        ",".join(report.failed),
        ",".join(report.skipped),
        report.detections_inserted,
    )
    return report
