import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import get_current_user_id
from app.core.db import get_session
from app.models.models import ClosetMatchLink, OutfitAnalysis
from app.schemas.analyses import (
    AnalysisIn,
    AnalysisOut,
    AnalysisQueuedOut,
    AnalysisStatusOut,
    CatalogueFailureOut,
    CatalogueIn,
    CatalogueOut,
    CataloguedOut,
    DetectionListOut,
    DetectionOut,
    MatchLinkOut,
    ProposedMatchOut,
)
from app.services import analysis_pipeline, closet_matcher
from app.services.analysis_writer import AnalysisPersistenceError
from app.services.closet import build_closet_item_out
from app.services.closet_matcher import DetectionView, MatchConflict, MatchNotFound
from app.storage.r2 import ImageRefError

router = APIRouter(prefix="/analyses", tags=["analyses"])
logger = logging.getLogger("uvicorn.error")


def _match_error(e: Exception) -> HTTPException:
    if isinstance(e, MatchConflict):
        return HTTPException(status_code=409, detail=e.code)
    if isinstance(e, MatchNotFound):
        return HTTPException(status_code=404, detail=e.code)
    return HTTPException(status_code=500, detail="internal_error")


def _status_out(a: OutfitAnalysis) -> AnalysisStatusOut:
    return AnalysisStatusOut(
        analysis_id=str(a.id),
        status=a.status,
        source=a.source,
        error=a.error,
        attempts=a.attempts or 0,
        analyzed_at=a.analyzed_at,
        updated_at=a.updated_at,
    )


def _detection_out(v: DetectionView) -> DetectionOut:
    return DetectionOut(
        detection_id=v.detection_id,
        category=v.category,
        attributes=v.attributes,
        confidence_scores=v.confidence_scores,
        mean_confidence=round(v.mean_confidence, 4),
        state=v.state,
        closet_item_id=str(v.closet_item_id) if v.closet_item_id else None,
        match_confidence=v.match_confidence,
    )


def _link_out(detection_id: str, link: ClosetMatchLink) -> MatchLinkOut:
    return MatchLinkOut(
        detection_id=detection_id,
        closet_item_id=str(link.closet_item_id),
        match_confidence=link.match_confidence,
        user_confirmed=bool(link.user_confirmed),
        user_rejected=bool(link.user_rejected),
    )


@router.post("", response_model=AnalysisQueuedOut)
async def run_analysis(
    payload: AnalysisIn,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
):
    try:
        outcome = await analysis_pipeline.run_analysis(session, user_id, payload.image_ref, payload.preference_hints)
    except ImageRefError as e:
        raise HTTPException(status_code=400, detail="image_ref_invalid") from e
    except AnalysisPersistenceError as e:
        logger.error("analyses: persist failed user_id=%s reason=%s", user_id, e)
        raise HTTPException(status_code=500, detail="analysis_persist_failed") from e
    return AnalysisQueuedOut(status=outcome.analysis.status, analysis_id=str(outcome.analysis.id))


@router.post("/queue", response_model=AnalysisQueuedOut)
async def queue_analysis(
    payload: AnalysisIn,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
):
    analysis = await analysis_pipeline.enqueue_analysis(session, user_id, payload.image_ref, payload.preference_hints)
    return AnalysisQueuedOut(status=analysis.status, analysis_id=str(analysis.id))


@router.get("/{analysis_id}/status", response_model=AnalysisStatusOut)
async def get_analysis_status(
    analysis_id: str,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
):
    try:
        analysis = await analysis_pipeline.get_status(session, user_id, analysis_id)
    except analysis_pipeline.AnalysisNotFound as e:
        raise HTTPException(status_code=404, detail="analysis_not_found") from e
    return _status_out(analysis)


@router.get("/{analysis_id}", response_model=AnalysisOut)
async def get_analysis(
    analysis_id: str,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
):
    try:
        a = await analysis_pipeline.get_analysis(session, user_id, analysis_id)
    except analysis_pipeline.AnalysisNotFound as e:
        raise HTTPException(status_code=404, detail="analysis_not_found") from e
    return AnalysisOut(
        analysis_id=str(a.id),
        status=a.status,
        source=a.source,
        image_ref=a.image_ref,
        preference_hints=list(a.preference_hints or []),
        result=a.result_json,
        model_meta=a.model_meta,
        error=a.error,
        analyzed_at=a.analyzed_at,
        created_at=a.created_at,
    )


@router.get("/{analysis_id}/detections", response_model=DetectionListOut)
async def list_detections(
    analysis_id: str,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
):
    try:
        views = await closet_matcher.list_detections(session, user_id, analysis_id)
    except (MatchNotFound, MatchConflict) as e:
        raise _match_error(e) from e
    return DetectionListOut(analysis_id=analysis_id, detections=[_detection_out(v) for v in views])


@router.post("/{analysis_id}/matches", response_model=DetectionListOut)
async def propose_matches(
    analysis_id: str,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
):
    try:
        views = await closet_matcher.propose_matches(session, user_id, analysis_id)
    except (MatchNotFound, MatchConflict) as e:
        raise _match_error(e) from e
    return DetectionListOut(analysis_id=analysis_id, detections=[_detection_out(v) for v in views])


@router.get("/{analysis_id}/detections/{detection_id}/match", response_model=ProposedMatchOut)
async def get_proposed_match(
    analysis_id: str,
    detection_id: str,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
):
    try:
        proposed = await closet_matcher.get_proposed_match(session, user_id, analysis_id, detection_id)
    except (MatchNotFound, MatchConflict) as e:
        raise _match_error(e) from e
    if not proposed:
        return ProposedMatchOut(detection_id=detection_id)
    return ProposedMatchOut(
        detection_id=detection_id,
        match=_link_out(detection_id, proposed.link),
        closet_item=build_closet_item_out(proposed.item),
    )


@router.post("/{analysis_id}/detections/{detection_id}/confirm", response_model=MatchLinkOut)
async def confirm_match(
    analysis_id: str,
    detection_id: str,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
):
    try:
        link = await closet_matcher.confirm_match(session, user_id, analysis_id, detection_id)
    except (MatchNotFound, MatchConflict) as e:
        raise _match_error(e) from e
    return _link_out(detection_id, link)


@router.post("/{analysis_id}/detections/{detection_id}/reject", response_model=MatchLinkOut)
async def reject_match(
    analysis_id: str,
    detection_id: str,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
):
    try:
        link = await closet_matcher.reject_match(session, user_id, analysis_id, detection_id)
    except (MatchNotFound, MatchConflict) as e:
        raise _match_error(e) from e
    return _link_out(detection_id, link)


@router.post("/{analysis_id}/catalogue", response_model=CatalogueOut)
async def catalogue_detections(
    analysis_id: str,
    payload: CatalogueIn,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
):
    try:
        report = await closet_matcher.catalogue_detections(session, user_id, analysis_id, payload.detection_ids)
    except (MatchNotFound, MatchConflict) as e:
        raise _match_error(e) from e
    return CatalogueOut(
        catalogued=[CataloguedOut(detection_id=d, closet_item_id=c) for d, c in report.catalogued],
        failed=[CatalogueFailureOut(detection_id=d, reason=r) for d, r in report.failed],
    )
