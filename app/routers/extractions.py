import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import get_current_user_id
from app.core.db import get_session
from app.models.models import ExtractedItem, PhotoExtraction
from app.schemas.extractions import (
    ApprovalFailureOut,
    ApprovedOut,
    ApproveIn,
    ApproveOut,
    ExtractedItemOut,
    ExtractionIn,
    ExtractionListOut,
    ExtractionOut,
    RejectIn,
)
from app.services import extraction as extraction_service
from app.services.extraction import ExtractionConflict, ExtractionNotFound, ExtractionPersistenceError
from app.storage.r2 import ImageRefError

router = APIRouter(prefix="/extractions", tags=["extractions"])
logger = logging.getLogger("uvicorn.error")


def _item_out(row: ExtractedItem) -> ExtractedItemOut:
    return ExtractedItemOut(
        item_id=row.item_id,
        category=row.category,
        description=row.description,
        bounding_box=row.bounding_box or {},
        box_scale=row.box_scale,
        attributes=row.attributes or {},
        confidence_scores=row.confidence_scores or {},
        closet_suitability=row.closet_suitability or 0.0,
        user_approved=bool(row.user_approved),
        user_rejected=bool(row.user_rejected),
        user_edited_attributes=row.user_edited_attributes,
        user_feedback=row.user_feedback,
        created_closet_item_id=str(row.created_closet_item_id) if row.created_closet_item_id else None,
    )


def _extraction_out(e: PhotoExtraction, items: List[ExtractedItem]) -> ExtractionOut:
    return ExtractionOut(
        extraction_id=str(e.id),
        status=e.status,
        extraction_type=e.extraction_type,
        image_ref=e.image_ref,
        extracted_items_count=e.extracted_items_count or 0,
        approved_items_count=e.approved_items_count or 0,
        user_reviewed=bool(e.user_reviewed),
        confidence_flags=list(e.confidence_flags or []),
        processing_metadata=e.processing_metadata,
        error=e.error,
        created_at=e.created_at,
        items=[_item_out(i) for i in items],
    )


@router.post("", response_model=ExtractionOut)
async def run_extraction(
    payload: ExtractionIn,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
):
    try:
        run = await extraction_service.run_extraction(session, user_id, payload.image_ref, payload.mode)
    except ImageRefError as e:
        raise HTTPException(status_code=400, detail="image_ref_invalid") from e
    except ExtractionPersistenceError as e:
        logger.error("extractions: persist failed user_id=%s reason=%s", user_id, e)
        raise HTTPException(status_code=500, detail=e.code) from e
    return _extraction_out(run.extraction, run.items)


@router.get("", response_model=ExtractionListOut)
async def list_extractions(
    limit: int = Query(50, ge=1, le=200),
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
):
    rows = await extraction_service.list_extractions(session, user_id, limit=limit)
    return ExtractionListOut(extractions=[_extraction_out(e, []) for e in rows])


@router.get("/{extraction_id}", response_model=ExtractionOut)
async def get_extraction(
    extraction_id: str,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
):
    try:
        e = await extraction_service.get_extraction(session, user_id, extraction_id)
    except ExtractionNotFound as err:
        raise HTTPException(status_code=404, detail=err.code) from err
    items = await extraction_service.list_extracted_items(session, e.id)
    return _extraction_out(e, items)


@router.post("/{extraction_id}/approve", response_model=ApproveOut)
async def approve_items(
    extraction_id: str,
    payload: ApproveIn,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
):
    try:
        report = await extraction_service.approve_extracted_items(
            session,
            user_id,
            extraction_id,
            payload.item_ids,
            edited_attributes={k: e.attributes for k, e in payload.edits.items() if e.attributes},
            feedback={k: e.feedback for k, e in payload.edits.items() if e.feedback},
        )
    except ExtractionNotFound as e:
        raise HTTPException(status_code=404, detail=e.code) from e
    return ApproveOut(
        approved=[ApprovedOut(item_id=i, closet_item_id=c) for i, c in report.approved],
        failed=[ApprovalFailureOut(item_id=i, reason=r) for i, r in report.failed],
    )


@router.post("/{extraction_id}/items/{item_id}/reject", response_model=ExtractedItemOut)
async def reject_item(
    extraction_id: str,
    item_id: str,
    payload: Optional[RejectIn] = None,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
):
    feedback = payload.feedback if payload else None
    try:
        row = await extraction_service.reject_extracted_item(session, user_id, extraction_id, item_id, feedback)
    except ExtractionNotFound as e:
        raise HTTPException(status_code=404, detail=e.code) from e
    except ExtractionConflict as e:
        raise HTTPException(status_code=409, detail=e.code) from e
    return _item_out(row)


@router.delete("/{extraction_id}", status_code=204)
async def delete_extraction(
    extraction_id: str,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
):
    try:
        await extraction_service.delete_extraction(session, user_id, extraction_id)
    except ExtractionNotFound as e:
        raise HTTPException(status_code=404, detail=e.code) from e
    return None
