"""Reconciles garment detections against the owner's closet.

A detection moves through unmatched -> proposed -> confirmed | rejected, and
may be catalogued into a brand-new closet item. Links are never deleted; the
one that counts is the *active* link, resolved exclusively by
``active_match_for``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import func, select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.models import ClosetItem, ClosetMatchLink, GarmentDetection, OutfitAnalysis
from app.services.vision.types import mean_confidence

logger = logging.getLogger("uvicorn.error")

CATEGORY_WEIGHT = 0.4
ATTRIBUTE_WEIGHTS = (("color", 0.3), ("pattern", 0.15), ("material", 0.15))
UNKNOWN_VALUES = {"", "unknown", "n/a", "none", "null"}

STATE_UNMATCHED = "unmatched"
STATE_PROPOSED = "proposed"
STATE_CONFIRMED = "confirmed"
STATE_REJECTED = "rejected"
STATE_CATALOGUED = "catalogued"

CATALOGUED_LINK_CONFIDENCE = 1.0


class MatchError(Exception):
    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


class MatchNotFound(MatchError):
    pass


class MatchConflict(MatchError):
    pass


@dataclass
class DetectionView:
    id: UUID
    detection_id: str
    category: str
    attributes: Dict[str, Any]
    confidence_scores: Dict[str, float]
    mean_confidence: float
    state: str
    closet_item_id: Optional[UUID] = None
    match_confidence: Optional[float] = None


@dataclass
class ProposedMatch:
    link: ClosetMatchLink
    item: ClosetItem


@dataclass
class CatalogueReport:
    catalogued: List[Tuple[str, str]] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)


def _norm(value: Any) -> Optional[str]:
    if value is None:
        return None
    out = str(value).strip().lower()
    if out in UNKNOWN_VALUES:
        return None
    return out


def score_candidate(detection: Any, item: Any) -> float:
    """Confidence that ``item`` is the garment described by ``detection``.

    Categories must match exactly; colour, pattern and material add their
    weights when both sides know the value and agree.
    """
    category = _norm(getattr(detection, "category", None))
    if not category or category != _norm(getattr(item, "category", None)):
        return 0.0
    score = CATEGORY_WEIGHT
    for attr, weight in ATTRIBUTE_WEIGHTS:
        det_value = _norm(getattr(detection, attr, None))
        if det_value and det_value == _norm(getattr(item, attr, None)):
            score += weight
    return round(min(score, 1.0), 4)


async def active_match_for(session: AsyncSession, garment_detection_id: UUID) -> Optional[ClosetMatchLink]:
    res = await session.execute(
        select(ClosetMatchLink)
        .where(
            ClosetMatchLink.garment_detection_id == garment_detection_id,
            ClosetMatchLink.user_rejected.is_(False),
        )
        .order_by(ClosetMatchLink.match_confidence.desc(), ClosetMatchLink.created_at.desc())
        .limit(1)
    )
    return res.scalar_one_or_none()


async def _decision_target(session: AsyncSession, garment_detection_id: UUID) -> Optional[ClosetMatchLink]:
    active = await active_match_for(session, garment_detection_id)
    if active:
        return active
    res = await session.execute(
        select(ClosetMatchLink)
        .where(ClosetMatchLink.garment_detection_id == garment_detection_id)
        .order_by(ClosetMatchLink.match_confidence.desc(), ClosetMatchLink.created_at.desc())
        .limit(1)
    )
    return res.scalar_one_or_none()


async def _links_for(session: AsyncSession, garment_detection_id: UUID) -> List[ClosetMatchLink]:
    res = await session.execute(
        select(ClosetMatchLink).where(ClosetMatchLink.garment_detection_id == garment_detection_id)
    )
    return list(res.scalars().all())


async def _get_analysis(session: AsyncSession, owner_id: UUID | str, analysis_id: UUID | str) -> OutfitAnalysis:
    try:
        analysis_uuid = UUID(str(analysis_id))
    except ValueError:
        raise MatchNotFound("analysis_not_found")
    analysis = await session.get(OutfitAnalysis, analysis_uuid)
    if not analysis or str(analysis.user_id) != str(owner_id):
        raise MatchNotFound("analysis_not_found")
    return analysis


async def _find_detection(session: AsyncSession, analysis_id: UUID, detection_id: str) -> Optional[GarmentDetection]:
    res = await session.execute(
        select(GarmentDetection).where(
            GarmentDetection.analysis_id == analysis_id,
            GarmentDetection.detection_id == detection_id,
        )
    )
    return res.scalar_one_or_none()


async def _get_detection(
    session: AsyncSession, owner_id: UUID | str, analysis_id: UUID | str, detection_id: str
) -> GarmentDetection:
    analysis = await _get_analysis(session, owner_id, analysis_id)
    detection = await _find_detection(session, analysis.id, detection_id)
    if not detection:
        raise MatchNotFound("detection_not_found")
    return detection


async def _state_of(session: AsyncSession, detection: GarmentDetection) -> Tuple[str, Optional[ClosetMatchLink]]:
    links = await _links_for(session, detection.id)
    if not links:
        return STATE_UNMATCHED, None
    active = await active_match_for(session, detection.id)
    if not active:
        return STATE_REJECTED, None
    if not active.user_confirmed:
        return STATE_PROPOSED, active
    item = await session.get(ClosetItem, active.closet_item_id)
    if item and item.source_detection_id == detection.id:
        return STATE_CATALOGUED, active
    return STATE_CONFIRMED, active


async def propose_for_detection(
    session: AsyncSession,
    owner_id: UUID | str,
    detection: GarmentDetection,
    *,
    min_confidence: Optional[float] = None,
) -> Optional[ClosetMatchLink]:
    """Create a link to the best-scoring closet item, if any clears the threshold.

    Leaves a detection that already has an active link alone. Items this
    detection was linked to before are not offered again. Does not commit.
    """
    if await active_match_for(session, detection.id):
        return None
    threshold = settings.MATCH_MIN_CONFIDENCE if min_confidence is None else min_confidence
    linked = {link.closet_item_id for link in await _links_for(session, detection.id)}

    res = await session.execute(
        select(ClosetItem)
        .where(
            ClosetItem.user_id == UUID(str(owner_id)),
            func.lower(ClosetItem.category) == (detection.category or "").strip().lower(),
        )
        .order_by(ClosetItem.updated_at.desc(), ClosetItem.id)
    )
    best: Optional[ClosetItem] = None
    best_score = 0.0
    # rows arrive newest update first, so strict > keeps the newest on ties
    for item in res.scalars().all():
        if item.id in linked:
            continue
        score = score_candidate(detection, item)
        if score < threshold:
            continue
        if best is None or score > best_score:
            best, best_score = item, score

    if not best:
        logger.info("matcher: no candidate detection=%s category=%s", detection.id, detection.category)
        return None

    link = ClosetMatchLink(
        garment_detection_id=detection.id,
        closet_item_id=best.id,
        match_confidence=best_score,
        user_confirmed=False,
        user_rejected=False,
    )
    try:
        async with session.begin_nested():
            session.add(link)
            await session.flush()
    except IntegrityError:
        logger.info("matcher: link exists detection=%s item=%s", detection.id, best.id)
        return None
    logger.info("matcher: proposed detection=%s item=%s confidence=%.2f", detection.id, best.id, best_score)
    return link


async def propose_matches(session: AsyncSession, owner_id: UUID | str, analysis_id: UUID | str) -> List[DetectionView]:
    analysis = await _get_analysis(session, owner_id, analysis_id)
    res = await session.execute(
        select(GarmentDetection)
        .where(GarmentDetection.analysis_id == analysis.id)
        .order_by(GarmentDetection.detection_id)
    )
    created = 0
    for detection in res.scalars().all():
        if await propose_for_detection(session, owner_id, detection):
            created += 1
    await session.commit()
    logger.info("matcher: propose_matches analysis_id=%s created=%s", analysis.id, created)
    return await list_detections(session, owner_id, analysis.id)


async def list_detections(session: AsyncSession, owner_id: UUID | str, analysis_id: UUID | str) -> List[DetectionView]:
    analysis = await _get_analysis(session, owner_id, analysis_id)
    res = await session.execute(
        select(GarmentDetection)
        .where(GarmentDetection.analysis_id == analysis.id)
        .order_by(GarmentDetection.detection_id)
    )
    views: List[DetectionView] = []
    for detection in res.scalars().all():
        state, active = await _state_of(session, detection)
        views.append(
            DetectionView(
                id=detection.id,
                detection_id=detection.detection_id,
                category=detection.category,
                attributes=dict(detection.all_attributes or {}),
                confidence_scores=dict(detection.confidence_scores or {}),
                mean_confidence=mean_confidence(detection.confidence_scores),
                state=state,
                closet_item_id=active.closet_item_id if active else None,
                match_confidence=active.match_confidence if active else None,
            )
        )
    return views


async def get_proposed_match(
    session: AsyncSession, owner_id: UUID | str, analysis_id: UUID | str, detection_id: str
) -> Optional[ProposedMatch]:
    detection = await _get_detection(session, owner_id, analysis_id, detection_id)
    if not await _links_for(session, detection.id):
        await propose_for_detection(session, owner_id, detection)
        await session.commit()
    active = await active_match_for(session, detection.id)
    if not active:
        return None
    item = await session.get(ClosetItem, active.closet_item_id)
    if not item:
        return None
    return ProposedMatch(link=active, item=item)


async def confirm_match(
    session: AsyncSession, owner_id: UUID | str, analysis_id: UUID | str, detection_id: str
) -> ClosetMatchLink:
    detection = await _get_detection(session, owner_id, analysis_id, detection_id)
    link = await _decision_target(session, detection.id)
    if not link:
        raise MatchNotFound("match_not_found")
    if link.user_confirmed:
        raise MatchConflict("already_confirmed")
    link.user_confirmed = True
    link.user_rejected = False
    link.updated_at = datetime.now(timezone.utc)
    await session.commit()
    logger.info("matcher: confirmed detection=%s item=%s", detection.id, link.closet_item_id)
    return link


async def reject_match(
    session: AsyncSession, owner_id: UUID | str, analysis_id: UUID | str, detection_id: str
) -> ClosetMatchLink:
    detection = await _get_detection(session, owner_id, analysis_id, detection_id)
    link = await _decision_target(session, detection.id)
    if not link:
        raise MatchNotFound("match_not_found")
    if link.user_rejected:
        raise MatchConflict("already_rejected")
    link.user_rejected = True
    link.user_confirmed = False
    link.updated_at = datetime.now(timezone.utc)
    await session.commit()
    logger.info("matcher: rejected detection=%s item=%s", detection.id, link.closet_item_id)
    return link


async def acquire_owner_lock(session: AsyncSession, owner_id: UUID) -> None:
    if session.get_bind().dialect.name != "postgresql":
        return
    lock_id = int.from_bytes(owner_id.bytes, "big") % (2**63 - 1)
    await session.execute(text("SELECT pg_advisory_xact_lock(:lock_id)"), {"lock_id": lock_id})


async def _catalogue_blocker(session: AsyncSession, detection: GarmentDetection) -> Optional[str]:
    res = await session.execute(
        select(ClosetItem.id).where(ClosetItem.source_detection_id == detection.id).limit(1)
    )
    # a catalogued item outlives a later rejection of its link
    if res.first():
        return "already_catalogued"
    links = await _links_for(session, detection.id)
    for link in links:
        if link.user_confirmed:
            return "already_in_closet"
    if await active_match_for(session, detection.id):
        return "match_pending"
    return None


def _closet_item_from_detection(owner_id: UUID, analysis: OutfitAnalysis, detection: GarmentDetection) -> ClosetItem:
    return ClosetItem(
        user_id=owner_id,
        category=detection.category,
        color=detection.color,
        pattern=detection.pattern,
        material=detection.material,
        style_tags=[],
        season_tags=["all-season"],
        condition="good",
        source="photo_detection",
        source_analysis_id=analysis.id,
        source_detection_id=detection.id,
        detection_confidence=round(mean_confidence(detection.confidence_scores), 4),
        image_refs=[analysis.image_ref] if analysis.image_ref else [],
    )


async def catalogue_detections(
    session: AsyncSession,
    owner_id: UUID | str,
    analysis_id: UUID | str,
    detection_ids: Sequence[str],
) -> CatalogueReport:
    """Create a closet item plus a confirmed link for each detection.

    Each detection is handled in its own savepoint, so an item is only ever
    persisted together with its link. Failures are reported per detection.
    """
    analysis = await _get_analysis(session, owner_id, analysis_id)
    await acquire_owner_lock(session, analysis.user_id)
    report = CatalogueReport()
    seen: set[str] = set()
    for detection_id in detection_ids:
        if detection_id in seen:
            report.failed.append((detection_id, "duplicate_in_batch"))
            continue
        seen.add(detection_id)

        detection = await _find_detection(session, analysis.id, detection_id)
        if not detection:
            report.failed.append((detection_id, "not_found"))
            continue
        blocker = await _catalogue_blocker(session, detection)
        if blocker:
            report.failed.append((detection_id, blocker))
            continue

        try:
            async with session.begin_nested():
                item = _closet_item_from_detection(analysis.user_id, analysis, detection)
                session.add(item)
                await session.flush()
                session.add(
                    ClosetMatchLink(
                        garment_detection_id=detection.id,
                        closet_item_id=item.id,
                        match_confidence=CATALOGUED_LINK_CONFIDENCE,
                        user_confirmed=True,
                        user_rejected=False,
                    )
                )
                await session.flush()
        except SQLAlchemyError as e:
            logger.warning("matcher: catalogue failed detection=%s reason=%s", detection.id, e)
            report.failed.append((detection_id, "persist_failed"))
            continue
        report.catalogued.append((detection_id, str(item.id)))

    await session.commit()
    logger.info(
        "matcher: catalogue analysis_id=%s catalogued=%s failed=%s",
        analysis.id,
        len(report.catalogued),
        len(report.failed),
    )
    return report
