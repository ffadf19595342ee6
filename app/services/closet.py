from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.tags import MAX_STYLE_TAGS, normalize_condition, normalize_many, normalize_season_tags
from app.models.models import ClosetItem
from app.schemas.closet import ClosetItemCreate, ClosetItemOut, ClosetItemUpdate

logger = logging.getLogger("uvicorn.error")

_TEXT_FIELDS = ("subcategory", "color", "pattern", "material", "brand", "size", "notes")


class ClosetItemNotFound(Exception):
    pass


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    out = value.strip()
    return out or None


def build_closet_item_out(item: ClosetItem) -> ClosetItemOut:
    return ClosetItemOut(
        id=str(item.id),
        category=item.category,
        subcategory=item.subcategory,
        color=item.color,
        pattern=item.pattern,
        material=item.material,
        brand=item.brand,
        size=item.size,
        style_tags=list(item.style_tags or []),
        formality_level=item.formality_level,
        season_tags=list(item.season_tags or []),
        condition=item.condition or "good",
        source=item.source or "manual",
        source_analysis_id=str(item.source_analysis_id) if item.source_analysis_id else None,
        source_extraction_id=str(item.source_extraction_id) if item.source_extraction_id else None,
        detection_confidence=item.detection_confidence,
        image_refs=list(item.image_refs or []),
        notes=item.notes,
        extraction_metadata=item.extraction_metadata,
        created_at=item.created_at,
        updated_at=item.updated_at,
    )


async def list_items(session: AsyncSession, owner_id: UUID | str, category: Optional[str] = None) -> List[ClosetItem]:
    q = select(ClosetItem).where(ClosetItem.user_id == UUID(str(owner_id)))
    if category:
        q = q.where(func.lower(ClosetItem.category) == category.strip().lower())
    q = q.order_by(ClosetItem.updated_at.desc(), ClosetItem.id)
    res = await session.execute(q)
    return list(res.scalars().all())


async def get_item(session: AsyncSession, owner_id: UUID | str, item_id: UUID | str) -> ClosetItem:
    try:
        item_uuid = UUID(str(item_id))
    except ValueError:
        raise ClosetItemNotFound("closet_item_not_found")
    item = await session.get(ClosetItem, item_uuid)
    if not item or str(item.user_id) != str(owner_id):
        raise ClosetItemNotFound("closet_item_not_found")
    return item


async def create_item(session: AsyncSession, owner_id: UUID | str, payload: ClosetItemCreate) -> ClosetItem:
    """Create a manually entered closet item. Raises ValueError on invalid tags or condition."""
    data = payload.model_dump()
    item = ClosetItem(
        user_id=UUID(str(owner_id)),
        category=payload.category.strip().lower(),
        style_tags=normalize_many(payload.style_tags or [])[:MAX_STYLE_TAGS],
        season_tags=normalize_season_tags(payload.season_tags),
        formality_level=payload.formality_level,
        condition=normalize_condition(payload.condition),
        source="manual",
        image_refs=[r for r in (payload.image_refs or []) if r],
    )
    for key in _TEXT_FIELDS:
        setattr(item, key, _clean(data.get(key)))
    session.add(item)
    await session.commit()
    await session.refresh(item)
    logger.info("closet: item created item_id=%s category=%s", item.id, item.category)
    return item


async def update_item(
    session: AsyncSession, owner_id: UUID | str, item_id: UUID | str, payload: ClosetItemUpdate
) -> ClosetItem:
    item = await get_item(session, owner_id, item_id)
    data: Dict[str, Any] = payload.model_dump(exclude_unset=True)
    if "category" in data and data["category"]:
        item.category = data["category"].strip().lower()
    if "style_tags" in data:
        item.style_tags = normalize_many(data["style_tags"] or [])[:MAX_STYLE_TAGS]
    if "season_tags" in data:
        item.season_tags = normalize_season_tags(data["season_tags"])
    if "condition" in data:
        item.condition = normalize_condition(data["condition"])
    if "formality_level" in data:
        item.formality_level = data["formality_level"]
    if "image_refs" in data:
        item.image_refs = [r for r in (data["image_refs"] or []) if r]
    for key in _TEXT_FIELDS:
        if key in data:
            setattr(item, key, _clean(data[key]))
    item.updated_at = datetime.now(timezone.utc)
    await session.commit()
    await session.refresh(item)
    return item


async def delete_item(session: AsyncSession, owner_id: UUID | str, item_id: UUID | str) -> None:
    item = await get_item(session, owner_id, item_id)
    await session.delete(item)
    await session.commit()
    logger.info("closet: item deleted item_id=%s", item_id)
