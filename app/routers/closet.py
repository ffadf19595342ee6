from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import get_current_user_id
from app.core.db import get_session
from app.schemas.closet import ClosetItemCreate, ClosetItemOut, ClosetItemUpdate
from app.services import closet as closet_service
from app.services.closet import ClosetItemNotFound, build_closet_item_out

router = APIRouter(prefix="/closet", tags=["closet"])


@router.get("/items", response_model=list[ClosetItemOut])
async def list_items(
    category: Optional[str] = Query(None),
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
):
    items = await closet_service.list_items(session, user_id, category)
    return [build_closet_item_out(i) for i in items]


@router.post("/items", response_model=ClosetItemOut, status_code=201)
async def create_item(
    payload: ClosetItemCreate,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
):
    try:
        item = await closet_service.create_item(session, user_id, payload)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return build_closet_item_out(item)


@router.get("/items/{item_id}", response_model=ClosetItemOut)
async def get_item(
    item_id: str,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
):
    try:
        item = await closet_service.get_item(session, user_id, item_id)
    except ClosetItemNotFound as e:
        raise HTTPException(status_code=404, detail="closet_item_not_found") from e
    return build_closet_item_out(item)


@router.patch("/items/{item_id}", response_model=ClosetItemOut)
async def update_item(
    item_id: str,
    payload: ClosetItemUpdate,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
):
    try:
        item = await closet_service.update_item(session, user_id, item_id, payload)
    except ClosetItemNotFound as e:
        raise HTTPException(status_code=404, detail="closet_item_not_found") from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return build_closet_item_out(item)


@router.delete("/items/{item_id}", status_code=204)
async def delete_item(
    item_id: str,
    session: AsyncSession = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
):
    try:
        await closet_service.delete_item(session, user_id, item_id)
    except ClosetItemNotFound as e:
        raise HTTPException(status_code=404, detail="closet_item_not_found") from e
    return None
