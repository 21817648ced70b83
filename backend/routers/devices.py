from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import Actor, current_actor, current_admin
from core.config import settings
from db.database import get_async_session
from schemas.devices import (
    DeviceCreate,
    DeviceList,
    DeviceUpdate,
    DeviceWithQuantity,
    Pagination,
    QuantityRead,
)
from services import registry
from services.reconciliation import get_effective_quantity
from services.side_effects import SideEffectQueue, get_side_effects

router = APIRouter()


@router.get("/", response_model=DeviceList)
async def list_devices(
    search: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    device_type: Optional[str] = Query(None, alias="type"),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=500),
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_actor),
):
    result = await registry.list_devices(db, search, status_filter, device_type, page, limit)
    return DeviceList(
        devices=[DeviceWithQuantity(**d) for d in result.items],
        pagination=Pagination(
            current_page=result.page,
            total_pages=result.total_pages,
            total_items=result.total,
            items_per_page=result.limit,
        ),
    )


@router.get("/barcode/{barcode}", response_model=DeviceWithQuantity)
async def get_device_by_barcode(
    barcode: str,
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_actor),
    sink: SideEffectQueue = Depends(get_side_effects),
):
    return DeviceWithQuantity(**await registry.search_by_barcode(db, actor, barcode, sink))


@router.get("/id/{device_id}", response_model=DeviceWithQuantity)
async def get_device(
    device_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_actor),
):
    return DeviceWithQuantity(**await registry.get_device_detail(db, device_id))


@router.get("/types/list", response_model=List[str])
async def list_device_types(
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_actor),
):
    return await registry.list_device_types(db)


@router.get("/{device_id}/quantity", response_model=QuantityRead)
async def get_device_quantity(
    device_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_actor),
):
    snap = await get_effective_quantity(db, device_id)
    return QuantityRead(**snap.to_dict())


@router.post("/", response_model=DeviceWithQuantity, status_code=status.HTTP_201_CREATED)
async def create_device(
    payload: DeviceCreate,
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_admin),
    sink: SideEffectQueue = Depends(get_side_effects),
):
    device = await registry.create_device(db, actor, payload, sink)
    return DeviceWithQuantity(**await registry.get_device_detail(db, device.id))


@router.put("/{device_id}", response_model=DeviceWithQuantity)
async def update_device(
    device_id: UUID,
    payload: DeviceUpdate,
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_admin),
    sink: SideEffectQueue = Depends(get_side_effects),
):
    device = await registry.update_device(db, actor, device_id, payload, sink)
    return DeviceWithQuantity(**await registry.get_device_detail(db, device.id))


@router.delete("/{device_id}", status_code=status.HTTP_200_OK)
async def delete_device(
    device_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_admin),
    sink: SideEffectQueue = Depends(get_side_effects),
):
    await registry.delete_device(db, actor, device_id, sink)
    return {"message": "Device deleted successfully"}
