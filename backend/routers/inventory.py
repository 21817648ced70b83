from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import Actor, current_actor, current_admin
from core.config import settings
from db.database import get_async_session
from db.inventory.operation import OperationType
from schemas.devices import DeviceWithQuantity, Pagination
from schemas.inventory import (
    ApprovalNotes,
    InventoryStats,
    ManualAdjustCreate,
    OperationCreate,
    OperationList,
    OperationRead,
    OperationResultRead,
)
from services.approval import approve_operation, reject_operation
from services.ledger import OperationFilters, get_operation, list_operations, operation_stats
from services.reconciliation import QuantitySnapshot
from services.registry import device_with_quantity
from services.side_effects import SideEffectQueue, get_side_effects
from services.submission import OperationRequest, OperationResult, manual_adjust, submit_operation

router = APIRouter()


def _result_out(result: OperationResult) -> OperationResultRead:
    device = result.device
    op = result.operation.to_schema
    op.update(device_name=device.name, barcode=device.barcode, device_type=device.device_type)
    snap = QuantitySnapshot(
        device_id=device.id,
        baseline=int(device.baseline_quantity or 0),
        approved_delta=result.available_quantity - int(device.baseline_quantity or 0),
    )
    return OperationResultRead(
        message=result.message,
        status=result.status,
        operation=OperationRead(**op),
        device=DeviceWithQuantity(**device_with_quantity(device, snap)),
        available_quantity=result.available_quantity,
    )


@router.post("/operation", response_model=OperationResultRead, status_code=status.HTTP_201_CREATED)
async def create_operation(
    payload: OperationCreate,
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_actor),
    sink: SideEffectQueue = Depends(get_side_effects),
):
    request = OperationRequest(**payload.model_dump())
    return _result_out(await submit_operation(db, actor, request, sink))


@router.post("/manual-add", response_model=OperationResultRead, status_code=status.HTTP_201_CREATED)
async def manual_add(
    payload: ManualAdjustCreate,
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_actor),
    sink: SideEffectQueue = Depends(get_side_effects),
):
    request = OperationRequest(operation_type=OperationType.ADD.value, **payload.model_dump())
    return _result_out(await manual_adjust(db, actor, request, sink))


@router.post("/manual-remove", response_model=OperationResultRead, status_code=status.HTTP_201_CREATED)
async def manual_remove(
    payload: ManualAdjustCreate,
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_actor),
    sink: SideEffectQueue = Depends(get_side_effects),
):
    request = OperationRequest(operation_type=OperationType.REMOVE.value, **payload.model_dump())
    return _result_out(await manual_adjust(db, actor, request, sink))


@router.get("/operations", response_model=OperationList)
async def get_operations(
    user_id: Optional[UUID] = None,
    device_id: Optional[UUID] = None,
    operation_type: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=500),
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_actor),
):
    filters = OperationFilters(
        user_id=user_id,
        device_id=device_id,
        operation_type=operation_type,
        status=status_filter,
        date_from=date_from,
        date_to=date_to,
    )
    result = await list_operations(db, actor, filters, page, limit)
    return OperationList(
        operations=[OperationRead(**op.to_schema) for op in result.items],
        pagination=Pagination(
            current_page=result.page,
            total_pages=result.total_pages,
            total_items=result.total,
            items_per_page=result.limit,
        ),
    )


@router.get("/operations/{operation_id}", response_model=OperationRead)
async def get_single_operation(
    operation_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_actor),
):
    op = await get_operation(db, actor, operation_id)
    return OperationRead(**op.to_schema)


@router.put("/operations/{operation_id}/approve", response_model=OperationRead)
async def approve(
    operation_id: UUID,
    payload: Optional[ApprovalNotes] = Body(None),
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_admin),
    sink: SideEffectQueue = Depends(get_side_effects),
):
    notes = payload.notes if payload else None
    op = await approve_operation(db, actor, operation_id, notes, sink)
    return OperationRead(**(await get_operation(db, actor, op.id)).to_schema)


@router.put("/operations/{operation_id}/reject", response_model=OperationRead)
async def reject(
    operation_id: UUID,
    payload: Optional[ApprovalNotes] = Body(None),
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_admin),
    sink: SideEffectQueue = Depends(get_side_effects),
):
    notes = payload.notes if payload else None
    op = await reject_operation(db, actor, operation_id, notes, sink)
    return OperationRead(**(await get_operation(db, actor, op.id)).to_schema)


@router.get("/stats", response_model=InventoryStats)
async def stats(
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_actor),
):
    return InventoryStats(**await operation_stats(db))
