from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import Actor, current_admin
from db.database import get_async_session
from services import reports
from services.side_effects import SideEffectQueue, get_side_effects

router = APIRouter()


@router.get("/inventory")
async def inventory_report(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    device_type: Optional[str] = None,
    status: Optional[str] = None,
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_admin),
    sink: SideEffectQueue = Depends(get_side_effects),
):
    report = await reports.inventory_report(db, actor, sink, date_from, date_to, device_type, status)
    return {"report": report}


@router.get("/low-stock")
async def low_stock_report(
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_admin),
    sink: SideEffectQueue = Depends(get_side_effects),
):
    return {"report": await reports.low_stock_report(db, actor, sink)}


@router.get("/employee-operations")
async def employee_operations_report(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    user_id: Optional[UUID] = None,
    operation_type: Optional[str] = None,
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_admin),
    sink: SideEffectQueue = Depends(get_side_effects),
):
    report = await reports.employee_operations_report(db, actor, sink, date_from, date_to, user_id, operation_type)
    return {"report": report}


@router.get("/most-used-devices")
async def most_used_devices_report(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_admin),
    sink: SideEffectQueue = Depends(get_side_effects),
):
    return {"report": await reports.most_used_devices_report(db, actor, sink, date_from, date_to, limit)}


@router.get("/daily-operations")
async def daily_operations_report(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_admin),
    sink: SideEffectQueue = Depends(get_side_effects),
):
    return {"report": await reports.daily_operations_report(db, actor, sink, date_from, date_to)}


@router.get("/system-performance")
async def system_performance_report(
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_admin),
    sink: SideEffectQueue = Depends(get_side_effects),
):
    return {"report": await reports.system_performance_report(db, actor, sink)}
