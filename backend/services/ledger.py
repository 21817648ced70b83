import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.auth import Actor
from core.errors import Forbidden, OperationNotFound
from db.device import Device, DeviceStatus
from db.inventory.operation import InventoryOperation, OperationStatus
from services.reconciliation import effective_quantity_query
from services.submission import utcnow

logger = logging.getLogger(__name__)


@dataclass
class OperationFilters:
    user_id: Optional[UUID] = None
    device_id: Optional[UUID] = None
    operation_type: Optional[str] = None
    status: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None


@dataclass
class OperationPage:
    items: List[InventoryOperation] = field(default_factory=list)
    page: int = 1
    limit: int = 20
    total: int = 0

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


def _day_start(d: date) -> datetime:
    return datetime.combine(d, time.min)


def _conditions(actor: Actor, filters: OperationFilters) -> list:
    conds = []
    # Employees only ever see their own operations; the user filter is admin-only.
    if not actor.is_admin:
        conds.append(InventoryOperation.user_id == actor.id)
    elif filters.user_id:
        conds.append(InventoryOperation.user_id == filters.user_id)
    if filters.device_id:
        conds.append(InventoryOperation.device_id == filters.device_id)
    if filters.operation_type:
        conds.append(InventoryOperation.operation_type == filters.operation_type)
    if filters.status:
        conds.append(InventoryOperation.status == filters.status)
    if filters.date_from:
        conds.append(InventoryOperation.created_at >= _day_start(filters.date_from))
    if filters.date_to:
        conds.append(InventoryOperation.created_at < _day_start(filters.date_to + timedelta(days=1)))
    return conds


async def list_operations(
    db: AsyncSession,
    actor: Actor,
    filters: Optional[OperationFilters] = None,
    page: int = 1,
    limit: int = 20,
) -> OperationPage:
    filters = filters or OperationFilters()
    page = max(1, int(page))
    limit = max(1, int(limit))

    stmt = select(InventoryOperation).options(
        selectinload(InventoryOperation.device),
        selectinload(InventoryOperation.user),
        selectinload(InventoryOperation.approved_by),
    )
    count_stmt = select(func.count(InventoryOperation.id))
    for c in _conditions(actor, filters):
        stmt = stmt.where(c)
        count_stmt = count_stmt.where(c)

    res = await db.execute(
        stmt.order_by(InventoryOperation.created_at.desc(), InventoryOperation.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    total = int((await db.execute(count_stmt)).scalar() or 0)
    return OperationPage(items=list(res.scalars().all()), page=page, limit=limit, total=total)


async def get_operation(db: AsyncSession, actor: Actor, operation_id: UUID) -> InventoryOperation:
    res = await db.execute(
        select(InventoryOperation)
        .options(
            selectinload(InventoryOperation.device),
            selectinload(InventoryOperation.user),
            selectinload(InventoryOperation.approved_by),
        )
        .where(InventoryOperation.id == operation_id)
        .execution_options(populate_existing=True)
    )
    op = res.scalar_one_or_none()
    if not op:
        raise OperationNotFound()
    if not actor.is_admin and op.user_id != actor.id:
        raise Forbidden("You can only view your own operations")
    return op


async def operation_stats(db: AsyncSession) -> dict:
    """Dashboard counters."""
    today = _day_start(utcnow().date())

    async def _count(stmt) -> int:
        return int((await db.execute(stmt)).scalar() or 0)

    folds = effective_quantity_query().add_columns(Device.minimum_quantity).group_by(Device.minimum_quantity)
    low_stock = 0
    for _device_id, baseline, delta, minimum in (await db.execute(folds)).all():
        if int(baseline or 0) + int(delta or 0) <= int(minimum or 0):
            low_stock += 1

    return {
        "totalDevices": await _count(select(func.count(Device.id))),
        "availableDevices": await _count(
            select(func.count(Device.id)).where(Device.status == DeviceStatus.AVAILABLE.value)
        ),
        "assignedDevices": await _count(
            select(func.count(Device.id)).where(Device.status == DeviceStatus.ASSIGNED.value)
        ),
        "pendingOperations": await _count(
            select(func.count(InventoryOperation.id)).where(
                InventoryOperation.status == OperationStatus.PENDING.value
            )
        ),
        "todayOperations": await _count(
            select(func.count(InventoryOperation.id)).where(InventoryOperation.created_at >= today)
        ),
        "lowStockDevices": low_stock,
    }
