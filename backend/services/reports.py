import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import and_, case, distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import Actor
from core.errors import Forbidden
from db.device import Device, DeviceStatus
from db.inventory.operation import InventoryOperation, OperationStatus, OperationType
from db.users import Role, User
from services.reconciliation import approved_delta_column, effective_quantity_query
from services.side_effects import SideEffectQueue
from services.submission import utcnow

logger = logging.getLogger(__name__)

DEFAULT_DAILY_WINDOW_DAYS = 30

_IS_ADD = InventoryOperation.operation_type == OperationType.ADD.value
_IS_REMOVE = InventoryOperation.operation_type == OperationType.REMOVE.value
_IS_APPROVED = InventoryOperation.status == OperationStatus.APPROVED.value


def _require_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise Forbidden("Admin privileges required")


def _day_start(d: date) -> datetime:
    return datetime.combine(d, time.min)


def _date_window(date_from: Optional[date], date_to: Optional[date]) -> list:
    conds = []
    if date_from:
        conds.append(InventoryOperation.created_at >= _day_start(date_from))
    if date_to:
        conds.append(InventoryOperation.created_at < _day_start(date_to + timedelta(days=1)))
    return conds


def _sum_where(cond, value=InventoryOperation.quantity):
    return func.coalesce(func.sum(case((cond, value), else_=0)), 0)


def _count_where(cond):
    return func.count(case((cond, 1)))


def _envelope(actor: Actor, **body) -> dict:
    body["generated_at"] = datetime.now(timezone.utc).isoformat()
    body["generated_by"] = actor.display_name
    return body


async def inventory_report(
    db: AsyncSession,
    actor: Actor,
    sink: SideEffectQueue,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    device_type: Optional[str] = None,
    status: Optional[str] = None,
) -> dict:
    """Per-device approved totals and effective quantity, with fleet statistics."""
    _require_admin(actor)

    # The date window narrows the added/removed totals only; the quantity is always the full fold.
    fold = effective_quantity_query().subquery()
    join_on = and_(InventoryOperation.device_id == Device.id, _IS_APPROVED, *_date_window(date_from, date_to))
    stmt = (
        select(
            Device,
            _sum_where(_IS_ADD).label("total_added"),
            _sum_where(_IS_REMOVE).label("total_removed"),
            fold.c.approved_delta,
        )
        .join(fold, fold.c.id == Device.id)
        .outerjoin(InventoryOperation, join_on)
        .group_by(Device.id, fold.c.approved_delta)
        .order_by(Device.name.asc())
    )
    if device_type:
        stmt = stmt.where(Device.device_type == device_type)
    if status:
        stmt = stmt.where(Device.status == status)

    devices = []
    for device, added, removed, delta in (await db.execute(stmt)).all():
        row = device.to_schema
        row["total_added"] = int(added or 0)
        row["total_removed"] = int(removed or 0)
        row["calculated_quantity"] = int(device.baseline_quantity or 0) + int(delta or 0)
        devices.append(row)

    statistics = {
        "total_devices": len(devices),
        "total_quantity": sum(d["calculated_quantity"] for d in devices),
        "low_stock_devices": sum(1 for d in devices if d["calculated_quantity"] <= d["minimum_quantity"]),
        "out_of_stock_devices": sum(1 for d in devices if d["calculated_quantity"] <= 0),
        "available_devices": sum(1 for d in devices if d["status"] == DeviceStatus.AVAILABLE.value),
        "assigned_devices": sum(1 for d in devices if d["status"] == DeviceStatus.ASSIGNED.value),
    }
    filters = {"date_from": date_from, "date_to": date_to, "device_type": device_type, "status": status}
    sink.log_activity(actor.id, "inventory_report_generated", after=filters)
    return _envelope(actor, devices=devices, statistics=statistics, filters=filters)


async def low_stock_report(db: AsyncSession, actor: Actor, sink: SideEffectQueue) -> dict:
    """Devices whose effective quantity is at or below their minimum."""
    _require_admin(actor)

    effective = (Device.baseline_quantity + approved_delta_column()).label("calculated_quantity")
    stmt = (
        select(Device, effective)
        .outerjoin(InventoryOperation, and_(InventoryOperation.device_id == Device.id, _IS_APPROVED))
        .group_by(Device.id)
        .having(effective <= Device.minimum_quantity)
        .order_by(effective.asc(), Device.name.asc())
    )
    out_of_stock, low_stock = [], []
    for device, qty in (await db.execute(stmt)).all():
        row = device.to_schema
        row["calculated_quantity"] = int(qty or 0)
        (out_of_stock if row["calculated_quantity"] <= 0 else low_stock).append(row)

    statistics = {
        "total_low_stock": len(out_of_stock) + len(low_stock),
        "out_of_stock_count": len(out_of_stock),
        "low_stock_count": len(low_stock),
    }
    sink.log_activity(actor.id, "low_stock_report_generated", after=statistics)
    return _envelope(actor, out_of_stock=out_of_stock, low_stock=low_stock, statistics=statistics)


async def employee_operations_report(
    db: AsyncSession,
    actor: Actor,
    sink: SideEffectQueue,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    user_id: Optional[UUID] = None,
    operation_type: Optional[str] = None,
) -> dict:
    """Operation counts per active employee."""
    _require_admin(actor)

    join_conds = [InventoryOperation.user_id == User.id, *_date_window(date_from, date_to)]
    if operation_type:
        join_conds.append(InventoryOperation.operation_type == operation_type)
    stmt = (
        select(
            User,
            func.count(InventoryOperation.id).label("total_operations"),
            _count_where(_IS_ADD).label("add_operations"),
            _count_where(_IS_REMOVE).label("remove_operations"),
            _count_where(InventoryOperation.status == OperationStatus.PENDING.value).label("pending_operations"),
            _count_where(_IS_APPROVED).label("approved_operations"),
            _count_where(InventoryOperation.status == OperationStatus.REJECTED.value).label("rejected_operations"),
            _sum_where(and_(_IS_ADD, _IS_APPROVED)).label("total_added_quantity"),
            _sum_where(and_(_IS_REMOVE, _IS_APPROVED)).label("total_removed_quantity"),
        )
        .outerjoin(InventoryOperation, and_(*join_conds))
        .where(User.role == Role.EMPLOYEE)
        .where(User.is_active == True)  # noqa: E712
        .group_by(User.id)
    )
    if user_id:
        stmt = stmt.where(User.id == user_id)

    employees = []
    for user, *counts in (await db.execute(stmt)).all():
        row = {
            "user_id": user.id,
            "full_name": user.full_name,
            "email": user.email,
            "department": user.department,
        }
        for key, value in zip(
            (
                "total_operations",
                "add_operations",
                "remove_operations",
                "pending_operations",
                "approved_operations",
                "rejected_operations",
                "total_added_quantity",
                "total_removed_quantity",
            ),
            counts,
        ):
            row[key] = int(value or 0)
        employees.append(row)
    employees.sort(key=lambda r: r["total_operations"], reverse=True)

    statistics = {
        "total_employees": len(employees),
        "active_employees": sum(1 for e in employees if e["total_operations"] > 0),
        "total_operations": sum(e["total_operations"] for e in employees),
        "total_pending": sum(e["pending_operations"] for e in employees),
        "total_approved": sum(e["approved_operations"] for e in employees),
        "total_rejected": sum(e["rejected_operations"] for e in employees),
    }
    filters = {"date_from": date_from, "date_to": date_to, "user_id": user_id, "operation_type": operation_type}
    sink.log_activity(actor.id, "employee_operations_report_generated", after=filters)
    return _envelope(actor, employees=employees, statistics=statistics, filters=filters)


async def most_used_devices_report(
    db: AsyncSession,
    actor: Actor,
    sink: SideEffectQueue,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    limit: int = 10,
) -> dict:
    """Devices ranked by number of approved operations."""
    _require_admin(actor)
    limit = max(1, int(limit))

    operation_count = func.count(InventoryOperation.id).label("operation_count")
    stmt = (
        select(
            Device,
            operation_count,
            _count_where(_IS_ADD).label("add_count"),
            _count_where(_IS_REMOVE).label("remove_count"),
            _sum_where(_IS_ADD).label("total_added"),
            _sum_where(_IS_REMOVE).label("total_removed"),
        )
        .join(InventoryOperation, InventoryOperation.device_id == Device.id)
        .where(_IS_APPROVED)
        .group_by(Device.id)
        .order_by(operation_count.desc(), Device.name.asc())
        .limit(limit)
    )
    for c in _date_window(date_from, date_to):
        stmt = stmt.where(c)

    devices = []
    for device, count, adds, removes, added, removed in (await db.execute(stmt)).all():
        devices.append(
            {
                "id": device.id,
                "barcode": device.barcode,
                "name": device.name,
                "device_type": device.device_type,
                "brand": device.brand,
                "model": device.model,
                "operation_count": int(count or 0),
                "add_count": int(adds or 0),
                "remove_count": int(removes or 0),
                "total_added": int(added or 0),
                "total_removed": int(removed or 0),
            }
        )

    filters = {"date_from": date_from, "date_to": date_to, "limit": limit}
    sink.log_activity(actor.id, "most_used_devices_report_generated", after=filters)
    return _envelope(actor, devices=devices, filters=filters)


async def daily_operations_report(
    db: AsyncSession,
    actor: Actor,
    sink: SideEffectQueue,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> dict:
    """Per-day operation counts; defaults to the last 30 days."""
    _require_admin(actor)
    end = date_to or utcnow().date()
    start = date_from or (end - timedelta(days=DEFAULT_DAILY_WINDOW_DAYS))

    day = func.date(InventoryOperation.created_at).label("operation_date")
    stmt = (
        select(
            day,
            func.count(InventoryOperation.id),
            _count_where(_IS_ADD),
            _count_where(_IS_REMOVE),
            _count_where(InventoryOperation.status == OperationStatus.PENDING.value),
            _count_where(_IS_APPROVED),
            _count_where(InventoryOperation.status == OperationStatus.REJECTED.value),
            func.count(distinct(InventoryOperation.user_id)),
            func.count(distinct(InventoryOperation.device_id)),
        )
        .where(*_date_window(start, end))
        .group_by(day)
        .order_by(day.desc())
    )

    keys = (
        "total_operations",
        "add_operations",
        "remove_operations",
        "pending_operations",
        "approved_operations",
        "rejected_operations",
        "active_users",
        "devices_involved",
    )
    daily = []
    for op_date, *counts in (await db.execute(stmt)).all():
        row = {"operation_date": str(op_date)}
        row.update({k: int(v or 0) for k, v in zip(keys, counts)})
        daily.append(row)

    summary = {
        "total_operations": sum(d["total_operations"] for d in daily),
        "total_add": sum(d["add_operations"] for d in daily),
        "total_remove": sum(d["remove_operations"] for d in daily),
        "total_pending": sum(d["pending_operations"] for d in daily),
        "total_approved": sum(d["approved_operations"] for d in daily),
        "total_rejected": sum(d["rejected_operations"] for d in daily),
    }
    period = {"start_date": start.isoformat(), "end_date": end.isoformat(), "days_count": len(daily)}
    sink.log_activity(actor.id, "daily_operations_report_generated", after={"date_from": start, "date_to": end})
    return _envelope(actor, daily_data=daily, summary=summary, period=period)


async def system_performance_report(db: AsyncSession, actor: Actor, sink: SideEffectQueue) -> dict:
    """Headline usage numbers: totals, this month's activity and approval rate."""
    _require_admin(actor)

    async def _scalar(stmt):
        return (await db.execute(stmt)).scalar()

    month_start = _day_start(utcnow().date().replace(day=1))
    total_ops = int(await _scalar(select(func.count(InventoryOperation.id))) or 0)
    approved_ops = int(await _scalar(select(func.count(InventoryOperation.id)).where(_IS_APPROVED)) or 0)

    # Response time: hours between submission and an admin's decision.
    decided = await db.execute(
        select(InventoryOperation.created_at, InventoryOperation.approval_date)
        .where(InventoryOperation.approval_date.is_not(None))
        .where(InventoryOperation.user_id != InventoryOperation.approved_by_id)
    )
    waits = [
        (decided_at - created).total_seconds() / 3600
        for created, decided_at in decided.all()
        if created is not None and decided_at is not None
    ]

    metrics = {
        "total_users": int(await _scalar(select(func.count(User.id)).where(User.is_active == True)) or 0),  # noqa: E712
        "total_devices": int(await _scalar(select(func.count(Device.id))) or 0),
        "total_operations": total_ops,
        "this_month_operations": int(
            await _scalar(select(func.count(InventoryOperation.id)).where(InventoryOperation.created_at >= month_start))
            or 0
        ),
        "active_users_this_month": int(
            await _scalar(
                select(func.count(distinct(InventoryOperation.user_id))).where(
                    InventoryOperation.created_at >= month_start
                )
            )
            or 0
        ),
        "approval_rate_percentage": round(approved_ops * 100.0 / total_ops, 2) if total_ops else 0,
        "average_response_time_hours": round(sum(waits) / len(waits), 2) if waits else 0,
    }
    sink.log_activity(actor.id, "system_performance_report_generated", after=metrics)
    return _envelope(actor, performance_metrics=metrics)
