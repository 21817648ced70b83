"""
Role-gated submission of inventory operations.

Guards run in a fixed order and stop at the first failure:

1. the device resolves (by id, else by exact barcode)
2. quantity > 0
3. operation type is ``add`` or ``remove``
4. a ``remove`` does not exceed the device's current effective quantity

Admins' operations are recorded ``approved`` and count immediately; employees'
are recorded ``pending`` and every active admin is notified. The availability
check, the insert and the resulting fold run in one transaction holding the
device lock, so concurrent submissions for one device cannot both spend the
same stock.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import Actor
from core.errors import (
    InsufficientQuantity,
    InvalidOperationType,
    InvalidQuantity,
    InventoryError,
    StorageError,
)
from db.activity import NotificationSeverity
from db.device import Device
from db.inventory.operation import InventoryOperation, OperationStatus, OperationType
from db.users import Role
from services.reconciliation import load_effective_quantity
from services.registry import lock_device, resolve_device
from services.side_effects import SideEffectQueue

logger = logging.getLogger(__name__)

OPERATION_TYPES = {t.value for t in OperationType}


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class OperationRequest:
    operation_type: Optional[str]
    quantity: int = 1
    device_id: Optional[UUID] = None
    barcode: Optional[str] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    location: Optional[str] = None


@dataclass
class OperationResult:
    operation: InventoryOperation
    device: Device
    available_quantity: int

    @property
    def status(self) -> str:
        return self.operation.status

    @property
    def message(self) -> str:
        verb = "added" if self.operation.operation_type == OperationType.ADD.value else "removed"
        if self.status == OperationStatus.APPROVED.value:
            return f"Stock {verb} successfully"
        return "Request submitted, pending approval"


@dataclass(frozen=True)
class InitialState:
    status: OperationStatus
    approved_by_id: Optional[UUID]
    approval_date: Optional[datetime]
    notify_admins: bool


def initial_state(actor: Actor) -> InitialState:
    """Decide how a new operation starts its life based on who submitted it."""
    if actor.role is Role.ADMIN:
        return InitialState(OperationStatus.APPROVED, actor.id, utcnow(), notify_admins=False)
    if actor.role is Role.EMPLOYEE:
        return InitialState(OperationStatus.PENDING, None, None, notify_admins=True)
    raise ValueError(f"Unhandled role {actor.role!r}")


async def _admit(
    db: AsyncSession,
    actor: Actor,
    request: OperationRequest,
) -> OperationResult:
    device = await resolve_device(db, request.device_id, request.barcode)

    quantity = request.quantity
    if quantity is None or isinstance(quantity, bool) or int(quantity) <= 0:
        raise InvalidQuantity()
    quantity = int(quantity)

    operation_type = (request.operation_type or "").strip().lower()
    if operation_type not in OPERATION_TYPES:
        raise InvalidOperationType()

    await lock_device(db, device.id)
    snap = await load_effective_quantity(db, device.id)
    if operation_type == OperationType.REMOVE.value and quantity > snap.effective:
        raise InsufficientQuantity(available=snap.effective, requested=quantity)

    state = initial_state(actor)
    op = InventoryOperation(
        device_id=device.id,
        user_id=actor.id,
        operation_type=operation_type,
        quantity=quantity,
        reason=request.reason,
        notes=request.notes,
        location=request.location,
        status=state.status.value,
        approved_by_id=state.approved_by_id,
        approval_date=state.approval_date,
    )
    db.add(op)
    await db.flush()

    available = snap.effective
    if state.status is OperationStatus.APPROVED:
        available += op.signed_quantity
    return OperationResult(operation=op, device=device, available_quantity=available)


async def _submit(
    db: AsyncSession,
    actor: Actor,
    request: OperationRequest,
    sink: SideEffectQueue,
    action: Optional[str],
) -> OperationResult:
    try:
        result = await _admit(db, actor, request)
        await db.commit()
    except InventoryError:
        await db.rollback()
        raise
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("Submitting %s operation failed for actor %s", request.operation_type, actor.id)
        raise StorageError() from e
    await db.refresh(result.operation)

    op = result.operation
    device = result.device
    logger.info(
        "Operation %s (%s %s on device %s) recorded as %s by %s",
        op.id, op.operation_type, op.quantity, device.id, op.status, actor.id,
    )

    if action is None:
        action = (
            "manual_stock_added" if op.operation_type == OperationType.ADD.value else "manual_stock_removed"
        )
    sink.log_activity(
        actor.id,
        action,
        "inventory_operations",
        op.id,
        after={
            "device_name": device.name,
            "barcode": device.barcode,
            "operation_type": op.operation_type,
            "quantity": op.quantity,
            "reason": op.reason,
            "status": op.status,
        },
    )

    if op.status == OperationStatus.PENDING.value:
        kind = "Addition" if op.operation_type == OperationType.ADD.value else "Removal"
        sink.notify_admins(
            f"New {kind} Operation",
            f"{actor.display_name} requested {kind.lower()} of {op.quantity} for {device.name}",
            NotificationSeverity.INFO.value,
        )
    return result


async def submit_operation(
    db: AsyncSession, actor: Actor, request: OperationRequest, sink: SideEffectQueue
) -> OperationResult:
    """Generic add/remove submission (scanner flow)."""
    return await _submit(db, actor, request, sink, action="inventory_operation_created")


async def manual_adjust(
    db: AsyncSession, actor: Actor, request: OperationRequest, sink: SideEffectQueue
) -> OperationResult:
    """Manual stock add/remove; same policy as submit_operation, logged as a manual adjustment."""
    return await _submit(db, actor, request, sink, action=None)
