"""
Approval workflow: pending -> approved | rejected, admins only.

The status flip is a compare-and-set (``UPDATE ... WHERE status = 'pending'``),
so of two admins processing the same operation concurrently exactly one
succeeds and the other gets NotApprovable. Approval also holds the device lock,
which keeps it ordered against submissions reading the same device's fold.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.auth import Actor
from core.errors import Forbidden, InventoryError, NotApprovable, OperationNotFound, StorageError
from db.activity import NotificationSeverity
from db.inventory.operation import InventoryOperation, OperationStatus, OperationType
from services.reconciliation import load_effective_quantity
from services.registry import lock_device
from services.side_effects import SideEffectQueue
from services.submission import utcnow

logger = logging.getLogger(__name__)


async def _load_operation(db: AsyncSession, operation_id: UUID) -> InventoryOperation:
    res = await db.execute(
        select(InventoryOperation)
        .options(selectinload(InventoryOperation.device), selectinload(InventoryOperation.user))
        .where(InventoryOperation.id == operation_id)
        .execution_options(populate_existing=True)
    )
    op = res.scalar_one_or_none()
    if not op:
        raise OperationNotFound()
    return op


async def _transition(
    db: AsyncSession,
    actor: Actor,
    operation_id: UUID,
    target: OperationStatus,
    notes: Optional[str],
) -> tuple[InventoryOperation, dict]:
    if not actor.is_admin:
        raise Forbidden("Admin privileges required")

    op = await _load_operation(db, operation_id)
    if op.status != OperationStatus.PENDING.value:
        raise NotApprovable(f"Operation has already been {op.status}")
    before = op.to_schema

    if target is OperationStatus.APPROVED:
        await lock_device(db, op.device_id)

    res = await db.execute(
        update(InventoryOperation)
        .where(InventoryOperation.id == op.id)
        .where(InventoryOperation.status == OperationStatus.PENDING.value)
        .values(
            status=target.value,
            approved_by_id=actor.id,
            approval_date=utcnow(),
            notes=notes if notes is not None else InventoryOperation.notes,
        )
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        # Another admin processed it between our read and our write.
        raise NotApprovable("Operation has already been processed")

    if target is OperationStatus.APPROVED:
        snap = await load_effective_quantity(db, op.device_id)
        if snap.is_anomalous:
            logger.warning(
                "Approving operation %s leaves device %s at effective quantity %s",
                op.id, op.device_id, snap.effective,
            )
    return op, before


async def _process(
    db: AsyncSession,
    actor: Actor,
    operation_id: UUID,
    target: OperationStatus,
    notes: Optional[str],
    sink: SideEffectQueue,
) -> InventoryOperation:
    try:
        op, before = await _transition(db, actor, operation_id, target, notes)
        await db.commit()
    except InventoryError:
        await db.rollback()
        raise
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("Could not mark operation %s as %s", operation_id, target.value)
        raise StorageError() from e
    await db.refresh(op)

    approved = target is OperationStatus.APPROVED
    logger.info("Operation %s %s by %s", op.id, target.value, actor.id)

    sink.log_activity(
        actor.id,
        "operation_approved" if approved else "operation_rejected",
        "inventory_operations",
        op.id,
        before=before,
        after={"notes": notes},
    )
    kind = "addition" if op.operation_type == OperationType.ADD.value else "removal"
    device_name = op.device.name if op.device else str(op.device_id)
    verb = "Approved" if approved else "Rejected"
    sink.notify(
        op.user_id,
        f"{kind.capitalize()} Operation {verb}",
        f"{kind.capitalize()} operation for {device_name} has been {verb.lower()}",
        NotificationSeverity.SUCCESS.value if approved else NotificationSeverity.ERROR.value,
    )
    return op


async def approve_operation(
    db: AsyncSession,
    actor: Actor,
    operation_id: UUID,
    notes: Optional[str],
    sink: SideEffectQueue,
) -> InventoryOperation:
    return await _process(db, actor, operation_id, OperationStatus.APPROVED, notes, sink)


async def reject_operation(
    db: AsyncSession,
    actor: Actor,
    operation_id: UUID,
    notes: Optional[str],
    sink: SideEffectQueue,
) -> InventoryOperation:
    return await _process(db, actor, operation_id, OperationStatus.REJECTED, notes, sink)
