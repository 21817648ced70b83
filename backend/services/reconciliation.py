"""
Quantity reconciliation.

The effective quantity of a device is its baseline plus the signed sum of its
approved ledger entries (``add`` counts +quantity, ``remove`` counts -quantity).
Pending and rejected entries contribute nothing.

The pure functions here work on any objects exposing ``baseline_quantity`` /
``operation_type``, ``quantity``, ``status`` (ORM rows or plain dataclasses);
the ``load_*`` helpers compute the same fold with one aggregate query.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import and_, case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import DeviceNotFound
from db.device import Device
from db.inventory.operation import InventoryOperation, OperationStatus, OperationType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuantitySnapshot:
    device_id: UUID
    baseline: int
    approved_delta: int

    @property
    def effective(self) -> int:
        return self.baseline + self.approved_delta

    @property
    def is_anomalous(self) -> bool:
        # Validated history never folds below zero; a negative result means drift.
        return self.effective < 0

    def to_dict(self) -> dict:
        return {
            "device_id": self.device_id,
            "baseline_quantity": self.baseline,
            "approved_delta": self.approved_delta,
            "effective_quantity": self.effective,
            "integrity_anomaly": self.is_anomalous,
        }


def signed_quantity(operation_type: str, quantity: int) -> int:
    q = int(quantity)
    if operation_type == OperationType.ADD.value:
        return q
    if operation_type == OperationType.REMOVE.value:
        return -q
    raise ValueError(f"Unknown operation type {operation_type!r}")


def _belongs_to(device, entry) -> bool:
    device_id = getattr(device, "id", None)
    entry_device_id = getattr(entry, "device_id", None)
    return device_id is None or entry_device_id is None or entry_device_id == device_id


def approved_delta(device, ledger: Iterable) -> int:
    return sum(
        signed_quantity(e.operation_type, e.quantity)
        for e in ledger
        if e.status == OperationStatus.APPROVED.value and _belongs_to(device, e)
    )


def effective_quantity(device, ledger: Iterable) -> int:
    effective = int(device.baseline_quantity or 0) + approved_delta(device, ledger)
    if effective < 0:
        logger.warning(
            "Device %s folds to a negative effective quantity (%s)",
            getattr(device, "id", None),
            effective,
        )
    return effective


def can_remove(device, ledger: Iterable, requested_quantity: int) -> bool:
    return int(requested_quantity) <= effective_quantity(device, ledger)


def approved_delta_column():
    """SUM(+q for approved adds, -q for approved removes); callers join approved rows only."""
    return func.coalesce(
        func.sum(
            case(
                (InventoryOperation.operation_type == OperationType.ADD.value, InventoryOperation.quantity),
                else_=-InventoryOperation.quantity,
            )
        ),
        0,
    )


def effective_quantity_query():
    """SELECT device id, baseline, approved delta for every device (filter further as needed)."""
    return (
        select(Device.id, Device.baseline_quantity, approved_delta_column().label("approved_delta"))
        .outerjoin(
            InventoryOperation,
            and_(
                InventoryOperation.device_id == Device.id,
                InventoryOperation.status == OperationStatus.APPROVED.value,
            ),
        )
        .group_by(Device.id, Device.baseline_quantity)
    )


async def load_effective_quantities(
    db: AsyncSession, device_ids: Optional[list[UUID]] = None
) -> dict[UUID, QuantitySnapshot]:
    stmt = effective_quantity_query()
    if device_ids is not None:
        if not device_ids:
            return {}
        stmt = stmt.where(Device.id.in_(device_ids))
    res = await db.execute(stmt)
    out: dict[UUID, QuantitySnapshot] = {}
    for device_id, baseline, delta in res.all():
        snap = QuantitySnapshot(device_id=device_id, baseline=int(baseline or 0), approved_delta=int(delta or 0))
        if snap.is_anomalous:
            logger.warning("Device %s has negative effective quantity %s", device_id, snap.effective)
        out[device_id] = snap
    return out


async def load_effective_quantity(db: AsyncSession, device_id: UUID) -> QuantitySnapshot:
    snaps = await load_effective_quantities(db, [device_id])
    snap = snaps.get(device_id)
    if snap is None:
        raise DeviceNotFound()
    return snap


async def get_effective_quantity(db: AsyncSession, device_id: UUID) -> QuantitySnapshot:
    """Entry point for display: the current effective quantity of one device."""
    return await load_effective_quantity(db, device_id)
