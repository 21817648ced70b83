import logging
from dataclasses import dataclass
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import Actor
from core.errors import (
    DeviceNotFound,
    DuplicateBarcode,
    Forbidden,
    HasDependentOperations,
    InvalidQuantity,
    InvalidStatus,
    InventoryError,
    MissingField,
    StorageError,
)
from db.activity import NotificationSeverity
from db.device import Device, DeviceStatus
from db.inventory.operation import InventoryOperation
from schemas.devices import DeviceCreate, DeviceUpdate
from services.reconciliation import QuantitySnapshot, load_effective_quantities
from services.side_effects import SideEffectQueue

logger = logging.getLogger(__name__)

DEVICE_STATUSES = {s.value for s in DeviceStatus}

# Columns an update may touch; barcode is the immutable business key.
UPDATABLE_FIELDS = (
    "name",
    "device_type",
    "brand",
    "model",
    "serial_number",
    "description",
    "location",
    "status",
    "purchase_date",
    "purchase_price",
    "warranty_expiry",
    "baseline_quantity",
    "minimum_quantity",
)


@dataclass
class DevicePage:
    items: List[dict]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


def _require_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise Forbidden("Admin privileges required")


def _strip(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    return v or None


def _check_non_negative(name: str, value) -> None:
    if value is not None and int(value) < 0:
        raise InvalidQuantity(f"{name} must be greater than or equal to zero")


def device_with_quantity(device: Device, snap: Optional[QuantitySnapshot]) -> dict:
    out = device.to_schema
    effective = snap.effective if snap else int(device.baseline_quantity or 0)
    out["calculated_quantity"] = effective
    out["integrity_anomaly"] = bool(snap and snap.is_anomalous)
    out["is_low_stock"] = effective <= int(device.minimum_quantity or 0)
    return out


async def lock_device(db: AsyncSession, device_id: UUID) -> None:
    """
    Take the per-device write lock for the rest of the current transaction.

    Every write that changes a device's quantity fold goes through here first,
    so the read-validate-write sequence that follows it is serialized per device.
    """
    res = await db.execute(
        update(Device)
        .where(Device.id == device_id)
        .values(lock_version=Device.lock_version + 1)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        raise DeviceNotFound()


async def get_device(db: AsyncSession, device_id: UUID) -> Device:
    res = await db.execute(select(Device).where(Device.id == device_id))
    device = res.scalar_one_or_none()
    if not device:
        raise DeviceNotFound()
    return device


async def find_device_by_barcode(db: AsyncSession, barcode: str) -> Device:
    # Exact, case-sensitive match on the business key.
    res = await db.execute(select(Device).where(Device.barcode == barcode))
    device = res.scalar_one_or_none()
    if not device:
        raise DeviceNotFound(f"No device with barcode {barcode}")
    return device


async def resolve_device(db: AsyncSession, device_id: Optional[UUID], barcode: Optional[str]) -> Device:
    if device_id is not None:
        return await get_device(db, device_id)
    barcode = _strip(barcode)
    if barcode is None:
        raise MissingField("Device ID or barcode is required")
    return await find_device_by_barcode(db, barcode)


async def get_device_detail(db: AsyncSession, device_id: UUID) -> dict:
    device = await get_device(db, device_id)
    snaps = await load_effective_quantities(db, [device.id])
    return device_with_quantity(device, snaps.get(device.id))


async def search_by_barcode(db: AsyncSession, actor: Actor, barcode: str, sink: SideEffectQueue) -> dict:
    device = await find_device_by_barcode(db, barcode)
    snaps = await load_effective_quantities(db, [device.id])
    sink.log_activity(actor.id, "device_searched", "devices", device.id, after={"barcode": barcode})
    return device_with_quantity(device, snaps.get(device.id))


async def list_devices(
    db: AsyncSession,
    search: Optional[str] = None,
    status: Optional[str] = None,
    device_type: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> DevicePage:
    page = max(1, int(page))
    limit = max(1, int(limit))

    stmt = select(Device)
    count_stmt = select(func.count(Device.id))
    conditions = []
    if search:
        like = f"%{search.strip()}%"
        conditions.append(
            or_(
                Device.name.like(like),
                Device.barcode.like(like),
                Device.brand.like(like),
                Device.model.like(like),
            )
        )
    if status:
        conditions.append(Device.status == status)
    if device_type:
        conditions.append(Device.device_type == device_type)
    for c in conditions:
        stmt = stmt.where(c)
        count_stmt = count_stmt.where(c)

    res = await db.execute(stmt.order_by(Device.name.asc()).limit(limit).offset((page - 1) * limit))
    devices = res.scalars().all()
    total = int((await db.execute(count_stmt)).scalar() or 0)
    snaps = await load_effective_quantities(db, [d.id for d in devices])
    return DevicePage(
        items=[device_with_quantity(d, snaps.get(d.id)) for d in devices],
        page=page,
        limit=limit,
        total=total,
    )


async def list_device_types(db: AsyncSession) -> List[str]:
    res = await db.execute(select(Device.device_type).distinct().order_by(Device.device_type))
    return [t for t in res.scalars().all() if t]


async def create_device(db: AsyncSession, actor: Actor, payload: DeviceCreate, sink: SideEffectQueue) -> Device:
    _require_admin(actor)

    barcode = _strip(payload.barcode)
    name = _strip(payload.name)
    device_type = _strip(payload.device_type)
    if not barcode or not name or not device_type:
        raise MissingField("Barcode, device name, and type are required")
    _check_non_negative("baseline_quantity", payload.baseline_quantity)
    _check_non_negative("minimum_quantity", payload.minimum_quantity)
    if payload.status is not None and payload.status not in DEVICE_STATUSES:
        raise InvalidStatus(f"Status must be one of: {', '.join(sorted(DEVICE_STATUSES))}")

    existing = await db.execute(select(Device.id).where(Device.barcode == barcode))
    if existing.scalar_one_or_none():
        raise DuplicateBarcode()

    device = Device(
        barcode=barcode,
        name=name,
        device_type=device_type,
        brand=payload.brand,
        model=payload.model,
        serial_number=payload.serial_number,
        description=payload.description,
        location=payload.location,
        status=payload.status or DeviceStatus.AVAILABLE.value,
        purchase_date=payload.purchase_date,
        purchase_price=payload.purchase_price,
        warranty_expiry=payload.warranty_expiry,
        baseline_quantity=int(payload.baseline_quantity),
        minimum_quantity=int(payload.minimum_quantity),
    )
    db.add(device)
    try:
        await db.commit()
    except IntegrityError as e:
        # Lost a race against another create with the same barcode.
        await db.rollback()
        raise DuplicateBarcode() from e
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("create_device failed for barcode %s", barcode)
        raise StorageError() from e
    await db.refresh(device)

    sink.log_activity(
        actor.id,
        "device_added",
        "devices",
        device.id,
        after={"barcode": barcode, "name": name, "device_type": device_type, "brand": device.brand, "model": device.model},
    )
    sink.notify(actor.id, "New Device Added", f"Device {name} added successfully", NotificationSeverity.SUCCESS.value)
    return device


async def update_device(
    db: AsyncSession, actor: Actor, device_id: UUID, payload: DeviceUpdate, sink: SideEffectQueue
) -> Device:
    _require_admin(actor)

    # Explicit nulls behave like omitted fields: the previous value is kept.
    data = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None and k in UPDATABLE_FIELDS}
    for key in ("name", "device_type"):
        if key in data:
            data[key] = _strip(data[key])
            if not data[key]:
                raise MissingField(f"{key} cannot be empty")
    _check_non_negative("baseline_quantity", data.get("baseline_quantity"))
    _check_non_negative("minimum_quantity", data.get("minimum_quantity"))
    if "status" in data and data["status"] not in DEVICE_STATUSES:
        raise InvalidStatus(f"Status must be one of: {', '.join(sorted(DEVICE_STATUSES))}")

    try:
        device = await get_device(db, device_id)
        before = device.to_schema
        if "baseline_quantity" in data:
            await lock_device(db, device.id)
        for key, value in data.items():
            setattr(device, key, value)
        await db.commit()
    except InventoryError:
        await db.rollback()
        raise
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("update_device failed for %s", device_id)
        raise StorageError() from e
    await db.refresh(device)

    sink.log_activity(actor.id, "device_updated", "devices", device.id, before=before, after=data)
    sink.notify(actor.id, "Device Updated", f"Device {device.name} updated successfully", NotificationSeverity.INFO.value)
    return device


async def delete_device(db: AsyncSession, actor: Actor, device_id: UUID, sink: SideEffectQueue) -> None:
    _require_admin(actor)

    refs = await db.execute(
        select(func.count(InventoryOperation.id)).where(InventoryOperation.device_id == device_id)
    )
    if int(refs.scalar() or 0) > 0:
        raise HasDependentOperations("Cannot delete device with related operations")

    device = await get_device(db, device_id)
    before = device.to_schema
    try:
        await db.delete(device)
        await db.commit()
    except IntegrityError as e:
        # An operation was appended between the check and the delete.
        await db.rollback()
        raise HasDependentOperations("Cannot delete device with related operations") from e
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("delete_device failed for %s", device_id)
        raise StorageError() from e

    sink.log_activity(actor.id, "device_deleted", "devices", device_id, before=before)
    sink.notify(actor.id, "Device Deleted", f"Device {before['name']} deleted", NotificationSeverity.WARNING.value)
