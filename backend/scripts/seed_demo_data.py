import asyncio
import sys
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Optional

"""
Seed demo data (an admin, an employee, sample devices) into the database.

This script can be run from either:
- backend/: `python scripts/seed_demo_data.py`
- repo root: `python backend/scripts/seed_demo_data.py`
"""

# Allow running from repo root by ensuring `backend/` is on sys.path
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from fastapi_users.password import PasswordHelper
from sqlalchemy import select

from core.logging_config import configure_logging
from db.database import async_session_maker, create_db_and_tables
from db.device import Device, DeviceStatus
from db.inventory.operation import InventoryOperation, OperationStatus, OperationType
from db.users import Role, User

password_helper = PasswordHelper()


@dataclass(frozen=True)
class DeviceSeed:
    barcode: str
    name: str
    device_type: str
    brand: Optional[str] = None
    model: Optional[str] = None
    location: Optional[str] = None
    baseline: int = 1
    minimum: int = 1
    price: Optional[Decimal] = None
    received: int = 0


DEVICES = [
    DeviceSeed("LAP-0001", "ThinkPad T14", "laptop", "Lenovo", "T14 Gen 4", "IT storage", 5, 2, Decimal("1450.00"), 3),
    DeviceSeed("LAP-0002", "MacBook Air 13", "laptop", "Apple", "M2", "IT storage", 2, 1, Decimal("1199.00")),
    DeviceSeed("MON-0001", "UltraSharp 27", "monitor", "Dell", "U2723QE", "Warehouse A", 10, 3, Decimal("579.00"), 4),
    DeviceSeed("KBD-0001", "MX Keys", "keyboard", "Logitech", "MX Keys S", "Warehouse A", 20, 5, Decimal("109.00")),
    DeviceSeed("DOC-0001", "USB-C Dock", "dock", "Dell", "WD19S", "Warehouse B", 1, 2, Decimal("229.00")),
]


async def get_or_create_user(session, email: str, password: str, full_name: str, role: Role) -> User:
    result = await session.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user:
        return user

    user = User(
        email=email,
        hashed_password=password_helper.hash(password),
        full_name=full_name,
        role=role,
        is_active=True,
        is_superuser=False,
        is_verified=True,
    )
    session.add(user)
    await session.flush()
    return user


async def get_or_create_device(session, seed: DeviceSeed) -> tuple[Device, bool]:
    result = await session.execute(select(Device).where(Device.barcode == seed.barcode))
    device = result.scalar_one_or_none()
    if device:
        return device, False

    device = Device(
        barcode=seed.barcode,
        name=seed.name,
        device_type=seed.device_type,
        brand=seed.brand,
        model=seed.model,
        location=seed.location,
        status=DeviceStatus.AVAILABLE.value,
        purchase_price=seed.price,
        baseline_quantity=seed.baseline,
        minimum_quantity=seed.minimum,
    )
    session.add(device)
    await session.flush()
    return device, True


async def seed():
    configure_logging()
    await create_db_and_tables()

    async with async_session_maker() as session:
        async with session.begin():
            admin = await get_or_create_user(session, "admin@example.com", "admin123", "System Admin", Role.ADMIN)
            employee = await get_or_create_user(
                session, "employee@example.com", "employee123", "Demo Employee", Role.EMPLOYEE
            )

            for seed_row in DEVICES:
                device, created = await get_or_create_device(session, seed_row)
                if not created or not seed_row.received:
                    continue
                # A pre-approved delivery so the effective quantity differs from the baseline.
                session.add(
                    InventoryOperation(
                        device_id=device.id,
                        user_id=admin.id,
                        operation_type=OperationType.ADD.value,
                        quantity=seed_row.received,
                        reason="Initial delivery",
                        status=OperationStatus.APPROVED.value,
                        approved_by_id=admin.id,
                    )
                )

            # One request waiting in the approval queue.
            keyboards, _ = await get_or_create_device(session, DEVICES[3])
            pending = await session.execute(
                select(InventoryOperation.id).where(
                    InventoryOperation.user_id == employee.id,
                    InventoryOperation.status == OperationStatus.PENDING.value,
                )
            )
            if pending.first() is None:
                session.add(
                    InventoryOperation(
                        device_id=keyboards.id,
                        user_id=employee.id,
                        operation_type=OperationType.REMOVE.value,
                        quantity=2,
                        reason="New hires",
                        status=OperationStatus.PENDING.value,
                    )
                )


if __name__ == "__main__":
    asyncio.run(seed())
