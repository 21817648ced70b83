from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from core.config import settings

DATABASE_URL = settings.database_url


class Base(DeclarativeBase):
    pass


engine = create_async_engine(DATABASE_URL, echo=settings.database_echo)
async_session_maker = async_sessionmaker(engine, expire_on_commit=False)


async def create_db_and_tables():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        yield session


# Models register themselves on Base.metadata; re-exported for routers/scripts.
from .users import User, Role  # noqa: E402
from .device import Device, DeviceStatus  # noqa: E402
from .inventory.operation import InventoryOperation, OperationStatus, OperationType  # noqa: E402
from .activity import ActivityLog, Notification  # noqa: E402

__all__ = [
    "Base",
    "engine",
    "async_session_maker",
    "create_db_and_tables",
    "get_async_session",
    "User",
    "Role",
    "Device",
    "DeviceStatus",
    "InventoryOperation",
    "OperationStatus",
    "OperationType",
    "ActivityLog",
    "Notification",
]
