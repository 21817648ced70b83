import enum
import uuid

from fastapi_users_db_sqlalchemy.generics import GUID
from sqlalchemy import CheckConstraint, Column, Date, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class DeviceStatus(str, enum.Enum):
    AVAILABLE = "available"
    ASSIGNED = "assigned"
    MAINTENANCE = "maintenance"
    DAMAGED = "damaged"
    DISPOSED = "disposed"


class Device(Base):
    """
    A tracked device.

    ``baseline_quantity`` is the starting point of the quantity fold; the
    effective stock is computed from it plus the approved ledger entries.
    ``lock_version`` is bumped by every quantity-affecting write so concurrent
    writers for the same device serialize on the row.
    """
    __tablename__ = "devices"
    __table_args__ = (
        CheckConstraint("baseline_quantity >= 0", name="ck_devices_baseline_non_negative"),
        CheckConstraint("minimum_quantity >= 0", name="ck_devices_minimum_non_negative"),
    )

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    barcode = Column(String, nullable=False, unique=True, index=True)

    name = Column(String, nullable=False, index=True)
    device_type = Column(String, nullable=False, index=True)
    brand = Column(String, nullable=True)
    model = Column(String, nullable=True)
    serial_number = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    location = Column(String, nullable=True)
    status = Column(String, nullable=False, default=DeviceStatus.AVAILABLE.value, index=True)

    purchase_date = Column(Date, nullable=True)
    purchase_price = Column(Numeric(12, 2), nullable=True)
    warranty_expiry = Column(Date, nullable=True)

    baseline_quantity = Column(Integer, nullable=False, default=1)
    minimum_quantity = Column(Integer, nullable=False, default=1)
    lock_version = Column(Integer, nullable=False, default=0, server_default="0")

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    operations = relationship("InventoryOperation", back_populates="device", passive_deletes=True)

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "barcode": self.barcode,
            "name": self.name,
            "device_type": self.device_type,
            "brand": self.brand,
            "model": self.model,
            "serial_number": self.serial_number,
            "description": self.description,
            "location": self.location,
            "status": self.status,
            "purchase_date": self.purchase_date,
            "purchase_price": float(self.purchase_price) if self.purchase_price is not None else None,
            "warranty_expiry": self.warranty_expiry,
            "baseline_quantity": int(self.baseline_quantity or 0),
            "minimum_quantity": int(self.minimum_quantity or 0),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
