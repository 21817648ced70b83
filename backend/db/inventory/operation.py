import enum
import uuid

from fastapi_users_db_sqlalchemy.generics import GUID
from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base


class OperationType(str, enum.Enum):
    ADD = "add"
    REMOVE = "remove"


class OperationStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class InventoryOperation(Base):
    __tablename__ = "inventory_operations"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_inventory_operations_quantity_positive"),
        CheckConstraint("operation_type IN ('add', 'remove')", name="ck_inventory_operations_type"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')", name="ck_inventory_operations_status"
        ),
    )

    id = Column(GUID, primary_key=True, default=uuid.uuid4)

    device_id = Column(GUID, ForeignKey("devices.id", ondelete="RESTRICT"), nullable=False, index=True)
    user_id = Column(GUID, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)

    operation_type = Column(String, nullable=False, index=True)  # 'add' | 'remove'
    quantity = Column(Integer, nullable=False)
    reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    location = Column(String, nullable=True)

    status = Column(String, nullable=False, default=OperationStatus.PENDING.value, index=True)
    approved_by_id = Column(GUID, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approval_date = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now(), index=True)

    device = relationship("Device", back_populates="operations")
    user = relationship("User", foreign_keys=[user_id])
    approved_by = relationship("User", foreign_keys=[approved_by_id])

    @property
    def signed_quantity(self) -> int:
        q = int(self.quantity or 0)
        return q if self.operation_type == OperationType.ADD.value else -q

    @property
    def to_schema(self):
        """Operation row with device/user names when those relationships are loaded."""
        device = self.__dict__.get("device")
        user = self.__dict__.get("user")
        approver = self.__dict__.get("approved_by")
        return {
            "id": self.id,
            "device_id": self.device_id,
            "device_name": device.name if device else None,
            "barcode": device.barcode if device else None,
            "device_type": device.device_type if device else None,
            "user_id": self.user_id,
            "user_name": user.display_name if user else None,
            "operation_type": self.operation_type,
            "quantity": int(self.quantity),
            "reason": self.reason,
            "notes": self.notes,
            "location": self.location,
            "status": self.status,
            "approved_by_id": self.approved_by_id,
            "approved_by_name": approver.display_name if approver else None,
            "approval_date": self.approval_date,
            "created_at": self.created_at,
        }
