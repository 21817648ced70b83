from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, field_validator

from schemas.devices import DeviceWithQuantity, Pagination


class OperationCreate(BaseModel):
    # Range/membership checks happen in the submission service so they come
    # back as InvalidQuantity / InvalidOperationType in guard order.
    device_id: Optional[UUID] = None
    barcode: Optional[str] = None
    operation_type: Optional[str] = None
    quantity: int = 1
    reason: Optional[str] = None
    notes: Optional[str] = None
    location: Optional[str] = None

    @field_validator("barcode", "reason", "notes", "location")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class ManualAdjustCreate(BaseModel):
    device_id: Optional[UUID] = None
    barcode: Optional[str] = None
    quantity: int = 1
    reason: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("barcode", "reason", "notes")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class ApprovalNotes(BaseModel):
    notes: Optional[str] = None


class OperationRead(BaseModel):
    id: UUID
    device_id: UUID
    device_name: Optional[str] = None
    barcode: Optional[str] = None
    device_type: Optional[str] = None
    user_id: UUID
    user_name: Optional[str] = None
    operation_type: str
    quantity: int
    reason: Optional[str] = None
    notes: Optional[str] = None
    location: Optional[str] = None
    status: str
    approved_by_id: Optional[UUID] = None
    approved_by_name: Optional[str] = None
    approval_date: Optional[datetime] = None
    created_at: Optional[datetime] = None


class OperationList(BaseModel):
    operations: List[OperationRead]
    pagination: Pagination


class OperationResultRead(BaseModel):
    message: str
    status: str
    operation: OperationRead
    device: DeviceWithQuantity
    available_quantity: int


class InventoryStats(BaseModel):
    totalDevices: int
    availableDevices: int
    assignedDevices: int
    pendingOperations: int
    todayOperations: int
    lowStockDevices: int
