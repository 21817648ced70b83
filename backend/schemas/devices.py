from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, field_validator


class DeviceCreate(BaseModel):
    # Presence of barcode/name/type is checked by the registry so a missing
    # field surfaces as MissingField rather than a schema error.
    barcode: Optional[str] = None
    name: Optional[str] = None
    device_type: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    serial_number: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    status: Optional[str] = None
    purchase_date: Optional[date] = None
    purchase_price: Optional[float] = None
    warranty_expiry: Optional[date] = None
    baseline_quantity: int = 1
    minimum_quantity: int = 1

    @field_validator("brand", "model", "serial_number", "description", "location")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class DeviceUpdate(BaseModel):
    name: Optional[str] = None
    device_type: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    serial_number: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    status: Optional[str] = None
    purchase_date: Optional[date] = None
    purchase_price: Optional[float] = None
    warranty_expiry: Optional[date] = None
    baseline_quantity: Optional[int] = None
    minimum_quantity: Optional[int] = None


class DeviceRead(BaseModel):
    id: UUID
    barcode: str
    name: str
    device_type: str
    brand: Optional[str] = None
    model: Optional[str] = None
    serial_number: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    status: str
    purchase_date: Optional[date] = None
    purchase_price: Optional[float] = None
    warranty_expiry: Optional[date] = None
    baseline_quantity: int
    minimum_quantity: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DeviceWithQuantity(DeviceRead):
    calculated_quantity: int
    integrity_anomaly: bool = False
    is_low_stock: bool = False


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int


class DeviceList(BaseModel):
    devices: List[DeviceWithQuantity]
    pagination: Pagination


class QuantityRead(BaseModel):
    device_id: UUID
    baseline_quantity: int
    approved_delta: int
    effective_quantity: int
    integrity_anomaly: bool
