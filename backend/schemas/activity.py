from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel

from schemas.devices import Pagination


class ActivityRead(BaseModel):
    id: UUID
    user_id: Optional[UUID] = None
    user_name: Optional[str] = None
    action: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    old_values: Optional[Any] = None
    new_values: Optional[Any] = None
    created_at: Optional[datetime] = None


class ActivityList(BaseModel):
    activities: List[ActivityRead]
    pagination: Pagination


class NotificationRead(BaseModel):
    id: UUID
    user_id: UUID
    title: str
    message: str
    severity: str
    is_read: bool
    created_at: Optional[datetime] = None


class NotificationList(BaseModel):
    notifications: List[NotificationRead]
    pagination: Pagination
