# Pydantic schemas for user-related requests/responses
# fastapi-users supplies the base read/create/update shapes; these add the
# inventory profile (full name, department, role).

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi_users import schemas
from pydantic import BaseModel, Field, field_validator

from db.users import Role
from schemas.devices import Pagination


class UserRead(schemas.BaseUser[UUID]):
    full_name: str = ""
    role: Role = Role.EMPLOYEE
    department: Optional[str] = None
    created_at: Optional[datetime] = None


class UserCreate(schemas.BaseUserCreate):
    """Self-registration: always creates an employee."""
    full_name: str
    department: Optional[str] = None

    @field_validator("full_name")
    @classmethod
    def _strip_full_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("full_name cannot be empty")
        return v


class UserUpdate(schemas.BaseUserUpdate):
    full_name: Optional[str] = None
    department: Optional[str] = None


class AdminUserCreate(UserCreate):
    role: Role = Role.EMPLOYEE
    # Admin rights come from role alone; the fastapi-users superuser flag is never set.
    is_superuser: bool = Field(default=False, exclude=True)


class AdminUserUpdate(schemas.BaseUserUpdate):
    full_name: Optional[str] = None
    department: Optional[str] = None
    role: Optional[Role] = None
    is_superuser: Optional[bool] = Field(default=None, exclude=True)


class PasswordReset(BaseModel):
    new_password: str


class UserList(BaseModel):
    users: List[UserRead]
    pagination: Pagination
