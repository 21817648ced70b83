import enum

from fastapi_users.db import SQLAlchemyBaseUserTableUUID
from sqlalchemy import Column, DateTime, Enum, String
from sqlalchemy.sql import func
from .database import Base


class Role(str, enum.Enum):
    EMPLOYEE = "employee"
    ADMIN = "admin"


class User(SQLAlchemyBaseUserTableUUID, Base):
    __tablename__ = "users"

    full_name = Column(String, nullable=False, default="")
    role = Column(
        Enum(Role, name="user_role", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=Role.EMPLOYEE,
        index=True,
    )
    department = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now(), index=True)

    @property
    def display_name(self) -> str:
        return (self.full_name or "").strip() or self.email

    @property
    def to_schema(self):
        """Convert User model to schema dictionary format"""
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": Role(self.role).value,
            "department": self.department,
            "is_active": bool(self.is_active),
            "created_at": self.created_at,
        }
