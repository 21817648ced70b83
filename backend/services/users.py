"""
User administration, the activity log and per-user notifications.

Account creation and updates go through the fastapi-users ``UserManager`` so
passwords are validated and hashed in one place.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import List, Optional
from uuid import UUID

from fastapi_users.exceptions import InvalidPasswordException, UserAlreadyExists
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.auth import Actor, UserManager
from core.errors import (
    DuplicateEmail,
    Forbidden,
    HasDependentOperations,
    InvalidPassword,
    InvalidRole,
    NotificationNotFound,
    StorageError,
    UserNotFound,
)
from db.activity import ActivityLog, Notification, NotificationSeverity
from db.inventory.operation import InventoryOperation
from db.users import Role, User
from schemas.users import AdminUserCreate, AdminUserUpdate
from services.side_effects import SideEffectQueue

logger = logging.getLogger(__name__)


@dataclass
class Page:
    items: List = field(default_factory=list)
    page: int = 1
    limit: int = 20
    total: int = 0

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


def _require_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise Forbidden("Admin privileges required")


def _paging(page: int, limit: int) -> tuple[int, int]:
    return max(1, int(page)), max(1, int(limit))


def _day_start(d: date) -> datetime:
    return datetime.combine(d, time.min)


def _coerce_role(role) -> Role:
    try:
        return Role(role)
    except ValueError as e:
        raise InvalidRole() from e


async def primary_admin_id(db: AsyncSession) -> Optional[UUID]:
    """The oldest admin account; it can be neither deleted nor demoted."""
    res = await db.execute(
        select(User.id).where(User.role == Role.ADMIN).order_by(User.created_at.asc(), User.id.asc()).limit(1)
    )
    return res.scalar_one_or_none()


async def get_user(db: AsyncSession, user_id: UUID) -> User:
    res = await db.execute(select(User).where(User.id == user_id))
    user = res.scalar_one_or_none()
    if not user:
        raise UserNotFound()
    return user


async def list_users(
    db: AsyncSession,
    search: Optional[str] = None,
    role: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> Page:
    page, limit = _paging(page, limit)
    stmt = select(User)
    count_stmt = select(func.count(User.id))
    conditions = []
    if search:
        like = f"%{search.strip()}%"
        conditions.append(or_(User.full_name.like(like), User.email.like(like)))
    if role:
        conditions.append(User.role == _coerce_role(role))
    for c in conditions:
        stmt = stmt.where(c)
        count_stmt = count_stmt.where(c)

    res = await db.execute(stmt.order_by(User.full_name.asc()).limit(limit).offset((page - 1) * limit))
    total = int((await db.execute(count_stmt)).scalar() or 0)
    return Page(items=list(res.scalars().all()), page=page, limit=limit, total=total)


async def create_user(
    actor: Actor, user_manager: UserManager, payload: AdminUserCreate, sink: SideEffectQueue
) -> User:
    _require_admin(actor)
    try:
        user = await user_manager.create(payload, safe=False)
    except UserAlreadyExists as e:
        raise DuplicateEmail() from e
    except InvalidPasswordException as e:
        raise InvalidPassword(str(e.reason)) from e

    logger.info("Admin %s created user %s (%s)", actor.id, user.id, Role(user.role).value)
    sink.log_activity(
        actor.id,
        "user_created",
        "users",
        user.id,
        after={"email": user.email, "full_name": user.full_name, "role": Role(user.role).value, "department": user.department},
    )
    sink.notify(
        user.id,
        "Welcome",
        "Your account has been created successfully in the inventory system",
        NotificationSeverity.SUCCESS.value,
    )
    return user


async def update_user(
    db: AsyncSession,
    actor: Actor,
    user_manager: UserManager,
    user_id: UUID,
    payload: AdminUserUpdate,
    sink: SideEffectQueue,
) -> User:
    _require_admin(actor)
    user = await get_user(db, user_id)
    changes = payload.model_dump(exclude_unset=True)

    if user.id == await primary_admin_id(db):
        demoting = "role" in changes and changes["role"] is not None and Role(changes["role"]) is not Role.ADMIN
        deactivating = changes.get("is_active") is False
        if demoting or deactivating:
            raise Forbidden("Cannot demote or deactivate the primary admin")

    before = user.to_schema
    try:
        user = await user_manager.update(payload, user, safe=False)
    except UserAlreadyExists as e:
        raise DuplicateEmail() from e
    except InvalidPasswordException as e:
        raise InvalidPassword(str(e.reason)) from e

    changes.pop("password", None)
    sink.log_activity(actor.id, "user_updated", "users", user.id, before=before, after=changes)
    sink.notify(user.id, "Account Updated", "Your account has been updated by admin", NotificationSeverity.INFO.value)
    return user


async def reset_password(
    db: AsyncSession,
    actor: Actor,
    user_manager: UserManager,
    user_id: UUID,
    new_password: str,
    sink: SideEffectQueue,
) -> User:
    _require_admin(actor)
    user = await get_user(db, user_id)
    try:
        user = await user_manager.update(AdminUserUpdate(password=new_password), user, safe=False)
    except InvalidPasswordException as e:
        raise InvalidPassword(str(e.reason)) from e

    sink.log_activity(actor.id, "password_reset", "users", user.id, after={"target_user": user.email})
    sink.notify(user.id, "Password Reset", "Your password has been reset by admin", NotificationSeverity.WARNING.value)
    return user


async def delete_user(db: AsyncSession, actor: Actor, user_id: UUID, sink: SideEffectQueue) -> None:
    _require_admin(actor)
    if user_id == actor.id:
        raise Forbidden("Cannot delete your own account")
    if user_id == await primary_admin_id(db):
        raise Forbidden("Cannot delete the primary admin")

    refs = await db.execute(
        select(func.count(InventoryOperation.id)).where(InventoryOperation.user_id == user_id)
    )
    if int(refs.scalar() or 0) > 0:
        raise HasDependentOperations("Cannot delete user with related operations")

    user = await get_user(db, user_id)
    before = user.to_schema
    try:
        await db.delete(user)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("delete_user failed for %s", user_id)
        raise StorageError() from e

    logger.info("Admin %s deleted user %s", actor.id, user_id)
    sink.log_activity(actor.id, "user_deleted", "users", user_id, before=before)


async def list_activity(
    db: AsyncSession,
    user_id: Optional[UUID] = None,
    action: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    page: int = 1,
    limit: int = 50,
) -> Page:
    page, limit = _paging(page, limit)
    stmt = select(ActivityLog).options(selectinload(ActivityLog.user))
    count_stmt = select(func.count(ActivityLog.id))
    conditions = []
    if user_id:
        conditions.append(ActivityLog.user_id == user_id)
    if action:
        conditions.append(ActivityLog.action.like(f"%{action}%"))
    if date_from:
        conditions.append(ActivityLog.created_at >= _day_start(date_from))
    if date_to:
        conditions.append(ActivityLog.created_at < _day_start(date_to + timedelta(days=1)))
    for c in conditions:
        stmt = stmt.where(c)
        count_stmt = count_stmt.where(c)

    res = await db.execute(
        stmt.order_by(ActivityLog.created_at.desc()).limit(limit).offset((page - 1) * limit)
    )
    total = int((await db.execute(count_stmt)).scalar() or 0)
    return Page(items=list(res.scalars().all()), page=page, limit=limit, total=total)


async def list_notifications(
    db: AsyncSession,
    actor: Actor,
    is_read: Optional[bool] = None,
    page: int = 1,
    limit: int = 20,
) -> Page:
    page, limit = _paging(page, limit)
    stmt = select(Notification).where(Notification.user_id == actor.id)
    count_stmt = select(func.count(Notification.id)).where(Notification.user_id == actor.id)
    if is_read is not None:
        stmt = stmt.where(Notification.is_read == is_read)
        count_stmt = count_stmt.where(Notification.is_read == is_read)

    res = await db.execute(
        stmt.order_by(Notification.created_at.desc()).limit(limit).offset((page - 1) * limit)
    )
    total = int((await db.execute(count_stmt)).scalar() or 0)
    return Page(items=list(res.scalars().all()), page=page, limit=limit, total=total)


async def mark_notification_read(db: AsyncSession, actor: Actor, notification_id: UUID) -> None:
    # Scoped to the caller: someone else's notification looks like a missing one.
    res = await db.execute(
        update(Notification)
        .where(Notification.id == notification_id)
        .where(Notification.user_id == actor.id)
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        await db.rollback()
        raise NotificationNotFound()
    await db.commit()
