from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import Actor, UserManager, current_actor, current_admin, get_user_manager
from core.config import settings
from db.database import get_async_session
from schemas.activity import ActivityList, ActivityRead, NotificationList, NotificationRead
from schemas.devices import Pagination
from schemas.users import AdminUserCreate, AdminUserUpdate, PasswordReset, UserList, UserRead
from services import users as user_service
from services.side_effects import SideEffectQueue, get_side_effects

router = APIRouter()


def _pagination(page: user_service.Page) -> Pagination:
    return Pagination(
        current_page=page.page,
        total_pages=page.total_pages,
        total_items=page.total,
        items_per_page=page.limit,
    )


@router.get("/users", response_model=UserList)
async def list_users(
    search: Optional[str] = None,
    role: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=500),
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_admin),
):
    result = await user_service.list_users(db, search, role, page, limit)
    return UserList(users=[UserRead.model_validate(u, from_attributes=True) for u in result.items], pagination=_pagination(result))


@router.get("/users/{user_id}", response_model=UserRead)
async def get_user(
    user_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_admin),
):
    user = await user_service.get_user(db, user_id)
    return UserRead.model_validate(user, from_attributes=True)


@router.post("/users", response_model=UserRead, status_code=status.HTTP_201_CREATED)
async def create_user(
    payload: AdminUserCreate,
    actor: Actor = Depends(current_admin),
    user_manager: UserManager = Depends(get_user_manager),
    sink: SideEffectQueue = Depends(get_side_effects),
):
    user = await user_service.create_user(actor, user_manager, payload, sink)
    return UserRead.model_validate(user, from_attributes=True)


@router.put("/users/{user_id}", response_model=UserRead)
async def update_user(
    user_id: UUID,
    payload: AdminUserUpdate,
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_admin),
    user_manager: UserManager = Depends(get_user_manager),
    sink: SideEffectQueue = Depends(get_side_effects),
):
    user = await user_service.update_user(db, actor, user_manager, user_id, payload, sink)
    return UserRead.model_validate(user, from_attributes=True)


@router.post("/users/{user_id}/reset-password")
async def reset_password(
    user_id: UUID,
    payload: PasswordReset,
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_admin),
    user_manager: UserManager = Depends(get_user_manager),
    sink: SideEffectQueue = Depends(get_side_effects),
):
    await user_service.reset_password(db, actor, user_manager, user_id, payload.new_password, sink)
    return {"message": "Password reset successfully"}


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_admin),
    sink: SideEffectQueue = Depends(get_side_effects),
):
    await user_service.delete_user(db, actor, user_id, sink)
    return {"message": "User deleted successfully"}


@router.get("/activity-log", response_model=ActivityList)
async def activity_log(
    user_id: Optional[UUID] = None,
    action: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_admin),
):
    result = await user_service.list_activity(db, user_id, action, date_from, date_to, page, limit)
    return ActivityList(
        activities=[ActivityRead(**a.to_schema) for a in result.items],
        pagination=_pagination(result),
    )


# Notifications belong to the caller, so any authenticated user may use these.
@router.get("/notifications", response_model=NotificationList)
async def notifications(
    is_read: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=500),
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_actor),
):
    result = await user_service.list_notifications(db, actor, is_read, page, limit)
    return NotificationList(
        notifications=[NotificationRead(**n.to_schema) for n in result.items],
        pagination=_pagination(result),
    )


@router.put("/notifications/{notification_id}/read")
async def mark_notification_read(
    notification_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(current_actor),
):
    await user_service.mark_notification_read(db, actor, notification_id)
    return {"message": "Notification updated"}
