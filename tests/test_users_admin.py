import uuid

import pytest
from fastapi_users.db import SQLAlchemyUserDatabase

from conftest import fetch_activity, fetch_notifications
from core.auth import UserManager
from core.errors import (
    DuplicateEmail,
    Forbidden,
    HasDependentOperations,
    InvalidPassword,
    NotificationNotFound,
    UserNotFound,
)
from db.users import Role, User
from schemas.users import AdminUserCreate, AdminUserUpdate
from services import users as user_service
from services.submission import OperationRequest, submit_operation


@pytest.fixture
def user_manager(session):
    return UserManager(SQLAlchemyUserDatabase(session, User))


async def test_primary_admin_is_oldest_admin(session, admin, second_admin):
    assert await user_service.primary_admin_id(session) == admin.id


async def test_create_user_via_manager(session, sink, admin, user_manager):
    user = await user_service.create_user(
        admin,
        user_manager,
        AdminUserCreate(email="new@example.com", password="secret99", full_name="New Person", role=Role.ADMIN),
        sink,
    )
    assert user.role == Role.ADMIN
    assert user.hashed_password != "secret99"

    await sink.flush()
    assert len(await fetch_activity("user_created")) == 1
    assert [n.title for n in await fetch_notifications(user.id)] == ["Welcome"]

    with pytest.raises(DuplicateEmail):
        await user_service.create_user(
            admin, user_manager, AdminUserCreate(email="new@example.com", password="secret99", full_name="X"), sink
        )
    with pytest.raises(InvalidPassword):
        await user_service.create_user(
            admin, user_manager, AdminUserCreate(email="short@example.com", password="abc", full_name="X"), sink
        )


async def test_employees_cannot_manage_users(session, sink, employee, user_manager):
    with pytest.raises(Forbidden):
        await user_service.create_user(
            employee, user_manager, AdminUserCreate(email="x@example.com", password="secret99", full_name="X"), sink
        )
    with pytest.raises(Forbidden):
        await user_service.delete_user(session, employee, uuid.uuid4(), sink)


async def test_update_user(session, sink, admin, employee, user_manager):
    user = await user_service.update_user(
        session, admin, user_manager, employee.id, AdminUserUpdate(department="IT", role=Role.ADMIN), sink
    )
    assert user.department == "IT"
    assert user.role == Role.ADMIN

    await sink.flush()
    assert len(await fetch_activity("user_updated")) == 1


async def test_primary_admin_cannot_be_demoted(session, sink, admin, second_admin, user_manager):
    with pytest.raises(Forbidden):
        await user_service.update_user(
            session, second_admin, user_manager, admin.id, AdminUserUpdate(role=Role.EMPLOYEE), sink
        )
    with pytest.raises(Forbidden):
        await user_service.update_user(
            session, second_admin, user_manager, admin.id, AdminUserUpdate(is_active=False), sink
        )
    user = await user_service.update_user(
        session, second_admin, user_manager, admin.id, AdminUserUpdate(full_name="Alice A."), sink
    )
    assert user.full_name == "Alice A."


async def test_delete_user_rules(session, sink, admin, second_admin, employee, make_device):
    with pytest.raises(Forbidden):
        await user_service.delete_user(session, second_admin, second_admin.id, sink)
    with pytest.raises(Forbidden):
        await user_service.delete_user(session, second_admin, admin.id, sink)
    with pytest.raises(UserNotFound):
        await user_service.delete_user(session, admin, uuid.uuid4(), sink)

    device = await make_device(baseline=2)
    await submit_operation(session, employee, OperationRequest("add", 1, device_id=device.id), sink)
    with pytest.raises(HasDependentOperations):
        await user_service.delete_user(session, admin, employee.id, sink)

    await user_service.delete_user(session, admin, second_admin.id, sink)
    with pytest.raises(UserNotFound):
        await user_service.get_user(session, second_admin.id)


async def test_reset_password(session, sink, admin, employee, user_manager):
    before = (await user_service.get_user(session, employee.id)).hashed_password
    user = await user_service.reset_password(session, admin, user_manager, employee.id, "brand-new-pass", sink)
    assert user.hashed_password != before

    with pytest.raises(InvalidPassword):
        await user_service.reset_password(session, admin, user_manager, employee.id, "123", sink)


async def test_list_users_filters(session, admin, second_admin, employee):
    everyone = await user_service.list_users(session)
    assert everyone.total == 3
    admins = await user_service.list_users(session, role="admin")
    assert {u.id for u in admins.items} == {admin.id, second_admin.id}
    eve = await user_service.list_users(session, search="Eve")
    assert [u.id for u in eve.items] == [employee.id]


async def test_notifications_are_scoped_to_owner(session, sink, admin, employee):
    sink.notify(employee.id, "For Eve", "hello")
    await sink.flush()

    page = await user_service.list_notifications(session, employee)
    assert page.total == 1
    notification_id = page.items[0].id

    with pytest.raises(NotificationNotFound):
        await user_service.mark_notification_read(session, admin, notification_id)

    await user_service.mark_notification_read(session, employee, notification_id)
    unread = await user_service.list_notifications(session, employee, is_read=False)
    assert unread.total == 0


async def test_activity_log_filters(session, sink, admin, employee):
    sink.log_activity(admin.id, "device_added")
    sink.log_activity(employee.id, "device_searched")
    await sink.flush()

    page = await user_service.list_activity(session, action="device")
    assert page.total == 2
    mine = await user_service.list_activity(session, user_id=employee.id)
    assert [a.action for a in mine.items] == ["device_searched"]
    assert mine.items[0].to_schema["user_name"] == "Eve Employee"
