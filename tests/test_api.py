import uuid

from sqlalchemy import update

from core.config import settings
from db.database import async_session_maker
from db.users import User


async def _create_device(client, **overrides):
    payload = {"barcode": "API-1", "name": "ThinkPad", "device_type": "laptop", "baseline_quantity": 10}
    payload.update(overrides)
    return await client.post("/devices/", json=payload)


async def test_health(anon_client):
    resp = await anon_client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


async def test_requires_authentication(anon_client):
    resp = await anon_client.get("/devices/")
    assert resp.status_code == 401
    assert resp.json() == {"error": "Unauthorized", "detail": "Please login"}


async def test_device_crud(client_for, admin_user, sink):
    client = client_for(admin_user)

    created = await _create_device(client)
    assert created.status_code == 201
    body = created.json()
    assert body["calculated_quantity"] == 10
    device_id = body["id"]

    dup = await _create_device(client, name="Other")
    assert dup.status_code == 409
    assert dup.json()["error"] == "DuplicateBarcode"

    missing = await client.post("/devices/", json={"barcode": "X"})
    assert missing.status_code == 400
    assert missing.json()["error"] == "MissingField"

    by_barcode = await client.get("/devices/barcode/API-1")
    assert by_barcode.status_code == 200
    assert by_barcode.json()["id"] == device_id

    updated = await client.put(f"/devices/{device_id}", json={"location": "Shelf 3", "minimum_quantity": 12})
    assert updated.status_code == 200
    assert updated.json()["location"] == "Shelf 3"
    assert updated.json()["is_low_stock"] is True

    listed = await client.get("/devices/", params={"type": "laptop"})
    assert listed.json()["pagination"]["total_items"] == 1

    types = await client.get("/devices/types/list")
    assert types.json() == ["laptop"]

    deleted = await client.delete(f"/devices/{device_id}")
    assert deleted.status_code == 200
    gone = await client.get(f"/devices/id/{device_id}")
    assert gone.status_code == 404
    assert gone.json() == {"error": "DeviceNotFound", "detail": "Device not found"}


async def test_employees_cannot_manage_devices(client_for, employee_user):
    client = client_for(employee_user)
    resp = await _create_device(client)
    assert resp.status_code == 403
    assert resp.json()["error"] == "Forbidden"


async def test_operation_flow(client_for, admin_user, employee_user, sink):
    admin = client_for(admin_user)
    employee = client_for(employee_user)
    device_id = (await _create_device(admin, baseline_quantity=3)).json()["id"]

    added = await admin.post("/inventory/operation", json={"device_id": device_id, "operation_type": "add", "quantity": 7})
    assert added.status_code == 201
    assert added.json()["status"] == "approved"
    assert added.json()["available_quantity"] == 10

    too_many = await employee.post(
        "/inventory/operation", json={"barcode": "API-1", "operation_type": "remove", "quantity": 12}
    )
    assert too_many.status_code == 400
    assert too_many.json()["error"] == "InsufficientQuantity"
    assert too_many.json()["available_quantity"] == 10

    zero = await employee.post("/inventory/operation", json={"device_id": device_id, "operation_type": "x", "quantity": 0})
    assert zero.json()["error"] == "InvalidQuantity"

    pending = await employee.post(
        "/inventory/manual-remove", json={"device_id": device_id, "quantity": 4, "reason": "desk setup"}
    )
    assert pending.status_code == 201
    assert pending.json()["status"] == "pending"
    assert pending.json()["message"] == "Request submitted, pending approval"
    op_id = pending.json()["operation"]["id"]

    forbidden = await employee.put(f"/inventory/operations/{op_id}/approve")
    assert forbidden.status_code == 403

    approved = await admin.put(f"/inventory/operations/{op_id}/approve", json={"notes": "ok"})
    assert approved.status_code == 200
    assert approved.json()["status"] == "approved"
    assert approved.json()["approved_by_name"] == "Alice Admin"

    again = await admin.put(f"/inventory/operations/{op_id}/reject")
    assert again.status_code == 400
    assert again.json()["error"] == "NotApprovable"

    quantity = await admin.get(f"/devices/{device_id}/quantity")
    assert quantity.json()["baseline_quantity"] == 3
    assert quantity.json()["effective_quantity"] == 6

    await sink.flush()
    notes = await employee.get("/admin/notifications")
    assert notes.status_code == 200
    assert [n["severity"] for n in notes.json()["notifications"]] == ["success"]


async def test_operation_listing_is_scoped_for_employees(client_for, admin_user, employee_user):
    admin = client_for(admin_user)
    employee = client_for(employee_user)
    device_id = (await _create_device(admin)).json()["id"]

    await admin.post("/inventory/operation", json={"device_id": device_id, "operation_type": "add", "quantity": 1})
    await employee.post("/inventory/operation", json={"device_id": device_id, "operation_type": "add", "quantity": 2})

    everything = await admin.get("/inventory/operations")
    assert everything.json()["pagination"]["total_items"] == 2

    admin_only = await admin.get("/inventory/operations", params={"user_id": str(admin_user.id)})
    assert admin_only.json()["pagination"]["total_items"] == 1

    # The user filter is ignored for employees; they only ever see their own.
    mine = await employee.get("/inventory/operations", params={"user_id": str(admin_user.id)})
    ops = mine.json()["operations"]
    assert len(ops) == 1
    assert ops[0]["user_id"] == str(employee_user.id)
    assert ops[0]["device_name"] == "ThinkPad"

    pending = await admin.get("/inventory/operations", params={"status": "pending"})
    assert pending.json()["pagination"]["total_items"] == 1

    stats = await employee.get("/inventory/stats")
    assert stats.json()["pendingOperations"] == 1
    assert stats.json()["totalDevices"] == 1


async def test_admin_user_endpoints(client_for, admin_user, second_admin_user, employee_user):
    admin = client_for(second_admin_user)

    users = await admin.get("/admin/users", params={"role": "employee"})
    assert [u["email"] for u in users.json()["users"]] == ["employee@example.com"]

    created = await admin.post(
        "/admin/users",
        json={"email": "new@example.com", "password": "secret99", "full_name": "New Hire", "role": "employee"},
    )
    assert created.status_code == 201
    new_id = created.json()["id"]

    updated = await admin.put(f"/admin/users/{new_id}", json={"department": "Ops"})
    assert updated.json()["department"] == "Ops"

    primary = await admin.delete(f"/admin/users/{admin_user.id}")
    assert primary.status_code == 403
    me = await admin.delete(f"/admin/users/{second_admin_user.id}")
    assert me.status_code == 403
    missing = await admin.delete(f"/admin/users/{uuid.uuid4()}")
    assert missing.status_code == 404

    removed = await admin.delete(f"/admin/users/{new_id}")
    assert removed.status_code == 200

    forbidden = await client_for(employee_user).get("/admin/users")
    assert forbidden.status_code == 403


async def test_reports_endpoints(client_for, admin_user, sink):
    admin = client_for(admin_user)
    await _create_device(admin, baseline_quantity=0, minimum_quantity=1)

    for path in (
        "/reports/inventory",
        "/reports/low-stock",
        "/reports/employee-operations",
        "/reports/most-used-devices",
        "/reports/daily-operations",
        "/reports/system-performance",
    ):
        resp = await admin.get(path)
        assert resp.status_code == 200, path
        assert resp.json()["report"]["generated_by"] == "Alice Admin"

    low = await admin.get("/reports/low-stock")
    assert low.json()["report"]["statistics"]["out_of_stock_count"] == 1

    await sink.flush()
    log = await admin.get("/admin/activity-log", params={"action": "report_generated"})
    assert log.json()["pagination"]["total_items"] == 7


async def test_self_registration_is_off_by_default(anon_client):
    resp = await anon_client.post(
        "/auth/register",
        json={"email": "self@example.com", "password": "secret99", "full_name": "Self Made"},
    )
    assert resp.status_code == 403
    assert resp.json()["error"] == "Forbidden"


async def test_register_and_login(anon_client, admin_user, monkeypatch):
    monkeypatch.setattr(settings, "allow_self_registration", True)
    registered = await anon_client.post(
        "/auth/register",
        json={"email": "self@example.com", "password": "secret99", "full_name": "Self Made", "role": "admin"},
    )
    assert registered.status_code == 201
    assert registered.json()["role"] == "employee"

    login = await anon_client.post("/auth/jwt/login", data={"username": "self@example.com", "password": "secret99"})
    assert login.status_code == 200
    token = login.json()["access_token"]

    resp = await anon_client.get("/devices/", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200
    assert resp.json()["devices"] == []


async def _login(client, email: str, password: str = "password123") -> dict:
    resp = await client.post("/auth/jwt/login", data={"username": email, "password": password})
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


async def test_users_routes_only_expose_own_account(anon_client, admin_user, second_admin_user):
    # A legacy superuser flag must not open a side door around /admin's rules.
    async with async_session_maker() as s:
        await s.execute(update(User).where(User.id == admin_user.id).values(is_superuser=True))
        await s.commit()
    headers = await _login(anon_client, "admin@example.com")

    me = await anon_client.get("/users/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["id"] == str(admin_user.id)

    for method in ("DELETE", "PATCH"):
        resp = await anon_client.request(method, f"/users/{admin_user.id}", headers=headers, json={"is_active": False})
        assert resp.status_code in (404, 405)
    blocked = await anon_client.delete(f"/admin/users/{admin_user.id}", headers=headers)
    assert blocked.status_code == 403

    other = await _login(anon_client, "boss@example.com")
    still_there = await anon_client.get(f"/admin/users/{admin_user.id}", headers=other)
    assert still_there.status_code == 200
    assert still_there.json()["is_active"] is True


async def test_self_update_cannot_change_role_or_flags(anon_client, employee_user):
    headers = await _login(anon_client, "employee@example.com")
    resp = await anon_client.patch(
        "/users/me",
        headers=headers,
        json={"department": "Field", "role": "admin", "is_superuser": True},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["department"] == "Field"
    assert body["role"] == "employee"
    assert body["is_superuser"] is False


async def test_admin_created_users_are_never_superusers(client_for, admin_user):
    admin = client_for(admin_user)
    created = await admin.post(
        "/admin/users",
        json={"email": "root@example.com", "password": "secret99", "full_name": "Root", "is_superuser": True},
    )
    assert created.status_code == 201
    assert created.json()["is_superuser"] is False

    updated = await admin.put(f"/admin/users/{created.json()['id']}", json={"is_superuser": True})
    assert updated.status_code == 200
    assert updated.json()["is_superuser"] is False
