import uuid

import pytest

from conftest import fetch_activity, fetch_notifications
from core.errors import (
    DeviceNotFound,
    DuplicateBarcode,
    Forbidden,
    HasDependentOperations,
    InvalidQuantity,
    InvalidStatus,
    MissingField,
)
from schemas.devices import DeviceCreate, DeviceUpdate
from services import registry
from services.submission import OperationRequest, submit_operation


async def test_create_device_defaults(session, sink, admin):
    device = await registry.create_device(
        session, admin, DeviceCreate(barcode=" LAP-1 ", name="ThinkPad", device_type="laptop"), sink
    )
    assert device.barcode == "LAP-1"
    assert device.status == "available"
    assert device.baseline_quantity == 1
    assert device.minimum_quantity == 1

    await sink.flush()
    assert len(await fetch_activity("device_added")) == 1
    assert len(await fetch_notifications(admin.id)) == 1


async def test_create_device_validation(session, sink, admin, employee):
    with pytest.raises(MissingField):
        await registry.create_device(session, admin, DeviceCreate(barcode="X", name="  ", device_type="laptop"), sink)
    with pytest.raises(MissingField):
        await registry.create_device(session, admin, DeviceCreate(name="n", device_type="laptop"), sink)
    with pytest.raises(InvalidQuantity):
        await registry.create_device(
            session, admin, DeviceCreate(barcode="X", name="n", device_type="t", baseline_quantity=-1), sink
        )
    with pytest.raises(InvalidStatus):
        await registry.create_device(
            session, admin, DeviceCreate(barcode="X", name="n", device_type="t", status="lost"), sink
        )
    with pytest.raises(Forbidden):
        await registry.create_device(session, employee, DeviceCreate(barcode="X", name="n", device_type="t"), sink)


async def test_duplicate_barcode(session, sink, admin, make_device):
    await make_device(barcode="DUP-1")
    with pytest.raises(DuplicateBarcode):
        await registry.create_device(
            session, admin, DeviceCreate(barcode="DUP-1", name="Other", device_type="laptop"), sink
        )


async def test_barcode_lookup_is_exact(session, sink, admin, make_device):
    await make_device(barcode="ABC-1")
    found = await registry.search_by_barcode(session, admin, "ABC-1", sink)
    assert found["barcode"] == "ABC-1"
    assert found["calculated_quantity"] == 10

    with pytest.raises(DeviceNotFound):
        await registry.search_by_barcode(session, admin, "abc-1", sink)
    with pytest.raises(DeviceNotFound):
        await registry.search_by_barcode(session, admin, "ABC", sink)

    await sink.flush()
    assert len(await fetch_activity("device_searched")) == 1


async def test_update_device(session, sink, admin, make_device):
    device = await make_device(baseline=3, name="Old")
    updated = await registry.update_device(
        session, admin, device.id, DeviceUpdate(name="New", baseline_quantity=8, location=None), sink
    )
    assert updated.name == "New"
    assert updated.baseline_quantity == 8
    assert updated.barcode == device.barcode

    detail = await registry.get_device_detail(session, device.id)
    assert detail["calculated_quantity"] == 8

    with pytest.raises(InvalidStatus):
        await registry.update_device(session, admin, device.id, DeviceUpdate(status="lost"), sink)
    with pytest.raises(MissingField):
        await registry.update_device(session, admin, device.id, DeviceUpdate(name=" "), sink)
    with pytest.raises(DeviceNotFound):
        await registry.update_device(session, admin, uuid.uuid4(), DeviceUpdate(name="x"), sink)


async def test_delete_device(session, sink, admin, make_device):
    device = await make_device()
    await registry.delete_device(session, admin, device.id, sink)
    with pytest.raises(DeviceNotFound):
        await registry.get_device(session, device.id)

    await sink.flush()
    assert len(await fetch_activity("device_deleted")) == 1


async def test_delete_device_with_operations_is_refused(session, sink, admin, employee, make_device):
    device = await make_device(baseline=5)
    # Even a pending (never applied) operation blocks deletion.
    await submit_operation(session, employee, OperationRequest("remove", 1, device_id=device.id), sink)

    with pytest.raises(HasDependentOperations):
        await registry.delete_device(session, admin, device.id, sink)
    assert (await registry.get_device(session, device.id)).id == device.id


async def test_list_devices_search_and_pagination(session, make_device):
    for i in range(5):
        await make_device(name=f"Laptop {i}", device_type="laptop")
    await make_device(name="Monitor", device_type="monitor", brand="Dell", minimum=20)

    page = await registry.list_devices(session, page=1, limit=4)
    assert page.total == 6
    assert page.total_pages == 2
    assert len(page.items) == 4

    monitors = await registry.list_devices(session, device_type="monitor")
    assert [d["name"] for d in monitors.items] == ["Monitor"]
    assert monitors.items[0]["is_low_stock"] is True

    dell = await registry.list_devices(session, search="Dell")
    assert dell.total == 1

    assert await registry.list_device_types(session) == ["laptop", "monitor"]
