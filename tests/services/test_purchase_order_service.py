import uuid

import pytest

from inbound.core.exceptions import (
    ConcurrencyConflictError,
    InvalidStateError,
    NotFoundError,
    OpenLinesRemainError,
    ValidationError,
)
from inbound.database import async_session_factory
from inbound.models.purchase import POStatus, PurchaseOrder
from inbound.schemas.purchase import POLineCreate, PurchaseOrderCreate, PurchaseOrderUpdate
from inbound.services.locking import flush_or_conflict, lock_aggregate, touch
from inbound.services.purchase_order_service import PurchaseOrderService


def _order(world, *lines):
    return PurchaseOrderCreate(
        vendor_id=world.vendor_id,
        warehouse_id=world.warehouse_id,
        lines=[POLineCreate(product_id=p, qty_ordered=q) for p, q in lines],
    )


async def _opened(service, po):
    for action in ("submit", "approve", "send", "confirm", "release"):
        po = await service.transition(po.id, action)
    return po


async def test_create_numbers_and_counts(session, world):
    service = PurchaseOrderService(session)
    po = await service.create(_order(world, (world.widget_id, 10), (world.gadget_id, 5)))

    assert po.po_number.startswith("PO-")
    assert po.status == POStatus.DRAFT.value
    assert [line.line_number for line in po.lines] == [1, 2]
    assert po.total_qty_ordered == 15
    assert po.total_qty_open == 15
    assert po.version == 1


async def test_create_rejects_unknown_product(session, world):
    with pytest.raises(ValidationError):
        await PurchaseOrderService(session).create(_order(world, (uuid.uuid4(), 1)))


async def test_lines_editable_only_in_draft(session, world):
    service = PurchaseOrderService(session)
    po = await service.create(_order(world, (world.widget_id, 10)))
    po = await service.add_line(po.id, POLineCreate(product_id=world.gadget_id, qty_ordered=3))
    assert len(po.lines) == 2

    await service.transition(po.id, "submit")
    with pytest.raises(InvalidStateError):
        await service.add_line(po.id, POLineCreate(product_id=world.gadget_id, qty_ordered=1))


async def test_last_line_cannot_be_deleted(session, world):
    service = PurchaseOrderService(session)
    po = await service.create(_order(world, (world.widget_id, 10)))
    with pytest.raises(ValidationError):
        await service.delete_line(po.id, 1)
    with pytest.raises(NotFoundError):
        await service.delete_line(po.id, 9)


async def test_hold_restores_previous_status(session, world):
    service = PurchaseOrderService(session)
    po = await _opened(service, await service.create(_order(world, (world.widget_id, 10))))

    po = await service.hold(po.id, reason="vendor dispute")
    assert po.status == POStatus.ON_HOLD.value
    assert po.held_from_status == POStatus.OPEN.value

    po = await service.unhold(po.id)
    assert po.status == POStatus.OPEN.value
    assert po.held_from_status is None


async def test_close_requires_force_and_reason_when_open(session, world):
    service = PurchaseOrderService(session)
    po = await _opened(service, await service.create(_order(world, (world.widget_id, 10))))

    with pytest.raises(OpenLinesRemainError):
        await service.close(po.id)
    with pytest.raises(ValidationError):
        await service.close(po.id, force=True)

    po = await service.close(po.id, reason="vendor discontinued", force=True)
    assert po.status == POStatus.CLOSED.value
    assert po.close_reason == "vendor discontinued"
    assert po.variance_accepted is True


async def test_apply_receipt_derives_partial_then_received(session, world):
    service = PurchaseOrderService(session)
    po = await _opened(service, await service.create(_order(world, (world.widget_id, 10))))
    line_id = po.lines[0].id

    po = await service.apply_receipt(po.id, {line_id: 4}, variance_accepted=False)
    assert po.status == POStatus.PARTIAL.value
    assert po.total_qty_open == 6

    po = await service.apply_receipt(po.id, {line_id: 6}, variance_accepted=False)
    assert po.status == POStatus.RECEIVED.value
    assert po.total_qty_open == 0


async def test_cancel_rejected_after_receipt(session, world):
    service = PurchaseOrderService(session)
    po = await _opened(service, await service.create(_order(world, (world.widget_id, 10))))
    await service.apply_receipt(po.id, {po.lines[0].id: 1}, variance_accepted=False)

    with pytest.raises(InvalidStateError):
        await service.cancel(po.id)


class TestOptimisticLocking:

    async def test_expected_version_mismatch(self, session, world):
        service = PurchaseOrderService(session)
        po = await service.create(_order(world, (world.widget_id, 10)))
        await service.update(po.id, PurchaseOrderUpdate(notes="first"))
        assert po.version == 2

        with pytest.raises(ConcurrencyConflictError) as exc:
            await service.update(po.id, PurchaseOrderUpdate(notes="second", expected_version=1))
        assert exc.value.details["currentVersion"] == 2

    async def test_concurrent_writer_loses(self, session, world):
        po = await PurchaseOrderService(session).create(_order(world, (world.widget_id, 10)))
        await session.commit()

        stale = await lock_aggregate(session, PurchaseOrder, po.id, "PurchaseOrder")
        assert stale.version == 1

        async with async_session_factory() as other:
            winner = await lock_aggregate(other, PurchaseOrder, po.id, "PurchaseOrder")
            winner.notes = "winner"
            touch(winner)
            await flush_or_conflict(other, "PurchaseOrder")
            await other.commit()
            assert winner.version == 2

        stale.notes = "loser"
        touch(stale)
        with pytest.raises(ConcurrencyConflictError):
            await flush_or_conflict(session, "PurchaseOrder")
