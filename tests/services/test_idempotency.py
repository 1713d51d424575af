import pytest

from inbound.core.exceptions import ConcurrencyConflictError, IdempotencyKeyReusedError
from inbound.database import async_session_factory
from inbound.services.idempotency_service import IdempotencyService


SCOPE = "receipt.complete:abc"
PAYLOAD = {"acceptVariance": False}


async def test_stored_response_is_replayed(session):
    service = IdempotencyService(session)
    assert await service.lookup("key-1", SCOPE, PAYLOAD) is None

    await service.store("key-1", SCOPE, PAYLOAD, 200, {"ok": True})
    assert await service.lookup("key-1", SCOPE, PAYLOAD) == (200, {"ok": True})

    with pytest.raises(IdempotencyKeyReusedError):
        await service.lookup("key-1", SCOPE, {"acceptVariance": True})


async def test_concurrent_first_use_conflicts(session):
    # Both requests missed the lookup; the other one committed first
    assert await IdempotencyService(session).lookup("key-2", SCOPE, PAYLOAD) is None
    async with async_session_factory() as other:
        await IdempotencyService(other).store("key-2", SCOPE, PAYLOAD, 200, {"ok": True})
        await other.commit()

    with pytest.raises(ConcurrencyConflictError) as exc:
        await IdempotencyService(session).store("key-2", SCOPE, PAYLOAD, 200, {"ok": True})
    assert exc.value.details == {"idempotencyKey": "key-2"}
    assert exc.value.http_status == 409
