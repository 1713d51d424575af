from datetime import datetime, timedelta, timezone

from inbound.config import settings
from inbound.jobs.receiving_jobs import flag_stale_receiving
from inbound.jobs.scheduler import get_job_status

from tests.factories import arrived_asn, open_po, receive, start_receiving


async def _receiving(client, world):
    po = await open_po(client, world, [(world.widget_id, 10)])
    asn = await arrived_asn(client, po)
    receipt = await start_receiving(client, asn, world.receiving_id)
    resp = await receive(client, receipt, [2])
    assert resp.status_code == 200, resp.text
    return asn, resp.json()["receipt"]


async def test_nothing_flagged_inside_sla(client, world):
    await _receiving(client, world)
    result = await flag_stale_receiving()
    assert result["asns_flagged"] == 0
    assert result["receipts_flagged"] == 0


async def test_stale_documents_flagged_once(client, world):
    asn, receipt = await _receiving(client, world)
    later = datetime.now(timezone.utc) + timedelta(minutes=settings.RECEIVING_SLA_MINUTES + 5)

    result = await flag_stale_receiving(now=later)
    assert result["asns_flagged"] == 1
    assert result["receipts_flagged"] == 1

    again = await flag_stale_receiving(now=later + timedelta(minutes=1))
    assert again["asns_flagged"] == 0
    assert again["receipts_flagged"] == 0

    stored = (await client.get(f"/api/receiving/receipts/{receipt['id']}")).json()
    assert stored["slaBreachedAt"] is not None
    # Flagging does not invalidate the version a client holds
    assert stored["version"] == receipt["version"]

    flagged = (await client.get("/api/asn", params={"slaBreached": "true"})).json()
    assert [a["id"] for a in flagged["data"]] == [asn["id"]]


async def test_completed_sessions_are_not_flagged(client, world):
    _, receipt = await _receiving(client, world)
    resp = await client.post(
        f"/api/receiving/receipts/{receipt['id']}/complete", json={"acceptVariance": True}
    )
    assert resp.status_code == 200, resp.text

    later = datetime.now(timezone.utc) + timedelta(minutes=settings.RECEIVING_SLA_MINUTES + 5)
    result = await flag_stale_receiving(now=later)
    assert result["receipts_flagged"] == 0


async def test_no_jobs_registered_when_scheduler_disabled():
    assert get_job_status() == []
