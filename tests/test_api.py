import pytest
from httpx import AsyncClient, ASGITransport

from queueflow.api.deps import get_queue_service
from queueflow.main import app
from queueflow.models import QueueMode
from tests.factories import DAY, make_config

BASE = "/api/v1"


@pytest.fixture
def client(service):
    app.dependency_overrides[get_queue_service] = lambda: service
    yield AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
    app.dependency_overrides.clear()


async def open_clinic_day(ac):
    response = await ac.post(f"{BASE}/clinic-days/", json={
        "clinic_id": "clinic-1",
        "operating_date": DAY.date().isoformat(),
        "config": make_config().model_dump(mode="json"),
        "clinic_day_id": "day-1",
    })
    assert response.status_code == 200
    return response.json()


@pytest.mark.asyncio
async def test_root(client):
    async with client as ac:
        response = await ac.get("/")
    assert response.status_code == 200
    assert response.json() == {"message": "Welcome to QueueFlow API"}


@pytest.mark.asyncio
async def test_booking_check_in_and_call(client, clock):
    async with client as ac:
        day = await open_clinic_day(ac)
        assert day["id"] == "day-1"
        assert day["version"] == 0

        booked = await ac.post(f"{BASE}/clinic-days/day-1/entries", json={"scheduled_time": "2026-03-02T09:00:00"})
        assert booked.status_code == 200
        entry = booked.json()
        assert entry["status"] == "scheduled"
        assert entry["estimate"]["estimated_start"] == "2026-03-02T09:00:00"

        checked_in = await ac.post(f"{BASE}/entries/{entry['id']}/check-in", json={"queue_version": entry["queue_version"]})
        assert checked_in.status_code == 200
        assert checked_in.json()["status"] == "checked_in"

        called = await ac.post(f"{BASE}/clinic-days/day-1/call-next")
        assert called.status_code == 200
        assert called.json()["entry"]["id"] == entry["id"]

        empty = await ac.post(f"{BASE}/clinic-days/day-1/call-next")
        assert empty.json() == {"entry": None}

        snapshot = await ac.get(f"{BASE}/clinic-days/day-1/snapshot")
        assert snapshot.status_code == 200
        assert snapshot.json()["active_strategy"] == "slotted"
        assert [e["status"] for e in snapshot.json()["entries"]] == ["called"]


@pytest.mark.asyncio
async def test_stale_version_is_a_conflict(client):
    async with client as ac:
        await open_clinic_day(ac)
        entry = (await ac.post(f"{BASE}/clinic-days/day-1/entries", json={"scheduled_time": "2026-03-02T10:00:00"})).json()

        response = await ac.post(f"{BASE}/entries/{entry['id']}/check-in", json={"queue_version": 7})

    assert response.status_code == 409
    assert response.json()["error"] == "VersionConflict"


@pytest.mark.asyncio
async def test_illegal_transition_and_missing_resources(client):
    async with client as ac:
        await open_clinic_day(ac)
        entry = (await ac.post(f"{BASE}/clinic-days/day-1/entries", json={"scheduled_time": "2026-03-02T10:00:00"})).json()

        start = await ac.post(f"{BASE}/entries/{entry['id']}/start", json={"queue_version": 0})
        assert start.status_code == 409
        assert start.json()["error"] == "InvalidTransition"

        missing_entry = await ac.get(f"{BASE}/entries/nope")
        assert missing_entry.status_code == 404

        missing_day = await ac.get(f"{BASE}/clinic-days/nope/snapshot")
        assert missing_day.status_code == 404
        assert missing_day.json()["error"] == "ClinicDayNotFound"


@pytest.mark.asyncio
async def test_invalid_config_is_rejected(client):
    config = make_config().model_dump(mode="json")
    config["operating_hours"] = {"start": "2026-03-02T17:00:00", "end": "2026-03-02T09:00:00"}

    async with client as ac:
        response = await ac.post(f"{BASE}/clinic-days/", json={
            "clinic_id": "clinic-1",
            "operating_date": DAY.date().isoformat(),
            "config": config,
        })

    assert response.status_code == 422
    assert response.json()["error"] == "ConfigurationError"


@pytest.mark.asyncio
async def test_event_ingress_is_deduplicated(client, service):
    async with client as ac:
        await open_clinic_day(ac)
        entry = (await ac.post(f"{BASE}/clinic-days/day-1/entries", json={"scheduled_time": "2026-03-02T10:00:00"})).json()
        event = {
            "id": "ev-1",
            "kind": "checked_in_late",
            "entry_id": entry["id"],
            "timestamp": "2026-03-02T10:20:00Z",
        }

        first = await ac.post(f"{BASE}/clinic-days/day-1/events", json=event)
        again = await ac.post(f"{BASE}/clinic-days/day-1/events", json=event)
        await service.flush("day-1")
        snapshot = (await ac.get(f"{BASE}/clinic-days/day-1/snapshot")).json()

    assert first.json() == {"event_id": "ev-1", "duplicate": False, "disruptions": ["late_arrival"]}
    assert again.json() == {"event_id": "ev-1", "duplicate": True, "disruptions": []}
    assert snapshot["entries"][0]["disruption_flags"] == ["late_arrival"]
    assert snapshot["entries"][0]["estimate"]["basis"] == "recalculated"


@pytest.mark.asyncio
async def test_walk_in_and_close(client):
    async with client as ac:
        await open_clinic_day(ac)
        walk_in = await ac.post(f"{BASE}/clinic-days/day-1/walk-ins", json={"appointment_type": "walk_in"})
        assert walk_in.status_code == 200
        assert walk_in.json()["scheduled_time"] is None

        closed = await ac.post(f"{BASE}/clinic-days/day-1/close")
        assert closed.json()["closed"] is True

        rejected = await ac.post(f"{BASE}/clinic-days/day-1/walk-ins", json={})
        assert rejected.status_code == 409
        assert rejected.json()["error"] == "ClinicDayClosed"


@pytest.mark.asyncio
async def test_malformed_event_payload_is_unprocessable(client, service):
    async with client as ac:
        await open_clinic_day(ac)
        entry = (await ac.post(f"{BASE}/clinic-days/day-1/entries", json={"scheduled_time": "2026-03-02T10:00:00"})).json()

        response = await ac.post(f"{BASE}/clinic-days/day-1/events", json={
            "id": "ev-bad",
            "kind": "manual_position_change",
            "entry_id": entry["id"],
            "timestamp": "2026-03-02T10:00:00Z",
            "payload": {},
        })

    assert response.status_code == 422
    assert response.json()["error"] == "InvalidEventPayload"
    assert "ev-bad" not in (await service.get_day("day-1")).processed_event_ids


@pytest.mark.asyncio
async def test_summary_and_manual_overrides(client, service):
    config = make_config(mode=QueueMode.fluid).model_dump(mode="json")
    async with client as ac:
        await ac.post(f"{BASE}/clinic-days/", json={
            "clinic_id": "clinic-1",
            "operating_date": DAY.date().isoformat(),
            "config": config,
            "clinic_day_id": "day-1",
        })
        a = (await ac.post(f"{BASE}/clinic-days/day-1/entries", json={"scheduled_time": "2026-03-02T10:00:00"})).json()
        b = (await ac.post(f"{BASE}/clinic-days/day-1/entries", json={"scheduled_time": "2026-03-02T10:15:00"})).json()

        boosted = await ac.post(f"{BASE}/entries/{b['id']}/boost", json={"queue_version": b["queue_version"], "points": 5})
        assert boosted.status_code == 200
        assert boosted.json()["disruption_flags"] == ["manual_reorder"]
        await service.flush("day-1")

        a = (await ac.get(f"{BASE}/entries/{a['id']}")).json()
        b = (await ac.get(f"{BASE}/entries/{b['id']}")).json()
        swapped = await ac.post(f"{BASE}/entries/{a['id']}/swap", json={
            "queue_version": a["queue_version"],
            "other_entry_id": b["id"],
            "other_queue_version": b["queue_version"],
        })
        assert swapped.status_code == 200

        summary = await ac.get(f"{BASE}/clinic-days/day-1/summary")

    assert summary.status_code == 200
    body = summary.json()
    assert body["total_entries"] == 2
    assert body["status_counts"]["scheduled"] == 2
    assert body["current_queue_length"] == 2
    assert body["average_wait_minutes"] == 0
    assert body["active_strategy"] == "fluid"
