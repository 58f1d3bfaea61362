import uuid

import httpx
import pytest
import pytest_asyncio

from postop_monitor.auth import current_clinician
from postop_monitor.main import app, get_monitor_pool, get_store, get_text_generator
from postop_monitor.models.clinician import Clinician
from postop_monitor.monitor import MonitorPool
from postop_monitor.store.memory import InMemoryRecordStore
from tests.conftest import make_patient, make_summary

CLINICIAN_UUID = uuid.uuid4()


@pytest_asyncio.fixture
async def api():
    store = InMemoryRecordStore()
    pool = MonitorPool(rescore_interval=3600)

    async def active_clinician_override():
        return Clinician(
            id=CLINICIAN_UUID,
            email="clinician@example.com",
            hashed_password="hashed",
            is_active=True,
            is_superuser=False,
            is_verified=True,
        )

    app.dependency_overrides[current_clinician] = active_clinician_override
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_monitor_pool] = lambda: pool
    app.dependency_overrides[get_text_generator] = lambda: None

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client, store

    app.dependency_overrides.clear()
    await pool.close_all()


def assigned(patient_id, **fields):
    return make_patient(patient_id, assigned_clinician_id=str(CLINICIAN_UUID), **fields)


@pytest.mark.asyncio
async def test_submit_log_returns_created_entry(api):
    client, store = api
    await store.save_patient(assigned("p1"))

    resp = await client.post(
        "/api/patients/p1/logs",
        json={"symptoms": [{"name": "Pain", "severity": 9}], "vitals": {"temp": 38.1}},
    )

    assert resp.status_code == 201
    body = resp.json()
    assert body["patient_id"] == "p1"
    assert body["flagged"] is True
    assert [log.id for log in store.logs] == [body["id"]]
    assert [n.type for n in store.notifications] == ["critical_alert"]


@pytest.mark.asyncio
async def test_submit_log_for_unknown_patient_returns_404(api):
    client, _ = api

    resp = await client.post("/api/patients/ghost/logs", json={"symptoms": [{"name": "Pain", "severity": 3}]})

    assert resp.status_code == 404
    assert resp.json()["detail"] == "Patient not found"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"symptoms": []},
        {"symptoms": [{"name": "Pain", "severity": 11}]},
        {"symptoms": [{"name": "", "severity": 4}]},
    ],
)
async def test_submit_log_validates_payload(api, payload):
    client, store = api
    await store.save_patient(assigned("p1"))

    resp = await client.post("/api/patients/p1/logs", json=payload)

    assert resp.status_code == 422
    assert store.logs == []


@pytest.mark.asyncio
async def test_third_submission_triggers_background_escalation(api):
    client, store = api
    await store.save_patient(assigned("p1"))

    for severity in (4, 5, 6):
        resp = await client.post(
            "/api/patients/p1/logs",
            json={"symptoms": [{"name": "Fatigue", "severity": severity}]},
        )
        assert resp.status_code == 201

    (summary,) = store.summaries.values()
    assert (summary.symptom_name, summary.streak_length) == ("Fatigue", 3)
    assert summary.clinician_id == str(CLINICIAN_UUID)
    assert summary.generated_text.endswith("Final medical decision rests with the treating physician.")


@pytest.mark.asyncio
async def test_priority_ranks_the_clinicians_roster(api):
    client, store = api
    await store.save_patient(assigned("p-low", risk="low"))
    await store.save_patient(assigned("p-critical", risk="critical"))
    await store.save_patient(make_patient("elsewhere", risk="critical", assigned_clinician_id="dr-other"))

    resp = await client.get("/api/priority")

    assert resp.status_code == 200
    patients = resp.json()["patients"]
    assert [p["patient_id"] for p in patients] == ["p-critical", "p-low"]
    # never logged in: risk plus the 72h inactivity factor
    assert [p["score"] for p in patients] == [55, 25]
    assert patients[0]["breakdown"] == [
        {"label": "Risk (critical)", "points": 40},
        {"label": "Inactive 72hrs+", "points": 15},
    ]
    assert patients[0]["summary"] == "Risk (critical): 40pts | Inactive 72hrs+: 15pts"


@pytest.mark.asyncio
async def test_mark_summary_read(api):
    client, store = api
    summary = await store.create_summary(make_summary("p1"))

    resp = await client.post(f"/api/summaries/{summary.id}/read")
    missing = await client.post("/api/summaries/missing/read")

    assert resp.status_code == 204
    assert store.summaries[summary.id].read
    assert missing.status_code == 404
