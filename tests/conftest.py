import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from postop_monitor.records import EscalationSummary, Patient, SymptomEntry, SymptomLog
from postop_monitor.store.memory import InMemoryRecordStore

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)
CLINICIAN_ID = "dr-sharma"


def make_patient(patient_id: str = "p1", risk: Optional[str] = "medium", **overrides) -> Patient:
    fields = {
        "id": patient_id,
        "name": f"Patient {patient_id}",
        "age": 58,
        "diagnosis": "Total knee replacement",
        "risk": risk,
        "assigned_clinician_id": CLINICIAN_ID,
    }
    fields.update(overrides)
    return Patient(**fields)


def make_log(
    patient_id: str = "p1",
    symptoms: Optional[dict[str, Optional[int]]] = None,
    *,
    hours_ago: float = 0,
    now: datetime = NOW,
) -> SymptomLog:
    symptoms = {"Pain": 5} if symptoms is None else symptoms
    return SymptomLog(
        patient_id=patient_id,
        submitted_at=now - timedelta(hours=hours_ago),
        symptoms=[SymptomEntry(name=name, severity=severity) for name, severity in symptoms.items()],
    )


def make_summary(
    patient_id: str = "p1",
    streak_length: int = 3,
    *,
    symptom: str = "Fatigue",
    read: bool = False,
    minutes_ago: float = 0,
) -> EscalationSummary:
    return EscalationSummary(
        patient_id=patient_id,
        clinician_id=CLINICIAN_ID,
        symptom_name=symptom,
        streak_length=streak_length,
        severity_sequence=[5] * streak_length,
        generated_text="summary",
        read=read,
        generated_at=NOW - timedelta(minutes=minutes_ago),
    )


async def eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()
