from collections.abc import Sequence
from datetime import datetime
from typing import Optional

from postop_monitor.records import Notification, Patient, SymptomEntry, SymptomLog, utcnow
from postop_monitor.store.base import RecordStore


async def record_submission(
    store: RecordStore,
    patient: Patient,
    symptoms: Sequence[SymptomEntry],
    vitals: Optional[dict[str, float]] = None,
    *,
    submitted_at: Optional[datetime] = None,
) -> SymptomLog:
    """Write a patient's symptom log and tell the assigned clinician about it."""
    if not symptoms:
        raise ValueError("A symptom log needs at least one symptom")

    log = await store.add_log(
        SymptomLog(
            patient_id=patient.id,
            submitted_at=submitted_at or utcnow(),
            symptoms=list(symptoms),
            vitals=dict(vitals or {}),
        )
    )

    if patient.assigned_clinician_id:
        if log.flagged:
            kind, message = "critical_alert", f"{patient.name} logged severity ≥ 8. Immediate review needed."
        else:
            kind, message = "log_submitted", f"{patient.name} submitted their daily symptom log."
        await store.add_notification(
            Notification(
                clinician_id=patient.assigned_clinician_id,
                type=kind,
                patient_id=patient.id,
                log_id=log.id,
                message=message,
            )
        )
    return log
