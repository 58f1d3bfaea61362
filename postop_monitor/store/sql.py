from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from postop_monitor.models.records import (
    DirectMessageRow,
    EscalationSummaryRow,
    NotificationRow,
    PatientRow,
    SymptomLogRow,
)
from postop_monitor.records import (
    MAX_SEVERITY,
    MIN_SEVERITY,
    DirectMessage,
    EscalationSummary,
    Medication,
    Notification,
    Patient,
    SymptomEntry,
    SymptomLog,
    Urgency,
    as_utc,
)
from postop_monitor.store.base import (
    RecordStore,
    logs_topic,
    roster_topic,
    summaries_topic,
    unread_topic,
)

logger = logging.getLogger(__name__)


def _patient(row: PatientRow) -> Patient:
    return Patient(
        id=row.id,
        name=row.name,
        age=row.age,
        diagnosis=row.diagnosis,
        risk=row.risk,
        assigned_clinician_id=row.assigned_clinician_id,
        medications=[
            Medication(
                name=item["name"],
                dosage=str(item.get("dosage") or ""),
                frequency=str(item.get("frequency") or ""),
            )
            for item in row.medications or []
            if isinstance(item, dict) and isinstance(item.get("name"), str)
        ],
        retired=row.retired,
    )


def _severity(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value != int(value) or not MIN_SEVERITY <= value <= MAX_SEVERITY:
        return None
    return int(value)


def _entry(item: Any) -> Optional[SymptomEntry]:
    if not isinstance(item, dict) or not isinstance(item.get("name"), str) or not item["name"]:
        return None
    notes = item.get("notes")
    return SymptomEntry(
        name=item["name"],
        severity=_severity(item.get("severity")),
        notes=notes if isinstance(notes, str) else "",
    )


def _vitals(value: Any) -> dict[str, float]:
    if not isinstance(value, dict):
        return {}
    return {
        str(key): float(reading)
        for key, reading in value.items()
        if isinstance(reading, (int, float)) and not isinstance(reading, bool)
    }


def _urgency(value: Optional[str]) -> Optional[Urgency]:
    try:
        return Urgency(value)
    except ValueError:
        return None


def _log(row: SymptomLogRow) -> SymptomLog:
    # Stored entries that fail validation are dropped or lose their severity.
    entries = [_entry(item) for item in row.symptoms or []]
    return SymptomLog(
        id=row.id,
        patient_id=row.patient_id,
        submitted_at=as_utc(row.submitted_at) if row.submitted_at else None,
        symptoms=[entry for entry in entries if entry is not None],
        vitals=_vitals(row.vitals),
    )


def _summary(row: EscalationSummaryRow) -> EscalationSummary:
    return EscalationSummary(
        id=row.id,
        patient_id=row.patient_id,
        clinician_id=row.clinician_id,
        symptom_name=row.symptom_name,
        streak_length=row.streak_length,
        severity_sequence=[
            severity for severity in map(_severity, row.severity_sequence or []) if severity is not None
        ],
        generated_text=row.generated_text,
        urgency=_urgency(row.urgency) or Urgency.ROUTINE,
        generated_at=as_utc(row.generated_at),
        read=row.read,
        prompt=row.prompt or "",
    )


def _notification(row: NotificationRow) -> Notification:
    return Notification(
        id=row.id,
        clinician_id=row.clinician_id,
        type=row.type,
        patient_id=row.patient_id,
        message=row.message,
        summary_id=row.summary_id,
        log_id=row.log_id,
        urgency=_urgency(row.urgency),
        created_at=as_utc(row.created_at),
        read=row.read,
    )


class SqlRecordStore(RecordStore):
    """Record store over SQLAlchemy async sessions.

    Change signals are published after each commit, so subscribers see
    writes made through this store instance only.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        super().__init__()
        self._session_maker = session_maker

    async def list_roster(self, clinician_id: str) -> list[Patient]:
        async with self._session_maker() as session:
            result = await session.scalars(
                select(PatientRow)
                .where(PatientRow.assigned_clinician_id == clinician_id, PatientRow.retired.is_(False))
                .order_by(PatientRow.name)
            )
            return [_patient(row) for row in result]

    async def list_logs(self, patient_id: str) -> list[SymptomLog]:
        return await self._logs(patient_id, limit=None)

    async def recent_logs(self, patient_id: str, limit: int = 10) -> list[SymptomLog]:
        return await self._logs(patient_id, limit=limit)

    async def _logs(self, patient_id: str, limit: Optional[int]) -> list[SymptomLog]:
        stmt = (
            select(SymptomLogRow)
            .where(SymptomLogRow.patient_id == patient_id)
            .order_by(SymptomLogRow.submitted_at.desc(), SymptomLogRow.seq.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session_maker() as session:
            result = await session.scalars(stmt)
            return [_log(row) for row in result]

    async def list_summaries(self, patient_id: str, clinician_id: str) -> list[EscalationSummary]:
        async with self._session_maker() as session:
            result = await session.scalars(
                select(EscalationSummaryRow)
                .where(
                    EscalationSummaryRow.patient_id == patient_id,
                    EscalationSummaryRow.clinician_id == clinician_id,
                )
                .order_by(EscalationSummaryRow.generated_at.desc())
            )
            return [_summary(row) for row in result]

    async def count_unread(self, patient_id: str, clinician_id: str) -> int:
        async with self._session_maker() as session:
            count = await session.scalar(
                select(func.count())
                .select_from(DirectMessageRow)
                .where(
                    DirectMessageRow.patient_id == patient_id,
                    DirectMessageRow.receiver_id == clinician_id,
                    DirectMessageRow.read.is_(False),
                )
            )
            return int(count or 0)

    async def get_patient(self, patient_id: str) -> Optional[Patient]:
        async with self._session_maker() as session:
            row = await session.get(PatientRow, patient_id)
            return _patient(row) if row is not None else None

    async def summary_exists(self, patient_id: str, symptom_name: str, streak_length: int) -> bool:
        async with self._session_maker() as session:
            found = await session.scalar(
                select(EscalationSummaryRow.id)
                .where(
                    EscalationSummaryRow.patient_id == patient_id,
                    EscalationSummaryRow.symptom_name == symptom_name,
                    EscalationSummaryRow.streak_length == streak_length,
                )
                .limit(1)
            )
            return found is not None

    async def list_notifications(self, clinician_id: str) -> list[Notification]:
        async with self._session_maker() as session:
            result = await session.scalars(
                select(NotificationRow)
                .where(NotificationRow.clinician_id == clinician_id)
                .order_by(NotificationRow.created_at)
            )
            return [_notification(row) for row in result]

    async def save_patient(self, patient: Patient) -> Patient:
        async with self._session_maker() as session:
            row = await session.get(PatientRow, patient.id)
            previous_clinician = row.assigned_clinician_id if row is not None else None
            if row is None:
                row = PatientRow(id=patient.id)
                session.add(row)
            row.name = patient.name
            row.age = patient.age
            row.diagnosis = patient.diagnosis
            row.risk = patient.risk
            row.assigned_clinician_id = patient.assigned_clinician_id
            row.medications = [medication.model_dump() for medication in patient.medications]
            row.retired = patient.retired
            await session.commit()

        topics = {roster_topic(patient.assigned_clinician_id or "")}
        if previous_clinician is not None:
            topics.add(roster_topic(previous_clinician))
        self.feed.publish(*topics)
        return patient

    async def add_log(self, log: SymptomLog) -> SymptomLog:
        async with self._session_maker() as session:
            session.add(
                SymptomLogRow(
                    id=log.id,
                    patient_id=log.patient_id,
                    submitted_at=log.submitted_at,
                    symptoms=[entry.model_dump() for entry in log.symptoms],
                    vitals=dict(log.vitals),
                )
            )
            await session.commit()
        self.feed.publish(logs_topic(log.patient_id))
        return log

    async def create_summary(self, summary: EscalationSummary) -> Optional[EscalationSummary]:
        async with self._session_maker() as session:
            session.add(
                EscalationSummaryRow(
                    id=summary.id,
                    patient_id=summary.patient_id,
                    clinician_id=summary.clinician_id,
                    symptom_name=summary.symptom_name,
                    streak_length=summary.streak_length,
                    severity_sequence=list(summary.severity_sequence),
                    generated_text=summary.generated_text,
                    urgency=summary.urgency.value,
                    generated_at=summary.generated_at,
                    read=summary.read,
                    prompt=summary.prompt,
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info(
                    "Summary for patient=%s symptom=%s streak=%s already exists",
                    *summary.dedup_key,
                )
                return None
        self.feed.publish(summaries_topic(summary.patient_id))
        return summary

    async def mark_summary_read(self, summary_id: str) -> Optional[EscalationSummary]:
        async with self._session_maker() as session:
            row = await session.get(EscalationSummaryRow, summary_id)
            if row is None:
                return None
            row.read = True
            await session.commit()
            summary = _summary(row)
        self.feed.publish(summaries_topic(summary.patient_id))
        return summary

    async def add_notification(self, notification: Notification) -> Notification:
        async with self._session_maker() as session:
            session.add(
                NotificationRow(
                    id=notification.id,
                    clinician_id=notification.clinician_id,
                    type=notification.type,
                    patient_id=notification.patient_id,
                    message=notification.message,
                    summary_id=notification.summary_id,
                    log_id=notification.log_id,
                    urgency=notification.urgency.value if notification.urgency else None,
                    created_at=notification.created_at,
                    read=notification.read,
                )
            )
            await session.commit()
        return notification

    async def send_message(self, message: DirectMessage) -> DirectMessage:
        async with self._session_maker() as session:
            session.add(
                DirectMessageRow(
                    id=message.id,
                    patient_id=message.patient_id,
                    sender_id=message.sender_id,
                    receiver_id=message.receiver_id,
                    body=message.body,
                    sent_at=message.sent_at,
                    read=message.read,
                )
            )
            await session.commit()
        self.feed.publish(unread_topic(message.patient_id, message.receiver_id))
        return message

    async def mark_messages_read(self, patient_id: str, clinician_id: str) -> int:
        async with self._session_maker() as session:
            result = await session.execute(
                update(DirectMessageRow)
                .where(
                    DirectMessageRow.patient_id == patient_id,
                    DirectMessageRow.receiver_id == clinician_id,
                    DirectMessageRow.read.is_(False),
                )
                .values(read=True)
            )
            await session.commit()
        changed = result.rowcount or 0
        if changed:
            self.feed.publish(unread_topic(patient_id, clinician_id))
        return changed
