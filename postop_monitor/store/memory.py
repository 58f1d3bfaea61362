from __future__ import annotations

from typing import Optional

from postop_monitor.records import (
    DirectMessage,
    EscalationSummary,
    Notification,
    Patient,
    SymptomLog,
    as_utc,
)
from postop_monitor.store.base import (
    RecordStore,
    logs_topic,
    roster_topic,
    summaries_topic,
    unread_topic,
)


def _newest_first(logs: list[SymptomLog]) -> list[SymptomLog]:
    # Stable on ties, so equal timestamps keep reverse insertion order.
    indexed = list(enumerate(logs))
    indexed.sort(
        key=lambda item: (
            as_utc(item[1].submitted_at).timestamp() if item[1].submitted_at else float("-inf"),
            item[0],
        ),
        reverse=True,
    )
    return [log for _, log in indexed]


class InMemoryRecordStore(RecordStore):
    """Process-local store; every write is atomic with respect to the event loop."""

    def __init__(self) -> None:
        super().__init__()
        self.patients: dict[str, Patient] = {}
        self.logs: list[SymptomLog] = []
        self.summaries: dict[str, EscalationSummary] = {}
        self.notifications: list[Notification] = []
        self.messages: list[DirectMessage] = []

    async def list_roster(self, clinician_id: str) -> list[Patient]:
        return [
            patient
            for patient in self.patients.values()
            if patient.assigned_clinician_id == clinician_id and not patient.retired
        ]

    async def list_logs(self, patient_id: str) -> list[SymptomLog]:
        return _newest_first([log for log in self.logs if log.patient_id == patient_id])

    async def recent_logs(self, patient_id: str, limit: int = 10) -> list[SymptomLog]:
        return (await self.list_logs(patient_id))[:limit]

    async def list_summaries(self, patient_id: str, clinician_id: str) -> list[EscalationSummary]:
        matching = [
            summary
            for summary in self.summaries.values()
            if summary.patient_id == patient_id and summary.clinician_id == clinician_id
        ]
        return sorted(matching, key=lambda summary: as_utc(summary.generated_at), reverse=True)

    async def count_unread(self, patient_id: str, clinician_id: str) -> int:
        return sum(
            1
            for message in self.messages
            if message.patient_id == patient_id
            and message.receiver_id == clinician_id
            and not message.read
        )

    async def get_patient(self, patient_id: str) -> Optional[Patient]:
        return self.patients.get(patient_id)

    async def summary_exists(self, patient_id: str, symptom_name: str, streak_length: int) -> bool:
        key = (patient_id, symptom_name, streak_length)
        return any(summary.dedup_key == key for summary in self.summaries.values())

    async def list_notifications(self, clinician_id: str) -> list[Notification]:
        return [n for n in self.notifications if n.clinician_id == clinician_id]

    async def save_patient(self, patient: Patient) -> Patient:
        previous = self.patients.get(patient.id)
        self.patients[patient.id] = patient
        topics = {roster_topic(patient.assigned_clinician_id or "")}
        if previous is not None:
            topics.add(roster_topic(previous.assigned_clinician_id or ""))
        self.feed.publish(*topics)
        return patient

    async def add_log(self, log: SymptomLog) -> SymptomLog:
        self.logs.append(log)
        self.feed.publish(logs_topic(log.patient_id))
        return log

    async def create_summary(self, summary: EscalationSummary) -> Optional[EscalationSummary]:
        if await self.summary_exists(*summary.dedup_key):
            return None
        self.summaries[summary.id] = summary
        self.feed.publish(summaries_topic(summary.patient_id))
        return summary

    async def mark_summary_read(self, summary_id: str) -> Optional[EscalationSummary]:
        summary = self.summaries.get(summary_id)
        if summary is None:
            return None
        summary = summary.model_copy(update={"read": True})
        self.summaries[summary_id] = summary
        self.feed.publish(summaries_topic(summary.patient_id))
        return summary

    async def add_notification(self, notification: Notification) -> Notification:
        self.notifications.append(notification)
        return notification

    async def send_message(self, message: DirectMessage) -> DirectMessage:
        self.messages.append(message)
        self.feed.publish(unread_topic(message.patient_id, message.receiver_id))
        return message

    async def mark_messages_read(self, patient_id: str, clinician_id: str) -> int:
        changed = 0
        for index, message in enumerate(self.messages):
            if message.patient_id == patient_id and message.receiver_id == clinician_id and not message.read:
                self.messages[index] = message.model_copy(update={"read": True})
                changed += 1
        if changed:
            self.feed.publish(unread_topic(patient_id, clinician_id))
        return changed
