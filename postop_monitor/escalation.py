import logging
from typing import Optional

from postop_monitor.dedup import EscalationDeduplicator
from postop_monitor.records import EscalationSummary, Notification, Patient
from postop_monitor.store.base import RecordStore
from postop_monitor.streaks import STREAK_WINDOW, SymptomStreak, detect_escalations
from postop_monitor.summaries import SummaryGenerator

logger = logging.getLogger(__name__)

ESCALATION_NOTIFICATION = "escalation"


class EscalationService:
    """Turns sustained symptom streaks into clinician-facing summaries."""

    def __init__(
        self,
        store: RecordStore,
        generator: SummaryGenerator,
        deduplicator: Optional[EscalationDeduplicator] = None,
    ) -> None:
        self._store = store
        self._generator = generator
        self._deduplicator = deduplicator or EscalationDeduplicator(store)

    async def process_submission(self, patient_id: str) -> list[EscalationSummary]:
        """Check the patient's newest logs and escalate each new streak milestone.

        Call after a log has been written. Returns the summaries created by
        this call; milestones that were already escalated produce nothing.
        """
        patient = await self._store.get_patient(patient_id)
        if patient is None:
            logger.warning("Escalation check skipped: unknown patient %s", patient_id)
            return []
        if not patient.assigned_clinician_id:
            logger.warning("Escalation check skipped: patient %s has no clinician", patient_id)
            return []

        logs = await self._store.recent_logs(patient_id, limit=STREAK_WINDOW)
        created = []
        for streak in detect_escalations(logs):
            if not await self._deduplicator.authorize(patient_id, streak):
                continue
            summary = await self._escalate(patient, streak)
            if summary is not None:
                created.append(summary)
        return created

    async def _escalate(self, patient: Patient, streak: SymptomStreak) -> Optional[EscalationSummary]:
        generated = await self._generator.generate(patient, streak)
        summary = await self._store.create_summary(
            EscalationSummary(
                patient_id=patient.id,
                clinician_id=patient.assigned_clinician_id,
                symptom_name=streak.symptom,
                streak_length=streak.length,
                severity_sequence=streak.severities,
                generated_text=generated.text,
                urgency=generated.urgency,
                prompt=generated.prompt,
            )
        )
        if summary is None:
            # lost the race to a concurrent submission
            return None

        await self._store.add_notification(
            Notification(
                clinician_id=summary.clinician_id,
                type=ESCALATION_NOTIFICATION,
                patient_id=patient.id,
                summary_id=summary.id,
                urgency=summary.urgency,
                message=(
                    f"AI Alert: {patient.name} has reported {streak.symptom} in "
                    f"{streak.length} consecutive log submissions. Review suggested."
                ),
            )
        )
        logger.info(
            "Escalation summary created: patient=%s symptom=%s streak=%s urgency=%s fallback=%s",
            patient.id,
            streak.symptom,
            streak.length,
            summary.urgency.value,
            generated.used_fallback,
        )
        return summary
