import logging

from postop_monitor.store.base import RecordStore
from postop_monitor.streaks import SymptomStreak

logger = logging.getLogger(__name__)


class EscalationDeduplicator:
    """Gatekeeper allowing one summary per (patient, symptom, streak length).

    The existence read here filters the common case. The write is still made
    with ``RecordStore.create_summary``, which refuses a tuple that already
    exists, so two overlapping submissions cannot both persist a summary.
    """

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    async def authorize(self, patient_id: str, streak: SymptomStreak) -> bool:
        try:
            exists = await self._store.summary_exists(patient_id, streak.symptom, streak.length)
        except Exception:
            logger.exception(
                "Escalation check failed for patient=%s symptom=%s streak=%s; skipping",
                patient_id,
                streak.symptom,
                streak.length,
            )
            return False

        if exists:
            logger.info(
                "Escalation already issued for patient=%s symptom=%s streak=%s",
                patient_id,
                streak.symptom,
                streak.length,
            )
            return False
        return True
