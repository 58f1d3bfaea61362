from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from typing import Optional

from postop_monitor.records import SymptomLog, as_utc

STREAK_WINDOW = 10
ESCALATION_INTERVAL = 3


@dataclass(frozen=True)
class StreakObservation:
    date: Optional[date]
    severity: Optional[int]
    notes: str = ""


@dataclass(frozen=True)
class SymptomStreak:
    symptom: str
    length: int
    observations: tuple[StreakObservation, ...]

    @property
    def severities(self) -> list[int]:
        """Known severities across the streak, newest first."""
        return [obs.severity for obs in self.observations if obs.severity is not None]

    @property
    def is_escalation_candidate(self) -> bool:
        return self.length >= ESCALATION_INTERVAL and self.length % ESCALATION_INTERVAL == 0


def _log_date(log: SymptomLog) -> Optional[date]:
    if log.submitted_at is None:
        return None
    return as_utc(log.submitted_at).date()


def measure_streaks(recent_logs: Sequence[SymptomLog]) -> list[SymptomStreak]:
    """Measure the contiguous run ending at the newest log for each of its symptoms.

    ``recent_logs`` is newest first; only the first ``STREAK_WINDOW`` logs are
    considered. A log missing the symptom ends its run.
    """
    window = list(recent_logs[:STREAK_WINDOW])
    if not window:
        return []

    streaks: list[SymptomStreak] = []
    seen: set[str] = set()
    for entry in window[0].symptoms:
        if entry.name in seen:
            continue
        seen.add(entry.name)

        observations: list[StreakObservation] = []
        for log in window:
            match = log.find(entry.name)
            if match is None:
                break
            observations.append(StreakObservation(_log_date(log), match.severity, match.notes))

        streaks.append(SymptomStreak(entry.name, len(observations), tuple(observations)))
    return streaks


def detect_escalations(recent_logs: Sequence[SymptomLog]) -> list[SymptomStreak]:
    """Streaks whose length is a positive multiple of ``ESCALATION_INTERVAL``."""
    return [streak for streak in measure_streaks(recent_logs) if streak.is_escalation_candidate]
