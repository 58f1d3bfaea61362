"""Composite priority score for a single patient.

Pure and deterministic: every input, including the current time, is passed in.
The score combines seven factors; each non-zero factor is kept in the
breakdown so a clinician can see why a patient sits where it does.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from postop_monitor.records import (
    EscalationSummary,
    Patient,
    SymptomLog,
    as_utc,
    utcnow,
)

RISK_POINTS = {"critical": 40, "high": 30, "medium": 20, "low": 10}
DEFAULT_RISK_POINTS = 20

SEVERITY_MAX_POINTS = 20
ALERT_POINTS, ALERT_CAP = 5, 15
MESSAGE_POINTS, MESSAGE_CAP = 2, 6
TREND_WINDOW = 5
TREND_THRESHOLD = 0.5
WORSENING_POINTS, IMPROVING_POINTS = 10, -5

# (minimum streak length, points), checked in order
STREAK_TIERS = ((9, 20), (6, 15), (3, 10))
# (minimum hours since last log, points, label), checked in order
INACTIVITY_TIERS = (
    (72, 15, "Inactive 72hrs+"),
    (48, 10, "Inactive 48hrs"),
    (24, 5, "Inactive 24hrs"),
)
NEVER_LOGGED_POINTS = 15

MIN_SCORE, MAX_SCORE = 0, 100


@dataclass(frozen=True)
class ScoreFactor:
    label: str
    points: int


@dataclass(frozen=True)
class PriorityScore:
    score: int
    breakdown: tuple[ScoreFactor, ...] = ()

    def describe(self) -> str:
        return " | ".join(f"{factor.label}: {factor.points}pts" for factor in self.breakdown)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _risk_factor(patient: Patient) -> ScoreFactor:
    risk_key = (patient.risk or "medium").strip().lower()
    points = RISK_POINTS.get(risk_key, DEFAULT_RISK_POINTS)
    return ScoreFactor(f"Risk ({risk_key})", points)


def _severity_points(logs: Sequence[SymptomLog]) -> int:
    if not logs:
        return 0
    mean = logs[0].mean_severity()
    if mean is None:
        return 0
    return round_half_up(mean / 10 * SEVERITY_MAX_POINTS)


def _streak_points(summaries: Sequence[EscalationSummary]) -> int:
    if not summaries:
        return 0
    length = summaries[0].streak_length
    for minimum, points in STREAK_TIERS:
        if length >= minimum:
            return points
    return 0


def _alert_points(summaries: Sequence[EscalationSummary]) -> int:
    unread = sum(1 for summary in summaries if not summary.read)
    return min(unread * ALERT_POINTS, ALERT_CAP)


def _inactivity_factor(logs: Sequence[SymptomLog], now: datetime) -> Optional[ScoreFactor]:
    if not logs or logs[0].submitted_at is None:
        return ScoreFactor(INACTIVITY_TIERS[0][2], NEVER_LOGGED_POINTS)
    hours = (now - as_utc(logs[0].submitted_at)).total_seconds() / 3600
    for minimum, points, label in INACTIVITY_TIERS:
        if hours >= minimum:
            return ScoreFactor(label, points)
    return None


def _trend_factor(logs: Sequence[SymptomLog]) -> Optional[ScoreFactor]:
    window = logs[:TREND_WINDOW]
    if len(window) < 2:
        return None
    newest = window[0].mean_severity() or 0.0
    oldest = window[-1].mean_severity() or 0.0
    if newest > oldest + TREND_THRESHOLD:
        return ScoreFactor("Worsening Trend", WORSENING_POINTS)
    if newest < oldest - TREND_THRESHOLD:
        return ScoreFactor("Improving Trend", IMPROVING_POINTS)
    return None


def calculate_priority_score(
    patient: Patient,
    logs: Sequence[SymptomLog] = (),
    summaries: Sequence[EscalationSummary] = (),
    unread_messages: int = 0,
    *,
    now: Optional[datetime] = None,
) -> PriorityScore:
    """Score a patient from its latest snapshot of inputs.

    ``logs`` and ``summaries`` must be ordered newest first.
    """
    now = as_utc(now) if now is not None else utcnow()

    factors: list[Optional[ScoreFactor]] = [
        _risk_factor(patient),
        ScoreFactor("Severity", _severity_points(logs)),
        ScoreFactor("Streak", _streak_points(summaries)),
        ScoreFactor("Unread Alerts", _alert_points(summaries)),
        _inactivity_factor(logs, now),
        _trend_factor(logs),
        ScoreFactor("Unread Msgs", min(max(unread_messages, 0) * MESSAGE_POINTS, MESSAGE_CAP)),
    ]
    breakdown = tuple(f for f in factors if f is not None and f.points != 0)

    total = sum(factor.points for factor in breakdown)
    score = max(MIN_SCORE, min(MAX_SCORE, round_half_up(total)))
    return PriorityScore(score=score, breakdown=breakdown)
