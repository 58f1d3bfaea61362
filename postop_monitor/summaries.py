from __future__ import annotations

import asyncio
import logging
import os
import re
from dataclasses import dataclass
from typing import Optional, Protocol

from postop_monitor.prompts import PHYSICIAN_DISCLAIMER, build_escalation_prompt
from postop_monitor.records import FLAG_SEVERITY, Patient, Urgency
from postop_monitor.streaks import SymptomStreak

logger = logging.getLogger(__name__)

LLM_TIMEOUT_SECONDS = float(os.getenv("ESCALATION_LLM_TIMEOUT", "20"))
SOON_MEAN_SEVERITY = 6


class TextGenerator(Protocol):
    async def complete(self, prompt: str) -> str: ...


@dataclass(frozen=True)
class GeneratedSummary:
    text: str
    urgency: Urgency
    prompt: str
    used_fallback: bool


def classify_urgency(severities: list[int]) -> Urgency:
    if not severities:
        return Urgency.ROUTINE
    if max(severities) >= FLAG_SEVERITY:
        return Urgency.URGENT
    if sum(severities) / len(severities) >= SOON_MEAN_SEVERITY:
        return Urgency.SOON
    return Urgency.ROUTINE


def urgency_from_text(text: str) -> Urgency:
    if re.search(r"urgent", text, re.IGNORECASE):
        return Urgency.URGENT
    if re.search(r"soon", text, re.IGNORECASE):
        return Urgency.SOON
    return Urgency.ROUTINE


def ensure_disclaimer(text: str) -> str:
    text = text.rstrip()
    if text.endswith(PHYSICIAN_DISCLAIMER):
        return text
    return f"{text}\n\n{PHYSICIAN_DISCLAIMER}"


def fallback_summary(patient: Patient, streak: SymptomStreak) -> tuple[str, Urgency]:
    """Deterministic summary used whenever the language model gives nothing usable."""
    severities = streak.severities
    urgency = classify_urgency(severities)
    condition = patient.diagnosis or "post-discharge recovery"

    if severities:
        low, high = min(severities), max(severities)
        # severities run newest first
        trend = "escalating" if severities[0] >= severities[-1] else "improving"
        severity_clause = f"with severity scores ranging from {low} to {high} out of 10"
        follow_up = "24–48" if high >= 7 else "72"
    else:
        trend = "unquantified"
        severity_clause = "without recorded severity scores"
        follow_up = "72"

    text = (
        f"The patient {patient.name} has reported {streak.symptom} in {streak.length} "
        f"consecutive symptom log submissions, {severity_clause}. The {trend} severity pattern "
        f"is clinically notable in the context of {condition}. This warrants evaluation to rule "
        "out complications or inadequate symptom management.\n\n"
        "Suggested Interventions (for physician evaluation):\n"
        f"• Review current analgesic or symptomatic management and assess dosage adequacy given the {trend} pattern.\n"
        f"• Consider scheduling an unplanned follow-up assessment within {follow_up} hours if "
        f"{streak.symptom.lower()} persists.\n"
        "• Evaluate for secondary causes such as infection, procedural complication, or medication side-effect.\n\n"
        f"Urgency: {urgency.value}. {PHYSICIAN_DISCLAIMER}"
    )
    return text, urgency


class SummaryGenerator:
    """Drafts escalation summaries, falling back to a local template.

    Any failure of the text generator (missing, raising, timing out, or
    returning blank text) yields the fallback rather than an error.
    """

    def __init__(
        self,
        text_generator: Optional[TextGenerator] = None,
        *,
        timeout: float = LLM_TIMEOUT_SECONDS,
    ) -> None:
        self._text_generator = text_generator
        self._timeout = timeout

    async def generate(self, patient: Patient, streak: SymptomStreak) -> GeneratedSummary:
        prompt = build_escalation_prompt(patient, streak)

        text = await self._try_generate(prompt)
        if text:
            return GeneratedSummary(
                text=ensure_disclaimer(text),
                urgency=urgency_from_text(text),
                prompt=prompt,
                used_fallback=False,
            )

        text, urgency = fallback_summary(patient, streak)
        return GeneratedSummary(text=text, urgency=urgency, prompt=prompt, used_fallback=True)

    async def _try_generate(self, prompt: str) -> str:
        if self._text_generator is None:
            return ""
        try:
            text = await asyncio.wait_for(self._text_generator.complete(prompt), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("Text generation timed out after %.1fs; using fallback", self._timeout)
            return ""
        except Exception as exc:
            logger.warning("Text generation failed (%s); using fallback", exc)
            return ""
        return (text or "").strip()
