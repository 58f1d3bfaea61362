import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, computed_field


MIN_SEVERITY, MAX_SEVERITY = 1, 10
FLAG_SEVERITY = 8


def _new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class RiskTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Urgency(str, Enum):
    ROUTINE = "Routine"
    SOON = "Soon"
    URGENT = "Urgent"


class Medication(BaseModel):
    name: str
    dosage: str = ""
    frequency: str = ""


class Patient(BaseModel):
    id: str = Field(default_factory=_new_id)
    name: str
    age: Optional[int] = None
    diagnosis: Optional[str] = None
    risk: Optional[str] = None
    assigned_clinician_id: Optional[str] = None
    medications: list[Medication] = Field(default_factory=list)
    retired: bool = False


class SymptomEntry(BaseModel):
    name: str
    severity: Optional[int] = Field(default=None, ge=MIN_SEVERITY, le=MAX_SEVERITY)
    notes: str = ""


class SymptomLog(BaseModel):
    id: str = Field(default_factory=_new_id)
    patient_id: str
    submitted_at: Optional[datetime] = None
    symptoms: list[SymptomEntry] = Field(default_factory=list)
    vitals: dict[str, float] = Field(default_factory=dict)

    @computed_field  # type: ignore[misc]
    @property
    def flagged(self) -> bool:
        return any(
            entry.severity is not None and entry.severity >= FLAG_SEVERITY
            for entry in self.symptoms
        )

    def mean_severity(self) -> Optional[float]:
        """Mean severity of the entries, ``None`` when the log is empty.

        Entries with a missing severity count as zero.
        """
        if not self.symptoms:
            return None
        return sum(entry.severity or 0 for entry in self.symptoms) / len(self.symptoms)

    def find(self, symptom_name: str) -> Optional[SymptomEntry]:
        for entry in self.symptoms:
            if entry.name == symptom_name:
                return entry
        return None


class EscalationSummary(BaseModel):
    id: str = Field(default_factory=_new_id)
    patient_id: str
    clinician_id: str
    symptom_name: str
    streak_length: int
    severity_sequence: list[int] = Field(default_factory=list)
    generated_text: str
    urgency: Urgency = Urgency.ROUTINE
    generated_at: datetime = Field(default_factory=utcnow)
    read: bool = False
    prompt: str = ""

    @property
    def dedup_key(self) -> tuple[str, str, int]:
        return (self.patient_id, self.symptom_name, self.streak_length)


class Notification(BaseModel):
    id: str = Field(default_factory=_new_id)
    clinician_id: str
    type: str
    patient_id: str
    message: str
    summary_id: Optional[str] = None
    log_id: Optional[str] = None
    urgency: Optional[Urgency] = None
    created_at: datetime = Field(default_factory=utcnow)
    read: bool = False


class DirectMessage(BaseModel):
    id: str = Field(default_factory=_new_id)
    patient_id: str
    sender_id: str
    receiver_id: str
    body: str
    sent_at: datetime = Field(default_factory=utcnow)
    read: bool = False
