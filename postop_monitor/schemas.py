import uuid
from datetime import datetime
from typing import Optional

from fastapi_users import schemas
from pydantic import BaseModel, Field

from postop_monitor.records import SymptomEntry


class ClinicianRead(schemas.BaseUser[uuid.UUID]):
    pass


class ClinicianCreate(schemas.BaseUserCreate):
    pass


class ClinicianUpdate(schemas.BaseUserUpdate):
    pass


class SymptomInput(BaseModel):
    name: str = Field(..., min_length=1)
    severity: int = Field(..., ge=1, le=10)
    notes: str = ""

    def to_entry(self) -> SymptomEntry:
        return SymptomEntry(name=self.name, severity=self.severity, notes=self.notes)


class SymptomLogRequest(BaseModel):
    symptoms: list[SymptomInput] = Field(..., min_length=1)
    vitals: dict[str, float] = Field(default_factory=dict)


class SymptomLogResponse(BaseModel):
    id: str
    patient_id: str
    submitted_at: Optional[datetime]
    flagged: bool


class ScoreFactorOut(BaseModel):
    label: str
    points: int


class PriorityEntry(BaseModel):
    patient_id: str
    name: str
    risk: Optional[str]
    score: int
    breakdown: list[ScoreFactorOut]
    summary: str


class PriorityResponse(BaseModel):
    patients: list[PriorityEntry]
