from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from postop_monitor.db import Base


class PatientRow(Base):
    __tablename__ = "patients"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    age: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    diagnosis: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    risk: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    assigned_clinician_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    medications: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    retired: Mapped[bool] = mapped_column(Boolean, default=False)


class SymptomLogRow(Base):
    __tablename__ = "symptom_logs"

    # Insertion order breaks ties between equal timestamps.
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(64), unique=True)
    patient_id: Mapped[str] = mapped_column(String(64), index=True)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    symptoms: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    vitals: Mapped[dict[str, float]] = mapped_column(JSON, default=dict)


class EscalationSummaryRow(Base):
    __tablename__ = "escalation_summaries"
    __table_args__ = (
        UniqueConstraint("patient_id", "symptom_name", "streak_length", name="uq_escalation_tuple"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    patient_id: Mapped[str] = mapped_column(String(64), index=True)
    clinician_id: Mapped[str] = mapped_column(String(64), index=True)
    symptom_name: Mapped[str] = mapped_column(String(255))
    streak_length: Mapped[int] = mapped_column(Integer)
    severity_sequence: Mapped[list[int]] = mapped_column(JSON, default=list)
    generated_text: Mapped[str] = mapped_column(Text)
    urgency: Mapped[str] = mapped_column(String(16))
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    read: Mapped[bool] = mapped_column(Boolean, default=False)
    prompt: Mapped[str] = mapped_column(Text, default="")


class NotificationRow(Base):
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    clinician_id: Mapped[str] = mapped_column(String(64), index=True)
    type: Mapped[str] = mapped_column(String(32))
    patient_id: Mapped[str] = mapped_column(String(64))
    message: Mapped[str] = mapped_column(Text)
    summary_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    log_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    urgency: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    read: Mapped[bool] = mapped_column(Boolean, default=False)


class DirectMessageRow(Base):
    __tablename__ = "direct_messages"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    patient_id: Mapped[str] = mapped_column(String(64), index=True)
    sender_id: Mapped[str] = mapped_column(String(64))
    receiver_id: Mapped[str] = mapped_column(String(64), index=True)
    body: Mapped[str] = mapped_column(Text)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    read: Mapped[bool] = mapped_column(Boolean, default=False)
