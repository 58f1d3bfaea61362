from postop_monitor.records import Patient
from postop_monitor.streaks import SymptomStreak

PHYSICIAN_DISCLAIMER = "Final medical decision rests with the treating physician."

ESCALATION_SYSTEM = """You are a clinical decision support assistant helping a doctor review a post-discharge patient's recovery.

Keep the tone clinical, concise, and factual. Never present suggestions as prescriptions."""


def format_medications(patient: Patient) -> str:
    listed = [
        " ".join(part for part in (med.name, med.dosage) if part)
        + (f" ({med.frequency})" if med.frequency else "")
        for med in patient.medications
    ]
    return ", ".join(listed) or "None recorded"


def format_severity_lines(streak: SymptomStreak) -> str:
    lines = []
    for index, obs in enumerate(streak.observations, start=1):
        when = obs.date.isoformat() if obs.date else "—"
        severity = f"{obs.severity}/10" if obs.severity is not None else "not recorded"
        note = f' — "{obs.notes}"' if obs.notes else ""
        lines.append(f"Submission {index} ({when}): {severity}{note}")
    return "\n".join(lines)


def build_escalation_prompt(patient: Patient, streak: SymptomStreak) -> str:
    return f"""Patient Details:
- Name: {patient.name}
- Age: {patient.age if patient.age is not None else "—"}
- Condition: {patient.diagnosis or "—"}
- Current Medications: {format_medications(patient)}

Symptom Pattern Detected:
- Symptom: {streak.symptom}
- Reported in {streak.length} consecutive log submissions
- Severity scores (most recent first):
{format_severity_lines(streak)}

Task:
1. Write a brief clinical summary (3-4 sentences) explaining the pattern for the doctor.
2. Suggest 2-3 possible medication adjustments or interventions appropriate for this symptom and the patient's current condition. Clearly label these as suggestions for the doctor to evaluate, not direct prescriptions.
3. Indicate urgency level: Routine / Soon / Urgent based on severity trend.

Always end with: "{PHYSICIAN_DISCLAIMER}"
"""
