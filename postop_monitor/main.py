import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Response

from postop_monitor.auth import auth_backend, current_clinician, fastapi_users
from postop_monitor.db import async_session_maker, init_db
from postop_monitor.escalation import EscalationService
from postop_monitor.intake import record_submission
from postop_monitor.models.clinician import Clinician
from postop_monitor.monitor import MonitorPool
from postop_monitor.openai_client import OpenAIClient
from postop_monitor.schemas import (
    PriorityEntry,
    PriorityResponse,
    ScoreFactorOut,
    SymptomLogRequest,
    SymptomLogResponse,
)
from postop_monitor.store.base import RecordStore
from postop_monitor.store.sql import SqlRecordStore
from postop_monitor.summaries import SummaryGenerator, TextGenerator

logger = logging.getLogger(__name__)

# Upper bound on how long a first ranking request waits for the roster.
ROSTER_WAIT_SECONDS = 2.0


@lru_cache(maxsize=1)
def get_store() -> RecordStore:
    return SqlRecordStore(async_session_maker)


@lru_cache(maxsize=1)
def get_monitor_pool() -> MonitorPool:
    return MonitorPool()


@lru_cache(maxsize=1)
def get_text_generator() -> Optional[TextGenerator]:
    try:
        return OpenAIClient()
    except RuntimeError:
        logger.warning("OPENAI_API_KEY not set; escalation summaries use the offline template")
        return None


def get_escalation_service(
    store: RecordStore = Depends(get_store),
    text_generator: Optional[TextGenerator] = Depends(get_text_generator),
) -> EscalationService:
    return EscalationService(store, SummaryGenerator(text_generator))


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield
    await get_monitor_pool().close_all()


app = FastAPI(title="Post-operative Monitor", lifespan=lifespan)
app.include_router(fastapi_users.get_auth_router(auth_backend), prefix="/auth/jwt", tags=["auth"])


async def run_escalation_check(service: EscalationService, patient_id: str) -> None:
    try:
        await service.process_submission(patient_id)
    except Exception:
        logger.exception("Escalation check failed for patient %s", patient_id)


@app.post("/api/patients/{patient_id}/logs", response_model=SymptomLogResponse, status_code=201)
async def submit_log(
    patient_id: str,
    req: SymptomLogRequest,
    background_tasks: BackgroundTasks,
    clinician: Clinician = Depends(current_clinician),
    store: RecordStore = Depends(get_store),
    escalations: EscalationService = Depends(get_escalation_service),
):
    patient = await store.get_patient(patient_id)
    if patient is None:
        raise HTTPException(status_code=404, detail="Patient not found")

    log = await record_submission(
        store, patient, [item.to_entry() for item in req.symptoms], req.vitals
    )
    background_tasks.add_task(run_escalation_check, escalations, patient_id)
    return SymptomLogResponse(
        id=log.id,
        patient_id=log.patient_id,
        submitted_at=log.submitted_at,
        flagged=log.flagged,
    )


@app.get("/api/priority", response_model=PriorityResponse)
async def priority(
    clinician: Clinician = Depends(current_clinician),
    store: RecordStore = Depends(get_store),
    pool: MonitorPool = Depends(get_monitor_pool),
):
    monitor = await pool.acquire(store, str(clinician.id))
    await monitor.wait_ready(timeout=ROSTER_WAIT_SECONDS)

    return PriorityResponse(
        patients=[
            PriorityEntry(
                patient_id=entry.patient_id,
                name=entry.patient.name,
                risk=entry.patient.risk,
                score=entry.score,
                breakdown=[
                    ScoreFactorOut(label=factor.label, points=factor.points)
                    for factor in entry.priority.breakdown
                ],
                summary=entry.priority.describe(),
            )
            for entry in monitor.ranked()
        ]
    )


@app.post("/api/summaries/{summary_id}/read", status_code=204)
async def mark_summary_read(
    summary_id: str,
    clinician: Clinician = Depends(current_clinician),
    store: RecordStore = Depends(get_store),
):
    summary = await store.mark_summary_read(summary_id)
    if summary is None:
        raise HTTPException(status_code=404, detail="Summary not found")
    return Response(status_code=204)
