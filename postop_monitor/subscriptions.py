"""Per-patient stream lifecycle for one clinician's roster.

Each tracked patient has exactly one subscription per stream kind. Stream
snapshots are reduced into an immutable ``PatientState``; after every reduction
the patient is rescored from the whole state and the ranking is refreshed.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable, Sequence
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from postop_monitor.ranking import RankedPatient, Ranker
from postop_monitor.records import EscalationSummary, Patient, SymptomLog, utcnow
from postop_monitor.scoring import PriorityScore, calculate_priority_score
from postop_monitor.store.base import RecordStore, Subscription

logger = logging.getLogger(__name__)

Scorer = Callable[..., PriorityScore]
Clock = Callable[[], datetime]


class StreamKind(str, Enum):
    LOGS = "logs"
    SUMMARIES = "summaries"
    UNREAD = "unread"


@dataclasses.dataclass(frozen=True)
class PatientState:
    patient: Patient
    logs: tuple[SymptomLog, ...] = ()
    summaries: tuple[EscalationSummary, ...] = ()
    unread_messages: int = 0


@dataclasses.dataclass(frozen=True)
class PatientChanged:
    patient: Patient


@dataclasses.dataclass(frozen=True)
class LogsReceived:
    logs: tuple[SymptomLog, ...]


@dataclasses.dataclass(frozen=True)
class SummariesReceived:
    summaries: tuple[EscalationSummary, ...]


@dataclasses.dataclass(frozen=True)
class UnreadCountReceived:
    count: int


StateEvent = Union[PatientChanged, LogsReceived, SummariesReceived, UnreadCountReceived]


def reduce_state(state: PatientState, event: StateEvent) -> PatientState:
    if isinstance(event, PatientChanged):
        return dataclasses.replace(state, patient=event.patient)
    if isinstance(event, LogsReceived):
        return dataclasses.replace(state, logs=event.logs)
    if isinstance(event, SummariesReceived):
        return dataclasses.replace(state, summaries=event.summaries)
    if isinstance(event, UnreadCountReceived):
        return dataclasses.replace(state, unread_messages=max(event.count, 0))
    raise TypeError(f"Unknown state event: {event!r}")


class SubscriptionRegistry:
    """Sole owner of the cancellation handles, keyed by patient id."""

    def __init__(self) -> None:
        self._handles: dict[str, list[Subscription[Any]]] = {}

    def __contains__(self, patient_id: str) -> bool:
        return patient_id in self._handles

    def ids(self) -> set[str]:
        return set(self._handles)

    def handles(self, patient_id: str) -> list[Subscription[Any]]:
        return list(self._handles.get(patient_id, ()))

    def track(self, patient_id: str) -> None:
        self._handles.setdefault(patient_id, [])

    def add(self, patient_id: str, handle: Subscription[Any]) -> None:
        self._handles.setdefault(patient_id, []).append(handle)

    def close(self, patient_id: str) -> list[Subscription[Any]]:
        handles = self._handles.pop(patient_id, [])
        for handle in handles:
            handle.cancel()
        return handles

    def close_all(self) -> list[Subscription[Any]]:
        closed: list[Subscription[Any]] = []
        for patient_id in list(self._handles):
            closed.extend(self.close(patient_id))
        return closed


class SubscriptionManager:
    def __init__(
        self,
        store: RecordStore,
        clinician_id: str,
        ranker: Ranker,
        *,
        scorer: Scorer = calculate_priority_score,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._clinician_id = clinician_id
        self._ranker = ranker
        self._scorer = scorer
        self._clock = clock
        self._registry = SubscriptionRegistry()
        self._states: dict[str, PatientState] = {}

    @property
    def registry(self) -> SubscriptionRegistry:
        return self._registry

    def tracked_ids(self) -> set[str]:
        return set(self._states)

    def state(self, patient_id: str) -> Optional[PatientState]:
        return self._states.get(patient_id)

    def apply_roster(self, patients: Sequence[Patient]) -> list[Subscription[Any]]:
        """Reconcile open streams with the roster; returns the handles it closed."""
        roster = {patient.id: patient for patient in patients if not patient.retired}
        current = set(self._states)

        closed: list[Subscription[Any]] = []
        for patient_id in current - roster.keys():
            closed.extend(self._forget(patient_id))

        for patient_id, patient in roster.items():
            if patient_id in current:
                if self._states[patient_id].patient != patient:
                    self._apply(patient_id, PatientChanged(patient), refresh=False)
            else:
                self._track(patient)

        self._ranker.refresh()
        return closed

    def handle_event(self, patient_id: str, event: StateEvent) -> None:
        self._apply(patient_id, event, refresh=True)

    def rescore_all(self) -> None:
        for patient_id in list(self._states):
            self._rescore(patient_id)

    def resync(self) -> None:
        """Ask every open patient stream to fetch a fresh snapshot."""
        for patient_id in self._registry.ids():
            for handle in self._registry.handles(patient_id):
                handle.notify()

    def close(self) -> list[Subscription[Any]]:
        closed = self._registry.close_all()
        for patient_id in list(self._states):
            self._ranker.remove(patient_id)
        self._states.clear()
        return closed

    def _track(self, patient: Patient) -> None:
        self._states[patient.id] = PatientState(patient=patient)
        self._registry.track(patient.id)
        for kind in StreamKind:
            try:
                handle = self._open(patient.id, kind)
            except Exception:
                logger.exception("Could not open %s stream for patient %s", kind.value, patient.id)
                continue
            self._registry.add(patient.id, handle)
        self._rescore(patient.id)

    def _forget(self, patient_id: str) -> list[Subscription[Any]]:
        closed = self._registry.close(patient_id)
        self._states.pop(patient_id, None)
        self._ranker.remove(patient_id)
        logger.debug("Stopped tracking patient %s (%d streams closed)", patient_id, len(closed))
        return closed

    def _open(self, patient_id: str, kind: StreamKind) -> Subscription[Any]:
        on_error = self._stream_error_handler(patient_id, kind)
        if kind is StreamKind.LOGS:
            return self._store.subscribe_logs(
                patient_id,
                lambda logs: self.handle_event(patient_id, LogsReceived(tuple(logs))),
                on_error,
            )
        if kind is StreamKind.SUMMARIES:
            return self._store.subscribe_summaries(
                patient_id,
                self._clinician_id,
                lambda summaries: self.handle_event(patient_id, SummariesReceived(tuple(summaries))),
                on_error,
            )
        return self._store.subscribe_unread_count(
            patient_id,
            self._clinician_id,
            lambda count: self.handle_event(patient_id, UnreadCountReceived(int(count))),
            on_error,
        )

    def _stream_error_handler(self, patient_id: str, kind: StreamKind) -> Callable[[Exception], None]:
        def on_error(exc: Exception) -> None:
            logger.warning(
                "%s stream for patient %s failed; keeping last known state: %s",
                kind.value,
                patient_id,
                exc,
            )

        return on_error

    def _apply(self, patient_id: str, event: StateEvent, *, refresh: bool) -> None:
        state = self._states.get(patient_id)
        if state is None:
            # late delivery for a patient that already left the roster
            return
        self._states[patient_id] = reduce_state(state, event)
        self._rescore(patient_id)
        if refresh:
            self._ranker.refresh()

    def _rescore(self, patient_id: str) -> None:
        state = self._states[patient_id]
        priority = self._scorer(
            state.patient,
            state.logs,
            state.summaries,
            state.unread_messages,
            now=self._clock(),
        )
        self._ranker.update(RankedPatient(patient=state.patient, priority=priority))
