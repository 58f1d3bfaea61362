from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional

from postop_monitor.records import Patient
from postop_monitor.scoring import PriorityScore

logger = logging.getLogger(__name__)

RESCORE_INTERVAL_SECONDS = float(os.getenv("RESCORE_INTERVAL_SECONDS", str(30 * 60)))


@dataclass(frozen=True)
class RankedPatient:
    patient: Patient
    priority: PriorityScore

    @property
    def patient_id(self) -> str:
        return self.patient.id

    @property
    def score(self) -> int:
        return self.priority.score


RankingListener = Callable[[list[RankedPatient]], None]


class Ranker:
    """Latest score per patient, published as a list sorted by urgency.

    Ties keep the order in which patients were first ranked. Besides explicit
    refreshes, a periodic task rescores everything so that time-based factors
    advance without new events.
    """

    def __init__(
        self,
        *,
        rescore: Optional[Callable[[], None]] = None,
        interval: float = RESCORE_INTERVAL_SECONDS,
    ) -> None:
        self.rescore = rescore
        self._interval = interval
        self._entries: dict[str, RankedPatient] = {}
        self._listeners: list[RankingListener] = []
        self._task: Optional[asyncio.Task[None]] = None

    def __contains__(self, patient_id: str) -> bool:
        return patient_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, patient_id: str) -> Optional[RankedPatient]:
        return self._entries.get(patient_id)

    def update(self, entry: RankedPatient) -> None:
        # Reassigning an existing key keeps its insertion slot.
        self._entries[entry.patient_id] = entry

    def remove(self, patient_id: str) -> None:
        self._entries.pop(patient_id, None)

    def ranked(self) -> list[RankedPatient]:
        return sorted(self._entries.values(), key=lambda entry: -entry.score)

    def add_listener(self, listener: RankingListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def refresh(self) -> list[RankedPatient]:
        ranking = self.ranked()
        for listener in list(self._listeners):
            try:
                listener(ranking)
            except Exception:
                logger.exception("Ranking listener failed")
        return ranking

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._rescore_periodically())

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        await asyncio.wait({task})

    async def _rescore_periodically(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            if self.rescore is not None:
                try:
                    self.rescore()
                except Exception:
                    logger.exception("Periodic rescoring failed")
            self.refresh()
