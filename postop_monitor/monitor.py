from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Callable
from typing import Any, Optional

from postop_monitor.ranking import RESCORE_INTERVAL_SECONDS, RankedPatient, Ranker
from postop_monitor.records import Patient, utcnow
from postop_monitor.store.base import RecordStore, Subscription
from postop_monitor.subscriptions import Clock, SubscriptionManager

logger = logging.getLogger(__name__)

MONITOR_IDLE_SECONDS = float(os.getenv("MONITOR_IDLE_SECONDS", str(15 * 60)))


class PriorityMonitor:
    """Live priority ranking for one clinician's session.

    ``start`` subscribes to the clinician's roster; each roster snapshot is
    reconciled into per-patient streams. ``stop`` tears every stream down.
    ``ranked`` returns the ranking most recently published by the ranker.
    """

    def __init__(
        self,
        store: RecordStore,
        clinician_id: str,
        *,
        rescore_interval: float = RESCORE_INTERVAL_SECONDS,
        clock: Clock = utcnow,
    ) -> None:
        self.clinician_id = clinician_id
        self._store = store
        self.ranker = Ranker(interval=rescore_interval)
        self.manager = SubscriptionManager(store, clinician_id, self.ranker, clock=clock)
        self.ranker.rescore = self._periodic_rescore
        self.ranker.add_listener(self._on_ranking)
        self._published: list[RankedPatient] = []
        self._roster: Optional[Subscription[list[Patient]]] = None
        self._closing: list[Subscription[Any]] = []
        self._roster_seen = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._roster is not None

    async def start(self) -> None:
        if self._roster is not None:
            return
        self._roster = self._store.subscribe_roster(
            self.clinician_id, self._on_roster, self._on_roster_error
        )
        await self.ranker.start()
        logger.info("Priority monitor started for clinician %s", self.clinician_id)

    async def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """Wait for the first roster snapshot; False if it did not arrive in time."""
        try:
            await asyncio.wait_for(self._roster_seen.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def stop(self) -> None:
        if self._roster is not None:
            self._roster.cancel()
            self._closing.append(self._roster)
            self._roster = None
        self._closing.extend(self.manager.close())
        self.ranker.refresh()
        await self.ranker.stop()

        closing, self._closing = self._closing, []
        await asyncio.gather(*(handle.wait_closed() for handle in closing))
        logger.info("Priority monitor stopped for clinician %s", self.clinician_id)

    def ranked(self) -> list[RankedPatient]:
        return list(self._published)

    async def __aenter__(self) -> "PriorityMonitor":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    def _on_ranking(self, ranking: list[RankedPatient]) -> None:
        self._published = ranking

    def _periodic_rescore(self) -> None:
        # Writes from other processes raise no change signal, so every tick refetches.
        if self._roster is not None:
            self._roster.notify()
        self.manager.resync()
        self.manager.rescore_all()

    def _on_roster(self, patients: list[Patient]) -> None:
        self._closing.extend(self.manager.apply_roster(patients))
        self._closing = [handle for handle in self._closing if not handle.done]
        self._roster_seen.set()

    def _on_roster_error(self, exc: Exception) -> None:
        logger.warning(
            "Roster stream for clinician %s failed; keeping current roster: %s",
            self.clinician_id,
            exc,
        )


class MonitorPool:
    """One running monitor per clinician, created on first use.

    A monitor not acquired for ``idle_timeout`` seconds is stopped the next
    time any clinician acquires one.
    """

    def __init__(
        self,
        *,
        rescore_interval: float = RESCORE_INTERVAL_SECONDS,
        idle_timeout: float = MONITOR_IDLE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._rescore_interval = rescore_interval
        self._idle_timeout = idle_timeout
        self._clock = clock
        self._monitors: dict[str, PriorityMonitor] = {}
        self._last_used: dict[str, float] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._monitors)

    async def acquire(self, store: RecordStore, clinician_id: str) -> PriorityMonitor:
        async with self._lock:
            now = self._clock()
            idle = [
                other
                for other, used in self._last_used.items()
                if other != clinician_id and now - used >= self._idle_timeout
            ]
            evicted = [self._pop(other) for other in idle]

            monitor = self._monitors.get(clinician_id)
            if monitor is None:
                monitor = PriorityMonitor(store, clinician_id, rescore_interval=self._rescore_interval)
                await monitor.start()
                self._monitors[clinician_id] = monitor
            self._last_used[clinician_id] = now

        for stale in evicted:
            logger.info("Stopping idle priority monitor for clinician %s", stale.clinician_id)
            await stale.stop()
        return monitor

    async def close_all(self) -> None:
        async with self._lock:
            monitors, self._monitors = list(self._monitors.values()), {}
            self._last_used.clear()
        for monitor in monitors:
            await monitor.stop()

    def _pop(self, clinician_id: str) -> PriorityMonitor:
        self._last_used.pop(clinician_id, None)
        return self._monitors.pop(clinician_id)
