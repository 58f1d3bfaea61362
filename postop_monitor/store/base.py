"""Real-time keyed record store contract.

A store exposes snapshot subscriptions in the style of a hosted document
database: every subscription delivers a full snapshot once on open and again
after each write touching its topic. Concrete stores only implement the
queries and writes; listener plumbing lives here.
"""

from __future__ import annotations

import abc
import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable, Hashable
from typing import Any, Generic, Optional, TypeVar

from postop_monitor.records import (
    DirectMessage,
    EscalationSummary,
    Notification,
    Patient,
    SymptomLog,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
Topic = tuple[Hashable, ...]
OnNext = Callable[[T], None]
OnError = Callable[[Exception], None]


def roster_topic(clinician_id: str) -> Topic:
    return ("roster", clinician_id)


def logs_topic(patient_id: str) -> Topic:
    return ("logs", patient_id)


def summaries_topic(patient_id: str) -> Topic:
    return ("summaries", patient_id)


def unread_topic(patient_id: str, clinician_id: str) -> Topic:
    return ("unread", patient_id, clinician_id)


class Subscription(Generic[T]):
    """Cancellation handle for one live snapshot listener.

    The listener task fetches a snapshot, hands it to ``on_next`` and then
    sleeps until the feed signals a change. Signals raised while a fetch is in
    flight trigger one more fetch, so snapshots arrive in order and bursts of
    writes coalesce.
    """

    def __init__(
        self,
        feed: "ChangeFeed",
        topic: Topic,
        fetch: Callable[[], Awaitable[T]],
        on_next: OnNext,
        on_error: Optional[OnError] = None,
    ) -> None:
        self.topic = topic
        self._feed = feed
        self._fetch = fetch
        self._on_next = on_next
        self._on_error = on_error
        self._changed = asyncio.Event()
        self._active = True
        self._task = asyncio.get_running_loop().create_task(self._run())

    @property
    def active(self) -> bool:
        return self._active

    @property
    def done(self) -> bool:
        return self._task.done()

    def notify(self) -> None:
        self._changed.set()

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        self._feed.detach(self)
        self._task.cancel()

    async def wait_closed(self) -> None:
        # A cancelled caller stops waiting; the listener task keeps running.
        await asyncio.wait({self._task})

    async def _run(self) -> None:
        while self._active:
            self._changed.clear()
            try:
                snapshot = await self._fetch()
            except Exception as exc:
                self._deliver_error(exc)
            else:
                self._deliver(snapshot)
            await self._changed.wait()

    def _deliver(self, snapshot: T) -> None:
        if not self._active:
            return
        try:
            self._on_next(snapshot)
        except Exception:
            logger.exception("Listener for %s failed handling a snapshot", self.topic)

    def _deliver_error(self, exc: Exception) -> None:
        if not self._active:
            return
        if self._on_error is None:
            logger.warning("Stream %s errored: %s", self.topic, exc)
            return
        try:
            self._on_error(exc)
        except Exception:
            logger.exception("Error handler for %s failed", self.topic)


class ChangeFeed:
    """Topic -> live subscriptions, signalled by the store after each write."""

    def __init__(self) -> None:
        self._listeners: dict[Topic, set[Subscription[Any]]] = defaultdict(set)

    def listen(
        self,
        topic: Topic,
        fetch: Callable[[], Awaitable[T]],
        on_next: OnNext,
        on_error: Optional[OnError] = None,
    ) -> Subscription[T]:
        subscription = Subscription(self, topic, fetch, on_next, on_error)
        self._listeners[topic].add(subscription)
        return subscription

    def publish(self, *topics: Topic) -> None:
        for topic in topics:
            for subscription in list(self._listeners.get(topic, ())):
                subscription.notify()

    def detach(self, subscription: Subscription[Any]) -> None:
        listeners = self._listeners.get(subscription.topic)
        if listeners is None:
            return
        listeners.discard(subscription)
        if not listeners:
            del self._listeners[subscription.topic]

    def listener_count(self, topic: Optional[Topic] = None) -> int:
        if topic is not None:
            return len(self._listeners.get(topic, ()))
        return sum(len(listeners) for listeners in self._listeners.values())


class RecordStore(abc.ABC):
    """Store collaborator consumed by the monitoring and escalation core."""

    def __init__(self) -> None:
        self.feed = ChangeFeed()

    # -- subscriptions -----------------------------------------------------

    def subscribe_roster(
        self, clinician_id: str, on_next: OnNext, on_error: Optional[OnError] = None
    ) -> Subscription[list[Patient]]:
        return self.feed.listen(
            roster_topic(clinician_id), lambda: self.list_roster(clinician_id), on_next, on_error
        )

    def subscribe_logs(
        self, patient_id: str, on_next: OnNext, on_error: Optional[OnError] = None
    ) -> Subscription[list[SymptomLog]]:
        return self.feed.listen(
            logs_topic(patient_id), lambda: self.list_logs(patient_id), on_next, on_error
        )

    def subscribe_summaries(
        self,
        patient_id: str,
        clinician_id: str,
        on_next: OnNext,
        on_error: Optional[OnError] = None,
    ) -> Subscription[list[EscalationSummary]]:
        return self.feed.listen(
            summaries_topic(patient_id),
            lambda: self.list_summaries(patient_id, clinician_id),
            on_next,
            on_error,
        )

    def subscribe_unread_count(
        self,
        patient_id: str,
        clinician_id: str,
        on_next: OnNext,
        on_error: Optional[OnError] = None,
    ) -> Subscription[int]:
        return self.feed.listen(
            unread_topic(patient_id, clinician_id),
            lambda: self.count_unread(patient_id, clinician_id),
            on_next,
            on_error,
        )

    # -- queries -----------------------------------------------------------

    @abc.abstractmethod
    async def list_roster(self, clinician_id: str) -> list[Patient]:
        """Non-retired patients assigned to the clinician."""

    @abc.abstractmethod
    async def list_logs(self, patient_id: str) -> list[SymptomLog]:
        """All logs of a patient, newest first."""

    @abc.abstractmethod
    async def list_summaries(self, patient_id: str, clinician_id: str) -> list[EscalationSummary]:
        """Summaries for a (patient, clinician) pair, newest first."""

    @abc.abstractmethod
    async def count_unread(self, patient_id: str, clinician_id: str) -> int:
        """Unread direct messages from the patient to the clinician."""

    @abc.abstractmethod
    async def get_patient(self, patient_id: str) -> Optional[Patient]: ...

    @abc.abstractmethod
    async def recent_logs(self, patient_id: str, limit: int = 10) -> list[SymptomLog]: ...

    @abc.abstractmethod
    async def summary_exists(self, patient_id: str, symptom_name: str, streak_length: int) -> bool: ...

    @abc.abstractmethod
    async def list_notifications(self, clinician_id: str) -> list[Notification]: ...

    # -- writes --------------------------------------------------------------

    @abc.abstractmethod
    async def save_patient(self, patient: Patient) -> Patient: ...

    @abc.abstractmethod
    async def add_log(self, log: SymptomLog) -> SymptomLog: ...

    @abc.abstractmethod
    async def create_summary(self, summary: EscalationSummary) -> Optional[EscalationSummary]:
        """Persist unless the (patient, symptom, streak length) tuple exists.

        Returns ``None`` when another summary already holds the tuple.
        """

    @abc.abstractmethod
    async def mark_summary_read(self, summary_id: str) -> Optional[EscalationSummary]: ...

    @abc.abstractmethod
    async def add_notification(self, notification: Notification) -> Notification: ...

    @abc.abstractmethod
    async def send_message(self, message: DirectMessage) -> DirectMessage: ...

    @abc.abstractmethod
    async def mark_messages_read(self, patient_id: str, clinician_id: str) -> int:
        """Mark the patient's messages to the clinician read; returns how many changed."""
