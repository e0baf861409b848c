"""Decaying per-target report counters with a removal threshold."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Mapping

from postguard.infra.documents import Clock, DocumentDatabase, utcnow
from postguard.infra.locks import KeyedLock, LocalKeyedLock
from postguard.integrity.domain.errors import NotFound
from postguard.obs import metrics

logger = logging.getLogger(__name__)

DEFAULT_CAP = 5
DEFAULT_DECAY_AFTER = timedelta(days=3)
DEFAULT_GRANULARITY = timedelta(days=1)


@dataclass(frozen=True, slots=True)
class TrackerPolicy:
    """Report cap and inactivity window.

    A counter expires once the idle time, counted in whole ``granularity`` units, exceeds
    ``decay_after`` (also in whole units). With the defaults that means more than 3 full days.
    """

    cap: int = DEFAULT_CAP
    decay_after: timedelta = DEFAULT_DECAY_AFTER
    granularity: timedelta = DEFAULT_GRANULARITY
    clamp_at_zero: bool = True

    def __post_init__(self) -> None:
        if self.cap < 1:
            raise ValueError("cap must be at least 1")
        if self.granularity <= timedelta(0):
            raise ValueError("granularity must be positive")

    def expired(self, last_updated: datetime, now: datetime) -> bool:
        idle_units = (now - last_updated) // self.granularity
        return idle_units > self.decay_after // self.granularity


@dataclass(slots=True)
class Tracker:
    tracker_id: str
    target: str
    counter: int
    last_updated: datetime


@dataclass(frozen=True, slots=True)
class TrackResult:
    """Outcome of one report; ``throttled`` is the removal signal."""

    target: str
    counter: int
    throttled: bool


def _tracker_from_doc(doc: Mapping[str, Any]) -> Tracker:
    return Tracker(
        tracker_id=str(doc["id"]),
        target=str(doc["target"]),
        counter=int(doc.get("counter") or 0),
        last_updated=doc["updated_at"],
    )


class AbuseTracker:
    """Counts reports per target and signals once the cap is reached.

    ``get_or_create`` and ``record_event`` create trackers lazily; ``decrement_event``
    requires an existing tracker.
    """

    def __init__(
        self,
        database: DocumentDatabase,
        *,
        policy: TrackerPolicy | None = None,
        lock: KeyedLock | None = None,
        collection: str = "tracking",
        clock: Clock | None = None,
    ) -> None:
        self._db = database
        self.policy = policy or TrackerPolicy()
        self._lock = lock or LocalKeyedLock()
        self._collection = collection
        self._clock = clock or utcnow

    @property
    def _trackers(self):
        return self._db.collection(self._collection)

    async def get(self, target: str) -> Tracker | None:
        doc = await self._trackers.read_one({"target": target})
        return _tracker_from_doc(doc) if doc else None

    async def _create(self, target: str) -> Tracker:
        tracker_id = await self._trackers.create_one({"target": target, "counter": 0})
        doc = await self._trackers.read_one({"id": tracker_id})
        assert doc is not None
        return _tracker_from_doc(doc)

    async def get_or_create(self, target: str) -> Tracker:
        existing = await self.get(target)
        if existing:
            return existing
        async with self._lock.hold(f"tracker:{target}"):
            return await self.get(target) or await self._create(target)

    async def record_event(self, target: str) -> TrackResult:
        async with self._lock.hold(f"tracker:{target}"):
            tracker = await self.get(target) or await self._create(target)
            if self.policy.expired(tracker.last_updated, self._clock()):
                counter = 1
                outcome = "decayed"
            elif tracker.counter >= self.policy.cap:
                metrics.inc_tracker_event("throttled")
                logger.info(
                    "report cap already reached",
                    extra={"target": target, "counter": tracker.counter},
                )
                return TrackResult(target=target, counter=tracker.counter, throttled=True)
            else:
                counter = tracker.counter + 1
                outcome = "counted"
            await self._trackers.partial_update_one({"target": target}, {"counter": counter})
        throttled = counter >= self.policy.cap
        if throttled:
            outcome = "threshold"
            logger.info("report cap reached", extra={"target": target, "counter": counter})
        metrics.inc_tracker_event(outcome)
        return TrackResult(target=target, counter=counter, throttled=throttled)

    async def decrement_event(self, target: str) -> Tracker:
        async with self._lock.hold(f"tracker:{target}"):
            tracker = await self.get(target)
            if tracker is None:
                raise NotFound(f"Tracker {target} not found")
            counter = tracker.counter - 1
            if self.policy.clamp_at_zero:
                counter = max(0, counter)
            await self._trackers.partial_update_one({"target": target}, {"counter": counter})
        metrics.inc_tracker_event("decremented")
        tracker.counter = counter
        return tracker

    async def remove(self, target: str) -> bool:
        async with self._lock.hold(f"tracker:{target}"):
            removed = await self._trackers.delete_one({"target": target})
        if removed:
            metrics.inc_tracker_event("removed")
        return removed
