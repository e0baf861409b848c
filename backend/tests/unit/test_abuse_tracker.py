from __future__ import annotations

from datetime import timedelta

import pytest

from postguard.infra.documents import InMemoryDatabase
from postguard.integrity.domain.abuse_tracker import AbuseTracker, TrackerPolicy
from postguard.integrity.domain.errors import NotFound


@pytest.mark.asyncio
async def test_get_or_create_is_lazy_and_stable(tracker: AbuseTracker) -> None:
    first = await tracker.get_or_create("post-1")
    second = await tracker.get_or_create("post-1")
    assert first.counter == 0
    assert first.tracker_id == second.tracker_id


@pytest.mark.asyncio
async def test_cap_sequence_signals_at_threshold(tracker: AbuseTracker) -> None:
    results = [await tracker.record_event("post-1") for _ in range(7)]

    assert [result.counter for result in results] == [1, 2, 3, 4, 5, 5, 5]
    assert [result.throttled for result in results] == [False, False, False, False, True, True, True]
    stored = await tracker.get("post-1")
    assert stored is not None and stored.counter == 5


@pytest.mark.asyncio
async def test_decay_resets_then_counts_the_event(tracker: AbuseTracker, clock) -> None:
    for _ in range(5):
        await tracker.record_event("post-1")
    clock.advance(days=4)

    result = await tracker.record_event("post-1")

    assert result.counter == 1
    assert result.throttled is False
    stored = await tracker.get("post-1")
    assert stored is not None and stored.counter == 1


@pytest.mark.asyncio
async def test_three_idle_days_do_not_decay(tracker: AbuseTracker, clock) -> None:
    for _ in range(5):
        await tracker.record_event("post-1")
    clock.advance(days=3, hours=23)

    result = await tracker.record_event("post-1")

    assert result.throttled is True
    assert result.counter == 5


@pytest.mark.asyncio
async def test_short_windows_for_tests(database: InMemoryDatabase, clock) -> None:
    policy = TrackerPolicy(cap=2, decay_after=timedelta(seconds=30), granularity=timedelta(seconds=1))
    short = AbuseTracker(database, policy=policy, clock=clock)

    assert (await short.record_event("t")).throttled is False
    assert (await short.record_event("t")).throttled is True
    clock.advance(seconds=31)
    result = await short.record_event("t")
    assert (result.counter, result.throttled) == (1, False)


@pytest.mark.asyncio
async def test_remove_clears_throttled_state(tracker: AbuseTracker) -> None:
    for _ in range(5):
        await tracker.record_event("post-1")
    assert await tracker.remove("post-1") is True
    assert await tracker.get("post-1") is None
    result = await tracker.record_event("post-1")
    assert (result.counter, result.throttled) == (1, False)


@pytest.mark.asyncio
async def test_remove_missing_target_is_noop(tracker: AbuseTracker) -> None:
    assert await tracker.remove("never-seen") is False


@pytest.mark.asyncio
async def test_decrement_requires_existing_tracker(tracker: AbuseTracker) -> None:
    with pytest.raises(NotFound):
        await tracker.decrement_event("never-seen")


@pytest.mark.asyncio
async def test_decrement_clamps_at_zero_by_default(tracker: AbuseTracker) -> None:
    await tracker.record_event("post-1")
    assert (await tracker.decrement_event("post-1")).counter == 0
    assert (await tracker.decrement_event("post-1")).counter == 0
    stored = await tracker.get("post-1")
    assert stored is not None and stored.counter == 0


@pytest.mark.asyncio
async def test_decrement_without_clamp_goes_negative(database: InMemoryDatabase, clock) -> None:
    raw = AbuseTracker(database, policy=TrackerPolicy(clamp_at_zero=False), clock=clock)
    await raw.get_or_create("post-1")
    assert (await raw.decrement_event("post-1")).counter == -1


@pytest.mark.asyncio
async def test_decrement_reopens_capped_tracker(tracker: AbuseTracker) -> None:
    for _ in range(5):
        await tracker.record_event("post-1")
    await tracker.decrement_event("post-1")
    result = await tracker.record_event("post-1")
    assert (result.counter, result.throttled) == (5, True)


def test_policy_rejects_invalid_cap() -> None:
    with pytest.raises(ValueError):
        TrackerPolicy(cap=0)
