from __future__ import annotations

import asyncio

import pytest

from postguard.infra.locks import LocalKeyedLock, LockUnavailable, RedisKeyedLock


@pytest.mark.asyncio
async def test_local_lock_serializes_same_key():
	lock = LocalKeyedLock()
	order: list[str] = []

	async def worker(name: str) -> None:
		async with lock.hold("registry:1"):
			order.append(f"{name}:in")
			await asyncio.sleep(0.01)
			order.append(f"{name}:out")

	await asyncio.gather(worker("a"), worker("b"))
	assert order in (["a:in", "a:out", "b:in", "b:out"], ["b:in", "b:out", "a:in", "a:out"])
	assert lock.active_keys() == []


@pytest.mark.asyncio
async def test_local_lock_allows_distinct_keys_concurrently():
	lock = LocalKeyedLock()
	entered = asyncio.Event()

	async def holder() -> None:
		async with lock.hold("tracker:a"):
			entered.set()
			await asyncio.sleep(0.05)

	task = asyncio.create_task(holder())
	await entered.wait()
	async with lock.hold("tracker:b"):
		assert "tracker:a" in lock.active_keys()
	await task


@pytest.mark.asyncio
async def test_redis_lock_round_trip(fake_redis):
	lock = RedisKeyedLock(fake_redis, lease_seconds=5, wait_seconds=0.5)
	async with lock.hold("tracker:x"):
		assert await fake_redis.exists("lock:tracker:x") == 1
	assert await fake_redis.exists("lock:tracker:x") == 0


@pytest.mark.asyncio
async def test_redis_lock_times_out_when_held(fake_redis):
	lock = RedisKeyedLock(fake_redis, lease_seconds=5, wait_seconds=0.05)
	await fake_redis.set("lock:tracker:busy", "someone-else", px=5000)
	with pytest.raises(LockUnavailable):
		async with lock.hold("tracker:busy"):
			pass
