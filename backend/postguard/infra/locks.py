"""Per-key exclusive sections for read-modify-write sequences."""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Protocol

from redis.asyncio import Redis
from redis.exceptions import LockError

from postguard.infra.redis import RedisProxy
from postguard.obs import metrics

logger = logging.getLogger(__name__)


class LockUnavailable(Exception):
	"""Raised when an exclusive section could not be entered in time."""

	reason = "lock_unavailable"

	def __init__(self, key: str) -> None:
		super().__init__(f"could not acquire lock for {key}")
		self.key = key


class KeyedLock(Protocol):
	def hold(self, key: str) -> AsyncContextManager[None]:
		...


class LocalKeyedLock:
	"""One asyncio.Lock per key, dropped once no task holds or awaits it."""

	def __init__(self) -> None:
		self._locks: dict[str, asyncio.Lock] = {}
		self._waiters: dict[str, int] = {}

	def hold(self, key: str) -> AsyncContextManager[None]:
		return self._hold(key)

	@asynccontextmanager
	async def _hold(self, key: str) -> AsyncIterator[None]:
		lock = self._locks.setdefault(key, asyncio.Lock())
		self._waiters[key] = self._waiters.get(key, 0) + 1
		started = time.perf_counter()
		try:
			async with lock:
				metrics.observe_lock_wait("local", time.perf_counter() - started)
				yield
		finally:
			remaining = self._waiters[key] - 1
			if remaining:
				self._waiters[key] = remaining
			else:
				self._waiters.pop(key, None)
				self._locks.pop(key, None)

	def active_keys(self) -> list[str]:
		return list(self._locks)


class RedisKeyedLock:
	"""Distributed exclusive sections backed by redis-py's Lock."""

	def __init__(
		self,
		redis: Redis | RedisProxy,
		*,
		namespace: str = "lock",
		lease_seconds: float = 10.0,
		wait_seconds: float = 5.0,
	) -> None:
		self._redis = redis
		self._namespace = namespace
		self._lease = lease_seconds
		self._wait = wait_seconds

	def hold(self, key: str) -> AsyncContextManager[None]:
		return self._hold(key)

	@asynccontextmanager
	async def _hold(self, key: str) -> AsyncIterator[None]:
		name = f"{self._namespace}:{key}"
		lock = self._redis.lock(name, timeout=self._lease, blocking_timeout=self._wait)
		started = time.perf_counter()
		acquired = await lock.acquire()
		if not acquired:
			raise LockUnavailable(key)
		metrics.observe_lock_wait("redis", time.perf_counter() - started)
		try:
			yield
		finally:
			try:
				await lock.release()
			except LockError:
				# Lease expired before release; another holder may already own the key.
				logger.warning("lock lease expired before release", extra={"lock_key": key})
