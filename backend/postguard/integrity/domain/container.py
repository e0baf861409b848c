"""Lightweight service container shared by integrity modules."""

from __future__ import annotations

import logging
from typing import Optional

import asyncpg
import httpx

from postguard import obs
from postguard.infra import postgres
from postguard.infra.documents import DocumentDatabase, InMemoryDatabase
from postguard.infra.locks import KeyedLock, LocalKeyedLock, RedisKeyedLock
from postguard.infra.postgres_documents import PostgresDatabase
from postguard.infra.redis import redis_client
from postguard.integrity.domain.abuse_tracker import AbuseTracker
from postguard.integrity.domain.image_registry import ImageRegistryService
from postguard.integrity.domain.policy_config import IntegrityConfig, config_from_settings, load_integrity_config
from postguard.integrity.domain.remote_candidate import RemoteCandidateResolver, SourceLinkParser
from postguard.integrity.hooks import IntegrityHooks, NoopPostRemover, PostRemover
from postguard.settings import settings

logger = logging.getLogger(__name__)


def _load_config() -> IntegrityConfig:
	config = config_from_settings(settings)
	if settings.integrity_policy_path:
		config = load_integrity_config(settings.integrity_policy_path, config)
	return config


def _default_lock() -> KeyedLock:
	if settings.lock_backend == "redis":
		return RedisKeyedLock(
			redis_client,
			lease_seconds=settings.lock_lease_seconds,
			wait_seconds=settings.lock_wait_seconds,
		)
	return LocalKeyedLock()


_config: IntegrityConfig = _load_config()
_database: DocumentDatabase = InMemoryDatabase()
_lock: KeyedLock = _default_lock()
_posts: PostRemover = NoopPostRemover()
_registry: ImageRegistryService
_tracker: AbuseTracker
_hooks: IntegrityHooks


def _build() -> None:
	global _registry, _tracker, _hooks
	_registry = ImageRegistryService(_database, lock=_lock, collection=settings.registry_collection)
	_tracker = AbuseTracker(
		_database,
		policy=_config.tracker,
		lock=_lock,
		collection=settings.tracker_collection,
	)
	_hooks = IntegrityHooks(registry=_registry, tracker=_tracker, posts=_posts)


_build()


def configure(
	*,
	database: Optional[DocumentDatabase] = None,
	lock: Optional[KeyedLock] = None,
	config: Optional[IntegrityConfig] = None,
	posts: Optional[PostRemover] = None,
) -> None:
	"""Swap collaborators (tests, alternative backends) and rebuild the engines."""
	global _database, _lock, _config, _posts
	if database is not None:
		_database = database
	if lock is not None:
		_lock = lock
	if config is not None:
		_config = config
	if posts is not None:
		_posts = posts
	_build()


async def configure_postgres(pool: asyncpg.Pool, *, posts: Optional[PostRemover] = None) -> None:
	database = PostgresDatabase(pool)
	await database.ensure_schema(
		[
			settings.registry_collection,
			f"{settings.registry_collection}_images",
			settings.tracker_collection,
		]
	)
	configure(database=database, posts=posts)
	logger.info("integrity engines bound to postgres")


def get_registry() -> ImageRegistryService:
	return _registry


def get_tracker() -> AbuseTracker:
	return _tracker


def get_hooks() -> IntegrityHooks:
	return _hooks


def get_config() -> IntegrityConfig:
	return _config


def build_remote_resolver(http: httpx.AsyncClient) -> RemoteCandidateResolver:
	remote = _config.remote
	return RemoteCandidateResolver(
		http=http,
		parser=SourceLinkParser.from_pattern(remote.segment_pattern, remote.download_host),
		deadline=remote.deadline_seconds,
		read_timeout=remote.read_timeout_seconds,
		max_bytes=remote.max_bytes,
	)


async def startup(*, posts: Optional[PostRemover] = None) -> None:
	"""Install JSON logging and bind the engines to the configured store backend."""
	obs.init()
	if settings.store_backend == "postgres":
		pool = await postgres.init_pool()
		await configure_postgres(pool, posts=posts)
	elif posts is not None:
		configure(posts=posts)


async def shutdown() -> None:
	if settings.store_backend == "postgres":
		await postgres.close_pool()
