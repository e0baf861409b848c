"""Central registry for Prometheus metrics used by the integrity engines."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

REGISTRY_IMAGES_ADDED = Counter(
	"postguard_registry_images_added_total",
	"Image tokens appended to an owner registry",
)

REGISTRY_IMAGES_REMOVED = Counter(
	"postguard_registry_images_removed_total",
	"Image occurrences removed from an owner registry",
)

REGISTRY_LIFECYCLE = Counter(
	"postguard_registry_lifecycle_total",
	"Registry create/delete operations",
	["action"],
)

REUSE_MATCHES = Counter(
	"postguard_reuse_matches_total",
	"Cross-owner image reuse matches returned by reuse queries",
)

TRACKER_EVENTS = Counter(
	"postguard_tracker_events_total",
	"Report counter outcomes",
	["outcome"],
)

REMOTE_FETCHES = Counter(
	"postguard_remote_fetch_total",
	"Remote candidate fetch outcomes",
	["outcome"],
)

LOCK_WAIT = Histogram(
	"postguard_lock_wait_seconds",
	"Time spent waiting for a per-key exclusive section",
	["backend"],
	buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
)


def inc_images_added(count: int = 1) -> None:
	REGISTRY_IMAGES_ADDED.inc(count)


def inc_images_removed(count: int) -> None:
	if count > 0:
		REGISTRY_IMAGES_REMOVED.inc(count)


def inc_registry_lifecycle(action: str) -> None:
	REGISTRY_LIFECYCLE.labels(action=action).inc()


def inc_reuse_matches(count: int) -> None:
	if count > 0:
		REUSE_MATCHES.inc(count)


def inc_tracker_event(outcome: str) -> None:
	TRACKER_EVENTS.labels(outcome=outcome).inc()


def inc_remote_fetch(outcome: str) -> None:
	REMOTE_FETCHES.labels(outcome=outcome).inc()


def observe_lock_wait(backend: str, seconds: float) -> None:
	LOCK_WAIT.labels(backend=backend).observe(seconds)
