"""Utilities for loading integrity policy configuration."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Mapping

import yaml

from postguard.integrity.domain.abuse_tracker import TrackerPolicy
from postguard.settings import Settings


@dataclass(slots=True)
class RemoteConfig:
    download_host: str
    segment_pattern: str
    deadline_seconds: float
    read_timeout_seconds: float
    max_bytes: int | None


@dataclass(slots=True)
class IntegrityConfig:
    tracker: TrackerPolicy
    remote: RemoteConfig


def config_from_settings(settings: Settings) -> IntegrityConfig:
    return IntegrityConfig(
        tracker=TrackerPolicy(
            cap=settings.tracker_cap,
            decay_after=timedelta(days=settings.tracker_decay_days),
            clamp_at_zero=settings.tracker_clamp_at_zero,
        ),
        remote=RemoteConfig(
            download_host=settings.remote_download_host,
            segment_pattern=settings.remote_segment_pattern,
            deadline_seconds=settings.remote_fetch_timeout_seconds,
            read_timeout_seconds=settings.remote_read_timeout_seconds,
            max_bytes=settings.remote_max_bytes,
        ),
    )


def _section(data: Mapping[str, object], key: str) -> Mapping[str, object]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


_TRUE_WORDS = frozenset({"true", "yes", "on", "1"})
_FALSE_WORDS = frozenset({"false", "no", "off", "0"})


def _as_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_WORDS:
            return True
        if lowered in _FALSE_WORDS:
            return False
    raise ValueError(f"expected a boolean, got {value!r}")


def load_integrity_config(path: str | Path, base: IntegrityConfig) -> IntegrityConfig:
    """Overlay a YAML policy file on top of ``base``.

    Recognised keys::

        tracker: {cap, decay_days, decay_seconds, granularity_seconds, clamp_at_zero}
        remote: {download_host, segment_pattern, deadline_seconds, read_timeout_seconds, max_bytes}
    """

    with open(path, "r", encoding="utf-8") as handle:
        loaded = yaml.safe_load(handle) or {}
    if not isinstance(loaded, dict):
        raise ValueError("integrity config must be a mapping")

    tracker_section = _section(loaded, "tracker")
    decay_after = base.tracker.decay_after
    if "decay_seconds" in tracker_section:
        decay_after = timedelta(seconds=float(tracker_section["decay_seconds"]))
    elif "decay_days" in tracker_section:
        decay_after = timedelta(days=float(tracker_section["decay_days"]))
    granularity = base.tracker.granularity
    if "granularity_seconds" in tracker_section:
        granularity = timedelta(seconds=float(tracker_section["granularity_seconds"]))
    tracker = TrackerPolicy(
        cap=int(tracker_section.get("cap", base.tracker.cap)),
        decay_after=decay_after,
        granularity=granularity,
        clamp_at_zero=_as_bool(tracker_section.get("clamp_at_zero", base.tracker.clamp_at_zero)),
    )

    remote_section = _section(loaded, "remote")
    max_bytes = remote_section.get("max_bytes", base.remote.max_bytes)
    remote = RemoteConfig(
        download_host=str(remote_section.get("download_host", base.remote.download_host)),
        segment_pattern=str(remote_section.get("segment_pattern", base.remote.segment_pattern)),
        deadline_seconds=float(remote_section.get("deadline_seconds", base.remote.deadline_seconds)),
        read_timeout_seconds=float(remote_section.get("read_timeout_seconds", base.remote.read_timeout_seconds)),
        max_bytes=int(max_bytes) if max_bytes else None,
    )
    return IntegrityConfig(tracker=tracker, remote=remote)
