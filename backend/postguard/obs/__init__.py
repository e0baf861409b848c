"""Observability helpers: structured logging and Prometheus counters."""

from __future__ import annotations

from postguard.obs import logging as obs_logging
from postguard.obs import metrics

__all__ = ["obs_logging", "metrics", "init"]


def init() -> None:
	"""Configure logging once at process start."""
	obs_logging.configure_logging()
