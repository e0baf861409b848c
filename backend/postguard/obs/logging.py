"""JSON log lines for the integrity services, with per-call context fields."""

from __future__ import annotations

import json
import logging
import random
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Mapping, Optional

from postguard.settings import settings

_CONTEXT: ContextVar[Mapping[str, str]] = ContextVar("postguard_log_context", default={})

_REDACT_MARKERS = ("token", "secret", "password", "authorization")
_MAX_TEXT = 256
_MAX_ITEMS = 10

# Attributes every LogRecord carries; anything else on a record came from ``extra=``.
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


@contextmanager
def log_context(**fields: Optional[str]) -> Iterator[None]:
	"""Attach fields such as ``user_id`` or ``target`` to every line logged inside the block."""
	merged = dict(_CONTEXT.get())
	merged.update({key: str(value) for key, value in fields.items() if value is not None})
	token = _CONTEXT.set(merged)
	try:
		yield
	finally:
		_CONTEXT.reset(token)


def current_context() -> Mapping[str, str]:
	return dict(_CONTEXT.get())


def _clean(key: str, value: Any) -> Any:
	if any(marker in key.lower() for marker in _REDACT_MARKERS):
		return "[redacted]"
	if isinstance(value, str):
		return value if len(value) <= _MAX_TEXT else value[:_MAX_TEXT] + "…"
	if isinstance(value, (bool, int, float)) or value is None:
		return value
	if isinstance(value, Mapping):
		return {str(k): _clean(str(k), v) for k, v in list(value.items())[:_MAX_ITEMS]}
	if isinstance(value, (list, tuple, set, frozenset)):
		items = [_clean(key, item) for item in list(value)[:_MAX_ITEMS]]
		if len(value) > _MAX_ITEMS:
			items.append(f"+{len(value) - _MAX_ITEMS} more")
		return items
	return _clean(key, str(value))


class JSONLogFormatter(logging.Formatter):
	"""One compact JSON object per record: service identity, context fields, then extras."""

	def format(self, record: logging.LogRecord) -> str:  # noqa: A003
		line: dict[str, Any] = {
			"ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
			"level": record.levelname.lower(),
			"logger": record.name,
			"msg": record.getMessage(),
			"service": settings.service_name,
			"env": settings.environment,
			"commit": settings.git_commit,
		}
		line.update(_CONTEXT.get())
		if record.exc_info:
			line["exc_info"] = self.formatException(record.exc_info)
		for key, value in vars(record).items():
			if key not in _STANDARD_ATTRS and key not in line:
				line[key] = _clean(key, value)
		return json.dumps(line, separators=(",", ":"), default=str)


class InfoSamplingFilter(logging.Filter):
	"""Keep a ``rate`` share of info lines; other levels always pass."""

	def __init__(self, rate: float) -> None:
		super().__init__()
		self.rate = max(0.0, min(1.0, rate))

	def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
		if record.levelno != logging.INFO or self.rate >= 1.0:
			return True
		return random.random() < self.rate


class _IntegrityHandler(logging.StreamHandler):
	pass


def configure_logging() -> logging.Handler:
	"""Install the JSON handler on the root logger, replacing one installed earlier."""
	root = logging.getLogger()
	for existing in [h for h in root.handlers if isinstance(h, _IntegrityHandler)]:
		root.removeHandler(existing)
	handler = _IntegrityHandler()
	handler.setFormatter(JSONLogFormatter())
	handler.addFilter(InfoSamplingFilter(settings.obs_log_sampling_rate_info))
	root.addHandler(handler)
	root.setLevel(settings.obs_log_level.upper())
	return handler
