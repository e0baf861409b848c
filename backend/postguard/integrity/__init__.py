"""Content-integrity engines: image reuse registry and decaying report counters."""

from postguard.integrity.domain.container import (
    configure,
    configure_postgres,
    get_hooks,
    get_registry,
    get_tracker,
    shutdown,
    startup,
)

__all__ = [
    "configure",
    "configure_postgres",
    "get_hooks",
    "get_registry",
    "get_tracker",
    "shutdown",
    "startup",
]
