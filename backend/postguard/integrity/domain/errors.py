"""Domain-level exceptions for the integrity engines."""

from __future__ import annotations


class IntegrityError(Exception):
    """Base class for integrity engine errors."""

    reason: str = "unknown"

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(reason or self.reason)
        if reason:
            self.reason = reason


class NotFound(IntegrityError):
    reason = "not_found"


class OwnershipMismatch(IntegrityError):
    reason = "ownership_mismatch"

    def __init__(self, owner: str, registry_id: str) -> None:
        super().__init__(f"{owner} is not the owner of {registry_id}!")
        self.owner = owner
        self.registry_id = registry_id


class InvalidSource(IntegrityError):
    reason = "invalid_source"


class RemoteFetchTimeout(InvalidSource):
    reason = "remote_timeout"
