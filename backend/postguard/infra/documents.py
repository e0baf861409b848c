"""Generic document-store contracts and the in-memory implementation.

Documents are plain dictionaries. The store owns three keys on every document:
``id`` (opaque string), ``created_at`` and ``updated_at`` (timezone-aware UTC).
Filters are exact-match conjunctions over top-level fields.
"""

from __future__ import annotations

import copy
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncContextManager, AsyncIterator, Callable, Mapping, MutableMapping, Protocol

Document = dict[str, Any]
Clock = Callable[[], datetime]

STORE_MANAGED_FIELDS = frozenset({"id", "created_at", "updated_at"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_document_id() -> str:
    return uuid.uuid4().hex


def matches(doc: Mapping[str, Any], flt: Mapping[str, Any]) -> bool:
    """Return True when every filter field equals the document's field."""

    for key, expected in flt.items():
        if key not in doc or doc[key] != expected:
            return False
    return True


def update_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    """Drop ``None`` values and store-managed keys from a partial update."""

    return {key: value for key, value in fields.items() if value is not None and key not in STORE_MANAGED_FIELDS}


class DocumentCollection(Protocol):
    """Single named collection of documents."""

    name: str

    async def create_one(self, doc: Mapping[str, Any]) -> str:
        """Insert a document and return its identifier."""

    async def read_one(self, flt: Mapping[str, Any]) -> Document | None:
        """Return the first matching document in insertion order."""

    async def read_many(self, flt: Mapping[str, Any]) -> list[Document]:
        """Return all matching documents in insertion order."""

    async def partial_update_one(self, flt: Mapping[str, Any], fields: Mapping[str, Any]) -> bool:
        """Update the given fields on the first match; ``None`` values are ignored."""

    async def delete_one(self, flt: Mapping[str, Any]) -> bool:
        """Delete the first match, returning whether a document was removed."""

    async def delete_many(self, flt: Mapping[str, Any]) -> int:
        """Delete all matches and return how many were removed."""


class DocumentDatabase(Protocol):
    """Namespace of collections with all-or-nothing transactions."""

    def collection(self, name: str) -> DocumentCollection:
        ...

    def transaction(self) -> AsyncContextManager["DocumentDatabase"]:
        ...


class InMemoryCollection(DocumentCollection):
    """Collection view over an :class:`InMemoryDatabase`."""

    def __init__(self, database: "InMemoryDatabase", name: str) -> None:
        self._db = database
        self.name = name

    @property
    def _docs(self) -> list[Document]:
        return self._db.data.setdefault(self.name, [])

    async def create_one(self, doc: Mapping[str, Any]) -> str:
        now = self._db.clock()
        stored = copy.deepcopy(dict(doc))
        stored["id"] = str(stored.get("id") or new_document_id())
        stored["created_at"] = now
        stored["updated_at"] = now
        self._docs.append(stored)
        return stored["id"]

    async def read_one(self, flt: Mapping[str, Any]) -> Document | None:
        for doc in self._docs:
            if matches(doc, flt):
                return copy.deepcopy(doc)
        return None

    async def read_many(self, flt: Mapping[str, Any]) -> list[Document]:
        return [copy.deepcopy(doc) for doc in self._docs if matches(doc, flt)]

    async def partial_update_one(self, flt: Mapping[str, Any], fields: Mapping[str, Any]) -> bool:
        changes = update_fields(fields)
        for doc in self._docs:
            if matches(doc, flt):
                doc.update(copy.deepcopy(changes))
                doc["updated_at"] = self._db.clock()
                return True
        return False

    async def delete_one(self, flt: Mapping[str, Any]) -> bool:
        docs = self._docs
        for idx, doc in enumerate(docs):
            if matches(doc, flt):
                del docs[idx]
                return True
        return False

    async def delete_many(self, flt: Mapping[str, Any]) -> int:
        docs = self._docs
        kept = [doc for doc in docs if not matches(doc, flt)]
        removed = len(docs) - len(kept)
        docs[:] = kept
        return removed


class InMemoryDatabase(DocumentDatabase):
    """Reference document store used in tests and developer environments.

    Transactions snapshot every collection on entry and restore the snapshot when the
    block raises, so a failed multi-document write leaves no partial state behind.
    """

    def __init__(self, *, clock: Clock | None = None) -> None:
        self.clock: Clock = clock or utcnow
        self.data: MutableMapping[str, list[Document]] = {}

    def collection(self, name: str) -> InMemoryCollection:
        return InMemoryCollection(self, name)

    def transaction(self) -> AsyncContextManager["InMemoryDatabase"]:
        return self._transaction()

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator["InMemoryDatabase"]:
        snapshot = {name: copy.deepcopy(docs) for name, docs in self.data.items()}
        try:
            yield self
        except BaseException:
            self.data.clear()
            self.data.update(snapshot)
            raise
