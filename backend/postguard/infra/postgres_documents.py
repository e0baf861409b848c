"""PostgreSQL implementation of the document store.

Each collection maps to a ``doc_<name>`` table holding the document body as JSONB.
Scalar filters use JSONB containment, which is exact-match for strings, numbers and booleans.
"""

from __future__ import annotations

import json
import re
from contextlib import asynccontextmanager
from typing import Any, AsyncContextManager, AsyncIterator, Iterable, Mapping, Union

import asyncpg

from postguard.infra.documents import (
    Document,
    DocumentCollection,
    DocumentDatabase,
    new_document_id,
    update_fields,
)

Executor = Union[asyncpg.Pool, asyncpg.Connection]

_COLLECTION_NAME = re.compile(r"^[a-z][a-z0-9_]{0,48}$")

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS {table} (
    seq BIGSERIAL,
    id TEXT PRIMARY KEY,
    doc JSONB NOT NULL DEFAULT '{{}}'::jsonb,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""

_CREATE_INDEX_SQL = "CREATE INDEX IF NOT EXISTS {table}_doc_gin ON {table} USING GIN (doc jsonb_path_ops)"


def table_name(collection: str) -> str:
    lowered = collection.lower()
    if not _COLLECTION_NAME.match(lowered):
        raise ValueError(f"invalid collection name: {collection!r}")
    return f"doc_{lowered}"


def _dumps(value: Mapping[str, Any]) -> str:
    return json.dumps(dict(value), default=str, separators=(",", ":"))


def _where(flt: Mapping[str, Any], *, start: int = 1) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    args: list[Any] = []
    body = {key: value for key, value in flt.items() if key != "id"}
    if "id" in flt:
        args.append(str(flt["id"]))
        clauses.append(f"id = ${start + len(args) - 1}")
    if body:
        args.append(_dumps(body))
        clauses.append(f"doc @> ${start + len(args) - 1}::jsonb")
    return (" AND ".join(clauses) or "TRUE"), args


def _affected(status: str) -> int:
    # asyncpg returns command tags like "DELETE 3" / "UPDATE 1"
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0


def _doc_from_record(record: asyncpg.Record) -> Document:
    raw = record["doc"]
    doc: Document = json.loads(raw) if isinstance(raw, (str, bytes)) else dict(raw or {})
    doc["id"] = record["id"]
    doc["created_at"] = record["created_at"]
    doc["updated_at"] = record["updated_at"]
    return doc


class PostgresCollection(DocumentCollection):
    """Asyncpg-backed collection; works against a pool or a single connection."""

    def __init__(self, executor: Executor, name: str) -> None:
        self._executor = executor
        self.name = name
        self._table = table_name(name)

    async def create_one(self, doc: Mapping[str, Any]) -> str:
        doc_id = str(doc.get("id") or new_document_id())
        body = update_fields(doc)
        await self._executor.execute(
            f"INSERT INTO {self._table} (id, doc) VALUES ($1, $2::jsonb)",
            doc_id,
            _dumps(body),
        )
        return doc_id

    async def read_one(self, flt: Mapping[str, Any]) -> Document | None:
        where, args = _where(flt)
        record = await self._executor.fetchrow(
            f"SELECT id, doc, created_at, updated_at FROM {self._table} WHERE {where} ORDER BY seq LIMIT 1",
            *args,
        )
        return _doc_from_record(record) if record else None

    async def read_many(self, flt: Mapping[str, Any]) -> list[Document]:
        where, args = _where(flt)
        records = await self._executor.fetch(
            f"SELECT id, doc, created_at, updated_at FROM {self._table} WHERE {where} ORDER BY seq",
            *args,
        )
        return [_doc_from_record(record) for record in records]

    async def partial_update_one(self, flt: Mapping[str, Any], fields: Mapping[str, Any]) -> bool:
        changes = update_fields(fields)
        where, args = _where(flt, start=2)
        status = await self._executor.execute(
            f"""
            UPDATE {self._table}
            SET doc = doc || $1::jsonb, updated_at = now()
            WHERE id = (SELECT id FROM {self._table} WHERE {where} ORDER BY seq LIMIT 1)
            """,
            _dumps(changes),
            *args,
        )
        return _affected(status) > 0

    async def delete_one(self, flt: Mapping[str, Any]) -> bool:
        where, args = _where(flt)
        status = await self._executor.execute(
            f"DELETE FROM {self._table} WHERE id = (SELECT id FROM {self._table} WHERE {where} ORDER BY seq LIMIT 1)",
            *args,
        )
        return _affected(status) > 0

    async def delete_many(self, flt: Mapping[str, Any]) -> int:
        where, args = _where(flt)
        status = await self._executor.execute(f"DELETE FROM {self._table} WHERE {where}", *args)
        return _affected(status)


class PostgresDatabase(DocumentDatabase):
    """Document database on top of an asyncpg pool (or a connection inside a transaction)."""

    def __init__(self, executor: Executor) -> None:
        self._executor = executor

    def collection(self, name: str) -> PostgresCollection:
        return PostgresCollection(self._executor, name)

    def transaction(self) -> AsyncContextManager["PostgresDatabase"]:
        return self._transaction()

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator["PostgresDatabase"]:
        if isinstance(self._executor, asyncpg.Pool):
            async with self._executor.acquire() as conn:
                async with conn.transaction():
                    yield PostgresDatabase(conn)
            return
        # Already bound to a connection: nested blocks become savepoints.
        async with self._executor.transaction():
            yield self

    async def ensure_schema(self, collections: Iterable[str]) -> None:
        for name in collections:
            table = table_name(name)
            await self._executor.execute(_CREATE_TABLE_SQL.format(table=table))
            await self._executor.execute(_CREATE_INDEX_SQL.format(table=table))
