from __future__ import annotations

import pytest

from postguard.infra.documents import InMemoryDatabase, matches, update_fields


def test_matches_is_exact_conjunction():
	doc = {"owner": "alice", "image": "a.png"}
	assert matches(doc, {"owner": "alice"})
	assert matches(doc, {})
	assert not matches(doc, {"owner": "alice", "image": "b.png"})
	assert not matches(doc, {"missing": None})


def test_update_fields_drops_none_and_managed_keys():
	assert update_fields({"counter": 0, "images": [], "id": "x", "skip": None}) == {"counter": 0, "images": []}


@pytest.mark.asyncio
async def test_collection_crud_and_timestamps(database: InMemoryDatabase, clock):
	posts = database.collection("posts")
	first = await posts.create_one({"author": "alice", "n": 1})
	await posts.create_one({"author": "alice", "n": 2})
	await posts.create_one({"author": "bob", "n": 3})

	doc = await posts.read_one({"id": first})
	assert doc is not None and doc["created_at"] == doc["updated_at"] == clock.now
	assert [d["n"] for d in await posts.read_many({"author": "alice"})] == [1, 2]

	clock.advance(minutes=5)
	assert await posts.partial_update_one({"author": "alice"}, {"n": 10, "ignored": None})
	updated = await posts.read_one({"id": first})
	assert updated is not None
	assert updated["n"] == 10 and "ignored" not in updated
	assert updated["updated_at"] == clock.now and updated["created_at"] != clock.now

	assert await posts.delete_one({"author": "alice"}) is True
	assert await posts.delete_many({"author": "alice"}) == 1
	assert await posts.delete_many({"author": "alice"}) == 0
	assert [d["author"] for d in await posts.read_many({})] == ["bob"]


@pytest.mark.asyncio
async def test_reads_return_copies(database: InMemoryDatabase):
	coll = database.collection("lists")
	doc_id = await coll.create_one({"images": ["a"]})
	doc = await coll.read_one({"id": doc_id})
	assert doc is not None
	doc["images"].append("b")
	again = await coll.read_one({"id": doc_id})
	assert again is not None and again["images"] == ["a"]


@pytest.mark.asyncio
async def test_transaction_rolls_back_on_error(database: InMemoryDatabase):
	coll = database.collection("lists")
	await coll.create_one({"name": "kept"})
	with pytest.raises(RuntimeError):
		async with database.transaction() as tx:
			await tx.collection("lists").create_one({"name": "dropped"})
			await tx.collection("other").create_one({"name": "dropped"})
			raise RuntimeError("abort")
	assert [d["name"] for d in await coll.read_many({})] == ["kept"]
	assert await database.collection("other").read_many({}) == []
