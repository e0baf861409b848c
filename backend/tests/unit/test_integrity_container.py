from __future__ import annotations

import logging

import httpx
import pytest

from postguard.infra.documents import InMemoryDatabase
from postguard.integrity import configure, get_hooks, get_registry, get_tracker
from postguard.integrity.domain import container
from postguard.integrity.hooks import NoopPostRemover
from postguard.obs.logging import JSONLogFormatter


@pytest.fixture(autouse=True)
def restore_container():
    database = container._database
    posts = container._posts
    config = container._config
    yield
    configure(database=database, posts=posts, config=config)


@pytest.mark.asyncio
async def test_configure_rebinds_engines_to_new_database():
    database = InMemoryDatabase()
    configure(database=database)

    registry = await get_registry().create("alice")
    await get_tracker().record_event("post-1")

    assert get_hooks().registry is get_registry()
    assert [doc["id"] for doc in await database.collection("checking").read_many({})] == [registry.registry_id]
    assert len(await database.collection("tracking").read_many({})) == 1


def test_remote_resolver_uses_configured_parser():
    resolver = container.build_remote_resolver(httpx.AsyncClient())
    assert resolver.parser.download_url("https://host/share/ABC123/view").endswith("?id=ABC123")
    assert resolver.deadline == container.get_config().remote.deadline_seconds


@pytest.mark.asyncio
async def test_startup_installs_json_logging_and_binds_posts():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    posts = NoopPostRemover()
    try:
        await container.startup(posts=posts)
        installed = [handler for handler in root.handlers if isinstance(handler.formatter, JSONLogFormatter)]
        assert len(installed) == 1
        assert get_hooks().posts is posts
    finally:
        root.handlers[:] = handlers
        root.setLevel(level)
