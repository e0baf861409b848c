"""Synchronisations between account/post lifecycle events and the integrity engines."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from postguard.integrity.domain.abuse_tracker import AbuseTracker, TrackResult
from postguard.integrity.domain.errors import NotFound
from postguard.integrity.domain.image_registry import ImageRegistry, ImageRegistryService, ReuseMatch
from postguard.obs.logging import log_context

logger = logging.getLogger(__name__)


class PostRemover(Protocol):
    async def delete_post(self, post_id: str) -> None:
        ...


class NoopPostRemover:
    async def delete_post(self, post_id: str) -> None:
        return None


@dataclass
class IntegrityHooks:
    registry: ImageRegistryService
    tracker: AbuseTracker
    posts: PostRemover

    async def _registry_for(self, user: str) -> ImageRegistry:
        registry = await self.registry.get_by_owner(user)
        if registry is None:
            raise NotFound(f"No image registry for {user}")
        return registry

    async def account_created(self, user: str) -> ImageRegistry:
        with log_context(user_id=user):
            return await self.registry.create(user)

    async def account_deleted(self, user: str) -> None:
        with log_context(user_id=user):
            registry = await self.registry.get_by_owner(user)
            if registry is not None:
                await self.registry.delete_registry(registry.registry_id, user)

    async def post_created(self, author: str, image: str | None) -> None:
        if not image:
            return
        with log_context(user_id=author):
            registry = await self._registry_for(author)
            await self.registry.add_image(registry.registry_id, image)

    async def post_image_changed(self, author: str, old_image: str | None, new_image: str | None) -> None:
        if not new_image or new_image == old_image:
            return
        with log_context(user_id=author):
            registry = await self._registry_for(author)
            await self.registry.swap_image(registry.registry_id, old_image, new_image)

    async def post_deleted(self, author: str, image: str | None) -> None:
        if not image:
            return
        with log_context(user_id=author):
            registry = await self._registry_for(author)
            await self.registry.remove_image(registry.registry_id, image)

    async def report_filed(self, post_id: str) -> TrackResult:
        with log_context(target=post_id):
            result = await self.tracker.record_event(post_id)
            if result.throttled:
                logger.warning("removing reported post", extra={"counter": result.counter})
                await self.posts.delete_post(post_id)
                await self.tracker.remove(post_id)
            return result

    async def reuse_report(self, user: str) -> list[ReuseMatch]:
        with log_context(user_id=user):
            return await self.registry.find_reuse(user)
