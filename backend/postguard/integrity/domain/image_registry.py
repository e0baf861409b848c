"""Per-owner image registries with a cross-owner reverse index for reuse detection."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from postguard.infra.documents import DocumentDatabase
from postguard.infra.locks import KeyedLock, LocalKeyedLock
from postguard.integrity.domain.errors import NotFound, OwnershipMismatch
from postguard.obs import metrics

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ImageRegistry:
    """Ordered list of image tokens posted by one owner."""

    registry_id: str
    owner: str
    images: list[str] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class ReuseMatch:
    """Another owner holding the same image token."""

    owner: str
    image: str


def _registry_from_doc(doc: Mapping[str, Any]) -> ImageRegistry:
    return ImageRegistry(
        registry_id=str(doc["id"]),
        owner=str(doc["owner"]),
        images=[str(image) for image in doc.get("images") or []],
        created_at=doc.get("created_at"),
        updated_at=doc.get("updated_at"),
    )


class ImageRegistryService:
    """Keeps each owner's image list and the ``(owner, image)`` index in lock-step.

    Every mutation runs inside the registry's exclusive section and a single store
    transaction, so the list and its index records are written together.
    """

    def __init__(
        self,
        database: DocumentDatabase,
        *,
        lock: KeyedLock | None = None,
        collection: str = "checking",
        index_collection: str | None = None,
    ) -> None:
        self._db = database
        self._lock = lock or LocalKeyedLock()
        self._collection = collection
        self._index_collection = index_collection or f"{collection}_images"

    @property
    def _registries(self):
        return self._db.collection(self._collection)

    @property
    def _index(self):
        return self._db.collection(self._index_collection)

    async def create(self, owner: str) -> ImageRegistry:
        registry_id = await self._registries.create_one({"owner": owner, "images": []})
        doc = await self._registries.read_one({"id": registry_id})
        assert doc is not None
        metrics.inc_registry_lifecycle("create")
        logger.info("image registry created", extra={"registry_id": registry_id, "owner": owner})
        return _registry_from_doc(doc)

    async def get(self, registry_id: str) -> ImageRegistry:
        doc = await self._registries.read_one({"id": registry_id})
        if doc is None:
            raise NotFound(f"Registry {registry_id} does not exist!")
        return _registry_from_doc(doc)

    async def get_by_owner(self, owner: str) -> ImageRegistry | None:
        doc = await self._registries.read_one({"owner": owner})
        return _registry_from_doc(doc) if doc else None

    async def add_image(self, registry_id: str, image: str | None) -> ImageRegistry:
        """Append ``image`` and record its index entry; empty images are ignored."""

        async with self._lock.hold(f"registry:{registry_id}"):
            async with self._db.transaction() as tx:
                registries = tx.collection(self._collection)
                doc = await registries.read_one({"id": registry_id})
                if doc is None:
                    raise NotFound(f"Registry {registry_id} does not exist!")
                registry = _registry_from_doc(doc)
                if not image:
                    return registry
                registry.images.append(image)
                await registries.partial_update_one({"id": registry_id}, {"images": registry.images})
                await tx.collection(self._index_collection).create_one({"owner": registry.owner, "image": image})
        metrics.inc_images_added()
        logger.debug("image added to registry", extra={"registry_id": registry_id, "image": image})
        return registry

    async def remove_image(self, registry_id: str, image: str | None) -> list[str]:
        """Drop every occurrence of ``image`` and its index records; returns the new list."""

        async with self._lock.hold(f"registry:{registry_id}"):
            async with self._db.transaction() as tx:
                registries = tx.collection(self._collection)
                doc = await registries.read_one({"id": registry_id})
                if doc is None:
                    raise NotFound(f"Registry {registry_id} does not exist!")
                registry = _registry_from_doc(doc)
                remaining = [entry for entry in registry.images if entry != image]
                await registries.partial_update_one({"id": registry_id}, {"images": remaining})
                removed = 0
                if image:
                    removed = await tx.collection(self._index_collection).delete_many(
                        {"owner": registry.owner, "image": image}
                    )
        metrics.inc_images_removed(removed)
        logger.debug(
            "image removed from registry",
            extra={"registry_id": registry_id, "image": image, "index_removed": removed},
        )
        return remaining

    async def swap_image(self, registry_id: str, old_image: str | None, new_image: str | None) -> list[str]:
        """Replace ``old_image`` with ``new_image`` as one atomic step."""

        async with self._lock.hold(f"registry:{registry_id}"):
            async with self._db.transaction() as tx:
                registries = tx.collection(self._collection)
                index = tx.collection(self._index_collection)
                doc = await registries.read_one({"id": registry_id})
                if doc is None:
                    raise NotFound(f"Registry {registry_id} does not exist!")
                registry = _registry_from_doc(doc)
                images = [entry for entry in registry.images if entry != old_image]
                if new_image:
                    images.append(new_image)
                removed = 0
                if new_image and new_image != old_image:
                    await index.create_one({"owner": registry.owner, "image": new_image})
                if old_image:
                    removed = await index.delete_many({"owner": registry.owner, "image": old_image})
                if new_image and new_image == old_image:
                    await index.create_one({"owner": registry.owner, "image": new_image})
                await registries.partial_update_one({"id": registry_id}, {"images": images})
        metrics.inc_images_removed(removed)
        if new_image:
            metrics.inc_images_added()
        logger.debug(
            "image swapped in registry",
            extra={"registry_id": registry_id, "old_image": old_image, "new_image": new_image},
        )
        return images

    async def assert_owner(self, registry_id: str, owner: str) -> ImageRegistry:
        registry = await self.get(registry_id)
        if registry.owner != str(owner):
            raise OwnershipMismatch(str(owner), registry_id)
        return registry

    async def delete_registry(self, registry_id: str, owner: str) -> int:
        """Delete the registry and every index record of its owner.

        Returns the number of index records removed.
        """

        async with self._lock.hold(f"registry:{registry_id}"):
            registry = await self.assert_owner(registry_id, owner)
            async with self._db.transaction() as tx:
                await tx.collection(self._collection).delete_one({"id": registry_id})
                removed = await tx.collection(self._index_collection).delete_many({"owner": registry.owner})
        metrics.inc_registry_lifecycle("delete")
        logger.info(
            "image registry deleted",
            extra={"registry_id": registry_id, "owner": registry.owner, "index_removed": removed},
        )
        return removed

    async def owners_of(self, image: str) -> list[str]:
        owners: list[str] = []
        for record in await self._index.read_many({"image": image}):
            owner = str(record["owner"])
            if owner not in owners:
                owners.append(owner)
        return owners

    async def find_reuse(self, owner: str) -> list[ReuseMatch]:
        """Return every other owner that posted one of ``owner``'s image tokens."""

        registry = await self.get_by_owner(owner)
        if registry is None:
            return []
        seen: set[ReuseMatch] = set()
        matches: list[ReuseMatch] = []
        for image in dict.fromkeys(registry.images):
            for record in await self._index.read_many({"image": image}):
                match = ReuseMatch(owner=str(record["owner"]), image=str(record["image"]))
                if match.owner == registry.owner or match in seen:
                    continue
                seen.add(match)
                matches.append(match)
        metrics.inc_reuse_matches(len(matches))
        if matches:
            logger.info("image reuse detected", extra={"owner": owner, "matches": len(matches)})
        return matches
