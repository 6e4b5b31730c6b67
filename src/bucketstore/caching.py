"""
CacheSupplementedStorage - keeps a DirectoryListCache coherent with mutations
"""

import logging
from typing import List, Optional, Sequence

from .cache import DirectoryListCache
from .channels import ObjectReadChannel, ObjectWriteChannel
from .models import CreateObjectOptions, ItemInfo, StorageResourceId, UpdatableItemInfo
from .storage import StorageClient

logger = logging.getLogger(__name__)


class CacheSupplementedStorage(StorageClient):
    """
    Wraps a StorageClient, recording successful mutations in a shared cache.

    Listings are supplemented with cached entries the inner listing does not
    (yet) return, which hides list-after-write lag of the remote store. The
    cache only adds entries that were created through it and are re-checked
    where full infos are returned.
    """

    def __init__(self, inner: StorageClient, cache: DirectoryListCache):
        if inner is None:
            raise ValueError("inner must not be None")
        if cache is None:
            raise ValueError("cache must not be None")
        self._inner = inner
        self._cache = cache

    @property
    def cache(self) -> DirectoryListCache:
        return self._cache

    async def create(
        self, resource_id: StorageResourceId, options: Optional[CreateObjectOptions] = None
    ) -> ObjectWriteChannel:
        channel = await self._inner.create(resource_id, options)

        async def record() -> None:
            self._cache.put_resource_id(resource_id)

        channel.add_close_callback(record)
        return channel

    async def create_empty_object(
        self, resource_id: StorageResourceId, options: Optional[CreateObjectOptions] = None
    ) -> None:
        await self._inner.create_empty_object(resource_id, options)
        self._cache.put_resource_id(resource_id)

    async def create_empty_objects(
        self, resource_ids: Sequence[StorageResourceId], options: Optional[CreateObjectOptions] = None
    ) -> None:
        await self._inner.create_empty_objects(resource_ids, options)
        for resource_id in resource_ids:
            self._cache.put_resource_id(resource_id)

    async def open(self, resource_id: StorageResourceId) -> ObjectReadChannel:
        return await self._inner.open(resource_id)

    async def create_bucket(self, bucket_name: str) -> None:
        await self._inner.create_bucket(bucket_name)
        self._cache.put_resource_id(StorageResourceId(bucket_name))

    async def delete_buckets(self, bucket_names: Sequence[str]) -> None:
        # Forgetting an entry is always safe, so do it whether or not the delete succeeds.
        try:
            await self._inner.delete_buckets(bucket_names)
        finally:
            for bucket_name in bucket_names:
                self._cache.remove_resource_id(StorageResourceId(bucket_name))

    async def delete_objects(self, resource_ids: Sequence[StorageResourceId]) -> None:
        try:
            await self._inner.delete_objects(resource_ids)
        finally:
            for resource_id in resource_ids:
                self._cache.remove_resource_id(resource_id)

    async def copy(
        self,
        src_bucket_name: str,
        src_object_names: Sequence[str],
        dst_bucket_name: str,
        dst_object_names: Sequence[str],
    ) -> None:
        await self._inner.copy(src_bucket_name, src_object_names, dst_bucket_name, dst_object_names)
        for dst_object_name in dst_object_names:
            self._cache.put_resource_id(StorageResourceId(dst_bucket_name, dst_object_name))

    async def list_bucket_names(self) -> List[str]:
        names = await self._inner.list_bucket_names()
        listed = set(names)
        for entry in self._cache.get_bucket_list():
            if entry.resource_id.bucket_name not in listed:
                logger.debug("list_bucket_names: supplementing %s from cache", entry.resource_id)
                names.append(entry.resource_id.bucket_name)
                listed.add(entry.resource_id.bucket_name)
        return names

    async def list_bucket_info(self) -> List[ItemInfo]:
        infos = await self._inner.list_bucket_info()
        listed = {info.bucket_name for info in infos}
        missing = [
            entry.resource_id
            for entry in self._cache.get_bucket_list()
            if entry.resource_id.bucket_name not in listed
        ]
        return infos + await self._resolve_cached(missing)

    async def list_object_names(
        self, bucket_name: str, prefix: Optional[str] = None, delimiter: Optional[str] = None
    ) -> List[str]:
        names = await self._inner.list_object_names(bucket_name, prefix, delimiter)
        listed = set(names)
        for entry in self._cache.get_object_list(bucket_name, prefix, delimiter):
            object_name = entry.resource_id.object_name
            if object_name not in listed:
                logger.debug("list_object_names: supplementing %s from cache", entry.resource_id)
                names.append(object_name)
                listed.add(object_name)
        return names

    async def list_object_info(
        self, bucket_name: str, prefix: Optional[str] = None, delimiter: Optional[str] = None
    ) -> List[ItemInfo]:
        infos = await self._inner.list_object_info(bucket_name, prefix, delimiter)
        listed = {info.object_name for info in infos}
        missing = [
            entry.resource_id
            for entry in self._cache.get_object_list(bucket_name, prefix, delimiter)
            if entry.resource_id.object_name not in listed
        ]
        return infos + await self._resolve_cached(missing)

    async def _resolve_cached(self, resource_ids: List[StorageResourceId]) -> List[ItemInfo]:
        """Infos for cached ids that still exist; ids that no longer exist are evicted."""
        if not resource_ids:
            return []
        resolved = []
        for info in await self._inner.get_item_infos(resource_ids):
            if info.exists():
                resolved.append(info)
            else:
                logger.debug("Evicting %s from cache, it no longer exists", info.resource_id)
                self._cache.remove_resource_id(info.resource_id)
        return resolved

    async def get_item_info(self, resource_id: StorageResourceId) -> ItemInfo:
        return await self._inner.get_item_info(resource_id)

    async def get_item_infos(self, resource_ids: Sequence[StorageResourceId]) -> List[ItemInfo]:
        return await self._inner.get_item_infos(resource_ids)

    async def update_items(self, item_infos: Sequence[UpdatableItemInfo]) -> List[ItemInfo]:
        updated = await self._inner.update_items(item_infos)
        for info in updated:
            if info.exists():
                self._cache.put_resource_id(info.resource_id)
            else:
                self._cache.remove_resource_id(info.resource_id)
        return updated

    async def wait_for_bucket_empty(self, bucket_name: str) -> None:
        await self._inner.wait_for_bucket_empty(bucket_name)

    async def close(self) -> None:
        await self._inner.close()
