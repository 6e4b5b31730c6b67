"""
Directory-listing cache consulted by CacheSupplementedStorage
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .models import StorageResourceId
from .storage import is_directory_marker, match_list_prefix

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRY_AGE = 4 * 60 * 60.0


@dataclass
class CacheEntry:
    """A resource known to exist as of creation_time (clock seconds)."""
    resource_id: StorageResourceId
    creation_time: float


class DirectoryListCache(ABC):
    """
    Records resources recently created through this process.

    Entries only ever supplement a listing; a stale or missing entry must never
    make a result wrong, only possibly stale. Implementations synchronize
    internally and may be shared between clients.
    """

    @abstractmethod
    def put_resource_id(self, resource_id: StorageResourceId) -> CacheEntry:
        """Record resource_id (and its bucket) as existing; returns the entry."""

    @abstractmethod
    def remove_resource_id(self, resource_id: StorageResourceId) -> None:
        """Forget resource_id; removing a bucket forgets every object in it."""

    @abstractmethod
    def get_cache_entry(self, resource_id: StorageResourceId) -> Optional[CacheEntry]:
        """The unexpired entry for resource_id, or None."""

    @abstractmethod
    def get_bucket_list(self) -> List[CacheEntry]:
        """Unexpired bucket entries."""

    @abstractmethod
    def get_object_list(
        self, bucket_name: str, prefix: Optional[str], delimiter: Optional[str]
    ) -> List[CacheEntry]:
        """Unexpired object entries grouped the way a listing groups them."""

    @abstractmethod
    def size(self) -> int:
        """Number of bucket and object entries held."""

    @abstractmethod
    def clear(self) -> None:
        """Drop every entry."""


class InMemoryDirectoryListCache(DirectoryListCache):
    """
    Lock-protected in-process DirectoryListCache.

    Example:
        cache = InMemoryDirectoryListCache(max_entry_age=600)
        storage = CacheSupplementedStorage(client, cache)
    """

    def __init__(
        self,
        max_entry_age: float = DEFAULT_MAX_ENTRY_AGE,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entry_age <= 0:
            raise ValueError(f"max_entry_age must be > 0, got {max_entry_age}")
        self.max_entry_age = max_entry_age
        self._clock = clock
        self._lock = threading.Lock()
        self._buckets: Dict[str, CacheEntry] = {}
        self._objects: Dict[str, Dict[str, CacheEntry]] = {}

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.creation_time > self.max_entry_age

    def put_resource_id(self, resource_id: StorageResourceId) -> CacheEntry:
        if resource_id.is_root:
            raise ValueError("Cannot cache the root")
        now = self._clock()
        with self._lock:
            bucket_name = resource_id.bucket_name
            bucket_entry = self._buckets.get(bucket_name)
            if bucket_entry is None or self._expired(bucket_entry, now):
                bucket_entry = CacheEntry(StorageResourceId(bucket_name), now)
                self._buckets[bucket_name] = bucket_entry
            if resource_id.is_bucket:
                return bucket_entry

            entry = CacheEntry(resource_id, now)
            self._objects.setdefault(bucket_name, {})[resource_id.object_name] = entry
            logger.debug("Cached %s", resource_id)
            return entry

    def remove_resource_id(self, resource_id: StorageResourceId) -> None:
        if resource_id.is_root:
            raise ValueError("Cannot remove the root from the cache")
        with self._lock:
            if resource_id.is_bucket:
                self._buckets.pop(resource_id.bucket_name, None)
                self._objects.pop(resource_id.bucket_name, None)
                return
            objects = self._objects.get(resource_id.bucket_name)
            if objects is not None:
                objects.pop(resource_id.object_name, None)

    def get_cache_entry(self, resource_id: StorageResourceId) -> Optional[CacheEntry]:
        if resource_id.is_root:
            return None
        now = self._clock()
        with self._lock:
            if resource_id.is_bucket:
                entry = self._buckets.get(resource_id.bucket_name)
            else:
                entry = self._objects.get(resource_id.bucket_name, {}).get(resource_id.object_name)
            if entry is None or self._expired(entry, now):
                return None
            return entry

    def get_bucket_list(self) -> List[CacheEntry]:
        now = self._clock()
        with self._lock:
            self._evict_expired(now)
            return list(self._buckets.values())

    def get_object_list(
        self, bucket_name: str, prefix: Optional[str], delimiter: Optional[str]
    ) -> List[CacheEntry]:
        now = self._clock()
        with self._lock:
            self._evict_expired(now)
            matched: Dict[str, CacheEntry] = {}
            for object_name, entry in self._objects.get(bucket_name, {}).items():
                match = match_list_prefix(prefix, delimiter, object_name)
                if match is None or match in matched or is_directory_marker(match, prefix):
                    continue
                if match == object_name:
                    matched[match] = entry
                else:
                    # Grouped under a directory prefix: report the prefix, not the object.
                    matched[match] = CacheEntry(StorageResourceId(bucket_name, match), entry.creation_time)
            return list(matched.values())

    def _evict_expired(self, now: float) -> None:
        for bucket_name, entry in list(self._buckets.items()):
            if self._expired(entry, now) and not self._objects.get(bucket_name):
                del self._buckets[bucket_name]
        for objects in self._objects.values():
            for object_name, entry in list(objects.items()):
                if self._expired(entry, now):
                    del objects[object_name]

    def size(self) -> int:
        with self._lock:
            return len(self._buckets) + sum(len(objects) for objects in self._objects.values())

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()
            self._objects.clear()
