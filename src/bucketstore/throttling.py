"""
ThrottledStorage - rate limits selected operations of an inner StorageClient
"""

import asyncio
import logging
import threading
import time
from enum import Enum, auto
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence

from .channels import ObjectReadChannel, ObjectWriteChannel
from .models import CreateObjectOptions, ItemInfo, StorageResourceId, UpdatableItemInfo
from .storage import StorageClient

logger = logging.getLogger(__name__)


class StorageOperation(Enum):
    """Operation kinds that can be rate limited."""
    CREATE_OBJECT = auto()
    CREATE_EMPTY_OBJECT = auto()
    OPEN_OBJECT = auto()
    CREATE_BUCKET = auto()
    DELETE_BUCKETS = auto()
    DELETE_OBJECTS = auto()
    COPY_OBJECT = auto()
    LIST_BUCKETS = auto()
    LIST_OBJECTS = auto()
    GET_ITEMS = auto()
    UPDATE_ITEMS = auto()


class RateLimiter:
    """
    Token bucket rate limiter shared by any number of threads and event loops.

    Permits refill continuously at permits_per_second up to capacity. acquire()
    reserves its permits immediately, letting the balance go negative, and then
    sleeps until the reservation is covered, so waiters are served in arrival
    order. The lock is a threading.Lock held only for the token arithmetic,
    never across an await.
    """

    def __init__(
        self,
        permits_per_second: float,
        capacity: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            permits_per_second: Refill rate
            capacity: Maximum burst, defaults to one second worth of permits
        """
        if permits_per_second <= 0:
            raise ValueError(f"permits_per_second must be > 0, got {permits_per_second}")
        self._rate = permits_per_second
        self._capacity = capacity if capacity is not None else max(1.0, permits_per_second)
        if self._capacity <= 0:
            raise ValueError(f"capacity must be > 0, got {self._capacity}")
        self._clock = clock
        self._sleep = sleep
        self._tokens = self._capacity
        self._last_update = clock()
        self._lock = threading.Lock()

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def available(self) -> float:
        with self._lock:
            self._refill()
            return max(0.0, self._tokens)

    def try_acquire(self, permits: float = 1.0) -> bool:
        """Take permits without waiting; False if not enough are available."""
        with self._lock:
            self._refill()
            if self._tokens >= permits:
                self._tokens -= permits
                return True
            return False

    async def acquire(self, permits: float = 1.0) -> float:
        """Wait until permits are available and take them. Returns seconds waited."""
        if permits > self._capacity:
            raise ValueError(f"Cannot acquire {permits} permits, capacity is {self._capacity}")
        wait = self._reserve(permits)
        if wait > 0:
            logger.debug("Throttled for %.3fs", wait)
            await self._sleep(wait)
        return wait

    def _reserve(self, permits: float) -> float:
        """Take permits now, possibly on credit; returns seconds until they are covered."""
        with self._lock:
            self._refill()
            self._tokens -= permits
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self._rate

    def _refill(self) -> None:
        # Caller holds self._lock.
        now = self._clock()
        elapsed = now - self._last_update
        self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)
        self._last_update = now


class ThrottledStorage(StorageClient):
    """
    Wraps a StorageClient, taking a permit from a shared RateLimiter before each
    operation whose kind is in operations. Batched calls take one permit per item.

    Example:
        limiter = RateLimiter(permits_per_second=1)
        storage = ThrottledStorage(limiter, client, {StorageOperation.CREATE_BUCKET, StorageOperation.DELETE_BUCKETS})
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        inner: StorageClient,
        operations: Iterable[StorageOperation],
    ):
        if rate_limiter is None:
            raise ValueError("rate_limiter must not be None")
        if inner is None:
            raise ValueError("inner must not be None")
        self._rate_limiter = rate_limiter
        self._inner = inner
        self._operations = frozenset(operations)

    async def _throttle(self, operation: StorageOperation, count: int = 1) -> None:
        if operation not in self._operations:
            return
        for _ in range(count):
            await self._rate_limiter.acquire()

    async def create(
        self, resource_id: StorageResourceId, options: Optional[CreateObjectOptions] = None
    ) -> ObjectWriteChannel:
        await self._throttle(StorageOperation.CREATE_OBJECT)
        return await self._inner.create(resource_id, options)

    async def create_empty_object(
        self, resource_id: StorageResourceId, options: Optional[CreateObjectOptions] = None
    ) -> None:
        await self._throttle(StorageOperation.CREATE_EMPTY_OBJECT)
        await self._inner.create_empty_object(resource_id, options)

    async def create_empty_objects(
        self, resource_ids: Sequence[StorageResourceId], options: Optional[CreateObjectOptions] = None
    ) -> None:
        await self._throttle(StorageOperation.CREATE_EMPTY_OBJECT, len(resource_ids))
        await self._inner.create_empty_objects(resource_ids, options)

    async def open(self, resource_id: StorageResourceId) -> ObjectReadChannel:
        await self._throttle(StorageOperation.OPEN_OBJECT)
        return await self._inner.open(resource_id)

    async def create_bucket(self, bucket_name: str) -> None:
        await self._throttle(StorageOperation.CREATE_BUCKET)
        await self._inner.create_bucket(bucket_name)

    async def delete_buckets(self, bucket_names: Sequence[str]) -> None:
        await self._throttle(StorageOperation.DELETE_BUCKETS, len(bucket_names))
        await self._inner.delete_buckets(bucket_names)

    async def delete_objects(self, resource_ids: Sequence[StorageResourceId]) -> None:
        await self._throttle(StorageOperation.DELETE_OBJECTS, len(resource_ids))
        await self._inner.delete_objects(resource_ids)

    async def copy(
        self,
        src_bucket_name: str,
        src_object_names: Sequence[str],
        dst_bucket_name: str,
        dst_object_names: Sequence[str],
    ) -> None:
        await self._throttle(StorageOperation.COPY_OBJECT, len(src_object_names))
        await self._inner.copy(src_bucket_name, src_object_names, dst_bucket_name, dst_object_names)

    async def list_bucket_names(self) -> List[str]:
        await self._throttle(StorageOperation.LIST_BUCKETS)
        return await self._inner.list_bucket_names()

    async def list_bucket_info(self) -> List[ItemInfo]:
        await self._throttle(StorageOperation.LIST_BUCKETS)
        return await self._inner.list_bucket_info()

    async def list_object_names(
        self, bucket_name: str, prefix: Optional[str] = None, delimiter: Optional[str] = None
    ) -> List[str]:
        await self._throttle(StorageOperation.LIST_OBJECTS)
        return await self._inner.list_object_names(bucket_name, prefix, delimiter)

    async def list_object_info(
        self, bucket_name: str, prefix: Optional[str] = None, delimiter: Optional[str] = None
    ) -> List[ItemInfo]:
        await self._throttle(StorageOperation.LIST_OBJECTS)
        return await self._inner.list_object_info(bucket_name, prefix, delimiter)

    async def get_item_info(self, resource_id: StorageResourceId) -> ItemInfo:
        await self._throttle(StorageOperation.GET_ITEMS)
        return await self._inner.get_item_info(resource_id)

    async def get_item_infos(self, resource_ids: Sequence[StorageResourceId]) -> List[ItemInfo]:
        await self._throttle(StorageOperation.GET_ITEMS, len(resource_ids))
        return await self._inner.get_item_infos(resource_ids)

    async def update_items(self, item_infos: Sequence[UpdatableItemInfo]) -> List[ItemInfo]:
        await self._throttle(StorageOperation.UPDATE_ITEMS, len(item_infos))
        return await self._inner.update_items(item_infos)

    async def wait_for_bucket_empty(self, bucket_name: str) -> None:
        await self._inner.wait_for_bucket_empty(bucket_name)

    async def close(self) -> None:
        await self._inner.close()
