"""
InMemoryStorage - StorageClient backed by local dictionaries
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from .channels import ObjectReadChannel, ObjectWriteChannel
from .error import (
    BucketStoreException,
    InvalidArgumentException,
    ItemAlreadyExistsException,
    ItemNotFoundException,
    PreconditionFailedException,
    create_composite_exception,
)
from .models import (
    DEFAULT_CREATE_OPTIONS,
    ROOT_INFO,
    CreateObjectOptions,
    ItemInfo,
    StorageResourceId,
    UpdatableItemInfo,
)
from .options import PATH_DELIMITER, StorageOptions
from .storage import (
    StorageClient,
    check_storage_object,
    is_directory_marker,
    match_list_prefix,
    validate_copy_arguments,
)

logger = logging.getLogger(__name__)

BUCKET_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_.-]*[a-z0-9]$")
MAX_BUCKET_NAME_LENGTH = 63
MAX_OBJECT_NAME_LENGTH = 1024

DEFAULT_LOCATION = "US"
DEFAULT_STORAGE_CLASS = "STANDARD"


def validate_bucket_name(bucket_name: Optional[str]) -> None:
    if not bucket_name or len(bucket_name) <= 3:
        raise InvalidArgumentException(f"Invalid bucket name '{bucket_name}': too short")
    if len(bucket_name) > MAX_BUCKET_NAME_LENGTH:
        raise InvalidArgumentException(f"Invalid bucket name '{bucket_name}': too long")
    if not BUCKET_NAME_PATTERN.match(bucket_name):
        raise InvalidArgumentException(f"Invalid bucket name '{bucket_name}'")


def validate_object_name(object_name: Optional[str]) -> None:
    if not object_name:
        raise InvalidArgumentException("object_name must not be None or empty")
    if len(object_name) > MAX_OBJECT_NAME_LENGTH:
        raise InvalidArgumentException(f"Invalid object name '{object_name[:64]}...': too long")
    if "\n" in object_name or "\r" in object_name:
        raise InvalidArgumentException(f"Invalid object name {object_name!r}: contains CR or LF")


@dataclass
class _ObjectEntry:
    data: bytes
    creation_time: int
    content_generation: int
    meta_generation: int = 1
    metadata: Dict[str, Optional[bytes]] = field(default_factory=dict)

    def info(self, resource_id: StorageResourceId) -> ItemInfo:
        return ItemInfo(
            resource_id=resource_id,
            creation_time=self.creation_time,
            size=len(self.data),
            metadata=dict(self.metadata),
            content_generation=self.content_generation,
            meta_generation=self.meta_generation,
        )


@dataclass
class _BucketEntry:
    name: str
    creation_time: int
    location: str = DEFAULT_LOCATION
    storage_class: str = DEFAULT_STORAGE_CLASS
    objects: Dict[str, _ObjectEntry] = field(default_factory=dict)

    def info(self) -> ItemInfo:
        return ItemInfo(
            resource_id=StorageResourceId(self.name),
            creation_time=self.creation_time,
            size=0,
            location=self.location,
            storage_class=self.storage_class,
        )


class InMemoryStorage(StorageClient):
    """
    Local StorageClient holding every bucket and object in memory.

    Every public call runs under one lock, so calls never interleave. Used as
    the reference for contract semantics and as the inner client in tests.

    Example:
        async with InMemoryStorage() as storage:
            await storage.create_bucket("photos")
            await storage.create_empty_object(StorageResourceId("photos", "dir/"))
    """

    def __init__(
        self,
        options: Optional[StorageOptions] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._options = options or StorageOptions()
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._buckets: Dict[str, _BucketEntry] = {}
        self._generation = 0

    def _now_millis(self) -> int:
        return int(self._clock() * 1000)

    def _next_generation(self) -> int:
        self._generation += 1
        return self._generation

    def _bucket(self, bucket_name: str) -> Optional[_BucketEntry]:
        return self._buckets.get(bucket_name)

    # Unlocked helpers; callers hold self._lock.

    def _item_info(self, resource_id: StorageResourceId) -> ItemInfo:
        if resource_id.is_root:
            return ROOT_INFO
        bucket = self._bucket(resource_id.bucket_name)
        if resource_id.is_bucket:
            return bucket.info() if bucket is not None else ItemInfo.not_found(resource_id)
        validate_object_name(resource_id.object_name)
        entry = bucket.objects.get(resource_id.object_name) if bucket is not None else None
        return entry.info(resource_id) if entry is not None else ItemInfo.not_found(resource_id)

    def _put_object(
        self,
        resource_id: StorageResourceId,
        data: bytes,
        metadata: Mapping[str, Optional[bytes]],
    ) -> _ObjectEntry:
        bucket = self._bucket(resource_id.bucket_name)
        if bucket is None:
            raise ItemNotFoundException(
                resource_id.bucket_name,
                message=f"Tried to insert object '{resource_id.object_name}' "
                        f"into nonexistent bucket '{resource_id.bucket_name}'",
            )
        entry = _ObjectEntry(
            data=data,
            creation_time=self._now_millis(),
            content_generation=self._next_generation(),
            metadata={k: v for k, v in metadata.items() if v is not None},
        )
        bucket.objects[resource_id.object_name] = entry
        return entry

    def _start_create(self, resource_id: StorageResourceId, options: CreateObjectOptions) -> _ObjectEntry:
        check_storage_object(resource_id)
        validate_object_name(resource_id.object_name)
        if self._bucket(resource_id.bucket_name) is None:
            raise ItemNotFoundException(
                resource_id.bucket_name,
                message=f"Tried to insert object '{resource_id.object_name}' "
                        f"into nonexistent bucket '{resource_id.bucket_name}'",
            )
        if not options.overwrite_existing and self._item_info(resource_id).exists():
            raise ItemAlreadyExistsException(
                resource_id.bucket_name, resource_id.object_name, f"Object {resource_id} already exists"
            )
        return self._put_object(resource_id, b"", options.metadata)

    def _list_names(self, bucket_name: str, prefix: Optional[str], delimiter: Optional[str]) -> List[str]:
        bucket = self._bucket(bucket_name)
        if bucket is None:
            logger.debug("list_object_names(%s, %s, %s): not found", bucket_name, prefix, delimiter)
            return []
        names: Dict[str, None] = {}
        for object_name in sorted(bucket.objects):
            match = match_list_prefix(prefix, delimiter, object_name)
            if match is None or is_directory_marker(match, prefix):
                continue
            names[match] = None
        return list(names)

    # Object creation

    async def create(
        self, resource_id: StorageResourceId, options: Optional[CreateObjectOptions] = None
    ) -> ObjectWriteChannel:
        logger.debug("create(%s)", resource_id)
        options = options or DEFAULT_CREATE_OPTIONS
        async with self._lock:
            marker = self._start_create(resource_id, options)
        marker_generation = marker.content_generation

        async def commit(data: bytes) -> None:
            async with self._lock:
                bucket = self._bucket(resource_id.bucket_name)
                current = bucket.objects.get(resource_id.object_name) if bucket is not None else None
                if current is None or current.content_generation != marker_generation:
                    raise PreconditionFailedException(
                        f"Object {resource_id} changed since generation {marker_generation}"
                    )
                self._put_object(resource_id, data, options.metadata)

        return ObjectWriteChannel(resource_id, commit)

    async def create_empty_object(
        self, resource_id: StorageResourceId, options: Optional[CreateObjectOptions] = None
    ) -> None:
        logger.debug("create_empty_object(%s)", resource_id)
        async with self._lock:
            self._start_create(resource_id, options or DEFAULT_CREATE_OPTIONS)

    async def create_empty_objects(
        self, resource_ids: Sequence[StorageResourceId], options: Optional[CreateObjectOptions] = None
    ) -> None:
        logger.debug("create_empty_objects(%s)", resource_ids)
        options = options or DEFAULT_CREATE_OPTIONS
        inner_exceptions: List[Exception] = []
        async with self._lock:
            for resource_id in resource_ids:
                check_storage_object(resource_id)
            for resource_id in resource_ids:
                try:
                    self._start_create(resource_id, options)
                except BucketStoreException as ex:
                    inner_exceptions.append(ex)
        if inner_exceptions:
            raise create_composite_exception(inner_exceptions)

    async def open(self, resource_id: StorageResourceId) -> ObjectReadChannel:
        logger.debug("open(%s)", resource_id)
        check_storage_object(resource_id)
        async with self._lock:
            if not self._item_info(resource_id).exists():
                raise ItemNotFoundException(resource_id.bucket_name, resource_id.object_name)
            data = self._buckets[resource_id.bucket_name].objects[resource_id.object_name].data

        async def fetch(start: int, end: int) -> bytes:
            return data[start:end + 1]

        return ObjectReadChannel(resource_id, len(data), fetch)

    # Buckets

    async def create_bucket(self, bucket_name: str) -> None:
        logger.debug("create_bucket(%s)", bucket_name)
        validate_bucket_name(bucket_name)
        async with self._lock:
            if bucket_name in self._buckets:
                raise ItemAlreadyExistsException(bucket_name, message=f"Bucket already exists: {bucket_name}")
            self._buckets[bucket_name] = _BucketEntry(bucket_name, self._now_millis())

    async def delete_buckets(self, bucket_names: Sequence[str]) -> None:
        logger.debug("delete_buckets(%s)", bucket_names)
        for bucket_name in bucket_names:
            validate_bucket_name(bucket_name)
        inner_exceptions: List[Exception] = []
        async with self._lock:
            for bucket_name in bucket_names:
                bucket = self._bucket(bucket_name)
                if bucket is None:
                    inner_exceptions.append(ItemNotFoundException(bucket_name))
                elif bucket.objects:
                    inner_exceptions.append(BucketStoreException(
                        f"Error deleting: bucket: {bucket_name}: bucket is not empty", 409, "conflict"
                    ))
                else:
                    del self._buckets[bucket_name]
        if inner_exceptions:
            raise create_composite_exception(inner_exceptions)

    async def delete_objects(self, resource_ids: Sequence[StorageResourceId]) -> None:
        logger.debug("delete_objects(%s)", resource_ids)
        for resource_id in resource_ids:
            check_storage_object(resource_id)
            validate_object_name(resource_id.object_name)
        async with self._lock:
            for resource_id in resource_ids:
                bucket = self._bucket(resource_id.bucket_name)
                if bucket is not None:
                    bucket.objects.pop(resource_id.object_name, None)

    async def copy(
        self,
        src_bucket_name: str,
        src_object_names: Sequence[str],
        dst_bucket_name: str,
        dst_object_names: Sequence[str],
    ) -> None:
        logger.debug(
            "copy(%s, %s, %s, %s)", src_bucket_name, src_object_names, dst_bucket_name, dst_object_names
        )

        async def item_info(resource_id: StorageResourceId) -> ItemInfo:
            return self._item_info(resource_id)

        inner_exceptions: List[Exception] = []
        async with self._lock:
            await validate_copy_arguments(
                src_bucket_name, src_object_names, dst_bucket_name, dst_object_names, item_info
            )
            src_bucket = self._bucket(src_bucket_name)
            dst_bucket = self._bucket(dst_bucket_name)
            for src_name, dst_name in zip(src_object_names, dst_object_names):
                source = src_bucket.objects.get(src_name) if src_bucket is not None else None
                if source is None:
                    inner_exceptions.append(ItemNotFoundException(src_bucket_name, src_name))
                    continue
                if dst_bucket is None:
                    inner_exceptions.append(ItemNotFoundException(dst_bucket_name))
                    continue
                # Shallow: the copy shares the immutable source bytes.
                dst_bucket.objects[dst_name] = replace(
                    source,
                    creation_time=self._now_millis(),
                    content_generation=self._next_generation(),
                    meta_generation=1,
                    metadata=dict(source.metadata),
                )
        if inner_exceptions:
            raise create_composite_exception(inner_exceptions)

    # Listing

    async def list_bucket_names(self) -> List[str]:
        async with self._lock:
            return list(self._buckets)

    async def list_bucket_info(self) -> List[ItemInfo]:
        async with self._lock:
            return [bucket.info() for bucket in self._buckets.values()]

    async def list_object_names(
        self, bucket_name: str, prefix: Optional[str] = None, delimiter: Optional[str] = None
    ) -> List[str]:
        logger.debug("list_object_names(%s, %s, %s)", bucket_name, prefix, delimiter)
        async with self._lock:
            return self._list_names(bucket_name, prefix, delimiter)

    async def list_object_info(
        self, bucket_name: str, prefix: Optional[str] = None, delimiter: Optional[str] = None
    ) -> List[ItemInfo]:
        logger.debug("list_object_info(%s, %s, %s)", bucket_name, prefix, delimiter)
        async with self._lock:
            infos: List[ItemInfo] = []
            missing: List[StorageResourceId] = []
            for name in self._list_names(bucket_name, prefix, delimiter):
                info = self._item_info(StorageResourceId(bucket_name, name))
                if info.exists():
                    infos.append(info)
                elif self._options.auto_repair_implicit_directories:
                    missing.append(info.resource_id)
                else:
                    logger.error("Giving up on retrieving missing directory '%s'.", info.resource_id)

            if missing:
                logger.warning("Repairing batch of %d missing directories.", len(missing))
                repaired = 0
                for resource_id in missing:
                    try:
                        infos.append(self._put_object(resource_id, b"", {}).info(resource_id))
                        repaired += 1
                    except BucketStoreException as ex:
                        logger.error("Failed to repair missing directory %s: %s", resource_id, ex)
                logger.warning("Successfully repaired %d/%d implicit directories.", repaired, len(missing))
                if repaired < len(missing):
                    logger.warning("%d implicit directories left unrepaired.", len(missing) - repaired)
            return infos

    # Item info

    async def get_item_info(self, resource_id: StorageResourceId) -> ItemInfo:
        async with self._lock:
            return self._item_info(resource_id)

    async def get_item_infos(self, resource_ids: Sequence[StorageResourceId]) -> List[ItemInfo]:
        async with self._lock:
            return [self._item_info(resource_id) for resource_id in resource_ids]

    async def update_items(self, item_infos: Sequence[UpdatableItemInfo]) -> List[ItemInfo]:
        logger.debug("update_items(%s)", item_infos)
        for item_info in item_infos:
            if not item_info.resource_id.is_storage_object:
                raise ValueError("Buckets and the root are not supported for update_items")
            validate_object_name(item_info.resource_id.object_name)

        updated: List[ItemInfo] = []
        async with self._lock:
            for item_info in item_infos:
                resource_id = item_info.resource_id
                bucket = self._bucket(resource_id.bucket_name)
                entry = bucket.objects.get(resource_id.object_name) if bucket is not None else None
                if entry is None:
                    updated.append(ItemInfo.not_found(resource_id))
                    continue
                for key, value in item_info.metadata.items():
                    if value is None:
                        entry.metadata.pop(key, None)
                    else:
                        entry.metadata[key] = value
                entry.meta_generation += 1
                updated.append(entry.info(resource_id))
        return updated

    async def wait_for_bucket_empty(self, bucket_name: str) -> None:
        for _ in range(self._options.bucket_empty_max_retries):
            if not await self.list_object_names(bucket_name, None, PATH_DELIMITER):
                return
            await self._sleep(self._options.bucket_empty_wait_time)
        raise BucketStoreException(f"Internal error: bucket not empty: {bucket_name}")

    async def close(self) -> None:
        pass
