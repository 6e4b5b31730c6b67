"""
BucketStoreClient - JSON API client for a bucket/object store
"""

import asyncio
import logging
import time
from datetime import datetime
from enum import Enum, auto
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import httpx

from ._http import JsonApiTransport, TokenProvider
from ._metadata import decode_metadata
from .batch import BatchHelper
from .channels import ObjectReadChannel, ObjectWriteChannel
from .error import (
    BucketStoreException,
    ItemAlreadyExistsException,
    ItemNotFoundException,
    RetriesExhaustedException,
    create_composite_exception,
    is_not_found,
    is_precondition_failed,
    is_rate_limited,
    readable_name,
    wrap_exception,
)
from .models import (
    DEFAULT_CREATE_OPTIONS,
    ROOT_INFO,
    CreateObjectOptions,
    ItemInfo,
    ObjectWriteConditions,
    StorageResourceId,
    UpdatableItemInfo,
)
from .options import PATH_DELIMITER, StorageOptions
from .retry import STOP, execute_with_retry
from .storage import (
    StorageClient,
    check_bucket_name,
    check_storage_object,
    is_directory_marker,
    validate_copy_arguments,
)

# Maximum number of attempts for a delete whose generation keeps changing underneath it.
MAXIMUM_PRECONDITION_FAILURES_IN_DELETE = 4


class _CreateState(Enum):
    PROBING = auto()
    CONDITIONED_INSERT = auto()
    RACE_LOST = auto()
    COMMITTED = auto()
    EXHAUSTED = auto()


def _to_millis(timestamp: Optional[str]) -> int:
    if not timestamp:
        return 0
    return int(datetime.fromisoformat(timestamp).timestamp() * 1000)


def item_info_for_bucket(resource_id: StorageResourceId, bucket: Dict[str, Any]) -> ItemInfo:
    """Convert a bucket resource into an ItemInfo; buckets have size 0."""
    if not resource_id.is_bucket:
        raise ValueError(f"resource_id must be a Bucket. resource_id: {resource_id}")
    if resource_id.bucket_name != bucket.get("name"):
        raise ValueError(
            f"resource_id.bucket_name must equal bucket name: '{resource_id.bucket_name}' vs '{bucket.get('name')}'"
        )
    return ItemInfo(
        resource_id=resource_id,
        creation_time=_to_millis(bucket.get("timeCreated")),
        size=0,
        location=bucket.get("location"),
        storage_class=bucket.get("storageClass"),
    )


def item_info_for_object(resource_id: StorageResourceId, obj: Dict[str, Any]) -> ItemInfo:
    """Convert an object resource into an ItemInfo; location and class stay None."""
    if not resource_id.is_storage_object:
        raise ValueError(f"resource_id must be a StorageObject. resource_id: {resource_id}")
    if resource_id.bucket_name != obj.get("bucket") or resource_id.object_name != obj.get("name"):
        raise ValueError(
            f"resource_id must match object: '{resource_id}' vs "
            f"'{readable_name(obj.get('bucket'), obj.get('name'))}'"
        )
    return ItemInfo(
        resource_id=resource_id,
        creation_time=_to_millis(obj.get("updated")),
        size=int(obj.get("size", 0)),
        metadata=decode_metadata(obj.get("metadata")),
        content_generation=int(obj.get("generation", 0)),
        meta_generation=int(obj.get("metageneration", 0)),
    )


class BucketStoreClient(StorageClient):
    """
    Storage client talking to the remote JSON API.

    Adds conditioned writes, request batching and rate-limit retries on top of
    the raw API calls.

    Example:
        async with BucketStoreClient(StorageOptions(project_id="my-project"), access_token=token) as client:
            channel = await client.create(StorageResourceId("photos", "archive/image.jpg"))
            await channel.write(data)
            await channel.close()
    """

    def __init__(
        self,
        options: Optional[StorageOptions] = None,
        access_token: Optional[str] = None,
        token_provider: Optional[TokenProvider] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize BucketStoreClient.

        Args:
            options: Client configuration, defaults to StorageOptions()
            access_token: Static OAuth2 bearer token
            token_provider: Callable (sync or async) returning a fresh bearer token
            transport: httpx transport override, e.g. httpx.MockTransport in tests
            sleep: Coroutine used for every backoff sleep
            clock: Monotonic clock used to bound backoff
        """
        self._options = options or StorageOptions()
        self._options.validate()
        self._logger = logging.getLogger(__name__)
        self._logger.debug("BucketStoreClient(%s)", self._options.app_name)

        self._sleep = sleep
        self._clock = clock
        self._http = JsonApiTransport(
            endpoint=self._options.endpoint,
            access_token=access_token,
            token_provider=token_provider,
            app_name=self._options.app_name,
            timeout=self._options.request_timeout,
            max_retries=self._options.max_retries,
            transport=transport,
            sleep=sleep,
        )
        self._worker_slots = asyncio.Semaphore(self._options.max_concurrent_requests)
        self._closed = False

    @property
    def options(self) -> StorageOptions:
        return self._options

    def _new_batch(self) -> BatchHelper:
        return BatchHelper(
            self._options.max_requests_per_batch,
            max_concurrency=self._options.max_concurrent_requests,
        )

    # Object creation

    async def create(
        self, resource_id: StorageResourceId, options: Optional[CreateObjectOptions] = None
    ) -> ObjectWriteChannel:
        """
        Start a conditioned write of an object.

        Mutations are always conditioned on a generation so that a retried
        request that lands late cannot overwrite a newer write. A zero-byte
        marker is inserted first, conditioned on the generation observed by a
        metadata probe; the final write is then conditioned on the marker's
        generation. Losing the marker race re-probes under backoff.
        """
        self._logger.debug("create(%s)", resource_id)
        check_storage_object(resource_id)
        options = options or DEFAULT_CREATE_OPTIONS
        bucket_name = resource_id.bucket_name
        object_name = resource_id.object_name

        backoff = self._options.backoff.new_backoff(self._clock)
        state = _CreateState.PROBING
        conditions = None
        marker_generation = None

        while state is not _CreateState.COMMITTED:
            if state is _CreateState.PROBING:
                info = await self.get_item_info(resource_id)
                if not info.exists():
                    conditions = ObjectWriteConditions(content_generation_match=0)
                elif options.overwrite_existing:
                    if info.content_generation == 0:
                        raise BucketStoreException(
                            f"Generation should not be 0 for an existing item {resource_id}"
                        )
                    conditions = ObjectWriteConditions(content_generation_match=info.content_generation)
                else:
                    raise ItemAlreadyExistsException(
                        bucket_name, object_name, f"Object {resource_id} already exists"
                    )
                state = _CreateState.CONDITIONED_INSERT

            elif state is _CreateState.CONDITIONED_INSERT:
                marker_generation = await self._insert_marker(resource_id, options, conditions)
                state = _CreateState.RACE_LOST if marker_generation is None else _CreateState.COMMITTED

            elif state is _CreateState.RACE_LOST:
                delay = backoff.next_backoff()
                if delay is STOP:
                    state = _CreateState.EXHAUSTED
                else:
                    await self._sleep(delay)
                    state = _CreateState.PROBING

            elif state is _CreateState.EXHAUSTED:
                raise RetriesExhaustedException(
                    f"Retries exhausted while attempting to create marker file for {resource_id}"
                )

        write_conditions = ObjectWriteConditions(content_generation_match=marker_generation)

        async def commit(data: bytes) -> None:
            try:
                await self._http.insert_object(
                    bucket_name, object_name, data, options.metadata, write_conditions
                )
            except BucketStoreException as ex:
                raise wrap_exception(
                    ex, f"Error writing with generation {marker_generation}", bucket_name, object_name
                ) from ex

        return ObjectWriteChannel(resource_id, commit)

    async def _insert_marker(
        self,
        resource_id: StorageResourceId,
        options: CreateObjectOptions,
        conditions: ObjectWriteConditions,
    ) -> Optional[int]:
        """Insert the zero-byte marker; None means a concurrent writer won the race."""
        try:
            result = await self._http.insert_object(
                resource_id.bucket_name, resource_id.object_name, b"", options.metadata, conditions
            )
        except BucketStoreException as ex:
            if not is_precondition_failed(ex):
                raise
            self._logger.info(
                "Retrying marker file creation. Retrying according to backoff policy, %s - %s",
                resource_id,
                ex,
            )
            return None
        return int(result["generation"])

    async def create_empty_object(
        self, resource_id: StorageResourceId, options: Optional[CreateObjectOptions] = None
    ) -> None:
        self._logger.debug("create_empty_object(%s)", resource_id)
        check_storage_object(resource_id)
        options = options or DEFAULT_CREATE_OPTIONS
        conditions = ObjectWriteConditions()
        if not options.overwrite_existing:
            conditions = ObjectWriteConditions(content_generation_match=0)
        try:
            await self._http.insert_object(
                resource_id.bucket_name, resource_id.object_name, b"", options.metadata, conditions
            )
        except BucketStoreException as ex:
            if is_precondition_failed(ex) and not options.overwrite_existing:
                raise ItemAlreadyExistsException(
                    resource_id.bucket_name, resource_id.object_name, f"Object {resource_id} already exists"
                ) from ex
            raise

    async def create_empty_objects(
        self, resource_ids: Sequence[StorageResourceId], options: Optional[CreateObjectOptions] = None
    ) -> None:
        self._logger.debug("create_empty_objects(%s)", resource_ids)
        for resource_id in resource_ids:
            check_storage_object(resource_id)

        inner_exceptions: List[Exception] = []

        async def insert(resource_id: StorageResourceId) -> None:
            async with self._worker_slots:
                try:
                    await self.create_empty_object(resource_id, options)
                    self._logger.debug("Successfully inserted %s", resource_id)
                except Exception as ex:
                    inner_exceptions.append(
                        _with_context(ex, "Error inserting", resource_id.bucket_name, resource_id.object_name)
                    )

        async with asyncio.TaskGroup() as group:
            for resource_id in resource_ids:
                group.create_task(insert(resource_id))

        if inner_exceptions:
            raise create_composite_exception(inner_exceptions)

    # Object reads

    async def open(self, resource_id: StorageResourceId) -> ObjectReadChannel:
        self._logger.debug("open(%s)", resource_id)
        check_storage_object(resource_id)

        # The media download does not report a missing object until bytes are
        # requested, so check existence with a metadata call first.
        info = await self.get_item_info(resource_id)
        if not info.exists():
            raise ItemNotFoundException(resource_id.bucket_name, resource_id.object_name)

        async def fetch(start: int, end: int) -> bytes:
            return await self._http.read_object(
                resource_id.bucket_name, resource_id.object_name, start, end
            )

        return ObjectReadChannel(resource_id, info.size, fetch)

    # Buckets

    async def create_bucket(self, bucket_name: str) -> None:
        self._logger.debug("create_bucket(%s)", bucket_name)
        check_bucket_name(bucket_name)
        await execute_with_retry(
            lambda: self._http.insert_bucket(self._options.project_id, bucket_name),
            is_rate_limited,
            self._options.backoff,
            self._sleep,
            description=f"create of bucket {bucket_name}",
        )

    async def delete_buckets(self, bucket_names: Sequence[str]) -> None:
        self._logger.debug("delete_buckets(%s)", bucket_names)
        for bucket_name in bucket_names:
            check_bucket_name(bucket_name)

        inner_exceptions: List[Exception] = []
        for bucket_name in bucket_names:
            try:
                await execute_with_retry(
                    lambda name=bucket_name: self._http.delete_bucket(name),
                    is_rate_limited,
                    self._options.backoff,
                    self._sleep,
                    description=f"delete of bucket {bucket_name}",
                )
            except Exception as ex:
                if is_not_found(ex):
                    self._logger.debug("delete(%s) : not found", bucket_name)
                    inner_exceptions.append(ItemNotFoundException(bucket_name))
                else:
                    inner_exceptions.append(wrap_exception(ex, "Error deleting", bucket_name))

        if inner_exceptions:
            raise create_composite_exception(inner_exceptions)

    # Object deletion

    async def delete_objects(self, resource_ids: Sequence[StorageResourceId]) -> None:
        self._logger.debug("delete_objects(%s)", resource_ids)
        for resource_id in resource_ids:
            check_storage_object(resource_id)

        inner_exceptions: List[Exception] = []
        batch = self._new_batch()
        for resource_id in resource_ids:
            await self._queue_single_object_delete(resource_id, inner_exceptions, batch, 1)
        await batch.flush()

        if inner_exceptions:
            raise create_composite_exception(inner_exceptions)

    async def _queue_single_object_delete(
        self,
        resource_id: StorageResourceId,
        inner_exceptions: List[Exception],
        batch: BatchHelper,
        attempt: int,
    ) -> None:
        bucket_name = resource_id.bucket_name
        object_name = resource_id.object_name

        # Fetch the current generation first so only that version is deleted.
        async def on_get_success(obj: Dict[str, Any]) -> None:
            generation = int(obj["generation"])
            conditions = ObjectWriteConditions(content_generation_match=generation)

            async def on_delete_success(_: Any) -> None:
                self._logger.debug("Successfully deleted %s at generation %s", resource_id, generation)

            async def on_delete_failure(ex: Exception) -> None:
                if is_not_found(ex):
                    # Most likely an earlier attempt of this delete already went through.
                    self._logger.debug("delete_objects(%s) : delete not found", resource_id)
                elif is_precondition_failed(ex) and attempt < MAXIMUM_PRECONDITION_FAILURES_IN_DELETE:
                    self._logger.info(
                        "Precondition not met while deleting %s at generation %s. Attempt %s. Retrying.",
                        resource_id,
                        generation,
                        attempt,
                    )
                    await self._queue_single_object_delete(resource_id, inner_exceptions, batch, attempt + 1)
                else:
                    inner_exceptions.append(wrap_exception(
                        ex, f"Error deleting, stage 2 with generation {generation}", bucket_name, object_name
                    ))

            await batch.queue(
                lambda: self._http.delete_object(bucket_name, object_name, conditions),
                on_delete_success,
                on_delete_failure,
            )

        async def on_get_failure(ex: Exception) -> None:
            if is_not_found(ex):
                self._logger.debug("delete_objects(%s) : get not found", resource_id)
            else:
                inner_exceptions.append(wrap_exception(ex, "Error deleting, stage 1", bucket_name, object_name))

        await batch.queue(
            lambda: self._http.get_object(bucket_name, object_name),
            on_get_success,
            on_get_failure,
        )

    # Copy

    async def copy(
        self,
        src_bucket_name: str,
        src_object_names: Sequence[str],
        dst_bucket_name: str,
        dst_object_names: Sequence[str],
    ) -> None:
        self._logger.debug(
            "copy(%s, %s, %s, %s)", src_bucket_name, src_object_names, dst_bucket_name, dst_object_names
        )
        await validate_copy_arguments(
            src_bucket_name, src_object_names, dst_bucket_name, dst_object_names, self.get_item_info
        )

        inner_exceptions: List[Exception] = []
        batch = self._new_batch()
        for src_name, dst_name in zip(src_object_names, dst_object_names):

            async def on_success(_: Any, src_name=src_name, dst_name=dst_name) -> None:
                self._logger.debug(
                    "Successfully copied %s to %s",
                    readable_name(src_bucket_name, src_name),
                    readable_name(dst_bucket_name, dst_name),
                )

            async def on_failure(ex: Exception, src_name=src_name) -> None:
                if is_not_found(ex):
                    self._logger.debug("copy(%s) : not found", readable_name(src_bucket_name, src_name))
                    inner_exceptions.append(ItemNotFoundException(src_bucket_name, src_name))
                else:
                    inner_exceptions.append(wrap_exception(ex, "Error copying", src_bucket_name, src_name))

            await batch.queue(
                lambda src_name=src_name, dst_name=dst_name: self._http.copy_object(
                    src_bucket_name, src_name, dst_bucket_name, dst_name
                ),
                on_success,
                on_failure,
            )
        await batch.flush()

        if inner_exceptions:
            raise create_composite_exception(inner_exceptions)

    # Listing

    async def _list_buckets_internal(self) -> List[Dict[str, Any]]:
        self._logger.debug("_list_buckets_internal()")
        all_buckets: List[Dict[str, Any]] = []
        page_token = None
        while True:
            if page_token is not None:
                self._logger.debug("_list_buckets_internal: next page %s", page_token)
            page = await self._http.list_buckets(
                self._options.project_id, self._options.max_list_items_per_call, page_token
            )
            buckets = page.get("items") or []
            self._logger.debug("listed %d items", len(buckets))
            all_buckets.extend(buckets)
            page_token = page.get("nextPageToken")
            if not page_token:
                return all_buckets

    async def list_bucket_names(self) -> List[str]:
        self._logger.debug("list_bucket_names()")
        return [bucket["name"] for bucket in await self._list_buckets_internal()]

    async def list_bucket_info(self) -> List[ItemInfo]:
        self._logger.debug("list_bucket_info()")
        return [
            item_info_for_bucket(StorageResourceId(bucket["name"]), bucket)
            for bucket in await self._list_buckets_internal()
        ]

    async def _list_objects_and_prefixes(
        self, bucket_name: str, prefix: Optional[str], delimiter: Optional[str]
    ) -> Tuple[List[Dict[str, Any]], List[str]]:
        """Page through a listing, returning (objects, prefixes)."""
        self._logger.debug("_list_objects_and_prefixes(%s, %s, %s)", bucket_name, prefix, delimiter)
        check_bucket_name(bucket_name)
        listed_objects: List[Dict[str, Any]] = []
        listed_prefixes: List[str] = []
        page_token = None
        while True:
            if page_token is not None:
                self._logger.debug("list_object_names: next page %s", page_token)
            try:
                page = await self._http.list_objects(
                    bucket_name, prefix, delimiter, self._options.max_list_items_per_call, page_token
                )
            except BucketStoreException as ex:
                if is_not_found(ex):
                    self._logger.debug("list_object_names(%s, %s, %s): not found", bucket_name, prefix, delimiter)
                    break
                raise wrap_exception(ex, "Error listing", bucket_name, prefix) from ex

            prefixes = page.get("prefixes") or []
            self._logger.debug("listed %d prefixes", len(prefixes))
            listed_prefixes.extend(prefixes)

            objects = page.get("items") or []
            self._logger.debug("listed %d objects", len(objects))
            listed_objects.extend(
                obj for obj in objects if not is_directory_marker(obj["name"], prefix)
            )

            page_token = page.get("nextPageToken")
            if not page_token:
                break
        return listed_objects, listed_prefixes

    async def list_object_names(
        self, bucket_name: str, prefix: Optional[str] = None, delimiter: Optional[str] = None
    ) -> List[str]:
        self._logger.debug("list_object_names(%s, %s, %s)", bucket_name, prefix, delimiter)
        listed_objects, listed_prefixes = await self._list_objects_and_prefixes(bucket_name, prefix, delimiter)
        return listed_prefixes + [obj["name"] for obj in listed_objects]

    async def list_object_info(
        self, bucket_name: str, prefix: Optional[str] = None, delimiter: Optional[str] = None
    ) -> List[ItemInfo]:
        self._logger.debug("list_object_info(%s, %s, %s)", bucket_name, prefix, delimiter)
        listed_objects, listed_prefixes = await self._list_objects_and_prefixes(bucket_name, prefix, delimiter)

        object_infos = [
            item_info_for_object(StorageResourceId(bucket_name, obj["name"]), obj)
            for obj in listed_objects
        ]
        if not listed_prefixes:
            return object_infos

        prefix_infos = await self.get_item_infos(
            [StorageResourceId(bucket_name, listed_prefix) for listed_prefix in listed_prefixes]
        )
        repair_list: List[StorageResourceId] = []
        for prefix_info in prefix_infos:
            if prefix_info.exists():
                object_infos.append(prefix_info)
                continue
            # A prefix without its own object is an implicit directory.
            error_base = (
                f"Error retrieving object for a retrieved prefix with resource_id '{prefix_info.resource_id}'. "
            )
            if self._options.auto_repair_implicit_directories:
                self._logger.debug("%sAttempting to repair missing directory.", error_base)
                repair_list.append(prefix_info.resource_id)
            else:
                self._logger.error("%sGiving up on retrieving missing directory.", error_base)

        if repair_list:
            object_infos.extend(await self._repair_implicit_directories(repair_list))
        return object_infos

    async def _repair_implicit_directories(self, repair_list: List[StorageResourceId]) -> List[ItemInfo]:
        """Best-effort creation of missing directory markers; failures are only logged."""
        self._logger.warning("Repairing batch of %d missing directories.", len(repair_list))
        try:
            if len(repair_list) == 1:
                await self.create_empty_object(repair_list[0])
            else:
                await self.create_empty_objects(repair_list)
        except Exception as ex:
            # Markers created concurrently by another lister still count as repaired below.
            self._logger.error("Failed to repair some missing directories: %s", ex)

        try:
            repaired_infos = await self.get_item_infos(repair_list)
        except Exception as ex:
            self._logger.error(
                "Failed to fetch repaired directories; %d left unrepaired: %s", len(repair_list), ex
            )
            return []

        repaired = [info for info in repaired_infos if info.exists()]
        for info in repaired_infos:
            if not info.exists():
                self._logger.warning("Somehow the repair for '%s' failed quietly", info.resource_id)
        self._logger.warning(
            "Successfully repaired %d/%d implicit directories.", len(repaired), len(repair_list)
        )
        if len(repaired) < len(repair_list):
            self._logger.warning(
                "%d implicit directories left unrepaired.", len(repair_list) - len(repaired)
            )
        return repaired

    # Item info

    async def get_item_info(self, resource_id: StorageResourceId) -> ItemInfo:
        self._logger.debug("get_item_info(%s)", resource_id)
        if resource_id.is_root:
            return ROOT_INFO

        if resource_id.is_bucket:
            bucket = await self._get_bucket(resource_id.bucket_name)
            item_info = item_info_for_bucket(resource_id, bucket) if bucket is not None else None
        else:
            obj = await self._get_object(resource_id)
            item_info = item_info_for_object(resource_id, obj) if obj is not None else None

        if item_info is None:
            item_info = ItemInfo.not_found(resource_id)
        self._logger.debug("get_item_info: %s", item_info)
        return item_info

    async def _get_bucket(self, bucket_name: str) -> Optional[Dict[str, Any]]:
        """The bucket resource, or None if the bucket does not exist."""
        self._logger.debug("_get_bucket(%s)", bucket_name)
        check_bucket_name(bucket_name)
        try:
            return await self._http.get_bucket(bucket_name)
        except BucketStoreException as ex:
            if is_not_found(ex):
                self._logger.debug("_get_bucket(%s) : not found", bucket_name)
                return None
            self._logger.debug("_get_bucket(%s) threw exception: %s", bucket_name, ex)
            raise wrap_exception(ex, "Error accessing", bucket_name) from ex

    async def _get_object(self, resource_id: StorageResourceId) -> Optional[Dict[str, Any]]:
        """The object resource, or None if the object does not exist."""
        self._logger.debug("_get_object(%s)", resource_id)
        check_storage_object(resource_id)
        try:
            return await self._http.get_object(resource_id.bucket_name, resource_id.object_name)
        except BucketStoreException as ex:
            if is_not_found(ex):
                self._logger.debug("_get_object(%s) : not found", resource_id)
                return None
            self._logger.debug("_get_object(%s) threw exception: %s", resource_id, ex)
            raise wrap_exception(ex, "Error accessing", resource_id.bucket_name, resource_id.object_name) from ex

    async def get_item_infos(self, resource_ids: Sequence[StorageResourceId]) -> List[ItemInfo]:
        self._logger.debug("get_item_infos(%s)", resource_ids)
        # One slot per input position keeps output order independent of completion order.
        slots: List[Optional[ItemInfo]] = [None] * len(resource_ids)
        inner_exceptions: List[Exception] = []
        batch = self._new_batch()

        for index, resource_id in enumerate(resource_ids):
            if resource_id.is_root:
                slots[index] = ROOT_INFO
                continue

            async def on_success(resource: Dict[str, Any], index=index, resource_id=resource_id) -> None:
                if resource_id.is_bucket:
                    slots[index] = item_info_for_bucket(resource_id, resource)
                else:
                    slots[index] = item_info_for_object(resource_id, resource)

            async def on_failure(ex: Exception, index=index, resource_id=resource_id) -> None:
                if is_not_found(ex):
                    self._logger.debug("get_item_infos: not found: %s", resource_id)
                    slots[index] = ItemInfo.not_found(resource_id)
                else:
                    kind = "Bucket" if resource_id.is_bucket else "StorageObject"
                    inner_exceptions.append(wrap_exception(
                        ex, f"Error getting {kind}", resource_id.bucket_name, resource_id.object_name
                    ))

            if resource_id.is_bucket:
                request = lambda resource_id=resource_id: self._http.get_bucket(resource_id.bucket_name)
            else:
                request = lambda resource_id=resource_id: self._http.get_object(
                    resource_id.bucket_name, resource_id.object_name
                )
            await batch.queue(request, on_success, on_failure)
        await batch.flush()

        if inner_exceptions:
            raise create_composite_exception(inner_exceptions)
        return _collect_slots(slots, resource_ids)

    async def update_items(self, item_infos: Sequence[UpdatableItemInfo]) -> List[ItemInfo]:
        self._logger.debug("update_items(%s)", item_infos)
        for item_info in item_infos:
            if not item_info.resource_id.is_storage_object:
                raise ValueError("Buckets and the root are not supported for update_items")

        slots: List[Optional[ItemInfo]] = [None] * len(item_infos)
        inner_exceptions: List[Exception] = []
        batch = self._new_batch()

        for index, item_info in enumerate(item_infos):
            resource_id = item_info.resource_id

            async def on_success(obj: Dict[str, Any], index=index, resource_id=resource_id) -> None:
                self._logger.debug("update_items: Successfully updated object for %s", resource_id)
                slots[index] = item_info_for_object(resource_id, obj)

            async def on_failure(ex: Exception, index=index, resource_id=resource_id) -> None:
                if is_not_found(ex):
                    self._logger.debug("update_items: object not found: %s", resource_id)
                    slots[index] = ItemInfo.not_found(resource_id)
                else:
                    inner_exceptions.append(wrap_exception(
                        ex, "Error updating StorageObject", resource_id.bucket_name, resource_id.object_name
                    ))

            await batch.queue(
                lambda resource_id=resource_id, metadata=item_info.metadata: self._http.patch_object(
                    resource_id.bucket_name, resource_id.object_name, metadata
                ),
                on_success,
                on_failure,
            )
        await batch.flush()

        if inner_exceptions:
            raise create_composite_exception(inner_exceptions)
        return _collect_slots(slots, [item_info.resource_id for item_info in item_infos])

    async def wait_for_bucket_empty(self, bucket_name: str) -> None:
        check_bucket_name(bucket_name)
        for _ in range(self._options.bucket_empty_max_retries):
            if not await self.list_object_names(bucket_name, None, PATH_DELIMITER):
                return
            await self._sleep(self._options.bucket_empty_wait_time)
        raise BucketStoreException(f"Internal error: bucket not empty: {bucket_name}")

    async def close(self) -> None:
        """Close the client and cleanup resources."""
        if self._closed:
            return
        self._logger.debug("close()")
        self._closed = True
        await self._http.close()


def _with_context(ex: Exception, message: str, bucket_name: str, object_name: Optional[str]) -> Exception:
    if isinstance(ex, (ItemNotFoundException, ItemAlreadyExistsException)):
        return ex
    return wrap_exception(ex, message, bucket_name, object_name)


def _collect_slots(slots: List[Optional[ItemInfo]], resource_ids: Sequence[StorageResourceId]) -> List[ItemInfo]:
    for slot, resource_id in zip(slots, resource_ids):
        if slot is None:
            raise BucketStoreException(f"Somehow missing resource_id '{resource_id}' from batch results")
    return list(slots)
