"""
The storage-client contract shared by every implementation and decorator
"""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List, Optional, Sequence

from .channels import ObjectReadChannel, ObjectWriteChannel
from .error import (
    CopyNotSupportedException,
    InvalidArgumentException,
    ItemNotFoundException,
    readable_name,
)
from .models import CreateObjectOptions, ItemInfo, StorageResourceId, UpdatableItemInfo
from .options import PATH_DELIMITER


class StorageClient(ABC):
    """
    Bucket/object access with the semantics every caller relies on.

    Implementations: BucketStoreClient (network), InMemoryStorage (local).
    Decorators: CacheSupplementedStorage, ThrottledStorage.
    """

    @abstractmethod
    async def create(
        self, resource_id: StorageResourceId, options: Optional[CreateObjectOptions] = None
    ) -> ObjectWriteChannel:
        """Start writing an object; the write is committed when the channel is closed."""

    @abstractmethod
    async def create_empty_object(
        self, resource_id: StorageResourceId, options: Optional[CreateObjectOptions] = None
    ) -> None:
        """Create a zero-byte object."""

    @abstractmethod
    async def create_empty_objects(
        self, resource_ids: Sequence[StorageResourceId], options: Optional[CreateObjectOptions] = None
    ) -> None:
        """Create zero-byte objects, raising one aggregate error for all failures."""

    @abstractmethod
    async def open(self, resource_id: StorageResourceId) -> ObjectReadChannel:
        """Open an existing object for reading; raises ItemNotFoundException if absent."""

    @abstractmethod
    async def create_bucket(self, bucket_name: str) -> None:
        """Create a bucket."""

    @abstractmethod
    async def delete_buckets(self, bucket_names: Sequence[str]) -> None:
        """Delete buckets, raising one aggregate error for all failures."""

    @abstractmethod
    async def delete_objects(self, resource_ids: Sequence[StorageResourceId]) -> None:
        """Delete objects; objects that are already gone count as deleted."""

    @abstractmethod
    async def copy(
        self,
        src_bucket_name: str,
        src_object_names: Sequence[str],
        dst_bucket_name: str,
        dst_object_names: Sequence[str],
    ) -> None:
        """Copy objects pairwise from src to dst names."""

    @abstractmethod
    async def list_bucket_names(self) -> List[str]:
        """Names of every bucket."""

    @abstractmethod
    async def list_bucket_info(self) -> List[ItemInfo]:
        """Info of every bucket."""

    @abstractmethod
    async def list_object_names(
        self, bucket_name: str, prefix: Optional[str] = None, delimiter: Optional[str] = None
    ) -> List[str]:
        """Object names and delimiter-grouped prefixes under prefix."""

    @abstractmethod
    async def list_object_info(
        self, bucket_name: str, prefix: Optional[str] = None, delimiter: Optional[str] = None
    ) -> List[ItemInfo]:
        """Like list_object_names, resolving every entry into an ItemInfo."""

    @abstractmethod
    async def get_item_info(self, resource_id: StorageResourceId) -> ItemInfo:
        """Info for one resource; a missing resource yields a not-found ItemInfo."""

    @abstractmethod
    async def get_item_infos(self, resource_ids: Sequence[StorageResourceId]) -> List[ItemInfo]:
        """Infos in the same order as resource_ids, one per id."""

    @abstractmethod
    async def update_items(self, item_infos: Sequence[UpdatableItemInfo]) -> List[ItemInfo]:
        """Patch object metadata, returning the updated infos in input order."""

    @abstractmethod
    async def wait_for_bucket_empty(self, bucket_name: str) -> None:
        """Poll until the bucket lists no objects."""

    @abstractmethod
    async def close(self) -> None:
        """Release pooled resources. Safe to call more than once."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


def check_storage_object(resource_id: StorageResourceId) -> None:
    if not resource_id.is_storage_object:
        raise InvalidArgumentException(f"Expected full StorageObject id, got {resource_id}")


def check_bucket_name(bucket_name: Optional[str]) -> None:
    if not bucket_name:
        raise InvalidArgumentException("bucket_name must not be None or empty")


def is_directory_marker(object_name: str, prefix: Optional[str]) -> bool:
    """
    True for the object named exactly like a directory-shaped listing prefix.

    Listing "dir/" returns "dir/" itself; it must not show up as a peer entry.
    Directories are always "/"-terminated, whatever delimiter the listing uses.
    """
    if not prefix:
        return False
    return prefix.endswith(PATH_DELIMITER) and object_name == prefix


def match_list_prefix(prefix: Optional[str], delimiter: Optional[str], object_name: str) -> Optional[str]:
    """
    Apply listing semantics to one object name.

    Returns None if object_name falls outside prefix, the name itself if it is a
    direct match, or the delimiter-terminated group prefix it belongs to.
    """
    if not object_name:
        return None
    if prefix and not object_name.startswith(prefix):
        return None
    if not delimiter:
        return object_name
    index = object_name.find(delimiter, len(prefix or ""))
    if index < 0:
        return object_name
    return object_name[: index + len(delimiter)]


async def validate_copy_arguments(
    src_bucket_name: str,
    src_object_names: Sequence[str],
    dst_bucket_name: str,
    dst_object_names: Sequence[str],
    get_item_info: Callable[[StorageResourceId], Awaitable[ItemInfo]],
) -> None:
    """
    Validate a copy request before anything is copied.

    For cross-bucket copies both buckets must exist and share location and
    storage class; get_item_info is used to fetch the bucket infos.
    """
    check_bucket_name(src_bucket_name)
    check_bucket_name(dst_bucket_name)
    if src_object_names is None:
        raise InvalidArgumentException("src_object_names must not be None")
    if dst_object_names is None:
        raise InvalidArgumentException("dst_object_names must not be None")
    if len(src_object_names) != len(dst_object_names):
        raise InvalidArgumentException(
            "Must supply same number of elements in src_object_names and dst_object_names"
        )

    for src_name, dst_name in zip(src_object_names, dst_object_names):
        if not src_name:
            raise InvalidArgumentException("src_object_name must not be None or empty")
        if not dst_name:
            raise InvalidArgumentException("dst_object_name must not be None or empty")
        if src_bucket_name == dst_bucket_name and src_name == dst_name:
            raise InvalidArgumentException(
                f"Copy destination must be different from source for {readable_name(src_bucket_name, src_name)}."
            )

    if src_bucket_name != dst_bucket_name:
        src_info = await get_item_info(StorageResourceId(src_bucket_name))
        if not src_info.exists():
            raise ItemNotFoundException(src_bucket_name, message=f"Bucket not found: {src_bucket_name}")
        dst_info = await get_item_info(StorageResourceId(dst_bucket_name))
        if not dst_info.exists():
            raise ItemNotFoundException(dst_bucket_name, message=f"Bucket not found: {dst_bucket_name}")
        if src_info.location != dst_info.location:
            raise CopyNotSupportedException(
                "This operation is not supported across two different storage locations."
            )
        if src_info.storage_class != dst_info.storage_class:
            raise CopyNotSupportedException(
                "This operation is not supported across two different storage classes."
            )
