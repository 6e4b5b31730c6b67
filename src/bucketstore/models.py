"""
Data models for the bucketstore client
"""

from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import ClassVar, Dict, Mapping, Optional

from .error import InvalidArgumentException, readable_name


@dataclass(frozen=True)
class StorageResourceId:
    """
    Names the root, a bucket, or an object within a bucket.

    An empty object name denotes the bucket itself.
    """
    bucket_name: Optional[str] = None
    object_name: Optional[str] = None

    ROOT: ClassVar["StorageResourceId"]

    def __post_init__(self):
        if self.object_name == "":
            object.__setattr__(self, "object_name", None)
        if self.bucket_name == "":
            raise InvalidArgumentException("bucket_name must not be empty")
        if self.object_name is not None and self.bucket_name is None:
            raise InvalidArgumentException(
                f"bucket_name must not be None when object_name is '{self.object_name}'"
            )

    @property
    def is_root(self) -> bool:
        return self.bucket_name is None

    @property
    def is_bucket(self) -> bool:
        return self.bucket_name is not None and self.object_name is None

    @property
    def is_storage_object(self) -> bool:
        return self.object_name is not None

    def __str__(self) -> str:
        return readable_name(self.bucket_name, self.object_name)


StorageResourceId.ROOT = StorageResourceId()


@dataclass(frozen=True)
class ItemInfo:
    """
    Snapshot of a root, bucket or object as seen by a single read.

    Size is -1 for items that do not exist and 0 for buckets. Location and
    storage class are only populated for buckets.
    """
    resource_id: StorageResourceId
    creation_time: int = 0
    size: int = -1
    location: Optional[str] = None
    storage_class: Optional[str] = None
    metadata: Mapping[str, Optional[bytes]] = field(default_factory=dict, compare=False)
    content_generation: int = 0
    meta_generation: int = 0

    def __post_init__(self):
        if self.resource_id is None:
            raise InvalidArgumentException(
                "resource_id must not be None, use StorageResourceId.ROOT for the root"
            )
        if self.metadata is None:
            object.__setattr__(self, "metadata", {})

    @classmethod
    def not_found(cls, resource_id: StorageResourceId) -> "ItemInfo":
        return cls(resource_id=resource_id, creation_time=0, size=-1)

    @property
    def bucket_name(self) -> Optional[str]:
        return self.resource_id.bucket_name

    @property
    def object_name(self) -> Optional[str]:
        return self.resource_id.object_name

    @property
    def is_root(self) -> bool:
        return self.resource_id.is_root

    @property
    def is_bucket(self) -> bool:
        return self.resource_id.is_bucket

    def exists(self) -> bool:
        return self.size >= 0

    def __str__(self) -> str:
        if self.exists():
            created = datetime.fromtimestamp(self.creation_time / 1000, UTC)
            return f"{self.resource_id}: created on: {created.isoformat()}"
        return f"{self.resource_id}: exists: no"


ROOT_INFO = ItemInfo(resource_id=StorageResourceId.ROOT, creation_time=0, size=0)


@dataclass(frozen=True)
class CreateObjectOptions:
    """Whether an existing object may be replaced, and metadata to attach."""
    overwrite_existing: bool = False
    metadata: Mapping[str, Optional[bytes]] = field(default_factory=dict)


DEFAULT_CREATE_OPTIONS = CreateObjectOptions()


@dataclass(frozen=True)
class UpdatableItemInfo:
    """An object and the metadata entries to patch onto it."""
    resource_id: StorageResourceId
    metadata: Mapping[str, Optional[bytes]] = field(default_factory=dict)

    def __post_init__(self):
        if not self.resource_id.is_storage_object:
            raise InvalidArgumentException(
                f"Buckets and the root are not supported for metadata updates, got {self.resource_id}"
            )


@dataclass(frozen=True)
class ObjectWriteConditions:
    """Generation preconditions attached to a mutating call."""
    content_generation_match: Optional[int] = None
    meta_generation_match: Optional[int] = None

    @property
    def has_content_generation_match(self) -> bool:
        return self.content_generation_match is not None

    @property
    def has_meta_generation_match(self) -> bool:
        return self.meta_generation_match is not None

    def to_params(self) -> Dict[str, str]:
        params = {}
        if self.content_generation_match is not None:
            params["ifGenerationMatch"] = str(self.content_generation_match)
        if self.meta_generation_match is not None:
            params["ifMetagenerationMatch"] = str(self.meta_generation_match)
        return params


NO_CONDITIONS = ObjectWriteConditions()
