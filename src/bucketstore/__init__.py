"""
bucketstore - async client-side storage layer for a bucket/object JSON API
"""

__version__ = "1.0.0"

from .client import BucketStoreClient
from .storage import StorageClient
from .memory import InMemoryStorage
from .caching import CacheSupplementedStorage
from .cache import CacheEntry, DirectoryListCache, InMemoryDirectoryListCache
from .throttling import RateLimiter, StorageOperation, ThrottledStorage
from .batch import BatchHelper
from .channels import ObjectReadChannel, ObjectWriteChannel
from .options import StorageOptions
from .retry import BackOffPolicy, ExponentialBackOff, STOP, execute_with_retry
from .models import (
    StorageResourceId,
    ItemInfo,
    ROOT_INFO,
    CreateObjectOptions,
    DEFAULT_CREATE_OPTIONS,
    UpdatableItemInfo,
    ObjectWriteConditions,
)
from .error import (
    BucketStoreException,
    ItemNotFoundException,
    ItemAlreadyExistsException,
    PreconditionFailedException,
    RateLimitedException,
    ApiException,
    RetriesExhaustedException,
    InvalidArgumentException,
    CopyNotSupportedException,
    CompositeException,
    is_not_found,
    is_already_exists,
    is_precondition_failed,
    is_rate_limited,
)

__all__ = [
    "BucketStoreClient",
    "StorageClient",
    "InMemoryStorage",
    "CacheSupplementedStorage",
    "CacheEntry",
    "DirectoryListCache",
    "InMemoryDirectoryListCache",
    "RateLimiter",
    "StorageOperation",
    "ThrottledStorage",
    "BatchHelper",
    "ObjectReadChannel",
    "ObjectWriteChannel",
    "StorageOptions",
    "BackOffPolicy",
    "ExponentialBackOff",
    "STOP",
    "execute_with_retry",
    "StorageResourceId",
    "ItemInfo",
    "ROOT_INFO",
    "CreateObjectOptions",
    "DEFAULT_CREATE_OPTIONS",
    "UpdatableItemInfo",
    "ObjectWriteConditions",
    "BucketStoreException",
    "ItemNotFoundException",
    "ItemAlreadyExistsException",
    "PreconditionFailedException",
    "RateLimitedException",
    "ApiException",
    "RetriesExhaustedException",
    "InvalidArgumentException",
    "CopyNotSupportedException",
    "CompositeException",
    "is_not_found",
    "is_already_exists",
    "is_precondition_failed",
    "is_rate_limited",
]
