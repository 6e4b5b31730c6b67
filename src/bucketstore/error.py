"""
Exception classes for the bucketstore client
"""

from typing import List, Optional


RATE_LIMIT_REASONS = frozenset({"rateLimitExceeded", "userRateLimitExceeded"})


def readable_name(bucket_name: Optional[str], object_name: Optional[str] = None) -> str:
    """Render a bucket/object pair as gs://bucket/object."""
    if not bucket_name:
        return "gs://"
    if not object_name:
        return f"gs://{bucket_name}"
    return f"gs://{bucket_name}/{object_name}"


class BucketStoreException(Exception):
    """
    Base exception for all bucketstore errors.
    """

    def __init__(self, message: str, status_code: int = None, error_code: str = None):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class ItemNotFoundException(BucketStoreException):
    """Thrown when a bucket or object does not exist."""

    def __init__(self, bucket_name: Optional[str], object_name: Optional[str] = None, message: str = None):
        if message is None:
            message = f"Item not found: {readable_name(bucket_name, object_name)}"
        super().__init__(message, status_code=404, error_code="notFound")
        self.bucket_name = bucket_name
        self.object_name = object_name


class ItemAlreadyExistsException(BucketStoreException):
    """Thrown when creating a bucket or object that already exists."""

    def __init__(self, bucket_name: Optional[str], object_name: Optional[str] = None, message: str = None):
        if message is None:
            message = f"Item already exists: {readable_name(bucket_name, object_name)}"
        super().__init__(message, status_code=409, error_code="conflict")
        self.bucket_name = bucket_name
        self.object_name = object_name


class PreconditionFailedException(BucketStoreException):
    """Thrown when a generation precondition does not match the remote state."""

    def __init__(self, message: str):
        super().__init__(message, status_code=412, error_code="conditionNotMet")


class RateLimitedException(BucketStoreException):
    """Thrown when the server rejects a request because of quota or rate limits."""

    def __init__(self, message: str, status_code: int = 429, error_code: str = "rateLimitExceeded"):
        super().__init__(message, status_code, error_code)


class ApiException(BucketStoreException):
    """Thrown when the server returns any other error."""

    def __init__(self, message: str, status_code: int, error_code: str = None):
        super().__init__(message, status_code, error_code)


class RetriesExhaustedException(BucketStoreException):
    """Thrown when a retried operation runs out of backoff budget."""

    def __init__(self, message: str):
        super().__init__(message)


class InvalidArgumentException(BucketStoreException, ValueError):
    """Thrown when a caller supplies malformed names or mismatched arguments."""

    def __init__(self, message: str):
        super().__init__(message)


class CopyNotSupportedException(InvalidArgumentException):
    """Thrown for copies across storage locations or storage classes."""


class CompositeException(BucketStoreException):
    """
    Aggregates the per-item failures of a batched operation.

    Each inner exception keeps the bucket/object it failed on in its message.
    """

    def __init__(self, inner_exceptions: List[Exception]):
        self.inner_exceptions = list(inner_exceptions)
        lines = [f"{len(self.inner_exceptions)} operations failed:"]
        lines.extend(f"  {exc}" for exc in self.inner_exceptions)
        super().__init__("\n".join(lines))


def create_composite_exception(inner_exceptions: List[Exception]) -> Exception:
    """Build the exception to raise for a list of per-item failures."""
    if not inner_exceptions:
        raise ValueError("inner_exceptions must not be empty")
    if len(inner_exceptions) == 1:
        return inner_exceptions[0]
    return CompositeException(inner_exceptions)


def wrap_exception(
    exc: Exception,
    message: str,
    bucket_name: Optional[str],
    object_name: Optional[str] = None,
) -> BucketStoreException:
    """
    Wrap an exception with the bucket and object that were being accessed.

    The status and error codes of a wrapped BucketStoreException are kept so the
    classifiers below still recognise the wrapped error.
    """
    name = f"bucket: {bucket_name}"
    if object_name:
        name += f", object: {object_name}"
    status_code = getattr(exc, "status_code", None)
    error_code = getattr(exc, "error_code", None)
    wrapped = BucketStoreException(f"{message}: {name}: {exc}", status_code, error_code)
    wrapped.__cause__ = exc
    return wrapped


def is_not_found(exc: BaseException) -> bool:
    return isinstance(exc, ItemNotFoundException) or getattr(exc, "status_code", None) == 404


def is_already_exists(exc: BaseException) -> bool:
    return isinstance(exc, ItemAlreadyExistsException) or getattr(exc, "status_code", None) == 409


def is_precondition_failed(exc: BaseException) -> bool:
    return isinstance(exc, PreconditionFailedException) or getattr(exc, "status_code", None) == 412


def is_rate_limited(exc: BaseException) -> bool:
    if isinstance(exc, RateLimitedException):
        return True
    status_code = getattr(exc, "status_code", None)
    if status_code == 429:
        return True
    return status_code == 403 and getattr(exc, "error_code", None) in RATE_LIMIT_REASONS
