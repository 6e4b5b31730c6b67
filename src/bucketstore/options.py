"""
Configuration for storage clients
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from .retry import BackOffPolicy

DEFAULT_ENDPOINT = "https://storage.googleapis.com"

# Pseudo path delimiter used when listing "directories".
PATH_DELIMITER = "/"


@dataclass(frozen=True)
class StorageOptions:
    """
    Tunables for BucketStoreClient and InMemoryStorage.

    Example:
        options = StorageOptions(project_id="my-project", max_requests_per_batch=100)
        options = StorageOptions.from_env()
    """
    project_id: Optional[str] = None
    app_name: str = "bucketstore"
    endpoint: str = DEFAULT_ENDPOINT
    max_list_items_per_call: int = 5000
    max_requests_per_batch: int = 1000
    max_concurrent_requests: int = 20
    auto_repair_implicit_directories: bool = True
    request_timeout: float = 30.0
    max_retries: int = 3
    backoff: BackOffPolicy = field(default_factory=BackOffPolicy)
    bucket_empty_max_retries: int = 20
    bucket_empty_wait_time: float = 0.5

    def validate(self) -> None:
        """Fail fast on nonsensical settings."""
        if not self.app_name:
            raise ValueError("app_name must not be empty")
        if not self.endpoint.startswith(("http://", "https://")):
            raise ValueError(f"endpoint must be an http(s) URL, got '{self.endpoint}'")
        if self.max_list_items_per_call <= 0:
            raise ValueError(f"max_list_items_per_call must be > 0, got {self.max_list_items_per_call}")
        if self.max_requests_per_batch <= 0:
            raise ValueError(f"max_requests_per_batch must be > 0, got {self.max_requests_per_batch}")
        if self.max_concurrent_requests <= 0:
            raise ValueError(f"max_concurrent_requests must be > 0, got {self.max_concurrent_requests}")
        if self.request_timeout <= 0:
            raise ValueError(f"request_timeout must be > 0, got {self.request_timeout}")
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {self.max_retries}")
        if self.bucket_empty_max_retries < 1:
            raise ValueError(f"bucket_empty_max_retries must be >= 1, got {self.bucket_empty_max_retries}")
        if self.bucket_empty_wait_time < 0:
            raise ValueError(f"bucket_empty_wait_time must be >= 0, got {self.bucket_empty_wait_time}")
        self.backoff.validate()

    @classmethod
    def from_env(cls, prefix: str = "BUCKETSTORE") -> "StorageOptions":
        """
        Construct options from environment variables.

        Environment Variables:
        - {prefix}_PROJECT_ID: Project owning new buckets
        - {prefix}_APP_NAME: Application name sent as user agent
        - {prefix}_ENDPOINT: API endpoint (default: https://storage.googleapis.com)
        - {prefix}_MAX_LIST_ITEMS_PER_CALL: Page size for listings (default: 5000)
        - {prefix}_MAX_REQUESTS_PER_BATCH: Batch size (default: 1000)
        - {prefix}_MAX_CONCURRENT_REQUESTS: Worker pool size (default: 20)
        - {prefix}_AUTO_REPAIR: Repair implicit directories (default: true)
        - {prefix}_REQUEST_TIMEOUT: Request timeout in seconds (default: 30)
        - {prefix}_MAX_RETRIES: Transport-level attempts (default: 3)
        """
        def _get(key: str, default: str = "") -> str:
            return os.environ.get(f"{prefix}_{key}", default)

        def _get_int(key: str, default: int) -> int:
            val = _get(key)
            return int(val) if val else default

        def _get_float(key: str, default: float) -> float:
            val = _get(key)
            return float(val) if val else default

        def _get_bool(key: str, default: bool) -> bool:
            val = _get(key).lower()
            if val in ("true", "1", "yes"):
                return True
            if val in ("false", "0", "no"):
                return False
            return default

        options = cls(
            project_id=_get("PROJECT_ID") or None,
            app_name=_get("APP_NAME", "bucketstore"),
            endpoint=_get("ENDPOINT", DEFAULT_ENDPOINT),
            max_list_items_per_call=_get_int("MAX_LIST_ITEMS_PER_CALL", 5000),
            max_requests_per_batch=_get_int("MAX_REQUESTS_PER_BATCH", 1000),
            max_concurrent_requests=_get_int("MAX_CONCURRENT_REQUESTS", 20),
            auto_repair_implicit_directories=_get_bool("AUTO_REPAIR", True),
            request_timeout=_get_float("REQUEST_TIMEOUT", 30.0),
            max_retries=_get_int("MAX_RETRIES", 3),
        )
        options.validate()
        return options
