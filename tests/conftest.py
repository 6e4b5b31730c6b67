import base64
import json
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import unquote

import httpx
import pytest
import pytest_asyncio

from bucketstore import BackOffPolicy, BucketStoreClient, InMemoryStorage, StorageOptions

ENDPOINT = "https://storage.test"
TIMESTAMP = "2024-05-01T12:00:00+00:00"


@dataclass
class FakeObject:
    data: bytes
    generation: int
    metageneration: int = 1
    metadata: Dict[str, str] = field(default_factory=dict)


def _error(status: int, message: str, reason: Optional[str] = None) -> httpx.Response:
    errors = [{"reason": reason}] if reason else []
    return httpx.Response(status, json={"error": {"code": status, "message": message, "errors": errors}})


class FakeJsonApi:
    """
    In-process JSON API served through httpx.MockTransport.

    Honours ifGenerationMatch preconditions, pagination and delimiter listing.
    Tests inject failures with fail() and observe traffic through requests.
    """

    def __init__(self, page_size: Optional[int] = None):
        self.buckets: Dict[str, Dict[str, FakeObject]] = {}
        self.requests: List[Tuple[str, str, Dict[str, str]]] = []
        self.page_size = page_size
        self._generation = 1000
        self._failures: List[Tuple[str, str, int, Optional[str]]] = []
        self.hooks: List[Callable[[httpx.Request, List[str]], None]] = []
        self.storage_classes: Dict[str, str] = {}

    # Test helpers

    def add_bucket(self, name: str) -> None:
        self.buckets.setdefault(name, {})

    def put(self, bucket: str, name: str, data: bytes = b"", metadata: Optional[Dict[str, bytes]] = None) -> int:
        self.add_bucket(bucket)
        encoded = {k: base64.b64encode(v).decode() for k, v in (metadata or {}).items()}
        self._generation += 1
        self.buckets[bucket][name] = FakeObject(data, self._generation, metadata=encoded)
        return self._generation

    def fail(self, method: str, path_fragment: str, status: int, reason: Optional[str] = None, times: int = 1) -> None:
        """Answer the next `times` matching requests with an error status."""
        for _ in range(times):
            self._failures.append((method, path_fragment, status, reason))

    def count(self, method: str, path_fragment: str = "") -> int:
        return sum(1 for m, p, _ in self.requests if m == method and path_fragment in p)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    # Request handling

    def handle(self, request: httpx.Request) -> httpx.Response:
        raw_path = request.url.raw_path.decode().split("?", 1)[0]
        segments = [unquote(s) for s in raw_path.strip("/").split("/")]
        params = dict(request.url.params)
        self.requests.append((request.method, "/".join(segments), params))

        for hook in list(self.hooks):
            hook(request, segments)

        for failure in self._failures:
            method, fragment, status, reason = failure
            if method == request.method and fragment in "/".join(segments):
                self._failures.remove(failure)
                return _error(status, f"Injected failure {status}", reason)

        if segments[:3] == ["upload", "storage", "v1"]:
            return self._insert_object(request, segments[4], params)
        rest = segments[2:]
        if rest == ["b"]:
            if request.method == "POST":
                return self._insert_bucket(json.loads(request.content)["name"])
            return self._list_buckets(params)
        bucket = rest[1]
        if len(rest) == 2:
            return self._bucket(request.method, bucket)
        if len(rest) == 3:
            return self._list_objects(bucket, params)
        if len(rest) > 4 and rest[4] == "copyTo":
            return self._copy(bucket, rest[3], rest[6], rest[8])
        return self._object(request, bucket, rest[3], params)

    def _bucket_resource(self, name: str) -> dict:
        return {"name": name, "timeCreated": TIMESTAMP, "location": "US",
                "storageClass": self.storage_classes.get(name, "STANDARD")}

    def _object_resource(self, bucket: str, name: str, obj: FakeObject) -> dict:
        resource = {
            "bucket": bucket,
            "name": name,
            "size": str(len(obj.data)),
            "generation": str(obj.generation),
            "metageneration": str(obj.metageneration),
            "updated": TIMESTAMP,
        }
        if obj.metadata:
            resource["metadata"] = dict(obj.metadata)
        return resource

    def _check_generation(self, bucket: str, name: str, params: Dict[str, str]) -> Optional[httpx.Response]:
        if "ifGenerationMatch" not in params:
            return None
        expected = int(params["ifGenerationMatch"])
        current = self.buckets.get(bucket, {}).get(name)
        if expected == 0 and current is None:
            return None
        if current is not None and current.generation == expected:
            return None
        return _error(412, "Precondition Failed", "conditionNotMet")

    def _insert_bucket(self, name: str) -> httpx.Response:
        if name in self.buckets:
            return _error(409, "You already own this bucket.", "conflict")
        self.buckets[name] = {}
        return httpx.Response(200, json=self._bucket_resource(name))

    def _list_buckets(self, params: Dict[str, str]) -> httpx.Response:
        names = sorted(self.buckets)
        start = int(params.get("pageToken", "0"))
        size = self.page_size or len(names) or 1
        page = {"items": [self._bucket_resource(n) for n in names[start:start + size]]}
        if start + size < len(names):
            page["nextPageToken"] = str(start + size)
        return httpx.Response(200, json=page)

    def _bucket(self, method: str, bucket: str) -> httpx.Response:
        if bucket not in self.buckets:
            return _error(404, "Not Found", "notFound")
        if method == "DELETE":
            if self.buckets[bucket]:
                return _error(409, "The bucket you tried to delete is not empty.", "conflict")
            del self.buckets[bucket]
            return httpx.Response(204)
        return httpx.Response(200, json=self._bucket_resource(bucket))

    def _list_objects(self, bucket: str, params: Dict[str, str]) -> httpx.Response:
        if bucket not in self.buckets:
            return _error(404, "Not Found", "notFound")
        prefix = params.get("prefix", "")
        delimiter = params.get("delimiter")
        items, prefixes = [], []
        for name in sorted(self.buckets[bucket]):
            if not name.startswith(prefix):
                continue
            index = name.find(delimiter, len(prefix)) if delimiter else -1
            if index >= 0:
                group = name[:index + len(delimiter)]
                if group not in prefixes:
                    prefixes.append(group)
            else:
                items.append(self._object_resource(bucket, name, self.buckets[bucket][name]))

        start = int(params.get("pageToken", "0"))
        size = self.page_size or len(items) or 1
        page = {"items": items[start:start + size]}
        if start == 0 and prefixes:
            page["prefixes"] = prefixes
        if start + size < len(items):
            page["nextPageToken"] = str(start + size)
        return httpx.Response(200, json=page)

    def _object(self, request: httpx.Request, bucket: str, name: str, params: Dict[str, str]) -> httpx.Response:
        obj = self.buckets.get(bucket, {}).get(name)
        if request.method == "DELETE":
            if obj is None:
                return _error(404, "Not Found", "notFound")
            failed = self._check_generation(bucket, name, params)
            if failed is not None:
                return failed
            del self.buckets[bucket][name]
            return httpx.Response(204)
        if obj is None:
            return _error(404, "Not Found", "notFound")
        if request.method == "PATCH":
            for key, value in json.loads(request.content)["metadata"].items():
                if value is None:
                    obj.metadata.pop(key, None)
                else:
                    obj.metadata[key] = value
            obj.metageneration += 1
            return httpx.Response(200, json=self._object_resource(bucket, name, obj))
        if params.get("alt") == "media":
            byte_range = request.headers.get("Range", "bytes=0-")[len("bytes="):]
            start, _, end = byte_range.partition("-")
            stop = int(end) + 1 if end else len(obj.data)
            return httpx.Response(206, content=obj.data[int(start):stop])
        return httpx.Response(200, json=self._object_resource(bucket, name, obj))

    def _insert_object(self, request: httpx.Request, bucket: str, params: Dict[str, str]) -> httpx.Response:
        if bucket not in self.buckets:
            return _error(404, "Not Found", "notFound")
        boundary = request.headers["Content-Type"].split("boundary=", 1)[1]
        parts = request.content.split(f"--{boundary}".encode())
        resource = json.loads(parts[1].partition(b"\r\n\r\n")[2][:-2])
        data = parts[2].partition(b"\r\n\r\n")[2][:-2]
        name = resource["name"]
        failed = self._check_generation(bucket, name, params)
        if failed is not None:
            return failed
        self._generation += 1
        metadata = {k: v for k, v in (resource.get("metadata") or {}).items() if v is not None}
        obj = FakeObject(data, self._generation, metadata=metadata)
        self.buckets[bucket][name] = obj
        return httpx.Response(200, json=self._object_resource(bucket, name, obj))

    def _copy(self, src_bucket: str, src_name: str, dst_bucket: str, dst_name: str) -> httpx.Response:
        source = self.buckets.get(src_bucket, {}).get(src_name)
        if source is None or dst_bucket not in self.buckets:
            return _error(404, "Not Found", "notFound")
        self._generation += 1
        copied = FakeObject(source.data, self._generation, metadata=dict(source.metadata))
        self.buckets[dst_bucket][dst_name] = copied
        return httpx.Response(200, json=self._object_resource(dst_bucket, dst_name, copied))


class RecordingSleep:
    """Stands in for asyncio.sleep; records requested delays without waiting."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class ManualClock:
    """Monotonic clock advanced only by the paired sleep."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, delay):
        self.sleeps.append(delay)
        self.now += delay


class LaggingListStorage(InMemoryStorage):
    """Listings never show anything, like a store whose listing lags writes."""

    async def list_object_names(self, bucket_name, prefix=None, delimiter=None):
        return []

    async def list_object_info(self, bucket_name, prefix=None, delimiter=None):
        return []

    async def list_bucket_names(self):
        return []

    async def list_bucket_info(self):
        return []


@pytest.fixture
def fake_api():
    return FakeJsonApi()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def options():
    return StorageOptions(
        project_id="test-project",
        endpoint=ENDPOINT,
        backoff=BackOffPolicy(initial_interval=0.01, max_interval=0.05, max_attempts=5),
    )


@pytest_asyncio.fixture
async def client(fake_api, options, sleep):
    client = BucketStoreClient(options, access_token="token", transport=fake_api.transport, sleep=sleep)
    yield client
    await client.close()
