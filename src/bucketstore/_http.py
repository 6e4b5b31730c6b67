"""
JSON API transport for the bucketstore client
"""

import asyncio
import inspect
import json
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union
from urllib.parse import quote

import httpx

from ._metadata import encode_metadata
from .error import (
    ApiException,
    ItemAlreadyExistsException,
    ItemNotFoundException,
    PreconditionFailedException,
    RateLimitedException,
    RATE_LIMIT_REASONS,
)
from .models import NO_CONDITIONS, ObjectWriteConditions
from .retry import BackOffPolicy

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Union[str, Awaitable[str]]]

OCTET_STREAM_MEDIA_TYPE = "application/octet-stream"


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    return isinstance(exc, ApiException) and exc.status_code >= 500


def _encode(name: str) -> str:
    return quote(name, safe="")


class JsonApiTransport:
    """
    Executes single JSON API calls against the object store.

    Connection failures and 5xx responses are retried with backoff; every other
    failure is mapped onto the bucketstore exception taxonomy.
    """

    def __init__(
        self,
        endpoint: str,
        access_token: Optional[str] = None,
        token_provider: Optional[TokenProvider] = None,
        app_name: str = "bucketstore",
        timeout: float = 30,
        max_retries: int = 3,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.api_url = f"{self.endpoint}/storage/v1"
        self.upload_url = f"{self.endpoint}/upload/storage/v1"
        self.access_token = access_token
        self.token_provider = token_provider
        self._retry_policy = BackOffPolicy(
            initial_interval=1.0, multiplier=2.0, max_interval=10.0, max_attempts=max_retries
        )
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={"User-Agent": app_name},
            limits=httpx.Limits(max_connections=100, max_keepalive_connections=100),
        )

    async def _auth_headers(self) -> Dict[str, str]:
        token = self.access_token
        if self.token_provider is not None:
            token = self.token_provider()
            if inspect.isawaitable(token):
                token = await token
        if not token:
            return {}
        return {"Authorization": f"Bearer {token}"}

    async def _request(
        self,
        method: str,
        url: str,
        bucket_name: Optional[str] = None,
        object_name: Optional[str] = None,
        params: Optional[Mapping[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
        **kwargs,
    ) -> httpx.Response:
        """Make an authenticated request with exponential backoff retry logic."""
        async for attempt in self._retry_policy.retrying(_is_transient, self._sleep, reraise=True):
            with attempt:
                request_headers = await self._auth_headers()
                if headers:
                    request_headers.update(headers)
                response = await self._client.request(
                    method, url, params=params, headers=request_headers, **kwargs
                )
                self._raise_for_status(response, bucket_name, object_name)
                return response

    @staticmethod
    def _raise_for_status(
        response: httpx.Response,
        bucket_name: Optional[str],
        object_name: Optional[str],
    ) -> None:
        status = response.status_code
        if status < 400:
            return

        reason = None
        message = f"Request failed with status {status}"
        try:
            error = response.json().get("error", {})
            message = error.get("message") or message
            errors = error.get("errors") or []
            if errors:
                reason = errors[0].get("reason")
        except (ValueError, AttributeError):
            pass

        if status == 404:
            raise ItemNotFoundException(bucket_name, object_name)
        if status == 409:
            raise ItemAlreadyExistsException(bucket_name, object_name)
        if status == 412:
            raise PreconditionFailedException(message)
        if status == 429 or (status == 403 and reason in RATE_LIMIT_REASONS):
            raise RateLimitedException(message, status, reason or "rateLimitExceeded")
        raise ApiException(message, status, reason)

    # Buckets

    async def get_bucket(self, bucket_name: str) -> Dict[str, Any]:
        response = await self._request("GET", f"{self.api_url}/b/{_encode(bucket_name)}", bucket_name)
        return response.json()

    async def insert_bucket(self, project_id: Optional[str], bucket_name: str) -> Dict[str, Any]:
        params = {"project": project_id} if project_id else None
        response = await self._request(
            "POST", f"{self.api_url}/b", bucket_name, params=params, json={"name": bucket_name}
        )
        return response.json()

    async def delete_bucket(self, bucket_name: str) -> None:
        await self._request("DELETE", f"{self.api_url}/b/{_encode(bucket_name)}", bucket_name)

    async def list_buckets(
        self,
        project_id: Optional[str],
        max_results: int,
        page_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        params = {"maxResults": str(max_results)}
        if project_id:
            params["project"] = project_id
        if page_token:
            params["pageToken"] = page_token
        response = await self._request("GET", f"{self.api_url}/b", params=params)
        return response.json()

    # Objects

    def _object_url(self, bucket_name: str, object_name: str) -> str:
        return f"{self.api_url}/b/{_encode(bucket_name)}/o/{_encode(object_name)}"

    async def get_object(self, bucket_name: str, object_name: str) -> Dict[str, Any]:
        response = await self._request(
            "GET", self._object_url(bucket_name, object_name), bucket_name, object_name
        )
        return response.json()

    async def insert_object(
        self,
        bucket_name: str,
        object_name: str,
        data: bytes = b"",
        metadata: Optional[Mapping[str, Optional[bytes]]] = None,
        conditions: ObjectWriteConditions = NO_CONDITIONS,
        content_type: str = OCTET_STREAM_MEDIA_TYPE,
    ) -> Dict[str, Any]:
        """Upload an object in one multipart/related request."""
        resource: Dict[str, Any] = {"name": object_name}
        if metadata:
            resource["metadata"] = encode_metadata(metadata)

        boundary = uuid.uuid4().hex
        body = b"".join([
            f"--{boundary}\r\n".encode(),
            b"Content-Type: application/json; charset=UTF-8\r\n\r\n",
            json.dumps(resource).encode("utf-8"),
            f"\r\n--{boundary}\r\n".encode(),
            f"Content-Type: {content_type}\r\n\r\n".encode(),
            data,
            f"\r\n--{boundary}--".encode(),
        ])
        params = {"uploadType": "multipart"}
        params.update(conditions.to_params())
        response = await self._request(
            "POST",
            f"{self.upload_url}/b/{_encode(bucket_name)}/o",
            bucket_name,
            object_name,
            params=params,
            headers={"Content-Type": f"multipart/related; boundary={boundary}"},
            content=body,
        )
        return response.json()

    async def delete_object(
        self,
        bucket_name: str,
        object_name: str,
        conditions: ObjectWriteConditions = NO_CONDITIONS,
    ) -> None:
        await self._request(
            "DELETE",
            self._object_url(bucket_name, object_name),
            bucket_name,
            object_name,
            params=conditions.to_params() or None,
        )

    async def patch_object(
        self,
        bucket_name: str,
        object_name: str,
        metadata: Mapping[str, Optional[bytes]],
        conditions: ObjectWriteConditions = NO_CONDITIONS,
    ) -> Dict[str, Any]:
        response = await self._request(
            "PATCH",
            self._object_url(bucket_name, object_name),
            bucket_name,
            object_name,
            params=conditions.to_params() or None,
            json={"metadata": encode_metadata(metadata)},
        )
        return response.json()

    async def copy_object(
        self,
        src_bucket_name: str,
        src_object_name: str,
        dst_bucket_name: str,
        dst_object_name: str,
    ) -> Dict[str, Any]:
        url = (
            f"{self._object_url(src_bucket_name, src_object_name)}"
            f"/copyTo/b/{_encode(dst_bucket_name)}/o/{_encode(dst_object_name)}"
        )
        response = await self._request("POST", url, src_bucket_name, src_object_name, json={})
        return response.json()

    async def list_objects(
        self,
        bucket_name: str,
        prefix: Optional[str],
        delimiter: Optional[str],
        max_results: int,
        page_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        params = {"maxResults": str(max_results)}
        if prefix:
            params["prefix"] = prefix
        if delimiter:
            params["delimiter"] = delimiter
        if page_token:
            params["pageToken"] = page_token
        response = await self._request(
            "GET", f"{self.api_url}/b/{_encode(bucket_name)}/o", bucket_name, params=params
        )
        return response.json()

    async def read_object(
        self,
        bucket_name: str,
        object_name: str,
        start: int = 0,
        end: Optional[int] = None,
    ) -> bytes:
        """Download bytes [start, end] (inclusive) of an object."""
        byte_range = f"bytes={start}-" if end is None else f"bytes={start}-{end}"
        response = await self._request(
            "GET",
            self._object_url(bucket_name, object_name),
            bucket_name,
            object_name,
            params={"alt": "media"},
            headers={"Range": byte_range},
        )
        return response.content

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
