"""
Grouped dispatch of independent remote calls with per-item callbacks
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Optional

logger = logging.getLogger(__name__)

Request = Callable[[], Awaitable[Any]]
SuccessCallback = Callable[[Any], Awaitable[None]]
FailureCallback = Callable[[Exception], Awaitable[None]]


@dataclass
class _QueuedRequest:
    request: Request
    on_success: SuccessCallback
    on_failure: FailureCallback


class BatchHelper:
    """
    Accumulates remote calls and dispatches them in groups of at most
    max_requests_per_batch.

    Every queued request has exactly one of its callbacks awaited. Callbacks may
    queue follow-up requests (e.g. a conditioned delete after a get); those are
    dispatched by the same flush().

    Example:
        batch = BatchHelper(max_requests_per_batch=100)
        await batch.queue(lambda: transport.get_object(b, o), on_success, on_failure)
        await batch.flush()
    """

    def __init__(self, max_requests_per_batch: int, max_concurrency: Optional[int] = None):
        if max_requests_per_batch <= 0:
            raise ValueError(f"max_requests_per_batch must be > 0, got {max_requests_per_batch}")
        self._max_requests_per_batch = max_requests_per_batch
        self._slots = asyncio.Semaphore(max_concurrency) if max_concurrency else None
        self._pending: Deque[_QueuedRequest] = deque()
        self._flushing = False

    async def queue(
        self,
        request: Request,
        on_success: SuccessCallback,
        on_failure: FailureCallback,
    ) -> None:
        """Queue a request, dispatching the pending batch once it is full."""
        self._pending.append(_QueuedRequest(request, on_success, on_failure))
        if not self._flushing and len(self._pending) >= self._max_requests_per_batch:
            await self.flush()

    def is_empty(self) -> bool:
        return not self._pending

    async def flush(self) -> None:
        """Dispatch everything queued, including work queued by callbacks."""
        if self._flushing:
            return
        self._flushing = True
        try:
            while self._pending:
                size = min(len(self._pending), self._max_requests_per_batch)
                batch = [self._pending.popleft() for _ in range(size)]
                logger.debug("Dispatching batch of %d requests", len(batch))
                results = await asyncio.gather(
                    *(self._dispatch(item) for item in batch),
                    return_exceptions=True,
                )
                errors = [r for r in results if isinstance(r, BaseException)]
                if errors:
                    self._pending.clear()
                    raise errors[0]
        finally:
            self._flushing = False

    async def _dispatch(self, item: _QueuedRequest) -> None:
        try:
            if self._slots is None:
                result = await item.request()
            else:
                async with self._slots:
                    result = await item.request()
        except Exception as ex:
            await item.on_failure(ex)
            return
        await item.on_success(result)
