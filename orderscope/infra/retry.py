from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx
from tenacity import AsyncRetrying, RetryError, retry_if_exception, stop_after_attempt, wait_random_exponential

from orderscope.config import RetryConfig
from orderscope.errors import ChunkFetchError, RpcError

T = TypeVar("T")

# JSON-RPC codes public endpoints use for "limit exceeded" / "resource unavailable".
_RETRYABLE_RPC_CODES = {-32005, -32002, 429}


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, ChunkFetchError) and exc.__cause__ is not None:
        return _is_retryable(exc.__cause__)
    if isinstance(exc, httpx.TimeoutException):
        return True
    if isinstance(exc, httpx.NetworkError):
        return True
    if isinstance(exc, httpx.RemoteProtocolError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in {429, 500, 502, 503, 504}
    if isinstance(exc, RpcError):
        return exc.code in _RETRYABLE_RPC_CODES
    return False


async def with_retry(fn: Callable[[], Awaitable[T]], config: RetryConfig) -> T:
    try:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception(_is_retryable),
            stop=stop_after_attempt(config.attempts),
            wait=wait_random_exponential(multiplier=config.min_seconds, max=config.max_seconds),
            reraise=True,
        ):
            with attempt:
                return await fn()
    except RetryError as exc:
        raise exc.last_attempt.exception() from exc
