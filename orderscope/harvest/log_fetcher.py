from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from orderscope.config import OrderScopeSettings
from orderscope.errors import ChunkFetchError, ConfigurationError, FetchCancelled
from orderscope.infra.rate_limiter import AsyncTokenBucket
from orderscope.sources.models import LogFilter, LogQueryRange, LogRecord
from orderscope.sources.rpc_client import RpcClient

logger = logging.getLogger(__name__)


class ChunkedLogFetcher:
    """Pulls logs for a block range in bounded sub-ranges, one at a time.

    Each sub-range costs one limiter token and one ``eth_getLogs`` call. A
    fixed courtesy delay separates consecutive sub-ranges. Failures are not
    retried here: the first failing sub-range raises ``ChunkFetchError`` with
    the results gathered so far, and the caller decides what to do next.
    """

    def __init__(
        self,
        client: RpcClient,
        limiter: AsyncTokenBucket,
        chunk_size: int,
        batch_delay_sec: float,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if chunk_size <= 0:
            raise ConfigurationError(f"chunk_size must be > 0, got {chunk_size}")
        if batch_delay_sec < 0:
            raise ConfigurationError(f"batch_delay_sec must be >= 0, got {batch_delay_sec}")
        self._client = client
        self._limiter = limiter
        self.chunk_size = chunk_size
        self.batch_delay_sec = batch_delay_sec
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        client: RpcClient,
        limiter: AsyncTokenBucket,
        settings: OrderScopeSettings,
    ) -> ChunkedLogFetcher:
        config = settings.log_fetch
        return cls(client, limiter, config.chunk_size, config.batch_delay_sec)

    async def fetch(
        self,
        query_range: LogQueryRange,
        log_filter: LogFilter | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> list[LogRecord]:
        log_filter = log_filter or LogFilter()
        all_logs: list[LogRecord] = []
        sub_ranges = list(query_range.split(self.chunk_size))
        for idx, sub_range in enumerate(sub_ranges):
            if cancel_event is not None and cancel_event.is_set():
                cancelled = FetchCancelled(sub_range, all_logs)
                logger.info("log fetch cancelled", extra={"error": cancelled, "fetched": len(all_logs)})
                raise cancelled
            await self._limiter.acquire()
            try:
                logs = await self._client.get_logs(
                    log_filter.address,
                    sub_range.from_block,
                    sub_range.to_block,
                    log_filter.topics,
                )
            except Exception as exc:
                failure = ChunkFetchError(sub_range, all_logs)
                failure.__cause__ = exc
                logger.warning("log sub-range query failed", extra={"error": failure})
                raise failure from exc
            all_logs.extend(logs)
            logger.debug(
                "log sub-range fetched",
                extra={"sub_range": sub_range, "count": len(logs)},
            )
            if idx < len(sub_ranges) - 1:
                await self._sleep(self.batch_delay_sec)
        return all_logs
