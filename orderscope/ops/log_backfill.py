from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from orderscope.config import RetryConfig
from orderscope.errors import ChunkFetchError, FetchCancelled
from orderscope.harvest.log_fetcher import ChunkedLogFetcher
from orderscope.infra.retry import with_retry
from orderscope.sources.models import LogFilter, LogQueryRange, LogRecord

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BackfillResult:
    logs: list[LogRecord]
    primary_failures: int = 0
    fallback_from_block: int | None = None
    sources: list[str] = field(default_factory=list)


class LogBackfill:
    """Bulk log download with caller-side resilience.

    The primary fetcher is retried from the first failing sub-range (results
    already gathered are kept). Once retries are exhausted the rest of the
    range is handed to the backup fetcher, which points at a different
    endpoint with its own limiter.
    """

    def __init__(
        self,
        primary: ChunkedLogFetcher,
        backup: ChunkedLogFetcher | None,
        retry: RetryConfig,
    ) -> None:
        self.primary = primary
        self.backup = backup
        self.retry = retry

    async def run(
        self,
        query_range: LogQueryRange,
        log_filter: LogFilter | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> BackfillResult:
        result = BackfillResult(logs=[])
        next_block = query_range.from_block

        async def _attempt() -> None:
            nonlocal next_block
            remaining = LogQueryRange(next_block, query_range.to_block)
            try:
                logs = await self.primary.fetch(remaining, log_filter, cancel_event)
            except FetchCancelled as exc:
                raise FetchCancelled(exc.next_range, result.logs + exc.partial) from exc
            except ChunkFetchError as exc:
                result.logs.extend(exc.partial)
                result.primary_failures += 1
                next_block = exc.sub_range.from_block
                raise
            result.logs.extend(logs)
            next_block = query_range.to_block + 1

        try:
            await with_retry(_attempt, self.retry)
            result.sources.append("primary")
            return result
        except ChunkFetchError as exc:
            if self.backup is None:
                # result.logs already holds every partial the primary returned.
                raise ChunkFetchError(exc.sub_range, list(result.logs)) from exc
            logger.warning(
                "primary log source exhausted, switching to backup",
                extra={"remaining": LogQueryRange(next_block, query_range.to_block), "error": exc},
            )
            if next_block > query_range.from_block:
                result.sources.append("primary")

        result.fallback_from_block = next_block
        try:
            logs = await self.backup.fetch(LogQueryRange(next_block, query_range.to_block), log_filter, cancel_event)
        except FetchCancelled as exc:
            raise FetchCancelled(exc.next_range, result.logs + exc.partial) from exc
        except ChunkFetchError as exc:
            raise ChunkFetchError(exc.sub_range, result.logs + exc.partial) from exc
        result.logs.extend(logs)
        result.sources.append("backup")
        return result
