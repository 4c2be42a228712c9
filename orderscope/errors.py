from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from orderscope.sources.models import LogQueryRange


class OrderScopeError(Exception):
    pass


class ConfigurationError(OrderScopeError, ValueError):
    pass


class RpcError(OrderScopeError):
    def __init__(self, method: str, message: str, code: int | None = None) -> None:
        super().__init__(f"{method}: {message}" if code is None else f"{method}: [{code}] {message}")
        self.method = method
        self.message = message
        self.code = code


class ChunkFetchError(OrderScopeError):
    """A sub-range query failed; ``partial`` holds what was fetched before it."""

    def __init__(self, sub_range: LogQueryRange, partial: list[Any]) -> None:
        super().__init__(f"log query failed for blocks {sub_range.from_block}-{sub_range.to_block}")
        self.sub_range = sub_range
        self.partial = partial


class FetchCancelled(OrderScopeError):
    """Cancellation observed between sub-ranges; nothing from ``next_range`` on was issued."""

    def __init__(self, next_range: LogQueryRange, partial: list[Any]) -> None:
        super().__init__(f"log fetch cancelled before blocks {next_range.from_block}-{next_range.to_block}")
        self.next_range = next_range
        self.partial = partial
