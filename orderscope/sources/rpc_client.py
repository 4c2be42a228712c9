from __future__ import annotations

import itertools
import logging
from typing import Any

import httpx

from orderscope.errors import RpcError
from orderscope.sources.models import BlockSummary, LogFilter, LogQueryRange, LogRecord, parse_quantity

logger = logging.getLogger(__name__)


class RpcClient:
    """Minimal JSON-RPC client for one Monad endpoint.

    Pacing and retries belong to the callers; every method issues exactly one
    request and surfaces failures as they come.
    """

    def __init__(
        self,
        endpoint: str,
        timeout_seconds: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.endpoint = endpoint
        self._ids = itertools.count(1)
        self._client = httpx.AsyncClient(
            timeout=timeout_seconds,
            headers={"accept": "application/json", "content-type": "application/json"},
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def chain_id(self) -> int:
        return parse_quantity(await self._call("eth_chainId", []))

    async def block_number(self) -> int:
        return parse_quantity(await self._call("eth_blockNumber", []))

    async def gas_price(self) -> int:
        return parse_quantity(await self._call("eth_gasPrice", []))

    async def get_block(self, tag: int | str = "latest", full_transactions: bool = False) -> BlockSummary:
        block_ref = hex(tag) if isinstance(tag, int) else tag
        payload = await self._call("eth_getBlockByNumber", [block_ref, full_transactions])
        if not isinstance(payload, dict):
            raise RpcError("eth_getBlockByNumber", f"block not found: {block_ref}")
        return BlockSummary.model_validate(payload)

    async def get_logs(
        self,
        address: str | None,
        from_block: int,
        to_block: int,
        topics: tuple[str | None, ...] | None = None,
    ) -> list[LogRecord]:
        params = LogFilter(address=address, topics=topics).to_params(LogQueryRange(from_block, to_block))
        payload = await self._call("eth_getLogs", [params])
        if not isinstance(payload, list):
            raise RpcError("eth_getLogs", "expected a list of logs")
        return [LogRecord.model_validate(item) for item in payload]

    async def _call(self, method: str, params: list[Any]) -> Any:
        request_id = next(self._ids)
        response = await self._client.post(
            self.endpoint,
            json={"jsonrpc": "2.0", "id": request_id, "method": method, "params": params},
        )
        response.raise_for_status()
        body = response.json()
        if not isinstance(body, dict):
            raise RpcError(method, "malformed response")
        error = body.get("error")
        if error:
            if isinstance(error, dict):
                raise RpcError(method, str(error.get("message") or "unknown error"), code=error.get("code"))
            raise RpcError(method, str(error))
        if "result" not in body:
            raise RpcError(method, "response has no result")
        logger.debug("rpc call completed", extra={"endpoint": self.endpoint, "method": method})
        return body["result"]
