from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from orderscope.config import OrderScopeSettings
from orderscope.sources.rpc_client import RpcClient

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CheckResult:
    name: str
    target: str
    ok: bool
    detail: str
    skipped: bool = False

    def render(self) -> str:
        status = "skip" if self.skipped else ("ok" if self.ok else "fail")
        return f"{self.name}:{status} target={self.target} {self.detail}".rstrip()


ClientFactory = Callable[[str], RpcClient]


async def run_sanity_check(
    settings: OrderScopeSettings,
    client_factory: ClientFactory | None = None,
) -> list[CheckResult]:
    """Connectivity checks to run before an experiment; a failing check never stops the rest."""
    factory = client_factory or (lambda url: RpcClient(url, timeout_seconds=settings.rpc_timeout_seconds))
    read = factory(settings.rpc_read)
    write = factory(settings.rpc_write)
    checks: list[CheckResult] = []
    try:
        checks.append(await _check("read_rpc", settings.rpc_read, lambda: _describe_head(read)))
        checks.append(await _check("write_rpc", settings.rpc_write, lambda: _describe_head(write)))
        checks.append(await _check("gas_price", settings.rpc_read, lambda: _describe_gas(read)))
        checks.append(await _check("latest_block", settings.rpc_read, lambda: _describe_block(read)))
        checks.append(
            CheckResult(
                name="websocket",
                target=settings.wss_endpoint,
                ok=True,
                detail="requires an active subscription",
                skipped=True,
            )
        )
    finally:
        await read.close()
        await write.close()
    return checks


async def _check(name: str, target: str, probe: Callable[[], Awaitable[str]]) -> CheckResult:
    try:
        detail = await probe()
    except Exception as exc:
        logger.warning("sanity check failed", extra={"check": name, "endpoint": target, "error": exc})
        return CheckResult(name=name, target=target, ok=False, detail=str(exc) or exc.__class__.__name__)
    return CheckResult(name=name, target=target, ok=True, detail=detail)


async def _describe_head(client: RpcClient) -> str:
    chain_id = await client.chain_id()
    block_number = await client.block_number()
    return f"chain_id={chain_id} latest_block={block_number}"


async def _describe_gas(client: RpcClient) -> str:
    gas_price = await client.gas_price()
    return f"gas_price_wei={gas_price} gas_price_gwei={gas_price / 1e9:g}"


async def _describe_block(client: RpcClient) -> str:
    block = await client.get_block("latest")
    ts = datetime.fromtimestamp(block.timestamp, tz=timezone.utc).isoformat()
    return (
        f"number={block.number} timestamp={ts} transactions={block.tx_count} "
        f"gas_used={block.gas_used} gas_limit={block.gas_limit}"
    )
