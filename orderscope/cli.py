from __future__ import annotations

import asyncio
import json
import random
import signal
import sys
from pathlib import Path
from typing import Annotated, Any

import typer

from orderscope.config import OrderScopeSettings, load_settings
from orderscope.core import probe_tag
from orderscope.core.metrics import (
    bootstrap_ci,
    compute_cancel_metrics,
    compute_inclusion_metrics,
    compute_liquidation_metrics,
    gaps_of,
)
from orderscope.core.results import ConflictResult, LiquidationResult, ProbeResult
from orderscope.errors import ConfigurationError, FetchCancelled
from orderscope.harvest.log_fetcher import ChunkedLogFetcher
from orderscope.infra.rate_limiter import AsyncTokenBucket
from orderscope.logging import setup_logging
from orderscope.ops.log_backfill import LogBackfill
from orderscope.ops.sanity import run_sanity_check
from orderscope.sources.models import LogFilter, LogQueryRange, LogRecord
from orderscope.sources.rpc_client import RpcClient

app = typer.Typer(help="Monad ordering-fairness measurement CLI.")


def _ensure_windows_selector_loop() -> None:
    if sys.platform.startswith("win"):
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


@app.command("sanity-check")
def sanity_check() -> None:
    """Check RPC connectivity before running experiments."""
    settings = load_settings()
    setup_logging(settings.log_level)
    _ensure_windows_selector_loop()

    async def _run() -> None:
        checks = await run_sanity_check(settings)
        typer.echo("\n".join(check.render() for check in checks))
        if not all(check.ok for check in checks):
            raise typer.Exit(code=1)

    asyncio.run(_run())


@app.command("fetch-logs")
def fetch_logs(
    from_block: Annotated[int, typer.Option("--from-block", min=0)],
    to_block: Annotated[int, typer.Option("--to-block", min=0)],
    address: Annotated[str, typer.Option("--address", help="Contract address filter")] = "",
    contract: Annotated[
        str, typer.Option("--contract", help="Named contract from settings: uniswap, kuru, monday or dummy")
    ] = "",
    topic: Annotated[list[str] | None, typer.Option("--topic", help="Topic filter by position, '-' for any")] = None,
    output: Annotated[str, typer.Option("--output", help="Target NDJSON file")] = "",
    use_backup: Annotated[bool, typer.Option("--backup/--no-backup", help="Fall back to the backup read RPC")] = True,
) -> None:
    """Download logs for a block range in rate-limited chunks."""
    settings = load_settings()
    if contract and address:
        raise typer.BadParameter("use either --address or --contract, not both")
    if contract:
        address = _contract_address(settings, contract)
    setup_logging(settings.log_level)
    _ensure_windows_selector_loop()
    query_range = LogQueryRange(from_block, to_block)
    topics = tuple(None if item == "-" else item for item in topic) if topic else None
    log_filter = LogFilter(address=address or None, topics=topics)
    target = Path(output) if output else Path("exports") / f"logs_{from_block}_{to_block}.ndjson"

    async def _run() -> None:
        primary_client = _client(settings, "read")
        backup_client = _client(settings, "read_backup") if use_backup else None
        backfill = LogBackfill(
            primary=_fetcher(settings, primary_client, "read"),
            backup=_fetcher(settings, backup_client, "read_backup") if backup_client else None,
            retry=settings.retry,
        )
        stop_event = asyncio.Event()
        _install_signal_handlers(stop_event)
        try:
            result = await backfill.run(query_range, log_filter, cancel_event=stop_event)
            _write_ndjson(target, result.logs)
            typer.echo(f"fetch-logs completed: logs={len(result.logs)} sources={','.join(result.sources)}")
            typer.echo(f"output={target}")
        except FetchCancelled as exc:
            _write_ndjson(target, exc.partial)
            typer.echo(f"fetch-logs cancelled before block {exc.next_range.from_block}: logs={len(exc.partial)}")
            typer.echo(f"output={target}")
            raise typer.Exit(code=130) from exc
        finally:
            await primary_client.close()
            if backup_client is not None:
                await backup_client.close()

    asyncio.run(_run())


@app.command("probe-tag")
def probe_tag_command(
    experiment_id: Annotated[str, typer.Option("--experiment-id")] = "",
    sequence: Annotated[int, typer.Option("--sequence", min=0)] = 0,
    calldata: Annotated[str, typer.Option("--calldata", help="Check this calldata for the tag instead")] = "",
) -> None:
    """Print the probe tag for an experiment sequence, or check calldata against it."""
    settings = load_settings()
    exp_id = experiment_id or settings.experiment_id
    tag = probe_tag.encode(exp_id, sequence)
    if not calldata:
        typer.echo(probe_tag.to_hex(tag))
        return
    found = probe_tag.extract_tag(calldata)
    if found is None:
        typer.echo("no tag present")
        raise typer.Exit(code=1)
    matched = probe_tag.matches(found, exp_id, sequence)
    typer.echo(f"tag={probe_tag.to_hex(found)} sequence={probe_tag.sequence_of(found)} matches={matched}")
    if not matched:
        raise typer.Exit(code=1)


@app.command("metrics")
def metrics(
    probes: Annotated[str, typer.Option("--probes", help="JSON array of probe results")] = "",
    conflicts: Annotated[str, typer.Option("--conflicts", help="JSON array of conflict results")] = "",
    liquidations: Annotated[str, typer.Option("--liquidations", help="JSON array of liquidation results")] = "",
    resamples: Annotated[int, typer.Option("--resamples", min=1)] = 10_000,
    alpha: Annotated[float, typer.Option("--alpha", min=0.0, max=1.0)] = 0.05,
    seed: Annotated[int | None, typer.Option("--seed")] = None,
) -> None:
    """Compute inclusion, cancel/fill and liquidation metrics from recorded results."""
    if not (probes or conflicts or liquidations):
        raise typer.BadParameter("at least one of --probes, --conflicts, --liquidations is required")
    try:
        report = _metrics_report(probes, conflicts, liquidations, resamples, alpha, random.Random(seed))
    except ConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc

    typer.echo(json.dumps(report, indent=2, sort_keys=True))


def _metrics_report(
    probes: str,
    conflicts: str,
    liquidations: str,
    resamples: int,
    alpha: float,
    rng: random.Random,
) -> dict[str, Any]:
    report: dict[str, Any] = {}
    if probes:
        probe_rows = [ProbeResult.from_dict(row) for row in _load_rows(probes)]
        report["inclusion"] = compute_inclusion_metrics(probe_rows).as_dict()
        latencies = [
            float(r.included_block - r.send_block)
            for r in probe_rows
            if r.is_included and r.included_block is not None
        ]
        report["inclusion"]["blocks_to_inclusion_ci"] = bootstrap_ci(
            latencies, resamples=resamples, alpha=alpha, rng=rng
        ).as_dict()
    if conflicts:
        conflict_rows = [ConflictResult.from_dict(row) for row in _load_rows(conflicts)]
        report["cancel"] = compute_cancel_metrics(conflict_rows).as_dict()
    if liquidations:
        liquidation_rows = [LiquidationResult.from_dict(row) for row in _load_rows(liquidations)]
        report["liquidation"] = compute_liquidation_metrics(liquidation_rows).as_dict()
        report["liquidation"]["mean_gap_ci"] = bootstrap_ci(
            [float(gap) for gap in gaps_of(liquidation_rows)], resamples=resamples, alpha=alpha, rng=rng
        ).as_dict()
    return report


def _contract_address(settings: OrderScopeSettings, name: str) -> str:
    addresses = settings.contract_addresses
    if name not in addresses:
        configured = ", ".join(sorted(addresses)) or "none"
        raise typer.BadParameter(f"no address configured for contract {name!r} (configured: {configured})")
    return addresses[name]


def _client(settings: OrderScopeSettings, endpoint: str) -> RpcClient:
    return RpcClient(settings.endpoint(endpoint), timeout_seconds=settings.rpc_timeout_seconds)


def _fetcher(settings: OrderScopeSettings, client: RpcClient, endpoint: str) -> ChunkedLogFetcher:
    limiter = AsyncTokenBucket.from_config(settings.rate_limit(endpoint))
    return ChunkedLogFetcher.from_settings(client, limiter, settings)


def _load_rows(path: str) -> list[dict[str, Any]]:
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, list):
        raise typer.BadParameter(f"{path} must contain a JSON array")
    return payload


def _write_ndjson(path: Path, logs: list[LogRecord]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        for log in logs:
            fh.write(log.model_dump_json())
            fh.write("\n")


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    try:
        loop = asyncio.get_running_loop()
        loop.add_signal_handler(signal.SIGINT, stop_event.set)
        loop.add_signal_handler(signal.SIGTERM, stop_event.set)
    except NotImplementedError:
        return


if __name__ == "__main__":
    app()
