"""Contention and fairness metrics over observed probe outcomes.

Everything here is a pure function of its inputs. Rates whose denominator
is empty are reported as 0 rather than NaN.
"""

from __future__ import annotations

import math
import random
from collections import Counter
from collections.abc import Callable, Iterable, Sequence
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from statistics import fmean
from typing import Any

from orderscope.core.results import ConflictResult, ConflictWinner, LiquidationResult, ProbeResult, ProbeStatus
from orderscope.errors import ConfigurationError
from orderscope.sources.models import BlockSummary, TransactionSummary


class RcBucket(StrEnum):
    BASELINE = "baseline"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True, slots=True)
class RcBucketBounds:
    min: float
    max: float


# Each bucket holds [min, max); the high bucket is unbounded above in get_rc_bucket.
RC_BUCKETS: dict[RcBucket, RcBucketBounds] = {
    RcBucket.BASELINE: RcBucketBounds(min=0.0, max=0.02),
    RcBucket.LOW: RcBucketBounds(min=0.02, max=0.10),
    RcBucket.MEDIUM: RcBucketBounds(min=0.10, max=0.25),
    RcBucket.HIGH: RcBucketBounds(min=0.25, max=1.0),
}


@dataclass(frozen=True, slots=True)
class InclusionMetrics:
    next_block_inclusion_rate: float = 0.0
    avg_blocks_to_inclusion: float = 0.0
    drop_rate: float = 0.0
    revert_rate: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class CancelMetrics:
    cancel_win_rate: float = 0.0
    fill_win_rate: float = 0.0
    both_reverted_rate: float = 0.0
    unknown_rate: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class LiquidationMetrics:
    mean_gap: float = 0.0
    median_gap: int = 0
    max_gap: int = 0
    gap_distribution: dict[int, int] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class ConfidenceInterval:
    lower: float
    upper: float
    point: float

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def calculate_rc(block_tx_count: int, tx_touching_resource: int) -> float:
    """Share of a block's transactions that touch one resource; 0 for an empty block."""
    if block_tx_count == 0:
        return 0.0
    return tx_touching_resource / block_tx_count


def rc_for_block(block: BlockSummary, resource_address: str) -> float:
    target = resource_address.lower()
    touching = 0
    for tx in block.transactions:
        if not isinstance(tx, TransactionSummary):
            raise ValueError(f"block {block.number} was fetched without full transactions")
        if tx.to is not None and tx.to.lower() == target:
            touching += 1
    return calculate_rc(block.tx_count, touching)


def get_rc_bucket(rc: float) -> RcBucket:
    if rc < RC_BUCKETS[RcBucket.BASELINE].max:
        return RcBucket.BASELINE
    if rc < RC_BUCKETS[RcBucket.LOW].max:
        return RcBucket.LOW
    if rc < RC_BUCKETS[RcBucket.MEDIUM].max:
        return RcBucket.MEDIUM
    return RcBucket.HIGH


def compute_inclusion_metrics(results: Sequence[ProbeResult]) -> InclusionMetrics:
    included = [r for r in results if r.is_included]
    reverted = [r for r in included if r.status == ProbeStatus.REVERTED]
    dropped = [r for r in results if r.status == ProbeStatus.DROPPED]

    next_block = [r for r in included if r.included_block is not None and r.included_block == r.send_block + 1]
    blocks_to_inclusion = [r.included_block - r.send_block for r in included if r.included_block is not None]

    return InclusionMetrics(
        next_block_inclusion_rate=_rate(len(next_block), len(included)),
        avg_blocks_to_inclusion=fmean(blocks_to_inclusion) if blocks_to_inclusion else 0.0,
        drop_rate=_rate(len(dropped), len(results)),
        revert_rate=_rate(len(reverted), len(included)),
    )


def compute_cancel_metrics(results: Sequence[ConflictResult]) -> CancelMetrics:
    total = len(results)
    if total == 0:
        return CancelMetrics()
    counts = Counter(r.winner for r in results)
    return CancelMetrics(
        cancel_win_rate=counts[ConflictWinner.CANCEL] / total,
        fill_win_rate=counts[ConflictWinner.FILL] / total,
        both_reverted_rate=counts[ConflictWinner.BOTH_REVERTED] / total,
        unknown_rate=counts[ConflictWinner.UNKNOWN] / total,
    )


def compute_liquidation_metrics(results: Sequence[LiquidationResult]) -> LiquidationMetrics:
    if not results:
        return LiquidationMetrics()
    gaps = sorted(r.gap_blocks for r in results)
    # Even-length inputs take the element at index n // 2, no interpolation.
    return LiquidationMetrics(
        mean_gap=fmean(gaps),
        median_gap=gaps[len(gaps) // 2],
        max_gap=gaps[-1],
        gap_distribution=dict(sorted(Counter(gaps).items())),
    )


def bootstrap_ci(
    data: Sequence[float],
    statistic: Callable[[Sequence[float]], float] = fmean,
    resamples: int = 10_000,
    alpha: float = 0.05,
    rng: random.Random | None = None,
) -> ConfidenceInterval:
    """Percentile bootstrap interval for ``statistic`` at level ``1 - alpha``.

    Each of ``resamples`` bootstrap samples has ``len(data)`` elements drawn
    uniformly with replacement via ``rng.randrange``. The bounds are the
    sorted bootstrap statistics at ranks ``floor(alpha / 2 * resamples)`` and
    ``floor((1 - alpha / 2) * resamples)``. Pass a seeded ``random.Random``
    for reproducible intervals; the default is an unseeded one.

    Empty ``data`` gives an all-zero interval.
    """
    if resamples < 1:
        raise ConfigurationError(f"resamples must be >= 1, got {resamples}")
    if not 0.0 < alpha < 1.0:
        raise ConfigurationError(f"alpha must be in (0, 1), got {alpha}")
    if not data:
        return ConfidenceInterval(lower=0.0, upper=0.0, point=0.0)

    rng = rng or random.Random()
    values = list(data)
    n = len(values)
    point = statistic(values)
    distribution = sorted(
        statistic([values[rng.randrange(n)] for _ in range(n)]) for _ in range(resamples)
    )

    lower_idx = math.floor((alpha / 2) * resamples)
    upper_idx = min(math.floor((1 - alpha / 2) * resamples), resamples - 1)
    return ConfidenceInterval(lower=distribution[lower_idx], upper=distribution[upper_idx], point=point)


def gaps_of(results: Iterable[LiquidationResult], *, include_virtual: bool = True) -> list[int]:
    return [r.gap_blocks for r in results if include_virtual or not r.is_virtual]


def _rate(count: int, total: int) -> float:
    if total == 0:
        return 0.0
    return count / total
