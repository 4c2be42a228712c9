import random
from statistics import fmean, median

import pytest

from orderscope.core.metrics import (
    LiquidationMetrics,
    RcBucket,
    bootstrap_ci,
    calculate_rc,
    compute_cancel_metrics,
    compute_inclusion_metrics,
    compute_liquidation_metrics,
    get_rc_bucket,
    rc_for_block,
)
from orderscope.core.results import (
    ConflictResult,
    ConflictWinner,
    LiquidationResult,
    ProbeResult,
    ProbeStatus,
    Protocol,
)
from orderscope.errors import ConfigurationError
from orderscope.sources.models import BlockSummary


def _probe(seq: int, send_block: int, included_block: int | None, status: ProbeStatus) -> ProbeResult:
    return ProbeResult(
        tx_hash=f"0x{seq:064x}",
        experiment_id="exp001",
        sequence_number=seq,
        protocol=Protocol.UNISWAP,
        resource_address="0xpool",
        send_timestamp=1_700_000_000_000 + seq,
        send_block=send_block,
        included_block=included_block,
        status=status,
    )


def _conflict(idx: int, winner: ConflictWinner) -> ConflictResult:
    return ConflictResult(
        conflict_id=f"c{idx}",
        order_id=f"o{idx}",
        cancel_tx_hash="0x01",
        fill_tx_hash="0x02",
        cancel_send_time=1000,
        fill_send_time=1001,
        winner=winner,
    )


def _liquidation(idx: int, gap: int, closed: bool = True) -> LiquidationResult:
    return LiquidationResult(
        position_id=f"p{idx}",
        first_liquidatable_block=1000,
        actual_liquidation_block=1000 + gap if closed else None,
        gap_blocks=gap,
        rc_during_gap=tuple(0.1 for _ in range(gap)),
    )


class _ScriptedRng:
    def __init__(self, draws: list[int]):
        self.draws = list(draws)

    def randrange(self, n: int) -> int:
        value = self.draws.pop(0)
        assert 0 <= value < n
        return value


def test_calculate_rc() -> None:
    assert calculate_rc(0, 5) == 0.0
    assert calculate_rc(0, 0) == 0.0
    assert calculate_rc(200, 10) == pytest.approx(0.05)


def test_rc_bucket_boundaries_are_half_open() -> None:
    assert get_rc_bucket(0.0) == RcBucket.BASELINE
    assert get_rc_bucket(0.0199999) == RcBucket.BASELINE
    assert get_rc_bucket(0.02) == RcBucket.LOW
    assert get_rc_bucket(0.0999) == RcBucket.LOW
    assert get_rc_bucket(0.10) == RcBucket.MEDIUM
    assert get_rc_bucket(0.25) == RcBucket.HIGH
    assert get_rc_bucket(3.0) == RcBucket.HIGH


def test_rc_for_block_counts_transactions_to_resource() -> None:
    block = BlockSummary.model_validate(
        {
            "number": "0x10",
            "timestamp": "0x1",
            "gasUsed": "0x0",
            "gasLimit": "0x0",
            "transactions": [
                {"hash": "0x1", "to": "0xPool"},
                {"hash": "0x2", "to": "0xpool"},
                {"hash": "0x3", "to": "0xother"},
                {"hash": "0x4", "to": None},
            ],
        }
    )
    assert rc_for_block(block, "0xPOOL") == pytest.approx(0.5)


def test_rc_for_block_needs_full_transactions() -> None:
    block = BlockSummary.model_validate(
        {"number": 1, "timestamp": 1, "gasUsed": 0, "gasLimit": 0, "transactions": ["0xabc"]}
    )
    with pytest.raises(ValueError):
        rc_for_block(block, "0xpool")


def test_inclusion_metrics_empty() -> None:
    metrics = compute_inclusion_metrics([])
    assert metrics.as_dict() == {
        "next_block_inclusion_rate": 0.0,
        "avg_blocks_to_inclusion": 0.0,
        "drop_rate": 0.0,
        "revert_rate": 0.0,
    }


def test_inclusion_metrics_reference_case() -> None:
    metrics = compute_inclusion_metrics(
        [
            _probe(1, 100, 101, ProbeStatus.SUCCESS),
            _probe(2, 100, 103, ProbeStatus.SUCCESS),
            _probe(3, 100, None, ProbeStatus.DROPPED),
        ]
    )
    assert metrics.drop_rate == pytest.approx(1 / 3)
    assert metrics.next_block_inclusion_rate == pytest.approx(0.5)
    assert metrics.avg_blocks_to_inclusion == pytest.approx(2.0)
    assert metrics.revert_rate == 0.0


def test_inclusion_metrics_reverts_count_as_included() -> None:
    metrics = compute_inclusion_metrics(
        [
            _probe(1, 100, 101, ProbeStatus.REVERTED),
            _probe(2, 100, 101, ProbeStatus.SUCCESS),
            _probe(3, 100, None, ProbeStatus.PENDING),
            _probe(4, 100, None, ProbeStatus.REVERTED),
        ]
    )
    assert metrics.revert_rate == pytest.approx(2 / 3)
    assert metrics.next_block_inclusion_rate == pytest.approx(2 / 3)
    assert metrics.avg_blocks_to_inclusion == pytest.approx(1.0)
    assert metrics.drop_rate == 0.0


def test_inclusion_metrics_only_pending() -> None:
    metrics = compute_inclusion_metrics([_probe(1, 10, None, ProbeStatus.PENDING)])
    assert metrics == compute_inclusion_metrics([])


def test_cancel_metrics() -> None:
    assert compute_cancel_metrics([]).as_dict() == {
        "cancel_win_rate": 0.0,
        "fill_win_rate": 0.0,
        "both_reverted_rate": 0.0,
        "unknown_rate": 0.0,
    }
    metrics = compute_cancel_metrics(
        [
            _conflict(1, ConflictWinner.CANCEL),
            _conflict(2, ConflictWinner.CANCEL),
            _conflict(3, ConflictWinner.FILL),
            _conflict(4, ConflictWinner.UNKNOWN),
        ]
    )
    assert metrics.cancel_win_rate == pytest.approx(0.5)
    assert metrics.fill_win_rate == pytest.approx(0.25)
    assert metrics.both_reverted_rate == 0.0
    assert metrics.unknown_rate == pytest.approx(0.25)


def test_liquidation_metrics_lower_median() -> None:
    metrics = compute_liquidation_metrics([_liquidation(i, gap) for i, gap in enumerate([5, 2, 1, 2])])
    assert metrics.mean_gap == pytest.approx(2.5)
    assert metrics.median_gap == 2
    assert metrics.max_gap == 5
    assert metrics.gap_distribution == {1: 1, 2: 2, 5: 1}


def test_liquidation_metrics_even_count_uses_index_n_over_2() -> None:
    metrics = compute_liquidation_metrics([_liquidation(i, gap) for i, gap in enumerate([1, 3])])
    assert metrics.median_gap == 3


def test_liquidation_metrics_empty_and_open_gaps() -> None:
    empty = compute_liquidation_metrics([])
    assert empty.as_dict() == {"mean_gap": 0.0, "median_gap": 0, "max_gap": 0, "gap_distribution": {}}
    metrics = compute_liquidation_metrics([_liquidation(1, 4, closed=False)])
    assert metrics.max_gap == 4


def test_bootstrap_ci_exact_with_scripted_draws() -> None:
    rng = _ScriptedRng([0, 0, 0, 2, 2, 2, 0, 1, 2, 1, 1, 0])
    ci = bootstrap_ci([1.0, 2.0, 3.0], resamples=4, alpha=0.5, rng=rng)
    # Bootstrap means sorted: [1, 5/3, 2, 3]; ranks 1 and 3.
    assert ci.point == pytest.approx(2.0)
    assert ci.lower == pytest.approx(5 / 3)
    assert ci.upper == pytest.approx(3.0)
    assert rng.draws == []


def test_bootstrap_ci_empty_data() -> None:
    assert bootstrap_ci([]).as_dict() == {"lower": 0.0, "upper": 0.0, "point": 0.0}


def test_bootstrap_ci_point_is_plain_statistic() -> None:
    data = [4.0, 1.0, 9.0, 2.0, 7.0]
    for resamples in (1, 10, 200):
        ci = bootstrap_ci(data, statistic=median, resamples=resamples, rng=random.Random(3))
        assert ci.point == median(data)
        assert ci.lower <= ci.upper


def test_bootstrap_ci_is_reproducible_with_seed() -> None:
    data = [float(x) for x in range(20)]
    first = bootstrap_ci(data, resamples=300, rng=random.Random(11))
    second = bootstrap_ci(data, resamples=300, rng=random.Random(11))
    assert first == second


def test_bootstrap_ci_coverage_across_seeded_runs() -> None:
    covered = 0
    runs = 100
    for seed in range(runs):
        sampler = random.Random(1000 + seed)
        data = [sampler.gauss(10.0, 2.0) for _ in range(40)]
        ci = bootstrap_ci(data, statistic=fmean, resamples=300, alpha=0.05, rng=random.Random(seed))
        if ci.lower <= 10.0 <= ci.upper:
            covered += 1
    assert covered / runs >= 0.8


@pytest.mark.parametrize("resamples,alpha", [(0, 0.05), (100, 0.0), (100, 1.0), (100, -0.1)])
def test_bootstrap_ci_rejects_bad_parameters(resamples, alpha) -> None:
    with pytest.raises(ConfigurationError):
        bootstrap_ci([1.0, 2.0], resamples=resamples, alpha=alpha)


def test_liquidation_metrics_default_distribution_is_empty_dict() -> None:
    assert compute_liquidation_metrics([]) == LiquidationMetrics()
    first, second = LiquidationMetrics(), LiquidationMetrics()
    assert first.gap_distribution == {}
    assert first.gap_distribution is not second.gap_distribution
