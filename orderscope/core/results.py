from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any

from orderscope.sources.models import parse_quantity


class Protocol(StrEnum):
    UNISWAP = "uniswap"
    KURU = "kuru"
    MONDAY = "monday"
    DUMMY = "dummy"


class ProbeStatus(StrEnum):
    PENDING = "pending"
    SUCCESS = "success"
    REVERTED = "reverted"
    DROPPED = "dropped"


class ConflictWinner(StrEnum):
    CANCEL = "cancel"
    FILL = "fill"
    BOTH_REVERTED = "both_reverted"
    UNKNOWN = "unknown"


@dataclass(slots=True, frozen=True)
class ProbeResult:
    tx_hash: str
    experiment_id: str
    sequence_number: int
    protocol: Protocol
    resource_address: str
    send_timestamp: int
    send_block: int
    included_block: int | None = None
    gas_used: int | None = None
    status: ProbeStatus = ProbeStatus.PENDING
    rc_at_inclusion: float | None = None

    @property
    def is_included(self) -> bool:
        return self.status in (ProbeStatus.SUCCESS, ProbeStatus.REVERTED)

    def with_outcome(
        self,
        status: ProbeStatus,
        *,
        included_block: int | None = None,
        gas_used: int | None = None,
        rc_at_inclusion: float | None = None,
    ) -> ProbeResult:
        if self.status != ProbeStatus.PENDING:
            raise ValueError(f"probe {self.tx_hash} already resolved as {self.status}")
        if status == ProbeStatus.PENDING:
            raise ValueError("outcome must be a terminal status")
        return replace(
            self,
            status=status,
            included_block=included_block,
            gas_used=gas_used,
            rc_at_inclusion=rc_at_inclusion,
        )

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ProbeResult:
        return cls(
            tx_hash=str(_pick(payload, "txHash", "tx_hash")),
            experiment_id=str(_pick(payload, "experimentId", "experiment_id")),
            sequence_number=int(_pick(payload, "sequenceNumber", "sequence_number")),
            protocol=Protocol(_pick(payload, "protocol")),
            resource_address=str(_pick(payload, "resourceAddress", "resource_address")),
            send_timestamp=int(_pick(payload, "sendTimestamp", "send_timestamp")),
            send_block=parse_quantity(_pick(payload, "sendBlock", "send_block")),
            included_block=_optional_quantity(_pick(payload, "includedBlock", "included_block", default=None)),
            gas_used=_optional_quantity(_pick(payload, "gasUsed", "gas_used", default=None)),
            status=ProbeStatus(_pick(payload, "status", default=ProbeStatus.PENDING.value)),
            rc_at_inclusion=_optional_float(_pick(payload, "rcAtInclusion", "rc_at_inclusion", default=None)),
        )


@dataclass(slots=True, frozen=True)
class ConflictResult:
    conflict_id: str
    order_id: str
    cancel_tx_hash: str
    fill_tx_hash: str
    cancel_send_time: int
    fill_send_time: int
    cancel_block: int | None = None
    fill_block: int | None = None
    winner: ConflictWinner = ConflictWinner.UNKNOWN
    rc_at_resolution: float | None = None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ConflictResult:
        return cls(
            conflict_id=str(_pick(payload, "conflictId", "conflict_id")),
            order_id=str(_pick(payload, "orderId", "order_id")),
            cancel_tx_hash=str(_pick(payload, "cancelTxHash", "cancel_tx_hash")),
            fill_tx_hash=str(_pick(payload, "fillTxHash", "fill_tx_hash")),
            cancel_send_time=int(_pick(payload, "cancelSendTime", "cancel_send_time")),
            fill_send_time=int(_pick(payload, "fillSendTime", "fill_send_time")),
            cancel_block=_optional_quantity(_pick(payload, "cancelBlock", "cancel_block", default=None)),
            fill_block=_optional_quantity(_pick(payload, "fillBlock", "fill_block", default=None)),
            winner=ConflictWinner(_pick(payload, "winner", default=ConflictWinner.UNKNOWN.value)),
            rc_at_resolution=_optional_float(_pick(payload, "rcAtResolution", "rc_at_resolution", default=None)),
        )


@dataclass(slots=True, frozen=True)
class LiquidationResult:
    """Blocks between a position becoming liquidatable and its liquidation.

    While ``actual_liquidation_block`` is ``None`` the gap is still open and
    ``gap_blocks`` counts the blocks observed so far.
    """

    position_id: str
    first_liquidatable_block: int
    actual_liquidation_block: int | None
    gap_blocks: int
    rc_during_gap: tuple[float, ...] = ()
    is_virtual: bool = False

    def __post_init__(self) -> None:
        if self.actual_liquidation_block is None:
            return
        expected = self.actual_liquidation_block - self.first_liquidatable_block
        if self.gap_blocks != expected:
            raise ValueError(
                f"position {self.position_id}: gap_blocks={self.gap_blocks} but blocks differ by {expected}"
            )

    @property
    def is_open(self) -> bool:
        return self.actual_liquidation_block is None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> LiquidationResult:
        first = parse_quantity(_pick(payload, "firstLiquidatableBlock", "first_liquidatable_block"))
        actual = _optional_quantity(_pick(payload, "actualLiquidationBlock", "actual_liquidation_block", default=None))
        gap = _pick(payload, "gapBlocks", "gap_blocks", default=None)
        if gap is None:
            if actual is None:
                raise ValueError("open liquidation gap needs gapBlocks")
            gap = actual - first
        return cls(
            position_id=str(_pick(payload, "positionId", "position_id")),
            first_liquidatable_block=first,
            actual_liquidation_block=actual,
            gap_blocks=int(gap),
            rc_during_gap=tuple(float(x) for x in _pick(payload, "rcDuringGap", "rc_during_gap", default=[])),
            is_virtual=bool(_pick(payload, "isVirtual", "is_virtual", default=False)),
        )


_MISSING = object()


def _pick(payload: dict[str, Any], *keys: str, default: Any = _MISSING) -> Any:
    for key in keys:
        if key in payload:
            return payload[key]
    if default is _MISSING:
        raise KeyError(keys[0])
    return default


def _optional_quantity(raw: Any) -> int | None:
    if raw is None:
        return None
    return parse_quantity(raw)


def _optional_float(raw: Any) -> float | None:
    if raw is None:
        return None
    return float(raw)
