"""Probe tags: 8-byte markers appended to probe calldata.

A tag packs a 32-bit hash of the experiment id in its high half and the
probe sequence number in its low half. Only the sequence half can be read
back; the experiment half is checked by recomputing the tag for a known
``(experiment_id, sequence)`` pair.

Two experiment ids may share a hash. Tags are only unambiguous among the
experiment ids of one measurement campaign, which are expected to be
distinct.
"""

from __future__ import annotations

TAG_BYTES = 8
_MASK32 = 0xFFFFFFFF
_TAG_HEX_DIGITS = TAG_BYTES * 2


def _to_int32(value: int) -> int:
    value &= _MASK32
    return value - (1 << 32) if value & 0x80000000 else value


def experiment_hash(experiment_id: str) -> int:
    """Stable 31-multiplier string hash over UTF-16 code units, as a non-negative int."""
    value = 0
    units = experiment_id.encode("utf-16-le")
    for idx in range(0, len(units), 2):
        code_unit = units[idx] | (units[idx + 1] << 8)
        value = _to_int32((value << 5) - value + code_unit)
    return abs(value)


def encode(experiment_id: str, sequence: int) -> int:
    exp_half = experiment_hash(experiment_id) & _MASK32
    return (exp_half << 32) | (sequence & _MASK32)


def sequence_of(tag: int) -> int:
    return tag & _MASK32


def matches(tag: int, experiment_id: str, sequence: int) -> bool:
    return tag == encode(experiment_id, sequence)


def to_hex(tag: int) -> str:
    return f"0x{tag:0{_TAG_HEX_DIGITS}x}"


def from_hex(text: str) -> int:
    raw = text[2:] if text.lower().startswith("0x") else text
    if not raw or len(raw) > _TAG_HEX_DIGITS:
        raise ValueError(f"not an 8-byte probe tag: {text!r}")
    return int(raw, 16)


def append_tag(calldata: str, tag: int) -> str:
    body = calldata[2:] if calldata.lower().startswith("0x") else calldata
    return f"0x{body}{tag:0{_TAG_HEX_DIGITS}x}"


def extract_tag(calldata: str) -> int | None:
    body = calldata[2:] if calldata.lower().startswith("0x") else calldata
    if len(body) < _TAG_HEX_DIGITS or len(body) % 2:
        return None
    try:
        return int(body[-_TAG_HEX_DIGITS:], 16)
    except ValueError:
        return None
