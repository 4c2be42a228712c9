from __future__ import annotations

import asyncio
import sys
from typing import Any

import pytest

from orderscope.sources.models import LogRecord

if sys.platform.startswith("win"):
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


class FakeClock:
    """Monotonic clock whose sleep advances time instead of waiting."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_log(block_number: int, log_index: int = 0, address: str = "0x00000000000000000000000000000000000000aa") -> LogRecord:
    payload: dict[str, Any] = {
        "address": address,
        "topics": ["0x" + "11" * 32],
        "data": "0x",
        "blockNumber": hex(block_number),
        "blockHash": "0x" + f"{block_number:064x}",
        "transactionHash": "0x" + f"{block_number * 1000 + log_index:064x}",
        "transactionIndex": hex(log_index),
        "logIndex": hex(log_index),
        "removed": False,
    }
    return LogRecord.model_validate(payload)
