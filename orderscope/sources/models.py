from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from orderscope.errors import ConfigurationError


def parse_quantity(raw: Any) -> int:
    if isinstance(raw, bool):
        raise ValueError("boolean is not a quantity")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        text = raw.strip()
        if text.lower().startswith("0x"):
            return int(text, 16) if len(text) > 2 else 0
        return int(text)
    raise ValueError(f"not a quantity: {raw!r}")


def to_quantity(value: int) -> str:
    return hex(value)


@dataclass(frozen=True, slots=True)
class LogQueryRange:
    from_block: int
    to_block: int

    def __post_init__(self) -> None:
        if self.from_block < 0 or self.to_block < 0:
            raise ConfigurationError(f"block numbers must be >= 0: {self.from_block}-{self.to_block}")
        if self.from_block > self.to_block:
            raise ConfigurationError(f"from_block {self.from_block} > to_block {self.to_block}")

    @property
    def block_count(self) -> int:
        return self.to_block - self.from_block + 1

    def split(self, chunk_size: int) -> Iterator[LogQueryRange]:
        if chunk_size <= 0:
            raise ConfigurationError(f"chunk_size must be > 0, got {chunk_size}")
        current = self.from_block
        while current <= self.to_block:
            upper = min(current + chunk_size - 1, self.to_block)
            yield LogQueryRange(current, upper)
            current = upper + 1


@dataclass(frozen=True, slots=True)
class LogFilter:
    address: str | None = None
    topics: tuple[str | None, ...] | None = None

    def to_params(self, query_range: LogQueryRange) -> dict[str, Any]:
        params: dict[str, Any] = {
            "fromBlock": to_quantity(query_range.from_block),
            "toBlock": to_quantity(query_range.to_block),
        }
        if self.address:
            params["address"] = self.address
        if self.topics is not None:
            params["topics"] = list(self.topics)
        return params


class LogRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    address: str
    topics: tuple[str, ...] = ()
    data: str = "0x"
    block_number: int = Field(alias="blockNumber")
    block_hash: str | None = Field(default=None, alias="blockHash")
    transaction_hash: str | None = Field(default=None, alias="transactionHash")
    transaction_index: int | None = Field(default=None, alias="transactionIndex")
    log_index: int | None = Field(default=None, alias="logIndex")
    removed: bool = False

    @field_validator("block_number", mode="before")
    @classmethod
    def _block_number(cls, raw: Any) -> int:
        return parse_quantity(raw)

    @field_validator("transaction_index", "log_index", mode="before")
    @classmethod
    def _optional_quantity(cls, raw: Any) -> int | None:
        if raw is None:
            return None
        return parse_quantity(raw)

    @field_validator("address")
    @classmethod
    def _address(cls, raw: str) -> str:
        return raw.lower()


class TransactionSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    hash: str
    from_address: str | None = Field(default=None, alias="from")
    to: str | None = None
    input: str = "0x"


class BlockSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    number: int
    hash: str | None = None
    timestamp: int
    gas_used: int = Field(alias="gasUsed")
    gas_limit: int = Field(alias="gasLimit")
    transactions: tuple[str | TransactionSummary, ...] = ()

    @field_validator("number", "timestamp", "gas_used", "gas_limit", mode="before")
    @classmethod
    def _quantity(cls, raw: Any) -> int:
        return parse_quantity(raw)

    @property
    def tx_count(self) -> int:
        return len(self.transactions)
