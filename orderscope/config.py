from __future__ import annotations

from functools import lru_cache

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RateLimitConfig(BaseModel):
    rate: int = Field(gt=0)
    burst: int = Field(gt=0)


class RetryConfig(BaseModel):
    min_seconds: float = 0.5
    max_seconds: float = 20.0
    attempts: int = 5


class LogFetchConfig(BaseModel):
    chunk_size: int = Field(gt=0)
    batch_delay_sec: float = Field(ge=0)


class OrderScopeSettings(BaseSettings):
    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    log_level: str = Field(default="INFO")

    rpc_write: str = Field(default="https://rpc3.monad.xyz")
    rpc_read: str = Field(default="https://rpc-mainnet.monadinfra.com")
    # Bulk logs go here when the primary read endpoint rate-limits.
    rpc_read_backup: str = Field(default="https://rpc1.monad.xyz")
    wss_endpoint: str = Field(default="wss://rpc3.monad.xyz")
    rpc_timeout_seconds: float = Field(default=20.0, gt=0)

    max_rps: int = Field(default=25, gt=0)
    read_max_rps: int = Field(default=25, gt=0)
    read_backup_max_rps: int = Field(default=25, gt=0)
    log_block_chunk_size: int = Field(default=100, gt=0)
    batch_delay_ms: int = Field(default=500, ge=0)

    retry_min_seconds: float = Field(default=0.5, gt=0)
    retry_max_seconds: float = Field(default=20.0, gt=0)
    retry_attempts: int = Field(default=5, ge=1)

    experiment_id: str = Field(default="exp001")

    uniswap_pool_address: str = Field(default="")
    kuru_market_address: str = Field(default="")
    monday_perp_address: str = Field(default="")
    dummy_contract_address: str = Field(default="")

    @property
    def retry(self) -> RetryConfig:
        return RetryConfig(
            min_seconds=self.retry_min_seconds,
            max_seconds=self.retry_max_seconds,
            attempts=self.retry_attempts,
        )

    @property
    def log_fetch(self) -> LogFetchConfig:
        return LogFetchConfig(
            chunk_size=self.log_block_chunk_size,
            batch_delay_sec=self.batch_delay_ms / 1000.0,
        )

    @property
    def contract_addresses(self) -> dict[str, str]:
        addresses = {
            "uniswap": self.uniswap_pool_address,
            "kuru": self.kuru_market_address,
            "monday": self.monday_perp_address,
            "dummy": self.dummy_contract_address,
        }
        return {name: value.strip() for name, value in addresses.items() if value and value.strip()}

    def endpoint(self, name: str) -> str:
        endpoint_map = {
            "read": self.rpc_read,
            "read_backup": self.rpc_read_backup,
            "write": self.rpc_write,
        }
        return endpoint_map[name]

    def rate_limit(self, endpoint: str) -> RateLimitConfig:
        source_map = {
            "read": RateLimitConfig(rate=self.read_max_rps, burst=self.read_max_rps),
            "read_backup": RateLimitConfig(rate=self.read_backup_max_rps, burst=self.read_backup_max_rps),
            "write": RateLimitConfig(rate=self.max_rps, burst=self.max_rps),
        }
        return source_map[endpoint]


@lru_cache(maxsize=1)
def load_settings() -> OrderScopeSettings:
    return OrderScopeSettings()
