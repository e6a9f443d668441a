import logging
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

DEFAULT_CONTRACT_ADDRESS = "0xde58f2cb3bc62dfb9963f422d0db079b2407a719"
DEFAULT_RPC_URL = "https://bsc-dataseed.binance.org/"


def get_env(key: str, default: Optional[str] = None) -> Optional[str]:
    """
    Prefer KEY over the REACT_APP_KEY name used by the frontend deployment.
    Return default if neither is set.
    """
    return os.getenv(key) or os.getenv(f"REACT_APP_{key}") or default


class Settings(BaseModel):
    rpc_url: str = DEFAULT_RPC_URL
    contract_address: str = DEFAULT_CONTRACT_ADDRESS
    start_block: int = Field(default=0, ge=0)
    data_file: str = "./data.json"
    block_chunk_size: int = Field(default=10_000, gt=0)
    request_delay_ms: int = Field(default=100, ge=0)
    fetch_retries: int = Field(default=3, ge=0)
    retry_backoff: float = Field(default=1.5, ge=1.0)
    rpc_timeout: float = Field(default=60, gt=0)
    sync_interval_seconds: float = Field(default=3600, ge=0)
    token_decimals: int = Field(default=18, ge=0)
    active_referee_threshold: int = Field(default=250, ge=0)
    leaderboard_size: int = Field(default=10, gt=0)
    log_level: str = "INFO"
    port: int = 3001
    cron_secret: Optional[str] = None

    @property
    def active_threshold_units(self) -> int:
        return self.active_referee_threshold * 10 ** self.token_decimals

    @classmethod
    def from_env(cls) -> "Settings":
        raw = {
            "rpc_url": get_env("RPC_URL"),
            "contract_address": get_env("CONTRACT_ADDRESS"),
            "start_block": get_env("START_BLOCK"),
            "data_file": get_env("DATA_FILE"),
            "block_chunk_size": get_env("BLOCK_CHUNK_SIZE"),
            "request_delay_ms": get_env("REQUEST_DELAY_MS"),
            "fetch_retries": get_env("FETCH_RETRIES"),
            "retry_backoff": get_env("RETRY_BACKOFF"),
            "rpc_timeout": get_env("RPC_TIMEOUT"),
            "sync_interval_seconds": get_env("SYNC_INTERVAL_SECONDS"),
            "token_decimals": get_env("TOKEN_DECIMALS"),
            "active_referee_threshold": get_env("ACTIVE_REFEREE_THRESHOLD"),
            "leaderboard_size": get_env("LEADERBOARD_SIZE"),
            "log_level": get_env("LOG_LEVEL"),
            "port": get_env("PORT"),
            "cron_secret": get_env("CRON_SECRET"),
        }
        return cls(**{k: v for k, v in raw.items() if v is not None})


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
