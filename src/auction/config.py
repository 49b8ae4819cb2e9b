"""
Engine Configuration

Process-level settings for the bidding engine. Room rules (increments,
tiers, timers) are per-room and live in AuctionSettings instead.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass
class EngineConfig:
    """
    Bidding engine configuration.

    Attributes:
        db_path: SQLite database file
        default_timer_seconds: Nomination countdown for rooms without a timer
        busy_timeout_seconds: Longest wait for the database write lock
        state_read_retries: Retries for item state reads on transient errors
        expiry_check_interval: Seconds between expired-item sweeps
        service_name: Service name reported to tracing
        otlp_endpoint: OTLP collector endpoint (tracing disabled if None)
        console_traces: Also print spans to the console
    """

    db_path: Path = Path(".state/auction.db")
    default_timer_seconds: int = 43200  # 12 hours
    busy_timeout_seconds: float = 5.0
    state_read_retries: int = 3
    expiry_check_interval: float = 10.0
    service_name: str = "auction-engine"
    otlp_endpoint: Optional[str] = None
    console_traces: bool = False

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Create config from environment variables"""
        return cls(
            db_path=Path(os.getenv("AUCTION_DB_PATH", ".state/auction.db")),
            default_timer_seconds=int(os.getenv("AUCTION_DEFAULT_TIMER_SECONDS", "43200")),
            busy_timeout_seconds=float(os.getenv("AUCTION_BUSY_TIMEOUT_SECONDS", "5.0")),
            state_read_retries=int(os.getenv("AUCTION_STATE_READ_RETRIES", "3")),
            expiry_check_interval=float(os.getenv("AUCTION_EXPIRY_CHECK_INTERVAL", "10.0")),
            service_name=os.getenv("AUCTION_SERVICE_NAME", "auction-engine"),
            otlp_endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"),
            console_traces=os.getenv("AUCTION_CONSOLE_TRACES", "false").lower() == "true",
        )
