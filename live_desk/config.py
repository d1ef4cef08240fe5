"""Pydantic configuration models and loader (JSON file + environment overrides)."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from .types import FeedId

DEFAULT_BASE_URL = "http://localhost:18080"


class PollIntervals(BaseModel):
    """Per-feed polling cadence in seconds."""

    market: float = Field(default=3.0, gt=0.0, description="GET /market")
    ticks: float = Field(default=2.0, gt=0.0, description="GET /market/data")
    status: float = Field(default=5.0, gt=0.0, description="GET /market/status")
    book: float = Field(default=2.0, gt=0.0, description="GET /orderbook")
    trades: float = Field(default=3.0, gt=0.0, description="GET /trades")
    statistics: float = Field(default=10.0, gt=0.0, description="GET /statistics")

    def for_feed(self, feed: FeedId) -> float:
        return float(getattr(self, feed.value))


class RetentionConfig(BaseModel):
    """Bounds on what the reconciler keeps between cycles."""

    tick_window: int = Field(
        default=20,
        ge=1,
        description="Most recent ticks kept for display, independent of the engine's window",
    )
    trade_retention: int = Field(
        default=50,
        ge=1,
        description="Hard cap on retained trades (oldest evicted first)",
    )
    order_history: int = Field(
        default=50,
        ge=1,
        description="Terminal orders kept so 'recently filled' can render before eviction",
    )
    highlight_ttl: float = Field(
        default=2.0,
        ge=0.0,
        description="Seconds a change-set stays active for highlight rendering",
    )


class DeskConfig(BaseModel):
    """Root configuration."""

    base_url: str = Field(default=DEFAULT_BASE_URL, min_length=1)
    book_levels: int = Field(default=10, ge=1, le=1000, description="Levels per side for /orderbook")
    status_failure_threshold: int = Field(
        default=3,
        ge=1,
        description="Consecutive status poll failures before the desk reports disconnected",
    )
    queue_size: int = Field(default=32, ge=1, description="UI view-model queue capacity")
    intervals: PollIntervals = Field(default_factory=PollIntervals)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)


def load_config(config_path: str | None = None) -> DeskConfig:
    """
    Load configuration with environment variable overrides.

    Priority: env vars > config file > defaults. Unlike a required config
    file, a missing default path simply means "use defaults"; an explicitly
    named file that does not exist is an error.

    Raises:
        FileNotFoundError: If an explicitly named config file doesn't exist
        json.JSONDecodeError: If the config file has invalid JSON
        pydantic.ValidationError: If config values are invalid
    """
    explicit = config_path is not None or "LIVE_DESK_CONFIG_PATH" in os.environ
    if config_path is None:
        config_path = os.environ.get("LIVE_DESK_CONFIG_PATH", "live_desk.json")

    config_data: dict[str, Any] = {}
    config_file = Path(config_path)
    if config_file.exists():
        with open(config_file) as f:
            config_data = json.load(f)
    elif explicit:
        raise FileNotFoundError(f"Config file not found: {config_file}")

    # Format: LIVE_DESK_BASE_URL, LIVE_DESK_BOOK_LEVELS, ...
    if base_url := os.environ.get("LIVE_DESK_BASE_URL"):
        config_data["base_url"] = base_url

    if levels := os.environ.get("LIVE_DESK_BOOK_LEVELS"):
        config_data["book_levels"] = int(levels)

    if retention := os.environ.get("LIVE_DESK_TRADE_RETENTION"):
        config_data.setdefault("retention", {})["trade_retention"] = int(retention)

    return DeskConfig(**config_data)
