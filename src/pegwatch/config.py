"""Configuration management for pegwatch."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PEGWATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Detection ──────────────────────────────────────────────────────────────
    depeg_threshold_bps: int = Field(
        default=100,
        description="Absolute deviation (bps) that opens a depeg event"
    )
    min_supply_usd: float = Field(
        default=1_000_000,
        description="Supply floor (USD-equivalent) below which data is ignored"
    )
    stale_backfill_days: int = Field(
        default=7,
        description="Close a trailing backfill event if its last point is older than this"
    )

    # ── Reference rates ────────────────────────────────────────────────────────
    thin_group_size: int = Field(
        default=3,
        description="Peg groups smaller than this are checked against a fallback rate"
    )
    max_fallback_deviation: float = Field(
        default=0.10,
        description="Relative deviation from fallback that rejects a thin-group median"
    )

    # ── Scoring ────────────────────────────────────────────────────────────────
    min_tracking_days: int = Field(default=30, description="History needed for a score")
    severity_cap_days: float = Field(default=90.0, description="Max event duration counted")
    active_penalty_cap: float = Field(default=50.0, description="Max active-depeg penalty")
    active_penalty_divisor_bps: float = Field(
        default=200.0,
        description="Active-depeg penalty = |peak bps| / divisor"
    )
    default_tracking_years: float = Field(
        default=4.0,
        description="Tracking window used by the summary when nothing earlier is known"
    )

    # ── Logging ────────────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", description="Root log level")
    log_json: bool = Field(default=False, description="Render structlog output as JSON")


settings = Settings()
