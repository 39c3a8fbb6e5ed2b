"""Readiness state synchronization configuration."""

from pydantic import Field
from pydantic_settings import BaseSettings


class StateConfig(BaseSettings):
    """Settle delay, convergence polling and periodic refresh settings."""

    settle_delay_ms: int = Field(default=500, ge=0, le=10000, alias="settle_delay_ms")
    convergence_poll_enabled: bool = Field(
        default=False, alias="convergence_poll_enabled"
    )
    convergence_max_attempts: int = Field(
        default=5, ge=1, le=50, alias="convergence_max_attempts"
    )
    state_poll_interval_seconds: float = Field(
        default=30.0, ge=0.0, le=3600.0, alias="state_poll_interval_seconds"
    )
    track_retry_attempts: int = Field(default=10, ge=1, le=50, alias="track_retry_attempts")
    track_retry_base_delay_ms: int = Field(
        default=500, ge=0, le=10000, alias="track_retry_base_delay_ms"
    )

    class Config:
        env_prefix = ""
        extra = "ignore"
