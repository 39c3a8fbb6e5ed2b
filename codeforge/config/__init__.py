"""Configuration management for the CodeForge container core.

Settings are read from environment variables prefixed with ``CODEFORGE_``
and from an optional ``.env`` file.

Usage:
    from codeforge.config import settings

    # Grouped access
    settings.docker.docker_command
    settings.state.settle_delay_ms

    # Flat access
    settings.docker_command
    settings.settle_delay_ms
"""

from typing import Annotated, List, Optional

import structlog
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .api import APIConfig, LoggingConfig
from .docker import DockerConfig
from .state import StateConfig


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="CODEFORGE_",
        case_sensitive=False,
        extra="ignore",
    )

    # Workspace served by the control API (defaults to the working directory)
    workspace_path: Optional[str] = Field(default=None)

    # Docker CLI
    docker_command: str = Field(default="docker", min_length=1)
    default_shell: str = Field(default="/bin/bash", min_length=1)
    remove_containers_after_run: bool = Field(default=True)
    mount_workspace: bool = Field(default=True)
    additional_docker_run_args: Annotated[List[str], NoDecode] = Field(default_factory=list)
    base_image: Optional[str] = Field(
        default=None,
        description="Image pulled and tagged when the workspace has no Dockerfile",
    )
    stop_timeout_seconds: int = Field(default=10, ge=0, le=300)
    build_timeout_seconds: int = Field(default=600, ge=10, le=7200)
    command_timeout_seconds: int = Field(default=30, ge=1, le=600)

    # Readiness state
    settle_delay_ms: int = Field(
        default=500,
        ge=0,
        le=10000,
        description="Delay before re-synchronizing after a dispatched command",
    )
    convergence_poll_enabled: bool = Field(
        default=False,
        description="Poll until two consecutive snapshots agree instead of a single delayed refresh",
    )
    convergence_max_attempts: int = Field(default=5, ge=1, le=50)
    state_poll_interval_seconds: float = Field(
        default=30.0,
        ge=0.0,
        le=3600.0,
        description="Periodic refresh interval (0 disables polling)",
    )
    track_retry_attempts: int = Field(default=10, ge=1, le=50)
    track_retry_base_delay_ms: int = Field(default=500, ge=0, le=10000)

    # Control API
    api_host: str = Field(default="127.0.0.1")
    api_port: int = Field(default=8765, ge=1, le=65535)
    api_debug: bool = Field(default=False)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Upper-case the level and reject unknown names."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        fmt = v.lower()
        if fmt not in {"json", "console"}:
            raise ValueError("log_format must be 'json' or 'console'")
        return fmt

    @field_validator("additional_docker_run_args", mode="before")
    @classmethod
    def parse_run_args(cls, v):
        """Accept a whitespace separated string as well as a list."""
        if isinstance(v, str):
            return v.split()
        return v

    @field_validator("docker_command")
    @classmethod
    def warn_relative_docker_command(cls, v: str) -> str:
        if "/" in v and not v.startswith("/"):
            structlog.get_logger("config").warning(
                "docker_command is a relative path; it resolves against the working directory",
                docker_command=v,
            )
        return v

    # ========================================================================
    # GROUPED CONFIG ACCESS
    # ========================================================================

    @property
    def docker(self) -> DockerConfig:
        """Access Docker CLI configuration group."""
        return DockerConfig(
            docker_command=self.docker_command,
            default_shell=self.default_shell,
            remove_containers_after_run=self.remove_containers_after_run,
            mount_workspace=self.mount_workspace,
            additional_docker_run_args=list(self.additional_docker_run_args),
            base_image=self.base_image,
            stop_timeout_seconds=self.stop_timeout_seconds,
            build_timeout_seconds=self.build_timeout_seconds,
            command_timeout_seconds=self.command_timeout_seconds,
        )

    @property
    def state(self) -> StateConfig:
        """Access readiness state configuration group."""
        return StateConfig(
            settle_delay_ms=self.settle_delay_ms,
            convergence_poll_enabled=self.convergence_poll_enabled,
            convergence_max_attempts=self.convergence_max_attempts,
            state_poll_interval_seconds=self.state_poll_interval_seconds,
            track_retry_attempts=self.track_retry_attempts,
            track_retry_base_delay_ms=self.track_retry_base_delay_ms,
        )

    @property
    def api(self) -> APIConfig:
        """Access control API configuration group."""
        return APIConfig(
            api_host=self.api_host,
            api_port=self.api_port,
            api_debug=self.api_debug,
        )

    @property
    def logging(self) -> LoggingConfig:
        """Access logging configuration group."""
        return LoggingConfig(log_level=self.log_level, log_format=self.log_format)


settings = Settings()

__all__ = [
    "Settings",
    "settings",
    "APIConfig",
    "DockerConfig",
    "LoggingConfig",
    "StateConfig",
]
