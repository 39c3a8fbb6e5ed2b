"""Control API and logging configuration."""

from pydantic import Field
from pydantic_settings import BaseSettings


class APIConfig(BaseSettings):
    """Local control API settings."""

    api_host: str = Field(default="127.0.0.1", alias="api_host")
    api_port: int = Field(default=8765, ge=1, le=65535, alias="api_port")
    api_debug: bool = Field(default=False, alias="api_debug")

    class Config:
        env_prefix = ""
        extra = "ignore"


class LoggingConfig(BaseSettings):
    """structlog rendering settings."""

    log_level: str = Field(default="INFO", alias="log_level")
    log_format: str = Field(default="json", alias="log_format")

    class Config:
        env_prefix = ""
        extra = "ignore"
