"""Docker CLI configuration."""

from typing import List, Optional
from pydantic import Field
from pydantic_settings import BaseSettings


class DockerConfig(BaseSettings):
    """Docker binary, run defaults and timeouts."""

    docker_command: str = Field(default="docker", alias="docker_command")
    default_shell: str = Field(default="/bin/bash", alias="default_shell")
    remove_containers_after_run: bool = Field(
        default=True, alias="remove_containers_after_run"
    )
    mount_workspace: bool = Field(default=True, alias="mount_workspace")
    additional_docker_run_args: List[str] = Field(
        default_factory=list, alias="additional_docker_run_args"
    )
    base_image: Optional[str] = Field(default=None, alias="base_image")
    stop_timeout_seconds: int = Field(default=10, ge=0, le=300, alias="stop_timeout_seconds")
    build_timeout_seconds: int = Field(
        default=600, ge=10, le=7200, alias="build_timeout_seconds"
    )
    command_timeout_seconds: int = Field(
        default=30, ge=1, le=600, alias="command_timeout_seconds"
    )

    class Config:
        env_prefix = ""
        extra = "ignore"
