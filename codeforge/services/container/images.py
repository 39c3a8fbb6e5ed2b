"""Workspace image resolution.

Answers whether a workspace image exists and builds it (or pulls and
tags a base image) on demand. Image state is never cached: every answer
comes from a fresh ``docker image inspect``.
"""

import getpass
import os
from pathlib import Path
from typing import Optional, Tuple

import structlog

from ...config import settings
from ...models.containers import ImageRecord
from ...models.errors import OperationFailedError, ResourceNotFoundError
from . import naming
from .cli import DockerCLI

logger = structlog.get_logger(__name__)

WORKSPACE_DIR = ".codeforge"
DOCKERFILE_NAME = "Dockerfile"


def split_reference(reference: str) -> Tuple[str, str]:
    """Split ``repo[:tag]`` into repo and tag.

    A colon before the last ``/`` belongs to a registry port. Digest
    references are returned whole with an empty tag.
    """
    if "@" in reference:
        return reference, ""
    slash = reference.rfind("/")
    colon = reference.rfind(":")
    if colon > slash:
        return reference[:colon], reference[colon + 1:]
    return reference, "latest"


def build_user() -> Tuple[str, int]:
    """Username and uid passed to the image build."""
    username = os.environ.get("USER") or os.environ.get("USERNAME")
    if not username:
        try:
            username = getpass.getuser()
        except (KeyError, OSError):
            username = "user"
    uid = os.getuid() if hasattr(os, "getuid") else 1000
    return username, uid


class ImageResolver:
    """Queries and produces the image for a workspace."""

    def __init__(self, cli: DockerCLI, build_timeout: Optional[float] = None):
        self._cli = cli
        self._build_timeout = build_timeout or settings.docker.build_timeout_seconds

    def name_for(self, workspace_path: str) -> str:
        return naming.name_for(workspace_path)

    def dockerfile_path(self, workspace_path: str) -> Path:
        return Path(workspace_path) / WORKSPACE_DIR / DOCKERFILE_NAME

    async def inspect_image(self, name: str) -> ImageRecord:
        """Fresh image query.

        A missing image is a normal answer (``exists=False``); any other
        daemon failure raises.
        """
        repo, tag = split_reference(name)
        reference = f"{repo}:{tag}" if tag else repo
        result = await self._cli.run(
            ["image", "inspect", "--format", "{{.Id}}", reference], check=False
        )
        if result.ok:
            lines = result.stdout.strip().splitlines()
            return ImageRecord(
                name=repo, tag=tag, exists=True, digest=lines[0] if lines else None
            )
        if "no such image" in result.stderr.lower():
            return ImageRecord(name=repo, tag=tag, exists=False)
        raise OperationFailedError(result.argv, result.exit_code, result.stderr)

    async def image_exists(self, name: str) -> bool:
        record = await self.inspect_image(name)
        return record.exists

    async def build_or_pull_image(
        self,
        workspace_path: str,
        image_name: Optional[str] = None,
        base_image: Optional[str] = None,
    ) -> ImageRecord:
        """Build the workspace image from its Dockerfile, or pull and tag a base image.

        Rebuilding with an unchanged Dockerfile yields the same tag.

        Raises:
            ResourceNotFoundError: no Dockerfile and no base image
            OperationFailedError: build, pull or tag failed, or the image
                is still missing afterwards
        """
        name = image_name or self.name_for(workspace_path)
        dockerfile = self.dockerfile_path(workspace_path)

        if dockerfile.is_file():
            username, uid = build_user()
            logger.info("Building workspace image", image=name, dockerfile=str(dockerfile))
            await self._cli.run(
                [
                    "build",
                    "-t",
                    name,
                    "--build-arg",
                    f"USERNAME={username}",
                    "--build-arg",
                    f"USERID={uid}",
                    "-f",
                    str(dockerfile),
                    str(dockerfile.parent),
                ],
                timeout=self._build_timeout,
            )
        elif base_image:
            logger.info("Pulling base image", image=name, base_image=base_image)
            await self._cli.run(["pull", base_image], timeout=self._build_timeout)
            await self._cli.run(["tag", base_image, name])
        else:
            raise ResourceNotFoundError(
                "Dockerfile",
                f"Dockerfile not found at {dockerfile} and no base image configured",
            )

        record = await self.inspect_image(name)
        if not record.exists:
            raise OperationFailedError(
                self._cli.argv(["image", "inspect", name]),
                1,
                "",
                message=f"Image {name} is missing after build",
            )
        logger.info("Workspace image ready", image=name, digest=record.digest)
        return record
