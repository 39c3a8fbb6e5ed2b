"""Workspace initialization marker.

A workspace is initialized when its ``.codeforge`` directory holds the
Dockerfile the image is built from and a ``.gitignore`` for build output.
"""

from pathlib import Path
from typing import Dict, Optional

import structlog

from ...models.errors import OperationFailedError
from ...models.state import InitializationStatus
from .images import DOCKERFILE_NAME, WORKSPACE_DIR

logger = structlog.get_logger(__name__)

DEFAULT_DOCKERFILE = """\
FROM ubuntu:24.04

ARG USERNAME=user
ARG USERID=1000

RUN apt-get update && apt-get install -y --no-install-recommends \\
        build-essential \\
        clang \\
        cmake \\
        gdb \\
        git \\
        python3 \\
        sudo \\
    && rm -rf /var/lib/apt/lists/*

RUN if id -u ${USERID} >/dev/null 2>&1; then userdel -r $(id -un ${USERID}); fi \\
    && useradd -m -u ${USERID} -s /bin/bash ${USERNAME} \\
    && echo "${USERNAME} ALL=(ALL) NOPASSWD:ALL" > /etc/sudoers.d/${USERNAME}

USER ${USERNAME}
"""

DEFAULT_GITIGNORE = """\
# Build and fuzzing output
output/
crashes/
corpus/
*.log
"""


class WorkspaceInitializer:
    """Probes and creates the initialization marker files."""

    def __init__(
        self,
        dockerfile_template: Optional[str] = None,
        gitignore_template: Optional[str] = None,
    ):
        self._templates: Dict[str, str] = {
            DOCKERFILE_NAME: dockerfile_template or DEFAULT_DOCKERFILE,
            ".gitignore": gitignore_template or DEFAULT_GITIGNORE,
        }

    def components(self, workspace_path: str) -> Dict[str, Path]:
        base = Path(workspace_path) / WORKSPACE_DIR
        return {
            WORKSPACE_DIR: base,
            f"{WORKSPACE_DIR}/{DOCKERFILE_NAME}": base / DOCKERFILE_NAME,
            f"{WORKSPACE_DIR}/.gitignore": base / ".gitignore",
        }

    def status(self, workspace_path: str) -> InitializationStatus:
        missing = []
        for label, path in self.components(workspace_path).items():
            exists = path.is_dir() if label == WORKSPACE_DIR else path.is_file()
            if not exists:
                missing.append(label)
        return InitializationStatus(is_initialized=not missing, missing_components=tuple(missing))

    def is_initialized(self, workspace_path: str) -> bool:
        return self.status(workspace_path).is_initialized

    def initialize(self, workspace_path: str) -> InitializationStatus:
        """Create whichever marker files are missing. Existing files are kept."""
        base = Path(workspace_path) / WORKSPACE_DIR
        try:
            base.mkdir(parents=True, exist_ok=True)
            for filename, content in self._templates.items():
                target = base / filename
                if not target.exists():
                    target.write_text(content, encoding="utf-8")
                    logger.info("Created workspace file", path=str(target))
        except OSError as e:
            raise OperationFailedError(
                ["initialize", str(base)], 1, str(e), message=f"Failed to initialize workspace: {e}"
            ) from e

        status = self.status(workspace_path)
        if not status.is_initialized:
            raise OperationFailedError(
                ["initialize", str(base)],
                1,
                "",
                message=f"Workspace still missing: {', '.join(status.missing_components)}",
            )
        return status
