"""Docker-backed container services.

This package provides:
- DockerCLI: subprocess invocation of the docker binary
- ImageResolver: image existence checks and builds
- ContainerRegistry: reconciled view of workspace containers
- LifecycleOperations: launch, stop, kill, bulk termination and cleanup
- WorkspaceInitializer: the ``.codeforge`` initialization marker
"""

from .cli import DockerCLI, is_daemon_unreachable
from .images import ImageResolver, split_reference
from .initializer import WorkspaceInitializer
from .lifecycle import (
    CONFIRMATION_SENSITIVE,
    ConfirmationRequest,
    LifecycleOperations,
    run_args_for,
)
from .naming import (
    belongs_to_workspace,
    container_name_for,
    name_for,
    normalize_workspace_path,
    type_from_name,
)
from .registry import ContainerRegistry

__all__ = [
    "DockerCLI",
    "is_daemon_unreachable",
    "ImageResolver",
    "split_reference",
    "WorkspaceInitializer",
    "CONFIRMATION_SENSITIVE",
    "ConfirmationRequest",
    "LifecycleOperations",
    "run_args_for",
    "belongs_to_workspace",
    "container_name_for",
    "name_for",
    "normalize_workspace_path",
    "type_from_name",
    "ContainerRegistry",
]
