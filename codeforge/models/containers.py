"""Container, image and run configuration data models.

``ContainerRecord`` is the handle used throughout the codebase for a
container belonging to the current workspace, whether it was inserted
optimistically after a launch or discovered on the daemon.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .errors import PartialFailureError


class ContainerType(str, Enum):
    """What a container was launched for."""

    TERMINAL = "terminal"
    FUZZING = "fuzzing"
    COMMAND = "command"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ContainerType":
        """Map a label or name fragment to a type, defaulting to UNKNOWN."""
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.UNKNOWN


@dataclass
class ContainerRecord:
    """A container tracked for the current workspace."""

    id: str
    name: str
    image: str = "unknown"
    type: ContainerType = ContainerType.UNKNOWN
    running: bool = True
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    exit_code: Optional[int] = None
    status: str = ""
    labels: Dict[str, str] = field(default_factory=dict)
    optimistic: bool = False

    @property
    def short_id(self) -> str:
        return self.id[:12]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "image": self.image,
            "type": self.type.value,
            "running": self.running,
            "created_at": self.created_at.isoformat(),
            "exit_code": self.exit_code,
            "status": self.status,
            "optimistic": self.optimistic,
        }


@dataclass(frozen=True)
class ImageRecord:
    """Result of a fresh image query."""

    name: str
    tag: str = "latest"
    exists: bool = False
    digest: Optional[str] = None

    @property
    def reference(self) -> str:
        return f"{self.name}:{self.tag}"

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "tag": self.tag,
            "exists": self.exists,
            "digest": self.digest,
        }


@dataclass(frozen=True)
class RunConfig:
    """Everything that determines a ``docker run`` argument vector.

    Instances are immutable so that the same config always yields the
    same argv.
    """

    image: str
    workspace_path: Optional[str] = None
    container_name: Optional[str] = None
    container_type: ContainerType = ContainerType.TERMINAL
    shell: Optional[str] = "/bin/bash"
    command: Optional[str] = None
    interactive: bool = True
    tty: bool = True
    detached: bool = False
    remove_after_run: bool = True
    mount_workspace: bool = True
    working_dir: Optional[str] = None
    port_forwards: Tuple[str, ...] = ()
    extra_args: Tuple[str, ...] = ()
    labels: Tuple[Tuple[str, str], ...] = ()


@dataclass(frozen=True)
class CommandResult:
    """Captured outcome of one docker CLI invocation."""

    argv: Tuple[str, ...]
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class TerminationFailure:
    """One container that could not be terminated."""

    container_id: str
    error: str
    stderr: str = ""


@dataclass
class TerminationResult:
    """Aggregate of a bulk termination."""

    succeeded: List[str] = field(default_factory=list)
    failed: List[TerminationFailure] = field(default_factory=list)

    @property
    def succeeded_count(self) -> int:
        return len(self.succeeded)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def total(self) -> int:
        return self.succeeded_count + self.failed_count

    def failure_for(self, container_id: str) -> Optional[TerminationFailure]:
        """Look up the diagnostic for a single failed container."""
        for failure in self.failed:
            if failure.container_id == container_id:
                return failure
        return None

    def raise_for_failures(self) -> None:
        """Raise PartialFailureError if any termination failed."""
        if self.failed:
            raise PartialFailureError(self)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "succeeded": list(self.succeeded),
            "failed": [
                {"container_id": f.container_id, "error": f.error} for f in self.failed
            ],
        }
