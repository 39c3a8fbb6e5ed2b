"""Container registry for one workspace.

The daemon is the ground truth. The registry keeps a local view that
bridges the gap between launching a container and the daemon listing it:
launched containers are inserted optimistically and replaced by the live
record once a listing includes them.
"""

import asyncio
import json
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional

import structlog

from ...config import settings
from ...models.containers import ContainerRecord, ContainerType
from ...models.errors import OperationFailedError
from . import naming
from .cli import DockerCLI
from .utils import backoff_delays, iter_json_lines, parse_docker_timestamp, parse_labels

logger = structlog.get_logger(__name__)

TYPE_LABEL = "codeforge.type"
WORKSPACE_LABEL = "codeforge.workspace"

_EXIT_CODE_MARKER = "Exited ("


@dataclass
class _Entry:
    record: ContainerRecord
    tracked_at: float
    misses: int = 0


def _exit_code_from_status(status: str) -> Optional[int]:
    # "Exited (137) 2 minutes ago"
    start = status.find(_EXIT_CODE_MARKER)
    if start < 0:
        return None
    start += len(_EXIT_CODE_MARKER)
    end = status.find(")", start)
    try:
        return int(status[start:end])
    except ValueError:
        return None


def record_from_ps(prefix: str, row: dict) -> ContainerRecord:
    """Build a record from one ``docker ps --format '{{json .}}'`` row."""
    name = str(row.get("Names", "")).split(",")[0].lstrip("/")
    labels = parse_labels(row.get("Labels"))
    status = str(row.get("Status", ""))
    state = str(row.get("State", "")).lower()
    running = state == "running" if state else status.startswith("Up")

    container_type = ContainerType.parse(labels.get(TYPE_LABEL))
    if container_type is ContainerType.UNKNOWN:
        container_type = naming.type_from_name(prefix, name)

    return ContainerRecord(
        id=str(row.get("ID", "")),
        name=name,
        image=str(row.get("Image") or "unknown"),
        type=container_type,
        running=running,
        created_at=parse_docker_timestamp(row.get("CreatedAt")),
        exit_code=None if running else _exit_code_from_status(status),
        status=status,
        labels=labels,
    )


def record_from_inspect(prefix: str, data: dict) -> ContainerRecord:
    """Build a record from one ``docker inspect`` object."""
    config = data.get("Config") or {}
    state = data.get("State") or {}
    name = str(data.get("Name", "")).lstrip("/")
    labels = parse_labels(config.get("Labels") or {})
    running = bool(state.get("Running", False))

    container_type = ContainerType.parse(labels.get(TYPE_LABEL))
    if container_type is ContainerType.UNKNOWN:
        container_type = naming.type_from_name(prefix, name)

    return ContainerRecord(
        id=str(data.get("Id", "")),
        name=name,
        image=str(config.get("Image") or "unknown"),
        type=container_type,
        running=running,
        created_at=parse_docker_timestamp(data.get("Created")),
        exit_code=None if running else state.get("ExitCode"),
        status=str(state.get("Status", "")),
        labels=labels,
    )


def ids_match(a: str, b: str) -> bool:
    """Full and truncated container ids refer to the same container."""
    if not a or not b:
        return False
    return a.startswith(b) or b.startswith(a)


class ContainerRegistry:
    """Reconciled view of the containers belonging to one workspace prefix.

    Rules applied on every refresh:

    - a live record always replaces an optimistic one;
    - a confirmed entry the daemon no longer lists is dropped;
    - an optimistic entry is dropped after it has been missing from more
      than one listing;
    - a listing whose query started before an entry was tracked does not
      count against that entry.
    """

    def __init__(
        self,
        cli: DockerCLI,
        prefix: str,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable = asyncio.sleep,
    ):
        self._cli = cli
        self._prefix = prefix
        self._clock = clock
        self._sleep = sleep
        self._entries: Dict[str, _Entry] = {}

    @property
    def prefix(self) -> str:
        return self._prefix

    def tracked(self) -> List[ContainerRecord]:
        """Current view without querying the daemon."""
        records = [entry.record for entry in self._entries.values()]
        return sorted(records, key=lambda r: r.created_at)

    def running_count(self) -> int:
        return sum(1 for entry in self._entries.values() if entry.record.running)

    def get(self, identifier: str) -> Optional[ContainerRecord]:
        key = self._resolve_key(identifier)
        return self._entries[key].record if key else None

    def _resolve_key(self, identifier: str) -> Optional[str]:
        if identifier in self._entries:
            return identifier
        for key, entry in self._entries.items():
            if ids_match(key, identifier) or entry.record.name == identifier.lstrip("/"):
                return key
        return None

    def track_launched(
        self,
        container_id: str,
        container_type: ContainerType,
        name: Optional[str] = None,
        image: Optional[str] = None,
    ) -> ContainerRecord:
        """Insert a just-launched container before the daemon lists it."""
        existing_key = self._resolve_key(container_id)
        if existing_key is not None and not self._entries[existing_key].record.optimistic:
            return self._entries[existing_key].record

        record = ContainerRecord(
            id=container_id,
            name=name or container_id,
            image=image or "unknown",
            type=container_type,
            running=True,
            optimistic=True,
        )
        if existing_key is not None:
            del self._entries[existing_key]
        self._entries[container_id] = _Entry(record=record, tracked_at=self._clock())
        logger.debug("Tracking launched container", container_id=container_id, name=record.name)
        return record

    def mark_stopped(self, container_id: str, exit_code: Optional[int] = None) -> None:
        key = self._resolve_key(container_id)
        if key is None:
            return
        entry = self._entries[key]
        entry.record = replace(entry.record, running=False, exit_code=exit_code)

    def forget(self, container_id: str) -> bool:
        """Drop a container whose removal the daemon confirmed."""
        key = self._resolve_key(container_id)
        if key is None:
            return False
        del self._entries[key]
        logger.debug("Forgot container", container_id=container_id)
        return True

    def reconcile(self, live: List[ContainerRecord], query_started: Optional[float] = None) -> None:
        """Merge a daemon listing into the local view."""
        now = self._clock()
        unmatched = list(live)

        for key in list(self._entries):
            entry = self._entries[key]
            match = next(
                (
                    r
                    for r in unmatched
                    if ids_match(r.id, key) or r.name == entry.record.name
                ),
                None,
            )
            if match is not None:
                unmatched.remove(match)
                del self._entries[key]
                if match.type is ContainerType.UNKNOWN and entry.record.type is not ContainerType.UNKNOWN:
                    match = replace(match, type=entry.record.type)
                self._entries[match.id] = _Entry(record=match, tracked_at=entry.tracked_at)
                continue

            if query_started is not None and entry.tracked_at > query_started:
                continue
            if not entry.record.optimistic:
                del self._entries[key]
                logger.debug("Container no longer listed", container_id=key)
                continue
            entry.misses += 1
            if entry.misses > 1:
                del self._entries[key]
                logger.info(
                    "Dropping launched container never listed by the daemon",
                    container_id=key,
                    name=entry.record.name,
                )

        for record in unmatched:
            self._entries[record.id] = _Entry(record=record, tracked_at=now)

    async def query_ground_truth(self, prefix: Optional[str] = None) -> List[ContainerRecord]:
        """List every container (running or exited) carrying the prefix."""
        prefix = prefix or self._prefix
        result = await self._cli.run(
            ["ps", "-a", "--no-trunc", "--filter", f"name={prefix}", "--format", "{{json .}}"]
        )
        records = []
        for row in iter_json_lines(result.stdout):
            record = record_from_ps(prefix, row)
            if record.id and naming.belongs_to_workspace(prefix, record.name):
                records.append(record)
        return records

    async def list_active(
        self, prefix: Optional[str] = None, refresh: bool = True
    ) -> List[ContainerRecord]:
        """Query the daemon, reconcile, and return the merged view.

        With ``refresh=False`` the in-memory view is returned unchanged.
        """
        if not refresh:
            return self.tracked()
        started = self._clock()
        live = await self.query_ground_truth(prefix)
        self.reconcile(live, query_started=started)
        return self.tracked()

    async def inspect(self, container_id: str) -> Optional[ContainerRecord]:
        """Fresh inspect of one container; None when the daemon does not know it."""
        result = await self._cli.run(["inspect", container_id], check=False)
        if not result.ok:
            stderr = result.stderr.lower()
            if "no such object" in stderr or "no such container" in stderr:
                return None
            raise OperationFailedError(result.argv, result.exit_code, result.stderr)
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise OperationFailedError(
                result.argv, result.exit_code, result.stderr, message=f"Unparseable inspect output: {e}"
            ) from e
        if not data:
            return None
        return record_from_inspect(self._prefix, data[0])

    async def wait_for_container(
        self,
        container_name: str,
        container_type: ContainerType,
        image: Optional[str] = None,
        attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
    ) -> Optional[str]:
        """Poll for a container started by an external terminal and track it.

        Returns the container id, or None when it never appeared.
        """
        if attempts is None:
            attempts = settings.state.track_retry_attempts
        if base_delay is None:
            base_delay = settings.state.track_retry_base_delay_ms / 1000.0

        for attempt, delay in enumerate(backoff_delays(attempts, base_delay)):
            if delay:
                await self._sleep(delay)
            result = await self._cli.run(
                ["ps", "--no-trunc", "--filter", f"name={container_name}", "--format", "{{.ID}}"],
                check=False,
            )
            container_id = result.stdout.strip().splitlines()[0] if result.stdout.strip() else ""
            if result.ok and container_id:
                self.track_launched(container_id, container_type, name=container_name, image=image)
                logger.info(
                    "Container found",
                    container_name=container_name,
                    container_id=container_id[:12],
                    attempt=attempt + 1,
                )
                return container_id

        logger.warning(
            "Container did not appear", container_name=container_name, attempts=attempts
        )
        return None
