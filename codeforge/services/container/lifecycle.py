"""Container lifecycle operations.

Launch, attach, stop, kill, bulk termination and orphan cleanup. Every
mutation goes through the docker CLI and updates the registry only after
the daemon has confirmed it.
"""

import asyncio
import shlex
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Iterable, List, Optional, Sequence, Tuple

import structlog

from ...config import settings
from ...models.containers import (
    ContainerRecord,
    ContainerType,
    RunConfig,
    TerminationFailure,
    TerminationResult,
)
from ...models.errors import (
    CodeForgeException,
    OperationFailedError,
    PartialFailureError,
    UserDeclinedConfirmation,
)
from . import naming
from .cli import DockerCLI
from .registry import TYPE_LABEL, WORKSPACE_LABEL, ContainerRegistry, ids_match
from .utils import maybe_await

logger = structlog.get_logger(__name__)

# Operations a caller must confirm before they run.
CONFIRMATION_SENSITIVE = frozenset(
    {"stop_container", "kill_container", "terminate_all", "cleanup_orphaned_running"}
)

# "removal of container <id> is already in progress" follows the stop of a --rm container
_GONE_MARKERS = ("no such container", "no such object", "is already in progress")
_NOT_RUNNING_MARKERS = ("is not running",)


@dataclass(frozen=True)
class ConfirmationRequest:
    """What a confirmation prompt is asked to approve."""

    operation: str
    container_ids: Tuple[str, ...] = ()


ConfirmCallback = Callable[[ConfirmationRequest], object]


def _is_gone(stderr: str) -> bool:
    lowered = stderr.lower()
    return any(marker in lowered for marker in _GONE_MARKERS)


def _is_not_running(stderr: str) -> bool:
    lowered = stderr.lower()
    return any(marker in lowered for marker in _NOT_RUNNING_MARKERS)


def run_args_for(config: RunConfig) -> List[str]:
    """``docker run`` arguments for a config, without the docker binary.

    Pure: the same config always gives the same list.
    """
    args = ["run"]
    if config.container_name:
        args += ["--name", config.container_name]
    if config.detached:
        args.append("-d")
    if config.interactive:
        args.append("-i")
    if config.tty:
        args.append("-t")
    if config.remove_after_run:
        args.append("--rm")
    for key, value in config.labels:
        args += ["--label", f"{key}={value}"]

    if config.mount_workspace and config.workspace_path:
        args += ["-v", f"{config.workspace_path}:{config.workspace_path}"]
        args += ["-w", config.working_dir or config.workspace_path]
    elif config.working_dir:
        args += ["-w", config.working_dir]

    for forward in config.port_forwards:
        args += ["-p", forward]
    args += list(config.extra_args)

    args.append(config.image)
    if config.shell:
        args.append(config.shell)
        if config.command:
            args += ["-c", config.command]
    elif config.command:
        args += shlex.split(config.command)
    return args


class LifecycleOperations:
    """Lifecycle operations for the containers of one workspace."""

    def __init__(
        self,
        cli: DockerCLI,
        registry: ContainerRegistry,
        default_shell: Optional[str] = None,
        stop_timeout: Optional[float] = None,
        remove_after_run: Optional[bool] = None,
        mount_workspace: Optional[bool] = None,
        extra_run_args: Optional[Sequence[str]] = None,
    ):
        self._cli = cli
        self._registry = registry
        docker = settings.docker
        self._default_shell = default_shell or docker.default_shell
        self._stop_timeout = docker.stop_timeout_seconds if stop_timeout is None else stop_timeout
        self._remove_after_run = (
            docker.remove_containers_after_run if remove_after_run is None else remove_after_run
        )
        self._mount_workspace = docker.mount_workspace if mount_workspace is None else mount_workspace
        self._extra_run_args = tuple(
            docker.additional_docker_run_args if extra_run_args is None else extra_run_args
        )

    @property
    def registry(self) -> ContainerRegistry:
        return self._registry

    def build_run_config(
        self,
        image: str,
        workspace_path: str,
        container_type: ContainerType,
        command: Optional[str] = None,
        detached: bool = False,
        interactive: bool = True,
        shell: Optional[str] = None,
        port_forwards: Sequence[str] = (),
        unique: Optional[str] = None,
    ) -> RunConfig:
        """Run config with a generated name and workspace labels."""
        prefix = self._registry.prefix
        return RunConfig(
            image=image,
            workspace_path=workspace_path,
            container_name=naming.container_name_for(prefix, container_type, unique),
            container_type=container_type,
            shell=shell or self._default_shell,
            command=command,
            interactive=interactive,
            tty=interactive,
            detached=detached,
            remove_after_run=self._remove_after_run,
            mount_workspace=self._mount_workspace,
            port_forwards=tuple(port_forwards),
            extra_args=self._extra_run_args,
            labels=((TYPE_LABEL, container_type.value), (WORKSPACE_LABEL, prefix)),
        )

    def terminal_argv(self, config: RunConfig) -> List[str]:
        """Full argv for a terminal collaborator to spawn attached."""
        return self._cli.argv(run_args_for(config))

    def attach_args(self, container_id: str, shell: Optional[str] = None) -> List[str]:
        """Full argv for an interactive shell in a running container."""
        return self._cli.argv(["exec", "-it", container_id, shell or self._default_shell])

    async def launch(self, config: RunConfig) -> ContainerRecord:
        """Start a detached container and track it optimistically."""
        if not config.detached:
            raise ValueError("Only detached containers can be launched directly; use terminal_argv")
        result = await self._cli.run(run_args_for(config))
        lines = result.stdout.strip().splitlines()
        if not lines:
            raise OperationFailedError(
                result.argv, result.exit_code, result.stderr, message="docker run printed no container id"
            )
        container_id = lines[-1].strip()
        record = self._registry.track_launched(
            container_id,
            config.container_type,
            name=config.container_name,
            image=config.image,
        )
        logger.info(
            "Container launched",
            container_id=container_id[:12],
            container_name=config.container_name,
            container_type=config.container_type.value,
        )
        return record

    async def stream_logs(self, container_id: str) -> AsyncIterator[str]:
        async for line in self._cli.stream(["logs", "-f", container_id]):
            yield line

    async def kill(self, container_id: str, remove: bool = False) -> None:
        """Force-kill a container. Already gone or stopped counts as success."""
        try:
            await self._cli.run(["kill", container_id])
        except OperationFailedError as e:
            if not (_is_gone(e.stderr) or _is_not_running(e.stderr)):
                raise
            logger.debug("Container already stopped", container_id=container_id[:12])
        await self._finish_stop(container_id, remove)

    async def stop(self, container_id: str, force: bool = False, remove: bool = False) -> None:
        """Stop a container, escalating to kill when a graceful stop fails.

        Idempotent: stopping a stopped or removed container succeeds.
        """
        if force:
            await self.kill(container_id, remove=remove)
            return

        try:
            await self._cli.run(["stop", container_id], timeout=self._stop_timeout + 5)
        except OperationFailedError as e:
            if _is_gone(e.stderr) or _is_not_running(e.stderr):
                logger.debug("Container already stopped", container_id=container_id[:12])
            else:
                logger.warning(
                    "Graceful stop failed, killing container",
                    container_id=container_id[:12],
                    error=e.message,
                )
                await self.kill(container_id, remove=remove)
                return
        await self._finish_stop(container_id, remove)

    async def remove(self, container_id: str) -> None:
        """``rm -f`` a container; an already removed one counts as success."""
        try:
            await self._cli.run(["rm", "-f", container_id])
        except OperationFailedError as e:
            if not _is_gone(e.stderr):
                raise
        self._registry.forget(container_id)

    async def _finish_stop(self, container_id: str, remove: bool) -> None:
        if remove:
            await self.remove(container_id)
        else:
            self._registry.mark_stopped(container_id)

    async def terminate_all(
        self, records: Optional[Iterable[ContainerRecord]] = None, remove: bool = True
    ) -> TerminationResult:
        """Stop every given container concurrently.

        One failure never prevents the others from being attempted; the
        result is assembled only after every attempt has finished.
        """
        targets = list(records) if records is not None else self._registry.tracked()

        async def _terminate(record: ContainerRecord):
            try:
                await self.stop(record.id, remove=remove)
                return record.id, None
            except CodeForgeException as e:
                return record.id, TerminationFailure(record.id, e.message, getattr(e, "stderr", ""))
            except Exception as e:
                logger.exception("Unexpected error terminating container", container_id=record.id[:12])
                return record.id, TerminationFailure(record.id, str(e))

        outcomes = await asyncio.gather(*(_terminate(r) for r in targets))

        result = TerminationResult()
        for container_id, failure in outcomes:
            if failure is None:
                result.succeeded.append(container_id)
            else:
                result.failed.append(failure)

        logger.info(
            "Terminated containers",
            succeeded=result.succeeded_count,
            failed=result.failed_count,
        )
        return result

    async def cleanup_orphaned(
        self,
        records: Optional[Iterable[ContainerRecord]] = None,
        in_use: Iterable[str] = (),
        allow_running: bool = False,
        confirm: Optional[ConfirmCallback] = None,
    ) -> List[str]:
        """Remove workspace containers no session accounts for.

        Exited orphans are always eligible. Running orphans are removed
        only with ``allow_running`` and, when a ``confirm`` callback is
        given, its approval. Containers listed in ``in_use`` are never
        touched.

        Raises:
            UserDeclinedConfirmation: the confirm callback declined
            PartialFailureError: some removals failed
        """
        if records is None:
            records = await self._registry.list_active()
        in_use = [i for i in in_use if i]
        prefix = self._registry.prefix

        candidates = [
            r
            for r in records
            if naming.belongs_to_workspace(prefix, r.name)
            and not any(ids_match(r.id, i) or r.name == i for i in in_use)
        ]
        targets = [r for r in candidates if not r.running]
        running = [r for r in candidates if r.running]

        if running and allow_running:
            if confirm is not None:
                request = ConfirmationRequest(
                    "cleanup_orphaned_running", tuple(r.id for r in running)
                )
                if not await maybe_await(confirm(request)):
                    raise UserDeclinedConfirmation("cleanup_orphaned_running")
            targets += running

        result = TerminationResult()
        for record in targets:
            try:
                await self.remove(record.id)
                result.succeeded.append(record.id)
            except CodeForgeException as e:
                result.failed.append(
                    TerminationFailure(record.id, e.message, getattr(e, "stderr", ""))
                )

        logger.info(
            "Orphan cleanup finished",
            removed=result.succeeded_count,
            failed=result.failed_count,
            skipped_running=0 if allow_running else len(running),
        )
        if result.failed:
            raise PartialFailureError(
                result,
                message=f"{result.failed_count} of {result.total} orphaned container(s) could not be removed",
            )
        return result.succeeded
