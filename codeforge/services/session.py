"""Workspace session.

Owns every stateful component for one workspace (registry, synchronizer,
gateway) and registers the command table. Create one per workspace and
pass it to whatever surfaces need it.
"""

import os
from typing import Any, Callable, Dict, List, Optional, Set

import structlog

from ..config import Settings, settings as default_settings
from ..models.containers import ContainerRecord, ContainerType, ImageRecord, TerminationResult
from ..models.errors import DaemonUnreachableError, UserDeclinedConfirmation
from ..models.state import CommandOutcome, InitializationStatus, ReadinessSnapshot
from .container import (
    CONFIRMATION_SENSITIVE,
    ConfirmationRequest,
    ContainerRegistry,
    DockerCLI,
    ImageResolver,
    LifecycleOperations,
    WorkspaceInitializer,
    name_for,
)
from .container.lifecycle import ConfirmCallback
from .container.registry import ids_match
from .container.utils import maybe_await
from .gateway import CommandDispatchGateway
from .synchronizer import MarkerProbe, StateSynchronizer

logger = structlog.get_logger(__name__)

# Spawns ``argv`` in a terminal titled ``title``.
TerminalLauncher = Callable[[List[str], str], Any]


class WorkspaceSession:
    """All container state for one workspace."""

    def __init__(
        self,
        workspace_path: Optional[str] = None,
        settings: Optional[Settings] = None,
        cli: Optional[DockerCLI] = None,
        confirm: Optional[ConfirmCallback] = None,
        terminal_launcher: Optional[TerminalLauncher] = None,
        marker_probe: Optional[MarkerProbe] = None,
        sleep: Optional[Callable] = None,
    ):
        self.settings = settings or default_settings
        self.workspace_path = workspace_path or self.settings.workspace_path or os.getcwd()
        self.image_name = name_for(self.workspace_path)

        docker = self.settings.docker
        state = self.settings.state
        self._track_attempts = state.track_retry_attempts
        self._track_base_delay = state.track_retry_base_delay_ms / 1000.0

        self.cli = cli or DockerCLI(docker.docker_command, docker.command_timeout_seconds)
        sleep_kwargs = {"sleep": sleep} if sleep is not None else {}

        self.initializer = WorkspaceInitializer()
        self.resolver = ImageResolver(self.cli, build_timeout=docker.build_timeout_seconds)
        self.registry = ContainerRegistry(self.cli, self.image_name, **sleep_kwargs)
        self.lifecycle = LifecycleOperations(
            self.cli,
            self.registry,
            default_shell=docker.default_shell,
            stop_timeout=docker.stop_timeout_seconds,
            remove_after_run=docker.remove_containers_after_run,
            mount_workspace=docker.mount_workspace,
            extra_run_args=docker.additional_docker_run_args,
        )
        self.synchronizer = StateSynchronizer(
            self.workspace_path,
            marker_probe or self.initializer.status,
            self.resolver,
            self.registry,
            self.image_name,
            poll_interval=state.state_poll_interval_seconds,
            **sleep_kwargs,
        )
        self.gateway = CommandDispatchGateway(
            self.synchronizer,
            settle_delay=state.settle_delay_ms / 1000.0,
            converge=state.convergence_poll_enabled,
            converge_attempts=state.convergence_max_attempts,
            **sleep_kwargs,
        )

        self._confirm = confirm
        self._terminal_launcher = terminal_launcher
        self._in_use: Set[str] = set()
        self._register_commands()

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> ReadinessSnapshot:
        return self.synchronizer.snapshot

    def subscribe(self, callback: Callable[[ReadinessSnapshot], None]) -> Callable[[], None]:
        return self.synchronizer.subscribe(callback)

    async def dispatch(self, command: str, /, **params: Any) -> CommandOutcome:
        return await self.gateway.dispatch(command, **params)

    def capabilities(self) -> Dict[str, Any]:
        return {
            "commands": [
                {
                    "name": spec.name,
                    "label": spec.label,
                    "confirmation_sensitive": spec.confirmation_sensitive,
                }
                for spec in self.gateway.commands
            ],
            "confirmation_sensitive": sorted(CONFIRMATION_SENSITIVE),
        }

    def mark_in_use(self, container_id: str) -> None:
        self._in_use.add(container_id)

    def release(self, container_id: str) -> None:
        self._in_use = {i for i in self._in_use if not ids_match(i, container_id)}

    async def start(self) -> ReadinessSnapshot:
        """Initial refresh, then periodic polling."""
        snapshot = await self.synchronizer.refresh(trigger="startup")
        await self.synchronizer.start()
        logger.info(
            "Workspace session started",
            workspace=self.workspace_path,
            image=self.image_name,
        )
        return snapshot

    async def close(self) -> None:
        await self.synchronizer.stop()
        await self.gateway.close()
        logger.info("Workspace session closed", workspace=self.workspace_path)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def _register_commands(self) -> None:
        register = self.gateway.register
        register("initialize", self._initialize, "Initializing workspace")
        register("build_image", self._build_image, "Building image")
        register("launch_terminal", self._launch_terminal, "Launching terminal")
        register("run_command", self._run_command, "Running command")
        register("run_fuzzing", self._run_fuzzing, "Starting fuzzing")
        register("refresh_containers", self._refresh_containers, "Refreshing containers")
        register("stop_container", self._stop_container, "Stopping container", True)
        register("kill_container", self._kill_container, "Killing container", True)
        register("terminate_all", self._terminate_all, "Terminating containers", True)
        register("cleanup_orphaned", self._cleanup_orphaned, "Cleaning up containers")
        register("check_docker", self._check_docker, "Checking Docker")

    async def _require_confirmation(self, operation: str, container_ids: List[str]) -> None:
        if self._confirm is None:
            return
        approved = await maybe_await(
            self._confirm(ConfirmationRequest(operation, tuple(container_ids)))
        )
        if not approved:
            raise UserDeclinedConfirmation(operation)

    async def _initialize(self) -> InitializationStatus:
        return self.initializer.initialize(self.workspace_path)

    async def _build_image(self, base_image: Optional[str] = None) -> ImageRecord:
        return await self.resolver.build_or_pull_image(
            self.workspace_path,
            image_name=self.image_name,
            base_image=base_image or self.settings.docker.base_image,
        )

    async def _ensure_ready(self) -> None:
        if not self.initializer.is_initialized(self.workspace_path):
            self.initializer.initialize(self.workspace_path)
        if not await self.resolver.image_exists(self.image_name):
            await self._build_image()

    async def _launch_terminal(self, shell: Optional[str] = None) -> Dict[str, Any]:
        """Open a shell container.

        With a terminal launcher the container runs attached in that
        terminal and is tracked once the daemon reports it. Without one it
        runs detached with a TTY and is reached through ``attach_args``.
        """
        await self._ensure_ready()
        attached = self._terminal_launcher is not None
        config = self.lifecycle.build_run_config(
            self.image_name,
            self.workspace_path,
            ContainerType.TERMINAL,
            detached=not attached,
            shell=shell,
        )

        if attached:
            argv = self.lifecycle.terminal_argv(config)
            await maybe_await(self._terminal_launcher(argv, config.container_name))
            container_id = await self.registry.wait_for_container(
                config.container_name,
                ContainerType.TERMINAL,
                image=self.image_name,
                attempts=self._track_attempts,
                base_delay=self._track_base_delay,
            )
            if container_id:
                self.mark_in_use(container_id)
            return {
                "container_id": container_id,
                "container_name": config.container_name,
                "argv": argv,
            }

        record = await self.lifecycle.launch(config)
        self.mark_in_use(record.id)
        return {
            "container_id": record.id,
            "container_name": record.name,
            "argv": self.lifecycle.attach_args(record.id, shell),
        }

    async def _run_command(
        self, command: str, container_type: str = ContainerType.COMMAND.value
    ) -> ContainerRecord:
        await self._ensure_ready()
        config = self.lifecycle.build_run_config(
            self.image_name,
            self.workspace_path,
            ContainerType.parse(container_type),
            command=command,
            detached=True,
            interactive=False,
        )
        record = await self.lifecycle.launch(config)
        self.mark_in_use(record.id)
        return record

    async def _run_fuzzing(self, command: str) -> ContainerRecord:
        return await self._run_command(command, container_type=ContainerType.FUZZING.value)

    async def _refresh_containers(self) -> List[ContainerRecord]:
        return await self.registry.list_active()

    async def _stop_container(self, container_id: str, remove: bool = False) -> Dict[str, Any]:
        await self._require_confirmation("stop_container", [container_id])
        await self.lifecycle.stop(container_id, remove=remove)
        self.release(container_id)
        return {"container_id": container_id, "stopped": True, "removed": remove}

    async def _kill_container(self, container_id: str, remove: bool = True) -> Dict[str, Any]:
        await self._require_confirmation("kill_container", [container_id])
        await self.lifecycle.kill(container_id, remove=remove)
        self.release(container_id)
        return {"container_id": container_id, "killed": True, "removed": remove}

    async def _terminate_all(self, remove: bool = True) -> TerminationResult:
        records = await self.registry.list_active()
        if not records:
            return TerminationResult()
        await self._require_confirmation("terminate_all", [r.id for r in records])
        result = await self.lifecycle.terminate_all(records, remove=remove)
        for container_id in result.succeeded:
            self.release(container_id)
        result.raise_for_failures()
        return result

    async def _cleanup_orphaned(self, allow_running: bool = False) -> List[str]:
        """Remove containers no session accounts for.

        Containers this session launched stay in use until stopped, killed
        or gone from the daemon.
        """
        records = await self.registry.list_active()
        live = [r.id for r in records]
        self._in_use = {i for i in self._in_use if any(ids_match(i, r) for r in live)}
        return await self.lifecycle.cleanup_orphaned(
            records,
            in_use=self._in_use,
            allow_running=allow_running,
            confirm=self._confirm,
        )

    async def _check_docker(self) -> Dict[str, Any]:
        if not await self.cli.is_available():
            raise DaemonUnreachableError(
                message=f"Docker is not available via '{self.cli.docker_command}'"
            )
        return {"available": True, "docker_command": self.cli.docker_command}
