"""Command dispatch gateway.

Single entry point for user-triggered commands. Allows one command in
flight at a time, turns every handler result into a ``CommandOutcome``
and schedules one deferred readiness resync per completed command.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import structlog

from ..config import settings
from ..models.errors import CodeForgeException, ErrorType, UserDeclinedConfirmation
from ..models.state import CommandOutcome
from .synchronizer import StateSynchronizer

logger = structlog.get_logger(__name__)

Handler = Callable[..., Awaitable[Any]]


@dataclass(frozen=True)
class CommandSpec:
    name: str
    handler: Handler
    label: str
    confirmation_sensitive: bool = False


class CommandDispatchGateway:
    """Serializes commands and drives the loading indicator."""

    def __init__(
        self,
        synchronizer: StateSynchronizer,
        settle_delay: Optional[float] = None,
        converge: Optional[bool] = None,
        converge_attempts: Optional[int] = None,
        sleep: Callable = asyncio.sleep,
    ):
        self._synchronizer = synchronizer
        self._settle_delay = (
            settings.state.settle_delay_ms / 1000.0 if settle_delay is None else settle_delay
        )
        self._converge = settings.state.convergence_poll_enabled if converge is None else converge
        self._converge_attempts = converge_attempts or settings.state.convergence_max_attempts
        self._sleep = sleep

        self._commands: Dict[str, CommandSpec] = {}
        self._in_flight: Optional[str] = None
        self._resync_tasks: Set[asyncio.Task] = set()

    def register(
        self,
        name: str,
        handler: Handler,
        label: Optional[str] = None,
        confirmation_sensitive: bool = False,
    ) -> None:
        self._commands[name] = CommandSpec(
            name=name,
            handler=handler,
            label=label or name.replace("_", " ").capitalize(),
            confirmation_sensitive=confirmation_sensitive,
        )

    @property
    def commands(self) -> List[CommandSpec]:
        return list(self._commands.values())

    @property
    def in_flight(self) -> Optional[str]:
        return self._in_flight

    @property
    def settle_delay(self) -> float:
        return self._settle_delay

    @property
    def is_busy(self) -> bool:
        return self._in_flight is not None

    async def dispatch(self, command: str, /, **params: Any) -> CommandOutcome:
        """Run a command and always resolve to an outcome.

        A command dispatched while another is in flight is rejected
        without touching the daemon or the loading state.
        """
        if self._in_flight is not None:
            logger.info("Command rejected", command=command, in_flight=self._in_flight)
            return CommandOutcome(
                command=command,
                success=False,
                error=f"Command '{self._in_flight}' is already in progress",
                error_type=ErrorType.COMMAND_REJECTED.value,
                rejected=True,
            )

        spec = self._commands.get(command)
        if spec is None:
            return CommandOutcome(
                command=command,
                success=False,
                error=f"Unknown command: {command}",
                error_type=ErrorType.VALIDATION.value,
            )

        self._in_flight = command
        self._synchronizer.set_loading(True, spec.label)
        logger.info("Dispatching command", command=command)
        try:
            result = await spec.handler(**params)
            outcome = CommandOutcome(command=command, success=True, result=result)
        except UserDeclinedConfirmation as e:
            logger.info("Command declined", command=command, operation=e.operation)
            outcome = CommandOutcome(command=command, success=True, declined=True, result=e.message)
        except CodeForgeException as e:
            logger.warning(
                "Command failed", command=command, error=e.message, error_type=e.error_type.value
            )
            outcome = CommandOutcome(
                command=command,
                success=False,
                error=e.message,
                error_type=e.error_type.value,
                result=getattr(e, "result", None),
            )
        except Exception as e:
            logger.exception("Unexpected error in command", command=command)
            outcome = CommandOutcome(
                command=command,
                success=False,
                error=str(e) or type(e).__name__,
                error_type=ErrorType.INTERNAL.value,
            )
        finally:
            self._in_flight = None
            self._synchronizer.set_loading(False)
            self._schedule_resync(command)

        return outcome

    def cancel(self) -> None:
        """Clear the loading indicator.

        The running docker subprocess is not interrupted, and the command
        still counts as in flight until it returns.
        """
        if self._in_flight is not None:
            logger.info("Loading indicator cleared", command=self._in_flight)
        self._synchronizer.set_loading(False)

    def _schedule_resync(self, command: str) -> None:
        task = asyncio.create_task(self._deferred_resync(command))
        self._resync_tasks.add(task)
        task.add_done_callback(self._resync_tasks.discard)

    async def _deferred_resync(self, command: str) -> None:
        await self._sleep(self._settle_delay)
        try:
            if self._converge:
                await self._synchronizer.refresh_until_converged(
                    self._converge_attempts, interval=self._settle_delay
                )
            else:
                await self._synchronizer.refresh(trigger=f"command:{command}")
        except Exception as e:
            logger.error("Post-command resync failed", command=command, error=str(e))

    async def wait_for_resync(self) -> None:
        """Wait for every scheduled resync to finish."""
        if self._resync_tasks:
            await asyncio.gather(*list(self._resync_tasks))

    async def close(self) -> None:
        for task in list(self._resync_tasks):
            task.cancel()
        if self._resync_tasks:
            await asyncio.gather(*list(self._resync_tasks), return_exceptions=True)
        self._resync_tasks.clear()
