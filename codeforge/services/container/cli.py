"""Docker CLI invocation.

Uses asyncio subprocesses to run the configured docker binary and turns
failures into the core's error taxonomy.
"""

import asyncio
from typing import AsyncIterator, List, Optional, Sequence, Tuple

import structlog

from ...config import settings
from ...models.containers import CommandResult
from ...models.errors import (
    CodeForgeException,
    DaemonUnreachableError,
    OperationFailedError,
    ResourceNotFoundError,
)

logger = structlog.get_logger(__name__)

DAEMON_UNREACHABLE_MARKERS = (
    "cannot connect to the docker daemon",
    "error during connect",
    "is the docker daemon running",
    "permission denied while trying to connect to the docker daemon",
)


def is_daemon_unreachable(stderr: str) -> bool:
    lowered = stderr.lower()
    return any(marker in lowered for marker in DAEMON_UNREACHABLE_MARKERS)


class DockerCLI:
    """Runs ``<docker_command> <args...>`` and captures its output.

    Every call to :meth:`run` or :meth:`stream` increments
    ``invocation_count``.
    """

    def __init__(
        self,
        docker_command: Optional[str] = None,
        default_timeout: Optional[float] = None,
    ):
        self._docker_command = docker_command or settings.docker.docker_command
        self._default_timeout = default_timeout or settings.docker.command_timeout_seconds
        self.invocation_count = 0

    @property
    def docker_command(self) -> str:
        return self._docker_command

    def argv(self, args: Sequence[str]) -> List[str]:
        return [self._docker_command, *args]

    async def run(
        self,
        args: Sequence[str],
        check: bool = True,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Execute a docker command.

        Args:
            args: Arguments after the docker binary
            check: Raise OperationFailedError on a non-zero exit
            timeout: Seconds before the subprocess is killed

        Returns:
            CommandResult with decoded stdout and verbatim stderr

        Raises:
            ResourceNotFoundError: the docker binary does not exist
            DaemonUnreachableError: the daemon refused the connection
            OperationFailedError: non-zero exit (with check) or timeout
        """
        argv = self.argv(args)
        if timeout is None:
            timeout = self._default_timeout
        self.invocation_count += 1
        logger.debug("Running docker command", argv=argv)

        exit_code, stdout, stderr = await self._execute(argv, timeout)
        result = CommandResult(argv=tuple(argv), exit_code=exit_code, stdout=stdout, stderr=stderr)

        if not result.ok:
            if is_daemon_unreachable(result.stderr):
                logger.warning("Docker daemon unreachable", argv=argv, stderr=result.stderr)
                raise DaemonUnreachableError(stderr=result.stderr)
            if check:
                logger.warning(
                    "Docker command failed",
                    argv=argv,
                    exit_code=result.exit_code,
                    stderr=result.stderr,
                )
                raise OperationFailedError(argv, result.exit_code, result.stderr)

        return result

    async def _execute(self, argv: List[str], timeout: float) -> Tuple[int, str, str]:
        """Spawn the subprocess and collect exit code, stdout and stderr."""
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise ResourceNotFoundError(
                "docker binary",
                f"Docker command not found: {self._docker_command}. "
                "Ensure Docker is installed and in PATH",
            ) from e
        except PermissionError as e:
            raise OperationFailedError(argv, 126, str(e)) from e

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                proc.communicate(), timeout=timeout
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            logger.warning("Docker command timed out", argv=argv, timeout=timeout)
            raise OperationFailedError(
                argv, 124, f"Timed out after {timeout} seconds"
            )

        return proc.returncode, self._decode(stdout_bytes), self._decode(stderr_bytes)

    async def stream(self, args: Sequence[str]) -> AsyncIterator[str]:
        """Yield output lines of a long-running command such as ``logs -f``.

        stderr is merged into stdout. The subprocess is terminated when the
        consumer stops iterating.
        """
        argv = self.argv(args)
        self.invocation_count += 1
        logger.debug("Streaming docker command", argv=argv)

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError as e:
            raise ResourceNotFoundError(
                "docker binary", f"Docker command not found: {self._docker_command}"
            ) from e

        try:
            while True:
                line = await proc.stdout.readline()
                if not line:
                    break
                yield self._decode(line).rstrip("\r\n")
            await proc.wait()
        finally:
            if proc.returncode is None:
                proc.terminate()
                await proc.wait()

    async def is_available(self) -> bool:
        """Check that the binary runs and the daemon answers."""
        try:
            await self.run(["--version"])
            await self.run(["ps"])
            return True
        except CodeForgeException as e:
            logger.info("Docker not available", docker_command=self._docker_command, error=e.message)
            return False

    @staticmethod
    def _decode(output: Optional[bytes]) -> str:
        if not output:
            return ""
        return output.decode("utf-8", errors="replace")
