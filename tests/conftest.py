"""Pytest configuration and shared fixtures."""

import asyncio
import json
import secrets
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

import pytest

from codeforge.config import Settings
from codeforge.services.container.cli import DockerCLI
from codeforge.services.session import WorkspaceSession

DAEMON_DOWN_STDERR = (
    "Cannot connect to the Docker daemon at unix:///var/run/docker.sock. "
    "Is the docker daemon running?"
)

_RUN_VALUE_OPTIONS = {"--name", "--label", "-v", "-w", "-p", "-e", "--network", "--user"}


def _normalize_reference(reference: str) -> str:
    slash = reference.rfind("/")
    if reference.rfind(":") > slash:
        return reference
    return f"{reference}:latest"


@dataclass
class FakeContainer:
    id: str
    name: str
    image: str
    labels: Dict[str, str] = field(default_factory=dict)
    running: bool = True
    exit_code: int = 0
    remove_on_exit: bool = False

    def ps_row(self) -> dict:
        return {
            "ID": self.id,
            "Names": self.name,
            "Image": self.image,
            "State": "running" if self.running else "exited",
            "Status": "Up 2 seconds" if self.running else f"Exited ({self.exit_code}) 1 second ago",
            "CreatedAt": "2024-05-01 10:00:00 +0000 UTC",
            "Labels": ",".join(f"{k}={v}" for k, v in self.labels.items()),
        }

    def inspect_data(self) -> dict:
        return {
            "Id": self.id,
            "Name": f"/{self.name}",
            "Created": "2024-05-01T10:00:00.123456789Z",
            "Config": {"Image": self.image, "Labels": dict(self.labels)},
            "State": {
                "Status": "running" if self.running else "exited",
                "Running": self.running,
                "ExitCode": self.exit_code,
            },
        }


class FakeDaemon:
    """In-memory stand-in for the docker daemon, driven by CLI arguments."""

    def __init__(self):
        self.images: Dict[str, str] = {}
        self.containers: Dict[str, FakeContainer] = {}
        self.failures: Dict[Tuple[str, str], Tuple[int, str]] = {}
        self.hidden: Set[str] = set()
        self.unreachable = False
        self.logs: Dict[str, List[str]] = {}

    # -- setup helpers -----------------------------------------------------

    def add_image(self, reference: str) -> str:
        image_id = f"sha256:{secrets.token_hex(32)}"
        self.images[_normalize_reference(reference)] = image_id
        return image_id

    def add_container(
        self,
        name: str,
        image: str = "cf-test",
        running: bool = True,
        labels: Optional[Dict[str, str]] = None,
        exit_code: int = 0,
    ) -> FakeContainer:
        container = FakeContainer(
            id=secrets.token_hex(32),
            name=name,
            image=image,
            labels=labels or {},
            running=running,
            exit_code=exit_code,
        )
        self.containers[container.id] = container
        return container

    def fail(self, subcommand: str, target: str, stderr: str, exit_code: int = 1) -> None:
        """Make ``<subcommand> ... <target>`` fail; target ``*`` matches any."""
        self.failures[(subcommand, target)] = (exit_code, stderr)

    def find(self, identifier: str) -> Optional[FakeContainer]:
        for container in self.containers.values():
            if container.id.startswith(identifier) or container.name == identifier:
                return container
        return None

    # -- dispatch ----------------------------------------------------------

    def handle(self, args: List[str]) -> Tuple[int, str, str]:
        if self.unreachable:
            return 1, "", DAEMON_DOWN_STDERR
        sub = args[0]
        target = args[-1] if len(args) > 1 else ""
        for key in ((sub, target), (sub, "*")):
            if key in self.failures:
                exit_code, stderr = self.failures[key]
                return exit_code, "", stderr
        handler = getattr(self, f"_cmd_{sub.lstrip('-').replace('-', '_')}", None)
        if handler is None:
            return 1, "", f"docker: '{sub}' is not a docker command."
        return handler(args[1:])

    def _cmd_version(self, args):
        return 0, "Docker version 24.0.7, build afdd53b\n", ""

    def _cmd_ps(self, args):
        show_all = "-a" in args
        name_filter = ""
        fmt = ""
        for i, token in enumerate(args):
            if token == "--filter" and args[i + 1].startswith("name="):
                name_filter = args[i + 1][len("name="):]
            if token == "--format":
                fmt = args[i + 1]
        rows = [
            c
            for c in self.containers.values()
            if (show_all or c.running) and name_filter in c.name and c.id not in self.hidden
        ]
        if fmt == "{{json .}}":
            return 0, "".join(json.dumps(c.ps_row()) + "\n" for c in rows), ""
        if fmt == "{{.ID}}":
            return 0, "".join(c.id + "\n" for c in rows), ""
        return 0, "CONTAINER ID   IMAGE   COMMAND   CREATED   STATUS   PORTS   NAMES\n", ""

    def _cmd_image(self, args):
        reference = _normalize_reference(args[-1])
        if reference in self.images:
            return 0, self.images[reference] + "\n", ""
        return 1, "", f"Error response from daemon: No such image: {args[-1]}"

    def _cmd_build(self, args):
        tag = args[args.index("-t") + 1]
        self.add_image(tag)
        return 0, "Successfully built\n", ""

    def _cmd_pull(self, args):
        self.add_image(args[-1])
        return 0, f"Status: Downloaded newer image for {args[-1]}\n", ""

    def _cmd_tag(self, args):
        source, target = _normalize_reference(args[0]), _normalize_reference(args[1])
        if source not in self.images:
            return 1, "", f"Error response from daemon: No such image: {args[0]}"
        self.images[target] = self.images[source]
        return 0, "", ""

    def _cmd_run(self, args):
        name = None
        labels = {}
        image = None
        i = 0
        while i < len(args):
            token = args[i]
            if token in _RUN_VALUE_OPTIONS:
                if token == "--name":
                    name = args[i + 1]
                elif token == "--label":
                    key, _, value = args[i + 1].partition("=")
                    labels[key] = value
                i += 2
                continue
            if token.startswith("-"):
                i += 1
                continue
            image = token
            break
        if image is None or _normalize_reference(image) not in self.images:
            return 125, "", f"Unable to find image '{image}' locally"
        container = self.add_container(name or secrets.token_hex(4), image=image, labels=labels)
        container.remove_on_exit = "--rm" in args
        return 0, (container.id + "\n") if "-d" in args else "", ""

    def _exit(self, container: FakeContainer, exit_code: int) -> None:
        container.running = False
        container.exit_code = exit_code
        if container.remove_on_exit:
            del self.containers[container.id]

    def _cmd_stop(self, args):
        container = self.find(args[-1])
        if container is None:
            return 1, "", f"Error response from daemon: No such container: {args[-1]}"
        if container.running:
            self._exit(container, 0)
        return 0, args[-1] + "\n", ""

    def _cmd_kill(self, args):
        container = self.find(args[-1])
        if container is None:
            return 1, "", f"Error response from daemon: No such container: {args[-1]}"
        if not container.running:
            return 1, "", (
                f"Error response from daemon: Cannot kill container: {args[-1]}: "
                f"Container {container.id} is not running"
            )
        self._exit(container, 137)
        return 0, args[-1] + "\n", ""

    def _cmd_rm(self, args):
        container = self.find(args[-1])
        if container is None:
            return 1, "", f"Error: No such container: {args[-1]}"
        del self.containers[container.id]
        return 0, args[-1] + "\n", ""

    def _cmd_inspect(self, args):
        container = self.find(args[-1])
        if container is None:
            return 1, "[]\n", f"Error: No such object: {args[-1]}"
        return 0, json.dumps([container.inspect_data()]), ""


class FakeDockerCLI(DockerCLI):
    """DockerCLI whose subprocess layer is replaced by a FakeDaemon.

    Set ``gate`` to an ``asyncio.Event`` to hold every invocation until it
    is set.
    """

    def __init__(self, daemon: FakeDaemon):
        super().__init__(docker_command="docker", default_timeout=5)
        self.daemon = daemon
        self.calls: List[List[str]] = []
        self.gate: Optional[asyncio.Event] = None

    async def _execute(self, argv, timeout):
        self.calls.append(list(argv[1:]))
        if self.gate is not None:
            await self.gate.wait()
        return self.daemon.handle(list(argv[1:]))

    async def stream(self, args):
        self.invocation_count += 1
        self.calls.append(list(args))
        for line in self.daemon.logs.get(args[-1], []):
            yield line

    def subcommands(self) -> List[str]:
        return [call[0] for call in self.calls]


async def instant_sleep(delay: float) -> None:
    await asyncio.sleep(0)


@pytest.fixture
def daemon():
    return FakeDaemon()


@pytest.fixture
def fake_cli(daemon):
    return FakeDockerCLI(daemon)


@pytest.fixture
def workspace(tmp_path):
    path = tmp_path / "my-project"
    path.mkdir()
    return str(path)


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        settle_delay_ms=0,
        state_poll_interval_seconds=0,
        track_retry_attempts=3,
        track_retry_base_delay_ms=0,
        convergence_max_attempts=3,
        stop_timeout_seconds=1,
    )


@pytest.fixture
def session(workspace, fake_cli, test_settings):
    return WorkspaceSession(workspace, settings=test_settings, cli=fake_cli, sleep=instant_sleep)
