"""Unit tests for StateSynchronizer."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from codeforge.models.containers import ContainerRecord
from codeforge.models.errors import DaemonUnreachableError
from codeforge.models.state import (
    BuildPhase,
    InitializationPhase,
    InitializationStatus,
    ReadinessSnapshot,
)
from codeforge.services.container.images import ImageResolver
from codeforge.services.container.initializer import WorkspaceInitializer
from codeforge.services.container.naming import name_for
from codeforge.services.container.registry import ContainerRegistry
from codeforge.services.synchronizer import StateSynchronizer


async def _no_sleep(delay):
    await asyncio.sleep(0)


@pytest.fixture
def image_name(workspace):
    return name_for(workspace)


@pytest.fixture
def synchronizer(workspace, fake_cli, image_name):
    return StateSynchronizer(
        workspace,
        WorkspaceInitializer().status,
        ImageResolver(fake_cli),
        ContainerRegistry(fake_cli, image_name),
        image_name,
        poll_interval=0,
        sleep=_no_sleep,
    )


def _mock_synchronizer(marker=True, image=True, records=()):
    resolver = MagicMock()
    resolver.image_exists = AsyncMock(return_value=image)
    registry = MagicMock()
    registry.list_active = AsyncMock(return_value=list(records))
    probe = MagicMock(return_value=marker)
    sync = StateSynchronizer("/w", probe, resolver, registry, "cf-w", poll_interval=0, sleep=_no_sleep)
    return sync, probe, resolver, registry


class TestRefresh:
    """Test snapshot derivation."""

    @pytest.mark.asyncio
    async def test_fresh_workspace(self, synchronizer):
        snapshot = await synchronizer.refresh()
        assert snapshot.is_initialized is False
        assert snapshot.is_built is False
        assert snapshot.container_count == 0
        assert snapshot.initialization is InitializationPhase.NOT_INITIALIZED
        assert ".codeforge/Dockerfile" in snapshot.missing_components
        assert snapshot.errors == ()

    @pytest.mark.asyncio
    async def test_image_probe_skipped_when_not_initialized(self, synchronizer, fake_cli):
        await synchronizer.refresh()
        assert "image" not in fake_cli.subcommands()

    @pytest.mark.asyncio
    async def test_initialized_and_built(self, synchronizer, workspace, daemon, image_name):
        WorkspaceInitializer().initialize(workspace)
        daemon.add_image(image_name)
        daemon.add_container(f"{image_name}_terminal_1")
        daemon.add_container(f"{image_name}_command_2", running=False)

        snapshot = await synchronizer.refresh()

        assert snapshot.is_initialized
        assert snapshot.is_built
        assert snapshot.build is BuildPhase.READY
        assert snapshot.container_count == 1

    @pytest.mark.asyncio
    async def test_initialized_not_built(self, synchronizer, workspace):
        WorkspaceInitializer().initialize(workspace)
        snapshot = await synchronizer.refresh()
        assert snapshot.is_initialized
        assert snapshot.build is BuildPhase.NOT_BUILT

    @pytest.mark.asyncio
    async def test_daemon_down_degrades_fields(self, synchronizer, workspace, daemon):
        WorkspaceInitializer().initialize(workspace)
        daemon.unreachable = True
        snapshot = await synchronizer.refresh()
        assert snapshot.is_initialized is True
        assert snapshot.is_built is False
        assert snapshot.container_count == 0
        assert len(snapshot.errors) == 2
        assert snapshot.errors[0].startswith("image:")

    @pytest.mark.asyncio
    async def test_marker_probe_failure_degrades(self):
        sync, probe, resolver, _ = _mock_synchronizer()
        probe.side_effect = PermissionError("denied")
        snapshot = await sync.refresh()
        assert snapshot.is_initialized is False
        assert snapshot.errors[0].startswith("initialization:")
        resolver.image_exists.assert_not_called()

    @pytest.mark.asyncio
    async def test_async_marker_probe(self):
        sync, probe, _, _ = _mock_synchronizer()
        probe.side_effect = None
        sync._marker_probe = AsyncMock(return_value=InitializationStatus(True))
        snapshot = await sync.refresh()
        assert snapshot.is_initialized

    @pytest.mark.asyncio
    async def test_fresh_query_every_refresh(self):
        sync, probe, resolver, registry = _mock_synchronizer()
        await sync.refresh()
        await sync.refresh()
        assert probe.call_count == 2
        assert resolver.image_exists.await_count == 2
        assert registry.list_active.await_count == 2

    @pytest.mark.asyncio
    async def test_counts_running_only(self):
        records = [
            ContainerRecord(id="a", name="a", running=True),
            ContainerRecord(id="b", name="b", running=False),
            ContainerRecord(id="c", name="c", running=True),
        ]
        sync, _, _, _ = _mock_synchronizer(records=records)
        snapshot = await sync.refresh()
        assert snapshot.container_count == 2

    @pytest.mark.asyncio
    async def test_stale_refresh_is_discarded(self):
        sync, _, _, registry = _mock_synchronizer()
        first_gate = asyncio.Event()
        calls = {"n": 0}

        async def list_active():
            calls["n"] += 1
            if calls["n"] == 1:
                await first_gate.wait()
                return [ContainerRecord(id="old", name="old")]
            return []

        registry.list_active = list_active

        slow = asyncio.create_task(sync.refresh())
        await asyncio.sleep(0)
        fast = await sync.refresh()
        first_gate.set()
        stale = await slow

        assert fast.container_count == 0
        assert stale is fast
        assert sync.snapshot.container_count == 0


class TestSubscriptions:
    """Test snapshot publication."""

    @pytest.mark.asyncio
    async def test_subscribers_receive_complete_snapshots(self):
        sync, _, _, _ = _mock_synchronizer()
        received = []
        sync.subscribe(received.append)
        await sync.refresh()
        assert len(received) == 1
        assert isinstance(received[0], ReadinessSnapshot)
        assert received[0].is_built

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        sync, _, _, _ = _mock_synchronizer()
        received = []
        unsubscribe = sync.subscribe(received.append)
        unsubscribe()
        unsubscribe()
        await sync.refresh()
        assert received == []

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_block_others(self):
        sync, _, _, _ = _mock_synchronizer()
        received = []

        def broken(snapshot):
            raise RuntimeError("boom")

        sync.subscribe(broken)
        sync.subscribe(received.append)
        await sync.refresh()
        assert len(received) == 1

    def test_set_loading_republishes(self):
        sync, _, _, _ = _mock_synchronizer()
        received = []
        sync.subscribe(received.append)
        sync.set_loading(True, "Building image")
        sync.set_loading(False)
        assert [s.is_loading for s in received] == [True, False]
        assert received[0].loading_label == "Building image"
        assert received[1].loading_label is None
        assert received[1].sequence > received[0].sequence

    @pytest.mark.asyncio
    async def test_refresh_keeps_loading_flag(self):
        sync, _, _, _ = _mock_synchronizer()
        sync.set_loading(True, "Working")
        snapshot = await sync.refresh()
        assert snapshot.is_loading


class TestConvergenceAndPolling:
    """Test bounded convergence polling and the periodic loop."""

    @pytest.mark.asyncio
    async def test_converges_when_two_snapshots_agree(self):
        sync, _, resolver, _ = _mock_synchronizer()
        resolver.image_exists = AsyncMock(side_effect=[False, True, True, True])
        snapshot = await sync.refresh_until_converged(max_attempts=5, interval=0)
        assert snapshot.is_built
        assert resolver.image_exists.await_count == 3

    @pytest.mark.asyncio
    async def test_convergence_is_bounded(self):
        sync, _, resolver, _ = _mock_synchronizer()
        resolver.image_exists = AsyncMock(side_effect=[False, True, False, True])
        await sync.refresh_until_converged(max_attempts=3, interval=0)
        assert resolver.image_exists.await_count == 3

    @pytest.mark.asyncio
    async def test_polling_start_stop(self):
        sync, probe, _, _ = _mock_synchronizer()
        sync._poll_interval = 0.01
        await sync.start()
        assert sync.is_polling
        for _ in range(20):
            await asyncio.sleep(0)
        await sync.stop()
        assert not sync.is_polling
        assert probe.call_count >= 1

    @pytest.mark.asyncio
    async def test_polling_disabled_with_zero_interval(self):
        sync, _, _, _ = _mock_synchronizer()
        await sync.start()
        assert not sync.is_polling

    @pytest.mark.asyncio
    async def test_poll_skips_while_loading(self):
        sync, probe, _, _ = _mock_synchronizer()
        sync._poll_interval = 0.01
        sync.set_loading(True, "busy")
        await sync.start()
        for _ in range(20):
            await asyncio.sleep(0)
        await sync.stop()
        assert probe.call_count == 0

    @pytest.mark.asyncio
    async def test_daemon_error_in_registry_is_reported(self):
        sync, _, _, registry = _mock_synchronizer()
        registry.list_active = AsyncMock(side_effect=DaemonUnreachableError())
        snapshot = await sync.refresh()
        assert snapshot.container_count == 0
        assert snapshot.errors == ("containers: Docker daemon is not reachable",)
