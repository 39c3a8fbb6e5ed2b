"""Readiness state synchronization.

Derives the workspace readiness snapshot from three probes (initialization
marker, image, containers) and publishes it to subscribers. Probes always
query the daemon; nothing is trusted from a previous snapshot.
"""

import asyncio
from dataclasses import replace
from typing import Callable, List, Optional, Union

import structlog

from ..config import settings
from ..models.state import (
    BuildPhase,
    InitializationPhase,
    InitializationStatus,
    ReadinessSnapshot,
)
from .container.images import ImageResolver
from .container.registry import ContainerRegistry
from .container.utils import maybe_await

logger = structlog.get_logger(__name__)

MarkerProbe = Callable[[str], Union[bool, InitializationStatus]]
Subscriber = Callable[[ReadinessSnapshot], None]


class StateSynchronizer:
    """Publishes complete readiness snapshots for one workspace.

    Each refresh takes a start token. A refresh that finishes after a
    later-started refresh has already published is discarded, so an old
    answer never overwrites a newer one.
    """

    def __init__(
        self,
        workspace_path: str,
        marker_probe: MarkerProbe,
        resolver: ImageResolver,
        registry: ContainerRegistry,
        image_name: str,
        poll_interval: Optional[float] = None,
        sleep: Callable = asyncio.sleep,
    ):
        self._workspace_path = workspace_path
        self._marker_probe = marker_probe
        self._resolver = resolver
        self._registry = registry
        self._image_name = image_name
        self._poll_interval = (
            settings.state.state_poll_interval_seconds if poll_interval is None else poll_interval
        )
        self._sleep = sleep

        self._snapshot = ReadinessSnapshot()
        self._subscribers: List[Subscriber] = []
        self._phase = InitializationPhase.UNKNOWN
        self._refresh_counter = 0
        self._last_published_token = 0
        self._publish_counter = 0
        self._poll_task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def snapshot(self) -> ReadinessSnapshot:
        return self._snapshot

    @property
    def initialization_phase(self) -> InitializationPhase:
        return self._phase

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback for every published snapshot.

        Returns a function that removes the subscription.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def set_loading(self, loading: bool, label: Optional[str] = None) -> ReadinessSnapshot:
        """Republish the current snapshot with the loading flag changed."""
        return self._publish(self._snapshot.with_loading(loading, label))

    async def refresh(self, trigger: str = "manual") -> ReadinessSnapshot:
        """Run all probes and publish the resulting snapshot."""
        self._refresh_counter += 1
        token = self._refresh_counter
        self._phase = InitializationPhase.CHECKING
        errors: List[str] = []

        missing: tuple = ()
        try:
            probed = await maybe_await(self._marker_probe(self._workspace_path))
            if isinstance(probed, InitializationStatus):
                is_initialized = probed.is_initialized
                missing = tuple(probed.missing_components)
            else:
                is_initialized = bool(probed)
        except Exception as e:
            logger.warning("Initialization probe failed", error=str(e))
            errors.append(f"initialization: {e}")
            is_initialized = False

        is_built = False
        build = BuildPhase.UNKNOWN
        if is_initialized:
            try:
                is_built = await self._resolver.image_exists(self._image_name)
                build = BuildPhase.READY if is_built else BuildPhase.NOT_BUILT
            except Exception as e:
                logger.warning("Image probe failed", image=self._image_name, error=str(e))
                errors.append(f"image: {e}")

        container_count = 0
        try:
            records = await self._registry.list_active()
            container_count = sum(1 for r in records if r.running)
        except Exception as e:
            logger.warning("Container probe failed", error=str(e))
            errors.append(f"containers: {e}")

        if token < self._last_published_token:
            logger.debug("Discarding stale refresh", token=token, trigger=trigger)
            return self._snapshot
        self._last_published_token = token

        self._phase = (
            InitializationPhase.INITIALIZED if is_initialized else InitializationPhase.NOT_INITIALIZED
        )
        snapshot = ReadinessSnapshot(
            is_initialized=is_initialized,
            is_built=is_built,
            container_count=container_count,
            is_loading=self._snapshot.is_loading,
            loading_label=self._snapshot.loading_label,
            initialization=self._phase,
            build=build,
            missing_components=missing,
            errors=tuple(errors),
        )
        logger.debug(
            "Readiness refreshed",
            trigger=trigger,
            initialized=is_initialized,
            built=is_built,
            containers=container_count,
        )
        return self._publish(snapshot)

    async def refresh_until_converged(
        self, max_attempts: Optional[int] = None, interval: float = 0.5
    ) -> ReadinessSnapshot:
        """Refresh until two consecutive snapshots agree or attempts run out."""
        if max_attempts is None:
            max_attempts = settings.state.convergence_max_attempts
        previous = await self.refresh(trigger="converge")
        for _ in range(max_attempts - 1):
            await self._sleep(interval)
            current = await self.refresh(trigger="converge")
            if current.same_state(previous):
                return current
            previous = current
        logger.info("Readiness did not converge", attempts=max_attempts)
        return previous

    def _publish(self, snapshot: ReadinessSnapshot) -> ReadinessSnapshot:
        self._publish_counter += 1
        snapshot = replace(snapshot, sequence=self._publish_counter)
        self._snapshot = snapshot
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Readiness subscriber failed")
        return snapshot

    async def start(self) -> None:
        """Start periodic polling."""
        if self._running or self._poll_interval <= 0:
            return
        self._running = True
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info("Readiness polling started", interval=self._poll_interval)

    async def stop(self) -> None:
        """Stop periodic polling."""
        self._running = False
        if self._poll_task:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None
        logger.info("Readiness polling stopped")

    async def _poll_loop(self) -> None:
        while self._running:
            await self._sleep(self._poll_interval)
            if self._snapshot.is_loading:
                continue
            try:
                await self.refresh(trigger="periodic")
            except Exception as e:
                logger.error("Periodic refresh failed", error=str(e))
