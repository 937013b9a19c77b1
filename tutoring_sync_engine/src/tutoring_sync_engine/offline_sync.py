"""
Offline Sync

Replays the offline queue when connectivity comes back.

Listens to connectivity transitions; each transition to online starts a
drain in a background task so the caller that flipped connectivity is never
blocked on replay.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from tutoring_sync_engine.connectivity import ConnectivityMonitor
from tutoring_sync_engine.event_bus import Subscription
from tutoring_sync_engine.offline_queue import DrainResult, OfflineOperation, OfflineOperationQueue

logger = logging.getLogger(__name__)


class OfflineSync:
    """
    Background replay of queued offline operations.

    Draining is only ever triggered by an online transition, by start() when
    the device is already online with work pending, or by an explicit
    sync_now().
    """

    def __init__(
        self,
        queue: OfflineOperationQueue,
        replay: Callable[[OfflineOperation], Awaitable[Any]],
        connectivity: ConnectivityMonitor,
        enabled: bool = True,
    ):
        """
        Args:
            queue: Queue to drain
            replay: Applies one queued operation (the lifecycle manager's replay entry point)
            connectivity: Source of online/offline transitions
            enabled: Whether transitions trigger a drain
        """
        self.queue = queue
        self.replay = replay
        self.connectivity = connectivity
        self.enabled = enabled
        self.running = False
        self.last_sync: Optional[datetime] = None
        self.last_result: Optional[DrainResult] = None
        self.sync_task: Optional[asyncio.Task] = None
        self._subscription: Optional[Subscription] = None
        self._rerun = False

    async def start(self):
        """Subscribe to connectivity changes and drain anything already pending."""
        if not self.enabled:
            logger.info("📴 [OfflineSync] Offline sync is disabled")
            return

        if self.running:
            logger.warning("⚠️ [OfflineSync] Sync already running")
            return

        self.running = True
        self._subscription = self.connectivity.subscribe(self._on_connectivity_change)
        logger.info("🔄 [OfflineSync] Listening for connectivity changes")

        if self.connectivity.is_online() and len(self.queue):
            self.schedule_drain()

    async def stop(self):
        """Stop listening and wait for an in-flight drain to be cancelled."""
        self.running = False
        if self._subscription:
            self._subscription.unsubscribe()
            self._subscription = None
        if self.sync_task:
            self.sync_task.cancel()
            try:
                await self.sync_task
            except asyncio.CancelledError:
                pass
            self.sync_task = None
        logger.info("🛑 [OfflineSync] Offline sync stopped")

    def _on_connectivity_change(self, online: bool):
        if online and self.running:
            self.schedule_drain()

    def schedule_drain(self) -> Optional[asyncio.Task]:
        """Start a drain in the background unless one is already scheduled."""
        if not self.running:
            return None
        if self.sync_task and not self.sync_task.done():
            self._rerun = True
            return self.sync_task
        self.sync_task = asyncio.create_task(self._run_sync())
        return self.sync_task

    async def _run_sync(self) -> DrainResult:
        while True:
            self._rerun = False
            pending = len(self.queue)
            if pending:
                logger.info(f"🔄 [OfflineSync] Replaying {pending} queued operations...")
            result = await self.queue.drain(self.replay)
            self.last_result = result
            self.last_sync = datetime.now()
            if not result.completed:
                logger.warning(
                    f"⚠️ [OfflineSync] Drain stopped at {result.failed_operation_id}: "
                    f"{result.error} ({result.remaining} still queued)"
                )
                return result
            # Work queued while this drain was finishing gets its own pass
            if not self._rerun or not self.connectivity.is_online():
                return result

    async def sync_now(self) -> DrainResult:
        """Drain immediately and wait for the result."""
        if not self.connectivity.is_online():
            logger.warning("⚠️ [OfflineSync] sync_now called while offline, nothing replayed")
            return DrainResult(remaining=len(self.queue))
        return await self._run_sync()

    async def wait_for_sync(self) -> Optional[DrainResult]:
        """Wait for the background drain, if one is running."""
        if self.sync_task is None:
            return None
        return await self.sync_task

    def get_status(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "running": self.running,
            "online": self.connectivity.is_online(),
            "draining": self.queue.is_draining,
            "pending_operations": len(self.queue),
            "last_sync": self.last_sync.isoformat() if self.last_sync else None,
            "last_replayed": self.last_result.replayed if self.last_result else None,
            "last_error": self.last_result.error if self.last_result else None,
            "failed_operation_id": self.last_result.failed_operation_id if self.last_result else None,
        }
