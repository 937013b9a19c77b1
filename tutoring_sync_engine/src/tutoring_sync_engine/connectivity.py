"""
Connectivity Monitors

Tell the engine whether the backend is reachable and announce online/offline
transitions to subscribers.

ManualConnectivity is driven by the host (an OS network callback, the
/api/connectivity endpoint, tests). SocketConnectivityMonitor polls a TCP
endpoint in the background.
"""

import asyncio
import logging
import socket
from datetime import datetime
from typing import Any, Callable, Optional

from tutoring_sync_engine.event_bus import EventBus, Subscription

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """Base monitor: current state plus a transition stream (events are bools)."""

    def __init__(self, initially_online: bool = True):
        self._online = initially_online
        self._transitions = EventBus("connectivity")

    def is_online(self) -> bool:
        return self._online

    def subscribe(self, handler: Callable[[bool], Any]) -> Subscription:
        return self._transitions.subscribe(handler)

    async def _set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        if online:
            logger.info("🌐 [Connectivity] Back online")
        else:
            logger.warning("⚠️ [Connectivity] Went offline")
        await self._transitions.publish(online)

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None


class ManualConnectivity(ConnectivityMonitor):
    """Connectivity flipped explicitly by the host."""

    async def set_online(self, online: bool) -> None:
        await self._set_online(online)


class SocketConnectivityMonitor(ConnectivityMonitor):
    """
    Polls a host/port with a TCP connect.

    Resolution and connect run in a worker thread so the event loop is never
    blocked on DNS.
    """

    def __init__(
        self,
        host: str = "api.openai.com",
        port: int = 443,
        poll_interval_seconds: float = 15.0,
        timeout_seconds: float = 3.0,
        initially_online: bool = True,
    ):
        """
        Args:
            host: Host to probe
            port: TCP port to probe
            poll_interval_seconds: Seconds between probes
            timeout_seconds: Connect timeout per probe
            initially_online: State assumed before the first probe
        """
        super().__init__(initially_online=initially_online)
        self.host = host
        self.port = port
        self.poll_interval_seconds = poll_interval_seconds
        self.timeout_seconds = timeout_seconds
        self.last_check: Optional[datetime] = None
        self.poll_task: Optional[asyncio.Task] = None
        self.running = False

    def _probe(self) -> bool:
        try:
            with socket.create_connection((self.host, self.port), timeout=self.timeout_seconds):
                return True
        except OSError:
            return False

    async def check_now(self) -> bool:
        """Probe once and publish a transition if the state changed."""
        online = await asyncio.to_thread(self._probe)
        self.last_check = datetime.now()
        await self._set_online(online)
        return online

    async def start(self) -> None:
        if self.running:
            logger.warning("⚠️ [Connectivity] Probe already running")
            return
        self.running = True
        logger.info(f"🔄 [Connectivity] Probing {self.host}:{self.port} every {self.poll_interval_seconds}s")
        self.poll_task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        self.running = False
        if self.poll_task:
            self.poll_task.cancel()
            try:
                await self.poll_task
            except asyncio.CancelledError:
                pass
            self.poll_task = None
        logger.info("🛑 [Connectivity] Probe stopped")

    async def _poll_loop(self) -> None:
        while self.running:
            try:
                await self.check_now()
                await asyncio.sleep(self.poll_interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"❌ [Connectivity] Error in probe loop: {e}")
                await asyncio.sleep(self.poll_interval_seconds)
