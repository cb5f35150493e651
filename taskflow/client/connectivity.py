"""
Connectivity Monitor
====================

Tracks whether the server is reachable and notifies listeners on every
online/offline transition.
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

import httpx

logger = logging.getLogger(__name__)

Listener = Callable[[bool], Union[None, Awaitable[None]]]


class SyncState(str, Enum):
    """What the client's task list currently reflects."""
    SYNCED = "synced"
    OFFLINE_QUEUED = "offline_queued"
    FLUSHING = "flushing"


class ConnectivityMonitor:
    """
    Online/offline state fed by platform signals (``set_online``) or by
    probing the server's health endpoint.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        online: bool = True,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.timeout = timeout
        self._transport = transport
        self._online = online
        self._listeners: list[Listener] = []
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def online(self) -> bool:
        return self._online

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def set_online(self, online: bool) -> None:
        """Record the current state; listeners run only on a change."""
        if online == self._online:
            return
        self._online = online
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        for listener in list(self._listeners):
            try:
                result = listener(online)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Connectivity listener failed")

    async def probe(self) -> bool:
        """Check ``/health`` and update the state from the answer."""
        if self.base_url is None:
            return self._online
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.get("/health")
            reachable = response.is_success
        except httpx.HTTPError as e:
            logger.debug("Health probe failed: %s", e)
            reachable = False
        await self.set_online(reachable)
        return reachable

    # -- lifecycle ---------------------------------------------------------

    async def start(self, interval: float) -> None:
        """Probe every *interval* seconds until ``stop()``."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._watch_loop(interval))

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _watch_loop(self, interval: float) -> None:
        while self._running:
            await self.probe()
            await asyncio.sleep(interval)
