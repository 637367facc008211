# src/vitordo/resilience/network.py

from __future__ import annotations

"""
Network reachability signal.

The monitor holds the current online/offline verdict and notifies listeners on
changes. The verdict is fed either explicitly (set_online) or by the probe loop,
which issues a lightweight HTTP request to a known endpoint.
"""

import asyncio
import logging
from collections.abc import Callable

import httpx

logger = logging.getLogger(__name__)

NetworkListener = Callable[[bool], None]


class NetworkMonitor:
    def __init__(self, *, online: bool = True) -> None:
        self._online = bool(online)
        self._listeners: list[NetworkListener] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: NetworkListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_online(self, online: bool) -> None:
        online = bool(online)
        if online == self._online:
            return
        self._online = online
        logger.info("Network is %s", "online" if online else "offline")
        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception:
                logger.exception("Network listener failed")

    async def probe(
        self,
        url: str,
        *,
        timeout_seconds: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> bool:
        """
        One reachability check. Any HTTP response (even 4xx/5xx) means the network
        path works; only transport failures count as offline.
        """
        owns_client = client is None
        http = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))
        try:
            await http.head(url)
            online = True
        except httpx.TransportError as e:
            logger.debug("Network probe failed url=%s (%s)", url, e.__class__.__name__)
            online = False
        finally:
            if owns_client:
                await http.aclose()

        self.set_online(online)
        return online


async def run_network_probe(
    monitor: NetworkMonitor,
    url: str,
    *,
    interval_seconds: float = 30.0,
    timeout_seconds: float = 5.0,
) -> None:
    """
    Poll reachability forever. To stop the loop, cancel the coroutine/task.
    """
    sleep_s = max(1.0, float(interval_seconds))

    async with httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds)) as client:
        while True:
            try:
                await monitor.probe(url, client=client)
            except Exception:
                logger.exception("Network probe crashed url=%s", url)
            await asyncio.sleep(sleep_s)
