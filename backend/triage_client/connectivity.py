from __future__ import annotations

import logging
import threading
from typing import Callable

import httpx

LOGGER = logging.getLogger(__name__)

ReconnectListener = Callable[[], None]
Probe = Callable[[], bool]


def http_probe(url: str, *, timeout_seconds: float = 3.0) -> Probe:
    """Build a probe that reports online when ``url`` answers below 500."""

    def _probe() -> bool:
        try:
            response = httpx.get(url, timeout=timeout_seconds)
        except httpx.HTTPError:
            return False
        return response.status_code < 500

    return _probe


class ConnectivityMonitor:
    """Tracks the online flag and fires listeners on the offline -> online edge only."""

    def __init__(self, *, online: bool = True, probe: Probe | None = None) -> None:
        self._online = online
        self._probe = probe
        self._listeners: list[ReconnectListener] = []
        self._lock = threading.Lock()

    @property
    def is_online(self) -> bool:
        return self._online

    def add_reconnect_listener(self, listener: ReconnectListener) -> None:
        self._listeners.append(listener)

    def remove_reconnect_listener(self, listener: ReconnectListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def set_online(self, online: bool) -> bool:
        """Record the current state. Returns True when this call was a reconnect."""
        with self._lock:
            reconnected = online and not self._online
            self._online = online
        if reconnected:
            LOGGER.info("Connectivity restored")
            for listener in list(self._listeners):
                try:
                    listener()
                except Exception:
                    LOGGER.exception("Reconnect listener failed")
        elif not online:
            LOGGER.info("Connectivity lost")
        return reconnected

    def refresh(self) -> bool:
        if self._probe is None:
            return self._online
        self.set_online(self._probe())
        return self._online
