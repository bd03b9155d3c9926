"""Lifecycle management for registry servers."""

from __future__ import annotations

import threading
from typing import List

import structlog

from cpi_installer.core.models import RegistryConfig
from cpi_installer.registry.server import RegistryServer

logger = structlog.get_logger()


class ServerManager:
    """Starts and stops registry servers.

    The installer only hands a manager to the Installation; callers decide
    when the registry runs.
    """

    def __init__(self):
        self._servers: List[RegistryServer] = []
        self._lock = threading.Lock()

    def start(self, config: RegistryConfig, timeout: float = 10.0) -> RegistryServer:
        server = RegistryServer(config)
        server.start(timeout=timeout)
        with self._lock:
            self._servers.append(server)
        return server

    def stop(self, server: RegistryServer) -> None:
        server.stop()
        with self._lock:
            if server in self._servers:
                self._servers.remove(server)

    def stop_all(self) -> None:
        with self._lock:
            servers = list(self._servers)
        for server in servers:
            self.stop(server)

    @property
    def running(self) -> List[RegistryServer]:
        with self._lock:
            return [s for s in self._servers if s.is_running]
