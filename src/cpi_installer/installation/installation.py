"""The result of a successful CPI installation."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from cpi_installer.core.exceptions import ConfigurationError
from cpi_installer.core.models import InstalledJob, Manifest, RegistryConfig
from cpi_installer.installation.target import Target
from cpi_installer.utils.logging import register_secret

if TYPE_CHECKING:
    from cpi_installer.registry.manager import ServerManager
    from cpi_installer.registry.server import RegistryServer

CPI_EXECUTABLE = Path("bin") / "cpi"


@dataclass(frozen=True)
class Installation:
    """Immutable bundle handed to machine provisioning.

    The registry server manager is shared, not owned: starting and stopping
    the registry is up to whoever holds the installation.
    """

    target: Target
    job: InstalledJob
    manifest: Manifest
    registry_server_manager: "ServerManager"

    @property
    def root(self) -> Path:
        return self.target.root

    @property
    def job_path(self) -> Path:
        return self.job.path

    @property
    def cpi_executable_path(self) -> Path:
        return self.job.path / CPI_EXECUTABLE

    def start_registry(self, config: Optional[RegistryConfig] = None) -> "RegistryServer":
        """Start the registry with config, or the manifest's registry settings."""
        config = config or self.manifest.registry
        if config is None:
            raise ConfigurationError(
                f"No registry configuration for installation '{self.manifest.name}'"
            )
        register_secret(config.password)
        return self.registry_server_manager.start(config)

    def stop_registry(self, server: "RegistryServer") -> None:
        self.registry_server_manager.stop(server)
