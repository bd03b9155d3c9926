"""Local registry the agent contacts for its settings."""

from .manager import ServerManager
from .server import RegistryServer, SettingsStore, create_registry_app

__all__ = [
    "ServerManager",
    "RegistryServer",
    "SettingsStore",
    "create_registry_app",
]
