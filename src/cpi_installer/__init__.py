"""CPI installer - installs a CPI job and its compiled packages onto a local target."""

__version__ = "0.1.0"

from cpi_installer.core.config import Settings
from cpi_installer.core.models import (
    CompiledPackageRef,
    InstalledJob,
    Manifest,
    RegistryConfig,
    RenderedJobRef,
    State,
)
from cpi_installer.installation.installation import Installation
from cpi_installer.installation.installer import Installer
from cpi_installer.installation.target import Target

__all__ = [
    "Settings",
    "Manifest",
    "RegistryConfig",
    "CompiledPackageRef",
    "RenderedJobRef",
    "State",
    "InstalledJob",
    "Installation",
    "Installer",
    "Target",
    "__version__",
]
