"""Wiring of an Installer from settings."""

from typing import Optional

import structlog

from cpi_installer.core.config import Settings
from cpi_installer.installation.blob_extractor import BlobExtractor
from cpi_installer.installation.blobstore import Blobstore, create_blobstore
from cpi_installer.installation.installer import Installer
from cpi_installer.installation.job_installer import JobInstaller
from cpi_installer.installation.package_installer import PackageInstaller
from cpi_installer.installation.state_builder import StateBuilder
from cpi_installer.installation.target import Target
from cpi_installer.registry.manager import ServerManager
from cpi_installer.utils.logging import register_secret

logger = structlog.get_logger()


def create_installer(
    state_builder: StateBuilder,
    settings: Optional[Settings] = None,
    blobstore: Optional[Blobstore] = None,
    registry_server_manager: Optional[ServerManager] = None,
) -> Installer:
    """Build an Installer for the target described by settings.

    Args:
        state_builder: Resolves manifests into installation states
        settings: Installer settings (default: read from the environment)
        blobstore: Blobstore override (default: the configured provider)
        registry_server_manager: Manager handed to the Installation
    """
    if settings is None:
        settings = Settings()

    register_secret(settings.blobstore_password)
    target = Target.from_settings(settings)
    if blobstore is None:
        blobstore = create_blobstore(settings, target.blobstore_path)
    extractor = BlobExtractor(blobstore, target.temp_path)

    logger.info(
        "Installer configured",
        root=str(target.root),
        blobstore=type(blobstore).__name__,
        max_workers=settings.max_workers,
    )
    return Installer(
        target=target,
        state_builder=state_builder,
        packages_path=target.packages_path,
        package_installer=PackageInstaller(extractor),
        job_installer=JobInstaller(extractor, target.jobs_path),
        registry_server_manager=registry_server_manager or ServerManager(),
        max_workers=settings.max_workers,
    )
