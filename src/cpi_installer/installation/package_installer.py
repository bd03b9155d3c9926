"""Installs compiled packages into the packages root."""

from __future__ import annotations

from pathlib import Path
from typing import Union

import structlog

from cpi_installer.core.exceptions import with_context
from cpi_installer.core.models import CompiledPackageRef
from cpi_installer.installation.blob_extractor import BlobExtractor
from cpi_installer.utils.metrics import record_artifact

logger = structlog.get_logger()


class PackageInstaller:
    """Fetches, verifies and extracts one compiled package.

    The destination is keyed by package name only, so installing a new
    version of a package replaces the one currently bound to that name.
    """

    def __init__(self, extractor: BlobExtractor):
        self.extractor = extractor

    def install(self, ref: CompiledPackageRef, packages_root: Union[str, Path]) -> Path:
        """Install ref under packages_root and return the installed path.

        Errors name the package as ``package '<name>/<version>'``.

        Raises:
            ArtifactFetchError: If the blob cannot be fetched
            ChecksumMismatch: If the blob does not match ref.checksum
            ExtractionError: If the archive cannot be extracted
        """
        dest = Path(packages_root) / ref.name

        if self.extractor.is_installed(dest, ref.version, ref.checksum):
            logger.info("Package already installed", package=ref.name, version=ref.version, path=str(dest))
            record_artifact("package", "skipped")
            return dest

        logger.info("Installing package", package=ref.name, version=ref.version, blobstore_id=ref.blobstore_id)
        try:
            self.extractor.extract(ref.blobstore_id, ref.checksum, dest, ref.version)
        except Exception as e:
            record_artifact("package", "failed")
            raise with_context(e, f"package '{ref.id}'") from e
        record_artifact("package", "installed")
        return dest
