"""Installs the rendered CPI job template into the jobs root."""

from __future__ import annotations

from pathlib import Path
from typing import Union

import structlog

from cpi_installer.core.exceptions import with_context
from cpi_installer.core.models import InstalledJob, RenderedJobRef
from cpi_installer.installation.blob_extractor import BlobExtractor
from cpi_installer.installation.stage import Stage, step
from cpi_installer.utils.metrics import record_artifact

logger = structlog.get_logger()


class JobInstaller:
    def __init__(self, extractor: BlobExtractor, jobs_root: Union[str, Path]):
        self.extractor = extractor
        self.jobs_root = Path(jobs_root)

    def install(self, ref: RenderedJobRef, stage: Stage) -> InstalledJob:
        """Install the rendered job, reporting one step on stage.

        Errors keep their class and name the job as ``job '<name>'``.
        """
        dest = self.jobs_root / ref.name

        with step(stage, f"Installing job '{ref.name}'"):
            if self.extractor.is_installed(dest, ref.version, ref.checksum):
                logger.info("Job already installed", job=ref.name, version=ref.version, path=str(dest))
                record_artifact("job", "skipped")
            else:
                logger.info("Installing job", job=ref.name, version=ref.version, blobstore_id=ref.blobstore_id)
                try:
                    self.extractor.extract(ref.blobstore_id, ref.checksum, dest, ref.version)
                except Exception as e:
                    record_artifact("job", "failed")
                    raise with_context(e, f"job '{ref.name}'") from e
                record_artifact("job", "installed")

        return InstalledJob(name=ref.name, path=dest)
