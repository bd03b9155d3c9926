"""Orchestrates a CPI installation: state, packages, job, result."""

from __future__ import annotations

import threading
import time
from concurrent import futures
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple, Union

import structlog

from cpi_installer.core.exceptions import Cancelled, InstallerError, StateResolutionError, with_context
from cpi_installer.core.models import CompiledPackageRef, InstalledJob, Manifest, State
from cpi_installer.installation.installation import Installation
from cpi_installer.installation.job_installer import JobInstaller
from cpi_installer.installation.package_installer import PackageInstaller
from cpi_installer.installation.stage import Stage, step
from cpi_installer.installation.state_builder import StateBuilder
from cpi_installer.installation.target import Target
from cpi_installer.registry.manager import ServerManager
from cpi_installer.utils.logging import bind_install_context
from cpi_installer.utils.metrics import INSTALL_DURATION

logger = structlog.get_logger()


class InstallerStatus(str, Enum):
    NOT_STARTED = "not_started"
    STATE_BUILT = "state_built"
    PACKAGES_INSTALLED = "packages_installed"
    JOB_INSTALLED = "job_installed"
    ASSEMBLED = "assembled"
    FAILED = "failed"


class Installer:
    """Installs the CPI described by a manifest onto a target.

    Package installs run on a bounded thread pool; the job is installed only
    after every package install has finished. Concurrent install calls
    against the same target must be serialized by the caller.
    """

    def __init__(
        self,
        target: Target,
        state_builder: StateBuilder,
        packages_path: Union[str, Path],
        package_installer: PackageInstaller,
        job_installer: JobInstaller,
        registry_server_manager: ServerManager,
        max_workers: int = 4,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.target = target
        self.state_builder = state_builder
        self.packages_path = packages_path
        self.package_installer = package_installer
        self.job_installer = job_installer
        self.registry_server_manager = registry_server_manager
        self.max_workers = max_workers

        self.status = InstallerStatus.NOT_STARTED
        self.failure_reason: Optional[str] = None

    def install(
        self,
        manifest: Manifest,
        stage: Stage,
        cancel_event: Optional[threading.Event] = None,
    ) -> Installation:
        """Install the CPI for manifest and return the resulting Installation.

        Raises:
            StateResolutionError: If the installation state cannot be built
            ArtifactFetchError: If a package or job blob cannot be fetched
            ChecksumMismatch: If a fetched blob fails verification
            ExtractionError: If a package or job cannot be extracted
            Cancelled: If cancel_event is set before the install completes
        """
        self.status = InstallerStatus.NOT_STARTED
        self.failure_reason = None
        bind_install_context(manifest)
        started = time.monotonic()

        try:
            installation = self._install(manifest, stage, cancel_event)
        except InstallerError as e:
            self._fail(e)
            INSTALL_DURATION.labels(outcome="failed").observe(time.monotonic() - started)
            raise

        INSTALL_DURATION.labels(outcome="succeeded").observe(time.monotonic() - started)
        logger.info("Installation assembled", root=str(self.target.root), job_path=str(installation.job.path))
        return installation

    def _install(self, manifest: Manifest, stage: Stage, cancel_event: Optional[threading.Event]) -> Installation:
        self._check_cancelled(cancel_event)

        try:
            state = self.state_builder.build(manifest, stage)
        except StateResolutionError:
            raise
        except Exception as e:
            raise StateResolutionError(f"Building installation state: {e}") from e
        self.status = InstallerStatus.STATE_BUILT
        logger.info(
            "Installation state built",
            job=state.rendered_job_ref.name,
            package_count=len(state.compiled_package_refs),
        )

        self._install_packages(state, stage, cancel_event)
        self.status = InstallerStatus.PACKAGES_INSTALLED

        self._check_cancelled(cancel_event)
        installed_job = self._install_job(state, stage)
        self.status = InstallerStatus.JOB_INSTALLED

        installation = Installation(
            target=self.target,
            job=installed_job,
            manifest=manifest,
            registry_server_manager=self.registry_server_manager,
        )
        self.status = InstallerStatus.ASSEMBLED
        return installation

    def _install_packages(self, state: State, stage: Stage, cancel_event: Optional[threading.Event]) -> None:
        refs = state.compiled_package_refs
        if not refs:
            logger.info("No compiled packages to install")
            return

        # Packages write to distinct directories; a failing package does not
        # roll back or stop the others, its error is reported afterwards.
        results: List[Tuple[CompiledPackageRef, Optional[BaseException]]] = []
        with futures.ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(refs)),
            thread_name_prefix="package-install",
        ) as pool:
            submitted = [(ref, pool.submit(self._install_package, ref, stage, cancel_event)) for ref in refs]
            for ref, future in submitted:
                results.append((ref, future.exception()))

        self._check_cancelled(cancel_event)
        for ref, error in results:
            if error is None:
                continue
            # installer errors already name the package
            if isinstance(error, InstallerError) or not isinstance(error, Exception):
                raise error
            raise with_context(error, f"Installing package '{ref.id}'") from error

    def _install_package(
        self, ref: CompiledPackageRef, stage: Stage, cancel_event: Optional[threading.Event]
    ) -> Path:
        self._check_cancelled(cancel_event)
        with step(stage, f"Installing package '{ref.id}'"):
            return self.package_installer.install(ref, self.packages_path)

    def _install_job(self, state: State, stage: Stage) -> InstalledJob:
        ref = state.rendered_job_ref
        try:
            return self.job_installer.install(ref, stage)
        except InstallerError:
            raise
        except Exception as e:
            raise with_context(e, f"Installing job '{ref.name}'") from e

    def _check_cancelled(self, cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise Cancelled("Installation cancelled")

    def _fail(self, error: InstallerError) -> None:
        self.status = InstallerStatus.FAILED
        self.failure_reason = str(error)
        logger.error("Installation failed", error=str(error), code=error.code)
