"""Resolution of a manifest and release into an installation state."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Protocol

import structlog

from cpi_installer.core.exceptions import InstallerError, StateResolutionError
from cpi_installer.core.models import (
    CompiledPackageRef,
    Manifest,
    Release,
    ReleaseJob,
    ReleasePackage,
    RenderedJobRef,
    State,
)
from cpi_installer.installation.stage import Stage, step

logger = structlog.get_logger()

CPI_JOB_NAME = "cpi"


class StateBuilder(Protocol):
    def build(self, manifest: Manifest, stage: Stage) -> State:
        ...


class ReleaseResolver(Protocol):
    def find(self, name: str) -> Optional[Release]:
        ...


class CompiledPackageRepo(Protocol):
    def find(self, package: ReleasePackage) -> Optional[CompiledPackageRef]:
        ...


class JobRenderer(Protocol):
    def render(self, job: ReleaseJob, manifest: Manifest) -> RenderedJobRef:
        ...


class ReleaseSetResolver:
    """In-memory release lookup by name."""

    def __init__(self, releases: Iterable[Release] = ()):
        self._releases: Dict[str, Release] = {r.name: r for r in releases}

    def add(self, release: Release) -> None:
        self._releases[release.name] = release

    def find(self, name: str) -> Optional[Release]:
        return self._releases.get(name)


def resolve_package_closure(release: Release, roots: Iterable[str]) -> List[ReleasePackage]:
    """Return the packages reachable from roots, dependencies first.

    Ties keep the order in which packages are first named, so the result is
    deterministic for a given release.

    Raises:
        StateResolutionError: On unknown package names or dependency cycles
    """
    ordered: List[ReleasePackage] = []
    done: set = set()
    visiting: List[str] = []

    def visit(name: str, required_by: str) -> None:
        if name in done:
            return
        if name in visiting:
            cycle = " -> ".join(visiting[visiting.index(name):] + [name])
            raise StateResolutionError(f"Package dependency cycle: {cycle}")
        package = release.find_package(name)
        if package is None:
            raise StateResolutionError(
                f"Package '{name}' required by {required_by} not found in release '{release.name}'"
            )
        visiting.append(name)
        for dependency in package.dependencies:
            visit(dependency, f"package '{name}'")
        visiting.pop()
        done.add(name)
        ordered.append(package)

    for root in roots:
        visit(root, "the CPI job")
    return ordered


class Builder:
    """Builds the installation state from a release's CPI job."""

    def __init__(
        self,
        release_resolver: ReleaseResolver,
        compiled_package_repo: CompiledPackageRepo,
        job_renderer: JobRenderer,
        cpi_job_name: str = CPI_JOB_NAME,
    ):
        self.release_resolver = release_resolver
        self.compiled_package_repo = compiled_package_repo
        self.job_renderer = job_renderer
        self.cpi_job_name = cpi_job_name

    def build(self, manifest: Manifest, stage: Stage) -> State:
        with step(stage, "Resolving installation state"):
            return self._build(manifest)

    def _build(self, manifest: Manifest) -> State:
        release = self.release_resolver.find(manifest.release)
        if release is None:
            raise StateResolutionError(f"Release '{manifest.release}' not found")

        job = release.find_job(self.cpi_job_name)
        if job is None:
            raise StateResolutionError(
                f"Release '{release.name}' does not contain a '{self.cpi_job_name}' job"
            )

        packages = resolve_package_closure(release, job.packages)

        compiled_refs = []
        for package in packages:
            ref = self.compiled_package_repo.find(package)
            if ref is None:
                raise StateResolutionError(
                    f"No compiled package found for '{package.name}/{package.fingerprint}'"
                )
            compiled_refs.append(ref)

        try:
            rendered = self.job_renderer.render(job, manifest)
        except InstallerError as e:
            raise StateResolutionError(f"Rendering job '{job.name}': {e}") from e
        except Exception as e:
            raise StateResolutionError(f"Rendering job '{job.name}' failed: {e}") from e

        logger.info(
            "Installation state resolved",
            release=release.name,
            job=rendered.name,
            packages=[ref.name for ref in compiled_refs],
        )
        return State(rendered_job_ref=rendered, compiled_package_refs=tuple(compiled_refs))
