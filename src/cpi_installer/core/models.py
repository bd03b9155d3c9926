"""Core data models for the CPI installer."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, JsonValue, field_validator

# Loosely-typed manifest property bag (str, number, bool, null, list, map).
# Values are passed through untouched.
PropertyValue = JsonValue
Properties = Dict[str, PropertyValue]


class RegistryConfig(BaseModel):
    """Connection settings for the local agent registry."""

    model_config = ConfigDict(frozen=True)

    host: str = Field("127.0.0.1", description="Address the registry binds to")
    port: int = Field(6901, ge=0, le=65535, description="Registry listen port")
    username: str = Field(..., description="Basic auth username")
    password: str = Field(..., description="Basic auth password")


class Manifest(BaseModel):
    """Installation manifest, already parsed by the caller."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Deployment name")
    release: str = Field(..., description="Name of the release providing the CPI job")
    properties: Properties = Field(default_factory=dict, description="Opaque job properties")
    registry: Optional[RegistryConfig] = Field(None, description="Local registry settings")


class CompiledPackageRef(BaseModel):
    """Content-addressed reference to a compiled package blob."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str = Field(..., description="Content fingerprint")
    blobstore_id: str
    checksum: str

    @property
    def id(self) -> str:
        return f"{self.name}/{self.version}"


class RenderedJobRef(BaseModel):
    """Content-addressed reference to the rendered CPI job template."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str = Field(..., description="Content fingerprint")
    blobstore_id: str
    checksum: str

    @property
    def id(self) -> str:
        return f"{self.name}/{self.version}"


class State(BaseModel):
    """Resolved installation plan."""

    model_config = ConfigDict(frozen=True)

    rendered_job_ref: RenderedJobRef
    compiled_package_refs: Tuple[CompiledPackageRef, ...] = ()

    @field_validator("compiled_package_refs")
    @classmethod
    def unique_package_names(cls, v: Tuple[CompiledPackageRef, ...]) -> Tuple[CompiledPackageRef, ...]:
        names = [ref.name for ref in v]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate compiled packages: {', '.join(duplicates)}")
        return v


class InstalledJob(BaseModel):
    """A rendered job extracted on disk."""

    model_config = ConfigDict(frozen=True)

    name: str
    path: Path


class ReleasePackage(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    fingerprint: str
    dependencies: Tuple[str, ...] = ()


class ReleaseJob(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    fingerprint: str
    packages: Tuple[str, ...] = ()


class Release(BaseModel):
    """Release metadata needed to resolve an installation state."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    jobs: Tuple[ReleaseJob, ...] = ()
    packages: Tuple[ReleasePackage, ...] = ()

    def find_job(self, name: str) -> Optional[ReleaseJob]:
        for job in self.jobs:
            if job.name == name:
                return job
        return None

    def find_package(self, name: str) -> Optional[ReleasePackage]:
        for package in self.packages:
            if package.name == name:
                return package
        return None
