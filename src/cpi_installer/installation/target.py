"""Installation target: the root directory and its well-known subpaths."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Union

from cpi_installer.core.config import Settings


@dataclass(frozen=True)
class Target:
    root: Union[str, Path]

    def __post_init__(self) -> None:
        object.__setattr__(self, "root", Path(self.root))

    @classmethod
    def from_settings(cls, settings: Settings) -> "Target":
        return cls(settings.installation_root)

    @property
    def jobs_path(self) -> Path:
        return self.root / "jobs"

    @property
    def packages_path(self) -> Path:
        return self.root / "packages"

    @property
    def temp_path(self) -> Path:
        return self.root / "tmp"

    @property
    def blobstore_path(self) -> Path:
        return self.root / "blobs"
