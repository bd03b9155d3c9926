"""
Installation pipeline.

Installer builds the installation state, installs the compiled packages and
the rendered CPI job from the blobstore, and returns an Installation.
"""

from .blob_extractor import BlobExtractor
from .blobstore import Blobstore, HTTPBlobstore, LocalBlobstore, S3Blobstore, create_blobstore
from .factory import create_installer
from .installation import Installation
from .installer import Installer, InstallerStatus
from .job_installer import JobInstaller
from .package_installer import PackageInstaller
from .stage import LoggingStage, Stage, StepOutcome, step
from .state_builder import Builder, ReleaseSetResolver, StateBuilder
from .target import Target

__all__ = [
    "BlobExtractor",
    "Blobstore",
    "HTTPBlobstore",
    "LocalBlobstore",
    "S3Blobstore",
    "create_blobstore",
    "create_installer",
    "Installation",
    "Installer",
    "InstallerStatus",
    "JobInstaller",
    "PackageInstaller",
    "LoggingStage",
    "Stage",
    "StepOutcome",
    "step",
    "Builder",
    "ReleaseSetResolver",
    "StateBuilder",
    "Target",
]
