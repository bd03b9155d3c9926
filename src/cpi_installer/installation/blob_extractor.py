"""Fetch, verify and atomically extract blobstore archives."""

from __future__ import annotations

import hashlib
import json
import os
import shutil
import tarfile
import tempfile
import zlib
from pathlib import Path
from typing import Optional, Tuple

import structlog

from cpi_installer.core.exceptions import ChecksumMismatch, ExtractionError, InstallerError
from cpi_installer.installation.blobstore import Blobstore

logger = structlog.get_logger()

MARKER_SUFFIX = ".installed.json"


def parse_checksum(checksum: str) -> Tuple[str, str]:
    """Split a checksum into (algorithm, lowercase hex digest).

    Bare digests are SHA-1; ``sha1:`` and ``sha256:`` prefixes select the
    algorithm explicitly.
    """
    value = checksum.strip()
    if ":" in value:
        algorithm, digest = value.split(":", 1)
        algorithm = algorithm.lower()
    else:
        algorithm, digest = "sha1", value
    if algorithm not in ("sha1", "sha256"):
        raise ValueError(f"Unsupported checksum algorithm '{algorithm}'")
    return algorithm, digest.lower()


def compute_checksum(file_path: Path, algorithm: str = "sha1") -> str:
    """Compute the hex digest of a file."""
    hasher = hashlib.new(algorithm)
    with open(file_path, "rb") as f:
        for block in iter(lambda: f.read(8192), b""):
            hasher.update(block)
    return hasher.hexdigest()


def verify_checksum(file_path: Path, expected: str) -> None:
    """Raise ChecksumMismatch unless file_path matches the expected checksum."""
    try:
        algorithm, digest = parse_checksum(expected)
    except ValueError as e:
        raise ChecksumMismatch(expected, f"unverifiable ({e})") from e
    actual = compute_checksum(file_path, algorithm)
    if actual != digest:
        prefix = f"{algorithm}:" if ":" in expected else ""
        raise ChecksumMismatch(expected, f"{prefix}{actual}")


def _safe_extract_tar(archive: Path, dest_dir: Path) -> None:
    """Extract a (gzipped) tarball into dest_dir, rejecting unsafe members."""
    base = dest_dir.resolve()
    try:
        with tarfile.open(archive, "r:*") as tf:
            for member in tf.getmembers():
                member_path = Path(member.name)
                if member_path.is_absolute() or ".." in member_path.parts:
                    raise ExtractionError(f"Archive contains unsafe path '{member.name}'")
                target = (base / member_path).resolve()
                if target != base and base not in target.parents:
                    raise ExtractionError(f"Archive member '{member.name}' escapes destination")
                if member.isdev():
                    raise ExtractionError(f"Archive contains device file '{member.name}'")
                if member.issym() or member.islnk():
                    link = Path(member.linkname)
                    link_target = (target.parent / link) if member.issym() else (base / link)
                    link_target = link_target.resolve()
                    if link.is_absolute() or (link_target != base and base not in link_target.parents):
                        raise ExtractionError(f"Archive link '{member.name}' escapes destination")
            # links are re-checked against the files already written
            tf.extractall(base, filter="data")
    except ExtractionError:
        raise
    except (tarfile.TarError, OSError, EOFError, zlib.error) as e:
        raise ExtractionError(f"Failed to extract archive: {e}") from e


class BlobExtractor:
    """Installs blobstore archives into destination directories.

    A destination is either fully populated or left as it was: archives are
    unpacked into a staging directory beside the destination and swapped in
    with renames. A marker file next to the destination records the version
    and checksum that were installed.
    """

    def __init__(self, blobstore: Blobstore, temp_root: Path):
        self.blobstore = blobstore
        self.temp_root = Path(temp_root)

    @staticmethod
    def marker_path(dest: Path) -> Path:
        return dest.parent / f".{dest.name}{MARKER_SUFFIX}"

    def read_marker(self, dest: Path) -> Optional[dict]:
        marker = self.marker_path(dest)
        if not marker.is_file():
            return None
        try:
            return json.loads(marker.read_text())
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable install marker", marker=str(marker))
            return None

    def is_installed(self, dest: Path, version: str, checksum: str) -> bool:
        if not dest.is_dir():
            return False
        marker = self.read_marker(dest)
        return marker == {"version": version, "checksum": checksum}

    def extract(self, blob_id: str, checksum: str, dest: Path, version: str) -> Path:
        """Fetch blob_id, verify it against checksum and install it at dest."""
        try:
            self.temp_root.mkdir(parents=True, exist_ok=True)
            dest.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix="blob-", suffix=".tgz", dir=self.temp_root)
        except OSError as e:
            raise ExtractionError(f"Failed to prepare directories for {dest}: {e}") from e
        archive = Path(tmp_name)
        # the blobstore writes by path
        os.close(fd)
        try:
            self.blobstore.get(blob_id, archive)
            verify_checksum(archive, checksum)
            logger.debug("Blob verified", blob_id=blob_id, checksum=checksum)
            self._install_archive(archive, dest)
        finally:
            archive.unlink(missing_ok=True)

        self._write_marker(dest, version, checksum)
        logger.info("Blob extracted", blob_id=blob_id, dest=str(dest), version=version)
        return dest

    def _install_archive(self, archive: Path, dest: Path) -> None:
        staging = Path(tempfile.mkdtemp(prefix=f".{dest.name}-staging-", dir=dest.parent))
        staging.chmod(0o755)
        backup: Optional[Path] = None
        try:
            _safe_extract_tar(archive, staging)

            self.marker_path(dest).unlink(missing_ok=True)
            if dest.exists() or dest.is_symlink():
                backup = dest.parent / f".{dest.name}-previous-{staging.name}"
                dest.rename(backup)
            try:
                staging.rename(dest)
            except OSError as e:
                if backup is not None:
                    backup.rename(dest)
                    backup = None
                raise ExtractionError(f"Failed to move extracted files into {dest}: {e}") from e
        except InstallerError:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        except OSError as e:
            shutil.rmtree(staging, ignore_errors=True)
            raise ExtractionError(f"Failed to install into {dest}: {e}") from e

        if backup is not None:
            if backup.is_dir() and not backup.is_symlink():
                shutil.rmtree(backup, ignore_errors=True)
            else:
                backup.unlink(missing_ok=True)

    def _write_marker(self, dest: Path, version: str, checksum: str) -> None:
        marker = self.marker_path(dest)
        tmp_marker = marker.with_suffix(".tmp")
        try:
            tmp_marker.write_text(json.dumps({"version": version, "checksum": checksum}))
            tmp_marker.replace(marker)
        except OSError as e:
            raise ExtractionError(f"Failed to record install marker for {dest}: {e}") from e

    def cleanup(self, dest: Path) -> None:
        """Remove an installed destination and its marker."""
        self.marker_path(dest).unlink(missing_ok=True)
        if dest.is_dir():
            shutil.rmtree(dest)
