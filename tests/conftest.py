"""
Pytest configuration and fixtures for installer tests.
"""

import hashlib
import io
import tarfile
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from cpi_installer.installation.blobstore import LocalBlobstore
from cpi_installer.installation.stage import StepOutcome


class FakeStage:
    """Stage that records steps; safe to use from worker threads."""

    def __init__(self):
        self.started: List[str] = []
        self.finished: List[Tuple[str, StepOutcome]] = []
        self.errors: Dict[str, Optional[BaseException]] = {}
        self._lock = threading.Lock()

    def begin_step(self, name: str) -> None:
        with self._lock:
            self.started.append(name)

    def end_step(self, name: str, outcome: StepOutcome, error: Optional[BaseException] = None) -> None:
        with self._lock:
            self.finished.append((name, outcome))
            self.errors[name] = error


def build_tarball(files: Dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        for name, data in files.items():
            info = tarfile.TarInfo(name=name)
            info.size = len(data)
            info.mode = 0o644
            tf.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def sha1_hex(data: bytes) -> str:
    return hashlib.sha1(data).hexdigest()


@pytest.fixture
def fake_stage() -> FakeStage:
    return FakeStage()


@pytest.fixture
def make_tarball() -> Callable[[Dict[str, bytes]], bytes]:
    return build_tarball


@pytest.fixture
def blob_dir(tmp_path: Path) -> Path:
    path = tmp_path / "blobs"
    path.mkdir()
    return path


@pytest.fixture
def blobstore(blob_dir: Path) -> LocalBlobstore:
    return LocalBlobstore(blob_dir)


@pytest.fixture
def add_blob(blob_dir: Path) -> Callable[..., str]:
    """Store a blob and return its SHA-1 checksum.

    Pass `files` to store a tarball of those files, or `raw` for exact bytes.
    """

    def _add(blob_id: str, files: Optional[Dict[str, bytes]] = None, raw: Optional[bytes] = None) -> str:
        data = raw if raw is not None else build_tarball(files or {})
        (blob_dir / blob_id).write_bytes(data)
        return sha1_hex(data)

    return _add
