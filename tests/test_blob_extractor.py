import hashlib
import io
import tarfile
from pathlib import Path
from unittest.mock import Mock

import pytest

from cpi_installer.core.exceptions import ArtifactFetchError, ChecksumMismatch, ExtractionError
from cpi_installer.installation.blob_extractor import (
    BlobExtractor,
    compute_checksum,
    parse_checksum,
    verify_checksum,
)


def _leftovers(directory: Path) -> list:
    return sorted(p.name for p in directory.iterdir()) if directory.exists() else []


def test_parse_checksum_defaults_to_sha1():
    assert parse_checksum("ABCDEF") == ("sha1", "abcdef")
    assert parse_checksum("sha256:FF00") == ("sha256", "ff00")
    assert parse_checksum("sha1:aa") == ("sha1", "aa")


def test_parse_checksum_rejects_unknown_algorithm():
    with pytest.raises(ValueError):
        parse_checksum("md5:abc")


def test_verify_checksum_sha256(tmp_path: Path):
    f = tmp_path / "blob"
    f.write_bytes(b"payload")
    verify_checksum(f, "sha256:" + hashlib.sha256(b"payload").hexdigest())
    assert compute_checksum(f) == hashlib.sha1(b"payload").hexdigest()


def test_verify_checksum_mismatch_reports_actual(tmp_path: Path):
    f = tmp_path / "blob"
    f.write_bytes(b"payload")
    with pytest.raises(ChecksumMismatch) as exc_info:
        verify_checksum(f, "deadbeef")
    assert exc_info.value.expected == "deadbeef"
    assert exc_info.value.actual == hashlib.sha1(b"payload").hexdigest()


def test_extract_installs_files_and_marker(tmp_path: Path, blobstore, add_blob):
    checksum = add_blob("b1", {"bin/run": b"#!/bin/sh\n", "lib/a.so": b"a"})
    extractor = BlobExtractor(blobstore, tmp_path / "tmp")
    dest = tmp_path / "packages" / "pkg"

    extractor.extract("b1", checksum, dest, "v1")

    assert (dest / "bin" / "run").read_bytes() == b"#!/bin/sh\n"
    assert (dest / "lib" / "a.so").read_bytes() == b"a"
    assert extractor.is_installed(dest, "v1", checksum)
    assert not extractor.is_installed(dest, "v2", checksum)
    # temp archive removed
    assert _leftovers(tmp_path / "tmp") == []


def test_checksum_mismatch_does_not_extract(tmp_path: Path, blobstore, add_blob):
    add_blob("b1", {"file": b"data"})
    extractor = BlobExtractor(blobstore, tmp_path / "tmp")
    dest = tmp_path / "packages" / "pkg"

    with pytest.raises(ChecksumMismatch):
        extractor.extract("b1", "0" * 40, dest, "v1")

    assert not dest.exists()
    assert _leftovers(tmp_path / "packages") == []
    assert _leftovers(tmp_path / "tmp") == []


def test_malformed_archive_leaves_no_partial_output(tmp_path: Path, blobstore, add_blob):
    checksum = add_blob("b1", raw=b"this is not a tarball")
    extractor = BlobExtractor(blobstore, tmp_path / "tmp")
    dest = tmp_path / "packages" / "pkg"

    with pytest.raises(ExtractionError):
        extractor.extract("b1", checksum, dest, "v1")

    assert not dest.exists()
    assert _leftovers(tmp_path / "packages") == []


def test_truncated_archive_keeps_previous_install(tmp_path: Path, blobstore, add_blob, make_tarball):
    good = add_blob("good", {"version": b"1"})
    extractor = BlobExtractor(blobstore, tmp_path / "tmp")
    dest = tmp_path / "packages" / "pkg"
    extractor.extract("good", good, dest, "v1")

    truncated = make_tarball({"version": b"2", "big": b"x" * 4096})[:60]
    bad = add_blob("bad", raw=truncated)
    with pytest.raises(ExtractionError):
        extractor.extract("bad", bad, dest, "v2")

    assert (dest / "version").read_bytes() == b"1"
    assert _leftovers(tmp_path / "packages") == [".pkg.installed.json", "pkg"]


def test_path_traversal_rejected(tmp_path: Path, blobstore, add_blob):
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        info = tarfile.TarInfo(name="../evil.txt")
        info.size = 4
        tf.addfile(info, io.BytesIO(b"oops"))
    checksum = add_blob("evil", raw=buf.getvalue())
    extractor = BlobExtractor(blobstore, tmp_path / "tmp")
    dest = tmp_path / "packages" / "pkg"

    with pytest.raises(ExtractionError):
        extractor.extract("evil", checksum, dest, "v1")

    assert not dest.exists()
    assert not (tmp_path / "packages" / "evil.txt").exists()


def test_escaping_symlink_rejected(tmp_path: Path, blobstore, add_blob):
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        info = tarfile.TarInfo(name="link")
        info.type = tarfile.SYMTYPE
        info.linkname = "/etc/passwd"
        tf.addfile(info)
    checksum = add_blob("link", raw=buf.getvalue())
    extractor = BlobExtractor(blobstore, tmp_path / "tmp")

    with pytest.raises(ExtractionError):
        extractor.extract("link", checksum, tmp_path / "packages" / "pkg", "v1")


def test_fetch_error_propagates(tmp_path: Path):
    store = Mock()
    store.get.side_effect = ArtifactFetchError("Blob 'b1' not found")
    extractor = BlobExtractor(store, tmp_path / "tmp")
    dest = tmp_path / "packages" / "pkg"

    with pytest.raises(ArtifactFetchError):
        extractor.extract("b1", "abc", dest, "v1")

    assert not dest.exists()
    assert _leftovers(tmp_path / "tmp") == []


def test_corrupt_marker_is_not_installed(tmp_path: Path, blobstore, add_blob):
    checksum = add_blob("b1", {"f": b"1"})
    extractor = BlobExtractor(blobstore, tmp_path / "tmp")
    dest = tmp_path / "packages" / "pkg"
    extractor.extract("b1", checksum, dest, "v1")

    extractor.marker_path(dest).write_text("{not json")

    assert not extractor.is_installed(dest, "v1", checksum)


def test_cleanup_removes_destination_and_marker(tmp_path: Path, blobstore, add_blob):
    checksum = add_blob("b1", {"f": b"1"})
    extractor = BlobExtractor(blobstore, tmp_path / "tmp")
    dest = tmp_path / "packages" / "pkg"
    extractor.extract("b1", checksum, dest, "v1")

    extractor.cleanup(dest)

    assert not dest.exists()
    assert not extractor.marker_path(dest).exists()


def test_chained_symlinks_cannot_escape_staging(tmp_path: Path, blobstore, add_blob):
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        for name, target in (("l", "."), ("m", "l/..")):
            info = tarfile.TarInfo(name=name)
            info.type = tarfile.SYMTYPE
            info.linkname = target
            tf.addfile(info)
        info = tarfile.TarInfo(name="m/evil")
        info.size = 4
        tf.addfile(info, io.BytesIO(b"oops"))
    checksum = add_blob("chain", raw=buf.getvalue())
    extractor = BlobExtractor(blobstore, tmp_path / "tmp")
    dest = tmp_path / "packages" / "pkg"

    with pytest.raises(ExtractionError):
        extractor.extract("chain", checksum, dest, "v1")

    assert not dest.exists()
    assert not (tmp_path / "packages" / "evil").exists()
    assert _leftovers(tmp_path / "packages") == []


def test_unusable_temp_root_is_an_extraction_error(tmp_path: Path, blobstore, add_blob):
    checksum = add_blob("b1", {"f": b"1"})
    temp_root = tmp_path / "tmp"
    temp_root.write_text("not a directory")
    extractor = BlobExtractor(blobstore, temp_root)

    with pytest.raises(ExtractionError, match="Failed to prepare directories"):
        extractor.extract("b1", checksum, tmp_path / "packages" / "pkg", "v1")
