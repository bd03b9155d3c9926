from cpi_installer.core.exceptions import (
    ArtifactFetchError,
    ChecksumMismatch,
    InstallerError,
    StateResolutionError,
)


def test_default_codes():
    assert ArtifactFetchError("x").code == "artifact_fetch_failed"
    assert StateResolutionError("x", code="custom").code == "custom"
    assert InstallerError("x").code is None


def test_wrap_keeps_class_and_prefixes_message():
    err = ArtifactFetchError("Blob 'abc' not found")

    wrapped = err.wrap("Installing package 'ruby/1'")

    assert isinstance(wrapped, ArtifactFetchError)
    assert str(wrapped) == "Installing package 'ruby/1': Blob 'abc' not found"
    assert wrapped.code == err.code
    assert str(err) == "Blob 'abc' not found"


def test_wrap_keeps_checksum_details():
    err = ChecksumMismatch("aaa", "bbb")

    wrapped = err.wrap("Installing job 'cpi'")

    assert isinstance(wrapped, ChecksumMismatch)
    assert (wrapped.expected, wrapped.actual) == ("aaa", "bbb")
    assert str(wrapped) == "Installing job 'cpi': checksum mismatch: expected 'aaa', got 'bbb'"
