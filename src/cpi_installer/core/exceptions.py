"""Custom exceptions for the CPI installer."""

from typing import Optional


class InstallerError(Exception):
    """Base exception for all installer errors."""

    default_code: Optional[str] = None

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def wrap(self, context: str) -> "InstallerError":
        """Return a copy of this error with `context` prepended to the message.

        The copy keeps the class so callers can still match on the taxonomy;
        raise it with ``raise err.wrap(...) from err`` to keep the chain.
        """
        wrapped = self.__class__.__new__(self.__class__)
        wrapped.__dict__.update(self.__dict__)
        wrapped.message = f"{context}: {self.message}"
        wrapped.args = (wrapped.message,)
        return wrapped

    def __str__(self) -> str:
        return self.message


class ConfigurationError(InstallerError):
    """Configuration error."""

    default_code = "configuration_error"


class RegistryError(InstallerError):
    """Registry server lifecycle error."""

    default_code = "registry_error"


class StateResolutionError(InstallerError):
    """The manifest and release could not be resolved into an installation state."""

    default_code = "state_resolution_failed"


class ArtifactFetchError(InstallerError):
    """Blobstore unreachable or blob identifier unknown."""

    default_code = "artifact_fetch_failed"


class ChecksumMismatch(InstallerError):
    """Fetched bytes do not match the expected checksum."""

    default_code = "checksum_mismatch"

    def __init__(self, expected: str, actual: str, code: Optional[str] = None):
        super().__init__(f"checksum mismatch: expected '{expected}', got '{actual}'", code)
        self.expected = expected
        self.actual = actual


class ExtractionError(InstallerError):
    """Archive malformed or filesystem write failed."""

    default_code = "extraction_failed"


class Cancelled(InstallerError):
    """Operation aborted by caller request."""

    default_code = "cancelled"


def with_context(error: Exception, context: str) -> InstallerError:
    """Prefix error with context, keeping installer error classes intact."""
    if isinstance(error, InstallerError):
        return error.wrap(context)
    return InstallerError(f"{context}: {error}", code="install_failed")
