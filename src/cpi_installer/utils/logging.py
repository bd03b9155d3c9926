"""Structured logging for installer runs.

Credentials the installer handles never reach rendered events: the
blobstore and registry passwords are registered as secrets and scrubbed
from every string field, and ``user:password@`` pairs embedded in URLs are
masked.
"""

import logging
import re
import sys
import threading
from typing import Iterable, Optional, Set

import structlog
from structlog.contextvars import bind_contextvars

from cpi_installer.core.config import Settings
from cpi_installer.core.models import Manifest

REDACTED = "[REDACTED]"

CREDENTIAL_KEYS = frozenset(
    {
        "password",
        "blobstore_password",
        "registry_password",
        "authorization",
        "aws_secret_access_key",
        "token",
    }
)

_URL_USERINFO = re.compile(r"(?P<scheme>[A-Za-z][A-Za-z0-9+.-]*://)[^/\s@:]+:[^/\s@]+@")


class SecretRedactor:
    """structlog processor hiding installer credentials."""

    def __init__(self, secrets: Iterable[Optional[str]] = ()):
        self._secrets: Set[str] = set()
        self._lock = threading.Lock()
        for secret in secrets:
            self.add(secret)

    def add(self, secret: Optional[str]) -> None:
        if secret:
            with self._lock:
                self._secrets.add(secret)

    def scrub(self, text: str) -> str:
        text = _URL_USERINFO.sub(lambda m: f"{m.group('scheme')}{REDACTED}@", text)
        with self._lock:
            # longest first so a secret containing another is masked whole
            secrets = sorted(self._secrets, key=len, reverse=True)
        for secret in secrets:
            text = text.replace(secret, REDACTED)
        return text

    def __call__(self, _logger, _method_name, event_dict: dict) -> dict:
        for key, value in event_dict.items():
            if key.lower() in CREDENTIAL_KEYS:
                event_dict[key] = REDACTED
            elif isinstance(value, str):
                event_dict[key] = self.scrub(value)
        return event_dict


redactor = SecretRedactor()


def register_secret(secret: Optional[str]) -> None:
    """Mask secret wherever it appears in later log events."""
    redactor.add(secret)


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Configure structlog from the installer settings.

    Uses ``log_level`` and ``log_format`` (``json`` or ``console``) and
    registers the configured blobstore password with the redactor.
    """
    settings = settings or Settings()
    register_secret(settings.blobstore_password)

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            # tracebacks are rendered to text first so they are scrubbed too
            structlog.processors.format_exc_info,
            redactor,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(sys.stdout),
        cache_logger_on_first_use=True,
    )


def bind_install_context(manifest: Manifest) -> None:
    """Tag the current context's log events with the deployment and release."""
    bind_contextvars(deployment=manifest.name, release=manifest.release)
