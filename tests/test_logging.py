from unittest.mock import Mock

import structlog

from cpi_installer.core.config import Settings
from cpi_installer.core.models import InstalledJob, Manifest, RegistryConfig
from cpi_installer.installation.installation import Installation
from cpi_installer.installation.target import Target
from cpi_installer.utils import logging as installer_logging
from cpi_installer.utils.logging import REDACTED, SecretRedactor, bind_install_context, setup_logging


def test_credential_keys_are_redacted():
    event = {"event": "Fetching blob", "password": "hunter2", "Blobstore_Password": "x", "root": "/opt"}

    out = SecretRedactor()(None, "info", event)

    assert out["password"] == REDACTED
    assert out["Blobstore_Password"] == REDACTED
    assert out["root"] == "/opt"


def test_registered_secrets_are_scrubbed_from_values():
    redactor = SecretRedactor(["s3cr3t", None, ""])

    out = redactor(None, "error", {"event": "Fetch attempt failed", "error": "401 for user admin:s3cr3t"})

    assert out["error"] == f"401 for user admin:{REDACTED}"


def test_url_credentials_are_masked():
    redactor = SecretRedactor()

    out = redactor(None, "info", {"event": "Downloading blob", "url": "https://admin:pw@blobs.example.com/abc"})

    assert out["url"] == f"https://{REDACTED}@blobs.example.com/abc"


def test_bind_install_context():
    structlog.contextvars.clear_contextvars()
    try:
        bind_install_context(Manifest(name="bosh", release="bosh-aws-cpi"))

        assert structlog.contextvars.get_contextvars() == {"deployment": "bosh", "release": "bosh-aws-cpi"}
    finally:
        structlog.contextvars.clear_contextvars()


def test_setup_logging_follows_settings(monkeypatch):
    redactor = SecretRedactor()
    monkeypatch.setattr(installer_logging, "redactor", redactor)
    try:
        setup_logging(Settings(log_format="console", log_level="WARNING", blobstore_password="blob-pw"))

        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)
        assert redactor in processors
        assert redactor.scrub("auth blob-pw") == f"auth {REDACTED}"
    finally:
        structlog.reset_defaults()


def test_setup_logging_json_is_the_default(monkeypatch):
    monkeypatch.delenv("CPI_INSTALLER_LOG_FORMAT", raising=False)
    try:
        setup_logging(Settings())

        assert isinstance(structlog.get_config()["processors"][-1], structlog.processors.JSONRenderer)
    finally:
        structlog.reset_defaults()


def test_starting_the_registry_registers_its_password(monkeypatch):
    redactor = SecretRedactor()
    monkeypatch.setattr(installer_logging, "redactor", redactor)
    installation = Installation(
        target=Target("/var/vcap/micro"),
        job=InstalledJob(name="cpi", path=Target("/var/vcap/micro").jobs_path / "cpi"),
        manifest=Manifest(
            name="bosh",
            release="r",
            registry=RegistryConfig(username="admin", password="registry-pw"),
        ),
        registry_server_manager=Mock(),
    )

    installation.start_registry()

    assert redactor.scrub("password=registry-pw") == f"password={REDACTED}"
