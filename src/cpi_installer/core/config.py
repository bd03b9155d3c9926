"""Configuration management for the CPI installer."""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BLOBSTORE_PROVIDERS = ("local", "http", "s3")


class Settings(BaseSettings):
    """Installer configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="CPI_INSTALLER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Installation target
    installation_root: str = Field(
        "/var/vcap/micro/installation",
        description="Root directory the CPI is installed under",
    )

    # Blobstore
    blobstore_provider: str = Field("local", description="One of local, http, s3")
    blobstore_path: Optional[str] = Field(
        None,
        description="Directory for the local blobstore (default: <installation_root>/blobs)",
    )
    blobstore_url: Optional[str] = Field(None, description="Base URL of an HTTP blobstore")
    blobstore_username: Optional[str] = Field(None, description="HTTP blobstore basic auth user")
    blobstore_password: Optional[str] = Field(None, description="HTTP blobstore basic auth password")
    s3_bucket: Optional[str] = Field(None, description="S3 bucket holding blobs")
    s3_prefix: str = Field("", description="Key prefix inside the S3 bucket")

    # Fetch behaviour
    max_workers: int = Field(4, description="Concurrent package installs")
    fetch_retries: int = Field(3, description="Attempts per blob fetch")
    fetch_timeout_sec: float = Field(60.0, description="Total timeout per blob fetch")

    # Observability
    log_level: str = Field("INFO")
    log_format: str = Field("json", description="json or console")

    @field_validator("blobstore_provider", mode="before")
    @classmethod
    def normalize_provider(cls, v: str) -> str:
        provider = str(v).strip().lower()
        if provider not in BLOBSTORE_PROVIDERS:
            raise ValueError(
                f"Unsupported blobstore provider '{v}'; expected one of {', '.join(BLOBSTORE_PROVIDERS)}"
            )
        return provider

    @field_validator("log_format")
    @classmethod
    def known_log_format(cls, v: str) -> str:
        if v not in ("json", "console"):
            raise ValueError("log_format must be json or console")
        return v

    @field_validator("max_workers", "fetch_retries")
    @classmethod
    def positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v
