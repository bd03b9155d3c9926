"""Blobstore clients for fetching compiled packages and rendered jobs."""

from __future__ import annotations

import os
import shutil
import time
from pathlib import Path
from typing import Iterable, Optional, Protocol

import httpx
import structlog

from cpi_installer.core.config import Settings
from cpi_installer.core.exceptions import ArtifactFetchError, ConfigurationError


logger = structlog.get_logger()


class Blobstore(Protocol):
    """Content store addressed by opaque blob identifiers."""

    def get(self, blob_id: str, dest_path: Path) -> Path:
        """Write the blob to dest_path and return it.

        Raises ArtifactFetchError when the blob is unknown or unreachable.
        """
        ...


def _write_stream_to_file(stream_iter: Iterable[bytes], dest_path: Path) -> int:
    """Write streaming bytes to file, renaming into place only when complete.

    Returns number of bytes written.
    """
    tmp_file = dest_path.with_suffix(dest_path.suffix + ".downloading")
    bytes_written = 0
    try:
        with open(tmp_file, "wb") as f:
            for chunk in stream_iter:
                if not chunk:
                    continue
                bytes_written += len(chunk)
                f.write(chunk)
    except BaseException:
        tmp_file.unlink(missing_ok=True)
        raise
    os.replace(tmp_file, dest_path)
    return bytes_written


class LocalBlobstore:
    """Blobstore backed by a directory of files named by blob id."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def _blob_path(self, blob_id: str) -> Path:
        base = self.root.resolve()
        path = (base / blob_id).resolve()
        if not blob_id or path.parent != base:
            raise ArtifactFetchError(f"Invalid blob id '{blob_id}'")
        return path

    def get(self, blob_id: str, dest_path: Path) -> Path:
        source = self._blob_path(blob_id)
        if not source.is_file():
            raise ArtifactFetchError(f"Blob '{blob_id}' not found in {self.root}")

        dest_path.parent.mkdir(parents=True, exist_ok=True)
        logger.debug("Copying blob", blob_id=blob_id, source=str(source), dest=str(dest_path))
        try:
            with open(source, "rb") as src:
                _write_stream_to_file(iter(lambda: src.read(64 * 1024), b""), dest_path)
        except OSError as e:
            raise ArtifactFetchError(f"Failed to read blob '{blob_id}': {e}") from e
        return dest_path

    def put(self, blob_id: str, source_path: Path) -> None:
        """Store a file under blob_id."""
        target = self._blob_path(blob_id)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source_path, target)


class HTTPBlobstore:
    """Blobstore served over HTTP(S), one GET per blob id.

    Transport errors are retried with bounded exponential backoff; a 404 is
    reported immediately.
    """

    def __init__(
        self,
        base_url: str,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        max_retries: int = 3,
        backoff_base: float = 0.3,
        total_timeout_sec: float = 60.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.auth = (username, password) if username else None
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.total_timeout_sec = total_timeout_sec

    def get(self, blob_id: str, dest_path: Path) -> Path:
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        url = f"{self.base_url}/{blob_id}"

        start = time.time()
        attempt = 0
        last_error: Optional[Exception] = None

        while attempt < self.max_retries and (time.time() - start) < self.total_timeout_sec:
            attempt += 1
            try:
                logger.info("Downloading blob", url=url, dest=str(dest_path), attempt=attempt)
                timeout = httpx.Timeout(self.total_timeout_sec - (time.time() - start))
                with httpx.Client(timeout=timeout, auth=self.auth) as client:
                    with client.stream("GET", url, follow_redirects=True) as resp:
                        if resp.status_code == 404:
                            raise ArtifactFetchError(f"Blob '{blob_id}' not found at {url}")
                        resp.raise_for_status()
                        bytes_written = _write_stream_to_file(resp.iter_bytes(), dest_path)
                logger.info("Downloaded blob", blob_id=blob_id, bytes=bytes_written)
                return dest_path
            except ArtifactFetchError:
                raise
            except (httpx.HTTPError, OSError) as e:
                last_error = e
                elapsed = time.time() - start
                remaining = self.total_timeout_sec - elapsed
                logger.warning(
                    "Fetch attempt failed",
                    blob_id=blob_id,
                    attempt=attempt,
                    error=str(e),
                    remaining_time_sec=max(0.0, remaining),
                )
                if attempt >= self.max_retries or remaining <= 0:
                    break
                time.sleep(min(self.backoff_base * (2 ** (attempt - 1)), max(0.0, remaining)))

        raise ArtifactFetchError(
            f"Failed to fetch blob '{blob_id}' after {attempt} attempts: {last_error}"
        )


class S3Blobstore:
    """Blobstore backed by an S3 bucket."""

    def __init__(self, bucket: str, prefix: str = "", client=None):
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self._client = client

    @property
    def client(self):
        if self._client is None:
            import boto3

            self._client = boto3.client("s3")
        return self._client

    def _key(self, blob_id: str) -> str:
        return f"{self.prefix}/{blob_id}" if self.prefix else blob_id

    def get(self, blob_id: str, dest_path: Path) -> Path:
        from botocore.exceptions import BotoCoreError, ClientError

        dest_path.parent.mkdir(parents=True, exist_ok=True)
        key = self._key(blob_id)
        logger.info("Downloading blob from S3", bucket=self.bucket, key=key, dest=str(dest_path))
        try:
            obj = self.client.get_object(Bucket=self.bucket, Key=key)
            body = obj["Body"]
            bytes_written = _write_stream_to_file(body.iter_chunks(64 * 1024), dest_path)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404"):
                raise ArtifactFetchError(f"Blob '{blob_id}' not found in s3://{self.bucket}/{key}") from e
            raise ArtifactFetchError(f"Failed to fetch blob '{blob_id}' from S3: {e}") from e
        except (BotoCoreError, OSError) as e:
            raise ArtifactFetchError(f"Failed to fetch blob '{blob_id}' from S3: {e}") from e
        logger.info("Downloaded blob from S3", blob_id=blob_id, bytes=bytes_written)
        return dest_path


def create_blobstore(settings: Settings, default_path: Path) -> Blobstore:
    """Build the blobstore selected by settings."""
    provider = settings.blobstore_provider
    if provider == "local":
        return LocalBlobstore(Path(settings.blobstore_path) if settings.blobstore_path else default_path)
    if provider == "http":
        if not settings.blobstore_url:
            raise ConfigurationError("blobstore_url is required for the http blobstore")
        return HTTPBlobstore(
            settings.blobstore_url,
            username=settings.blobstore_username,
            password=settings.blobstore_password,
            max_retries=settings.fetch_retries,
            total_timeout_sec=settings.fetch_timeout_sec,
        )
    if provider == "s3":
        if not settings.s3_bucket:
            raise ConfigurationError("s3_bucket is required for the s3 blobstore")
        return S3Blobstore(settings.s3_bucket, settings.s3_prefix)
    raise ConfigurationError(f"Unsupported blobstore provider '{provider}'")
