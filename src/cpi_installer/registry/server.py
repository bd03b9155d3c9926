"""Local registry server the agent uses to exchange its settings."""

from __future__ import annotations

import secrets
import threading
import time
from typing import Dict, Optional

import structlog
import uvicorn
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from cpi_installer import __version__
from cpi_installer.core.exceptions import RegistryError
from cpi_installer.core.models import RegistryConfig
from cpi_installer.registry.middleware import setup_logging_middleware

logger = structlog.get_logger()

security = HTTPBasic()


class SettingsStore:
    """Thread-safe in-memory instance settings."""

    def __init__(self):
        self._settings: Dict[str, str] = {}
        self._lock = threading.Lock()

    def save(self, instance_id: str, settings: str) -> bool:
        """Store settings; returns True when the instance was new."""
        with self._lock:
            created = instance_id not in self._settings
            self._settings[instance_id] = settings
            return created

    def get(self, instance_id: str) -> Optional[str]:
        with self._lock:
            return self._settings.get(instance_id)

    def delete(self, instance_id: str) -> None:
        with self._lock:
            self._settings.pop(instance_id, None)


def create_registry_app(config: RegistryConfig, store: Optional[SettingsStore] = None) -> FastAPI:
    """Create the registry FastAPI application."""
    store = store or SettingsStore()

    def authenticate(credentials: HTTPBasicCredentials = Depends(security)) -> str:
        valid_user = secrets.compare_digest(credentials.username.encode(), config.username.encode())
        valid_password = secrets.compare_digest(credentials.password.encode(), config.password.encode())
        if not (valid_user and valid_password):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid registry credentials",
                headers={"WWW-Authenticate": "Basic"},
            )
        return credentials.username

    router = APIRouter(prefix="/instances", dependencies=[Depends(authenticate)])

    @router.put("/{instance_id}/settings")
    async def put_settings(instance_id: str, request: Request) -> Response:
        body = (await request.body()).decode("utf-8")
        created = store.save(instance_id, body)
        logger.info("Instance settings saved", instance_id=instance_id, created=created)
        return Response(status_code=status.HTTP_201_CREATED if created else status.HTTP_200_OK)

    @router.get("/{instance_id}/settings")
    async def get_settings(instance_id: str) -> Dict[str, str]:
        settings = store.get(instance_id)
        if settings is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Instance not found")
        return {"settings": settings, "status": "ok"}

    @router.delete("/{instance_id}/settings")
    async def delete_settings(instance_id: str) -> Dict[str, str]:
        store.delete(instance_id)
        logger.info("Instance settings deleted", instance_id=instance_id)
        return {"status": "ok"}

    app = FastAPI(title="CPI Registry", version=__version__)
    app.state.settings_store = store

    @app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "healthy", "version": __version__}

    app.include_router(router)
    setup_logging_middleware(app)
    return app


class RegistryServer:
    """Handle to a registry served by uvicorn on a background thread.

    A handle can be started at most once; stop is idempotent.
    """

    def __init__(self, config: RegistryConfig, store: Optional[SettingsStore] = None):
        self.config = config
        self.store = store or SettingsStore()
        self.app = create_registry_app(config, self.store)
        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None
        self._started = False
        self._stopped = False
        self._lock = threading.Lock()

    @property
    def url(self) -> str:
        return f"http://{self.config.host}:{self.config.port}"

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stopped

    def start(self, timeout: float = 10.0) -> None:
        with self._lock:
            if self._started:
                raise RegistryError("Registry server has already been started")
            self._started = True

        config = uvicorn.Config(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_config=None,
            access_log=False,
        )
        server = uvicorn.Server(config)
        self._server = server
        self._thread = threading.Thread(target=server.run, name="registry-server", daemon=True)

        logger.info("Starting registry server", host=self.config.host, port=self.config.port)
        self._thread.start()

        deadline = time.monotonic() + timeout
        while not server.started:
            if not self._thread.is_alive():
                raise RegistryError(f"Registry server failed to start on {self.url}")
            if time.monotonic() > deadline:
                server.should_exit = True
                raise RegistryError(f"Registry server did not start within {timeout}s")
            time.sleep(0.05)
        logger.info("Registry server started", url=self.url)

    def stop(self, timeout: float = 10.0) -> None:
        with self._lock:
            if self._stopped or self._server is None:
                return
            self._stopped = True

        logger.info("Signaling registry server to exit", url=self.url)
        self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Registry server did not stop in time", url=self.url, timeout_sec=timeout)
                return
        logger.info("Registry server stopped", url=self.url)
