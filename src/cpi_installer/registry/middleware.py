"""Registry request logging and metrics."""

import time
import uuid
from typing import Callable

import structlog
from fastapi import FastAPI, Request, Response
from prometheus_client import Counter

logger = structlog.get_logger()

REQUEST_COUNT = Counter(
    "cpi_registry_requests_total",
    "Total registry HTTP requests",
    ["method", "status"],
)


def setup_logging_middleware(app: FastAPI) -> None:
    """Log every request and count it by status."""

    @app.middleware("http")
    async def log_requests(request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        start_time = time.time()

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.exception(
                "Registry request failed",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                duration_seconds=time.time() - start_time,
                exc_info=exc,
            )
            raise

        REQUEST_COUNT.labels(method=request.method, status=str(response.status_code)).inc()
        logger.info(
            "Registry request completed",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_seconds=time.time() - start_time,
        )
        response.headers["X-Request-ID"] = request_id
        return response
