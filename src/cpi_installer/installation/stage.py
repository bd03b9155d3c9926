"""Progress reporting for multi-step installation work."""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from enum import Enum
from typing import Dict, Iterator, Optional, Protocol

import structlog

logger = structlog.get_logger()


class StepOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Stage(Protocol):
    """Sink for step begin/end events."""

    def begin_step(self, name: str) -> None:
        ...

    def end_step(self, name: str, outcome: StepOutcome, error: Optional[BaseException] = None) -> None:
        ...


@contextmanager
def step(stage: Stage, name: str) -> Iterator[None]:
    """Wrap a block in a stage step, ending it with the block's outcome."""
    stage.begin_step(name)
    try:
        yield
    except BaseException as exc:
        stage.end_step(name, StepOutcome.FAILED, exc)
        raise
    stage.end_step(name, StepOutcome.SUCCEEDED)


class LoggingStage:
    """Stage that reports steps as structured log events.

    Safe to use from worker threads.
    """

    def __init__(self, name: str):
        self.name = name
        self._started: Dict[str, float] = {}
        self._lock = threading.Lock()

    def begin_step(self, name: str) -> None:
        with self._lock:
            self._started[name] = time.monotonic()
        logger.info("Step started", stage=self.name, step=name)

    def end_step(self, name: str, outcome: StepOutcome, error: Optional[BaseException] = None) -> None:
        with self._lock:
            started = self._started.pop(name, None)
        duration = time.monotonic() - started if started is not None else None
        if outcome is StepOutcome.FAILED:
            logger.error(
                "Step failed",
                stage=self.name,
                step=name,
                duration_seconds=duration,
                error=str(error) if error else None,
            )
        else:
            logger.info("Step finished", stage=self.name, step=name, duration_seconds=duration)
