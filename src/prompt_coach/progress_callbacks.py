"""
Progress callbacks for batch analysis.

Provides hooks to report progress while batches are analyzed.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ProgressEventType(Enum):
    """Types of progress events during analysis."""
    STARTED = "started"
    BATCH_STARTED = "batch_started"
    BATCH_CACHED = "batch_cached"
    BATCH_COMPLETED = "batch_completed"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class ProgressEvent:
    """A progress update event."""
    type: ProgressEventType
    current: int = 0
    total: int = 0
    message: str = ""

    @property
    def percentage(self) -> float:
        return 100.0 * self.current / self.total if self.total else 0.0


class ProgressCallback(ABC):
    """Base class for progress callbacks."""

    @abstractmethod
    def on_progress(self, event: ProgressEvent) -> None:
        """Handle a progress event."""


class LoggingProgressCallback(ProgressCallback):
    """Logs progress events."""

    def on_progress(self, event: ProgressEvent) -> None:
        if event.type == ProgressEventType.STARTED:
            logger.info(f"[PROGRESS] Analysis started: {event.total} batches, {event.message}")
        elif event.type == ProgressEventType.BATCH_STARTED:
            logger.debug(f"[PROGRESS] Batch {event.current}/{event.total} started")
        elif event.type == ProgressEventType.BATCH_CACHED:
            logger.info(f"[PROGRESS] Batch {event.current}/{event.total} served from cache")
        elif event.type == ProgressEventType.BATCH_COMPLETED:
            logger.info(f"[PROGRESS] Batch {event.current}/{event.total} completed ({event.percentage:.0f}%)")
        elif event.type == ProgressEventType.COMPLETED:
            logger.info(f"[PROGRESS] Analysis completed: {event.message}")
        elif event.type == ProgressEventType.ERROR:
            logger.error(f"[PROGRESS] Batch {event.current}/{event.total} failed: {event.message}")


class FunctionProgressCallback(ProgressCallback):
    """Adapts a plain (current, total) function, e.g. a progress bar update."""

    def __init__(self, func: Callable[[int, int], None]):
        self.func = func

    def on_progress(self, event: ProgressEvent) -> None:
        if event.type in (ProgressEventType.BATCH_COMPLETED, ProgressEventType.BATCH_CACHED):
            self.func(event.current, event.total)


class ProgressTracker:
    """Tracks batch progress and fires callbacks."""

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self.callback = callback or LoggingProgressCallback()
        self.total = 0
        self.completed = 0

    def on_analysis_started(self, total: int, message: str = ""):
        """Called once the batches are known."""
        self.total = total
        self.completed = 0
        self.callback.on_progress(ProgressEvent(
            type=ProgressEventType.STARTED,
            total=total,
            message=message
        ))

    def on_batch_started(self, index: int):
        self.callback.on_progress(ProgressEvent(
            type=ProgressEventType.BATCH_STARTED,
            current=index,
            total=self.total
        ))

    def on_batch_cached(self):
        self.completed += 1
        self.callback.on_progress(ProgressEvent(
            type=ProgressEventType.BATCH_CACHED,
            current=self.completed,
            total=self.total
        ))

    def on_batch_completed(self):
        self.completed += 1
        self.callback.on_progress(ProgressEvent(
            type=ProgressEventType.BATCH_COMPLETED,
            current=self.completed,
            total=self.total
        ))

    def on_analysis_completed(self, message: str = ""):
        self.callback.on_progress(ProgressEvent(
            type=ProgressEventType.COMPLETED,
            current=self.completed,
            total=self.total,
            message=message
        ))

    def on_error(self, index: int, message: str):
        """Called when a batch fails."""
        self.callback.on_progress(ProgressEvent(
            type=ProgressEventType.ERROR,
            current=index,
            total=self.total,
            message=message
        ))


def as_progress_callback(
    on_progress: ProgressCallback | Callable[[int, int], None] | None,
) -> ProgressCallback | None:
    if on_progress is None or isinstance(on_progress, ProgressCallback):
        return on_progress
    return FunctionProgressCallback(on_progress)
