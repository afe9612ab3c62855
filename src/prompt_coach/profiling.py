"""
Logging setup and latency tracking.

Logs: "[LATENCY] batch 2/5: 845.3ms"
"""

import logging
import time

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class LatencyTracker:
    """
    Context manager to track latency for a code block.

    Usage:
        with LatencyTracker("batch 1/3", log) as tracker:
            ...
        tracker.elapsed_ms
    """
    def __init__(self, phase_name: str = "operation", log: logging.Logger | None = None):
        self.phase_name = phase_name
        self.log = log or logger
        self.start_time = None
        self.elapsed_ms = 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed_ms = (time.perf_counter() - self.start_time) * 1000
        self.log.info(f"[LATENCY] {self.phase_name}: {self.elapsed_ms:.1f}ms")


def configure_logging(log_level: int | str = logging.INFO) -> None:
    """Install a basic stderr handler on the root logger."""
    if isinstance(log_level, str):
        log_level = logging.getLevelName(log_level.upper())
    logging.basicConfig(level=log_level, format=LOG_FORMAT)
