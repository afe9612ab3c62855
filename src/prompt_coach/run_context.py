"""
Per-run logging context.

A RunContext is passed down from the orchestrating layer instead of
relying on module-level warning collectors, so every warning raised
during one analysis or watch session can be reported back to the caller.
"""

import logging
from dataclasses import dataclass, field


@dataclass
class RunContext:
    """Logger plus the warnings collected during one run."""
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("prompt_coach"))
    warnings: list[str] = field(default_factory=list)

    def warn(self, message: str) -> None:
        self.warnings.append(message)
        self.logger.warning(message)

    def debug(self, message: str) -> None:
        self.logger.debug(message)

    def info(self, message: str) -> None:
        self.logger.info(message)

    def error(self, message: str, exc_info: bool = False) -> None:
        self.logger.error(message, exc_info=exc_info)

    def drain_warnings(self) -> list[str]:
        """Return and clear the collected warnings."""
        collected, self.warnings = self.warnings, []
        return collected
