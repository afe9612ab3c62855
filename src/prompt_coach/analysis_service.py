"""
Analysis backend contract.

A concrete service wraps one model behind one HTTP API; everything in
this package talks to it only through AnalysisService. Timeouts, retries
and transport errors are the service's business; exceptions raised by
analyze() propagate to the caller unchanged.
"""

import hashlib
from abc import ABC, abstractmethod

from .common_types import AnalysisResult, BatchLimits, Prioritization, ProjectContext


DEFAULT_SCHEMA_ID = "prompt-analysis-v1"

# Used when a service does not report its own limits
DEFAULT_BATCH_LIMITS: dict[str, BatchLimits] = {
    "ollama": BatchLimits(max_cost_per_batch=30_000, prioritization=Prioritization.LONGEST_FIRST),
    "anthropic": BatchLimits(max_cost_per_batch=100_000, prioritization=Prioritization.CHRONOLOGICAL),
    "google": BatchLimits(max_cost_per_batch=500_000, prioritization=Prioritization.CHRONOLOGICAL),
}


def infer_service_type(name: str) -> str:
    """Map a service display name such as "Ollama (llama3.2)" to a DEFAULT_BATCH_LIMITS key."""
    name = name.lower()
    if "anthropic" in name or "claude" in name:
        return "anthropic"
    if "google" in name or "gemini" in name:
        return "google"
    return "ollama"


def default_limits_for(name: str) -> BatchLimits:
    return DEFAULT_BATCH_LIMITS[infer_service_type(name)]


class AnalysisService(ABC):
    """
    Base class for analysis backends.

    Subclasses set name, model and instruction_template, and implement
    is_available() and analyze(). schema_id and instruction_template
    feed the cache fingerprints: change either and earlier cached
    results stop matching.
    """

    name: str = "analysis-service"
    model: str = ""
    schema_id: str = DEFAULT_SCHEMA_ID
    instruction_template: str = ""

    @property
    def template_hash(self) -> str:
        return hashlib.sha256(self.instruction_template.encode("utf-8")).hexdigest()[:16]

    @abstractmethod
    async def is_available(self) -> bool:
        """Check whether the backend can currently be reached."""

    @abstractmethod
    async def analyze(
        self,
        prompts: list[str],
        date: str,
        context: ProjectContext | None = None,
    ) -> AnalysisResult:
        """Analyze one batch of prompts."""

    def get_batch_limits(self) -> BatchLimits | None:
        """Limits for this backend, or None to use DEFAULT_BATCH_LIMITS."""
        return None

    def effective_limits(self) -> BatchLimits:
        return self.get_batch_limits() or default_limits_for(self.name)
