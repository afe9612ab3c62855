"""
Pytest configuration and fixtures for prompt-coach tests.
"""

import tempfile
from pathlib import Path
from typing import Generator

import pytest

from prompt_coach.analysis_service import AnalysisService
from prompt_coach.batch_cache import BatchCache
from prompt_coach.common_types import (
    AnalysisPattern,
    AnalysisResult,
    AnalysisStats,
    BatchLimits,
    BeforeAfter,
    Prioritization,
    ProjectContext,
    Severity,
)
from prompt_coach.config import CoachConfig
from prompt_coach.prompt_cache import PerPromptCache


def make_pattern(
    pattern_id: str = "vague_request",
    frequency: float = 0.5,
    severity: Severity = Severity.MEDIUM,
    examples: list[str] | None = None,
    suggestion: str | None = None,
) -> AnalysisPattern:
    return AnalysisPattern(
        id=pattern_id,
        name=pattern_id.replace("_", " ").title(),
        frequency=frequency,
        severity=severity,
        examples=examples if examples is not None else [f"{pattern_id} example"],
        suggestion=suggestion or f"Fix {pattern_id}",
        before_after=BeforeAfter(before="fix it", after="fix the null check in parse()"),
    )


def make_result(
    date: str = "2025-01-15",
    patterns: list[AnalysisPattern] | None = None,
    total_prompts: int = 1,
    prompts_with_issues: int = 1,
    overall_score: float = 7,
    top_suggestion: str = "Be specific",
) -> AnalysisResult:
    return AnalysisResult(
        date=date,
        patterns=patterns if patterns is not None else [make_pattern()],
        stats=AnalysisStats(
            total_prompts=total_prompts,
            prompts_with_issues=prompts_with_issues,
            overall_score=overall_score,
        ),
        top_suggestion=top_suggestion,
    )


class FakeAnalysisService(AnalysisService):
    """In-memory backend that records every batch it is asked to analyze."""

    name = "Fake (test-model)"
    model = "test-model"
    instruction_template = "Analyze these prompts: {prompts}"

    def __init__(
        self,
        limits: BatchLimits | None = None,
        fail_with: Exception | None = None,
        score: float = 7,
    ):
        self.limits = limits
        self.fail_with = fail_with
        self.score = score
        self.calls: list[list[str]] = []
        self.contexts: list[ProjectContext | None] = []

    async def is_available(self) -> bool:
        return True

    async def analyze(self, prompts, date, context=None) -> AnalysisResult:
        self.calls.append(list(prompts))
        self.contexts.append(context)
        if self.fail_with is not None:
            raise self.fail_with
        return make_result(
            date=date,
            patterns=[make_pattern(examples=list(prompts)[:3])],
            total_prompts=len(prompts),
            prompts_with_issues=len(prompts),
            overall_score=self.score,
        )

    def get_batch_limits(self) -> BatchLimits | None:
        return self.limits


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def coach_config(temp_dir: Path) -> CoachConfig:
    """Create a test configuration rooted in the temp directory."""
    return CoachConfig(
        results_dir=temp_dir / "results",
        cache_dir=temp_dir / "cache",
        logs_dir=temp_dir / "projects",
        debounce_ms=50,
        cache_ttl_days=7,
        max_concurrent_batches=1,
        system_overhead=0,
        recent_capacity=1000,
        cost_estimator="chars",
        sanitize=True,
    )


@pytest.fixture
def prompt_cache(coach_config: CoachConfig) -> PerPromptCache:
    return PerPromptCache(coach_config.results_dir)


@pytest.fixture
def batch_cache(coach_config: CoachConfig) -> BatchCache:
    return BatchCache(coach_config.batch_cache_dir, ttl_days=coach_config.cache_ttl_days)


@pytest.fixture
def fake_service() -> FakeAnalysisService:
    return FakeAnalysisService(
        limits=BatchLimits(max_cost_per_batch=100, prioritization=Prioritization.CHRONOLOGICAL)
    )


@pytest.fixture
def sample_result() -> AnalysisResult:
    return make_result()
