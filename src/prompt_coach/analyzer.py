"""
Batch analyzer.

Map-reduce over prompts:
1. Prompts with a per-prompt cache hit are taken from the cache
2. The rest are sanitized and split into batches that fit the backend
3. Each batch is served from the batch cache or sent to the backend
4. New results are written back to the caches
5. Cached and new results are merged into one report
6. Per-pattern rules are applied to the merged report
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from .analysis_service import AnalysisService
from .batch_cache import BatchCache
from .batching import CostFn, get_cost_fn, split_with_limits
from .common_types import AnalysisResult, Batch, Prompt, ProjectContext, RulesConfig
from .config import CoachConfig
from .profiling import LatencyTracker
from .progress_callbacks import ProgressCallback, ProgressTracker, as_progress_callback
from .prompt_cache import PerPromptCache
from .result_aggregation import apply_rules, merge_results
from .run_context import RunContext
from .sanitizer import sanitize_prompts

logger = logging.getLogger(__name__)


@dataclass
class AnalysisRunStats:
    """What one analyze() call did."""
    prompts: int = 0
    cached_prompts: int = 0
    batches: int = 0
    cached_batches: int = 0
    backend_calls: int = 0
    redactions: int = 0

    def to_dict(self) -> dict[str, int]:
        return dict(self.__dict__)


class BatchAnalyzer:
    """
    Analyzes prompts through an AnalysisService, using both caches.

    Batches run one at a time unless config.max_concurrent_batches > 1.
    Backend exceptions propagate; cache write failures are recorded as
    warnings on the run context and do not fail the analysis.
    """

    def __init__(
        self,
        service: AnalysisService,
        config: CoachConfig | None = None,
        prompt_cache: PerPromptCache | None = None,
        batch_cache: BatchCache | None = None,
        context: RunContext | None = None,
        cost_fn: CostFn | None = None,
    ):
        self.service = service
        self.config = config or CoachConfig()
        self.context = context or RunContext(logger=logger)
        self.prompt_cache = prompt_cache or PerPromptCache(self.config.results_dir, self.context)
        self.batch_cache = batch_cache or BatchCache(
            self.config.batch_cache_dir, ttl_days=self.config.cache_ttl_days, context=self.context
        )
        self.cost_fn = cost_fn or get_cost_fn(self.config.cost_estimator)
        self.last_run = AnalysisRunStats()

    @property
    def model(self) -> str:
        return self.service.model

    async def analyze(
        self,
        prompts: Iterable[Prompt | str],
        date: str,
        context: ProjectContext | None = None,
        no_cache: bool = False,
        on_progress: ProgressCallback | Callable[[int, int], None] | None = None,
        rules: RulesConfig | None = None,
    ) -> AnalysisResult:
        """
        Analyze prompts and return one merged report.

        Args:
            prompts: Prompts, or bare prompt texts (dated with date)
            date: Date stamped on the report
            context: Optional project context passed to the backend
            no_cache: Skip cache lookups and write-back for this call
            on_progress: ProgressCallback or (completed, total) function
            rules: Per-pattern overrides applied to the merged report

        Raises:
            ValueError: If prompts is empty
            Exception: Whatever the backend raises
        """
        items = [p if isinstance(p, Prompt) else Prompt(content=p, date=date) for p in prompts]
        if not items:
            raise ValueError("No prompts to analyze")

        service = self.service
        stats = AnalysisRunStats(prompts=len(items))
        self.last_run = stats

        cached_results: list[AnalysisResult] = []
        uncached = items
        if not no_cache:
            cached, uncached = await self.prompt_cache.partition(
                items, service.model, service.schema_id, service.template_hash
            )
            cached_results = [result for _, result in cached]
            stats.cached_prompts = len(cached)
            if cached:
                self.context.info(f"[CACHE] {len(cached)}/{len(items)} prompts served from cache")

        if not uncached:
            return apply_rules(merge_results(cached_results, date), rules)

        texts = [p.content for p in uncached]
        if self.config.sanitize:
            texts, stats.redactions = sanitize_prompts(texts)
            if stats.redactions:
                self.context.info(f"[BATCH] Redacted {stats.redactions} secrets before analysis")

        limits = service.effective_limits()
        batches = split_with_limits(
            texts, limits, cost_fn=self.cost_fn, reserved_cost=self.config.system_overhead
        )
        stats.batches = len(batches)

        # Sanitized text -> original prompts, for writing singleton results back
        pending: dict[str, list[Prompt]] = {}
        for text, prompt in zip(texts, uncached):
            pending.setdefault(text, []).append(prompt)

        tracker = ProgressTracker(as_progress_callback(on_progress))
        tracker.on_analysis_started(
            len(batches), f"{len(uncached)} prompts, {len(cached_results)} cached"
        )

        new_results = await self._run_batches(batches, date, context, no_cache, tracker, pending, stats)

        tracker.on_analysis_completed(
            f"{stats.backend_calls} backend calls, {stats.cached_batches} cached batches"
        )
        return apply_rules(merge_results(cached_results + new_results, date), rules)

    async def _run_batches(
        self,
        batches: list[Batch],
        date: str,
        context: ProjectContext | None,
        no_cache: bool,
        tracker: ProgressTracker,
        pending: dict[str, list[Prompt]],
        stats: AnalysisRunStats,
    ) -> list[AnalysisResult]:
        limit = max(1, self.config.max_concurrent_batches)

        if limit == 1 or len(batches) == 1:
            results = []
            for index, batch in enumerate(batches, start=1):
                results.append(
                    await self._analyze_batch(index, batch, date, context, no_cache, tracker, pending, stats)
                )
            return results

        semaphore = asyncio.Semaphore(limit)

        async def bounded(index: int, batch: Batch) -> AnalysisResult:
            async with semaphore:
                return await self._analyze_batch(index, batch, date, context, no_cache, tracker, pending, stats)

        # gather keeps batch order regardless of completion order
        return list(await asyncio.gather(
            *(bounded(index, batch) for index, batch in enumerate(batches, start=1))
        ))

    async def _analyze_batch(
        self,
        index: int,
        batch: Batch,
        date: str,
        context: ProjectContext | None,
        no_cache: bool,
        tracker: ProgressTracker,
        pending: dict[str, list[Prompt]],
        stats: AnalysisRunStats,
    ) -> AnalysisResult:
        service = self.service

        if not no_cache:
            hit = await self.batch_cache.get(batch.prompts, service.model, service.template_hash)
            if hit is not None:
                stats.cached_batches += 1
                tracker.on_batch_cached()
                return hit

        tracker.on_batch_started(index)
        try:
            with LatencyTracker(f"batch {index}/{tracker.total} ({len(batch)} prompts)", self.context.logger):
                stats.backend_calls += 1
                result = await service.analyze(list(batch.prompts), date, context)
        except Exception as e:
            tracker.on_error(index, str(e))
            raise
        tracker.on_batch_completed()

        if not no_cache:
            # Cache writes complete even if the caller is cancelled
            await asyncio.shield(self._write_back(batch, result, pending))
        return result

    async def _write_back(
        self,
        batch: Batch,
        result: AnalysisResult,
        pending: dict[str, list[Prompt]],
    ) -> None:
        service = self.service
        try:
            await self.batch_cache.put(batch.prompts, service.model, service.template_hash, result)
        except OSError as e:
            self.context.warn(f"[CACHE] Could not store batch result: {e}")

        if len(batch) != 1:
            return
        originals = pending.get(batch.prompts[0])
        if not originals:
            return
        prompt = originals.pop(0)
        try:
            await self.prompt_cache.store(
                prompt, result, service.model, service.schema_id, service.template_hash
            )
        except OSError as e:
            self.context.warn(f"[CACHE] Could not store prompt result: {e}")

    def get_stats(self) -> dict[str, Any]:
        return {
            "last_run": self.last_run.to_dict(),
            "prompt_cache": self.prompt_cache.stats.to_dict(),
            "batch_cache": self.batch_cache.get_stats(),
        }
