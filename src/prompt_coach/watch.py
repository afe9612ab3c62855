"""
Live watch mode.

Connects a LogTailer to the analyzer: every new prompt is looked up in
the per-prompt cache, analyzed on a miss, stored, and handed to a
display sink. Pattern rules apply on delivery; the cache keeps the
unfiltered result. SIGINT/SIGTERM stop the tailer; prompts already being
analyzed are allowed to finish before run() returns.
"""

import asyncio
import inspect
import logging
from dataclasses import replace
from typing import Any, Callable

from .analyzer import BatchAnalyzer
from .common_types import AnalysisResult, ProjectContext, PromptEvent, RulesConfig, Severity
from .config import CoachConfig
from .log_tailer import EVENT_ERROR, EVENT_PROMPT, ChangesSource, LogTailer
from .profiling import configure_logging
from .prompt_cache import PerPromptCache
from .result_aggregation import apply_rules
from .run_context import RunContext

logger = logging.getLogger(__name__)

DisplaySink = Callable[[PromptEvent, AnalysisResult], Any]


def logging_sink(event: PromptEvent, result: AnalysisResult) -> None:
    """Default sink: one log line per analyzed prompt."""
    prompt = event.prompt
    issues = ", ".join(f"{p.name} ({p.severity.value})" for p in result.patterns) or "none"
    logger.info(
        f"[WATCH] {prompt.project or '-'} {prompt.timestamp}: "
        f"score {result.stats.overall_score}/10, issues: {issues}"
    )


def high_severity_only(result: AnalysisResult) -> AnalysisResult:
    return replace(result, patterns=[p for p in result.patterns if p.severity == Severity.HIGH])


class WatchOrchestrator:
    """
    Routes tailed prompts through cache and analyzer to a sink.

    The sink may be a plain function or a coroutine function. A failure
    while handling one prompt is logged and does not stop watching.
    """

    def __init__(
        self,
        tailer: LogTailer,
        analyzer: BatchAnalyzer,
        prompt_cache: PerPromptCache | None = None,
        sink: DisplaySink | None = None,
        project_context: ProjectContext | None = None,
        no_cache: bool = False,
        quiet: bool = False,
        rules: RulesConfig | None = None,
        context: RunContext | None = None,
    ):
        self.tailer = tailer
        self.analyzer = analyzer
        self.prompt_cache = prompt_cache or analyzer.prompt_cache
        self.sink = sink or logging_sink
        self.project_context = project_context
        self.no_cache = no_cache
        self.quiet = quiet
        self.rules = rules
        self.context = context or analyzer.context

        self.processed = 0
        self.cache_hits = 0
        self.failures = 0
        self._tasks: set[asyncio.Task] = set()
        self._accepting = True

        tailer.on(EVENT_PROMPT, self._on_prompt)
        tailer.on(EVENT_ERROR, self._on_error)

    @classmethod
    def from_config(
        cls,
        config: CoachConfig,
        analyzer: BatchAnalyzer,
        project_filter: str | None = None,
        changes_source: ChangesSource | None = None,
        **kwargs: Any,
    ) -> "WatchOrchestrator":
        """
        Watch entry point: logging at config.log_level, a tailer over
        config.logs_dir and the rules from config.rules_file.

        Remaining keyword arguments go to the constructor; an explicit
        rules= takes precedence over the rules file.
        """
        configure_logging(config.log_level)
        tailer = LogTailer.from_config(
            config,
            project_filter=project_filter,
            changes_source=changes_source,
            context=kwargs.get("context"),
        )
        if kwargs.get("rules") is None:
            kwargs["rules"] = config.load_rules()
        return cls(tailer, analyzer, **kwargs)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def _on_prompt(self, event: PromptEvent) -> None:
        if not self._accepting:
            return
        task = asyncio.get_running_loop().create_task(self.handle_prompt(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_error(self, error: Exception) -> None:
        self.context.warn(f"[WATCH] Tailer error: {error}")

    async def handle_prompt(self, event: PromptEvent) -> AnalysisResult | None:
        """Analyze one prompt (or reuse its cached result) and deliver it to the sink."""
        prompt = event.prompt
        service = self.analyzer.service
        try:
            result = None
            if not self.no_cache:
                hit = await self.prompt_cache.lookup(
                    prompt, service.model, service.schema_id, service.template_hash
                )
                if hit is not None:
                    result = hit.result
                    self.cache_hits += 1

            if result is None:
                result = await self.analyzer.analyze(
                    [prompt], prompt.date, context=self.project_context, no_cache=True
                )
                if not self.no_cache:
                    await self._store(event, result)

            self.processed += 1
            result = apply_rules(result, self.rules)
            if self.quiet:
                result = high_severity_only(result)
                if not result.patterns:
                    return result
            await self._deliver(event, result)
            return result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failures += 1
            self.context.error(f"[WATCH] Failed to analyze prompt from {event.file_path}: {e}")
            return None

    async def _store(self, event: PromptEvent, result: AnalysisResult) -> None:
        service = self.analyzer.service
        try:
            await asyncio.shield(self.prompt_cache.store(
                event.prompt, result, service.model, service.schema_id, service.template_hash
            ))
        except OSError as e:
            self.context.warn(f"[WATCH] Could not cache result: {e}")

    async def _deliver(self, event: PromptEvent, result: AnalysisResult) -> None:
        outcome = self.sink(event, result)
        if inspect.isawaitable(outcome):
            await outcome

    async def run(self, handle_signals: bool = True) -> None:
        """Start tailing and block until the tailer is stopped (by stop() or a signal)."""
        await self.tailer.start(handle_signals=handle_signals)
        try:
            await self.tailer.wait_closed()
        finally:
            self._accepting = False
            self.tailer.stop()
            await self.drain()
            self.context.info(
                f"[WATCH] Stopped after {self.processed} prompts "
                f"({self.cache_hits} cached, {self.failures} failed)"
            )

    async def stop(self) -> None:
        """Stop tailing and wait for prompts already being analyzed."""
        self._accepting = False
        self.tailer.stop()
        await self.tailer.wait_closed()
        await self.drain()

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
