"""
prompt-coach

Incremental analysis cache and live log ingestion for a prompt-quality
coaching tool.

THE PIPELINE:
- Prompts are split into batches that fit the analysis backend's limits
- Each batch is analyzed once; results are merged into one report
- Results are cached by content fingerprint, so unchanged prompts are
  never sent to the backend twice
- In watch mode, new prompts are tailed from conversation logs as they
  are written and analyzed one by one
- Per-pattern rules can disable patterns or override their severity

Backends plug in through AnalysisService.
"""

__version__ = "0.3.0"

from .analysis_service import AnalysisService, DEFAULT_BATCH_LIMITS
from .analyzer import BatchAnalyzer
from .batch_cache import BatchCache
from .batching import estimate_cost, split
from .common_types import (
    AnalysisPattern,
    AnalysisResult,
    AnalysisStats,
    BatchLimits,
    Prioritization,
    Prompt,
    PromptEvent,
    RuleConfig,
    RulesConfig,
    Severity,
)
from .config import CoachConfig, get_config
from .log_tailer import LogTailer
from .prompt_cache import PerPromptCache, fingerprint
from .result_aggregation import apply_rules, merge_results
from .run_context import RunContext
from .storage import clear_cache
from .watch import WatchOrchestrator

__all__ = [
    "AnalysisService",
    "DEFAULT_BATCH_LIMITS",
    "BatchAnalyzer",
    "BatchCache",
    "estimate_cost",
    "split",
    "AnalysisPattern",
    "AnalysisResult",
    "AnalysisStats",
    "BatchLimits",
    "Prioritization",
    "Prompt",
    "PromptEvent",
    "RuleConfig",
    "RulesConfig",
    "Severity",
    "CoachConfig",
    "get_config",
    "LogTailer",
    "PerPromptCache",
    "fingerprint",
    "apply_rules",
    "merge_results",
    "RunContext",
    "clear_cache",
    "WatchOrchestrator",
]
