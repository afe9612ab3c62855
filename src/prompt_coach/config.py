"""
Configuration for prompt-coach

Environment Variables:
- PROMPT_COACH_RESULTS_DIR: Per-prompt results store (default: ~/.prompt-coach/results)
- PROMPT_COACH_CACHE_DIR: Cache root, batch cache lives under analysis/ (default: ~/.prompt-coach-cache)
- PROMPT_COACH_LOGS_DIR: Conversation logs to tail (default: ~/.claude/projects)
- PROMPT_COACH_DEBOUNCE_MS: Per-file debounce window for the tailer (default: 500)
- PROMPT_COACH_BATCH_TTL_DAYS: Batch cache time-to-live (default: 7)
- PROMPT_COACH_MAX_CONCURRENT_BATCHES: Backend requests in flight per analysis (default: 1)
- PROMPT_COACH_SYSTEM_OVERHEAD: Cost reserved for the instruction template (default: 2000)
- PROMPT_COACH_COST_ESTIMATOR: Batch cost function, "chars" or "tiktoken" (default: chars)
- PROMPT_COACH_RECENT_CAPACITY: Recent-emission dedup window (default: 1000)
- PROMPT_COACH_FORCE_POLLING: Poll instead of native notifications (default: false)
- PROMPT_COACH_SANITIZE: Redact secrets before analysis (default: true)
- PROMPT_COACH_RULES_FILE: JSON file of per-pattern rules (default: unset)
- PROMPT_COACH_LOG_LEVEL: Logging level (default: WARNING)
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv

from .common_types import RulesConfig

load_dotenv()


def _path_from_env(name: str, default: str) -> Path:
    return Path(os.path.expanduser(os.getenv(name) or default))


def _optional_path_from_env(name: str) -> Path | None:
    value = os.getenv(name)
    return Path(os.path.expanduser(value)) if value else None


def _flag_from_env(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class CoachConfig:
    """Configuration for caching, batching and live tailing."""

    # Storage roots
    results_dir: Path = field(
        default_factory=lambda: _path_from_env("PROMPT_COACH_RESULTS_DIR", "~/.prompt-coach/results")
    )
    cache_dir: Path = field(
        default_factory=lambda: _path_from_env("PROMPT_COACH_CACHE_DIR", "~/.prompt-coach-cache")
    )
    logs_dir: Path = field(
        default_factory=lambda: _path_from_env("PROMPT_COACH_LOGS_DIR", "~/.claude/projects")
    )

    # Tailer
    debounce_ms: int = field(
        default_factory=lambda: int(os.getenv("PROMPT_COACH_DEBOUNCE_MS", "500"))
    )
    recent_capacity: int = field(
        default_factory=lambda: int(os.getenv("PROMPT_COACH_RECENT_CAPACITY", "1000"))
    )
    force_polling: bool = field(
        default_factory=lambda: _flag_from_env("PROMPT_COACH_FORCE_POLLING", "false")
    )

    # Batching and caching
    cache_ttl_days: float = field(
        default_factory=lambda: float(os.getenv("PROMPT_COACH_BATCH_TTL_DAYS", "7"))
    )
    max_concurrent_batches: int = field(
        default_factory=lambda: int(os.getenv("PROMPT_COACH_MAX_CONCURRENT_BATCHES", "1"))
    )
    system_overhead: int = field(
        default_factory=lambda: int(os.getenv("PROMPT_COACH_SYSTEM_OVERHEAD", "2000"))
    )
    cost_estimator: Literal["chars", "tiktoken"] = field(
        default_factory=lambda: os.getenv("PROMPT_COACH_COST_ESTIMATOR", "chars")  # type: ignore
    )
    sanitize: bool = field(
        default_factory=lambda: _flag_from_env("PROMPT_COACH_SANITIZE", "true")
    )
    rules_file: Path | None = field(
        default_factory=lambda: _optional_path_from_env("PROMPT_COACH_RULES_FILE")
    )

    log_level: str = field(
        default_factory=lambda: os.getenv("PROMPT_COACH_LOG_LEVEL", "WARNING")
    )

    @property
    def batch_cache_dir(self) -> Path:
        return self.cache_dir / "analysis"

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000

    async def clear_caches(self) -> int:
        """Delete the results store and the cache directory. Returns how many existed."""
        from .storage import clear_cache
        return await clear_cache(self.results_dir, self.cache_dir)

    def load_rules(self) -> RulesConfig:
        """
        Read per-pattern rules from rules_file.

        The file holds either the rules object itself or a config object
        with a "rules" key. No rules_file means no rules.

        Raises:
            OSError: If rules_file cannot be read
            ValueError: If it is not valid JSON or a rule is malformed
        """
        if self.rules_file is None:
            return RulesConfig()
        data = json.loads(self.rules_file.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"Rules file must contain a JSON object: {self.rules_file}")
        rules = data.get("rules", data)
        if not isinstance(rules, dict):
            raise ValueError(f"\"rules\" must be an object in {self.rules_file}")
        return RulesConfig.from_dict(rules)

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if self.debounce_ms < 0:
            errors.append("debounce_ms must not be negative")

        if self.recent_capacity < 1:
            errors.append("recent_capacity must be at least 1")

        if self.cache_ttl_days <= 0:
            errors.append("cache_ttl_days must be positive")

        if self.max_concurrent_batches < 1:
            errors.append("max_concurrent_batches must be at least 1")

        if self.system_overhead < 0:
            errors.append("system_overhead must not be negative")

        if self.cost_estimator not in ("chars", "tiktoken"):
            errors.append(f"unknown cost_estimator: {self.cost_estimator}")

        return errors


def get_config() -> CoachConfig:
    """Get configuration instance."""
    return CoachConfig()
