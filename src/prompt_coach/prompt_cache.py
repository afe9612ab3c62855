"""
Per-prompt result cache.

Content-addressable store of single-prompt analyses. Each entry is keyed
by a SHA-256 fingerprint of everything that influences the analysis
(prompt text, date, project, model, output schema, instruction template)
and stored as one JSON file:

    <results-root>/<YYYY-MM-DD>/<fingerprint>.json

Entries are never updated in place: changed input means a new
fingerprint. Old entries are removed a whole date partition at a time
with cleanup().
"""

import asyncio
import datetime
import hashlib
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from .common_types import AnalysisResult, Prompt, PromptResult, PromptResultMetadata
from .run_context import RunContext
from .storage import CorruptEntryError, atomic_write_json, read_json, remove_tree

logger = logging.getLogger(__name__)

DATE_PARTITION_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
UNDATED_PARTITION = "undated"
MAX_CONCURRENT_LOOKUPS = 10  # Bounded like directory scans elsewhere


def fingerprint(
    content: str,
    date: str,
    project: str | None,
    model: str,
    schema_id: str,
    template_hash: str,
) -> str:
    """
    Compute the cache key for one prompt analysis.

    Fields are joined with NUL so that no two distinct field tuples can
    produce the same hashed string.
    """
    key = "\x00".join([content, date, project or "", model, schema_id, template_hash])
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def prompt_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def partition_name(date: str) -> str:
    return date if DATE_PARTITION_RE.match(date) else UNDATED_PARTITION


@dataclass
class PromptCacheStats:
    """Statistics for the per-prompt cache."""
    hits: int = 0
    misses: int = 0
    corrupt: int = 0
    writes: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "corrupt": self.corrupt,
            "writes": self.writes,
            "hit_rate": f"{self.hit_rate:.1%}",
        }


class PerPromptCache:
    """
    Date-partitioned, content-addressable cache of PromptResults.

    Unreadable, malformed or mismatched entries are reported as misses;
    only write failures raise.
    """

    def __init__(self, root: str | Path, context: RunContext | None = None):
        self.root = Path(root)
        self.context = context or RunContext(logger=logger)
        self.stats = PromptCacheStats()

    def path_for(self, key: str, date: str) -> Path:
        if not key or os.sep in key or "/" in key or key.startswith("."):
            raise ValueError(f"Invalid fingerprint: {key!r}")
        return self.root / partition_name(date) / f"{key}.json"

    def _miss(self) -> None:
        self.stats.misses += 1

    async def get(
        self,
        key: str,
        date: str,
        model: str | None = None,
        schema_id: str | None = None,
    ) -> PromptResult | None:
        """
        Look up a cached result.

        Args:
            key: Fingerprint from fingerprint()
            date: Date partition the entry was stored under
            model: If given, the stored model must match
            schema_id: If given, the stored schema id must match

        Returns:
            The stored PromptResult, or None on any kind of miss
        """
        path = self.path_for(key, date)
        try:
            data = await read_json(path)
            if data is None:
                self._miss()
                return None
            entry = PromptResult.from_dict(data)
        except (CorruptEntryError, KeyError, TypeError, ValueError, AttributeError) as e:
            self.stats.corrupt += 1
            self._miss()
            self.context.debug(f"[CACHE] Ignoring corrupt entry {path.name}: {e}")
            return None

        meta = entry.metadata
        if meta.fingerprint != key:
            self._miss()
            self.context.debug(f"[CACHE] Fingerprint mismatch in {path.name}")
            return None
        if model is not None and meta.model != model:
            self._miss()
            return None
        if schema_id is not None and meta.schema_id != schema_id:
            self._miss()
            return None

        self.stats.hits += 1
        return entry

    async def put(self, key: str, result: AnalysisResult, metadata: PromptResultMetadata) -> Path:
        """
        Store a result atomically.

        Raises:
            OSError: If the entry cannot be written
        """
        if metadata.fingerprint != key:
            raise ValueError("metadata.fingerprint does not match key")
        path = self.path_for(key, metadata.date)
        await atomic_write_json(path, PromptResult(metadata=metadata, result=result).to_dict())
        self.stats.writes += 1
        return path

    async def lookup(
        self,
        prompt: Prompt,
        model: str,
        schema_id: str,
        template_hash: str,
    ) -> PromptResult | None:
        key = fingerprint(prompt.content, prompt.date, prompt.project, model, schema_id, template_hash)
        return await self.get(key, prompt.date, model=model, schema_id=schema_id)

    async def store(
        self,
        prompt: Prompt,
        result: AnalysisResult,
        model: str,
        schema_id: str,
        template_hash: str,
    ) -> PromptResult:
        key = fingerprint(prompt.content, prompt.date, prompt.project, model, schema_id, template_hash)
        metadata = PromptResultMetadata(
            fingerprint=key,
            date=prompt.date,
            project=prompt.project,
            model=model,
            schema_id=schema_id,
            template_hash=template_hash,
            prompt_hash=prompt_hash(prompt.content),
        )
        await self.put(key, result, metadata)
        return PromptResult(metadata=metadata, result=result)

    async def partition(
        self,
        prompts: Iterable[Prompt],
        model: str,
        schema_id: str,
        template_hash: str,
    ) -> tuple[list[tuple[Prompt, AnalysisResult]], list[Prompt]]:
        """
        Split prompts into cached and uncached, preserving input order.

        Returns:
            (cached (prompt, result) pairs, uncached prompts)
        """
        prompts = list(prompts)
        semaphore = asyncio.Semaphore(MAX_CONCURRENT_LOOKUPS)

        async def check(prompt: Prompt) -> PromptResult | None:
            async with semaphore:
                return await self.lookup(prompt, model, schema_id, template_hash)

        found = await asyncio.gather(*(check(p) for p in prompts))

        cached = [(p, entry.result) for p, entry in zip(prompts, found) if entry is not None]
        uncached = [p for p, entry in zip(prompts, found) if entry is None]
        return cached, uncached

    async def cleanup(self, before_date: str | datetime.date) -> int:
        """
        Remove every date partition strictly earlier than before_date.

        Returns:
            Number of partitions removed
        """
        if isinstance(before_date, datetime.date):
            before_date = before_date.isoformat()
        if not DATE_PARTITION_RE.match(before_date):
            raise ValueError(f"before_date must be YYYY-MM-DD, got {before_date!r}")

        try:
            entries = await asyncio.to_thread(lambda: list(self.root.iterdir()))
        except FileNotFoundError:
            return 0

        removed = 0
        for entry in sorted(entries):
            if not entry.is_dir() or not DATE_PARTITION_RE.match(entry.name):
                continue
            if entry.name < before_date:
                await remove_tree(entry)
                removed += 1

        if removed:
            self.context.info(f"[CACHE] Removed {removed} result partitions before {before_date}")
        return removed
