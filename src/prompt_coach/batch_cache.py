"""
Batch result cache.

Stores whole-batch analyses under a flat directory, keyed by the model,
the instruction template hash and the sorted prompt list, so the same
batch composition hits regardless of prompt order. Entries carry a TTL
and are ignored once expired or when model/template no longer match.
"""

import asyncio
import hashlib
import json
import logging
import time
from pathlib import Path
from typing import Any, Iterable

from .common_types import AnalysisResult, CachedBatchResult
from .run_context import RunContext
from .storage import CorruptEntryError, atomic_write_json, read_json

logger = logging.getLogger(__name__)

DEFAULT_TTL_DAYS = 7


def batch_key(prompts: Iterable[str], model: str, template_hash: str) -> str:
    payload = json.dumps(
        {"model": model, "templateHash": template_hash, "prompts": sorted(prompts)},
        ensure_ascii=False,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class BatchCache:
    """TTL-gated cache of AnalysisResults for whole batches."""

    def __init__(
        self,
        root: str | Path,
        ttl_days: float = DEFAULT_TTL_DAYS,
        context: RunContext | None = None,
    ):
        self.root = Path(root)
        self.ttl_days = ttl_days
        self.context = context or RunContext(logger=logger)
        self.hits = 0
        self.misses = 0

    def path_for(self, key: str) -> Path:
        return self.root / f"{key}.json"

    async def _load(self, path: Path) -> CachedBatchResult | None:
        try:
            data = await read_json(path)
            if data is None:
                return None
            return CachedBatchResult.from_dict(data)
        except (CorruptEntryError, KeyError, TypeError, ValueError, AttributeError) as e:
            self.context.debug(f"[CACHE] Ignoring corrupt batch entry {path.name}: {e}")
            return None

    async def get(
        self,
        prompts: list[str],
        model: str,
        template_hash: str,
        now: float | None = None,
    ) -> AnalysisResult | None:
        """Return the cached result for this batch, or None if absent, stale or mismatched."""
        key = batch_key(prompts, model, template_hash)
        entry = await self._load(self.path_for(key))

        if entry is None:
            self.misses += 1
            return None
        if not entry.matches(model, template_hash) or entry.prompt_count != len(prompts):
            self.misses += 1
            self.context.debug(f"[CACHE] Batch entry {key[:12]} does not match request")
            return None
        if entry.is_expired(now):
            self.misses += 1
            self.context.debug(f"[CACHE] Batch entry {key[:12]} expired")
            return None

        self.hits += 1
        return entry.result

    async def put(
        self,
        prompts: list[str],
        model: str,
        template_hash: str,
        result: AnalysisResult,
        ttl_days: float | None = None,
    ) -> Path:
        """
        Store a batch result atomically.

        Raises:
            OSError: If the entry cannot be written
        """
        key = batch_key(prompts, model, template_hash)
        entry = CachedBatchResult(
            fingerprint=key,
            model=model,
            template_hash=template_hash,
            prompt_count=len(prompts),
            result=result,
            ttl_days=self.ttl_days if ttl_days is None else ttl_days,
        )
        path = self.path_for(key)
        await atomic_write_json(path, entry.to_dict())
        return path

    async def cleanup_expired(self, now: float | None = None) -> int:
        """Remove expired and unreadable entries. Returns how many files were removed."""
        now = time.time() if now is None else now
        try:
            paths = await asyncio.to_thread(lambda: sorted(self.root.glob("*.json")))
        except FileNotFoundError:
            return 0

        removed = 0
        for path in paths:
            entry = await self._load(path)
            if entry is None or entry.is_expired(now):
                try:
                    path.unlink()
                    removed += 1
                except FileNotFoundError:
                    continue

        if removed:
            self.context.info(f"[CACHE] Removed {removed} stale batch entries")
        return removed

    def get_stats(self) -> dict[str, Any]:
        total = self.hits + self.misses
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": f"{(self.hits / total if total else 0.0):.1%}",
        }
