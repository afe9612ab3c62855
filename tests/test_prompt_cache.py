"""
Tests for the per-prompt result cache.

Tests cover:
- Fingerprint determinism and sensitivity
- Hit/miss round trips
- Corrupt and mismatched entries
- Date partition cleanup
- Cached/uncached partitioning
"""

import asyncio
import datetime
import json
from pathlib import Path

import pytest

from prompt_coach.common_types import Prompt, PromptResultMetadata
from prompt_coach.prompt_cache import UNDATED_PARTITION, PerPromptCache, fingerprint

from conftest import make_result

FIELDS = ("Fix the bug in parser.py", "2025-01-15", "my-app", "llama3.2", "schema-v1", "tmpl-abc")


def metadata_for(key: str, date: str = "2025-01-15", model: str = "llama3.2",
                 schema_id: str = "schema-v1") -> PromptResultMetadata:
    return PromptResultMetadata(fingerprint=key, date=date, model=model, schema_id=schema_id,
                                template_hash="tmpl-abc", project="my-app")


class TestFingerprint:
    """Tests for fingerprint()."""

    def test_deterministic(self):
        assert fingerprint(*FIELDS) == fingerprint(*FIELDS)
        assert len(fingerprint(*FIELDS)) == 64

    @pytest.mark.parametrize("index", range(6))
    def test_any_field_changes_key(self, index):
        changed = list(FIELDS)
        changed[index] = changed[index] + "x"
        assert fingerprint(*changed) != fingerprint(*FIELDS)

    def test_missing_project_is_empty_string(self):
        assert fingerprint("p", "2025-01-15", None, "m", "s", "t") == \
            fingerprint("p", "2025-01-15", "", "m", "s", "t")

    def test_field_boundaries_matter(self):
        assert fingerprint("ab", "c", None, "m", "s", "t") != fingerprint("a", "bc", None, "m", "s", "t")


class TestGetPut:
    """Tests for get()/put()."""

    @pytest.mark.asyncio
    async def test_round_trip(self, prompt_cache: PerPromptCache):
        key = fingerprint(*FIELDS)
        result = make_result()

        path = await prompt_cache.put(key, result, metadata_for(key))
        entry = await prompt_cache.get(key, "2025-01-15", model="llama3.2", schema_id="schema-v1")

        assert path == prompt_cache.root / "2025-01-15" / f"{key}.json"
        assert entry is not None
        assert entry.result == result
        assert entry.metadata.project == "my-app"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("index", [1, 2, 3, 4, 5])
    async def test_varying_inputs_miss(self, prompt_cache: PerPromptCache, index):
        key = fingerprint(*FIELDS)
        await prompt_cache.put(key, make_result(), metadata_for(key))

        changed = list(FIELDS)
        changed[index] = "2025-01-16" if index == 1 else changed[index] + "-other"
        other = fingerprint(*changed)

        assert await prompt_cache.get(other, changed[1]) is None

    @pytest.mark.asyncio
    async def test_missing_file_is_miss(self, prompt_cache: PerPromptCache):
        assert await prompt_cache.get(fingerprint(*FIELDS), "2025-01-15") is None
        assert prompt_cache.stats.misses == 1

    @pytest.mark.asyncio
    async def test_corrupt_file_is_miss(self, prompt_cache: PerPromptCache):
        key = fingerprint(*FIELDS)
        path = prompt_cache.path_for(key, "2025-01-15")
        path.parent.mkdir(parents=True)
        path.write_bytes(b"\x00\xff{not json")

        assert await prompt_cache.get(key, "2025-01-15") is None
        assert prompt_cache.stats.corrupt == 1

    @pytest.mark.asyncio
    async def test_wrong_structure_is_miss(self, prompt_cache: PerPromptCache):
        key = fingerprint(*FIELDS)
        path = prompt_cache.path_for(key, "2025-01-15")
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps({"metadata": {"fingerprint": key}, "result": []}))

        assert await prompt_cache.get(key, "2025-01-15") is None

    @pytest.mark.asyncio
    async def test_metadata_mismatch_is_miss(self, prompt_cache: PerPromptCache):
        key = fingerprint(*FIELDS)
        await prompt_cache.put(key, make_result(), metadata_for(key))

        assert await prompt_cache.get(key, "2025-01-15", model="other-model") is None
        assert await prompt_cache.get(key, "2025-01-15", schema_id="schema-v2") is None
        assert await prompt_cache.get(key, "2025-01-15") is not None

    @pytest.mark.asyncio
    async def test_put_leaves_no_temp_files(self, prompt_cache: PerPromptCache):
        key = fingerprint(*FIELDS)
        await prompt_cache.put(key, make_result(), metadata_for(key))
        await prompt_cache.put(key, make_result(overall_score=3), metadata_for(key))

        files = list((prompt_cache.root / "2025-01-15").iterdir())
        assert [f.name for f in files] == [f"{key}.json"]

    @pytest.mark.asyncio
    async def test_concurrent_writes_same_key(self, prompt_cache: PerPromptCache):
        key = fingerprint(*FIELDS)

        await asyncio.gather(*(
            prompt_cache.put(key, make_result(), metadata_for(key)) for _ in range(5)
        ))

        assert await prompt_cache.get(key, "2025-01-15") is not None
        assert len(list((prompt_cache.root / "2025-01-15").iterdir())) == 1

    @pytest.mark.asyncio
    async def test_write_failure_propagates(self, temp_dir: Path):
        blocker = temp_dir / "not-a-dir"
        blocker.write_text("file in the way")
        cache = PerPromptCache(blocker)
        key = fingerprint(*FIELDS)

        with pytest.raises(OSError):
            await cache.put(key, make_result(), metadata_for(key))

    @pytest.mark.asyncio
    async def test_mismatched_metadata_rejected(self, prompt_cache: PerPromptCache):
        with pytest.raises(ValueError):
            await prompt_cache.put("a" * 64, make_result(), metadata_for("b" * 64))

    def test_path_traversal_rejected(self, prompt_cache: PerPromptCache):
        with pytest.raises(ValueError):
            prompt_cache.path_for("../escape", "2025-01-15")

    def test_undated_partition(self, prompt_cache: PerPromptCache):
        path = prompt_cache.path_for("a" * 64, "unknown")
        assert path.parent.name == UNDATED_PARTITION


class TestCleanup:
    """Tests for cleanup()."""

    @pytest.mark.asyncio
    async def test_removes_partitions_strictly_before(self, prompt_cache: PerPromptCache):
        dates = ["2025-01-01", "2025-01-02", "2025-01-03", "2025-01-04", "2025-01-05"]
        for date in dates:
            key = fingerprint("p", date, None, "m", "s", "t")
            await prompt_cache.put(key, make_result(date=date), metadata_for(key, date=date))

        removed = await prompt_cache.cleanup("2025-01-04")

        assert removed == 3
        remaining = sorted(p.name for p in prompt_cache.root.iterdir())
        assert remaining == ["2025-01-04", "2025-01-05"]

    @pytest.mark.asyncio
    async def test_accepts_date_and_ignores_other_entries(self, prompt_cache: PerPromptCache):
        (prompt_cache.root / "2024-12-31").mkdir(parents=True)
        (prompt_cache.root / "notes").mkdir()
        (prompt_cache.root / "README").write_text("keep")

        removed = await prompt_cache.cleanup(datetime.date(2025, 1, 1))

        assert removed == 1
        assert (prompt_cache.root / "notes").exists()
        assert (prompt_cache.root / "README").exists()

    @pytest.mark.asyncio
    async def test_missing_root(self, temp_dir: Path):
        cache = PerPromptCache(temp_dir / "nowhere")
        assert await cache.cleanup("2025-01-01") == 0

    @pytest.mark.asyncio
    async def test_invalid_date(self, prompt_cache: PerPromptCache):
        with pytest.raises(ValueError):
            await prompt_cache.cleanup("last week")


class TestPartition:
    """Tests for lookup/store/partition."""

    @pytest.mark.asyncio
    async def test_partition_preserves_order(self, prompt_cache: PerPromptCache):
        prompts = [
            Prompt(content=f"prompt {i}", date="2025-01-15", project="my-app", session_id="s1")
            for i in range(5)
        ]
        for i in (1, 3):
            await prompt_cache.store(prompts[i], make_result(overall_score=i), "m", "s", "t")

        cached, uncached = await prompt_cache.partition(prompts, "m", "s", "t")

        assert [p for p, _ in cached] == [prompts[1], prompts[3]]
        assert [r.stats.overall_score for _, r in cached] == [1, 3]
        assert uncached == [prompts[0], prompts[2], prompts[4]]

    @pytest.mark.asyncio
    async def test_lookup_depends_on_model(self, prompt_cache: PerPromptCache):
        prompt = Prompt(content="hello", date="2025-01-15")
        stored = await prompt_cache.store(prompt, make_result(), "m", "s", "t")

        assert stored.metadata.prompt_hash
        assert await prompt_cache.lookup(prompt, "m", "s", "t") is not None
        assert await prompt_cache.lookup(prompt, "m2", "s", "t") is None
        assert prompt_cache.stats.hits == 1
