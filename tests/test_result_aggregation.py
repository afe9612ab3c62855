"""
Unit tests for merging batch results.
"""

import pytest

from prompt_coach.common_types import RuleConfig, RulesConfig, Severity
from prompt_coach.result_aggregation import (
    MAX_EXAMPLES_PER_PATTERN,
    MAX_PATTERNS,
    NO_SUGGESTION,
    apply_rules,
    max_severity,
    merge_results,
    round_half_up,
)

from conftest import make_pattern, make_result


class TestHelpers:
    """Tests for rounding and severity helpers."""

    def test_round_half_up(self):
        assert round_half_up(0.5) == 1
        assert round_half_up(0.75) == 1
        assert round_half_up(0.49) == 0
        assert round_half_up(2.5) == 3
        assert round_half_up(6.0) == 6

    def test_max_severity(self):
        assert max_severity([Severity.LOW, Severity.HIGH, Severity.MEDIUM]) == Severity.HIGH
        assert max_severity([Severity.LOW, Severity.MEDIUM]) == Severity.MEDIUM
        assert max_severity([]) == Severity.LOW


class TestMergeResults:
    """Tests for merge_results()."""

    def test_empty_input_raises(self):
        with pytest.raises(ValueError):
            merge_results([], "2025-01-15")

    def test_score_is_rounded_unweighted_mean(self):
        merged = merge_results(
            [
                make_result(overall_score=7, total_prompts=10),
                make_result(overall_score=5, total_prompts=1),
            ],
            "2025-01-15",
        )

        assert merged.stats.overall_score == 6

    def test_score_rounds_half_up(self):
        merged = merge_results(
            [make_result(overall_score=7), make_result(overall_score=6)],
            "2025-01-15",
        )

        assert merged.stats.overall_score == 7

    def test_same_pattern_is_merged(self):
        merged = merge_results(
            [
                make_result(patterns=[make_pattern("pattern_a", 0.5, Severity.LOW)]),
                make_result(patterns=[make_pattern("pattern_a", 1.0, Severity.HIGH)]),
            ],
            "2025-01-15",
        )

        assert len(merged.patterns) == 1
        pattern = merged.patterns[0]
        assert pattern.id == "pattern_a"
        assert pattern.frequency == 1
        assert pattern.severity == Severity.HIGH

    def test_counts_are_summed(self):
        merged = merge_results(
            [
                make_result(total_prompts=10, prompts_with_issues=4),
                make_result(total_prompts=5, prompts_with_issues=5),
            ],
            "2025-01-15",
        )

        assert merged.stats.total_prompts == 15
        assert merged.stats.prompts_with_issues == 9

    def test_examples_first_three_in_batch_order(self):
        merged = merge_results(
            [
                make_result(patterns=[make_pattern("p", examples=["a", "b"])]),
                make_result(patterns=[make_pattern("p", examples=["c", "d"])]),
            ],
            "2025-01-15",
        )

        assert merged.patterns[0].examples == ["a", "b", "c"]

    def test_suggestion_from_first_occurrence(self):
        merged = merge_results(
            [
                make_result(patterns=[make_pattern("p", suggestion="first")]),
                make_result(patterns=[make_pattern("p", suggestion="second")]),
            ],
            "2025-01-15",
        )

        assert merged.patterns[0].suggestion == "first"
        assert merged.top_suggestion == "first"

    def test_truncated_to_top_patterns_by_frequency(self):
        patterns_a = [make_pattern(f"p{i}", frequency=i / 10) for i in range(4)]
        patterns_b = [make_pattern(f"q{i}", frequency=0.05 + i / 10) for i in range(4)]

        merged = merge_results(
            [make_result(patterns=patterns_a), make_result(patterns=patterns_b)],
            "2025-01-15",
        )

        assert len(merged.patterns) == MAX_PATTERNS
        frequencies = [p.frequency for p in merged.patterns]
        assert frequencies == sorted(frequencies, reverse=True)
        assert merged.patterns[0].id == "q3"

    def test_severity_breaks_frequency_ties(self):
        merged = merge_results(
            [
                make_result(patterns=[make_pattern("low", 0.5, Severity.LOW)]),
                make_result(patterns=[make_pattern("high", 0.5, Severity.HIGH)]),
            ],
            "2025-01-15",
        )

        assert [p.id for p in merged.patterns] == ["high", "low"]

    def test_single_result_still_limited_and_redated(self):
        result = make_result(
            date="2024-12-31",
            patterns=[make_pattern(f"p{i}", examples=["1", "2", "3", "4"]) for i in range(7)],
        )

        merged = merge_results([result], "2025-01-15")

        assert merged.date == "2025-01-15"
        assert len(merged.patterns) == MAX_PATTERNS
        assert all(len(p.examples) == MAX_EXAMPLES_PER_PATTERN for p in merged.patterns)
        assert merged.stats == result.stats
        assert len(result.patterns) == 7

    def test_top_suggestion_without_patterns(self):
        merged = merge_results(
            [make_result(patterns=[], top_suggestion="Keep going"), make_result(patterns=[])],
            "2025-01-15",
        )
        assert merged.top_suggestion == "Keep going"

        merged = merge_results([make_result(patterns=[], top_suggestion="")], "2025-01-15")
        assert merged.top_suggestion == NO_SUGGESTION


class TestApplyRules:
    """Tests for per-pattern rules on a merged report."""

    def _result(self):
        return make_result(patterns=[
            make_pattern("vague", severity=Severity.HIGH, suggestion="Be specific"),
            make_pattern("no-context", severity=Severity.MEDIUM, suggestion="Add context"),
            make_pattern("too-broad", severity=Severity.LOW, suggestion="Split it up"),
        ], top_suggestion="Be specific")

    def test_no_rules_returns_result_unchanged(self):
        result = self._result()
        assert apply_rules(result, None) is result
        assert apply_rules(result, RulesConfig()) is result

    def test_disabled_pattern_dropped(self):
        rules = RulesConfig(rules={"vague": RuleConfig(enabled=False)})

        result = apply_rules(self._result(), rules)

        assert [p.id for p in result.patterns] == ["no-context", "too-broad"]
        assert result.top_suggestion == "Add context"

    def test_severity_override_keeps_order(self):
        rules = RulesConfig(rules={"too-broad": RuleConfig(severity=Severity.HIGH)})

        result = apply_rules(self._result(), rules)

        assert [p.id for p in result.patterns] == ["vague", "no-context", "too-broad"]
        assert result.patterns[2].severity == Severity.HIGH
        assert result.patterns[0].severity == Severity.HIGH

    def test_all_disabled_keeps_reported_suggestion(self):
        rules = RulesConfig(rules={
            pid: RuleConfig(enabled=False) for pid in ("vague", "no-context", "too-broad")
        })

        result = apply_rules(self._result(), rules)

        assert result.patterns == []
        assert result.top_suggestion == "Be specific"
        assert result.stats == self._result().stats

    def test_rules_from_dict(self):
        rules = RulesConfig.from_dict({
            "vague": {"enabled": False},
            "too-broad": {"severity": "high"},
        })

        assert rules.is_enabled("vague") is False
        assert rules.is_enabled("unknown") is True
        assert rules.get("too-broad").severity == Severity.HIGH

    @pytest.mark.parametrize("data", [
        {"vague": "off"},
        {"vague": {"severity": "critical"}},
    ])
    def test_rules_from_dict_rejects_malformed(self, data):
        with pytest.raises(ValueError):
            RulesConfig.from_dict(data)
