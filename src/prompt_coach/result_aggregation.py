"""
Result Aggregation for batch analysis.

Reduces the per-batch AnalysisResults of one analysis into a single
report:
- Patterns grouped by id, frequencies averaged, severities maxed
- Examples capped per pattern, patterns capped per report
- Prompt counts summed, scores averaged (unweighted)

Per-pattern rules (disable, severity override) are applied to the
merged report by apply_rules().
"""

import math
from dataclasses import replace
from typing import Iterable

from .common_types import AnalysisPattern, AnalysisResult, AnalysisStats, RulesConfig, Severity


MAX_PATTERNS = 5
MAX_EXAMPLES_PER_PATTERN = 3
NO_SUGGESTION = "No suggestions available"


def round_half_up(value: float) -> int:
    """Round halves up: 0.5 -> 1, 2.5 -> 3."""
    return math.floor(value + 0.5)


def max_severity(severities: Iterable[Severity]) -> Severity:
    return max(severities, key=lambda s: s.rank, default=Severity.LOW)


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0


def _limit_examples(pattern: AnalysisPattern) -> AnalysisPattern:
    return AnalysisPattern(
        id=pattern.id,
        name=pattern.name,
        frequency=pattern.frequency,
        severity=pattern.severity,
        examples=list(pattern.examples[:MAX_EXAMPLES_PER_PATTERN]),
        suggestion=pattern.suggestion,
        before_after=pattern.before_after,
    )


def merge_pattern_group(group: list[AnalysisPattern]) -> AnalysisPattern:
    """
    Merge patterns sharing one id.

    A lone pattern keeps its frequency as reported; a group gets the
    rounded mean. Identity fields come from the first occurrence.
    """
    first = group[0]
    if len(group) == 1:
        return _limit_examples(first)

    examples = [example for pattern in group for example in pattern.examples]
    return AnalysisPattern(
        id=first.id,
        name=first.name,
        frequency=round_half_up(_mean([p.frequency for p in group])),
        severity=max_severity(p.severity for p in group),
        examples=examples[:MAX_EXAMPLES_PER_PATTERN],
        suggestion=first.suggestion,
        before_after=first.before_after,
    )


def rank_patterns(patterns: list[AnalysisPattern]) -> list[AnalysisPattern]:
    """Order by frequency, then severity (both descending), keep the top MAX_PATTERNS."""
    ranked = sorted(patterns, key=lambda p: (p.frequency, p.severity.rank), reverse=True)
    return ranked[:MAX_PATTERNS]


def merge_results(results: list[AnalysisResult], date: str) -> AnalysisResult:
    """
    Merge per-batch results into one report for the given date.

    Args:
        results: Results in batch order (cached results first)
        date: Date stamped on the merged report

    Returns:
        Merged AnalysisResult

    Raises:
        ValueError: If results is empty
    """
    if not results:
        raise ValueError("Cannot merge empty results list")

    groups: dict[str, list[AnalysisPattern]] = {}
    for result in results:
        for pattern in result.patterns:
            groups.setdefault(pattern.id, []).append(pattern)

    patterns = rank_patterns([merge_pattern_group(group) for group in groups.values()])

    if len(results) == 1:
        stats = replace(results[0].stats)
    else:
        stats = AnalysisStats(
            total_prompts=sum(r.stats.total_prompts for r in results),
            prompts_with_issues=sum(r.stats.prompts_with_issues for r in results),
            overall_score=round_half_up(_mean([r.stats.overall_score for r in results])),
        )

    if patterns:
        top_suggestion = patterns[0].suggestion
    else:
        top_suggestion = results[0].top_suggestion or NO_SUGGESTION

    return AnalysisResult(
        date=date,
        patterns=patterns,
        stats=stats,
        top_suggestion=top_suggestion,
    )


def apply_rules(result: AnalysisResult, rules: RulesConfig | None) -> AnalysisResult:
    """
    Drop disabled patterns and apply severity overrides.

    Pattern order is kept. top_suggestion follows the first remaining
    pattern, or stays as reported when none remain.
    """
    if not rules:
        return result

    patterns = []
    for pattern in result.patterns:
        rule = rules.get(pattern.id)
        if rule is None:
            patterns.append(pattern)
        elif rule.enabled:
            patterns.append(replace(pattern, severity=rule.severity) if rule.severity else pattern)

    top_suggestion = patterns[0].suggestion if patterns else result.top_suggestion
    return replace(result, patterns=patterns, top_suggestion=top_suggestion)
