"""
Common types for prompt analysis.

Contains:
- Enums: Severity, Prioritization
- Prompt records: Prompt, PromptEvent, FilePosition
- Analysis results: AnalysisPattern, AnalysisStats, AnalysisResult
- Cache records: PromptResultMetadata, PromptResult, CachedBatchResult
- Backend limits and context: BatchLimits, ProjectContext

On-disk records use camelCase keys so cache files stay readable by
the other tools that share the results directory.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
}


class Prioritization(Enum):
    """Order in which prompts are packed into batches."""
    LONGEST_FIRST = "longest-first"
    CHRONOLOGICAL = "chronological"


@dataclass(frozen=True)
class Prompt:
    """A single user prompt extracted from a conversation log."""
    content: str
    timestamp: str = ""
    session_id: str = ""
    project: str | None = None
    date: str = ""

    def to_dict(self) -> dict:
        return {
            "content": self.content,
            "timestamp": self.timestamp,
            "sessionId": self.session_id,
            "project": self.project,
            "date": self.date,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Prompt":
        return cls(
            content=data["content"],
            timestamp=data.get("timestamp", ""),
            session_id=data.get("sessionId", ""),
            project=data.get("project"),
            date=data.get("date", ""),
        )


@dataclass
class Batch:
    """An ordered, non-empty group of prompts sent in one backend call."""
    prompts: list[str]
    cost: int

    def __len__(self) -> int:
        return len(self.prompts)


@dataclass
class BeforeAfter:
    before: str = ""
    after: str = ""

    def to_dict(self) -> dict:
        return {"before": self.before, "after": self.after}

    @classmethod
    def from_dict(cls, data: dict) -> "BeforeAfter":
        return cls(before=str(data.get("before", "")), after=str(data.get("after", "")))


@dataclass
class AnalysisPattern:
    """A recurring quality issue found across prompts."""
    id: str
    name: str
    frequency: float
    severity: Severity
    examples: list[str] = field(default_factory=list)
    suggestion: str = ""
    before_after: BeforeAfter = field(default_factory=BeforeAfter)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "frequency": self.frequency,
            "severity": self.severity.value,
            "examples": list(self.examples),
            "suggestion": self.suggestion,
            "beforeAfter": self.before_after.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AnalysisPattern":
        frequency = data["frequency"]
        if isinstance(frequency, bool) or not isinstance(frequency, (int, float)):
            raise ValueError(f"invalid frequency: {frequency!r}")
        examples = data.get("examples", [])
        if not isinstance(examples, list):
            raise ValueError("examples must be a list")
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            frequency=frequency,
            severity=Severity(data["severity"]),
            examples=[str(e) for e in examples],
            suggestion=str(data.get("suggestion", "")),
            before_after=BeforeAfter.from_dict(data.get("beforeAfter") or {}),
        )


@dataclass
class AnalysisStats:
    total_prompts: int = 0
    prompts_with_issues: int = 0
    overall_score: float = 0

    def to_dict(self) -> dict:
        return {
            "totalPrompts": self.total_prompts,
            "promptsWithIssues": self.prompts_with_issues,
            "overallScore": self.overall_score,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AnalysisStats":
        return cls(
            total_prompts=int(data["totalPrompts"]),
            prompts_with_issues=int(data["promptsWithIssues"]),
            overall_score=data["overallScore"],
        )


@dataclass
class AnalysisResult:
    """Analysis of one or more prompts, as produced by a backend or a merge."""
    date: str
    patterns: list[AnalysisPattern] = field(default_factory=list)
    stats: AnalysisStats = field(default_factory=AnalysisStats)
    top_suggestion: str = ""

    def to_dict(self) -> dict:
        return {
            "date": self.date,
            "patterns": [p.to_dict() for p in self.patterns],
            "stats": self.stats.to_dict(),
            "topSuggestion": self.top_suggestion,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AnalysisResult":
        patterns = data["patterns"]
        if not isinstance(patterns, list):
            raise ValueError("patterns must be a list")
        return cls(
            date=str(data["date"]),
            patterns=[AnalysisPattern.from_dict(p) for p in patterns],
            stats=AnalysisStats.from_dict(data["stats"]),
            top_suggestion=str(data.get("topSuggestion", "")),
        )


@dataclass
class PromptResultMetadata:
    """Identity of a per-prompt cache entry."""
    fingerprint: str
    date: str
    model: str
    schema_id: str
    template_hash: str = ""
    project: str | None = None
    prompt_hash: str = ""
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "fingerprint": self.fingerprint,
            "date": self.date,
            "project": self.project,
            "model": self.model,
            "schemaId": self.schema_id,
            "templateHash": self.template_hash,
            "promptHash": self.prompt_hash,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PromptResultMetadata":
        return cls(
            fingerprint=str(data["fingerprint"]),
            date=str(data["date"]),
            model=str(data["model"]),
            schema_id=str(data["schemaId"]),
            template_hash=str(data.get("templateHash", "")),
            project=data.get("project"),
            prompt_hash=str(data.get("promptHash", "")),
            created_at=float(data.get("createdAt", 0)),
        )


@dataclass
class PromptResult:
    metadata: PromptResultMetadata
    result: AnalysisResult

    def to_dict(self) -> dict:
        return {"metadata": self.metadata.to_dict(), "result": self.result.to_dict()}

    @classmethod
    def from_dict(cls, data: dict) -> "PromptResult":
        return cls(
            metadata=PromptResultMetadata.from_dict(data["metadata"]),
            result=AnalysisResult.from_dict(data["result"]),
        )


@dataclass
class CachedBatchResult:
    """A whole-batch analysis stored with its TTL."""
    fingerprint: str
    model: str
    template_hash: str
    prompt_count: int
    result: AnalysisResult
    ttl_days: float = 7
    created_at: float = field(default_factory=time.time)

    def is_expired(self, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        return now - self.created_at > self.ttl_days * 86400

    def matches(self, model: str, template_hash: str) -> bool:
        return self.model == model and self.template_hash == template_hash

    def to_dict(self) -> dict:
        return {
            "fingerprint": self.fingerprint,
            "model": self.model,
            "templateHash": self.template_hash,
            "promptCount": self.prompt_count,
            "ttlDays": self.ttl_days,
            "createdAt": self.created_at,
            "result": self.result.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CachedBatchResult":
        return cls(
            fingerprint=str(data["fingerprint"]),
            model=str(data["model"]),
            template_hash=str(data["templateHash"]),
            prompt_count=int(data["promptCount"]),
            ttl_days=float(data["ttlDays"]),
            created_at=float(data["createdAt"]),
            result=AnalysisResult.from_dict(data["result"]),
        )


@dataclass
class FilePosition:
    """
    Tailer state for one watched file.

    byte_size is the offset just past the last consumed newline;
    observed_size is the file size seen at the last processed change;
    inode identifies the file so a replacement is noticed (0 if unknown).
    """
    path: str
    byte_size: int
    last_modified: float
    observed_size: int = 0
    inode: int = 0


@dataclass(frozen=True)
class PromptEvent:
    """A newly observed prompt and the log file it came from."""
    prompt: Prompt
    file_path: str


@dataclass(frozen=True)
class BatchLimits:
    max_cost_per_batch: int
    max_items_per_batch: int | None = None
    prioritization: Prioritization = Prioritization.LONGEST_FIRST


@dataclass
class ProjectContext:
    """Optional project description forwarded to the analysis backend."""
    role: str | None = None
    project_type: str | None = None
    domain: str | None = None
    tech_stack: list[str] = field(default_factory=list)
    guidelines: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "projectType": self.project_type,
            "domain": self.domain,
            "techStack": list(self.tech_stack),
            "guidelines": list(self.guidelines),
        }


@dataclass(frozen=True)
class RuleConfig:
    """Per-pattern override: disable the pattern or force its severity."""
    enabled: bool = True
    severity: Severity | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "RuleConfig":
        severity = data.get("severity")
        return cls(
            enabled=data.get("enabled", True) is not False,
            severity=Severity(severity) if severity else None,
        )


@dataclass
class RulesConfig:
    """Pattern id -> RuleConfig, usually loaded from project configuration."""
    rules: dict[str, RuleConfig] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return bool(self.rules)

    def get(self, pattern_id: str) -> RuleConfig | None:
        return self.rules.get(pattern_id)

    def is_enabled(self, pattern_id: str) -> bool:
        rule = self.rules.get(pattern_id)
        return rule is None or rule.enabled

    @classmethod
    def from_dict(cls, data: dict) -> "RulesConfig":
        """
        Build from {"pattern-id": {"enabled": false, "severity": "high"}}.

        Raises:
            ValueError: If an entry is not an object or a severity is unknown
        """
        rules = {}
        for pattern_id, entry in data.items():
            if not isinstance(entry, dict):
                raise ValueError(f"Rule {pattern_id!r} must be an object")
            rules[pattern_id] = RuleConfig.from_dict(entry)
        return cls(rules=rules)
