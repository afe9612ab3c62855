"""
Secret redaction for prompt text.

Prompts are scrubbed before they are sent to an analysis backend so
credentials pasted into a conversation never leave the machine.
"""

import re
from dataclasses import dataclass


# (label, pattern, replacement); applied in order
REDACTION_PATTERNS: list[tuple[str, re.Pattern, str]] = [
    (
        "pem_private_key",
        re.compile(
            r"-----BEGIN\s+[A-Z\s]+PRIVATE\s+KEY-----[\s\S]*?-----END\s+[A-Z\s]+PRIVATE\s+KEY-----"
        ),
        "[REDACTED_PEM_KEY]",
    ),
    ("anthropic_key", re.compile(r"sk-ant-[a-zA-Z0-9-]+"), "[REDACTED_ANTHROPIC_KEY]"),
    ("openai_key", re.compile(r"sk-[a-zA-Z0-9]{48,}"), "[REDACTED_OPENAI_KEY]"),
    ("aws_access_key", re.compile(r"AKIA[0-9A-Z]{16}"), "[REDACTED_AWS_KEY]"),
    (
        "bearer_token",
        re.compile(r"Bearer(?:\s+token)?:?\s+[a-zA-Z0-9._-]{20,}", re.IGNORECASE),
        "Bearer [REDACTED_TOKEN]",
    ),
    (
        "url_credentials",
        re.compile(r"(https?://)[^:\s@/]+(?::[^\s@/]+)?@"),
        r"\1[REDACTED_URL_CREDENTIAL]@",
    ),
    ("email", re.compile(r"[a-zA-Z0-9._+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"), "[REDACTED_EMAIL]"),
]


@dataclass
class SanitizeResult:
    text: str
    redacted: int = 0


def sanitize(text: str) -> SanitizeResult:
    """Redact secrets from text. Returns the cleaned text and the number of redactions."""
    total = 0
    for _label, pattern, replacement in REDACTION_PATTERNS:
        text, count = pattern.subn(replacement, text)
        total += count
    return SanitizeResult(text=text, redacted=total)


def sanitize_prompts(prompts: list[str]) -> tuple[list[str], int]:
    """Sanitize each prompt. Returns (cleaned prompts, total redactions)."""
    cleaned = []
    total = 0
    for prompt in prompts:
        result = sanitize(prompt)
        cleaned.append(result.text)
        total += result.redacted
    return cleaned, total
