"""
Parsing of conversation log lines.

Each log file is JSONL, one record per line:

    {"type": "user", "message": {"role": "user", "content": "..."},
     "timestamp": "2025-01-15T10:30:00.000Z", "sessionId": "...", "cwd": "..."}

Only user-authored records with non-empty text become Prompts.
"""

import datetime
import json
from pathlib import Path
from typing import Any

from .common_types import Prompt

UNKNOWN_DATE = "unknown"


def parse_line(line: str) -> dict[str, Any] | None:
    """
    Decode one log line.

    Returns:
        The decoded record, or None if the line is not a JSON object
    """
    try:
        record = json.loads(line)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return record if isinstance(record, dict) else None


def is_user_message(record: dict[str, Any]) -> bool:
    message = record.get("message")
    return (
        record.get("type") == "user"
        and isinstance(message, dict)
        and message.get("role") == "user"
        and isinstance(record.get("timestamp"), str)
    )


def extract_content(content: Any) -> str:
    """Extract text from message content (handles both string and list formats)."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = []
        for item in content:
            if isinstance(item, dict):
                if item.get("type") == "text":
                    text = item.get("text", "")
                    # Skip system reminders embedded in text
                    if text and not text.strip().startswith("<system-reminder>"):
                        texts.append(text)
            elif isinstance(item, str):
                texts.append(item)
        return "\n".join(texts)
    return ""


def extract_project_name(file_path: str | Path, root: str | Path | None = None) -> str:
    """
    Project name for a log file.

    Logs live at <root>/<project>/<session>.jsonl, with root usually
    ~/.claude/projects. Without a root, the directory after the last
    "projects" component is used. Files directly under the root are
    named after the file itself.
    """
    path = Path(file_path)

    if root is not None:
        try:
            relative = path.relative_to(root)
        except ValueError:
            relative = None
        if relative is not None:
            return relative.parts[0] if len(relative.parts) > 1 else path.stem

    parts = path.parts
    if "projects" in parts:
        index = len(parts) - 1 - parts[::-1].index("projects")
        if index + 1 < len(parts) - 1:
            return parts[index + 1]
    return path.stem


def extract_date(timestamp: str) -> str:
    """UTC calendar date (YYYY-MM-DD) of an ISO-8601 timestamp."""
    if not timestamp:
        return UNKNOWN_DATE
    try:
        parsed = datetime.datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    except ValueError:
        return UNKNOWN_DATE
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(datetime.timezone.utc)
    return parsed.date().isoformat()


def prompt_from_record(record: dict[str, Any], project: str | None) -> Prompt | None:
    """Build a Prompt from a decoded record, or None if it is not a user prompt."""
    if not is_user_message(record):
        return None

    content = extract_content(record["message"].get("content"))
    if not content.strip():
        return None

    timestamp = record["timestamp"]
    return Prompt(
        content=content,
        timestamp=timestamp,
        session_id=str(record.get("sessionId", "")),
        project=project,
        date=extract_date(timestamp),
    )
