from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

from .app_logging import log_with_fields
from .config import RegistryConfig, SessionTasksConfig
from .models import TaskView
from .registry import is_primary_session
from .utils import as_int, truncate

logger = logging.getLogger("agentwatch.session_tasks")

TRANSCRIPT_SCAN_LINES = 10
MIN_MESSAGE_CHARS = 5
TITLE_LIMIT = 50
LEADING_TAG_REGEX = re.compile(r"^\[.*?\]\s*")
SUBTASK_TITLE = "Subtask"
MAINTENANCE_TITLE = "System maintenance"


def _message_text(entry: dict[str, Any]) -> str:
    content = entry.get("content") or entry.get("message") or ""
    if isinstance(content, dict):
        content = content.get("content") or content.get("text") or ""
    if isinstance(content, list):
        parts = [part.get("text", "") for part in content if isinstance(part, dict)]
        content = " ".join(part for part in parts if part)
    return content if isinstance(content, str) else ""


def title_from_transcript(path: Path) -> str | None:
    """First substantial user message of a session transcript (JSON lines)."""
    if not path.is_file():
        return None
    first_message: str | None = None
    try:
        with path.open("r", encoding="utf-8", errors="replace") as handle:
            for lines_read, line in enumerate(handle):
                if lines_read > TRANSCRIPT_SCAN_LINES:
                    break
                try:
                    entry = json.loads(line)
                except ValueError:
                    continue
                if not isinstance(entry, dict):
                    continue
                if entry.get("type") != "user" and entry.get("role") != "user":
                    continue
                text = _message_text(entry)
                if len(text) > MIN_MESSAGE_CHARS:
                    first_message = text
                    break
    except OSError as exc:
        log_with_fields(logger, logging.WARNING, "transcript_unreadable", path=str(path), error=str(exc))
        return None

    if first_message is None:
        return None
    # Channel tags such as "[Telegram ...]" are not part of the request.
    cleaned = LEADING_TAG_REGEX.sub("", first_message, count=1).strip()
    return truncate(cleaned, TITLE_LIMIT, "...") or None


def fallback_title(
    record: dict[str, Any], raw_label: str, registry: RegistryConfig, config: SessionTasksConfig
) -> str:
    if raw_label in config.title_map:
        return config.title_map[raw_label]
    if raw_label.lower() == "unknown":
        return SUBTASK_TITLE if "subagent" in str(record.get("sessionId") or "") else MAINTENANCE_TITLE
    return registry.label_map.get(raw_label, raw_label)


def collect_session_tasks(
    records: list[dict[str, Any]],
    registry: RegistryConfig,
    config: SessionTasksConfig,
    now: int,
) -> list[TaskView]:
    done_after_ms = config.done_after_seconds * 1000
    hide_after_ms = config.hide_done_after_seconds * 1000
    tasks: list[TaskView] = []

    ordered = sorted(records, key=lambda record: as_int(record.get("updatedAt")), reverse=True)
    for record in ordered:
        if is_primary_session(record, registry):
            continue
        updated_at = as_int(record.get("updatedAt"))
        age_ms = now - updated_at
        # Only `totalTokens` marks a finished session; partial counters do not.
        is_done = as_int(record.get("totalTokens")) > 0 and age_ms > done_after_ms
        if is_done and age_ms > hide_after_ms:
            continue

        raw_label = str(record.get("label") or "Unknown")
        title = None
        session_file = record.get("sessionFile")
        if session_file:
            title = title_from_transcript(Path(str(session_file)))
        if title is None:
            title = fallback_title(record, raw_label, registry, config)

        tasks.append(
            TaskView(
                task_id=str(record.get("sessionId") or record.get("key") or raw_label),
                title=title,
                status="done" if is_done else "running",
                updated_at=updated_at,
            )
        )

    for scheduled in config.scheduled:
        tasks.append(TaskView(task_id=scheduled.task_id, title=scheduled.title, status="scheduled", updated_at=now))
    return tasks
