"""Task descriptor files in the inbox directory.

A descriptor is a flat text file with `key: value` metadata lines (optionally
inside a `---` front-matter block) and a free-text body. Only `status` and
`type`/`kind` are interpreted. Writes go through `rewrite_status`, which touches
nothing but the bytes of the first `status` value.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from .app_logging import log_with_fields
from .models import TaskDescriptor, TaskStatus

logger = logging.getLogger("agentwatch.descriptors")

TITLE_LIMIT = 50
DEFAULT_KIND = "general"
ID_PREFIX = "inbox:"

_KEY_PREFIX = rb"(?im)^(?P<prefix>[ \t]*(?:[-*][ \t]+)?\**(?:%s)\**[ \t]*:[ \t]*\**[ \t]*)"
STATUS_REGEX = re.compile(_KEY_PREFIX % rb"status" + rb"(?P<quote>[\"']?)(?P<value>[A-Za-z_-]+)(?P=quote)")
KIND_REGEX = re.compile(_KEY_PREFIX % rb"type|kind" + rb"(?P<quote>[\"']?)(?P<value>[A-Za-z0-9_.-]+)(?P=quote)")
METADATA_LINE_REGEX = re.compile(r"^\s*(?:[-*]\s+)?\**[A-Za-z_][\w-]*\**\s*:")
HEADING_REGEX = re.compile(r"^\s{0,3}#{1,6}\s+(?P<text>.+?)\s*#*\s*$")


class TaskParseError(ValueError):
    pass


def task_id_for(path: Path) -> str:
    return f"{ID_PREFIX}{path.name}"


def is_task_file(path: Path, suffixes: tuple[str, ...]) -> bool:
    return path.is_file() and not path.name.startswith(".") and path.suffix.lower() in suffixes


def list_task_files(directory: Path, suffixes: tuple[str, ...]) -> list[Path]:
    """Enumerate descriptor files; a missing inbox is simply empty."""
    try:
        entries = sorted(directory.iterdir())
    except OSError:
        return []
    return [path for path in entries if is_task_file(path, suffixes)]


def parse_status(raw: bytes) -> TaskStatus:
    match = STATUS_REGEX.search(raw)
    if match is None:
        return TaskStatus.UNKNOWN
    return TaskStatus.parse(match.group("value").decode("ascii"))


def parse_kind(raw: bytes) -> str:
    match = KIND_REGEX.search(raw)
    if match is None:
        return DEFAULT_KIND
    return match.group("value").decode("ascii").lower()


def derive_title(text: str, fallback: str) -> str:
    lines = text.splitlines()
    for line in lines:
        heading = HEADING_REGEX.match(line)
        if heading:
            return heading.group("text")[:TITLE_LIMIT]

    for line in lines:
        stripped = line.strip()
        if not stripped or stripped == "---" or METADATA_LINE_REGEX.match(stripped):
            continue
        return stripped[:TITLE_LIMIT]
    return fallback


def decode_body(raw: bytes) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise TaskParseError(f"not valid UTF-8: {exc}") from exc


def parse_descriptor(path: Path, raw: bytes, mtime_ms: int) -> TaskDescriptor:
    """Build a descriptor from raw bytes, degrading instead of failing."""
    try:
        text = decode_body(raw)
        status = parse_status(raw)
        kind = parse_kind(raw)
    except TaskParseError as exc:
        log_with_fields(logger, logging.WARNING, "task_unparseable", path=str(path), error=str(exc))
        text = raw.decode("utf-8", errors="replace")
        status = TaskStatus.UNKNOWN
        kind = DEFAULT_KIND

    return TaskDescriptor(
        task_id=task_id_for(path),
        path=path,
        status=status,
        kind=kind,
        title=derive_title(text, fallback=path.name),
        updated_at=mtime_ms,
        raw=raw,
    )


def read_descriptor(path: Path) -> TaskDescriptor:
    raw = path.read_bytes()
    mtime_ms = path.stat().st_mtime_ns // 1_000_000
    return parse_descriptor(path, raw, mtime_ms)


def rewrite_status(raw: bytes, new_status: TaskStatus) -> bytes:
    match = STATUS_REGEX.search(raw)
    if match is None:
        raise TaskParseError("no status field to rewrite")
    start, end = match.span("value")
    return raw[:start] + new_status.value.encode("ascii") + raw[end:]


def write_raw(path: Path, content: bytes) -> None:
    path.write_bytes(content)
