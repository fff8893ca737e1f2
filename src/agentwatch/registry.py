"""Worker registry reader.

Loads the session registry file and turns its records into an ordered list of
`WorkerSnapshot`: the primary session first, everyone else most recently
updated first. A missing or unreadable registry is a normal state (fresh node)
and yields no workers.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from pathlib import Path
from typing import Any

from .app_logging import log_with_fields
from .config import RegistryConfig
from .models import WorkerSnapshot, WorkerStatus
from .utils import as_int

logger = logging.getLogger("agentwatch.registry")


def _reject_constant(name: str) -> float:
    raise ValueError(f"non-finite number {name} in registry")


def load_session_records(path: Path) -> list[dict[str, Any]]:
    if not path.exists():
        return []
    try:
        data = json.loads(path.read_text(encoding="utf-8"), parse_constant=_reject_constant)
    except (OSError, ValueError) as exc:
        log_with_fields(logger, logging.WARNING, "registry_unreadable", path=str(path), error=str(exc))
        return []

    if isinstance(data, dict):
        records = list(data.values())
    elif isinstance(data, list):
        records = data
    else:
        log_with_fields(logger, logging.WARNING, "registry_unexpected_shape", path=str(path))
        return []
    return [record for record in records if isinstance(record, dict)]


def session_tokens(record: dict[str, Any]) -> int:
    total = as_int(record.get("totalTokens"))
    if total:
        return total
    return as_int(record.get("inputTokens")) + as_int(record.get("outputTokens"))


def is_primary_session(record: dict[str, Any], config: RegistryConfig) -> bool:
    primary = config.primary
    if primary.session_id and record.get("sessionId") == primary.session_id:
        return True
    return bool(primary.key and record.get("key") == primary.key)


def resolve_label(record: dict[str, Any], config: RegistryConfig) -> tuple[str, bool]:
    """Return (display label, is_primary) for a registry record."""
    raw_label = str(record.get("label") or "Unknown")
    if raw_label in config.label_map:
        return config.label_map[raw_label], False
    if is_primary_session(record, config):
        return config.primary.label, True
    return raw_label, False


def build_worker_snapshots(
    records: list[dict[str, Any]],
    config: RegistryConfig,
    now: int,
) -> list[WorkerSnapshot]:
    workers: list[WorkerSnapshot] = []
    primary_seen = False
    for record in records:
        updated_at = as_int(record.get("updatedAt"))
        age_ms = now - updated_at
        label, is_primary = resolve_label(record, config)
        # Only one session may hold the primary slot.
        is_primary = is_primary and not primary_seen
        primary_seen = primary_seen or is_primary
        session_file = record.get("sessionFile")
        workers.append(
            WorkerSnapshot(
                identity=str(record.get("sessionId") or record.get("key") or ""),
                raw_label=str(record.get("label") or "Unknown"),
                label=label,
                display_label=label,
                status=WorkerStatus.ACTIVE if age_ms < config.activity_window_ms else WorkerStatus.IDLE,
                model=str(record.get("model") or record.get("modelProvider") or "unknown"),
                token_count=session_tokens(record),
                age_ms=age_ms,
                updated_at=updated_at,
                is_primary=is_primary,
                session_key=record.get("key"),
                session_file=str(session_file) if session_file else None,
            )
        )

    # Suffixes are for display only; routing matches on `label`.
    counts = Counter(worker.label for worker in workers if not worker.is_primary)
    seen: Counter[str] = Counter()
    for worker in workers:
        if worker.is_primary or counts[worker.label] < 2:
            continue
        seen[worker.label] += 1
        worker.display_label = f"{worker.label}-{seen[worker.label]}"

    workers.sort(key=lambda worker: (not worker.is_primary, worker.age_ms))
    return workers


def read_workers(path: Path, config: RegistryConfig, now: int) -> list[WorkerSnapshot]:
    return build_worker_snapshots(load_session_records(path), config, now)
