"""Publishes the status snapshot as a Firestore document over the REST API."""

from __future__ import annotations

from typing import Any

import httpx

from .config import PublishConfig
from .models import StatusSnapshot, TaskView, WorkerSnapshot
from .utils import ms_to_iso

FIRESTORE_BASE_URL = "https://firestore.googleapis.com/v1"


class PublishError(RuntimeError):
    pass


def _string(value: str) -> dict[str, str]:
    return {"stringValue": value}


def _integer(value: int) -> dict[str, str]:
    # Firestore's REST API carries int64 values as strings.
    return {"integerValue": str(int(value))}


def _map(fields: dict[str, Any]) -> dict[str, Any]:
    return {"mapValue": {"fields": fields}}


def encode_agent(worker: WorkerSnapshot) -> dict[str, Any]:
    return _map(
        {
            "key": _string(worker.identity),
            "label": _string(worker.display_label),
            "model": _string(worker.model),
            "status": _string(worker.status.value),
            "ageMs": _integer(worker.age_ms),
            "tokens": _integer(worker.token_count),
        }
    )


def encode_task(task: TaskView) -> dict[str, Any]:
    return _map(
        {
            "id": _string(task.task_id),
            "title": _string(task.title),
            "status": _string(task.status),
            "updatedAt": _integer(task.updated_at),
        }
    )


def encode_snapshot(snapshot: StatusSnapshot) -> dict[str, Any]:
    taken_at_iso = ms_to_iso(snapshot.taken_at)
    return {
        "fields": {
            "last_seen": {"timestampValue": taken_at_iso},
            "last_seen_local": _string(taken_at_iso),
            "status": _string("online"),
            "message": _string(snapshot.message),
            "updated_at": _integer(snapshot.taken_at),
            "models": _map({name: _integer(percent) for name, percent in snapshot.models.items()}),
            "agents": {"arrayValue": {"values": [encode_agent(agent) for agent in snapshot.agents]}},
            "tasks": {"arrayValue": {"values": [encode_task(task) for task in snapshot.tasks]}},
            "version": _string(snapshot.version),
        }
    }


class FirestorePublisher:
    def __init__(self, config: PublishConfig, client: httpx.Client | None = None) -> None:
        self.config = config
        self._client = client or httpx.Client(timeout=httpx.Timeout(config.timeout_seconds))

    @property
    def document_url(self) -> str:
        return (
            f"{FIRESTORE_BASE_URL}/projects/{self.config.project_id}"
            f"/databases/(default)/documents/{self.config.document}"
        )

    def publish(self, snapshot: StatusSnapshot) -> None:
        try:
            response = self._client.patch(
                self.document_url,
                params={"key": self.config.api_key},
                json=encode_snapshot(snapshot),
            )
        except httpx.HTTPError as exc:
            raise PublishError(f"request failed: {exc}") from exc
        if not response.is_success:
            raise PublishError(f"HTTP {response.status_code}: {response.text[:500]}")

    def close(self) -> None:
        self._client.close()
