from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class TaskStatus(str, Enum):
    PENDING = "pending"
    DISPATCHED = "dispatched"
    COMPLETED = "completed"
    FAILED = "failed"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> TaskStatus:
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.UNKNOWN


class WorkerStatus(str, Enum):
    ACTIVE = "active"
    IDLE = "idle"


@dataclass(slots=True)
class TaskDescriptor:
    task_id: str
    path: Path
    status: TaskStatus
    kind: str
    title: str
    updated_at: int
    raw: bytes


@dataclass(slots=True)
class TaskView:
    """Display record for one task, shaped like the published `tasks[]` entries."""

    task_id: str
    title: str
    status: str
    updated_at: int


@dataclass(slots=True)
class WorkerSnapshot:
    identity: str
    raw_label: str
    label: str
    display_label: str
    status: WorkerStatus
    model: str
    token_count: int
    age_ms: int
    updated_at: int
    is_primary: bool = False
    session_key: str | None = None
    session_file: str | None = None

    @property
    def active(self) -> bool:
        return self.status is WorkerStatus.ACTIVE


@dataclass(slots=True, frozen=True)
class RoutingTarget:
    label: str
    model: str


@dataclass(slots=True, frozen=True)
class SpawnRequest:
    agent_pool: str
    label: str
    model: str
    instruction: str
    task_id: str = ""


@dataclass(slots=True, frozen=True)
class SpawnResult:
    ok: bool
    error: str | None = None
    output: str = ""


@dataclass(slots=True)
class StatusSnapshot:
    agents: list[WorkerSnapshot]
    tasks: list[TaskView]
    models: dict[str, int]
    taken_at: int
    version: str
    message: str = ""
