from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import Future
from pathlib import Path
from typing import Protocol

from .app_logging import log_with_fields
from .config import DispatchConfig, RoutingConfig
from .descriptors import TaskParseError, list_task_files, read_descriptor, rewrite_status, write_raw
from .models import RoutingTarget, SpawnRequest, SpawnResult, TaskDescriptor, TaskStatus, TaskView, WorkerSnapshot
from .spawner import build_instruction
from .utils import now_ms


class Spawner(Protocol):
    def spawn(self, request: SpawnRequest) -> Future[SpawnResult]: ...


def busy_labels(workers: Iterable[WorkerSnapshot]) -> set[str]:
    labels: set[str] = set()
    for worker in workers:
        if worker.active:
            labels.add(worker.label)
            labels.add(worker.raw_label)
    return labels


class InboxRouter:
    """Dispatches pending inbox tasks to idle worker pools.

    One `route` call is one tick: every descriptor is read from disk, pending
    tasks whose target pool has no active worker are flipped to `dispatched`
    on disk and handed to the spawner, and a display list is returned. A spawn
    that later reports failure restores the descriptor's original bytes so the
    next tick sees it as pending again.
    """

    def __init__(
        self,
        inbox_dir: Path,
        routing: RoutingConfig,
        dispatch: DispatchConfig,
        spawner: Spawner,
        logger: logging.Logger,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.inbox_dir = inbox_dir
        self.routing = routing
        self.dispatch = dispatch
        self.spawner = spawner
        self.logger = logger
        self.clock = clock

    def route(self, workers: list[WorkerSnapshot], *, dry_run: bool = False) -> list[TaskView]:
        busy = busy_labels(workers)
        dispatched: list[TaskView] = []
        others: list[TaskView] = []

        for path in list_task_files(self.inbox_dir, self.dispatch.task_suffixes):
            try:
                descriptor = read_descriptor(path)
            except OSError as exc:
                log_with_fields(self.logger, logging.WARNING, "task_read_failed", path=str(path), error=str(exc))
                continue

            if descriptor.status is not TaskStatus.PENDING:
                others.append(self._view(descriptor, descriptor.status.value, descriptor.updated_at))
                continue

            target = self.routing.resolve(descriptor.kind)
            if target.label in busy:
                log_with_fields(
                    self.logger,
                    logging.INFO,
                    "task_waiting_busy",
                    task_id=descriptor.task_id,
                    label=target.label,
                )
                others.append(self._view(descriptor, TaskStatus.PENDING.value, descriptor.updated_at))
                continue
            if dry_run:
                others.append(self._view(descriptor, TaskStatus.PENDING.value, descriptor.updated_at))
                continue

            if self._dispatch(descriptor, target):
                dispatched.append(self._view(descriptor, TaskStatus.DISPATCHED.value, self.clock()))
                if self.dispatch.recheck_busy_after_dispatch:
                    busy.add(target.label)
            else:
                others.append(self._view(descriptor, TaskStatus.PENDING.value, descriptor.updated_at))

        others.sort(key=lambda view: (view.updated_at, view.task_id))
        return dispatched + others

    def _view(self, descriptor: TaskDescriptor, status: str, updated_at: int) -> TaskView:
        return TaskView(
            task_id=descriptor.task_id,
            title=descriptor.title,
            status=status,
            updated_at=updated_at,
        )

    def _dispatch(self, descriptor: TaskDescriptor, target: RoutingTarget) -> bool:
        original = descriptor.raw
        try:
            write_raw(descriptor.path, rewrite_status(original, TaskStatus.DISPATCHED))
        except (TaskParseError, OSError) as exc:
            log_with_fields(
                self.logger,
                logging.ERROR,
                "task_mark_dispatched_failed",
                task_id=descriptor.task_id,
                error=str(exc),
            )
            return False

        request = SpawnRequest(
            agent_pool=self.dispatch.agent_pool,
            label=target.label,
            model=target.model,
            instruction=build_instruction(descriptor.path),
            task_id=descriptor.task_id,
        )
        try:
            future = self.spawner.spawn(request)
        except RuntimeError as exc:
            # Executor refused the job (e.g. shutting down).
            self._rollback(descriptor, original, str(exc))
            return False

        future.add_done_callback(lambda done: self._on_spawn_done(descriptor, original, done))
        log_with_fields(
            self.logger,
            logging.INFO,
            "task_dispatched",
            task_id=descriptor.task_id,
            kind=descriptor.kind,
            label=target.label,
            model=target.model,
        )
        return True

    def _on_spawn_done(self, descriptor: TaskDescriptor, original: bytes, future: Future[SpawnResult]) -> None:
        if future.cancelled():
            self._rollback(descriptor, original, "spawn cancelled")
            return
        exc = future.exception()
        if exc is not None:
            self._rollback(descriptor, original, str(exc))
            return
        result = future.result()
        if not result.ok:
            self._rollback(descriptor, original, result.error or "spawn failed")

    def _rollback(self, descriptor: TaskDescriptor, original: bytes, error: str) -> None:
        if not descriptor.path.exists():
            log_with_fields(
                self.logger,
                logging.WARNING,
                "task_rollback_skipped_missing",
                task_id=descriptor.task_id,
                error=error,
            )
            return
        try:
            write_raw(descriptor.path, original)
        except OSError as exc:
            log_with_fields(
                self.logger,
                logging.ERROR,
                "task_rollback_failed",
                task_id=descriptor.task_id,
                error=str(exc),
                spawn_error=error,
            )
            return
        log_with_fields(self.logger, logging.WARNING, "task_rollback", task_id=descriptor.task_id, error=error)
