from __future__ import annotations

import html
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from .alerting import TelegramAlerter
from .app_logging import log_with_fields
from .config import AppConfig
from .models import StatusSnapshot, TaskView
from .publisher import FirestorePublisher, PublishError
from .quota import QuotaError, fetch_quota, parse_quota
from .registry import build_worker_snapshots, load_session_records
from .router import InboxRouter
from .session_tasks import collect_session_tasks
from .utils import now_ms


@dataclass(slots=True)
class MonitorState:
    ticks: int = 0
    consecutive_publish_failures: int = 0
    last_published_at: int | None = None


def merge_task_lists(inbox_tasks: list[TaskView], other_tasks: list[TaskView]) -> list[TaskView]:
    """Inbox entries first, then the rest in their own order. No de-duplication."""
    return [*inbox_tasks, *other_tasks]


class Monitor:
    def __init__(
        self,
        config: AppConfig,
        router: InboxRouter,
        publisher: FirestorePublisher,
        alerter: TelegramAlerter,
        logger: logging.Logger,
        quota_fetcher: Callable[[str], str] = fetch_quota,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.config = config
        self.router = router
        self.publisher = publisher
        self.alerter = alerter
        self.logger = logger
        self.quota_fetcher = quota_fetcher
        self.clock = clock
        self.state = MonitorState()

    def run_forever(self) -> None:
        log_with_fields(
            self.logger,
            logging.INFO,
            "monitor_started",
            project=self.config.publish.project_id,
            interval_seconds=self.config.poll.interval_seconds,
            version=self.config.publish.version,
        )
        while True:
            self.tick()
            time.sleep(self.config.poll.interval_seconds)

    def read_models(self) -> dict[str, int]:
        try:
            output = self.quota_fetcher(self.config.quota.command)
        except QuotaError as exc:
            log_with_fields(self.logger, logging.WARNING, "quota_unavailable", error=str(exc))
            return parse_quota("", self.config.quota.configured_models)
        models = parse_quota(output, self.config.quota.configured_models)
        log_with_fields(self.logger, logging.INFO, "quota_parsed", models=models)
        return models

    def collect(self, *, dry_run: bool = False) -> StatusSnapshot:
        """Gather one snapshot; with dry_run the inbox is read but nothing is dispatched."""
        models = {} if dry_run else self.read_models()
        now = self.clock()
        records = load_session_records(self.config.paths.sessions)
        agents = build_worker_snapshots(records, self.config.registry, now)
        inbox_tasks = self.router.route(agents, dry_run=dry_run)
        session_tasks = collect_session_tasks(records, self.config.registry, self.config.session_tasks, now)
        return StatusSnapshot(
            agents=agents,
            tasks=merge_task_lists(inbox_tasks, session_tasks),
            models=models,
            taken_at=now,
            version=self.config.publish.version,
            message=self.config.publish.message,
        )

    def tick(self) -> StatusSnapshot:
        self.state.ticks += 1
        snapshot = self.collect()
        self.publish(snapshot)
        return snapshot

    def publish(self, snapshot: StatusSnapshot) -> bool:
        try:
            self.publisher.publish(snapshot)
        except PublishError as exc:
            self.state.consecutive_publish_failures += 1
            failures = self.state.consecutive_publish_failures
            log_with_fields(self.logger, logging.ERROR, "publish_failed", error=str(exc), consecutive=failures)
            if failures == self.config.alert.failure_threshold:
                self.alerter.send(
                    f"Status publish failed {failures} times in a row.\n<b>Last error:</b> {html.escape(str(exc))}"
                )
            return False

        self.state.consecutive_publish_failures = 0
        self.state.last_published_at = snapshot.taken_at
        log_with_fields(
            self.logger,
            logging.INFO,
            "heartbeat_sent",
            agents=len(snapshot.agents),
            tasks=len(snapshot.tasks),
            version=snapshot.version,
        )
        return True
