from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass

from .alerting import TelegramAlerter, run_health_check
from .app_logging import LOGGER_NAME, log_with_fields, setup_logger
from .config import AppConfig, ensure_local_paths, load_config
from .monitor import Monitor
from .publisher import FirestorePublisher
from .router import InboxRouter
from .spawner import WorkerSpawner
from .utils import ms_to_iso


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentwatch",
        description="Agent pool status monitor and inbox task dispatcher",
    )
    parser.add_argument("--config", required=True, help="Path to agentwatch YAML config")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run the status/dispatch polling loop")
    run_parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single tick, then exit",
    )
    subparsers.add_parser("status", help="Show workers and inbox tasks without dispatching")
    subparsers.add_parser("healthcheck", help="Probe the dashboard URL and alert if it is down")
    return parser


@dataclass(slots=True)
class Runtime:
    monitor: Monitor
    spawner: WorkerSpawner
    publisher: FirestorePublisher
    alerter: TelegramAlerter

    def close(self) -> None:
        self.spawner.close()
        self.publisher.close()
        self.alerter.close()


def _open_runtime(config: AppConfig) -> Runtime:
    ensure_local_paths(config)
    logger = setup_logger(config.paths.log)
    spawner = WorkerSpawner(config.dispatch)
    router = InboxRouter(
        inbox_dir=config.paths.inbox,
        routing=config.routing,
        dispatch=config.dispatch,
        spawner=spawner,
        logger=logger,
    )
    publisher = FirestorePublisher(config.publish)
    alerter = TelegramAlerter(config.alert, logger)
    monitor = Monitor(config=config, router=router, publisher=publisher, alerter=alerter, logger=logger)
    return Runtime(monitor=monitor, spawner=spawner, publisher=publisher, alerter=alerter)


def cmd_run(config: AppConfig, *, once: bool = False) -> int:
    runtime = _open_runtime(config)
    try:
        if once:
            runtime.monitor.tick()
            return 0
        runtime.monitor.run_forever()
    except KeyboardInterrupt:
        log_with_fields(logging.getLogger(LOGGER_NAME), logging.INFO, "shutdown", reason="keyboard_interrupt")
        return 0
    finally:
        runtime.close()
    return 0


def cmd_status(config: AppConfig) -> int:
    runtime = _open_runtime(config)
    try:
        snapshot = runtime.monitor.collect(dry_run=True)
    finally:
        runtime.close()

    print(f"Snapshot at {ms_to_iso(snapshot.taken_at)}")
    print("\nAgents:")
    if not snapshot.agents:
        print("  (no worker sessions)")
    for agent in snapshot.agents:
        print(
            "  "
            f"{agent.display_label}: status={agent.status.value} model={agent.model} "
            f"age={agent.age_ms // 1000}s tokens={agent.token_count}"
        )

    print("\nTasks:")
    if not snapshot.tasks:
        print("  (no tasks)")
    for task in snapshot.tasks:
        print(f"  {task.status:10} {task.task_id}  {task.title}")
    return 0


def cmd_healthcheck(config: AppConfig) -> int:
    ensure_local_paths(config)
    logger = setup_logger(config.paths.log)
    alerter = TelegramAlerter(config.alert, logger)
    try:
        report = run_health_check(config.alert, alerter, logger)
    finally:
        alerter.close()
    return 0 if report.healthy else 1


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = load_config(args.config)

    if args.command == "run":
        return cmd_run(config, once=bool(args.once))
    if args.command == "status":
        return cmd_status(config)
    if args.command == "healthcheck":
        return cmd_healthcheck(config)
    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
