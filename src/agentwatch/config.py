from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .models import RoutingTarget

DEFAULT_COMMAND_TEMPLATE = (
    "openclaw sessions spawn --agent {agent_pool} --label {label} --model {model} --message {instruction}"
)
DEFAULT_SESSION_TITLES = {
    "coding_team": "Coding Team task",
    "dev_team": "Dev Team task",
    "handyman": "Handyman task",
}


@dataclass(slots=True)
class PathsConfig:
    sessions: Path
    inbox: Path
    log: Path


@dataclass(slots=True)
class PollConfig:
    interval_seconds: int = 10


@dataclass(slots=True)
class PrimaryConfig:
    session_id: str | None = None
    key: str | None = "agent:main:main"
    label: str = "main"


@dataclass(slots=True)
class RegistryConfig:
    activity_window_seconds: int = 300
    label_map: dict[str, str] = field(default_factory=dict)
    primary: PrimaryConfig = field(default_factory=PrimaryConfig)

    @property
    def activity_window_ms(self) -> int:
        return self.activity_window_seconds * 1000


@dataclass(slots=True)
class RoutingConfig:
    rules: dict[str, RoutingTarget] = field(default_factory=dict)
    default: RoutingTarget = field(default_factory=lambda: RoutingTarget(label="general", model="default"))

    def resolve(self, kind: str) -> RoutingTarget:
        return self.rules.get(kind.strip().lower(), self.default)


@dataclass(slots=True)
class DispatchConfig:
    agent_pool: str = "main"
    command_template: str = DEFAULT_COMMAND_TEMPLATE
    max_workers: int = 4
    recheck_busy_after_dispatch: bool = True
    task_suffixes: tuple[str, ...] = (".md", ".txt")


@dataclass(slots=True)
class QuotaConfig:
    command: str = "openclaw models"
    configured_models: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ScheduledTaskConfig:
    task_id: str
    title: str


@dataclass(slots=True)
class SessionTasksConfig:
    done_after_seconds: int = 120
    hide_done_after_seconds: int = 3600
    scheduled: list[ScheduledTaskConfig] = field(default_factory=list)
    title_map: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_SESSION_TITLES))


@dataclass(slots=True)
class PublishConfig:
    project_id: str
    api_key: str
    document: str = "status/main"
    version: str = "3.8"
    message: str = "Dashboard 3.8 Active"
    timeout_seconds: float = 10.0


@dataclass(slots=True)
class AlertConfig:
    telegram_bot_token: str | None = None
    telegram_chat_id: str | None = None
    failure_threshold: int = 3
    dashboard_url: str = "http://localhost:3000"
    health_retries: int = 3
    health_retry_delay_seconds: float = 5.0
    health_timeout_seconds: float = 10.0

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)


@dataclass(slots=True)
class AppConfig:
    paths: PathsConfig
    poll: PollConfig
    registry: RegistryConfig
    routing: RoutingConfig
    dispatch: DispatchConfig
    quota: QuotaConfig
    session_tasks: SessionTasksConfig
    publish: PublishConfig
    alert: AlertConfig


def _require(mapping: dict, key: str, section: str) -> object:
    if key not in mapping:
        raise ValueError(f"Missing `{section}.{key}` in config")
    return mapping[key]


def _mapping(raw: dict, key: str) -> dict:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        raise ValueError(f"`{key}` must be a mapping")
    return value


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _from_env(mapping: dict, key: str, env_name: str) -> str | None:
    return _optional_str(mapping.get(key)) or _optional_str(os.environ.get(env_name))


def _load_routing(routing_raw: dict) -> RoutingConfig:
    rules_raw = routing_raw.get("rules") or []
    if not isinstance(rules_raw, list):
        raise ValueError("`routing.rules` must be a list")

    rules: dict[str, RoutingTarget] = {}
    for idx, item in enumerate(rules_raw):
        section = f"routing.rules[{idx}]"
        if not isinstance(item, dict):
            raise ValueError(f"`{section}` must be a mapping")
        kind = str(_require(item, "kind", section)).strip().lower()
        if kind in rules:
            raise ValueError(f"Duplicate routing kind: {kind}")
        rules[kind] = RoutingTarget(
            label=str(_require(item, "label", section)),
            model=str(_require(item, "model", section)),
        )

    default_raw = routing_raw.get("default")
    if default_raw is None:
        if rules:
            raise ValueError("Missing `routing.default` in config")
        return RoutingConfig(rules=rules)
    if not isinstance(default_raw, dict):
        raise ValueError("`routing.default` must be a mapping")
    default = RoutingTarget(
        label=str(_require(default_raw, "label", "routing.default")),
        model=str(_require(default_raw, "model", "routing.default")),
    )
    return RoutingConfig(rules=rules, default=default)


def load_config(path: str | Path) -> AppConfig:
    config_path = Path(path).expanduser().resolve()
    raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError("Config root must be a mapping")

    paths_raw = _require(raw, "paths", "root")
    if not isinstance(paths_raw, dict):
        raise ValueError("`paths` must be a mapping")
    publish_raw = _require(raw, "publish", "root")
    if not isinstance(publish_raw, dict):
        raise ValueError("`publish` must be a mapping")

    poll_raw = _mapping(raw, "poll")
    registry_raw = _mapping(raw, "registry")
    routing_raw = _mapping(raw, "routing")
    dispatch_raw = _mapping(raw, "dispatch")
    quota_raw = _mapping(raw, "quota")
    session_tasks_raw = _mapping(raw, "session_tasks")
    alert_raw = _mapping(raw, "alert")

    def to_path(key: str) -> Path:
        value = _require(paths_raw, key, "paths")
        output = Path(str(value)).expanduser()
        if not output.is_absolute():
            output = config_path.parent / output
        return output

    paths = PathsConfig(sessions=to_path("sessions"), inbox=to_path("inbox"), log=to_path("log"))

    poll = PollConfig(interval_seconds=int(poll_raw.get("interval_seconds", 10)))
    if poll.interval_seconds < 1:
        raise ValueError("`poll.interval_seconds` must be >= 1")

    label_map_raw = registry_raw.get("label_map") or {}
    primary_raw = registry_raw.get("primary") or {}
    if not isinstance(label_map_raw, dict):
        raise ValueError("`registry.label_map` must be a mapping")
    if not isinstance(primary_raw, dict):
        raise ValueError("`registry.primary` must be a mapping")
    registry = RegistryConfig(
        activity_window_seconds=int(registry_raw.get("activity_window_seconds", 300)),
        label_map={str(key): str(value) for key, value in label_map_raw.items()},
        primary=PrimaryConfig(
            session_id=_optional_str(primary_raw.get("session_id")),
            key=_optional_str(primary_raw.get("key", "agent:main:main")),
            label=str(primary_raw.get("label", "main")),
        ),
    )
    if registry.activity_window_seconds < 1:
        raise ValueError("`registry.activity_window_seconds` must be >= 1")

    routing = _load_routing(routing_raw)

    suffixes_raw = dispatch_raw.get("task_suffixes", [".md", ".txt"])
    if not isinstance(suffixes_raw, list) or not suffixes_raw:
        raise ValueError("`dispatch.task_suffixes` must be a non-empty list")
    recheck_busy = dispatch_raw.get("recheck_busy_after_dispatch", True)
    if not isinstance(recheck_busy, bool):
        raise ValueError("`dispatch.recheck_busy_after_dispatch` must be a boolean")
    dispatch = DispatchConfig(
        agent_pool=str(dispatch_raw.get("agent_pool", "main")),
        command_template=str(dispatch_raw.get("command_template", DEFAULT_COMMAND_TEMPLATE)),
        max_workers=int(dispatch_raw.get("max_workers", 4)),
        recheck_busy_after_dispatch=recheck_busy,
        task_suffixes=tuple(str(item).lower() for item in suffixes_raw),
    )
    if dispatch.max_workers < 1:
        raise ValueError("`dispatch.max_workers` must be >= 1")
    if "{instruction}" not in dispatch.command_template:
        raise ValueError("`dispatch.command_template` must reference {instruction}")

    configured_models = quota_raw.get("configured_models") or []
    if not isinstance(configured_models, list):
        raise ValueError("`quota.configured_models` must be a list")
    quota = QuotaConfig(
        command=str(quota_raw.get("command", "openclaw models")),
        configured_models=[str(item) for item in configured_models],
    )

    scheduled_raw = session_tasks_raw.get("scheduled") or []
    if not isinstance(scheduled_raw, list):
        raise ValueError("`session_tasks.scheduled` must be a list")
    scheduled: list[ScheduledTaskConfig] = []
    for idx, item in enumerate(scheduled_raw):
        section = f"session_tasks.scheduled[{idx}]"
        if not isinstance(item, dict):
            raise ValueError(f"`{section}` must be a mapping")
        scheduled.append(
            ScheduledTaskConfig(
                task_id=str(_require(item, "id", section)),
                title=str(_require(item, "title", section)),
            )
        )
    title_map_raw = session_tasks_raw.get("title_map")
    if title_map_raw is None:
        title_map_raw = DEFAULT_SESSION_TITLES
    if not isinstance(title_map_raw, dict):
        raise ValueError("`session_tasks.title_map` must be a mapping")
    session_tasks = SessionTasksConfig(
        done_after_seconds=int(session_tasks_raw.get("done_after_seconds", 120)),
        hide_done_after_seconds=int(session_tasks_raw.get("hide_done_after_seconds", 3600)),
        scheduled=scheduled,
        title_map={str(key): str(value) for key, value in title_map_raw.items()},
    )

    project_id = _from_env(publish_raw, "project_id", "FIREBASE_PROJECT_ID")
    api_key = _from_env(publish_raw, "api_key", "FIREBASE_API_KEY")
    if not project_id:
        raise ValueError("Missing `publish.project_id` in config (or FIREBASE_PROJECT_ID)")
    if not api_key:
        raise ValueError("Missing `publish.api_key` in config (or FIREBASE_API_KEY)")
    version = str(publish_raw.get("version", "3.8"))
    publish = PublishConfig(
        project_id=project_id,
        api_key=api_key,
        document=str(publish_raw.get("document", "status/main")).strip("/"),
        version=version,
        message=str(publish_raw.get("message", f"Dashboard {version} Active")),
        timeout_seconds=float(publish_raw.get("timeout_seconds", 10.0)),
    )

    alert = AlertConfig(
        telegram_bot_token=_from_env(alert_raw, "telegram_bot_token", "TELEGRAM_BOT_TOKEN"),
        telegram_chat_id=_from_env(alert_raw, "telegram_chat_id", "TELEGRAM_CHAT_ID"),
        failure_threshold=int(alert_raw.get("failure_threshold", 3)),
        dashboard_url=str(
            alert_raw.get("dashboard_url") or os.environ.get("DASHBOARD_URL") or "http://localhost:3000"
        ),
        health_retries=int(alert_raw.get("health_retries", 3)),
        health_retry_delay_seconds=float(alert_raw.get("health_retry_delay_seconds", 5.0)),
        health_timeout_seconds=float(alert_raw.get("health_timeout_seconds", 10.0)),
    )
    if alert.failure_threshold < 1:
        raise ValueError("`alert.failure_threshold` must be >= 1")
    if alert.health_retries < 1:
        raise ValueError("`alert.health_retries` must be >= 1")

    return AppConfig(
        paths=paths,
        poll=poll,
        registry=registry,
        routing=routing,
        dispatch=dispatch,
        quota=quota,
        session_tasks=session_tasks,
        publish=publish,
        alert=alert,
    )


def ensure_local_paths(config: AppConfig) -> None:
    config.paths.inbox.mkdir(parents=True, exist_ok=True)
    config.paths.log.parent.mkdir(parents=True, exist_ok=True)
