from __future__ import annotations

import html
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from .app_logging import log_with_fields
from .config import AlertConfig
from .utils import utc_now_iso

TELEGRAM_API_URL = "https://api.telegram.org"
ALERT_HEADER = "\U0001f6a8 Agentwatch Alert"


class AlertError(RuntimeError):
    pass


class TelegramAlerter:
    def __init__(
        self,
        config: AlertConfig,
        logger: logging.Logger,
        client: httpx.Client | None = None,
    ) -> None:
        self.config = config
        self.logger = logger
        self._client = client or httpx.Client(timeout=httpx.Timeout(10.0))

    def _post(self, message: str) -> None:
        url = f"{TELEGRAM_API_URL}/bot{self.config.telegram_bot_token}/sendMessage"
        payload = {
            "chat_id": self.config.telegram_chat_id,
            "text": f"{ALERT_HEADER}\n\n{message}",
            "parse_mode": "HTML",
        }
        try:
            response = self._client.post(url, json=payload)
        except httpx.HTTPError as exc:
            raise AlertError(f"telegram request failed: {exc}") from exc
        if response.status_code != 200:
            raise AlertError(f"telegram HTTP {response.status_code}")

    def send(self, message: str) -> bool:
        """Deliver an alert; returns False when Telegram is not configured or delivery failed."""
        if not self.config.telegram_enabled:
            log_with_fields(self.logger, logging.WARNING, "alert_not_configured", alert=message)
            return False
        try:
            self._post(message)
        except AlertError as exc:
            log_with_fields(self.logger, logging.ERROR, "alert_failed", error=str(exc))
            return False
        log_with_fields(self.logger, logging.INFO, "alert_sent")
        return True

    def close(self) -> None:
        self._client.close()


@dataclass(slots=True)
class HealthResult:
    success: bool
    status_code: int | None
    message: str


@dataclass(slots=True)
class HealthReport:
    healthy: bool
    attempts: int
    error: str | None = None


def check_health(client: httpx.Client, url: str, timeout_seconds: float) -> HealthResult:
    try:
        response = client.get(url, timeout=timeout_seconds)
    except httpx.TimeoutException:
        return HealthResult(success=False, status_code=None, message="Request timeout")
    except httpx.HTTPError as exc:
        return HealthResult(success=False, status_code=None, message=str(exc))
    return HealthResult(
        success=response.status_code == 200,
        status_code=response.status_code,
        message=f"HTTP {response.status_code}",
    )


def run_health_check(
    config: AlertConfig,
    alerter: TelegramAlerter,
    logger: logging.Logger,
    client: httpx.Client | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> HealthReport:
    """Probe the dashboard with retries and alert when every attempt fails."""
    owns_client = client is None
    http = client or httpx.Client()
    started_at = utc_now_iso()
    last: HealthResult | None = None
    try:
        for attempt in range(1, config.health_retries + 1):
            last = check_health(http, config.dashboard_url, config.health_timeout_seconds)
            if last.success:
                log_with_fields(logger, logging.INFO, "health_ok", url=config.dashboard_url, attempts=attempt)
                return HealthReport(healthy=True, attempts=attempt)
            log_with_fields(
                logger,
                logging.WARNING,
                "health_attempt_failed",
                url=config.dashboard_url,
                attempt=attempt,
                error=last.message,
            )
            if attempt < config.health_retries:
                sleep(config.health_retry_delay_seconds)
    finally:
        if owns_client:
            http.close()

    error = last.message if last else "no attempts"
    alerter.send(
        "\n".join(
            [
                f"<b>Time:</b> {started_at}",
                f"<b>URL:</b> {html.escape(config.dashboard_url)}",
                f"<b>Status:</b> {html.escape(error)}",
                f"<b>Retries:</b> {config.health_retries}",
                "",
                "Please check the dashboard service.",
            ]
        )
    )
    log_with_fields(logger, logging.ERROR, "health_down", url=config.dashboard_url, attempts=config.health_retries)
    return HealthReport(healthy=False, attempts=config.health_retries, error=error)
