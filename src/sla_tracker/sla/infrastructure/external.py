"""
SLA External Service Integrations
==================================

External services for SLA tracking:
- YAML config file watcher (default policy template, ticket limits)
- Slack webhook notifications
- APScheduler for the periodic at-risk sweep and daily reports
"""

import asyncio
import threading
import time
from pathlib import Path
from typing import Optional, Dict, Any

import yaml
import httpx
from pydantic import ValidationError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler

from sla_tracker.shared.infrastructure.logging import get_logger
from sla_tracker.config import settings, SLAType
from sla_tracker.core import ConfigurationException, NotificationDeliveryFailed
from sla_tracker.sla.application.services import ISLAConfigProvider, INotifier
from sla_tracker.sla.domain import SLAConfig, AtRiskNotification, DailyReportNotification

logger = get_logger(__name__)


class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for SLA config file changes."""

    def __init__(self, config_manager: "SLAConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info("Config file changed", extra={"path": str(event.src_path)})
            self.config_manager.reload()


class SLAConfigManager(ISLAConfigProvider):
    """
    Thread-safe SLA configuration provider with hot-reload support.

    The file holds the policy template copied into every newly registered
    team and the ticket allowance per subscription plan. Existing policies
    are never touched by a reload.
    """

    def __init__(self, path: Optional[Path] = None):
        self._config: Optional[SLAConfig] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = path
        self._observer = None

    def load(self, path: Optional[Path] = None) -> SLAConfig:
        """
        Initial configuration load.

        Raises:
            ConfigurationException: If the file exists but is invalid
        """
        if path is not None:
            self._path = path
        if self._path is None:
            raise ConfigurationException("No SLA config path given")

        try:
            config = self._load_from_file(self._path)
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            raise ConfigurationException(
                f"Invalid SLA config file: {self._path}",
                {"error": str(e)}
            )

        with self._lock:
            self._config = config
        return config

    def _load_from_file(self, path: Path) -> SLAConfig:
        if not path.exists():
            logger.warning("SLA config file not found, using defaults", extra={"path": str(path)})
            return SLAConfig()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return SLAConfig(**data)

    def reload(self) -> bool:
        """Reload from file; the previous config is kept if the new one is invalid."""
        if self._path is None:
            return False

        try:
            new_config = self._load_from_file(self._path)
        except (yaml.YAMLError, ValidationError, TypeError, OSError) as e:
            logger.error("Failed to reload SLA config", extra={"error": str(e)})
            return False

        with self._lock:
            self._config = new_config
        logger.info("SLA configuration reloaded successfully")
        return True

    def start_watching(self) -> None:
        """
        Start watching the configuration file for changes.

        Skipped when the file does not exist or the platform has no
        file-system notifications (some containers).
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(
                "Config file doesn't exist, skipping file watch",
                extra={"path": str(self._path)}
            )
            return

        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.parent), recursive=False)
            self._observer.start()
            logger.info("Started watching config file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static config", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Safe to call even if not watching."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    def get_config(self) -> SLAConfig:
        with self._lock:
            if self._config is None:
                raise RuntimeError("SLA configuration not loaded")
            return self._config

    @property
    def config(self) -> SLAConfig:
        return self.get_config()


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 60.0):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._failure_count >= self.failure_threshold or self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class SlackClient(INotifier):
    """
    Slack webhook notifier with circuit breaker and retry logic.

    - Returns False when no webhook is configured (delivery skipped)
    - Retries with exponential backoff
    - Raises NotificationDeliveryFailed once retries are exhausted or the
      circuit is open, so callers can keep the alert pending
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        channel: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._webhook_url = webhook_url if webhook_url is not None else settings.slack_webhook_url
        self._channel = channel or settings.slack_channel
        self._timeout = timeout_seconds or settings.slack_timeout_seconds
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._circuit_breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        self._http_client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    def build_at_risk_message(self, data: AtRiskNotification) -> Dict[str, Any]:
        """Build Slack Block Kit message for an at-risk ticket."""
        clock = "Response" if data.sla_type == SLAType.RESPONSE else "Resolution"

        blocks = [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": f":warning: SLA At Risk: {data.ticket_number}",
                    "emoji": True
                }
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Ticket:*\n{data.ticket_number}"},
                    {"type": "mrkdwn", "text": f"*Priority:*\n{data.priority}"},
                    {"type": "mrkdwn", "text": f"*Team:*\n{data.team_name}"},
                    {"type": "mrkdwn", "text": f"*SLA:*\n{clock}"},
                    {"type": "mrkdwn", "text": f"*Elapsed:*\n{data.percentage_elapsed}%"},
                    {"type": "mrkdwn", "text": f"*Time left:*\n{data.minutes_remaining} min"}
                ]
            },
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": f"{data.title} | Deadline: {data.deadline.isoformat()} | Notify: {data.recipient}"
                    }
                ]
            }
        ]

        return {
            "channel": self._channel,
            "text": f"SLA at risk: {data.ticket_number} ({data.percentage_elapsed}% of {clock.lower()} target)",
            "blocks": blocks
        }

    def build_daily_report_message(self, report: DailyReportNotification) -> Dict[str, Any]:
        """Build Slack Block Kit message for a daily compliance report."""
        summary = report.summary
        mttr = summary.mttr_by_priority

        blocks = [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": f":bar_chart: Daily SLA Report: {report.team_name}",
                    "emoji": True
                }
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Compliance:*\n{summary.compliance_percentage}%"},
                    {"type": "mrkdwn", "text": f"*Tickets:*\n{summary.total_tickets}"},
                    {"type": "mrkdwn", "text": f"*Open:*\n{summary.open_tickets}"},
                    {"type": "mrkdwn", "text": f"*Breached:*\n{summary.breached_tickets}"},
                    {"type": "mrkdwn", "text": f"*At risk:*\n{summary.at_risk_count}"},
                    {"type": "mrkdwn", "text": f"*MTTR:*\n{summary.mttr} min"}
                ]
            },
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": f"MTTR P1 {mttr.P1} | P2 {mttr.P2} | P3 {mttr.P3} min | Notify: {report.recipient}"
                    }
                ]
            }
        ]

        return {
            "channel": self._channel,
            "text": f"Daily SLA report for {report.team_name}: {summary.compliance_percentage}% compliance",
            "blocks": blocks
        }

    async def send_at_risk_alert(self, notification: AtRiskNotification) -> bool:
        return await self._post(
            self.build_at_risk_message(notification),
            {"ticket_id": notification.ticket_id, "sla_type": notification.sla_type}
        )

    async def send_daily_report(self, report: DailyReportNotification) -> bool:
        return await self._post(
            self.build_daily_report_message(report),
            {"team_id": report.team_id}
        )

    async def _post(self, message: Dict[str, Any], context: Dict[str, Any]) -> bool:
        if not self._webhook_url:
            logger.debug("Slack webhook URL not configured, skipping notification", extra=context)
            return False

        if not self._circuit_breaker.allow_request():
            raise NotificationDeliveryFailed("Circuit breaker open", context)

        last_error = None
        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=message)

                if response.status_code == 200:
                    self._circuit_breaker.record_success()
                    logger.info("Slack notification sent", extra=context)
                    return True

                last_error = f"HTTP {response.status_code}"
                logger.warning(
                    "Slack webhook returned non-200",
                    extra={**context, "status_code": response.status_code, "attempt": attempt + 1}
                )
            except httpx.HTTPError as e:
                last_error = str(e)
                logger.error(
                    "Slack notification failed",
                    extra={**context, "error": str(e), "attempt": attempt + 1}
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._retry_base_delay * 2 ** attempt)

        self._circuit_breaker.record_failure()
        raise NotificationDeliveryFailed(
            f"Slack delivery failed after {self._max_retries} attempts",
            {**context, "error": last_error}
        )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class SchedulerState:
    IDLE = "idle"
    RUNNING = "running"


class AlertScheduler:
    """
    APScheduler wrapper running the at-risk sweep and, optionally, the
    daily report.

    At most one sweep runs at a time; a tick that fires while the previous
    sweep is still going is skipped.
    """

    RISK_CHECK_JOB_ID = "sla_risk_check"
    DAILY_REPORT_JOB_ID = "sla_daily_report"

    def __init__(
        self,
        alert_service,
        interval_minutes: int = 5,
        daily_report_enabled: bool = False,
        daily_report_hour: int = 8
    ):
        self._alert_service = alert_service
        self.interval_minutes = interval_minutes
        self.daily_report_enabled = daily_report_enabled
        self.daily_report_hour = daily_report_hour
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._state = SchedulerState.IDLE

    async def run_risk_check(self) -> None:
        """Run one sweep now; errors are logged, never raised."""
        try:
            await self._alert_service.check_all_tickets_for_risk()
        except Exception as e:
            logger.error("SLA risk check run failed", extra={"error": str(e)}, exc_info=True)

    async def run_daily_report(self) -> None:
        try:
            await self._alert_service.send_daily_reports()
        except Exception as e:
            logger.error("Daily report run failed", extra={"error": str(e)}, exc_info=True)

    async def start(self) -> None:
        if self._state == SchedulerState.RUNNING:
            logger.warning("Alert scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.run_risk_check,
            "interval",
            minutes=self.interval_minutes,
            id=self.RISK_CHECK_JOB_ID,
            name="SLA At-Risk Check",
            misfire_grace_time=60,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )

        if self.daily_report_enabled:
            self._scheduler.add_job(
                self.run_daily_report,
                "cron",
                hour=self.daily_report_hour,
                minute=0,
                id=self.DAILY_REPORT_JOB_ID,
                name="SLA Daily Report",
                max_instances=1,
                replace_existing=True
            )

        self._scheduler.start()
        self._state = SchedulerState.RUNNING

        logger.info(
            "Alert scheduler started",
            extra={
                "interval_minutes": self.interval_minutes,
                "daily_report_enabled": self.daily_report_enabled
            }
        )

    async def stop(self) -> None:
        if self._state != SchedulerState.RUNNING:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self._state = SchedulerState.IDLE
        logger.info("Alert scheduler stopped")

    def get_job(self, job_id: str):
        return self._scheduler.get_job(job_id) if self._scheduler else None

    @property
    def state(self) -> str:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == SchedulerState.RUNNING
