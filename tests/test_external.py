from datetime import timedelta

import httpx
import pytest
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from sla_tracker.core import ConfigurationException, NotificationDeliveryFailed
from sla_tracker.sla.domain import (
    AtRiskNotification, DailyReportNotification, MetricsCalculator,
)
from sla_tracker.sla.infrastructure.external import (
    AlertScheduler, CircuitBreaker, CircuitState, SLAConfigManager, SlackClient,
)

from conftest import NOW

WEBHOOK = "https://hooks.slack.test/services/T000/B000/XXX"


def _notification():
    return AtRiskNotification(
        ticket_id="t1",
        ticket_number="TKT-1",
        title="Checkout is broken",
        team_id="team-1",
        team_name="Payments",
        recipient="ada@example.com",
        priority="P1",
        sla_type="resolution",
        percentage_elapsed=85,
        minutes_remaining=18,
        deadline=NOW + timedelta(minutes=18),
    )


def _client(handler, **kwargs):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SlackClient(
        webhook_url=WEBHOOK, channel="#sla", retry_base_delay=0, http_client=http_client, **kwargs
    )


class TestSlackClient:
    async def test_posts_block_kit_message(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, text="ok")

        client = _client(handler)
        assert await client.send_at_risk_alert(_notification()) is True

        assert len(requests) == 1
        assert str(requests[0].url) == WEBHOOK
        body = client.build_at_risk_message(_notification())
        assert body["channel"] == "#sla"
        assert "TKT-1" in body["text"]
        assert body["blocks"][0]["type"] == "header"

    async def test_skipped_without_webhook(self):
        client = SlackClient(webhook_url="")
        assert await client.send_at_risk_alert(_notification()) is False

    async def test_raises_after_retries(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        client = _client(handler, max_retries=3)
        with pytest.raises(NotificationDeliveryFailed):
            await client.send_at_risk_alert(_notification())
        assert len(calls) == 3

    async def test_recovers_on_retry(self):
        responses = iter([httpx.Response(503), httpx.Response(200)])
        client = _client(lambda request: next(responses))

        assert await client.send_at_risk_alert(_notification()) is True

    async def test_daily_report_message(self):
        summary = MetricsCalculator.summarize([], at_risk_count=0)
        report = DailyReportNotification(
            team_id="team-1", team_name="Payments", recipient="ada@example.com",
            generated_at=NOW, summary=summary,
        )
        client = _client(lambda request: httpx.Response(200))

        message = client.build_daily_report_message(report)

        assert "100.0% compliance" in message["text"]
        assert await client.send_daily_report(report) is True


class TestCircuitBreaker:
    def test_opens_after_threshold(self):
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60)
        breaker.record_failure()
        assert breaker.allow_request()
        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        assert not breaker.allow_request()

    def test_half_open_after_timeout(self):
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        breaker.record_failure()
        assert breaker.state == CircuitState.HALF_OPEN
        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED


class TestSLAConfigManager:
    def test_missing_file_uses_defaults(self, tmp_path):
        manager = SLAConfigManager()
        config = manager.load(tmp_path / "absent.yaml")
        assert config.default_policy.p1_response_time == 1
        assert config.ticket_limit_for("free") == 100

    def test_loads_yaml(self, tmp_path):
        path = tmp_path / "sla_config.yaml"
        path.write_text(
            "default_policy:\n  p1_response_time: 0.5\n"
            "plan_ticket_limits:\n  free: 10\n"
        )
        manager = SLAConfigManager(path)
        manager.load()

        config = manager.get_config()
        assert config.default_policy.p1_response_time == 0.5
        assert config.default_policy.p2_resolution_time == 8
        assert config.ticket_limit_for("free") == 10
        assert config.ticket_limit_for("unknown") == 100

    def test_invalid_initial_file(self, tmp_path):
        path = tmp_path / "sla_config.yaml"
        path.write_text("default_policy:\n  p1_response_time: 0.1\n")
        with pytest.raises(ConfigurationException):
            SLAConfigManager().load(path)

    def test_bad_reload_keeps_previous_config(self, tmp_path):
        path = tmp_path / "sla_config.yaml"
        path.write_text("default_ticket_limit: 50\n")
        manager = SLAConfigManager()
        manager.load(path)

        path.write_text("default_ticket_limit: -5\n")
        assert manager.reload() is False
        assert manager.get_config().default_ticket_limit == 50

        path.write_text("default_ticket_limit: 75\n")
        assert manager.reload() is True
        assert manager.get_config().default_ticket_limit == 75


class StubAlertService:
    def __init__(self, error=None):
        self.error = error
        self.sweeps = 0
        self.reports = 0

    async def check_all_tickets_for_risk(self):
        self.sweeps += 1
        if self.error:
            raise self.error

    async def send_daily_reports(self):
        self.reports += 1
        if self.error:
            raise self.error


class TestAlertScheduler:
    async def test_start_and_stop(self):
        scheduler = AlertScheduler(StubAlertService(), interval_minutes=5)
        assert scheduler.state == "idle"

        await scheduler.start()
        try:
            assert scheduler.state == "running"
            job = scheduler.get_job(AlertScheduler.RISK_CHECK_JOB_ID)
            assert isinstance(job.trigger, IntervalTrigger)
            assert job.trigger.interval == timedelta(minutes=5)
            assert job.max_instances == 1
            assert job.coalesce is True
            assert scheduler.get_job(AlertScheduler.DAILY_REPORT_JOB_ID) is None

            await scheduler.start()
            assert scheduler.get_job(AlertScheduler.RISK_CHECK_JOB_ID) is not None
            assert scheduler.is_running
        finally:
            await scheduler.stop()

        assert scheduler.state == "idle"
        assert scheduler.get_job(AlertScheduler.RISK_CHECK_JOB_ID) is None
        await scheduler.stop()
        assert scheduler.state == "idle"

    async def test_daily_report_job(self):
        scheduler = AlertScheduler(
            StubAlertService(), interval_minutes=10, daily_report_enabled=True, daily_report_hour=7
        )
        await scheduler.start()
        try:
            job = scheduler.get_job(AlertScheduler.DAILY_REPORT_JOB_ID)
            assert isinstance(job.trigger, CronTrigger)
            fields = {f.name: str(f) for f in job.trigger.fields}
            assert (fields["hour"], fields["minute"]) == ("7", "0")
            assert job.max_instances == 1
        finally:
            await scheduler.stop()

    async def test_run_errors_are_contained(self):
        service = StubAlertService(error=RuntimeError("database gone"))
        scheduler = AlertScheduler(service)

        await scheduler.run_risk_check()
        await scheduler.run_daily_report()

        assert (service.sweeps, service.reports) == (1, 1)
