"""
SLA Alert Services
==================

Periodic at-risk evaluation and notification.

The sweep walks every team, finds open tickets that have consumed most of
an SLA target without breaching it, and hands one notification per ticket
clock to the notifier. Alerts are written in short transactions around
the notifier call; failures are contained to the ticket clock or team.
"""

from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Optional

from sla_tracker.sla.application.services import (
    INotifier, MetricsService, UnitOfWorkFactory
)
from sla_tracker.sla.domain import (
    Team, Ticket, SLAAlert, SLACalculator,
    AtRiskNotification, DailyReportNotification,
)
from sla_tracker.config import SLAType
from sla_tracker.core import NotificationDeliveryFailed, ResourceNotFoundException
from sla_tracker.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)


@dataclass
class SweepResult:
    """Counters from one at-risk sweep."""
    teams_checked: int = 0
    teams_skipped: int = 0
    teams_failed: int = 0
    tickets_evaluated: int = 0
    alerts_created: int = 0
    notifications_sent: int = 0
    notifications_failed: int = 0
    alerts_failed: int = 0

    def merge(self, other: "SweepResult") -> None:
        for key, value in asdict(other).items():
            setattr(self, key, getattr(self, key) + value)

    def to_dict(self) -> dict:
        return asdict(self)


class AlertService:
    """
    Evaluates SLA risk for all teams and dispatches alerts.

    This service:
    1. Lists all teams
    2. Loads each team's active policy (teams without one are skipped)
    3. Checks open, unbreached tickets against the at-risk threshold
    4. Records an alert per ticket clock and notifies once per alert
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        notifier: INotifier,
        at_risk_threshold_percent: float = 80.0
    ):
        self._uow_factory = uow_factory
        self._notifier = notifier
        self._threshold = at_risk_threshold_percent

    async def check_all_tickets_for_risk(self, now: Optional[datetime] = None) -> SweepResult:
        """
        Run one sweep across all teams.

        Never raises for a single team's failure; those are logged and
        counted in `teams_failed`.
        """
        now = now or datetime.now(timezone.utc)
        result = SweepResult()

        logger.info("Running SLA risk check", extra={"now": now.isoformat()})

        with log_latency(logger, "sla_risk_check"):
            async with self._uow_factory() as uow:
                teams = await uow.teams.list_all()

            for team in teams:
                try:
                    result.merge(await self._check_team(team, now))
                except Exception as e:
                    result.teams_failed += 1
                    logger.error(
                        "Risk check failed for team",
                        extra={"team_id": team.id, "error": str(e)},
                        exc_info=True
                    )

        logger.info("SLA risk check complete", extra=result.to_dict())
        return result

    async def _check_team(self, team: Team, now: datetime) -> SweepResult:
        """Check one team's open tickets; each ticket clock commits on its own."""
        result = SweepResult()

        async with self._uow_factory() as uow:
            policy = None
            if team.sla_policy_id:
                policy = await uow.policies.get_by_id(team.sla_policy_id)
            if policy is None:
                result.teams_skipped += 1
                logger.debug("No SLA policy configured, skipping team", extra={"team_id": team.id})
                return result
            tickets = await uow.tickets.list_open(team.id, unbreached_only=True)

        result.teams_checked += 1
        for ticket in tickets:
            result.tickets_evaluated += 1
            for sla_type in SLACalculator.at_risk_clocks(ticket, now, self._threshold):
                try:
                    await self._alert_clock(team, ticket, sla_type, now, result)
                except Exception as e:
                    result.alerts_failed += 1
                    logger.error(
                        "At-risk alert failed",
                        extra={"ticket_id": ticket.id, "sla_type": sla_type, "error": str(e)},
                        exc_info=True
                    )

        return result

    async def _alert_clock(
        self,
        team: Team,
        ticket: Ticket,
        sla_type: SLAType,
        now: datetime,
        result: SweepResult
    ) -> None:
        """
        Raise (or retry) the alert for one ticket clock.

        The alert row is committed before the notifier is called and the
        sent flag in its own transaction right after delivery.
        """
        target = SLACalculator.target_for(ticket, sla_type)
        deadline = SLACalculator.calculate_deadline(ticket.created_at, target)

        created = False
        async with self._uow_factory() as uow:
            alert = await uow.alerts.get_for_ticket(ticket.id, sla_type)
            if alert is not None and not alert.is_notification_pending:
                return

            if alert is None:
                alert = await uow.alerts.create(SLAAlert(
                    id=None,
                    ticket_id=ticket.id,
                    ticket_number=ticket.ticket_number,
                    team_id=team.id,
                    sla_type=sla_type,
                    triggered_at=now,
                    deadline=deadline,
                    remaining_seconds=max(0.0, (deadline - now).total_seconds()),
                    percentage_elapsed=SLACalculator.percentage_elapsed(
                        ticket.created_at, now, target
                    ),
                ))
                created = True
        if created:
            result.alerts_created += 1

        notification = AtRiskNotification(
            ticket_id=ticket.id,
            ticket_number=ticket.ticket_number,
            title=ticket.title,
            team_id=team.id,
            team_name=team.name,
            recipient=team.alert_recipient,
            priority=ticket.priority,
            sla_type=sla_type,
            percentage_elapsed=SLACalculator.percentage_elapsed(ticket.created_at, now, target),
            minutes_remaining=SLACalculator.minutes_remaining(ticket.created_at, now, target),
            deadline=deadline,
        )

        try:
            sent = await self._notifier.send_at_risk_alert(notification)
        except NotificationDeliveryFailed as e:
            result.notifications_failed += 1
            logger.warning(
                "At-risk alert not delivered, will retry next run",
                extra={"ticket_id": ticket.id, "sla_type": sla_type, "error": str(e)}
            )
            return

        if sent:
            async with self._uow_factory() as uow:
                await uow.alerts.mark_sent(alert.id, now)
            result.notifications_sent += 1
            logger.info(
                "At-risk alert sent",
                extra={"ticket_number": ticket.ticket_number, "sla_type": sla_type}
            )

    async def send_daily_reports(self, now: Optional[datetime] = None) -> int:
        """Send the compliance summary to every team; returns reports delivered."""
        async with self._uow_factory() as uow:
            teams = await uow.teams.list_all()

        delivered = 0
        for team in teams:
            try:
                if await self.send_daily_report(team.id, now):
                    delivered += 1
            except Exception as e:
                logger.error(
                    "Daily report failed for team",
                    extra={"team_id": team.id, "error": str(e)}
                )
        return delivered

    async def send_daily_report(self, team_id: str, now: Optional[datetime] = None) -> bool:
        """Build the current-month summary for a team and send it."""
        now = now or datetime.now(timezone.utc)

        async with self._uow_factory() as uow:
            team = await uow.teams.get_by_id(team_id)
            if team is None:
                raise ResourceNotFoundException("Team", team_id)

            metrics = MetricsService(
                uow.tickets, uow.teams, uow.policies,
                at_risk_threshold_percent=self._threshold
            )
            summary = await metrics.get_summary(team_id, now)

        report = DailyReportNotification(
            team_id=team.id,
            team_name=team.name,
            recipient=team.alert_recipient,
            generated_at=now,
            summary=summary,
        )
        sent = await self._notifier.send_daily_report(report)
        if sent:
            logger.info("Daily report sent", extra={"team_id": team_id})
        return sent
