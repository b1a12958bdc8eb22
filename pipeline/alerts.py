"""
Alert evaluation for warning and error runs.

Alerting is best-effort: every failure is logged and reported as an errored
AlertOutcome, never raised to the caller.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union
import enum
import logging

from core.exceptions import AlertingError
from models.alert import AlertNotification
from models.execution_result import ExecutionResult
from models.base import ExecutionStatus, NotificationStatus
from pipeline.notifier import LoggingDispatcher, NotificationDispatcher, RuleSnapshot
from pipeline.repository import QARepository
from pipeline.thresholds import compare

logger = logging.getLogger(__name__)

DEFAULT_METRIC_OPERATOR = ">"


# ============================================================================
# Conditions
# ============================================================================

@dataclass(frozen=True)
class StatusCondition:
    """Fires when the run's status equals status"""
    status: str

    def matches(self, status: str, metrics: Dict[str, Any]) -> bool:
        return self.status == status


@dataclass(frozen=True)
class MetricCondition:
    """Fires when metrics[metric] <operator> value holds"""
    metric: str
    value: Any
    operator: str = DEFAULT_METRIC_OPERATOR

    def matches(self, status: str, metrics: Dict[str, Any]) -> bool:
        if metrics.get(self.metric) is None:
            return False
        return compare(metrics[self.metric], self.operator, self.value)


Condition = Union[StatusCondition, MetricCondition]


def parse_condition(raw: Optional[Dict[str, Any]]) -> List[Condition]:
    """
    Turn a stored condition into its condition variants.

    A condition carrying both a status and a metric yields both variants;
    the rule fires when either matches.

    Raises:
        AlertingError: The condition has neither form
    """
    raw = raw or {}
    conditions: List[Condition] = []

    if raw.get("status"):
        conditions.append(StatusCondition(status=str(raw["status"])))

    if raw.get("metric"):
        conditions.append(MetricCondition(
            metric=raw["metric"],
            value=raw.get("value"),
            operator=raw.get("operator") or DEFAULT_METRIC_OPERATOR
        ))

    if not conditions:
        raise AlertingError("Alert condition has neither status nor metric", context={"condition": raw})

    return conditions


# ============================================================================
# Outcomes
# ============================================================================

class AlertOutcomeState(str, enum.Enum):
    FIRED = "fired"
    NOT_FIRED = "not_fired"
    ERRORED = "errored"


@dataclass
class AlertOutcome:
    rule_id: Optional[int]
    state: AlertOutcomeState
    notifications_sent: int = 0
    notifications_failed: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ruleId": self.rule_id,
            "state": self.state.value,
            "notificationsSent": self.notifications_sent,
            "notificationsFailed": self.notifications_failed,
            "error": self.error,
        }


# ============================================================================
# Trigger history
# ============================================================================

@dataclass
class AlertTrigger:
    """One firing of a rule and the notifications it produced"""
    alert_id: int
    execution_id: Optional[int]
    triggered_at: datetime
    run_status: Optional[str] = None
    execution_time: Optional[datetime] = None
    channels: List[str] = field(default_factory=list)
    notifications_sent: int = 0
    notifications_failed: int = 0


def build_trigger_history(
    notifications: List[AlertNotification],
    executions: List[ExecutionResult]
) -> List[AlertTrigger]:
    """
    Group notification rows into triggers, newest first.

    Rows written by one firing share sent_at and executionResultId.
    """
    by_id = {execution.id: execution for execution in executions}
    triggers: Dict[Any, AlertTrigger] = {}

    for notification in sorted(notifications, key=lambda n: (n.sent_at, n.id or 0)):
        content = notification.content or {}
        execution_id = content.get("executionResultId")
        key = (notification.sent_at, execution_id)

        trigger = triggers.get(key)
        if trigger is None:
            execution = by_id.get(execution_id)
            trigger = AlertTrigger(
                alert_id=notification.alert_id,
                execution_id=execution_id,
                triggered_at=notification.sent_at,
                run_status=content.get("status"),
                execution_time=execution.execution_time if execution else None
            )
            triggers[key] = trigger

        trigger.channels.append(notification.channel)
        if notification.status == NotificationStatus.SENT.value:
            trigger.notifications_sent += 1
        else:
            trigger.notifications_failed += 1

    return list(reversed(list(triggers.values())))


# ============================================================================
# Evaluator
# ============================================================================

class AlertEvaluator:
    """
    Evaluate the active alert rules of a query against a run's outcome and
    notify every channel of each rule that fires.
    """

    def __init__(self, repository: QARepository, dispatcher: Optional[NotificationDispatcher] = None):
        self.repository = repository
        self.dispatcher = dispatcher or LoggingDispatcher()

    async def evaluate(
        self,
        query_id: int,
        execution_result_id: int,
        metrics: Dict[str, Any],
        status: ExecutionStatus
    ) -> List[AlertOutcome]:
        """
        Returns:
            One AlertOutcome per active rule; a single errored outcome with
            rule_id None when the rules could not be loaded
        """
        if status == ExecutionStatus.SUCCESS:
            return []

        try:
            rules = [
                RuleSnapshot.from_rule(rule)
                for rule in await self.repository.list_active_alert_rules(query_id)
            ]
        except Exception as e:
            logger.error(f"Failed to load alert rules for query {query_id}: {str(e)}")
            await self._rollback()
            return [AlertOutcome(rule_id=None, state=AlertOutcomeState.ERRORED, error=str(e))]

        if not rules:
            return []

        outcomes = []
        for rule in rules:
            outcome = await self._evaluate_rule(rule, query_id, execution_result_id, metrics, status)
            outcomes.append(outcome)

        fired = sum(1 for o in outcomes if o.state == AlertOutcomeState.FIRED)
        logger.info(f"Evaluated {len(rules)} alert rules for query {query_id}: {fired} fired")
        return outcomes

    async def _evaluate_rule(
        self,
        rule: RuleSnapshot,
        query_id: int,
        execution_result_id: int,
        metrics: Dict[str, Any],
        status: ExecutionStatus
    ) -> AlertOutcome:
        # Set once the store is touched; parse and compare failures leave nothing to roll back
        writing = False

        try:
            conditions = parse_condition(rule.condition)
            if not any(c.matches(status.value, metrics) for c in conditions):
                return AlertOutcome(rule_id=rule.id, state=AlertOutcomeState.NOT_FIRED)

            now = datetime.utcnow()
            writing = True
            await self.repository.update_alert_rule(rule.id, execution_result_id, now)

            content = {
                "queryId": query_id,
                "executionResultId": execution_result_id,
                "metrics": metrics,
                "status": status.value,
                "alertName": rule.name,
                "timestamp": now.isoformat(),
            }

            sent = 0
            failed = 0
            for channel in rule.notification_channels:
                delivery = await self.dispatcher.dispatch(channel, rule, content)
                await self.repository.insert_alert_notification(AlertNotification(
                    alert_id=rule.id,
                    channel=channel,
                    sent_at=now,
                    status=(NotificationStatus.SENT if delivery.delivered else NotificationStatus.FAILED).value,
                    content=content,
                    error_message=delivery.error
                ))
                if delivery.delivered:
                    sent += 1
                else:
                    failed += 1

            await self.repository.commit()

            logger.info(
                f"Alert '{rule.name}' ({rule.id}) fired for execution {execution_result_id}: "
                f"{sent} sent, {failed} failed"
            )
            return AlertOutcome(
                rule_id=rule.id,
                state=AlertOutcomeState.FIRED,
                notifications_sent=sent,
                notifications_failed=failed
            )

        except Exception as e:
            logger.error(
                f"Alert rule {rule.id} failed for query {query_id}: {str(e)}",
                extra={"error_context": e.to_dict() if isinstance(e, AlertingError) else {"error": str(e)}}
            )
            if writing:
                await self._rollback()
            return AlertOutcome(rule_id=rule.id, state=AlertOutcomeState.ERRORED, error=str(e))

    async def _rollback(self) -> None:
        try:
            await self.repository.rollback()
        except Exception as e:
            logger.error(f"Rollback after alerting failure failed: {str(e)}")
