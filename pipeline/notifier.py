"""
Notification dispatch for fired alert rules.

Delivery over the real transports is delegated to a NotificationDispatcher;
the alert evaluator records one notification row per channel with the
dispatcher's delivery outcome.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

import httpx

from core.config import settings
from models.alert import AlertRule
from models.base import NotificationChannel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
    delivered: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class RuleSnapshot:
    """
    Plain copy of the AlertRule fields used while alerting.

    A rollback expires loaded ORM objects, so evaluation and delivery read
    these values instead of the mapped rule.
    """
    id: int
    name: str
    severity: Optional[str] = None
    condition: Optional[Dict[str, Any]] = None
    notification_channels: List[str] = field(default_factory=list)
    slack_webhook: Optional[str] = None
    custom_webhook: Optional[str] = None
    email_recipients: Optional[str] = None

    @classmethod
    def from_rule(cls, rule: AlertRule) -> "RuleSnapshot":
        return cls(
            id=rule.id,
            name=rule.name,
            severity=rule.severity,
            condition=rule.condition,
            notification_channels=list(rule.notification_channels or []),
            slack_webhook=rule.slack_webhook,
            custom_webhook=rule.custom_webhook,
            email_recipients=rule.email_recipients
        )


class NotificationDispatcher(ABC):
    """Delivers one alert payload over one channel"""

    @abstractmethod
    async def dispatch(self, channel: str, rule: RuleSnapshot, payload: Dict[str, Any]) -> DeliveryResult:
        pass


class LoggingDispatcher(NotificationDispatcher):
    """Records the intent to notify in the log; every dispatch counts as delivered."""

    async def dispatch(self, channel: str, rule: RuleSnapshot, payload: Dict[str, Any]) -> DeliveryResult:
        logger.info(
            f"Alert '{rule.name}' ({rule.id}) -> {channel}: "
            f"query={payload.get('queryId')} status={payload.get('status')}"
        )
        return DeliveryResult(delivered=True)


def format_slack_message(rule: RuleSnapshot, payload: Dict[str, Any]) -> str:
    return (
        f":rotating_light: *{rule.name}* ({rule.severity})\n"
        f"Query {payload.get('queryId')} finished with status *{payload.get('status')}* "
        f"(execution {payload.get('executionResultId')}) at {payload.get('timestamp')}"
    )


class HttpNotificationDispatcher(NotificationDispatcher):
    """
    Deliver slack and webhook channels over HTTP.

    - slack: POST {"text": ...} to the rule's slack_webhook
    - webhook: POST the payload as JSON to the rule's custom_webhook
    - email: handed to the mail relay outside this service; logged here
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout or settings.NOTIFICATION_TIMEOUT_SECONDS
        self.fallback = LoggingDispatcher()

    async def dispatch(self, channel: str, rule: RuleSnapshot, payload: Dict[str, Any]) -> DeliveryResult:
        if channel == NotificationChannel.SLACK.value:
            url = rule.slack_webhook
            body = {"text": format_slack_message(rule, payload)}
        elif channel == NotificationChannel.WEBHOOK.value:
            url = rule.custom_webhook
            body = payload
        else:
            return await self.fallback.dispatch(channel, rule, payload)

        if not url:
            return DeliveryResult(delivered=False, error=f"No {channel} webhook configured")

        headers = {"User-Agent": settings.NOTIFICATION_USER_AGENT or "beakdash-qa"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=body, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(f"Alert {rule.id} {channel} delivery rejected: HTTP {e.response.status_code}")
            return DeliveryResult(delivered=False, error=f"HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.warning(f"Alert {rule.id} {channel} delivery failed: {str(e)}")
            return DeliveryResult(delivered=False, error=str(e) or type(e).__name__)

        logger.info(f"Alert {rule.id} delivered to {channel}")
        return DeliveryResult(delivered=True)
