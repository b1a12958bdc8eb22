"""
Unit tests for notification dispatch
"""

import pytest
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock, patch
import httpx

from models.alert import AlertRule
from pipeline.notifier import HttpNotificationDispatcher, LoggingDispatcher, RuleSnapshot, format_slack_message

PAYLOAD = {
    "queryId": 42,
    "executionResultId": 118,
    "metrics": {"rowCount": 4},
    "status": "warning",
    "alertName": "Completeness dropped",
    "timestamp": "2024-01-15T10:30:00",
}


@pytest.fixture
def rule():
    return RuleSnapshot.from_rule(AlertRule(
        id=5,
        name="Completeness dropped",
        severity="high",
        slack_webhook="https://hooks.slack.example.com/T000/B000",
        custom_webhook="https://alerts.example.com/hook",
        notification_channels=["slack", "webhook"],
        condition={"status": "warning"},
    ))


@pytest.mark.asyncio
async def test_logging_dispatcher_always_delivers(rule, caplog):
    caplog.set_level("INFO")
    result = await LoggingDispatcher().dispatch("email", rule, PAYLOAD)

    assert result.delivered is True
    assert "Completeness dropped" in caplog.text


def test_slack_message_mentions_rule_and_status(rule):
    text = format_slack_message(rule, PAYLOAD)
    assert "Completeness dropped" in text
    assert "warning" in text
    assert "118" in text


class TestHttpNotificationDispatcher:

    @pytest.mark.asyncio
    async def test_slack_posts_text(self, rule):
        with patch("httpx.AsyncClient") as mock_client:
            post = AsyncMock(return_value=MagicMock(raise_for_status=MagicMock()))
            mock_client.return_value.__aenter__.return_value.post = post

            result = await HttpNotificationDispatcher(timeout=1).dispatch("slack", rule, PAYLOAD)

        assert result.delivered is True
        assert post.await_args.args[0] == rule.slack_webhook
        assert "text" in post.await_args.kwargs["json"]

    @pytest.mark.asyncio
    async def test_webhook_posts_payload(self, rule):
        with patch("httpx.AsyncClient") as mock_client:
            post = AsyncMock(return_value=MagicMock(raise_for_status=MagicMock()))
            mock_client.return_value.__aenter__.return_value.post = post

            result = await HttpNotificationDispatcher(timeout=1).dispatch("webhook", rule, PAYLOAD)

        assert result.delivered is True
        assert post.await_args.args[0] == rule.custom_webhook
        assert post.await_args.kwargs["json"] == PAYLOAD

    @pytest.mark.asyncio
    async def test_unreachable_webhook(self, rule):
        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(
                side_effect=httpx.ConnectError("Connection refused")
            )

            result = await HttpNotificationDispatcher(timeout=1).dispatch("webhook", rule, PAYLOAD)

        assert result.delivered is False
        assert "Connection refused" in result.error

    @pytest.mark.asyncio
    async def test_rejected_webhook(self, rule):
        request = httpx.Request("POST", rule.custom_webhook)
        response = httpx.Response(503, request=request)

        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(return_value=response)

            result = await HttpNotificationDispatcher(timeout=1).dispatch("webhook", rule, PAYLOAD)

        assert result.delivered is False
        assert result.error == "HTTP 503"

    @pytest.mark.asyncio
    async def test_missing_url(self, rule):
        rule = replace(rule, slack_webhook=None)

        result = await HttpNotificationDispatcher(timeout=1).dispatch("slack", rule, PAYLOAD)

        assert result.delivered is False
        assert result.error == "No slack webhook configured"

    @pytest.mark.asyncio
    async def test_email_is_logged(self, rule):
        with patch("httpx.AsyncClient") as mock_client:
            result = await HttpNotificationDispatcher(timeout=1).dispatch("email", rule, PAYLOAD)

        assert result.delivered is True
        mock_client.assert_not_called()


def test_snapshot_copies_rule_fields():
    rule = AlertRule(
        id=9,
        name="Duplicates found",
        severity="critical",
        condition={"metric": "duplicate_count", "operator": ">", "value": 0},
        notification_channels=["email"],
        email_recipients="qa@example.com",
    )

    snapshot = RuleSnapshot.from_rule(rule)
    rule.notification_channels.append("slack")

    assert snapshot.id == 9
    assert snapshot.severity == "critical"
    assert snapshot.condition["metric"] == "duplicate_count"
    assert snapshot.notification_channels == ["email"]
    assert snapshot.email_recipients == "qa@example.com"
    assert snapshot.slack_webhook is None
