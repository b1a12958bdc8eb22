"""
Alert rule endpoints: create, list, detail, update, delete, toggle,
notification history and trigger history
"""

from fastapi import APIRouter, Depends, Query
from datetime import datetime
from typing import List, Optional
import logging

from api.dependencies import get_current_user_id, get_repository
from models.alert import AlertRule
from models.base import AlertStatus, NotificationChannel
from pipeline.alerts import build_trigger_history
from pipeline.repository import QARepository
from schemas.api import (
    AlertNotificationResponse,
    AlertRuleCreate,
    AlertRuleDetailResponse,
    AlertRuleResponse,
    AlertRuleUpdate,
    AlertToggleResponse,
    AlertTriggerResponse,
    AlertUpdateResponse,
    DeleteResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Alerts"])


@router.post("/alerts", response_model=AlertRuleResponse, status_code=201)
async def create_alert(
    payload: AlertRuleCreate,
    user_id: int = Depends(get_current_user_id),
    repository: QARepository = Depends(get_repository)
):
    # The alerted query must belong to the caller
    await repository.get_query(payload.query_id, user_id)

    rule = AlertRule(
        user_id=user_id,
        query_id=payload.query_id,
        space_id=payload.space_id,
        name=payload.name,
        description=payload.description,
        severity=payload.severity,
        condition=payload.condition,
        status=AlertStatus.ACTIVE.value,
        enabled=payload.enabled,
        notification_channels=list(payload.notification_channels),
        email_recipients=payload.email_recipients,
        slack_webhook=payload.slack_webhook,
        custom_webhook=payload.custom_webhook,
    )
    rule = await repository.create_alert_rule(rule)

    logger.info(f"Created alert rule {rule.id} for query {payload.query_id}")
    return AlertRuleResponse.model_validate(rule)


@router.get("/alerts", response_model=List[AlertRuleResponse])
async def list_alerts(
    query_id: Optional[int] = Query(None, description="Filter by quality query"),
    user_id: int = Depends(get_current_user_id),
    repository: QARepository = Depends(get_repository)
):
    rules = await repository.list_alert_rules(user_id, query_id=query_id)
    return [AlertRuleResponse.model_validate(r) for r in rules]


@router.get("/alerts/{alert_id}", response_model=AlertRuleDetailResponse)
async def get_alert(
    alert_id: int,
    user_id: int = Depends(get_current_user_id),
    repository: QARepository = Depends(get_repository)
):
    rule = await repository.get_alert_rule(alert_id, user_id)
    query = await repository.get_query(rule.query_id, user_id)

    detail = AlertRuleDetailResponse.model_validate(rule)
    detail.query_name = query.name
    return detail


@router.put("/alerts/{alert_id}", response_model=AlertUpdateResponse)
async def update_alert(
    alert_id: int,
    payload: AlertRuleUpdate,
    user_id: int = Depends(get_current_user_id),
    repository: QARepository = Depends(get_repository)
):
    """Update an alert rule. A new query_id must name one of the caller's queries."""
    rule = await repository.get_alert_rule(alert_id, user_id)
    changes = payload.changes()

    if "query_id" in changes:
        await repository.get_query(changes["query_id"], user_id)

    if changes.get("status") == AlertStatus.RESOLVED.value:
        changes["resolved_at"] = datetime.utcnow()
    elif "status" in changes:
        changes["resolved_at"] = None

    rule = await repository.apply_alert_rule_changes(rule, changes)

    logger.info(f"Updated alert rule {alert_id}: fields={sorted(changes)}")
    return AlertUpdateResponse(
        message="Alert updated successfully",
        alert=AlertRuleResponse.model_validate(rule)
    )


@router.delete("/alerts/{alert_id}", response_model=DeleteResponse)
async def delete_alert(
    alert_id: int,
    user_id: int = Depends(get_current_user_id),
    repository: QARepository = Depends(get_repository)
):
    await repository.get_alert_rule(alert_id, user_id)
    await repository.delete_alert_rule(alert_id)

    logger.info(f"Deleted alert rule {alert_id}")
    return DeleteResponse(message="Alert deleted successfully")


@router.post("/alerts/{alert_id}/toggle", response_model=AlertToggleResponse)
async def toggle_alert(
    alert_id: int,
    user_id: int = Depends(get_current_user_id),
    repository: QARepository = Depends(get_repository)
):
    rule = await repository.get_alert_rule(alert_id, user_id)
    enabled = not rule.enabled
    await repository.set_alert_enabled(alert_id, enabled)

    logger.info(f"Alert {alert_id} {'enabled' if enabled else 'disabled'}")
    return AlertToggleResponse(
        message=f"Alert {'enabled' if enabled else 'disabled'} successfully",
        enabled=enabled
    )


@router.get("/alerts/{alert_id}/notifications", response_model=List[AlertNotificationResponse])
async def list_alert_notifications(
    alert_id: int,
    limit: int = Query(50, ge=1, le=500),
    user_id: int = Depends(get_current_user_id),
    repository: QARepository = Depends(get_repository)
):
    await repository.get_alert_rule(alert_id, user_id)
    notifications = await repository.list_alert_notifications(alert_id, limit=limit)
    return [AlertNotificationResponse.model_validate(n) for n in notifications]


@router.get("/alerts/{alert_id}/history", response_model=List[AlertTriggerResponse])
async def get_alert_history(
    alert_id: int,
    limit: int = Query(100, ge=1, le=500),
    user_id: int = Depends(get_current_user_id),
    repository: QARepository = Depends(get_repository)
):
    """Firings of an alert rule, newest first, with the run that caused each"""
    await repository.get_alert_rule(alert_id, user_id)

    # At most one notification per channel per firing
    notifications = await repository.list_alert_notifications(
        alert_id, limit=limit * len(NotificationChannel)
    )
    execution_ids = sorted({
        n.content.get("executionResultId")
        for n in notifications
        if n.content and n.content.get("executionResultId") is not None
    })
    executions = await repository.get_execution_results(execution_ids)

    triggers = build_trigger_history(notifications, executions)[:limit]
    return [AlertTriggerResponse.model_validate(t) for t in triggers]
