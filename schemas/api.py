"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from models.base import (
    QueryCategory,
    ExecutionFrequency,
    ExecutionStatus,
    AlertSeverity,
    AlertStatus,
    NotificationChannel,
)
from pipeline.thresholds import OPERATORS


# ============================================================================
# Health Check Schemas
# ============================================================================

class HealthCheckResponse(BaseModel):
    """Health check response model"""
    status: str = Field(..., description="Overall system status: healthy, degraded, unhealthy")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    database_connected: bool
    scheduler_running: bool = False
    running_queries: int = 0

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "database_connected": True,
                "scheduler_running": True,
                "running_queries": 0
            }
        }


# ============================================================================
# Quality Query Schemas
# ============================================================================

class ThresholdRule(BaseModel):
    """Threshold on one metric; operator defaults to >="""
    operator: str = ">="
    value: Any

    @validator("operator")
    def validate_operator(cls, v):
        if v not in OPERATORS:
            raise ValueError(f"operator must be one of: {', '.join(OPERATORS)}")
        return v


class QualityQueryCreate(BaseModel):
    """Request body for creating a quality query"""
    connection_id: int
    space_id: Optional[int] = None
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    category: QueryCategory
    query: str = Field(..., min_length=1, description="Single SQL statement")
    thresholds: Dict[str, ThresholdRule] = Field(default_factory=dict)
    expected_result: Optional[Dict[str, Any]] = None
    enabled: bool = True
    execution_frequency: ExecutionFrequency = ExecutionFrequency.MANUAL
    validate_query: bool = Field(True, alias="validate", description="Run the statement with the validation budget before saving")

    @validator("query")
    def validate_query_text(cls, v):
        if not v.strip():
            raise ValueError("query must not be blank")
        return v.strip()

    class Config:
        use_enum_values = True
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "connection_id": 3,
                "name": "Customer email completeness",
                "category": "data_completeness",
                "query": "SELECT email, phone FROM customers",
                "thresholds": {"overall_completeness": {"operator": ">=", "value": 90}},
                "execution_frequency": "daily"
            }
        }


class QualityQueryUpdate(BaseModel):
    """
    Request body for PUT /queries/{id}. Omitted or null fields stay unchanged.

    Changing connection_id re-checks access to the connection; with validate
    set, the (new) statement is executed once with the validation budget.
    """
    connection_id: Optional[int] = None
    space_id: Optional[int] = None
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[QueryCategory] = None
    query: Optional[str] = Field(None, min_length=1)
    thresholds: Optional[Dict[str, ThresholdRule]] = None
    expected_result: Optional[Dict[str, Any]] = None
    enabled: Optional[bool] = None
    execution_frequency: Optional[ExecutionFrequency] = None
    validate_query: bool = Field(False, alias="validate")

    @validator("query")
    def validate_query_text(cls, v):
        if v is None:
            return v
        if not v.strip():
            raise ValueError("query must not be blank")
        return v.strip()

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude_none=True, exclude={"validate_query"})

    class Config:
        use_enum_values = True
        populate_by_name = True


class QualityQueryResponse(BaseModel):
    """Response model for a quality query"""
    id: int
    user_id: int
    connection_id: int
    space_id: Optional[int] = None
    name: str
    description: Optional[str] = None
    category: str
    query: str
    thresholds: Dict[str, Any] = Field(default_factory=dict)
    expected_result: Optional[Dict[str, Any]] = None
    enabled: bool
    execution_frequency: str
    last_execution_time: Optional[datetime] = None
    next_execution_time: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ============================================================================
# Execution Schemas
# ============================================================================

class ExecutionResultResponse(BaseModel):
    """One execution of a quality query"""
    id: Optional[int] = None
    query_id: int = Field(..., alias="queryId")
    status: ExecutionStatus
    result: Optional[Dict[str, Any]] = None
    metrics: Dict[str, Any] = Field(default_factory=dict)
    execution_duration: Optional[int] = Field(None, alias="executionDuration")
    error_message: Optional[str] = Field(None, alias="errorMessage")
    execution_time: Optional[datetime] = Field(None, alias="executionTime")

    class Config:
        from_attributes = True
        populate_by_name = True
        use_enum_values = True


class AlertOutcomeResponse(BaseModel):
    rule_id: Optional[int] = Field(None, alias="ruleId")
    state: str
    notifications_sent: int = Field(0, alias="notificationsSent")
    notifications_failed: int = Field(0, alias="notificationsFailed")
    error: Optional[str] = None

    class Config:
        populate_by_name = True


class RunQueryResponse(BaseModel):
    """Response of POST /queries/{id}/run"""
    success: bool = True
    execution: ExecutionResultResponse
    alerts: List[AlertOutcomeResponse] = Field(default_factory=list)

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "success": True,
                "execution": {
                    "id": 118,
                    "queryId": 42,
                    "status": "warning",
                    "result": {"rows": [], "rowCount": 0, "fields": []},
                    "metrics": {"rowCount": 0, "overall_completeness": 75.0},
                    "executionDuration": 412,
                    "errorMessage": "overall_completeness value 75 fails threshold (>= 90)"
                },
                "alerts": []
            }
        }


# ============================================================================
# Alert Schemas
# ============================================================================

def check_condition(v: Dict[str, Any]) -> Dict[str, Any]:
    if not v.get("status") and not v.get("metric"):
        raise ValueError("condition needs a status or a metric")
    if v.get("status") and v["status"] not in [s.value for s in ExecutionStatus]:
        raise ValueError(f"condition status must be one of: {', '.join(s.value for s in ExecutionStatus)}")
    if v.get("metric"):
        if v.get("operator") and v["operator"] not in OPERATORS:
            raise ValueError(f"operator must be one of: {', '.join(OPERATORS)}")
        if "value" not in v:
            raise ValueError("metric conditions need a value")
    return v


class AlertRuleCreate(BaseModel):
    """Request body for creating an alert rule"""
    query_id: int
    space_id: Optional[int] = None
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    severity: AlertSeverity = AlertSeverity.MEDIUM
    condition: Dict[str, Any]
    notification_channels: List[NotificationChannel] = Field(default_factory=list)
    email_recipients: Optional[str] = None
    slack_webhook: Optional[str] = None
    custom_webhook: Optional[str] = None
    enabled: bool = True

    @validator("condition")
    def validate_condition(cls, v):
        return check_condition(v)

    class Config:
        use_enum_values = True


class AlertRuleUpdate(BaseModel):
    """Request body for PUT /alerts/{id}. Omitted or null fields stay unchanged."""
    query_id: Optional[int] = None
    space_id: Optional[int] = None
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    severity: Optional[AlertSeverity] = None
    condition: Optional[Dict[str, Any]] = None
    status: Optional[AlertStatus] = None
    notification_channels: Optional[List[NotificationChannel]] = None
    email_recipients: Optional[str] = None
    slack_webhook: Optional[str] = None
    custom_webhook: Optional[str] = None
    enabled: Optional[bool] = None

    @validator("condition")
    def validate_condition(cls, v):
        return v if v is None else check_condition(v)

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude_none=True)

    class Config:
        use_enum_values = True


class AlertRuleResponse(BaseModel):
    id: int
    user_id: int
    query_id: int
    space_id: Optional[int] = None
    execution_result_id: Optional[int] = None
    name: str
    description: Optional[str] = None
    severity: str
    condition: Dict[str, Any]
    status: str
    enabled: bool
    notification_channels: List[str] = Field(default_factory=list)
    last_triggered_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AlertRuleDetailResponse(AlertRuleResponse):
    """GET /alerts/{id}: the rule with its delivery targets and query name"""
    query_name: Optional[str] = None
    email_recipients: Optional[str] = None
    slack_webhook: Optional[str] = None
    custom_webhook: Optional[str] = None
    resolved_at: Optional[datetime] = None


class AlertUpdateResponse(BaseModel):
    success: bool = True
    message: str
    alert: AlertRuleResponse


class DeleteResponse(BaseModel):
    success: bool = True
    message: str


class AlertTriggerResponse(BaseModel):
    """One firing of an alert rule"""
    alert_id: int
    execution_id: Optional[int] = None
    triggered_at: datetime
    run_status: Optional[str] = None
    execution_time: Optional[datetime] = None
    channels: List[str] = Field(default_factory=list)
    notifications_sent: int = 0
    notifications_failed: int = 0

    class Config:
        from_attributes = True


class AlertToggleResponse(BaseModel):
    success: bool = True
    message: str
    enabled: bool


class AlertNotificationResponse(BaseModel):
    id: int
    alert_id: int
    channel: str
    sent_at: Optional[datetime] = None
    status: str
    content: Dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    class Config:
        from_attributes = True


# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response"""
    error: str
    detail: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        json_schema_extra = {
            "example": {
                "error": "Query not found",
                "detail": "The requested query does not exist",
                "timestamp": "2024-01-15T10:30:00Z"
            }
        }
