"""
Monitoring API endpoints.

Error statistics, rollback counters and recent alerts per operation.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from matchbank.api.dependencies import get_audit_sink, require_caller
from matchbank.models.enums import OperationType
from matchbank.services.audit import DatabaseAuditSink

AuditStore = Annotated[DatabaseAuditSink, Depends(get_audit_sink)]

router = APIRouter(
    prefix="/monitoring",
    tags=["monitoring"],
    dependencies=[Depends(require_caller)],
)


class ErrorStatsResponse(BaseModel):
    """Error statistics for one operation."""

    operation: OperationType
    hours_back: int
    total_errors: int = 0
    errors_by_kind: dict[str, int] = Field(default_factory=dict)
    critical_errors: int = 0
    rollback_count: int = 0


class AlertResponse(BaseModel):
    severity: str
    operation: str
    message: str
    timestamp: int


@router.get("/errors/{operation}", response_model=ErrorStatsResponse)
async def error_stats(
    operation: OperationType,
    audit: AuditStore,
    hours_back: Annotated[int, Query(ge=1, le=24 * 30)] = 24,
) -> ErrorStatsResponse:
    """Errors recorded for an operation over the last `hours_back` hours."""
    stats = await audit.error_stats(operation, hours_back=hours_back)
    return ErrorStatsResponse(
        operation=operation,
        hours_back=hours_back,
        total_errors=stats.total_errors,
        errors_by_kind=stats.errors_by_kind,
        critical_errors=stats.critical_errors,
        rollback_count=await audit.rollback_count(operation),
    )


@router.get("/alerts/{operation}", response_model=list[AlertResponse])
async def recent_alerts(
    operation: OperationType,
    audit: AuditStore,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> list[AlertResponse]:
    """Most recent alerts raised for an operation."""
    return [
        AlertResponse(
            severity=alert.severity,
            operation=alert.operation,
            message=alert.message,
            timestamp=alert.timestamp,
        )
        for alert in await audit.alerts(operation, limit=limit)
    ]
