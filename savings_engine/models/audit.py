"""
Audit Models for the Savings Engine

Every lifecycle transition and every plan override change is recorded.
This provides:
1. A trail of when a month was started, closed or reopened
2. Debugging information when a month's numbers look wrong
3. Visibility into degraded external lookups

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Execution lifecycle
    EXECUTION_STARTED = "execution_started"
    EXECUTION_START_UNDONE = "execution_start_undone"
    EXECUTION_COMPLETED = "execution_completed"
    EXECUTION_COMPLETION_UNDONE = "execution_completion_undone"
    LIFECYCLE_REJECTED = "lifecycle_rejected"

    # Planning
    PLANS_SYNCED = "plans_synced"
    FLEX_ADJUSTMENT_APPLIED = "flex_adjustment_applied"
    PLAN_OVERRIDE_CHANGED = "plan_override_changed"

    # System events
    EXTERNAL_FETCH_FAILED = "external_fetch_failed"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'execution_record', 'monthly_plan')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate events of one operation"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.execution_started(record_id, "2025-12", 3, correlation_id)
    """

    @staticmethod
    def execution_started(
        record_id: str,
        month_label: str,
        snapshot_count: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXECUTION_STARTED,
            entity_type="execution_record",
            entity_id=record_id,
            correlation_id=correlation_id,
            description=f"Execution started for {month_label}",
            details={
                "month_label": month_label,
                "snapshot_count": snapshot_count,
            },
            is_user_action=True,
        )

    @staticmethod
    def execution_start_undone(
        record_id: str,
        month_label: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXECUTION_START_UNDONE,
            entity_type="execution_record",
            entity_id=record_id,
            correlation_id=correlation_id,
            description=f"Execution for {month_label} reverted to draft",
            details={"month_label": month_label},
            is_user_action=True,
        )

    @staticmethod
    def execution_completed(
        record_id: str,
        month_label: str,
        total_required: float,
        total_actual: float,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXECUTION_COMPLETED,
            entity_type="execution_record",
            entity_id=record_id,
            correlation_id=correlation_id,
            description=f"Execution for {month_label} closed",
            details={
                "month_label": month_label,
                "total_required": total_required,
                "total_actual": total_actual,
            },
            is_user_action=True,
        )

    @staticmethod
    def execution_completion_undone(
        record_id: str,
        month_label: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXECUTION_COMPLETION_UNDONE,
            entity_type="execution_record",
            entity_id=record_id,
            correlation_id=correlation_id,
            description=f"Execution for {month_label} reopened",
            details={"month_label": month_label},
            is_user_action=True,
        )

    @staticmethod
    def lifecycle_rejected(
        operation: str,
        reason: str,
        message: str,
        correlation_id: UUID,
        entity_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LIFECYCLE_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="execution_record",
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{operation} rejected: {reason}",
            error_code=reason,
            error_message=message,
            details={"operation": operation},
            is_user_action=True,
        )

    @staticmethod
    def plans_synced(
        month_label: str,
        plan_count: int,
        created_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PLANS_SYNCED,
            entity_type="monthly_plan",
            description=f"Synced {plan_count} goal plans for {month_label}",
            details={
                "month_label": month_label,
                "plan_count": plan_count,
                "created_count": created_count,
            },
        )

    @staticmethod
    def flex_adjustment_applied(
        month_label: str,
        adjustment: float,
        adjusted_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FLEX_ADJUSTMENT_APPLIED,
            entity_type="monthly_plan",
            description=f"Flex {adjustment:.0%} applied to {month_label}",
            details={
                "month_label": month_label,
                "adjustment": adjustment,
                "adjusted_count": adjusted_count,
            },
            is_user_action=True,
        )

    @staticmethod
    def plan_override_changed(
        plan_id: str,
        goal_id: str,
        month_label: str,
        change: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PLAN_OVERRIDE_CHANGED,
            entity_type="monthly_goal_plan",
            entity_id=plan_id,
            description=f"Plan override changed: {change}",
            details={
                "goal_id": goal_id,
                "month_label": month_label,
                "change": change,
            },
            is_user_action=True,
        )

    @staticmethod
    def external_fetch_failed(
        service: str,
        error_message: str,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_FETCH_FAILED,
            severity=AuditSeverity.WARNING,
            description=f"External fetch failed: {service}",
            error_message=error_message,
            details={"service": service, **(details or {})},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
