"""
Audit Logger

DESIGN DECISION: Every lifecycle transition, every plan override and every
degraded external lookup is logged.
This provides:
1. Traceability of how a month moved through its lifecycle
2. Debugging capability when totals look wrong
3. A history the user can inspect

The audit logger:
- Is async so it can share the event loop with the engine
- Gracefully handles failures (a broken audit store never fails an operation)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from savings_engine.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from savings_engine.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. An audit store (for persistence and user visibility), when given
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("savings_engine.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_execution_started(
        self,
        record_id: str,
        month_label: str,
        snapshot_count: int,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.execution_started(
            record_id=record_id,
            month_label=month_label,
            snapshot_count=snapshot_count,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_execution_start_undone(
        self,
        record_id: str,
        month_label: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.execution_start_undone(
            record_id=record_id,
            month_label=month_label,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_execution_completed(
        self,
        record_id: str,
        month_label: str,
        total_required: float,
        total_actual: float,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.execution_completed(
            record_id=record_id,
            month_label=month_label,
            total_required=total_required,
            total_actual=total_actual,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_execution_completion_undone(
        self,
        record_id: str,
        month_label: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.execution_completion_undone(
            record_id=record_id,
            month_label=month_label,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_lifecycle_rejected(
        self,
        operation: str,
        reason: str,
        message: str,
        correlation_id: UUID,
        entity_id: Optional[str] = None,
    ) -> None:
        """Log a lifecycle operation refused by a precondition."""
        event = AuditEventBuilder.lifecycle_rejected(
            operation=operation,
            reason=reason,
            message=message,
            correlation_id=correlation_id,
            entity_id=entity_id,
        )
        await self.log(event)

    async def log_plans_synced(
        self,
        month_label: str,
        plan_count: int,
        created_count: int,
    ) -> None:
        event = AuditEventBuilder.plans_synced(
            month_label=month_label,
            plan_count=plan_count,
            created_count=created_count,
        )
        await self.log(event)

    async def log_flex_adjustment_applied(
        self,
        month_label: str,
        adjustment: float,
        adjusted_count: int,
    ) -> None:
        event = AuditEventBuilder.flex_adjustment_applied(
            month_label=month_label,
            adjustment=adjustment,
            adjusted_count=adjusted_count,
        )
        await self.log(event)

    async def log_plan_override_changed(
        self,
        plan_id: str,
        goal_id: str,
        month_label: str,
        change: str,
    ) -> None:
        event = AuditEventBuilder.plan_override_changed(
            plan_id=plan_id,
            goal_id=goal_id,
            month_label=month_label,
            change=change,
        )
        await self.log(event)

    async def log_external_fetch_failed(
        self,
        service: str,
        error_message: str,
        details: Optional[dict] = None,
    ) -> None:
        """Log an exchange-rate or balance lookup that produced no value."""
        event = AuditEventBuilder.external_fetch_failed(
            service=service,
            error_message=error_message,
            details=details,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a lifecycle operation and pass it through
    every event the operation logs.
    """
    return uuid4()
