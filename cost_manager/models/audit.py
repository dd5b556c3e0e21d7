"""
Audit Models for Cost Manager

Every change to stored cost items is logged for audit purposes.
This provides:
1. Traceability of every add/update/delete
2. Debugging information when a storage operation fails
3. Ability to reconstruct what happened to an item

DESIGN DECISION: Audit events are emitted, never edited.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Persistence
    COST_ITEM_ADDED = "cost_item_added"
    COST_ITEM_UPDATED = "cost_item_updated"
    COST_ITEM_DELETED = "cost_item_deleted"

    # Queries
    REPORT_GENERATED = "report_generated"

    # Failures
    STORAGE_ERROR = "storage_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every mutation creates one of these.
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

    # Context - what is this about?
    table_name: Optional[str] = Field(
        default=None,
        description="Table the event relates to"
    )
    entity_id: Optional[int] = Field(
        default=None,
        description="Identifier of the record the event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one user action)"
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

    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "table_name": self.table_name,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.cost_item_added("costItems", 1, "42.5", "FOOD")
        event = AuditEventBuilder.cost_item_deleted("costItems", 1)
    """

    @staticmethod
    def cost_item_added(
        table_name: str,
        item_id: int,
        amount: str,
        category: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COST_ITEM_ADDED,
            table_name=table_name,
            entity_id=item_id,
            correlation_id=correlation_id,
            description=f"Cost item {item_id} added",
            details={
                "amount": amount,
                "category": category,
            },
        )

    @staticmethod
    def cost_item_updated(
        table_name: str,
        item_id: int,
        changed_fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COST_ITEM_UPDATED,
            table_name=table_name,
            entity_id=item_id,
            correlation_id=correlation_id,
            description=f"Cost item {item_id} updated",
            details={"changed_fields": changed_fields},
        )

    @staticmethod
    def cost_item_deleted(
        table_name: str,
        item_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COST_ITEM_DELETED,
            table_name=table_name,
            entity_id=item_id,
            correlation_id=correlation_id,
            description=f"Cost item {item_id} deleted",
        )

    @staticmethod
    def report_generated(
        month: int,
        year: int,
        item_count: int,
        total: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REPORT_GENERATED,
            correlation_id=correlation_id,
            description=f"Report generated for {year:04d}-{month:02d}",
            details={
                "month": month,
                "year": year,
                "item_count": item_count,
                "total": total,
            },
        )

    @staticmethod
    def storage_error(
        operation: str,
        error_message: str,
        table_name: Optional[str] = None,
        item_id: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            table_name=table_name,
            entity_id=item_id,
            correlation_id=correlation_id,
            description=f"Storage operation failed: {operation}",
            details={"operation": operation},
            error_message=error_message,
        )
