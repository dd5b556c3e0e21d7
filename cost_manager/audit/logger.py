"""
Audit Logger

DESIGN DECISION: Every change to a cost item is logged.
This provides:
1. Complete traceability
2. Debugging capability when a storage call fails
3. A history of what the user did to their expenses

The audit logger:
- Is async so it can sit in the same call chains as storage calls
- Gracefully handles failures (never breaks the operation it describes)
- Supports correlation IDs to trace related events
"""

import logging
import sys
from typing import Optional
from uuid import UUID, uuid4

import structlog

from cost_manager.config import LoggingSettings, get_settings
from cost_manager.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity


# Plain stdlib logger for when the structured sink itself is broken
fallback_logger = logging.getLogger("cost_manager.audit.fallback")


def configure_logging(settings: Optional[LoggingSettings] = None) -> None:
    """
    Configure structlog on top of the standard library logger.

    Call once at startup. Renders JSON lines unless
    settings.json_output is False.
    """
    settings = settings or get_settings().logging

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.level),
    )
    logging.getLogger().setLevel(getattr(logging, settings.level))

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.json_output
        else structlog.dev.ConsoleRenderer()
    )

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
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class AuditLogger:
    """
    Central audit logging service.

    Writes every audit event to the structured log, at a level
    matching the event's severity.
    """

    def __init__(self, logger: Optional[structlog.stdlib.BoundLogger] = None):
        self._logger = logger or structlog.get_logger("cost_manager.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns True if the event was written.
        """
        log_dict = event.to_log_dict()

        try:
            if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
                self._logger.error("audit_event", **log_dict)
            elif event.severity == AuditSeverity.WARNING:
                self._logger.warning("audit_event", **log_dict)
            elif event.severity == AuditSeverity.DEBUG:
                self._logger.debug("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
        except Exception as e:
            # A broken log sink must not fail the storage call it describes
            fallback_logger.warning("Failed to write audit event %s: %s", event.event_id, e)
            return False

        return True

    async def log_cost_item_added(
        self,
        table_name: str,
        item_id: int,
        amount: str,
        category: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a new cost item."""
        event = AuditEventBuilder.cost_item_added(
            table_name=table_name,
            item_id=item_id,
            amount=amount,
            category=category,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_cost_item_updated(
        self,
        table_name: str,
        item_id: int,
        changed_fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a cost item update."""
        event = AuditEventBuilder.cost_item_updated(
            table_name=table_name,
            item_id=item_id,
            changed_fields=changed_fields,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_cost_item_deleted(
        self,
        table_name: str,
        item_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a cost item deletion."""
        event = AuditEventBuilder.cost_item_deleted(
            table_name=table_name,
            item_id=item_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_report_generated(
        self,
        month: int,
        year: int,
        item_count: int,
        total: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a monthly report."""
        event = AuditEventBuilder.report_generated(
            month=month,
            year=year,
            item_count=item_count,
            total=total,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_storage_error(
        self,
        operation: str,
        error_message: str,
        table_name: Optional[str] = None,
        item_id: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a failed storage operation."""
        event = AuditEventBuilder.storage_error(
            operation=operation,
            error_message=error_message,
            table_name=table_name,
            item_id=item_id,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a user action (e.g., editing an expense)
    and pass it through all subsequent operations.
    """
    return uuid4()
