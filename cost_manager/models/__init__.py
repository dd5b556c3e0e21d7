"""
Data Models Package

This package contains the Pydantic models used in the Cost Manager system.
"""

from cost_manager.models.cost_item import (
    ID_FIELD,
    CostCategory,
    CostItem,
    CostItemPatch,
)
from cost_manager.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Cost item models
    "ID_FIELD",
    "CostCategory",
    "CostItem",
    "CostItemPatch",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
