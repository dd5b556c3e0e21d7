"""
Monthly Report Engine

DESIGN DECISION: Reports are computed from stored data only.
The report for a month is a scan of the cost table with a month/year
predicate, followed by per-category totals, the same numbers the
report table and the pie chart show.

There is no index on date, so every report is a full scan.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Iterable, Mapping, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from cost_manager.audit import AuditLogger
from cost_manager.models.cost_item import CostItem
from cost_manager.services.storage import CostItemStorageInterface


def _parse_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def _check_period(month: int, year: int) -> None:
    if not 1 <= month <= 12:
        raise ValueError(f"Month must be between 1 and 12, got {month}")
    if year < 1:
        raise ValueError(f"Year must be positive, got {year}")


def month_filter(month: int, year: int) -> Callable[[Any], bool]:
    """
    Build a predicate selecting one calendar month.

    Works on raw records (mappings) and on CostItem objects alike.
    Records whose `date` is missing or not an ISO date never match.
    """
    _check_period(month, year)

    def predicate(record: Any) -> bool:
        if isinstance(record, Mapping):
            value = record.get("date")
        else:
            value = getattr(record, "date", None)
        parsed = _parse_date(value)
        return parsed is not None and parsed.month == month and parsed.year == year

    return predicate


def category_totals(items: Iterable[CostItem]) -> dict[str, Decimal]:
    """Sum amounts per category, in order of first appearance."""
    totals: dict[str, Decimal] = {}
    for item in items:
        key = item.category.value
        totals[key] = totals.get(key, Decimal("0")) + item.amount
    return totals


class MonthlyReport(BaseModel):
    """Costs of one calendar month."""

    month: int = Field(ge=1, le=12)
    year: int = Field(ge=1)
    items: list[CostItem] = Field(default_factory=list)
    category_totals: dict[str, Decimal] = Field(default_factory=dict)
    total: Decimal = Decimal("0")

    @property
    def item_count(self) -> int:
        return len(self.items)

    @property
    def data_found(self) -> bool:
        return bool(self.items)

    @property
    def title(self) -> str:
        return date(self.year, self.month, 1).strftime("%B %Y")


class ReportGenerator:
    """
    Builds monthly reports from cost item storage.

    GUARANTEES:
    - Only reports stored data
    - An empty month is an empty report, not an error
    """

    def __init__(
        self,
        storage: CostItemStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger

    async def generate(
        self,
        month: int,
        year: int,
        correlation_id: Optional[UUID] = None,
    ) -> MonthlyReport:
        """Report every cost item dated in `month`/`year`."""
        items = await self._storage.find_items(month_filter(month, year))
        totals = category_totals(items)
        report = MonthlyReport(
            month=month,
            year=year,
            items=items,
            category_totals=totals,
            total=sum(totals.values(), Decimal("0")),
        )

        if self._audit_logger:
            await self._audit_logger.log_report_generated(
                month=month,
                year=year,
                item_count=report.item_count,
                total=str(report.total),
                correlation_id=correlation_id,
            )
        return report
