"""Report package."""

from cost_manager.queries.reports import (
    MonthlyReport,
    ReportGenerator,
    category_totals,
    month_filter,
)

__all__ = ["MonthlyReport", "ReportGenerator", "category_totals", "month_filter"]
