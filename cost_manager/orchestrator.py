"""
Application Wiring for Cost Manager

This module ties the components together for a front end:
1. Configure structured logging from the logging settings
2. Open the configured database once (creating the cost table on first run)
3. Build the typed cost item store on that connection
4. Build the report generator and audit logger

DESIGN DECISION: The front end calls create_app_components() once at
startup and keeps the result. Until it returns, the store is not ready
and no operation may be issued.
"""

from dataclasses import dataclass
from typing import Optional

from cost_manager.audit import AuditLogger, configure_logging
from cost_manager.config import Settings, get_settings
from cost_manager.queries import ReportGenerator
from cost_manager.services.storage import (
    Connection,
    CostItemStore,
    TableDeclaration,
    open_database,
)


@dataclass
class AppComponents:
    """Everything a front end needs, sharing one connection."""
    connection: Connection
    store: CostItemStore
    reports: ReportGenerator
    audit_logger: AuditLogger

    async def close(self) -> None:
        await self.connection.close()


async def create_app_components(
    settings: Optional[Settings] = None,
    data_dir: Optional[str] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to use (defaults to get_settings())
        data_dir: Override the configured data directory

    Returns:
        AppComponents sharing one open connection

    Raises:
        ConnectionError: If the database cannot be opened
    """
    settings = settings or get_settings()
    configure_logging(settings.logging)
    storage = settings.storage

    connection = await open_database(
        storage.database_name,
        storage.database_version,
        [TableDeclaration(name=storage.cost_table_name)],
        data_dir=data_dir if data_dir is not None else storage.data_dir,
    )

    audit_logger = AuditLogger()
    store = CostItemStore(
        connection,
        table_name=storage.cost_table_name,
        audit_logger=audit_logger,
    )
    reports = ReportGenerator(store, audit_logger=audit_logger)

    return AppComponents(
        connection=connection,
        store=store,
        reports=reports,
        audit_logger=audit_logger,
    )
