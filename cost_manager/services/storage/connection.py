"""
Connection Manager

Opens one named, versioned database and creates the declared tables
when the requested version is newer than the stored one.

DESIGN DECISION: There is no module-level database handle. open_database()
returns a Connection and callers pass it to every operation, so two
databases (or a test database next to the real one) never collide.
"""

from typing import Optional, Sequence

import structlog
from pydantic import BaseModel, ConfigDict, Field

from cost_manager.config import get_settings
from cost_manager.services.storage.engine import Database, UpgradeTransaction
from cost_manager.services.storage.interface import ConnectionError, NotInitializedError


logger = structlog.get_logger(__name__)


class TableDeclaration(BaseModel):
    """A table the caller needs, with its key configuration."""
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    name: str = Field(
        ...,
        min_length=1,
        description="Table (object store) name"
    )
    primary_key_field: str = Field(
        default="id",
        min_length=1,
        description="Record field holding the key"
    )
    auto_increment: bool = Field(
        default=True,
        description="Let the store generate integer keys"
    )


class Connection:
    """
    A live handle to an opened database.

    Created by open_database(); owns the engine Database exclusively.
    """

    def __init__(self, database: Database, tables: Sequence[TableDeclaration]):
        self._database = database
        self._tables = tuple(tables)

    @property
    def name(self) -> str:
        return self._database.name

    @property
    def version(self) -> int:
        return self._database.version

    @property
    def tables(self) -> tuple[TableDeclaration, ...]:
        """Declarations passed to open_database()."""
        return self._tables

    @property
    def table_names(self) -> frozenset[str]:
        """Every table present in the database."""
        return self._database.object_store_names

    @property
    def is_open(self) -> bool:
        return not self._database.closed

    @property
    def database(self) -> Database:
        """The engine handle. Raises NotInitializedError once closed."""
        if self._database.closed:
            raise NotInitializedError(
                f"Connection to '{self.name}' is closed. Call open_database() first."
            )
        return self._database

    async def close(self) -> None:
        await self._database.close()

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"<Connection {self.name!r} v{self.version} {state}>"


def _validate_declarations(
    tables: Sequence[TableDeclaration],
) -> tuple[TableDeclaration, ...]:
    declarations = tuple(
        table if isinstance(table, TableDeclaration) else TableDeclaration.model_validate(table)
        for table in tables
    )
    names = [table.name for table in declarations]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise ValueError(f"Duplicate table declarations: {duplicates}")
    return declarations


async def open_database(
    name: str,
    version: int,
    tables: Sequence[TableDeclaration],
    *,
    data_dir: Optional[str] = None,
) -> Connection:
    """
    Open (and if needed upgrade) a database.

    Args:
        name: Database name; maps to one file in the data directory
        version: Requested schema version, >= 1
        tables: Tables to create during an upgrade if missing
        data_dir: Override the configured data directory (or ':memory:')

    Returns:
        An open Connection

    Raises:
        ValueError: If the arguments are malformed
        ConnectionError: If the engine cannot open or upgrade the database
    """
    if not isinstance(name, str) or not name.strip():
        raise ValueError("Database name must be a non-empty string")
    if isinstance(version, bool) or not isinstance(version, int) or version < 1:
        raise ValueError(f"Database version must be an integer >= 1, got {version!r}")
    declarations = _validate_declarations(tables)

    storage = get_settings().storage
    if data_dir is not None:
        storage = storage.model_copy(update={"data_dir": data_dir})
    location = storage.database_path(name)

    async def create_missing_tables(upgrade: UpgradeTransaction) -> None:
        for table in declarations:
            if table.name in upgrade.object_store_names:
                continue
            await upgrade.create_object_store(
                table.name,
                key_path=table.primary_key_field,
                auto_increment=table.auto_increment,
            )
            logger.info(
                "table_created",
                database=name,
                table=table.name,
                version=upgrade.new_version,
            )

    try:
        database = await Database.open(
            name,
            version,
            location,
            upgrade=create_missing_tables,
            timeout=storage.busy_timeout,
        )
    except Exception as e:
        logger.error("database_open_failed", database=name, version=version, error=str(e))
        raise ConnectionError(f"Failed to open database '{name}': {e}") from e

    return Connection(database, declarations)
