"""
Record Operations

add / get / get_all / update / delete against a single table.
Each call is its own transaction; nothing is cached between calls.

Records are plain dicts. The only field the store cares about is the
table's key field (normally "id"), which it assigns on add and never
changes afterwards.
"""

from typing import Any, Mapping, Optional

import structlog

from cost_manager.services.storage.connection import Connection
from cost_manager.services.storage.engine import TransactionMode
from cost_manager.services.storage.interface import NotFoundError, OperationError
from cost_manager.services.storage.transaction import TransactionScope, with_transaction


logger = structlog.get_logger(__name__)

Record = dict[str, Any]


async def add(
    connection: Optional[Connection],
    table_name: str,
    record: Mapping[str, Any],
) -> int:
    """
    Insert a record and return the identifier the store assigned.

    Raises:
        NotInitializedError: If the connection is missing or closed
        OperationError: If the record already carries an identifier on an
            auto-increment table, or the insert fails
    """
    async def body(scope: TransactionScope) -> int:
        store = scope[table_name]
        if store.auto_increment and store.key_path in record:
            raise OperationError(
                f"Record for '{table_name}' must not set '{store.key_path}'; "
                "the store assigns it"
            )
        return await store.add(record)

    identifier = await with_transaction(
        connection, [table_name], TransactionMode.READ_WRITE, body
    )
    logger.debug("record_added", table=table_name, id=identifier)
    return identifier


async def get(
    connection: Optional[Connection],
    table_name: str,
    identifier: int,
) -> Optional[Record]:
    """Fetch one record, or None if the identifier is unknown."""
    async def body(scope: TransactionScope) -> Optional[Record]:
        return await scope[table_name].get(identifier)

    return await with_transaction(
        connection, [table_name], TransactionMode.READ_ONLY, body
    )


async def get_all(
    connection: Optional[Connection],
    table_name: str,
) -> list[Record]:
    """Every record in the table, in key order. Empty table -> []."""
    async def body(scope: TransactionScope) -> list[Record]:
        return await scope[table_name].get_all()

    return await with_transaction(
        connection, [table_name], TransactionMode.READ_ONLY, body
    )


async def update(
    connection: Optional[Connection],
    table_name: str,
    identifier: int,
    partial: Mapping[str, Any],
) -> Record:
    """
    Shallow-merge `partial` into an existing record.

    The read and the write share one read-write transaction.
    Fields missing from `partial` keep their value; the identifier
    is never changed, even if `partial` names one.

    Raises:
        NotFoundError: If no record has this identifier
        OperationError: If the read or write fails
    """
    async def body(scope: TransactionScope) -> Record:
        store = scope[table_name]
        existing = await store.get(identifier)
        if existing is None:
            raise NotFoundError(f"Record {identifier} not found in '{table_name}'")

        merged = {**existing, **partial}
        merged[store.key_path] = identifier
        await store.put(merged)
        return merged

    merged = await with_transaction(
        connection, [table_name], TransactionMode.READ_WRITE, body
    )
    logger.debug("record_updated", table=table_name, id=identifier, fields=sorted(partial))
    return merged


async def delete(
    connection: Optional[Connection],
    table_name: str,
    identifier: int,
) -> None:
    """Remove a record. Deleting an unknown identifier is not an error."""
    async def body(scope: TransactionScope) -> None:
        await scope[table_name].delete(identifier)

    await with_transaction(
        connection, [table_name], TransactionMode.READ_WRITE, body
    )
    logger.debug("record_deleted", table=table_name, id=identifier)
