"""
Transaction Gateway

Every record operation and scan runs inside exactly one short-lived
transaction opened here. There is no commit call: the transaction
commits when the body returns and rolls back when it raises.
"""

from typing import Awaitable, Callable, Mapping, Optional, Sequence, TypeVar

from cost_manager.services.storage.connection import Connection
from cost_manager.services.storage.engine import (
    ObjectStore,
    TransactionMode,
    UnknownObjectStoreError,
)
from cost_manager.services.storage.interface import (
    NotInitializedError,
    OperationError,
    StorageError,
)


T = TypeVar("T")

# Table name -> object store handle, valid only inside the body
TransactionScope = Mapping[str, ObjectStore]


async def with_transaction(
    connection: Optional[Connection],
    table_names: Sequence[str],
    mode: TransactionMode,
    body: Callable[[TransactionScope], Awaitable[T]],
) -> T:
    """
    Run `body` inside one transaction over `table_names`.

    Args:
        connection: An open connection
        table_names: Tables the transaction may touch (non-empty)
        mode: READ_ONLY or READ_WRITE
        body: Coroutine function receiving {table name: ObjectStore}

    Returns:
        Whatever `body` returns, after the transaction committed

    Raises:
        NotInitializedError: If the connection is missing or closed
        OperationError: If any request inside the body fails
        StorageError: Storage errors raised by the body pass through as-is

    Transactions on one connection run one at a time, so `body` must use
    only the stores in its scope. Calling another record operation on the
    same connection from inside `body` fails with OperationError.
    """
    if connection is None:
        raise NotInitializedError("Database is not initialized. Call open_database() first.")
    database = connection.database

    names = list(dict.fromkeys(table_names))
    if not names:
        raise ValueError("A transaction needs at least one table")

    try:
        async with database.transaction(names, mode) as transaction:
            scope = {name: transaction.object_store(name) for name in names}
            return await body(scope)
    except StorageError:
        raise
    except UnknownObjectStoreError as e:
        raise OperationError(f"Unknown table in {names}: {e}") from e
    except Exception as e:
        raise OperationError(f"Transaction on {names} failed: {e}") from e
