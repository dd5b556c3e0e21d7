"""
Cursor Scanner

The only filtered retrieval the store offers. There are no secondary
indexes: a scan walks every record with a forward cursor and asks the
predicate about each one, so cost is always linear in table size.
"""

from contextlib import aclosing
from typing import Any, Callable, Mapping, Optional

from cost_manager.services.storage.connection import Connection
from cost_manager.services.storage.engine import TransactionMode
from cost_manager.services.storage.records import Record
from cost_manager.services.storage.transaction import TransactionScope, with_transaction


Predicate = Callable[[Mapping[str, Any]], bool]


async def scan(
    connection: Optional[Connection],
    table_name: str,
    predicate: Predicate,
) -> list[Record]:
    """
    Return the records for which `predicate` is true, in table order.

    The predicate must be synchronous and must not modify the record.
    If it raises, the scan is abandoned and nothing is returned.

    Raises:
        NotInitializedError: If the connection is missing or closed
        OperationError: If a cursor step or the predicate fails
    """
    async def body(scope: TransactionScope) -> list[Record]:
        matches = []
        async with aclosing(scope[table_name].open_cursor()) as cursor:
            async for record in cursor:
                if predicate(record):
                    matches.append(record)
        return matches

    return await with_transaction(
        connection, [table_name], TransactionMode.READ_ONLY, body
    )
