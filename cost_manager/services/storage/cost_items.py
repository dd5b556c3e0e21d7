"""
Cost Item Storage

Typed storage for cost items on top of the record operations.

The record layer deals in open dicts. This class validates on the way in
(CostItem / CostItemPatch) and on the way out, and writes an audit event
for every change.
"""

from typing import Callable, Optional
from uuid import UUID

from pydantic import ValidationError

from cost_manager.audit import AuditLogger
from cost_manager.models.cost_item import ID_FIELD, CostItem, CostItemPatch
from cost_manager.services.storage import records, scanner
from cost_manager.services.storage.connection import Connection
from cost_manager.services.storage.engine import TransactionMode
from cost_manager.services.storage.interface import (
    CostItemStorageInterface,
    NotFoundError,
    OperationError,
    StorageError,
)
from cost_manager.services.storage.transaction import TransactionScope, with_transaction


DEFAULT_TABLE = "costItems"


def _to_item(record: records.Record) -> CostItem:
    try:
        return CostItem.from_record(record)
    except ValidationError as e:
        raise OperationError(f"Stored record is not a valid cost item: {e}") from e


class CostItemStore(CostItemStorageInterface):
    """
    Object store implementation of cost item storage.

    One instance serves one table of one open connection.
    """

    def __init__(
        self,
        connection: Connection,
        table_name: str = DEFAULT_TABLE,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._connection = connection
        self._table = table_name
        self._audit_logger = audit_logger

    @property
    def table_name(self) -> str:
        return self._table

    async def _log_failure(
        self,
        operation: str,
        error: StorageError,
        item_id: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log_storage_error(
                operation=operation,
                error_message=str(error),
                table_name=self._table,
                item_id=item_id,
                correlation_id=correlation_id,
            )

    async def add_item(
        self,
        item: CostItem,
        correlation_id: Optional[UUID] = None,
    ) -> CostItem:
        """Save a new cost item and return it with its id."""
        if item.id is not None:
            raise ValueError("New cost items must not have an id; the store assigns it")

        try:
            item_id = await records.add(self._connection, self._table, item.to_record())
        except StorageError as e:
            await self._log_failure("add_item", e, correlation_id=correlation_id)
            raise

        saved = item.model_copy(update={ID_FIELD: item_id})
        if self._audit_logger:
            await self._audit_logger.log_cost_item_added(
                table_name=self._table,
                item_id=item_id,
                amount=str(saved.amount),
                category=saved.category.value,
                correlation_id=correlation_id,
            )
        return saved

    async def get_item(self, item_id: int) -> Optional[CostItem]:
        record = await records.get(self._connection, self._table, item_id)
        return _to_item(record) if record is not None else None

    async def list_items(self) -> list[CostItem]:
        return [
            _to_item(record)
            for record in await records.get_all(self._connection, self._table)
        ]

    async def update_item(
        self,
        item_id: int,
        patch: CostItemPatch,
        correlation_id: Optional[UUID] = None,
    ) -> CostItem:
        """
        Merge a patch into an existing item.

        Read, merge and write happen in one read-write transaction.
        """
        async def body(scope: TransactionScope) -> CostItem:
            store = scope[self._table]
            existing = await store.get(item_id)
            if existing is None:
                raise NotFoundError(f"Cost item not found: {item_id}")

            merged = _to_item(existing).merged_with(patch)
            await store.put(merged.to_record())
            return merged

        try:
            merged = await with_transaction(
                self._connection, [self._table], TransactionMode.READ_WRITE, body
            )
        except StorageError as e:
            await self._log_failure("update_item", e, item_id, correlation_id)
            raise

        if self._audit_logger:
            await self._audit_logger.log_cost_item_updated(
                table_name=self._table,
                item_id=item_id,
                changed_fields=sorted(patch.to_record()),
                correlation_id=correlation_id,
            )
        return merged

    async def delete_item(
        self,
        item_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        try:
            await records.delete(self._connection, self._table, item_id)
        except StorageError as e:
            await self._log_failure("delete_item", e, item_id, correlation_id)
            raise

        if self._audit_logger:
            await self._audit_logger.log_cost_item_deleted(
                table_name=self._table,
                item_id=item_id,
                correlation_id=correlation_id,
            )

    async def find_items(
        self,
        predicate: Callable[[CostItem], bool],
    ) -> list[CostItem]:
        """Scan the table, keeping items the predicate accepts."""
        matches = await scanner.scan(
            self._connection,
            self._table,
            lambda record: predicate(CostItem.from_record(record)),
        )
        return [_to_item(record) for record in matches]
