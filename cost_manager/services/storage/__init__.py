"""
Storage Services Package

A versioned, transactional object store (SQLite via aiosqlite) and the
cost manager's persistence layer on top of it:

- connection:  open_database() / Connection / TableDeclaration
- transaction: with_transaction()
- records:     add / get / get_all / update / delete
- scanner:     scan()
- cost_items:  CostItemStore, the typed store used by the application
"""

from cost_manager.services.storage.interface import (
    ConnectionError,
    CostItemStorageInterface,
    NotFoundError,
    NotInitializedError,
    OperationError,
    StorageError,
)
from cost_manager.services.storage.engine import TransactionMode
from cost_manager.services.storage.connection import (
    Connection,
    TableDeclaration,
    open_database,
)
from cost_manager.services.storage.transaction import with_transaction
from cost_manager.services.storage.records import add, delete, get, get_all, update
from cost_manager.services.storage.scanner import scan
from cost_manager.services.storage.cost_items import CostItemStore

__all__ = [
    # Interfaces
    "CostItemStorageInterface",
    # Exceptions
    "ConnectionError",
    "NotFoundError",
    "NotInitializedError",
    "OperationError",
    "StorageError",
    # Connection and transactions
    "Connection",
    "TableDeclaration",
    "TransactionMode",
    "open_database",
    "with_transaction",
    # Record operations
    "add",
    "delete",
    "get",
    "get_all",
    "scan",
    "update",
    # Typed store
    "CostItemStore",
]
