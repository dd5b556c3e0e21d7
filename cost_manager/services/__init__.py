"""Services package."""

from cost_manager.services.storage import (
    ConnectionError,
    CostItemStorageInterface,
    CostItemStore,
    NotFoundError,
    NotInitializedError,
    OperationError,
    StorageError,
)

__all__ = [
    "ConnectionError",
    "CostItemStorageInterface",
    "CostItemStore",
    "NotFoundError",
    "NotInitializedError",
    "OperationError",
    "StorageError",
]
