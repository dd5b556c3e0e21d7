"""
Abstract Storage Interface

DESIGN DECISION: Business code (reports, the app factory) talks to an
abstract cost-item storage interface. This allows us to:
1. Swap the local object store for another backend later
2. Use fakes in tests of the layers above
3. Keep report logic decoupled from how records are persisted

The interface is intentionally simple - we're not building a full ORM.
Just the operations the cost manager needs.

The exception taxonomy for the whole storage layer lives here too.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional

from cost_manager.models.cost_item import CostItem, CostItemPatch


class CostItemStorageInterface(ABC):
    """
    Abstract interface for cost item storage operations.

    Any storage implementation must implement these methods.
    """

    @abstractmethod
    async def add_item(self, item: CostItem) -> CostItem:
        """
        Save a new cost item.

        Args:
            item: The item to save; its id must be unset

        Returns:
            The stored item, carrying its assigned id

        Raises:
            OperationError: If the write fails
        """
        pass

    @abstractmethod
    async def get_item(self, item_id: int) -> Optional[CostItem]:
        """
        Retrieve an item by its id.

        Returns:
            The item if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_items(self) -> list[CostItem]:
        """
        List every stored item in storage order.
        """
        pass

    @abstractmethod
    async def update_item(self, item_id: int, patch: CostItemPatch) -> CostItem:
        """
        Merge a partial update into an existing item.

        Args:
            item_id: The item's identifier
            patch: Fields to overwrite; absent fields are kept

        Returns:
            The merged item as stored

        Raises:
            NotFoundError: If the item doesn't exist
            OperationError: If the write fails
        """
        pass

    @abstractmethod
    async def delete_item(self, item_id: int) -> None:
        """
        Delete an item by id. Deleting a missing id is not an error.
        """
        pass

    @abstractmethod
    async def find_items(
        self,
        predicate: Callable[[CostItem], bool],
    ) -> list[CostItem]:
        """
        Scan all items and keep those matching the predicate.

        Args:
            predicate: Pure, synchronous filter over typed items

        Returns:
            Matching items in storage order

        Raises:
            OperationError: If the scan or the predicate fails
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class ConnectionError(StorageError):
    """Could not open or upgrade the database."""
    pass


class NotInitializedError(StorageError):
    """Operation attempted without an open connection."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class OperationError(StorageError):
    """An engine request failed. The underlying error is the __cause__."""
    pass
