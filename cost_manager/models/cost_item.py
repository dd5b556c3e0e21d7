"""
Cost Item Models for Cost Manager

The object store itself keeps records as open mappings. These models
are the typed view the application works with:
1. Enforce amount/category/description/date at the boundary
2. Convert to and from the stored JSON representation
3. Implement the update merge explicitly, field by field

DESIGN DECISION: Amounts are Decimal in memory and decimal strings on
disk, so a value read back is exactly the value written.
"""

from datetime import date as Date
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field


# Field holding the store-assigned identifier
ID_FIELD = "id"


class CostCategory(str, Enum):
    """
    Supported cost categories.

    Lookup is case-insensitive: CostCategory("Food") is CostCategory.FOOD.
    """
    FOOD = "FOOD"
    CAR = "CAR"
    ENTERTAINMENT = "ENTERTAINMENT"
    HEALTH = "HEALTH"
    TRAVEL = "TRAVEL"
    SHOPPING = "SHOPPING"
    EDUCATION = "EDUCATION"
    BILLS = "BILLS"
    INVESTMENT = "INVESTMENT"
    OTHER = "OTHER"

    @classmethod
    def _missing_(cls, value: object) -> Optional["CostCategory"]:
        if isinstance(value, str):
            normalized = value.strip().upper()
            for member in cls:
                if member.value == normalized:
                    return member
        return None


class CostItem(BaseModel):
    """
    A single expense.

    `id` is None until the store assigns one; after that it never changes.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[int] = Field(
        default=None,
        ge=1,
        description="Store-assigned identifier"
    )
    amount: Decimal = Field(
        ...,
        ge=0,
        description="Amount spent"
    )
    category: CostCategory = Field(
        ...,
        description="Cost category"
    )
    description: str = Field(
        ...,
        min_length=1,
        max_length=500,
        description="Free-text description"
    )
    date: Date = Field(
        ...,
        description="Date of the expense"
    )

    def to_record(self) -> dict[str, Any]:
        """
        Convert to the stored JSON mapping.

        The identifier is left out when unassigned so the store can
        generate one.
        """
        record = self.model_dump(mode="json")
        if self.id is None:
            record.pop(ID_FIELD)
        return record

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "CostItem":
        """Build a CostItem from a stored mapping."""
        return cls.model_validate(dict(record))

    def merged_with(self, patch: "CostItemPatch") -> "CostItem":
        """
        Return a new item with the patch's present fields overriding ours.

        Fields the patch leaves as None keep their current value.
        The identifier is always kept.
        """
        return CostItem(
            id=self.id,
            amount=patch.amount if patch.amount is not None else self.amount,
            category=patch.category if patch.category is not None else self.category,
            description=(
                patch.description if patch.description is not None else self.description
            ),
            date=patch.date if patch.date is not None else self.date,
        )


class CostItemPatch(BaseModel):
    """Partial update for a CostItem. Every field is optional."""
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Optional[Decimal] = Field(default=None, ge=0)
    category: Optional[CostCategory] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    date: Optional[Date] = None

    def to_record(self) -> dict[str, Any]:
        """Only the fields that are present, in stored form."""
        return self.model_dump(mode="json", exclude_none=True)

    @property
    def is_empty(self) -> bool:
        return not self.to_record()
