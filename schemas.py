from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import TransactionType


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    clean = value.strip()
    return clean or None


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: str = Field(..., min_length=1, max_length=50)
    balance_cents: int = 0


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class CategoryRenameIn(BaseModel):
    old_name: str = Field(..., min_length=1, max_length=100)
    new_name: str = Field(..., min_length=1, max_length=100)


class TransactionIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    type: TransactionType
    amount_cents: int = Field(..., gt=0)
    date: date
    account_id: Optional[int] = None
    category: Optional[str] = Field(default=None, max_length=100)

    @field_validator("category")
    @classmethod
    def clean_category(cls, value: Optional[str]) -> Optional[str]:
        return _blank_to_none(value)


class FixedExpenseIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    default_amount_cents: int = Field(..., gt=0)
    category: Optional[str] = Field(default=None, max_length=100)
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)

    @field_validator("category")
    @classmethod
    def clean_category(cls, value: Optional[str]) -> Optional[str]:
        return _blank_to_none(value)


class MonthlyOverrideIn(BaseModel):
    amount_cents: int = Field(..., gt=0)


class PaidStatusIn(BaseModel):
    is_paid: bool


class MonthlyEditIn(BaseModel):
    amount_cents: int = Field(..., gt=0)
    is_paid: bool


class CopyMonthIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source_year: int = Field(..., ge=1, le=9999)
    source_month: int = Field(..., ge=1, le=12)
    # both omitted: the month after the source
    dest_year: Optional[int] = Field(default=None, ge=1, le=9999)
    dest_month: Optional[int] = Field(default=None, ge=1, le=12)
