from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import AccountType, CategoryKind, FixedFlag, MovementType

# largest value an SQLite INTEGER column holds
MAX_AMOUNT_CENTS = 2**63 - 1


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType
    opening_balance_cents: int = Field(
        default=0, ge=-MAX_AMOUNT_CENTS, le=MAX_AMOUNT_CENTS
    )
    is_active: bool = True


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    kind: CategoryKind
    is_fixed: bool = False
    is_active: bool = True


class MovementIn(BaseModel):
    date: date
    type: MovementType
    amount_cents: int = Field(..., gt=0, le=MAX_AMOUNT_CENTS)
    account_id: Optional[int] = None
    account_from_id: Optional[int] = None
    account_to_id: Optional[int] = None
    category_id: Optional[int] = None
    fixed_var: Optional[FixedFlag] = None
    note: Optional[str] = Field(default=None, max_length=500)


class MovementWithNames(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: int
    date: date
    type: MovementType
    amount_cents: int
    account_id: Optional[int] = None
    account_name: Optional[str] = None
    account_from_id: Optional[int] = None
    account_from_name: Optional[str] = None
    account_to_id: Optional[int] = None
    account_to_name: Optional[str] = None
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    fixed_var: Optional[FixedFlag] = None
    note: Optional[str] = None


class SnapshotIn(BaseModel):
    account_id: int
    date: date
    balance_cents: int = Field(..., ge=-MAX_AMOUNT_CENTS, le=MAX_AMOUNT_CENTS)


class SnapshotBalanceIn(BaseModel):
    balance_cents: int = Field(..., ge=-MAX_AMOUNT_CENTS, le=MAX_AMOUNT_CENTS)


class DayNoteIn(BaseModel):
    note: Optional[str] = Field(default=None, max_length=2000)


class RecurringTemplateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    type: MovementType
    amount_cents: int = Field(..., gt=0, le=MAX_AMOUNT_CENTS)
    day_of_month: int = Field(..., ge=1, le=31)
    account_id: int
    category_id: int
    fixed_var: Optional[FixedFlag] = None
    note: Optional[str] = Field(default=None, max_length=500)
    active: bool = True
    starts_on: Optional[date] = None


class CSVRow(BaseModel):
    line: int
    date: date
    type: MovementType
    amount_cents: int
    account: str
    category: str
    fixed_var: Optional[FixedFlag]
    note: Optional[str]


class ImportResult(BaseModel):
    success: int = 0
    errors: list[str] = Field(default_factory=list)
