from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import (
    AccountType,
    CategoryType,
    Frequency,
    HolidayAction,
    Scope,
    TransactionType,
)


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType
    scope: Scope = Scope.private
    balance: int = 0
    start_date: Optional[date] = None
    closing_day: Optional[int] = Field(default=None, ge=1, le=99)
    payment_day: Optional[int] = Field(default=None, ge=1, le=31)
    is_credit: bool = False
    is_archived: bool = False
    order: int = 0


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: CategoryType
    icon: Optional[str] = Field(default=None, max_length=60)
    color: Optional[str] = Field(default=None, max_length=9)
    budget: Optional[int] = Field(default=None, ge=0)
    sub_categories: list[str] = Field(default_factory=list)
    order: int = 0


class SubCategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class TransactionIn(BaseModel):
    """A user-entered transaction intent.

    ``amount`` and the account roles are checked by ``TransactionService`` so
    the first violation can be reported in a fixed order.
    """

    model_config = ConfigDict(extra="forbid")

    type: TransactionType
    date: date
    amount: Optional[int] = None
    memo: Optional[str] = Field(default=None, max_length=200)
    category_id: Optional[int] = None
    sub_category: Optional[str] = Field(default=None, max_length=100)
    source_account_id: Optional[int] = None
    target_account_id: Optional[int] = None
    scope: Optional[Scope] = None
    image_url: Optional[str] = Field(default=None, max_length=500)


class RecurringRuleIn(BaseModel):
    name: Optional[str] = Field(default=None, max_length=120)
    amount: int = Field(..., gt=0)
    category_id: int
    sub_category: Optional[str] = Field(default=None, max_length=100)
    source_account_id: int
    frequency: Frequency = Frequency.monthly
    day: int = Field(..., ge=1, le=31)
    holiday_action: HolidayAction = HolidayAction.none
    end_date: Optional[date] = None
    next_due_date: Optional[date] = None
    auto_post: bool = True


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: AccountType
    scope: Scope
    balance: int
    start_date: Optional[date]
    closing_day: Optional[int]
    payment_day: Optional[int]
    is_credit: bool
    is_archived: bool
    order: int


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: CategoryType
    icon: Optional[str]
    color: Optional[str]
    budget: Optional[int]
    sub_categories: list[str]
    order: int


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: TransactionType
    date: date
    amount: int
    memo: Optional[str]
    category_id: Optional[int]
    category_name: Optional[str]
    sub_category: Optional[str]
    source_account_id: Optional[int]
    target_account_id: Optional[int]
    scope: Scope
    created_by: str
    origin_rule_id: Optional[int]
    image_url: Optional[str]


class RecurringRuleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: Optional[str]
    amount: int
    category_id: int
    sub_category: Optional[str]
    source_account_id: int
    frequency: Frequency
    day: int
    holiday_action: HolidayAction
    end_date: Optional[date]
    next_due_date: Optional[date]
    auto_post: bool
