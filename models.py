from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"
    transfer = "transfer"
    charge = "charge"


class CategoryType(str, Enum):
    income = "income"
    expense = "expense"


class AccountType(str, Enum):
    cash = "cash"
    bank = "bank"
    credit_card = "credit_card"
    e_money = "e_money"
    investment = "investment"


class Scope(str, Enum):
    shared = "shared"
    private = "private"
    family = "family"


class ApprovalStatus(str, Enum):
    confirmed = "confirmed"
    pending = "pending"
    rejected = "rejected"


class Frequency(str, Enum):
    monthly = "monthly"
    every_2_months = "2months"
    every_3_months = "3months"
    every_6_months = "6months"
    yearly = "yearly"


FREQUENCY_ENUM = SAEnum(
    Frequency,
    name="frequency",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class HolidayAction(str, Enum):
    none = "none"
    before = "before"
    after = "after"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[AccountType] = mapped_column(SAEnum(AccountType), nullable=False)
    scope: Mapped[Scope] = mapped_column(
        SAEnum(Scope), nullable=False, default=Scope.private
    )
    balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    start_date: Mapped[Optional[date]] = mapped_column(Date)
    closing_day: Mapped[Optional[int]] = mapped_column(Integer)
    payment_day: Mapped[Optional[int]] = mapped_column(Integer)
    is_credit: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index("ix_accounts_user_order", "user_id", "order"),
        CheckConstraint(
            "closing_day IS NULL OR (closing_day BETWEEN 1 AND 31) OR closing_day = 99",
            name="ck_accounts_closing_day",
        ),
        CheckConstraint(
            "payment_day IS NULL OR payment_day BETWEEN 1 AND 31",
            name="ck_accounts_payment_day",
        ),
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[CategoryType] = mapped_column(SAEnum(CategoryType), nullable=False)
    icon: Mapped[Optional[str]] = mapped_column(String(60))
    color: Mapped[Optional[str]] = mapped_column(String(9))
    budget: Mapped[Optional[int]] = mapped_column(Integer)
    sub_categories: Mapped[list[str]] = mapped_column(
        JSON, default=list, nullable=False
    )
    order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "type", "name", name="uq_category_user_type_name"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    memo: Mapped[Optional[str]] = mapped_column(Text)
    # Soft reference: deleting a category leaves the id behind.
    category_id: Mapped[Optional[int]] = mapped_column(Integer)
    category_name: Mapped[Optional[str]] = mapped_column(String(100))
    sub_category: Mapped[Optional[str]] = mapped_column(String(100))
    source_account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("accounts.id")
    )
    target_account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("accounts.id")
    )
    scope: Mapped[Scope] = mapped_column(
        SAEnum(Scope), nullable=False, default=Scope.private
    )
    created_by: Mapped[str] = mapped_column(String(128), nullable=False)
    approval_status: Mapped[ApprovalStatus] = mapped_column(
        SAEnum(ApprovalStatus), nullable=False, default=ApprovalStatus.confirmed
    )
    image_url: Mapped[Optional[str]] = mapped_column(String(500))
    origin_rule_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("recurring_rules.id", ondelete="SET NULL")
    )
    occurrence_date: Mapped[Optional[date]] = mapped_column(Date)

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "origin_rule_id",
            "occurrence_date",
            name="uq_txn_origin_occurrence",
        ),
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_category_date", "user_id", "category_id", "date"),
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
    )


class RecurringRule(Base, TimestampMixin):
    __tablename__ = "recurring_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(120))
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    category_id: Mapped[int] = mapped_column(Integer, nullable=False)
    sub_category: Mapped[Optional[str]] = mapped_column(String(100))
    source_account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id"), nullable=False
    )
    frequency: Mapped[Frequency] = mapped_column(FREQUENCY_ENUM, nullable=False)
    day: Mapped[int] = mapped_column(Integer, nullable=False)
    holiday_action: Mapped[HolidayAction] = mapped_column(
        SAEnum(HolidayAction), nullable=False, default=HolidayAction.none
    )
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    next_due_date: Mapped[Optional[date]] = mapped_column(Date)
    auto_post: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_on: Mapped[Optional[date]] = mapped_column(Date)

    __table_args__ = (
        CheckConstraint("day BETWEEN 1 AND 31", name="ck_rule_day_range"),
        CheckConstraint("amount > 0", name="ck_rule_amount_positive"),
    )
