from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from balances import (
    APPLY,
    REVERSE,
    Entry,
    apply_deltas,
    balance_deltas,
    entry_fields,
    entry_from_fields,
    entry_from_transaction,
    merge_deltas,
)
from config import get_settings
from errors import (
    CommitError,
    DateBeforeAccountStartError,
    LedgerError,
    MissingFieldError,
    ReferenceNotFoundError,
    ValidationError,
)
from models import (
    Account,
    ApprovalStatus,
    Category,
    CategoryType,
    RecurringRule,
    Scope,
    Transaction,
    TransactionType,
)
from periods import Period
from recurrence import RecurringEngine, local_today
from schemas import AccountIn, CategoryIn, RecurringRuleIn, TransactionIn

logger = logging.getLogger(__name__)

UNCLASSIFIED = "Unclassified"

ROLE_LABELS = {"source": "paying account", "target": "receiving account"}


def get_current_user_id() -> str:
    return get_settings().user_id


def commit_or_raise(session: Session) -> None:
    try:
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("commit_failed")
        raise CommitError() from exc


def display_category_name(
    txn: Transaction, known_category_ids: Iterable[int]
) -> Optional[str]:
    """Label shown for a transaction's category.

    The stored snapshot is used as-is, even if the category was renamed since.
    Transactions whose category was deleted read as unclassified.
    """
    if txn.category_id is None:
        return None
    if txn.category_id not in set(known_category_ids) or not txn.category_name:
        return UNCLASSIFIED
    return txn.category_name


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category_id: Optional[int] = None
    account_id: Optional[int] = None
    query: Optional[str] = None


class AccountService:
    def __init__(self, session: Session, user_id: Optional[str] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self, include_archived: bool = False) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.order, Account.id)
        )
        if not include_archived:
            stmt = stmt.where(Account.is_archived.is_(False))
        return self.session.scalars(stmt).all()

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.user_id != self.user_id:
            raise ReferenceNotFoundError("Account", account_id)
        return account

    def create(self, data: AccountIn) -> Account:
        account = Account(user_id=self.user_id, **data.model_dump())
        account.name = data.name.strip()
        self.session.add(account)
        commit_or_raise(self.session)
        self.session.refresh(account)
        return account

    def update(self, account_id: int, data: AccountIn) -> Account:
        """Replace the account document, including a manual balance correction."""
        account = self.get(account_id)
        for field, value in data.model_dump().items():
            setattr(account, field, value)
        account.name = data.name.strip()
        commit_or_raise(self.session)
        self.session.refresh(account)
        return account

    def set_archived(self, account_id: int, archived: bool) -> None:
        account = self.get(account_id)
        account.is_archived = archived
        commit_or_raise(self.session)

    def delete(self, account_id: int) -> None:
        account = self.get(account_id)
        used_by_transactions = int(
            self.session.execute(
                select(func.count(Transaction.id)).where(
                    Transaction.user_id == self.user_id,
                    or_(
                        Transaction.source_account_id == account_id,
                        Transaction.target_account_id == account_id,
                    ),
                )
            ).scalar_one()
            or 0
        )
        used_by_rules = int(
            self.session.execute(
                select(func.count(RecurringRule.id)).where(
                    RecurringRule.user_id == self.user_id,
                    RecurringRule.source_account_id == account_id,
                )
            ).scalar_one()
            or 0
        )
        if used_by_transactions or used_by_rules:
            raise ValidationError(
                "Account is still referenced by transactions; archive it instead"
            )
        self.session.delete(account)
        commit_or_raise(self.session)


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[str] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self, type: Optional[CategoryType] = None) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.type, Category.order, Category.name)
        )
        if type is not None:
            stmt = stmt.where(Category.type == type)
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise ReferenceNotFoundError("Category", category_id)
        return category

    def _ensure_unique_name(
        self, data: CategoryIn, exclude_id: Optional[int] = None
    ) -> None:
        stmt = select(Category).where(
            Category.user_id == self.user_id,
            Category.type == data.type,
            func.lower(Category.name) == data.name.strip().lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        if self.session.scalar(stmt):
            raise ValidationError("Category with this name already exists")

    @staticmethod
    def _clean_labels(labels: Iterable[str]) -> list[str]:
        cleaned: list[str] = []
        for label in labels:
            label = label.strip()
            if label and label not in cleaned:
                cleaned.append(label)
        return cleaned

    def create(self, data: CategoryIn) -> Category:
        self._ensure_unique_name(data)
        category = Category(
            user_id=self.user_id,
            name=data.name.strip(),
            type=data.type,
            icon=data.icon,
            color=data.color,
            budget=data.budget,
            sub_categories=self._clean_labels(data.sub_categories),
            order=data.order,
        )
        self.session.add(category)
        commit_or_raise(self.session)
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryIn) -> Category:
        """Replace the category; snapshots on existing transactions stay as they are."""
        category = self.get(category_id)
        self._ensure_unique_name(data, exclude_id=category_id)
        category.name = data.name.strip()
        category.type = data.type
        category.icon = data.icon
        category.color = data.color
        category.budget = data.budget
        category.sub_categories = self._clean_labels(data.sub_categories)
        category.order = data.order
        commit_or_raise(self.session)
        self.session.refresh(category)
        return category

    def add_sub_category(self, category_id: int, name: str) -> Category:
        category = self.get(category_id)
        category.sub_categories = self._clean_labels(
            list(category.sub_categories or []) + [name]
        )
        commit_or_raise(self.session)
        return category

    def remove_sub_category(self, category_id: int, name: str) -> Category:
        category = self.get(category_id)
        category.sub_categories = [
            label for label in category.sub_categories or [] if label != name.strip()
        ]
        commit_or_raise(self.session)
        return category

    def reorder(self, category_ids: list[int]) -> None:
        for position, category_id in enumerate(category_ids):
            self.get(category_id).order = position
        commit_or_raise(self.session)

    def delete(self, category_id: int) -> None:
        # Transactions keep their category_id and snapshot; they display as
        # unclassified from now on.
        category = self.get(category_id)
        self.session.delete(category)
        commit_or_raise(self.session)


class TransactionService:
    """Validates transaction intents and commits them with their balance deltas.

    Every write stages the document change and the account increments on the
    same session and commits once, so balances and documents never diverge.
    """

    def __init__(self, session: Session, user_id: Optional[str] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def commit(self) -> None:
        commit_or_raise(self.session)

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise ReferenceNotFoundError("Transaction", transaction_id)
        return txn

    def list(
        self,
        period: Period,
        filters: Optional[TransactionFilters] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        filters = filters or TransactionFilters()
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(period.start, period.end),
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.category_id:
            stmt = stmt.where(Transaction.category_id == filters.category_id)
        if filters.account_id:
            stmt = stmt.where(
                or_(
                    Transaction.source_account_id == filters.account_id,
                    Transaction.target_account_id == filters.account_id,
                )
            )
        if filters.query:
            like = f"%{filters.query.lower()}%"
            stmt = stmt.where(func.lower(func.coalesce(Transaction.memo, "")).like(like))
        return self.session.scalars(stmt).all()

    def _validate(
        self, data: TransactionIn, allow_missing_category: bool = False
    ) -> tuple[Entry, Optional[Category]]:
        entry = entry_from_fields(
            data.type, data.amount, data.source_account_id, data.target_account_id
        )
        needs_category = data.type in (TransactionType.expense, TransactionType.income)
        if needs_category and data.category_id is None:
            raise MissingFieldError("category_id", "Choose a category")

        for role, account_id in entry.roles():
            account = self.session.get(Account, account_id)
            if not account or account.user_id != self.user_id:
                raise ReferenceNotFoundError("Account", account_id)
            if account.start_date and data.date < account.start_date:
                raise DateBeforeAccountStartError(
                    account.id, account.name, ROLE_LABELS[role], account.start_date
                )

        category = None
        if data.category_id is not None:
            category = self.session.get(Category, data.category_id)
            if category and category.user_id != self.user_id:
                category = None
            if category is None and not allow_missing_category:
                raise ReferenceNotFoundError("Category", data.category_id)
            if category and needs_category and category.type.value != data.type.value:
                raise ValidationError("Category type mismatch")
        return entry, category

    def _stage(self, deltas: dict[int, int], write) -> Transaction:
        try:
            apply_deltas(self.session, self.user_id, deltas)
            txn = write()
            self.session.flush()
        except LedgerError:
            self.session.rollback()
            raise
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("transaction_stage_failed")
            raise CommitError() from exc
        return txn

    def prepare_create(
        self,
        data: TransactionIn,
        *,
        origin_rule_id: Optional[int] = None,
        occurrence_date: Optional[date] = None,
    ) -> Transaction:
        """Stage a new transaction and its deltas without committing.

        Rule-originated entries keep a dangling ``category_id`` when the
        category was deleted; they show as "Unclassified".
        """
        entry, category = self._validate(
            data, allow_missing_category=origin_rule_id is not None
        )
        scope = data.scope or Scope(get_settings().default_scope)

        def write() -> Transaction:
            txn = Transaction(
                user_id=self.user_id,
                type=data.type,
                date=data.date,
                amount=data.amount,
                memo=data.memo.strip() if data.memo else None,
                category_id=data.category_id,
                category_name=category.name if category else None,
                sub_category=data.sub_category or None,
                scope=scope,
                created_by=self.user_id,
                approval_status=ApprovalStatus.confirmed,
                image_url=data.image_url,
                origin_rule_id=origin_rule_id,
                occurrence_date=occurrence_date,
                **entry_fields(entry),
            )
            self.session.add(txn)
            return txn

        return self._stage(balance_deltas(entry, APPLY), write)

    def prepare_update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        """Stage an edit: reverse the old deltas and apply the new ones."""
        txn = self.get(transaction_id)
        old_entry = entry_from_transaction(txn)
        entry, category = self._validate(data)
        deltas = merge_deltas(
            balance_deltas(old_entry, REVERSE), balance_deltas(entry, APPLY)
        )

        def write() -> Transaction:
            txn.type = data.type
            txn.date = data.date
            txn.amount = data.amount
            txn.memo = data.memo.strip() if data.memo else None
            txn.category_id = data.category_id
            txn.category_name = category.name if category else None
            txn.sub_category = data.sub_category or None
            if data.scope is not None:
                txn.scope = data.scope
            if data.image_url is not None:
                txn.image_url = data.image_url
            for field, value in entry_fields(entry).items():
                setattr(txn, field, value)
            return txn

        return self._stage(deltas, write)

    def create(self, data: TransactionIn) -> Transaction:
        txn = self.prepare_create(data)
        self.commit()
        logger.info(f"transaction_created: id={txn.id} type={txn.type.value}")
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.prepare_update(transaction_id, data)
        self.commit()
        logger.info(f"transaction_updated: id={txn.id} type={txn.type.value}")
        return txn

    def save(self, data: TransactionIn, existing_id: Optional[int] = None) -> int:
        if existing_id is None:
            return self.create(data).id
        return self.update(existing_id, data).id

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        deltas = balance_deltas(entry_from_transaction(txn), REVERSE)

        def write() -> Transaction:
            self.session.delete(txn)
            return txn

        self._stage(deltas, write)
        self.commit()
        logger.info(f"transaction_deleted: id={transaction_id}")


class RecurringRuleService:
    def __init__(self, session: Session, user_id: Optional[str] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self, rule_id: int) -> RecurringRule:
        rule = self.session.get(RecurringRule, rule_id)
        if not rule or rule.user_id != self.user_id:
            raise ReferenceNotFoundError("Recurring rule", rule_id)
        return rule

    def list(self) -> list[RecurringRule]:
        stmt = (
            select(RecurringRule)
            .where(RecurringRule.user_id == self.user_id)
            .order_by(RecurringRule.day, RecurringRule.id)
        )
        return self.session.scalars(stmt).all()

    def _check_references(self, data: RecurringRuleIn) -> None:
        category = self.session.get(Category, data.category_id)
        if not category or category.user_id != self.user_id:
            raise ReferenceNotFoundError("Category", data.category_id)
        if category.type != CategoryType.expense:
            raise ValidationError("Category type mismatch")
        account = self.session.get(Account, data.source_account_id)
        if not account or account.user_id != self.user_id:
            raise ReferenceNotFoundError("Account", data.source_account_id)

    def create(
        self, data: RecurringRuleIn, created_on: Optional[date] = None
    ) -> RecurringRule:
        self._check_references(data)
        rule = RecurringRule(
            user_id=self.user_id,
            created_on=created_on or local_today(),
            **data.model_dump(),
        )
        self.session.add(rule)
        commit_or_raise(self.session)
        self.session.refresh(rule)
        return rule

    def update(self, rule_id: int, data: RecurringRuleIn) -> RecurringRule:
        """Replace the rule. Without an explicit ``next_due_date`` the cursor is kept."""
        rule = self.get(rule_id)
        self._check_references(data)
        values = data.model_dump()
        if values["next_due_date"] is None:
            values.pop("next_due_date")
        for field, value in values.items():
            setattr(rule, field, value)
        commit_or_raise(self.session)
        self.session.refresh(rule)
        return rule

    def toggle_auto_post(self, rule_id: int, auto_post: bool) -> None:
        rule = self.get(rule_id)
        rule.auto_post = auto_post
        commit_or_raise(self.session)

    def delete(self, rule_id: int) -> None:
        # Materialized transactions stay; they are ordinary ledger entries.
        rule = self.get(rule_id)
        self.session.delete(rule)
        commit_or_raise(self.session)

    def catch_up_all(self, today: Optional[date] = None) -> int:
        engine = RecurringEngine(self.session, self.user_id)
        return engine.post_due_rules(today)


class AnalysisService:
    def __init__(self, session: Session, user_id: Optional[str] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def category_breakdown(
        self, period: Period, type: TransactionType = TransactionType.expense
    ) -> list[dict[str, object]]:
        known_ids = set(
            self.session.scalars(
                select(Category.id).where(Category.user_id == self.user_id)
            ).all()
        )
        txns = self.session.scalars(
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == type,
                Transaction.date.between(period.start, period.end),
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        ).all()

        totals: dict[Optional[int], int] = {}
        names: dict[Optional[int], str] = {}
        for txn in txns:
            key = txn.category_id if txn.category_id in known_ids else None
            totals[key] = totals.get(key, 0) + txn.amount
            names.setdefault(key, display_category_name(txn, known_ids) or UNCLASSIFIED)

        total = sum(totals.values())
        if total == 0:
            return []
        items = sorted(totals.items(), key=lambda item: item[1], reverse=True)
        return [
            {
                "category_id": category_id,
                "name": names[category_id],
                "amount": amount,
                "percent": amount / total * 100,
            }
            for category_id, amount in items
        ]
