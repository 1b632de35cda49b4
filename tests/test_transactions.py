from datetime import date

import pytest
from sqlalchemy.exc import OperationalError

from errors import (
    CommitError,
    DateBeforeAccountStartError,
    InvalidAmountError,
    MissingFieldError,
    ReferenceNotFoundError,
    SelfTransferError,
    ValidationError,
)
from models import AccountType, CategoryType, Transaction, TransactionType
from schemas import AccountIn, CategoryIn, TransactionIn
from services import (
    AccountService,
    CategoryService,
    TransactionService,
    display_category_name,
)

USER = "alice"


def _setup(session, start_date=None):
    accounts = AccountService(session, USER)
    a = accounts.create(
        AccountIn(name="Bank", type=AccountType.bank, balance=1000, start_date=start_date)
    )
    b = accounts.create(AccountIn(name="Wallet", type=AccountType.cash, balance=500))
    categories = CategoryService(session, USER)
    food = categories.create(CategoryIn(name="Food", type=CategoryType.expense))
    salary = categories.create(CategoryIn(name="Salary", type=CategoryType.income))
    return a, b, food, salary


def _balances(session, *accounts):
    service = AccountService(session, USER)
    return [service.get(account.id).balance for account in accounts]


def _expense(account, category, amount, day=date(2025, 1, 10)):
    return TransactionIn(
        type=TransactionType.expense,
        date=day,
        amount=amount,
        category_id=category.id,
        source_account_id=account.id,
    )


def _transfer(source, target, amount, day=date(2025, 1, 10), type=TransactionType.transfer):
    return TransactionIn(
        type=type,
        date=day,
        amount=amount,
        source_account_id=source.id,
        target_account_id=target.id,
    )


def test_create_edit_delete_then_transfer_scenario(session) -> None:
    a, b, food, _ = _setup(session)
    txns = TransactionService(session, USER)

    txn = txns.create(_expense(a, food, 200))
    assert _balances(session, a, b) == [800, 500]

    txns.update(txn.id, _expense(a, food, 300))
    assert _balances(session, a, b) == [700, 500]

    txns.delete(txn.id)
    assert _balances(session, a, b) == [1000, 500]
    assert session.get(Transaction, txn.id) is None

    txns.create(_transfer(a, b, 100))
    assert _balances(session, a, b) == [900, 600]


def test_income_credits_receiving_account(session) -> None:
    a, _, _, salary = _setup(session)
    txn = TransactionService(session, USER).create(
        TransactionIn(
            type=TransactionType.income,
            date=date(2025, 1, 25),
            amount=3000,
            category_id=salary.id,
            target_account_id=a.id,
        )
    )
    assert txn.source_account_id is None
    assert txn.target_account_id == a.id
    assert _balances(session, a) == [4000]


def test_transfers_and_charges_keep_two_account_sum(session) -> None:
    a, b, food, _ = _setup(session)
    txns = TransactionService(session, USER)

    first = txns.create(_transfer(a, b, 120))
    second = txns.create(_transfer(b, a, 40, type=TransactionType.charge))
    txns.update(first.id, _transfer(b, a, 75))
    txns.update(second.id, _transfer(a, b, 10, type=TransactionType.charge))
    assert sum(_balances(session, a, b)) == 1500

    txns.create(_expense(a, food, 60))
    txns.delete(first.id)
    assert sum(_balances(session, a, b)) == 1500 - 60


def test_edit_matches_delete_then_create(session, request) -> None:
    from conftest import make_session

    other = make_session()
    request.addfinalizer(other.close)

    a1, b1, _, _ = _setup(session)
    edited = TransactionService(session, USER)
    txn = edited.create(_transfer(a1, b1, 250))
    edited.update(txn.id, _transfer(a1, b1, 90))

    a2, b2, _, _ = _setup(other)
    replaced = TransactionService(other, USER)
    txn = replaced.create(_transfer(a2, b2, 250))
    replaced.delete(txn.id)
    replaced.create(_transfer(a2, b2, 90))

    assert _balances(session, a1, b1) == _balances(other, a2, b2) == [910, 590]


def test_edit_can_move_transaction_between_accounts_and_types(session) -> None:
    a, b, food, _ = _setup(session)
    txns = TransactionService(session, USER)
    txn = txns.create(_expense(a, food, 200))

    txns.update(txn.id, _expense(b, food, 50))
    assert _balances(session, a, b) == [1000, 450]

    updated = txns.update(txn.id, _transfer(a, b, 30))
    assert _balances(session, a, b) == [970, 530]
    assert updated.type == TransactionType.transfer
    assert updated.category_id is None


@pytest.mark.parametrize("amount", [None, 0, -5])
def test_amount_must_be_positive(session, amount) -> None:
    a, _, food, _ = _setup(session)
    with pytest.raises(InvalidAmountError):
        TransactionService(session, USER).create(_expense(a, food, amount))
    assert _balances(session, a) == [1000]


def test_first_violation_wins(session) -> None:
    a, _, _, _ = _setup(session)
    txns = TransactionService(session, USER)
    # Bad amount is reported before the missing category and self-transfer.
    with pytest.raises(InvalidAmountError):
        txns.create(
            TransactionIn(type=TransactionType.expense, date=date(2025, 1, 1), amount=0)
        )
    with pytest.raises(MissingFieldError) as excinfo:
        txns.create(
            TransactionIn(
                type=TransactionType.transfer,
                date=date(2025, 1, 1),
                amount=10,
                source_account_id=a.id,
            )
        )
    assert excinfo.value.field == "target_account_id"
    with pytest.raises(SelfTransferError):
        txns.create(_transfer(a, a, 10))


def test_role_fields_are_checked_per_type(session) -> None:
    a, b, food, salary = _setup(session)
    txns = TransactionService(session, USER)
    with pytest.raises(MissingFieldError):
        txns.create(
            TransactionIn(
                type=TransactionType.expense,
                date=date(2025, 1, 1),
                amount=10,
                category_id=food.id,
            )
        )
    with pytest.raises(MissingFieldError):
        txns.create(
            TransactionIn(
                type=TransactionType.income,
                date=date(2025, 1, 1),
                amount=10,
                category_id=salary.id,
                source_account_id=a.id,
            )
        )
    with pytest.raises(MissingFieldError) as excinfo:
        txns.create(
            TransactionIn(
                type=TransactionType.expense,
                date=date(2025, 1, 1),
                amount=10,
                source_account_id=a.id,
            )
        )
    assert excinfo.value.field == "category_id"
    assert _balances(session, a, b) == [1000, 500]


@pytest.mark.parametrize(
    "type", [TransactionType.expense, TransactionType.income, TransactionType.transfer]
)
def test_account_start_date_is_a_floor_for_every_role(session, type) -> None:
    a, b, food, salary = _setup(session, start_date=date(2025, 2, 1))
    early = date(2025, 1, 31)
    if type == TransactionType.expense:
        data = _expense(a, food, 10, day=early)
    elif type == TransactionType.income:
        data = TransactionIn(
            type=type,
            date=early,
            amount=10,
            category_id=salary.id,
            target_account_id=a.id,
        )
    else:
        # The restricted account plays the target role here.
        data = _transfer(b, a, 10, day=early)

    with pytest.raises(DateBeforeAccountStartError) as excinfo:
        TransactionService(session, USER).create(data)
    assert isinstance(excinfo.value, ValidationError)
    assert excinfo.value.account_id == a.id
    assert _balances(session, a, b) == [1000, 500]


def test_start_date_itself_is_allowed(session) -> None:
    a, _, food, _ = _setup(session, start_date=date(2025, 2, 1))
    TransactionService(session, USER).create(_expense(a, food, 10, day=date(2025, 2, 1)))
    assert _balances(session, a) == [990]


def test_unknown_account_and_category_are_reference_errors(session) -> None:
    a, _, food, _ = _setup(session)
    txns = TransactionService(session, USER)
    with pytest.raises(ReferenceNotFoundError):
        txns.create(
            TransactionIn(
                type=TransactionType.expense,
                date=date(2025, 1, 1),
                amount=10,
                category_id=food.id,
                source_account_id=9999,
            )
        )
    with pytest.raises(ReferenceNotFoundError):
        txns.create(
            TransactionIn(
                type=TransactionType.expense,
                date=date(2025, 1, 1),
                amount=10,
                category_id=9999,
                source_account_id=a.id,
            )
        )


def test_other_users_accounts_are_not_visible(session) -> None:
    a, _, food, _ = _setup(session)
    with pytest.raises(ReferenceNotFoundError):
        TransactionService(session, "bob").create(_expense(a, food, 10))


def test_category_type_must_match(session) -> None:
    a, _, _, salary = _setup(session)
    with pytest.raises(ValidationError, match="mismatch"):
        TransactionService(session, USER).create(_expense(a, salary, 10))


def test_category_name_is_a_snapshot(session) -> None:
    a, _, food, _ = _setup(session)
    txn = TransactionService(session, USER).create(_expense(a, food, 10))
    assert txn.category_name == "Food"

    CategoryService(session, USER).update(
        food.id, CategoryIn(name="Groceries", type=CategoryType.expense)
    )
    txn = TransactionService(session, USER).get(txn.id)
    assert txn.category_name == "Food"
    assert display_category_name(txn, [food.id]) == "Food"

    CategoryService(session, USER).delete(food.id)
    txn = TransactionService(session, USER).get(txn.id)
    assert txn.category_id == food.id
    assert display_category_name(txn, []) == "Unclassified"


def test_failed_commit_leaves_balances_untouched(session, monkeypatch) -> None:
    a, _, food, _ = _setup(session)
    txns = TransactionService(session, USER)
    txn = txns.create(_expense(a, food, 200))

    def broken_commit():
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(session, "commit", broken_commit)
    with pytest.raises(CommitError):
        txns.update(txn.id, _expense(a, food, 500))
    monkeypatch.undo()

    assert _balances(session, a) == [800]
    assert txns.get(txn.id).amount == 200


def test_list_is_newest_first(session) -> None:
    from periods import Period

    a, _, food, _ = _setup(session)
    txns = TransactionService(session, USER)
    txns.create(_expense(a, food, 1, day=date(2025, 1, 3)))
    txns.create(_expense(a, food, 2, day=date(2025, 1, 9)))
    txns.create(_expense(a, food, 3, day=date(2025, 1, 5)))

    listed = txns.list(Period("custom", date(2025, 1, 1), date(2025, 1, 31)))
    assert [txn.amount for txn in listed] == [2, 3, 1]


def test_failed_delete_leaves_balances_and_document(session, monkeypatch) -> None:
    a, _, food, _ = _setup(session)
    txns = TransactionService(session, USER)
    txn = txns.create(_expense(a, food, 200))

    def broken_commit():
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(session, "commit", broken_commit)
    with pytest.raises(CommitError):
        txns.delete(txn.id)
    monkeypatch.undo()

    assert _balances(session, a) == [800]
    assert txns.get(txn.id).amount == 200


def test_manual_entry_still_needs_an_existing_category(session) -> None:
    a, _, food, _ = _setup(session)
    CategoryService(session, USER).delete(food.id)
    with pytest.raises(ReferenceNotFoundError):
        TransactionService(session, USER).create(_expense(a, food, 10))
    assert _balances(session, a) == [1000]
