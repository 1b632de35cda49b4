"""Balance deltas implied by ledger entries.

Storage keeps a flat ``source_account_id``/``target_account_id`` pair on every
transaction. Inside the engine each transaction type is its own entry variant
with named account roles, so the delta rules live in one place:

=========  ==============  ==============
type       source          target
=========  ==============  ==============
expense    ``-amount``
income                     ``+amount``
transfer   ``-amount``     ``+amount``
charge     ``-amount``     ``+amount``
=========  ==============  ==============

Reversing an entry (``sign=-1``) negates every delta.
"""

from dataclasses import dataclass
from typing import Optional, Union

from sqlalchemy.orm import Session

from errors import InvalidAmountError, MissingFieldError, SelfTransferError
from errors import ReferenceNotFoundError
from models import Account, Transaction, TransactionType

APPLY = 1
REVERSE = -1


@dataclass(frozen=True)
class Expense:
    amount: int
    source_account_id: int

    def roles(self) -> list[tuple[str, int]]:
        return [("source", self.source_account_id)]


@dataclass(frozen=True)
class Income:
    amount: int
    target_account_id: int

    def roles(self) -> list[tuple[str, int]]:
        return [("target", self.target_account_id)]


@dataclass(frozen=True)
class Transfer:
    amount: int
    source_account_id: int
    target_account_id: int

    def roles(self) -> list[tuple[str, int]]:
        return [
            ("source", self.source_account_id),
            ("target", self.target_account_id),
        ]


@dataclass(frozen=True)
class Charge(Transfer):
    pass


Entry = Union[Expense, Income, Transfer, Charge]


def _is_positive_int(amount: object) -> bool:
    return isinstance(amount, int) and not isinstance(amount, bool) and amount > 0


def entry_from_fields(
    type: TransactionType,
    amount: object,
    source_account_id: Optional[int],
    target_account_id: Optional[int],
) -> Entry:
    """Build the entry variant for a flat transaction shape.

    Checks run in a fixed order and the first failure wins: amount, the
    account roles the type requires, then self-transfer.
    """
    if not _is_positive_int(amount):
        raise InvalidAmountError(amount)

    if type == TransactionType.expense:
        if source_account_id is None:
            raise MissingFieldError(
                "source_account_id", "Choose the account the money comes from"
            )
        if target_account_id is not None:
            raise MissingFieldError(
                "target_account_id", "An expense cannot have a target account"
            )
        return Expense(amount, source_account_id)

    if type == TransactionType.income:
        if target_account_id is None:
            raise MissingFieldError(
                "target_account_id", "Choose the account that receives the money"
            )
        if source_account_id is not None:
            raise MissingFieldError(
                "source_account_id", "An income cannot have a source account"
            )
        return Income(amount, target_account_id)

    if source_account_id is None:
        raise MissingFieldError(
            "source_account_id", "Choose the account the money comes from"
        )
    if target_account_id is None:
        raise MissingFieldError(
            "target_account_id", "Choose the account the money goes to"
        )
    if source_account_id == target_account_id:
        raise SelfTransferError()
    variant = Charge if type == TransactionType.charge else Transfer
    return variant(amount, source_account_id, target_account_id)


def entry_from_transaction(txn: Transaction) -> Entry:
    return entry_from_fields(
        txn.type, txn.amount, txn.source_account_id, txn.target_account_id
    )


def entry_fields(entry: Entry) -> dict[str, Optional[int]]:
    """Flatten an entry back into the storage columns."""
    if isinstance(entry, Expense):
        return {
            "source_account_id": entry.source_account_id,
            "target_account_id": None,
        }
    if isinstance(entry, Income):
        return {
            "source_account_id": None,
            "target_account_id": entry.target_account_id,
        }
    return {
        "source_account_id": entry.source_account_id,
        "target_account_id": entry.target_account_id,
    }


def balance_deltas(entry: Entry, sign: int = APPLY) -> dict[int, int]:
    if isinstance(entry, Expense):
        return {entry.source_account_id: -sign * entry.amount}
    if isinstance(entry, Income):
        return {entry.target_account_id: sign * entry.amount}
    return {
        entry.source_account_id: -sign * entry.amount,
        entry.target_account_id: sign * entry.amount,
    }


def merge_deltas(*deltas: dict[int, int]) -> dict[int, int]:
    merged: dict[int, int] = {}
    for delta in deltas:
        for account_id, value in delta.items():
            merged[account_id] = merged.get(account_id, 0) + value
    return {account_id: value for account_id, value in merged.items() if value}


def apply_deltas(session: Session, user_id: str, deltas: dict[int, int]) -> None:
    """Stage balance increments on the session; the caller commits.

    Every account is checked before any increment is staged.
    """
    accounts: list[tuple[Account, int]] = []
    for account_id, delta in sorted(deltas.items()):
        account = session.get(Account, account_id)
        if not account or account.user_id != user_id:
            raise ReferenceNotFoundError("Account", account_id)
        accounts.append((account, delta))
    for account, delta in accounts:
        account.balance = Account.balance + delta
    # Flush so a later increment on the same account builds on this one.
    session.flush()
