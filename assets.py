from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from balances import REVERSE, balance_deltas, entry_from_transaction
from models import Account, Transaction
from periods import clamp_to_today, month_period
from recurrence import local_today

TOTAL = "total"


@dataclass(frozen=True)
class BalancePoint:
    date: date
    balance: int


def reconstruct(
    accounts: Iterable[Account],
    transactions: Iterable[Transaction],
    start: date,
    end: date,
) -> dict[Union[int, str], list[BalancePoint]]:
    """Rebuild end-of-day balances for every day in ``[start, end]``.

    Walks backwards from each account's stored balance, reversing the
    transactions dated after ``end`` first and then one day at a time.
    The ``"total"`` series covers non-archived accounts only.
    """
    if start > end:
        return {}

    accounts = list(accounts)
    running = {account.id: account.balance for account in accounts}
    counted = [account.id for account in accounts if not account.is_archived]

    reversals_by_day: dict[date, list[dict[int, int]]] = {}
    for txn in transactions:
        if txn.date < start:
            continue
        reversals_by_day.setdefault(txn.date, []).append(
            balance_deltas(entry_from_transaction(txn), REVERSE)
        )

    def reverse_day(day: date) -> None:
        for deltas in reversals_by_day.get(day, []):
            for account_id, delta in deltas.items():
                if account_id in running:
                    running[account_id] += delta

    for day in sorted(d for d in reversals_by_day if d > end):
        reverse_day(day)

    series: dict[Union[int, str], list[BalancePoint]] = {
        account.id: [] for account in accounts
    }
    series[TOTAL] = []
    day = end
    while day >= start:
        for account_id, balance in running.items():
            series[account_id].append(BalancePoint(day, balance))
        series[TOTAL].append(
            BalancePoint(day, sum(running[account_id] for account_id in counted))
        )
        reverse_day(day)
        day -= timedelta(days=1)

    for points in series.values():
        points.reverse()
    return series


class AssetHistoryService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def history(
        self,
        start: date,
        end: date,
        account_ids: Optional[list[int]] = None,
    ) -> dict[Union[int, str], list[BalancePoint]]:
        if start > end:
            return {}
        accounts = self.session.scalars(
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.order, Account.id)
        ).all()
        transactions = self.session.scalars(
            select(Transaction)
            .where(Transaction.user_id == self.user_id, Transaction.date >= start)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        ).all()
        series = reconstruct(accounts, transactions, start, end)
        if account_ids is None:
            return series
        wanted = set(account_ids)
        return {
            key: points
            for key, points in series.items()
            if key == TOTAL or key in wanted
        }

    def month_history(
        self,
        year: int,
        month: int,
        account_ids: Optional[list[int]] = None,
        today: Optional[date] = None,
    ) -> dict[Union[int, str], list[BalancePoint]]:
        period = clamp_to_today(month_period(year, month), today or local_today())
        return self.history(period.start, period.end, account_ids)
