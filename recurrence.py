import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from config import get_settings
from models import Frequency, HolidayAction, RecurringRule, Transaction

logger = logging.getLogger(__name__)

FREQUENCY_MONTHS = {
    Frequency.monthly: 1,
    Frequency.every_2_months: 2,
    Frequency.every_3_months: 3,
    Frequency.every_6_months: 6,
    Frequency.yearly: 12,
}

# A rule left alone for fifty years of monthly occurrences still fits.
MAX_OCCURRENCES_PER_RUN = 600


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def clamped_date(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, days_in_month(year, month)))


def add_interval(base: date, frequency: Frequency, day: int) -> date:
    """Advance ``base`` by the rule's interval and pin the day-of-month.

    Short months clamp to their last day. The caller always passes the
    rule's own ``day``, so a clamped February does not pull March back.
    """
    total_months = base.month - 1 + FREQUENCY_MONTHS[frequency]
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return clamped_date(year, month, day)


def apply_holiday_shift(due: date, action: HolidayAction) -> date:
    if action == HolidayAction.none:
        return due
    weekday = due.weekday()
    if weekday < 5:
        return due
    if action == HolidayAction.before:
        return due - timedelta(days=1 if weekday == 5 else 2)
    return due + timedelta(days=2 if weekday == 5 else 1)


def initial_due_date(rule: RecurringRule, today: date) -> date:
    anchor = rule.created_on or today
    return clamped_date(anchor.year, anchor.month, rule.day)


@dataclass(frozen=True)
class Occurrence:
    rule_id: int
    due_date: date
    record_date: date
    next_due_date: date


@dataclass(frozen=True)
class RulePlan:
    rule_id: int
    occurrences: tuple[Occurrence, ...]
    next_due_date: Optional[date]


def _past_end(rule: RecurringRule, due: date) -> bool:
    return rule.end_date is not None and due > rule.end_date


def plan_rule(rule: RecurringRule, today: date) -> RulePlan:
    cursor = rule.next_due_date or initial_due_date(rule, today)
    occurrences: list[Occurrence] = []
    while (
        cursor <= today
        and not _past_end(rule, cursor)
        and len(occurrences) < MAX_OCCURRENCES_PER_RUN
    ):
        following = add_interval(cursor, rule.frequency, rule.day)
        occurrences.append(
            Occurrence(
                rule_id=rule.id,
                due_date=cursor,
                record_date=apply_holiday_shift(cursor, rule.holiday_action),
                next_due_date=following,
            )
        )
        cursor = following
    return RulePlan(rule.id, tuple(occurrences), cursor)


def process_due_occurrences(
    rules: Iterable[RecurringRule], today: date
) -> tuple[list[Occurrence], dict[int, Optional[date]]]:
    """Plan every rule without touching the store.

    Returns the occurrences to materialize, oldest first per rule, and the
    cursor each rule should end up with.
    """
    occurrences: list[Occurrence] = []
    cursors: dict[int, Optional[date]] = {}
    for rule in rules:
        plan = plan_rule(rule, today)
        occurrences.extend(plan.occurrences)
        cursors[rule.id] = plan.next_due_date
    return occurrences, cursors


class RecurringEngine:
    def __init__(self, session: Session, user_id: Optional[str] = None) -> None:
        self.session = session
        self.user_id = user_id

    def catch_up_rule(self, rule: RecurringRule, today: Optional[date] = None) -> int:
        from services import TransactionService

        today = today or local_today()
        plan = plan_rule(rule, today)
        service = TransactionService(self.session, rule.user_id)
        if not plan.occurrences:
            if rule.next_due_date != plan.next_due_date:
                rule.next_due_date = plan.next_due_date
                service.commit()
            return 0

        posted = 0
        for occurrence in plan.occurrences:
            try:
                if self._post_occurrence(service, rule, occurrence):
                    posted += 1
                rule.next_due_date = occurrence.next_due_date
                service.commit()
            except Exception:
                self.session.rollback()
                logger.exception(
                    f"recurring_rule_failed: rule_id={plan.rule_id} "
                    f"due_date={occurrence.due_date.isoformat()}"
                )
                break
        return posted

    def post_due_rules(self, today: Optional[date] = None) -> int:
        today = today or local_today()
        stmt = (
            select(RecurringRule)
            .where(
                RecurringRule.auto_post.is_(True),
                or_(
                    RecurringRule.next_due_date.is_(None),
                    RecurringRule.next_due_date <= today,
                ),
            )
            .order_by(RecurringRule.id)
        )
        if self.user_id is not None:
            stmt = stmt.where(RecurringRule.user_id == self.user_id)
        rules = self.session.scalars(stmt).all()
        count = 0
        for rule in rules:
            rule_id = rule.id
            try:
                posted = self.catch_up_rule(rule, today)
            except Exception:
                self.session.rollback()
                logger.exception(f"recurring_rule_failed: rule_id={rule_id}")
                continue
            if posted:
                logger.info(
                    f"recurring_rule_posted: rule_id={rule_id} occurrences={posted}"
                )
            count += posted
        return count

    def _post_occurrence(
        self, service, rule: RecurringRule, occurrence: Occurrence
    ) -> bool:
        from schemas import TransactionIn

        exists_stmt = (
            select(Transaction.id)
            .where(
                Transaction.user_id == rule.user_id,
                Transaction.origin_rule_id == rule.id,
                Transaction.occurrence_date == occurrence.due_date,
            )
            .limit(1)
        )
        existing = self.session.execute(exists_stmt).scalar_one_or_none()
        if existing:
            return False

        memo = get_settings().recurring_memo
        if rule.name:
            memo = f"{memo}: {rule.name}"
        service.prepare_create(
            TransactionIn(
                type="expense",
                date=occurrence.record_date,
                amount=rule.amount,
                memo=memo,
                category_id=rule.category_id,
                sub_category=rule.sub_category,
                source_account_id=rule.source_account_id,
            ),
            origin_rule_id=rule.id,
            occurrence_date=occurrence.due_date,
        )
        return True
