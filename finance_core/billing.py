"""
Billing Cycle Module

Derives credit card statement windows and payment due dates from
day-of-month anchors. A statement or due day past the end of a short month
resolves to that month's last day (day 31 in February is the 28th/29th).
"""

import calendar
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional

from .clock import Clock, SystemClock
from .config import FinanceCoreConfig, get_config
from .currency import ZERO, Currency, round_to_currency, to_decimal


END_OF_DAY = time(23, 59, 59)


def clamp_day(year: int, month: int, day: int) -> date:
    """Date for the day in the given month, clamped into the month's range"""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(max(day, 1), last_day))


def add_months(value: date, months: int) -> date:
    """Shift a date by whole months (negative allowed), clamping the day"""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    return clamp_day(year, month, value.day)


class DueStatus(Enum):
    """Payment urgency relative to a due date"""
    OVERDUE = "overdue"
    DUE_SOON = "due_soon"
    NOT_DUE = "not_due"


@dataclass(frozen=True)
class BillingCycle:
    """Active billing cycle; both ends inclusive"""
    cycle_start: datetime
    cycle_end: datetime
    statement_date: datetime

    def contains(self, moment) -> bool:
        if not isinstance(moment, datetime):
            moment = datetime.combine(moment, time.min)
        return self.cycle_start <= moment <= self.cycle_end


@dataclass(frozen=True)
class StatementWindow:
    """Statement a transaction is billed on and when that statement is due"""
    statement_date: date
    due_date: date

    @property
    def statement_month(self) -> str:
        return self.statement_date.strftime('%Y-%m')


def _due_date_for_statement(statement_date: date, statement_day: int, due_day: int) -> date:
    # Due day before the statement day means the due date falls in the following month
    if due_day >= statement_day:
        return clamp_day(statement_date.year, statement_date.month, due_day)
    following = add_months(date(statement_date.year, statement_date.month, 1), 1)
    return clamp_day(following.year, following.month, due_day)


class BillingCycleCalculator:
    """
    Statement and due date arithmetic against an injected clock

    All "today" comparisons use calendar dates, so the time of day never
    shifts a result by one.
    """

    def __init__(self, clock: Optional[Clock] = None, settings: Optional[FinanceCoreConfig] = None):
        self.clock = clock or SystemClock()
        self.settings = settings or get_config()

    def current_cycle(self, statement_day: int) -> BillingCycle:
        """
        Billing cycle containing today

        Before this month's statement day the cycle runs from the day after
        last month's statement day up to this month's; from the statement day
        on it runs to next month's.
        """
        today = self.clock.today()
        this_statement = clamp_day(today.year, today.month, statement_day)
        month_start = date(today.year, today.month, 1)

        if today.day < this_statement.day:
            previous = add_months(month_start, -1)
            start_statement = clamp_day(previous.year, previous.month, statement_day)
            end_statement = this_statement
        else:
            following = add_months(month_start, 1)
            start_statement = this_statement
            end_statement = clamp_day(following.year, following.month, statement_day)

        cycle_start = datetime.combine(start_statement + timedelta(days=1), time.min)
        cycle_end = datetime.combine(end_statement, END_OF_DAY)
        return BillingCycle(cycle_start=cycle_start, cycle_end=cycle_end, statement_date=cycle_end)

    def in_current_cycle(self, moment, statement_day: int) -> bool:
        """True if the date or datetime falls inside the current cycle"""
        return self.current_cycle(statement_day).contains(moment)

    def next_due_date(self, statement_day: int, due_day: int) -> date:
        """This month's due date until it has passed, then next month's"""
        today = self.clock.today()
        this_due = clamp_day(today.year, today.month, due_day)
        if today <= this_due:
            return this_due
        following = add_months(date(today.year, today.month, 1), 1)
        return clamp_day(following.year, following.month, due_day)

    def days_until_due(self, statement_day: int, due_day: int) -> int:
        """Whole days from today to the next due date"""
        return (self.next_due_date(statement_day, due_day) - self.clock.today()).days

    def is_overdue(self, statement_day: int, due_day: int) -> bool:
        """
        True when the next due date lies in the past

        next_due_date never returns a past date, so this only turns true if
        the clock moves between the two reads. Use is_due_date_passed for the
        statement currently due.
        """
        return self.days_until_due(statement_day, due_day) < 0

    def current_statement_date(self, statement_day: int) -> date:
        """Date of the latest statement generated on or before today"""
        today = self.clock.today()
        this_statement = clamp_day(today.year, today.month, statement_day)
        if today >= this_statement:
            return this_statement
        previous = add_months(date(today.year, today.month, 1), -1)
        return clamp_day(previous.year, previous.month, statement_day)

    def statement_due_date(self, statement_day: int, due_day: int) -> date:
        """Due date of the statement currently awaiting payment"""
        statement_date = self.current_statement_date(statement_day)
        return _due_date_for_statement(statement_date, statement_day, due_day)

    def is_due_date_passed(self, statement_day: int, due_day: int) -> bool:
        return self.clock.today() > self.statement_due_date(statement_day, due_day)

    def statement_month(self, statement_day: int) -> str:
        """YYYY-MM of the statement currently awaiting payment"""
        return self.current_statement_date(statement_day).strftime('%Y-%m')

    def statement_window_for(self, transaction_date, statement_day: int, due_day: int) -> StatementWindow:
        """
        Statement a transaction lands on

        Transactions before the month's statement day go on that month's
        statement; on or after it, on the next month's.
        """
        if isinstance(transaction_date, datetime):
            transaction_date = transaction_date.date()

        this_statement = clamp_day(transaction_date.year, transaction_date.month, statement_day)
        if transaction_date >= this_statement:
            following = add_months(date(transaction_date.year, transaction_date.month, 1), 1)
            statement_date = clamp_day(following.year, following.month, statement_day)
        else:
            statement_date = this_statement

        return StatementWindow(
            statement_date=statement_date,
            due_date=_due_date_for_statement(statement_date, statement_day, due_day)
        )

    def due_status(self, due_date: Optional[date]) -> DueStatus:
        """Overdue once the due date has passed, due soon within the configured window"""
        if due_date is None:
            return DueStatus.NOT_DUE
        if isinstance(due_date, datetime):
            due_date = due_date.date()

        today = self.clock.today()
        if today > due_date:
            return DueStatus.OVERDUE
        if (due_date - today).days <= self.settings.due_soon_days:
            return DueStatus.DUE_SOON
        return DueStatus.NOT_DUE


def minimum_due(total_due, currency: str = "INR", settings: Optional[FinanceCoreConfig] = None) -> Decimal:
    """
    Minimum payment for a statement

    A percentage of the total with an absolute floor per currency; a total
    below the floor is due in full.

    Args:
        total_due: Statement total
        currency: ISO currency code
        settings: Configuration holding the rate and floors

    Returns:
        Minimum amount due, 0 for a non-positive or non-numeric total
    """
    settings = settings or get_config()
    try:
        total = to_decimal(total_due)
    except ValueError:
        return ZERO

    if total <= ZERO:
        return ZERO

    try:
        currency_type = Currency.from_code(currency)
    except ValueError:
        currency_type = Currency.from_code(settings.default_currency)

    if currency_type == Currency.USD:
        floor = Decimal(settings.minimum_due_floor_usd)
    else:
        floor = Decimal(settings.minimum_due_floor_inr)

    if total < floor:
        return round_to_currency(total, currency_type)

    percentage_based = total * Decimal(settings.minimum_due_rate)
    return round_to_currency(max(percentage_based, floor), currency_type)
