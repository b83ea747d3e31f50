"""
Interest Accrual Module

Daily interest accrual for loan accounts whose balance moves during the
period (disbursements, part-payments), and the monthly posting rule.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from .billing import clamp_day
from .currency import ZERO, round_money, to_decimal
from .rates import RateHistory


DAYS_IN_YEAR = Decimal('365')
HUNDRED = Decimal('100')


@dataclass(frozen=True)
class BalanceChange:
    """Signed change to a loan balance, applied at the end of its day"""
    change_date: date
    amount: Decimal     # negative for repayments, positive for charges

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', to_decimal(self.amount))


def accrue_interest(
    start: date,
    end: date,
    opening_balance,
    balance_changes: Iterable[BalanceChange] = (),
    rate_history=None,
    fallback_rate=ZERO
) -> Decimal:
    """
    Accrue simple interest one day at a time

    Every day from start to end (both inclusive) accrues
    balance * rate / (365 * 100) at the rate in force that day. Changes
    dated on a day move the balance after that day's accrual.

    Args:
        start: First accrual day
        end: Last accrual day
        opening_balance: Balance at the start of the first day
        balance_changes: Movements during the period
        rate_history: Rate change records for the loan
        fallback_rate: Rate before the first recorded change

    Returns:
        Accrued interest rounded to 2 places; 0 for an empty period
    """
    if end < start:
        return ZERO

    try:
        balance = to_decimal(opening_balance)
        fallback = to_decimal(fallback_rate)
    except ValueError:
        return ZERO

    history = RateHistory.coerce(rate_history)

    changes_by_day = defaultdict(lambda: ZERO)
    for change in balance_changes:
        changes_by_day[change.change_date] += change.amount

    total = ZERO
    current = start
    while current <= end:
        rate = history.rate_at(current, fallback)
        total += balance * rate / (DAYS_IN_YEAR * HUNDRED)
        balance += changes_by_day.get(current, ZERO)
        current += timedelta(days=1)

    return round_money(total)


def should_post_interest(due_day: int, last_posting_date: Optional[date], today: date) -> bool:
    """Interest posts once a month, on the (clamped) due day"""
    if not due_day:
        return False

    if today != clamp_day(today.year, today.month, due_day):
        return False

    if last_posting_date is not None:
        if (last_posting_date.year, last_posting_date.month) == (today.year, today.month):
            return False

    return True
