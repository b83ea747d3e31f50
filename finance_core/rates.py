"""
Interest Rate History Module

Resolves the annual rate in force on any calendar date from a loan's
append-only history of rate changes. Floating-rate loans accumulate one
record per change; a fixed-rate loan simply has an empty history and
falls back to its opening rate.
"""

from bisect import bisect_right
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple, Union


@dataclass(frozen=True)
class RateChangeRecord:
    """A change of annual rate (percent) effective from a date"""
    account_id: str
    annual_rate: Decimal        # e.g., Decimal('8.5') for 8.5% p.a.
    effective_date: date
    id: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.annual_rate, Decimal):
            object.__setattr__(self, 'annual_rate', Decimal(str(self.annual_rate)))

        if self.annual_rate < Decimal('0'):
            raise ValueError("Annual interest rate cannot be negative")


class RateHistory:
    """
    Rate change records ordered by effective date

    Records with equal effective dates keep their insertion order, so the
    last inserted one wins when resolving a rate.
    """

    def __init__(self, records: Iterable[RateChangeRecord] = ()):
        # sorted() is stable: ties stay in insertion order
        self._records: Tuple[RateChangeRecord, ...] = tuple(
            sorted(records, key=lambda r: r.effective_date)
        )
        self._dates: List[date] = [r.effective_date for r in self._records]

    @classmethod
    def from_records(cls, records: Iterable[RateChangeRecord]) -> 'RateHistory':
        return cls(records)

    @classmethod
    def coerce(cls, history: Union['RateHistory', Iterable[RateChangeRecord], None]) -> 'RateHistory':
        """Accept a RateHistory, any iterable of records, or None"""
        if isinstance(history, RateHistory):
            return history
        if history is None:
            return cls()
        return cls(history)

    @property
    def records(self) -> Tuple[RateChangeRecord, ...]:
        return self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self):
        return iter(self._records)

    def __bool__(self) -> bool:
        return bool(self._records)

    def add(self, record: RateChangeRecord) -> 'RateHistory':
        """
        Return a new history including the record

        Raises:
            ValueError: If the account already has a change on that date
        """
        for existing in self._records:
            if (existing.account_id == record.account_id
                    and existing.effective_date == record.effective_date):
                raise ValueError(
                    f"Rate change for account {record.account_id} effective "
                    f"{record.effective_date.isoformat()} already exists"
                )
        return RateHistory(self._records + (record,))

    def rate_at(self, on_date: date, fallback_rate: Decimal) -> Decimal:
        """Rate in force on the date, or the fallback when none applies yet"""
        index = bisect_right(self._dates, on_date)
        if index == 0:
            return fallback_rate
        return self._records[index - 1].annual_rate

    def boundaries_between(self, start: date, end: date) -> List[date]:
        """Distinct effective dates strictly after start and strictly before end"""
        boundaries = []
        for effective in self._dates:
            if start < effective < end and (not boundaries or boundaries[-1] != effective):
                boundaries.append(effective)
        return boundaries

    def opening_rate(self, fallback_rate: Decimal) -> Decimal:
        """Earliest recorded rate, used to price a loan at origination"""
        if not self._records:
            return fallback_rate
        return self._records[0].annual_rate

    def current_rate(self, fallback_rate: Decimal) -> Decimal:
        """Most recent recorded rate"""
        if not self._records:
            return fallback_rate
        return self._records[-1].annual_rate


def rate_at(
    history: Union[RateHistory, Iterable[RateChangeRecord], None],
    on_date: date,
    fallback_rate: Decimal
) -> Decimal:
    """
    Annual rate (percent) in force on a date

    Args:
        history: Rate change records, in any order
        on_date: Date to resolve
        fallback_rate: Loan's opening/current rate, used when no record applies

    Returns:
        Rate of the latest record effective on or before the date
    """
    return RateHistory.coerce(history).rate_at(on_date, fallback_rate)
