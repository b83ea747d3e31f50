"""
Amortization Module

Computes EMIs and splits each installment payment into principal and interest
using the rate(s) in force across the exact days the payment covers. Handles
floating-rate histories, payments made ahead of the due date, projected
schedules, and actual-vs-projected comparison.

Rounding to 2 decimal places happens only on the values a public function
returns; intermediate sums keep full Decimal precision.
"""

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Iterable, List, Optional, Union

from .billing import add_months, clamp_day
from .currency import ZERO, round_money, to_decimal
from .rates import RateChangeRecord, RateHistory


HUNDRED = Decimal('100')
TWELVE = Decimal('12')

RateHistoryLike = Union[RateHistory, Iterable[RateChangeRecord], None]


class DayCountBasis(Enum):
    """Day count conventions for accruing interest"""
    ACTUAL_365 = "actual_365"    # Actual days / 365
    THIRTY_360 = "thirty_360"    # 30-day months / 360

    @property
    def year_days(self) -> Decimal:
        return Decimal('360') if self == DayCountBasis.THIRTY_360 else Decimal('365')

    def days_between(self, start: date, end: date) -> int:
        """Number of accrual days from start (inclusive) to end (exclusive)"""
        if self == DayCountBasis.ACTUAL_365:
            return (end - start).days

        # 30/360 bond basis
        start_day = min(start.day, 30)
        end_day = end.day
        if start_day == 30 and end_day == 31:
            end_day = 30
        return (
            360 * (end.year - start.year)
            + 30 * (end.month - start.month)
            + (end_day - start_day)
        )


class InstallmentStatus(Enum):
    """Status of a projected installment against actual payments"""
    PAID = "paid"
    PENDING = "pending"
    OVERDUE = "overdue"


@dataclass(frozen=True)
class LoanTerms:
    """Loan terms fixed at origination"""
    principal: Decimal
    tenure_months: int
    start_date: date
    due_day_of_month: int               # 1-31, clamped to each month's length
    opening_annual_rate: Decimal        # percent, e.g. Decimal('9.5')
    account_id: Optional[str] = None

    def __post_init__(self):
        for name in ('principal', 'opening_annual_rate'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, to_decimal(value))

        if self.principal <= ZERO:
            raise ValueError("Loan principal must be positive")
        if self.tenure_months <= 0:
            raise ValueError("Loan tenure must be at least one month")
        if not 1 <= self.due_day_of_month <= 31:
            raise ValueError("Due day of month must be between 1 and 31")
        if self.opening_annual_rate < ZERO:
            raise ValueError("Opening interest rate cannot be negative")

    @property
    def emi(self) -> Decimal:
        """Installment at the opening rate"""
        return compute_emi(self.principal, self.opening_annual_rate, self.tenure_months)

    @property
    def maturity_date(self) -> date:
        return self.due_date_for(self.tenure_months)

    def due_date_for(self, installment_number: int) -> date:
        """Due date of the n-th installment (1-based), one month apart from the start month"""
        month_start = add_months(date(self.start_date.year, self.start_date.month, 1), installment_number)
        return clamp_day(month_start.year, month_start.month, self.due_day_of_month)

    def with_changes(self, **changes) -> 'LoanTerms':
        """Return new terms; restructuring never edits the original"""
        return replace(self, **changes)


@dataclass(frozen=True)
class ScheduledPayment:
    """A payment date and amount to be split"""
    payment_date: date
    emi_amount: Decimal


@dataclass(frozen=True)
class PaymentBreakdown:
    """Principal/interest split of one payment"""
    principal_component: Decimal
    interest_component: Decimal
    new_outstanding: Decimal

    @classmethod
    def zero(cls) -> 'PaymentBreakdown':
        return cls(ZERO, ZERO, ZERO)

    @property
    def is_zero(self) -> bool:
        return (self.principal_component == ZERO
                and self.interest_component == ZERO
                and self.new_outstanding == ZERO)


@dataclass(frozen=True)
class InstallmentPayment:
    """Single installment in a loan's payment history or projection"""
    sequence_number: int
    payment_date: date
    emi_amount: Decimal
    principal_component: Decimal
    interest_component: Decimal
    outstanding_principal_after: Decimal
    account_id: Optional[str] = None
    id: Optional[str] = None

    def __post_init__(self):
        if self.sequence_number < 1:
            raise ValueError("Sequence numbers start at 1")

        # A payment against a settled loan carries no components at all
        if self.principal_component == ZERO and self.interest_component == ZERO:
            return

        calculated = self.principal_component + self.interest_component
        if abs(calculated - self.emi_amount) > Decimal('0.01'):
            raise ValueError(
                f"EMI {self.emi_amount} does not equal principal "
                f"{self.principal_component} + interest {self.interest_component}"
            )


@dataclass(frozen=True)
class ScheduleComparisonRow:
    """Projected installment next to the actual payment with the same number"""
    sequence_number: int
    projected: InstallmentPayment
    actual: Optional[InstallmentPayment]
    status: InstallmentStatus

    @property
    def emi_variance(self) -> Optional[Decimal]:
        if self.actual is None:
            return None
        return self.actual.emi_amount - self.projected.emi_amount

    @property
    def principal_variance(self) -> Optional[Decimal]:
        if self.actual is None:
            return None
        return self.actual.principal_component - self.projected.principal_component

    @property
    def interest_variance(self) -> Optional[Decimal]:
        if self.actual is None:
            return None
        return self.actual.interest_component - self.projected.interest_component


@dataclass(frozen=True)
class PaymentSummary:
    """Totals over a payment history"""
    installments_made: int
    total_paid: Decimal
    principal_paid: Decimal
    interest_paid: Decimal
    outstanding_principal: Decimal


def compute_emi(principal, annual_rate_percent, tenure_months: int) -> Decimal:
    """
    Calculate the reducing-balance installment

    Standard formula: P * r * (1+r)^n / ((1+r)^n - 1), with r the monthly
    rate (annual percent / 12 / 100) and n the tenure in months.

    Args:
        principal: Amount borrowed
        annual_rate_percent: Annual rate in percent
        tenure_months: Number of monthly installments

    Returns:
        EMI rounded half-up to 2 places, or 0 when the inputs are incomplete
        (non-positive principal or tenure, negative rate)
    """
    try:
        principal = to_decimal(principal)
        annual_rate = to_decimal(annual_rate_percent)
    except ValueError:
        return ZERO

    if principal <= ZERO or annual_rate < ZERO or tenure_months <= 0:
        return ZERO

    if annual_rate == ZERO:
        return round_money(principal / Decimal(tenure_months))

    monthly_rate = annual_rate / TWELVE / HUNDRED
    factor = (Decimal('1') + monthly_rate) ** tenure_months
    emi = principal * monthly_rate * factor / (factor - Decimal('1'))
    return round_money(emi)


def interest_for_period(
    start: date,
    end: date,
    principal: Decimal,
    rate_history: RateHistoryLike,
    fallback_rate: Decimal = ZERO,
    basis: DayCountBasis = DayCountBasis.ACTUAL_365
) -> Decimal:
    """
    Simple interest on a constant principal, split at every rate change

    Each sub-period accrues principal * rate * days / (year_days * 100) at
    the rate in force on its first day. Returned unrounded.
    """
    if end <= start:
        return ZERO

    history = RateHistory.coerce(rate_history)
    fallback_rate = to_decimal(fallback_rate)

    total = ZERO
    period_start = start
    for boundary in history.boundaries_between(start, end) + [end]:
        days = basis.days_between(period_start, boundary)
        rate = history.rate_at(period_start, fallback_rate)
        total += principal * rate * Decimal(days) / (basis.year_days * HUNDRED)
        period_start = boundary

    return total


def due_date_after(reference_date: date, due_day_of_month: int) -> date:
    """First clamped due date strictly after the reference date"""
    candidate = clamp_day(reference_date.year, reference_date.month, due_day_of_month)
    if candidate <= reference_date:
        next_month = add_months(date(reference_date.year, reference_date.month, 1), 1)
        candidate = clamp_day(next_month.year, next_month.month, due_day_of_month)
    return candidate


def breakdown_for_payment(
    reference_date: date,
    payment_date: date,
    outstanding_principal,
    emi_amount,
    rate_history: RateHistoryLike = None,
    due_day_of_month: Optional[int] = None,
    fallback_rate=ZERO,
    basis: DayCountBasis = DayCountBasis.ACTUAL_365
) -> PaymentBreakdown:
    """
    Split one payment into principal and interest

    Interest accrues from the reference date (previous payment, or loan start)
    to the payment date on the outstanding principal, split at every rate
    change in between.

    When a due day is given and the payment lands before the next due date,
    the accrual runs in two legs: up to the payment date on the full
    principal, then from the payment date to the due date on the principal
    reduced by a provisional principal estimate (EMI minus leg-one interest).
    The estimate is taken once and not iterated, so the result is an
    approximation that slightly favours early payers.

    Args:
        reference_date: Previous payment date, or the loan start date
        payment_date: Date of this payment
        outstanding_principal: Principal outstanding before the payment
        emi_amount: Amount paid
        rate_history: Rate change records for the loan
        due_day_of_month: Enables the early-payment split when given
        fallback_rate: Rate used before the first recorded change
        basis: Day count convention

    Returns:
        PaymentBreakdown, all zero when outstanding or EMI is not positive
    """
    try:
        outstanding = to_decimal(outstanding_principal)
        emi = to_decimal(emi_amount)
        fallback = to_decimal(fallback_rate)
    except ValueError:
        return PaymentBreakdown.zero()

    if outstanding <= ZERO or emi <= ZERO:
        return PaymentBreakdown.zero()

    history = RateHistory.coerce(rate_history)

    due_date = None
    if due_day_of_month:
        due_date = due_date_after(reference_date, due_day_of_month)

    if due_date is not None and payment_date < due_date:
        leg_one = interest_for_period(reference_date, payment_date, outstanding, history, fallback, basis)
        provisional_principal = emi - leg_one
        reduced_principal = max(ZERO, outstanding - provisional_principal)
        leg_two = interest_for_period(payment_date, due_date, reduced_principal, history, fallback, basis)
        total_interest = leg_one + leg_two
    else:
        total_interest = interest_for_period(reference_date, payment_date, outstanding, history, fallback, basis)

    interest_component = round_money(total_interest)
    principal_component = round_money(emi) - interest_component
    new_outstanding = max(ZERO, round_money(outstanding - principal_component))

    return PaymentBreakdown(
        principal_component=principal_component,
        interest_component=interest_component,
        new_outstanding=new_outstanding
    )


def generate_schedule(
    loan_start: date,
    principal,
    payments: Iterable,
    rate_history: RateHistoryLike = None,
    due_day_of_month: Optional[int] = None,
    fallback_rate=ZERO,
    basis: DayCountBasis = DayCountBasis.ACTUAL_365,
    settle_final: bool = False,
    account_id: Optional[str] = None
) -> List[InstallmentPayment]:
    """
    Fold payment breakdowns across a loan's payments

    Args:
        loan_start: Loan start date, the reference for the first payment
        principal: Original principal
        payments: Objects with payment_date and emi_amount (ScheduledPayment,
            stored InstallmentPayment records, ...), taken in date order
        rate_history: Rate change records
        due_day_of_month: Enables the early-payment split
        fallback_rate: Opening rate used before the first recorded change
        basis: Day count convention
        settle_final: Make the last installment clear the remaining principal
        account_id: Stamped on the generated records

    Returns:
        List of InstallmentPayment objects numbered from 1
    """
    history = RateHistory.coerce(rate_history)
    ordered = sorted(payments, key=lambda p: p.payment_date)

    schedule = []
    try:
        outstanding = to_decimal(principal)
    except ValueError:
        return schedule

    reference_date = loan_start
    last_index = len(ordered) - 1

    for index, payment in enumerate(ordered):
        emi = round_money(to_decimal(payment.emi_amount))
        breakdown = breakdown_for_payment(
            reference_date,
            payment.payment_date,
            outstanding,
            emi,
            history,
            due_day_of_month,
            fallback_rate,
            basis
        )

        principal_component = breakdown.principal_component
        interest_component = breakdown.interest_component

        if breakdown.is_zero:
            # Nothing to split: the balance carries over untouched
            outstanding_after = max(ZERO, outstanding)
        elif settle_final and index == last_index:
            principal_component = round_money(outstanding)
            emi = principal_component + interest_component
            outstanding_after = ZERO
        else:
            outstanding_after = breakdown.new_outstanding

        schedule.append(InstallmentPayment(
            sequence_number=index + 1,
            payment_date=payment.payment_date,
            emi_amount=emi,
            principal_component=principal_component,
            interest_component=interest_component,
            outstanding_principal_after=outstanding_after,
            account_id=account_id
        ))

        outstanding = outstanding_after
        reference_date = payment.payment_date

    return schedule


def projected_payment_dates(terms: LoanTerms) -> List[date]:
    """One due date per month of the tenure"""
    return [terms.due_date_for(n) for n in range(1, terms.tenure_months + 1)]


def project_schedule(
    terms: LoanTerms,
    rate_history: RateHistoryLike = None,
    basis: DayCountBasis = DayCountBasis.ACTUAL_365,
    settle_final: bool = True
) -> List[InstallmentPayment]:
    """
    Theoretical schedule: the opening-rate EMI paid on every due date

    Rate changes in the history still change the interest split, so a
    floating-rate loan projects a non-zero closing balance unless the final
    installment settles it.
    """
    emi = terms.emi
    payments = [ScheduledPayment(payment_date=d, emi_amount=emi) for d in projected_payment_dates(terms)]
    return generate_schedule(
        loan_start=terms.start_date,
        principal=terms.principal,
        payments=payments,
        rate_history=rate_history,
        due_day_of_month=terms.due_day_of_month,
        fallback_rate=terms.opening_annual_rate,
        basis=basis,
        settle_final=settle_final,
        account_id=terms.account_id
    )


def compare_schedules(
    projected: Iterable[InstallmentPayment],
    actual: Iterable[InstallmentPayment],
    today: date
) -> List[ScheduleComparisonRow]:
    """
    Line up projected installments with actual payments by sequence number

    A projected installment with a matching payment is PAID; otherwise it is
    OVERDUE once its date has passed, PENDING before that.
    """
    actual_by_number = {}
    for payment in actual:
        actual_by_number[payment.sequence_number] = payment

    rows = []
    for entry in sorted(projected, key=lambda p: p.sequence_number):
        match = actual_by_number.get(entry.sequence_number)
        if match is not None:
            status = InstallmentStatus.PAID
        elif entry.payment_date < today:
            status = InstallmentStatus.OVERDUE
        else:
            status = InstallmentStatus.PENDING

        rows.append(ScheduleComparisonRow(
            sequence_number=entry.sequence_number,
            projected=entry,
            actual=match,
            status=status
        ))

    return rows


def total_interest(principal, emi, tenure_months: int) -> Decimal:
    """Interest payable over the full tenure at a constant EMI"""
    try:
        principal = to_decimal(principal)
        emi = to_decimal(emi)
    except ValueError:
        return ZERO
    if tenure_months <= 0:
        return ZERO
    return round_money(emi * tenure_months - principal)


def remaining_tenure(principal, current_balance, tenure_months: int) -> int:
    """Months left, pro rata to the share of principal already repaid"""
    try:
        principal = to_decimal(principal)
        current_balance = to_decimal(current_balance)
    except ValueError:
        return 0

    if principal <= ZERO or current_balance <= ZERO:
        return 0

    paid_share = (principal - current_balance) / principal
    months_paid = int(Decimal(tenure_months) * paid_share)
    return max(0, tenure_months - months_paid)


def summarize_payments(payments: Iterable[InstallmentPayment], principal=None) -> PaymentSummary:
    """Totals of what has been paid so far and what remains"""
    ordered = sorted(payments, key=lambda p: p.sequence_number)

    total_paid = sum((p.emi_amount for p in ordered), ZERO)
    principal_paid = sum((p.principal_component for p in ordered), ZERO)
    interest_paid = sum((p.interest_component for p in ordered), ZERO)

    if ordered:
        outstanding = ordered[-1].outstanding_principal_after
    elif principal is not None:
        outstanding = to_decimal(principal)
    else:
        outstanding = ZERO

    return PaymentSummary(
        installments_made=len(ordered),
        total_paid=round_money(total_paid),
        principal_paid=round_money(principal_paid),
        interest_paid=round_money(interest_paid),
        outstanding_principal=round_money(outstanding)
    )
