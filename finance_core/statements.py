"""
Statement Reconciliation and Allocation Module

Assembles the obligations due on a credit card statement (real pending
charges plus installment dues of active plans that have no persisted line
yet) and allocates a repayment across the lines the payer selects,
producing the advance-balance movement that results.

Both engines are pure: they work on snapshots and return results. Persisting
the outcome is the caller's job (see services.StatementService).
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, List, Optional, Tuple, Union

from .billing import add_months
from .currency import ZERO, round_money, to_decimal


DEFAULT_INSTALLMENT_TEMPLATE = "{description} - installment {number} of {total}"


class LineStatus(Enum):
    """Statement line settlement status"""
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {LineStatus.PENDING: 0, LineStatus.PARTIAL: 1, LineStatus.PAID: 2}


class PlanStatus(Enum):
    """Installment plan lifecycle"""
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


def _as_date(value) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    return value


@dataclass(frozen=True)
class StatementLineItem:
    """
    One billable obligation on a credit card statement

    A line with a plan_id is a single installment due, never the original
    purchase. The amount is kept as stored; numeric_amount is None when the
    stored value is not a number.
    """
    id: str
    account_id: str
    description: str
    amount: Any
    transaction_date: date
    status: LineStatus = LineStatus.PENDING
    paid_amount: Decimal = ZERO
    transaction_id: Optional[str] = None
    plan_id: Optional[str] = None
    statement_month: Optional[str] = None
    currency: str = "INR"
    is_virtual: bool = False

    def __post_init__(self):
        if isinstance(self.status, str):
            object.__setattr__(self, 'status', LineStatus(self.status))
        if not isinstance(self.paid_amount, Decimal):
            object.__setattr__(self, 'paid_amount', to_decimal(self.paid_amount))

        if not self.id:
            raise ValueError("Statement line id cannot be empty")
        if self.paid_amount < ZERO:
            raise ValueError("Paid amount cannot be negative")

    @property
    def numeric_amount(self) -> Optional[Decimal]:
        try:
            return to_decimal(self.amount)
        except ValueError:
            return None

    @property
    def is_open(self) -> bool:
        return self.status in (LineStatus.PENDING, LineStatus.PARTIAL)

    @property
    def outstanding_amount(self) -> Optional[Decimal]:
        amount = self.numeric_amount
        if amount is None:
            return None
        return max(ZERO, amount - self.paid_amount)

    def settle(self, amount) -> 'StatementLineItem':
        """
        Apply a payment and return the updated line

        The status moves forward only: a fully covered line becomes paid, a
        partly covered one partial, and a paid line stays paid. Any excess
        over the line amount is not recorded.

        Raises:
            ValueError: If the payment or the line amount is not numeric
        """
        payment = to_decimal(amount)
        line_amount = self.numeric_amount
        if line_amount is None:
            raise ValueError(f"Statement line {self.id} has a non-numeric amount")

        # Never record more than the line is worth
        paid = min(self.paid_amount + payment, max(line_amount, ZERO))
        if paid >= line_amount:
            status = LineStatus.PAID
        elif paid > ZERO:
            status = LineStatus.PARTIAL
        else:
            status = LineStatus.PENDING

        if status.rank < self.status.rank:
            status = self.status

        return replace(self, paid_amount=round_money(paid), status=status, is_virtual=False)


@dataclass(frozen=True)
class InstallmentPlan:
    """A purchase converted into fixed monthly installments"""
    id: str
    account_id: str
    description: str
    total_installments: int
    monthly_emi: Decimal
    remaining_installments: int
    next_due_date: date
    transaction_id: Optional[str] = None     # originating purchase
    currency: str = "INR"
    status: PlanStatus = PlanStatus.ACTIVE
    bank_charges: Decimal = ZERO

    def __post_init__(self):
        if isinstance(self.status, str):
            object.__setattr__(self, 'status', PlanStatus(self.status))
        for name in ('monthly_emi', 'bank_charges'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, to_decimal(value))

        if self.total_installments <= 0:
            raise ValueError("Installment plan needs at least one installment")
        if not 0 <= self.remaining_installments <= self.total_installments:
            raise ValueError("Remaining installments must be between 0 and the total")
        if self.monthly_emi < ZERO:
            raise ValueError("Monthly installment cannot be negative")

        if self.remaining_installments == 0 and self.status == PlanStatus.ACTIVE:
            object.__setattr__(self, 'status', PlanStatus.COMPLETED)

    @classmethod
    def from_purchase(cls, id: str, account_id: str, description: str,
                      purchase_amount, months: int, first_due_date: date,
                      transaction_id: Optional[str] = None, bank_charges=ZERO,
                      currency: str = "INR") -> 'InstallmentPlan':
        """Convert a purchase: (purchase + bank charges) spread evenly over the months"""
        if months <= 0:
            raise ValueError("Installment plan needs at least one installment")
        purchase = to_decimal(purchase_amount)
        charges = to_decimal(bank_charges)
        if purchase <= ZERO:
            raise ValueError("Purchase amount must be positive")

        return cls(
            id=id,
            account_id=account_id,
            description=description,
            total_installments=months,
            monthly_emi=round_money((purchase + charges) / Decimal(months)),
            remaining_installments=months,
            next_due_date=first_due_date,
            transaction_id=transaction_id,
            currency=currency,
            bank_charges=charges
        )

    @property
    def is_active(self) -> bool:
        return self.status == PlanStatus.ACTIVE and self.remaining_installments > 0

    @property
    def installment_number(self) -> int:
        """Number of the next installment due (1-based)"""
        return self.total_installments - self.remaining_installments + 1

    @property
    def remaining_amount(self) -> Decimal:
        """Amount still to be billed over the remaining installments"""
        return round_money(self.monthly_emi * self.remaining_installments)

    def installment_description(self, template: str = DEFAULT_INSTALLMENT_TEMPLATE) -> str:
        return template.format(
            description=self.description,
            number=self.installment_number,
            total=self.total_installments
        )

    def installment_line_id(self) -> str:
        return f"emi:{self.id}:{self.installment_number}"

    def record_installment(self) -> 'InstallmentPlan':
        """Plan after one more installment is paid; a finished plan is unchanged"""
        if not self.is_active:
            return self
        return replace(
            self,
            remaining_installments=self.remaining_installments - 1,
            next_due_date=add_months(self.next_due_date, 1)
        )

    def cancel(self) -> 'InstallmentPlan':
        if self.status == PlanStatus.COMPLETED:
            return self
        return replace(self, status=PlanStatus.CANCELLED)


@dataclass(frozen=True)
class RealObligation:
    """Obligation backed by a persisted statement line"""
    line: StatementLineItem

    def to_line(self, template: str = DEFAULT_INSTALLMENT_TEMPLATE) -> StatementLineItem:
        return self.line


@dataclass(frozen=True)
class VirtualObligation:
    """Installment due that exists only in memory until it is paid"""
    plan: InstallmentPlan

    def to_line(self, template: str = DEFAULT_INSTALLMENT_TEMPLATE) -> StatementLineItem:
        plan = self.plan
        return StatementLineItem(
            id=plan.installment_line_id(),
            account_id=plan.account_id,
            description=plan.installment_description(template),
            amount=plan.monthly_emi,
            transaction_date=plan.next_due_date,
            status=LineStatus.PENDING,
            transaction_id=None,
            plan_id=plan.id,
            statement_month=plan.next_due_date.strftime('%Y-%m'),
            currency=plan.currency,
            is_virtual=True
        )


Obligation = Union[RealObligation, VirtualObligation]


@dataclass(frozen=True)
class PaymentAllocation:
    """Portion of a repayment applied to one statement line"""
    statement_line_id: str
    amount_paid: Decimal
    description: str
    transaction_id: Optional[str] = None
    plan_id: Optional[str] = None
    is_virtual: bool = False


@dataclass(frozen=True)
class AllocationWarning:
    """Data problem found while allocating; the line was left out"""
    message: str
    statement_line_id: Optional[str] = None


@dataclass(frozen=True)
class AllocationResult:
    """Outcome of allocating a repayment across selected lines"""
    repayment_amount: Decimal
    allocations: Tuple[PaymentAllocation, ...] = ()
    total_selected: Decimal = ZERO
    advance_created: Decimal = ZERO
    advance_used: Decimal = ZERO
    shortfall: Decimal = ZERO
    warnings: Tuple[AllocationWarning, ...] = field(default_factory=tuple)
    stale_ids: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def advance_delta(self) -> Decimal:
        """Net change to the advance balance"""
        return self.advance_created - self.advance_used

    @property
    def has_shortfall(self) -> bool:
        return self.shortfall > ZERO


def gather_due_items(
    account_id: str,
    period_end,
    active_plans: Iterable[InstallmentPlan],
    pending_lines: Iterable[StatementLineItem],
    prior_allocation_lines: Iterable[StatementLineItem] = (),
    description_template: str = DEFAULT_INSTALLMENT_TEMPLATE
) -> List[StatementLineItem]:
    """
    Obligations due on a statement, newest first

    Collects the account's open lines dated up to period_end, adds a virtual
    line for every active plan due by then that has no open line of its own,
    and adds the lines of an allocation being edited even if already paid.
    Lines merge by id (later sources win) and an original purchase never
    appears next to the installments it was converted into.

    Args:
        account_id: Credit card account
        period_end: Last date (inclusive) of the period, None for no bound
        active_plans: Installment plans of the account
        pending_lines: Stored lines for the account
        prior_allocation_lines: Lines of an allocation being edited
        description_template: Format for virtual line descriptions

    Returns:
        List of StatementLineItem sorted by transaction_date descending
    """
    period_end = _as_date(period_end)
    plans = [plan for plan in active_plans if plan.account_id == account_id]
    account_lines = [line for line in pending_lines if line.account_id == account_id and line.is_open]

    def within_period(moment) -> bool:
        return period_end is None or _as_date(moment) <= period_end

    open_lines = [line for line in account_lines if within_period(line.transaction_date)]

    converted_purchases = {plan.transaction_id for plan in plans if plan.transaction_id}

    # Any open line for a plan already stands in for that plan's next due
    materialized = {line.plan_id for line in account_lines if line.plan_id}

    obligations: List[Obligation] = [RealObligation(line) for line in open_lines]
    for plan in plans:
        if not plan.is_active or not within_period(plan.next_due_date):
            continue
        if plan.id in materialized:
            continue
        obligations.append(VirtualObligation(plan))
    obligations.extend(RealObligation(line) for line in prior_allocation_lines)

    merged = {}
    for obligation in obligations:
        line = obligation.to_line(description_template)
        merged.pop(line.id, None)
        merged[line.id] = line

    items = [
        line for line in merged.values()
        if line.plan_id or line.transaction_id not in converted_purchases
    ]
    items.sort(key=lambda line: _as_date(line.transaction_date), reverse=True)
    return items


def allocate(
    available_lines: Iterable[StatementLineItem],
    selected_ids: Iterable[str],
    repayment_amount,
    advance_balance
) -> AllocationResult:
    """
    Allocate a repayment across the selected statement lines

    Every selected line is paid off: an untouched line for its full amount,
    a partly paid line for the remainder. Lines already paid (offered while
    an allocation is edited) are skipped with a warning. A repayment above
    the selected total creates advance credit; below it, existing advance
    covers the gap and whatever it cannot cover is reported as shortfall.

    Args:
        available_lines: Lines offered to the payer
        selected_ids: Ids the payer picked; ids not offered are reported stale
        repayment_amount: Amount received
        advance_balance: Advance credit held before this repayment

    Returns:
        AllocationResult; a non-numeric or negative repayment allocates nothing
    """
    warnings = []

    try:
        repayment = to_decimal(repayment_amount)
    except ValueError:
        return AllocationResult(
            repayment_amount=ZERO,
            warnings=(AllocationWarning(f"Repayment amount {repayment_amount!r} is not numeric"),)
        )
    if repayment < ZERO:
        return AllocationResult(
            repayment_amount=round_money(repayment),
            warnings=(AllocationWarning(f"Repayment amount {repayment} is negative"),)
        )

    try:
        advance = max(ZERO, to_decimal(advance_balance))
    except ValueError:
        warnings.append(AllocationWarning(f"Advance balance {advance_balance!r} is not numeric; treated as 0"))
        advance = ZERO

    lines_by_id = {line.id: line for line in available_lines}

    allocations = []
    stale_ids = []
    seen = set()
    total = ZERO

    for line_id in selected_ids:
        if line_id in seen:
            continue
        seen.add(line_id)

        line = lines_by_id.get(line_id)
        if line is None:
            stale_ids.append(line_id)
            continue

        amount = line.numeric_amount
        if amount is None:
            warnings.append(AllocationWarning(
                f"Amount {line.amount!r} of '{line.description}' is not numeric; line skipped",
                statement_line_id=line.id
            ))
            continue

        if not line.is_open:
            warnings.append(AllocationWarning(
                f"'{line.description}' is already paid; line skipped",
                statement_line_id=line.id
            ))
            continue
        if line.paid_amount > ZERO:
            amount = max(ZERO, amount - line.paid_amount)

        total += amount
        allocations.append(PaymentAllocation(
            statement_line_id=line.id,
            amount_paid=round_money(amount),
            description=line.description,
            transaction_id=line.transaction_id,
            plan_id=line.plan_id,
            is_virtual=line.is_virtual
        ))

    advance_created = ZERO
    advance_used = ZERO
    shortfall = ZERO

    diff = repayment - total
    if diff > ZERO:
        advance_created = diff
    elif diff < ZERO:
        gap = -diff
        advance_used = min(advance, gap)
        shortfall = max(ZERO, gap - advance)

    return AllocationResult(
        repayment_amount=round_money(repayment),
        allocations=tuple(allocations),
        total_selected=round_money(total),
        advance_created=round_money(advance_created),
        advance_used=round_money(advance_used),
        shortfall=round_money(shortfall),
        warnings=tuple(warnings),
        stale_ids=tuple(stale_ids)
    )
