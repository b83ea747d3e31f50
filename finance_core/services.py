"""
Services Module

Orchestrates the pure engines against a ledger store: recording loan rate
changes and installment payments, converting purchases to installment
plans, and preparing and confirming statement repayments.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional

from .accrual import accrue_interest
from .amortization import (
    DayCountBasis, InstallmentPayment, LoanTerms, ScheduleComparisonRow,
    breakdown_for_payment, compare_schedules, generate_schedule, project_schedule
)
from .billing import BillingCycleCalculator, DueStatus, minimum_due
from .clock import Clock, SystemClock
from .config import FinanceCoreConfig, get_config
from .credit import total_installment_exposure
from .currency import ZERO, round_money, to_decimal
from .logging_config import get_logger, log_action
from .rates import RateChangeRecord, RateHistory
from .statements import (
    AllocationResult, InstallmentPlan, LineStatus, PaymentAllocation,
    StatementLineItem, VirtualObligation, allocate, gather_due_items
)
from .store import LedgerStore


@dataclass(frozen=True)
class StatementSummary:
    """Amounts due on the statement currently awaiting payment"""
    account_id: str
    statement_month: str
    due_date: date
    total_due: Decimal
    minimum_due: Decimal
    advance_balance: Decimal
    net_due: Decimal
    due_status: DueStatus


class LoanService:
    """
    Records rate changes and installment payments for loan accounts
    """

    def __init__(
        self,
        store: LedgerStore,
        clock: Optional[Clock] = None,
        settings: Optional[FinanceCoreConfig] = None
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.settings = settings or get_config()
        self.basis = DayCountBasis(self.settings.day_count_basis)
        self.logger = get_logger("finance_core.loans")

    def record_rate_change(self, account_id: str, annual_rate, effective_date: date) -> RateChangeRecord:
        """
        Append a rate change to a loan's history

        Raises:
            ValueError: If the rate is negative or the account already has a
                change on that date
        """
        record = RateChangeRecord(
            account_id=account_id,
            annual_rate=to_decimal(annual_rate),
            effective_date=effective_date
        )
        record = self.store.append_rate_change(record)

        log_action(
            self.logger, "info",
            f"Rate changed to {record.annual_rate}% effective {effective_date.isoformat()}",
            account_id=account_id,
            action="rate_change",
            resource="rate_history",
            extra={"rate_change_id": record.id}
        )
        return record

    def rate_history(self, account_id: str) -> RateHistory:
        return RateHistory.from_records(self.store.get_rate_changes(account_id))

    def record_installment_payment(
        self,
        terms: LoanTerms,
        payment_date: Optional[date] = None,
        emi_amount=None
    ) -> InstallmentPayment:
        """
        Split a payment against the loan's last recorded payment and store it

        Args:
            terms: Loan terms (must carry an account_id)
            payment_date: Date of payment (defaults to today)
            emi_amount: Amount paid (defaults to the EMI)

        Returns:
            Stored InstallmentPayment

        Raises:
            ValueError: If the loan is already repaid, or the payment predates
                the last recorded one
        """
        if not terms.account_id:
            raise ValueError("Loan terms need an account_id to record payments")
        if payment_date is None:
            payment_date = self.clock.today()
        emi = terms.emi if emi_amount is None else to_decimal(emi_amount)

        with self.store.atomic():
            history = self.store.get_installment_payments(terms.account_id)
            if history:
                last = history[-1]
                reference_date = last.payment_date
                outstanding = last.outstanding_principal_after
                sequence_number = last.sequence_number + 1
            else:
                reference_date = terms.start_date
                outstanding = terms.principal
                sequence_number = 1

            if outstanding <= ZERO:
                raise ValueError(f"Loan {terms.account_id} is already repaid")
            if payment_date < reference_date:
                raise ValueError(
                    f"Payment date {payment_date.isoformat()} precedes the last recorded "
                    f"date {reference_date.isoformat()}"
                )

            breakdown = breakdown_for_payment(
                reference_date,
                payment_date,
                outstanding,
                emi,
                self.rate_history(terms.account_id),
                terms.due_day_of_month,
                terms.opening_annual_rate,
                self.basis
            )

            payment = self.store.append_installment_payment(InstallmentPayment(
                sequence_number=sequence_number,
                payment_date=payment_date,
                emi_amount=round_money(emi),
                principal_component=breakdown.principal_component,
                interest_component=breakdown.interest_component,
                outstanding_principal_after=breakdown.new_outstanding,
                account_id=terms.account_id
            ))

        log_action(
            self.logger, "info",
            f"Installment {sequence_number} recorded",
            account_id=terms.account_id,
            action="installment_payment",
            resource="loan",
            extra={
                "payment_id": payment.id,
                "emi_amount": str(payment.emi_amount),
                "principal_component": str(payment.principal_component),
                "interest_component": str(payment.interest_component),
                "outstanding_principal": str(payment.outstanding_principal_after)
            }
        )
        return payment

    def payment_history(self, terms: LoanTerms) -> List[InstallmentPayment]:
        """Stored payments re-split against the current rate history"""
        return generate_schedule(
            loan_start=terms.start_date,
            principal=terms.principal,
            payments=self.store.get_installment_payments(terms.account_id),
            rate_history=self.rate_history(terms.account_id),
            due_day_of_month=terms.due_day_of_month,
            fallback_rate=terms.opening_annual_rate,
            basis=self.basis,
            account_id=terms.account_id
        )

    def projected_schedule(self, terms: LoanTerms) -> List[InstallmentPayment]:
        return project_schedule(terms, self.rate_history(terms.account_id), self.basis)

    def compare_to_projection(self, terms: LoanTerms) -> List[ScheduleComparisonRow]:
        return compare_schedules(
            self.projected_schedule(terms),
            self.store.get_installment_payments(terms.account_id),
            self.clock.today()
        )

    def accrued_interest(self, terms: LoanTerms, as_of: Optional[date] = None) -> Decimal:
        """
        Interest accrued since the last payment (or loan start), up to the day before as_of

        Accrual runs one calendar day at a time, so it always uses actual
        days over 365 whatever day_count_basis is configured.
        """
        as_of = as_of or self.clock.today()
        history = self.store.get_installment_payments(terms.account_id)
        if history:
            reference_date = history[-1].payment_date
            outstanding = history[-1].outstanding_principal_after
        else:
            reference_date = terms.start_date
            outstanding = terms.principal

        return accrue_interest(
            reference_date,
            as_of - timedelta(days=1),
            outstanding,
            rate_history=self.rate_history(terms.account_id),
            fallback_rate=terms.opening_annual_rate
        )


class StatementService:
    """
    Converts purchases to installment plans and settles statement repayments
    """

    def __init__(
        self,
        store: LedgerStore,
        clock: Optional[Clock] = None,
        settings: Optional[FinanceCoreConfig] = None
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.settings = settings or get_config()
        self.billing = BillingCycleCalculator(self.clock, self.settings)
        self.logger = get_logger("finance_core.statements")

    def convert_to_installments(
        self,
        plan_id: str,
        line_id: str,
        months: int,
        first_due_date: date,
        bank_charges=ZERO
    ) -> InstallmentPlan:
        """
        Convert a pending purchase line into an installment plan

        Raises:
            ValueError: If the line is unknown, already an installment, paid,
                or has no usable amount
        """
        lines = self.store.get_lines([line_id])
        if not lines:
            raise ValueError(f"Statement line {line_id} not found")
        line = lines[0]

        if line.plan_id:
            raise ValueError(f"Statement line {line_id} is already an installment")
        if not line.is_open:
            raise ValueError(f"Statement line {line_id} is already paid")
        if line.numeric_amount is None:
            raise ValueError(f"Statement line {line_id} has a non-numeric amount")

        plan = InstallmentPlan.from_purchase(
            id=plan_id,
            account_id=line.account_id,
            description=line.description,
            purchase_amount=line.numeric_amount,
            months=months,
            first_due_date=first_due_date,
            transaction_id=line.transaction_id or line.id,
            bank_charges=bank_charges,
            currency=line.currency
        )
        self.store.save_installment_plan(plan)

        log_action(
            self.logger, "info",
            f"Purchase converted to {months} installments of {plan.monthly_emi}",
            account_id=line.account_id,
            action="convert_to_installments",
            resource="installment_plan",
            extra={"plan_id": plan.id, "line_id": line.id}
        )
        return plan

    def cancel_installment_plan(self, plan_id: str) -> InstallmentPlan:
        plan = self.store.get_installment_plan(plan_id)
        if plan is None:
            raise ValueError(f"Installment plan {plan_id} not found")

        plan = plan.cancel()
        self.store.save_installment_plan(plan)
        log_action(
            self.logger, "info", "Installment plan cancelled",
            account_id=plan.account_id,
            action="cancel_installment_plan",
            resource="installment_plan",
            extra={"plan_id": plan.id, "status": plan.status.value}
        )
        return plan

    def installment_exposure(self, account_id: str) -> Decimal:
        """Amount still to be billed on the account's active installment plans"""
        return total_installment_exposure(self.store.get_installment_plans(account_id))

    def due_items(
        self,
        account_id: str,
        period_end: Optional[date] = None,
        editing_allocations: Iterable[PaymentAllocation] = ()
    ) -> List[StatementLineItem]:
        """Obligations offered for a repayment, including those of an allocation being edited"""
        prior_ids = [allocation.statement_line_id for allocation in editing_allocations]
        return gather_due_items(
            account_id,
            period_end,
            self.store.get_installment_plans(account_id, active_only=False),
            self.store.get_pending_lines(account_id),
            self.store.get_lines(prior_ids),
            self.settings.installment_description_template
        )

    def statement_items(self, account_id: str, statement_day: int) -> List[StatementLineItem]:
        """Obligations dated up to the latest statement date"""
        return self.due_items(account_id, self.billing.current_statement_date(statement_day))

    def statement_summary(self, account_id: str, statement_day: int, due_day: int,
                          currency: Optional[str] = None) -> StatementSummary:
        """Total, minimum and net due for the statement awaiting payment"""
        currency = currency or self.settings.default_currency
        total = ZERO
        for line in self.statement_items(account_id, statement_day):
            outstanding = line.outstanding_amount
            if outstanding is None:
                self.logger.warning(f"Skipping line {line.id} with non-numeric amount {line.amount!r}")
                continue
            total += outstanding

        advance = self.store.get_advance_balance(account_id)
        due_date = self.billing.statement_due_date(statement_day, due_day)

        return StatementSummary(
            account_id=account_id,
            statement_month=self.billing.statement_month(statement_day),
            due_date=due_date,
            total_due=round_money(total),
            minimum_due=minimum_due(total, currency, self.settings),
            advance_balance=advance,
            net_due=round_money(max(ZERO, total - advance)),
            due_status=self.billing.due_status(due_date)
        )

    def prepare_allocation(
        self,
        account_id: str,
        selected_ids: Iterable[str],
        repayment_amount,
        period_end: Optional[date] = None,
        editing_allocations: Iterable[PaymentAllocation] = ()
    ) -> AllocationResult:
        """Allocate a repayment against the current snapshot without saving anything"""
        lines = self.due_items(account_id, period_end, editing_allocations)
        advance = self.store.get_advance_balance(account_id)
        result = allocate(lines, selected_ids, repayment_amount, advance)

        if result.stale_ids:
            log_action(
                self.logger, "warning",
                f"Ignored {len(result.stale_ids)} selected item(s) no longer due",
                account_id=account_id,
                action="prepare_allocation",
                resource="statement",
                extra={"stale_ids": list(result.stale_ids)}
            )
        for warning in result.warnings:
            log_action(
                self.logger, "warning", warning.message,
                account_id=account_id,
                action="prepare_allocation",
                resource="statement_line",
                extra={"line_id": warning.statement_line_id}
            )
        return result

    def confirm_allocation(
        self,
        account_id: str,
        result: AllocationResult,
        accept_shortfall: bool = False
    ) -> List[StatementLineItem]:
        """
        Persist an allocation: settle lines, advance plans, move the advance balance

        Virtual installment lines are saved as paid lines and their plans move
        to the next installment. Everything happens in one atomic block.

        Args:
            account_id: Credit card account
            result: Output of prepare_allocation
            accept_shortfall: Allow confirming when the repayment falls short

        Returns:
            The settled statement lines

        Raises:
            ValueError: On an unaccepted shortfall, or when a referenced line or
                plan has changed since the allocation was prepared
        """
        if result.has_shortfall and not accept_shortfall:
            raise ValueError(
                f"Repayment is short by {result.shortfall}; select fewer items or accept the shortfall"
            )

        settled = []
        with self.store.atomic():
            for allocation in result.allocations:
                if allocation.is_virtual:
                    line = self._materialize_installment(allocation)
                else:
                    lines = self.store.get_lines([allocation.statement_line_id])
                    if not lines:
                        raise ValueError(f"Statement line {allocation.statement_line_id} not found")
                    line = lines[0]
                    if line.status == LineStatus.PAID:
                        self.logger.info(f"Line {line.id} already paid, left unchanged")
                        continue

                paid_line = line.settle(allocation.amount_paid)
                self.store.save_line(paid_line)
                settled.append(paid_line)

                if line.plan_id and not allocation.is_virtual and paid_line.status == LineStatus.PAID:
                    self._advance_plan(line.plan_id)

            current = self.store.get_advance_balance(account_id)
            updated = max(ZERO, current + result.advance_delta)
            self.store.set_advance_balance(account_id, updated)

        log_action(
            self.logger, "info",
            f"Repayment of {result.repayment_amount} allocated to {len(settled)} item(s)",
            account_id=account_id,
            action="confirm_allocation",
            resource="statement",
            extra={
                "total_selected": str(result.total_selected),
                "advance_created": str(result.advance_created),
                "advance_used": str(result.advance_used),
                "shortfall": str(result.shortfall),
                "advance_balance": str(updated)
            }
        )
        return settled

    def _materialize_installment(self, allocation: PaymentAllocation) -> StatementLineItem:
        plan = self.store.get_installment_plan(allocation.plan_id)
        if plan is None:
            raise ValueError(f"Installment plan {allocation.plan_id} not found")

        line = VirtualObligation(plan).to_line(self.settings.installment_description_template)
        if line.id != allocation.statement_line_id or not plan.is_active:
            raise ValueError(
                f"Installment {allocation.statement_line_id} is no longer due on plan {plan.id}"
            )

        self.store.save_installment_plan(plan.record_installment())
        return line

    def _advance_plan(self, plan_id: str) -> None:
        plan = self.store.get_installment_plan(plan_id)
        if plan is None:
            self.logger.warning(f"Paid installment line refers to missing plan {plan_id}")
            return
        self.store.save_installment_plan(plan.record_installment())
