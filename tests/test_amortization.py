"""
Test suite for amortization module

Tests EMI calculation, rate-history-aware principal/interest splits, early
payment handling, schedule folding, projection and comparison. All financial
math must be precise to the paisa.
"""

import pytest
from decimal import Decimal
from datetime import date

from finance_core.rates import RateChangeRecord
from finance_core.amortization import (
    DayCountBasis, InstallmentPayment, InstallmentStatus, LoanTerms,
    PaymentBreakdown, ScheduledPayment, breakdown_for_payment, compare_schedules,
    compute_emi, due_date_after, generate_schedule, interest_for_period,
    project_schedule, projected_payment_dates, remaining_tenure,
    summarize_payments, total_interest
)


def monthly_payments(first: date, count: int, amount: Decimal):
    """Payments on the same day of consecutive months"""
    payments = []
    year, month = first.year, first.month
    for _ in range(count):
        payments.append(ScheduledPayment(date(year, month, first.day), amount))
        month += 1
        if month > 12:
            month = 1
            year += 1
    return payments


class TestComputeEMI:
    """Test EMI calculation"""

    def test_standard_emi(self):
        """Test 120000 at 12% over 12 months"""
        assert compute_emi(Decimal('120000'), Decimal('12'), 12) == Decimal('10661.85')

    def test_emi_rounded_to_two_places(self):
        """Test EMI carries exactly two decimal places"""
        emi = compute_emi(Decimal('250000'), Decimal('9.5'), 36)
        assert emi == emi.quantize(Decimal('0.01'))
        assert emi > Decimal('250000') / 36

    def test_zero_rate_spreads_principal(self):
        """Test zero-interest loans repay principal evenly"""
        assert compute_emi(Decimal('12000'), Decimal('0'), 12) == Decimal('1000.00')

    def test_incomplete_inputs_return_zero(self):
        """Test non-positive principal or tenure and negative rate yield 0"""
        assert compute_emi(Decimal('0'), Decimal('12'), 12) == Decimal('0')
        assert compute_emi(Decimal('-5000'), Decimal('12'), 12) == Decimal('0')
        assert compute_emi(Decimal('120000'), Decimal('12'), 0) == Decimal('0')
        assert compute_emi(Decimal('120000'), Decimal('-1'), 12) == Decimal('0')
        assert compute_emi("not a number", Decimal('12'), 12) == Decimal('0')

    def test_accepts_string_amounts(self):
        """Test stored string amounts are coerced"""
        assert compute_emi("120000", "12", 12) == Decimal('10661.85')


class TestDayCountBasis:
    """Test day counting conventions"""

    def test_actual_days(self):
        """Test actual/365 counts calendar days"""
        assert DayCountBasis.ACTUAL_365.days_between(date(2024, 1, 5), date(2024, 2, 5)) == 31
        assert DayCountBasis.ACTUAL_365.year_days == Decimal('365')

    def test_thirty_360_months(self):
        """Test 30/360 counts every month as 30 days"""
        basis = DayCountBasis.THIRTY_360
        assert basis.days_between(date(2024, 2, 5), date(2024, 3, 5)) == 30
        assert basis.days_between(date(2024, 1, 5), date(2025, 1, 5)) == 360
        assert basis.days_between(date(2024, 1, 30), date(2024, 1, 31)) == 0
        assert basis.year_days == Decimal('360')


class TestInterestForPeriod:
    """Test interest accrual over sub-periods"""

    def test_empty_window(self):
        """Test no interest when the window is empty or reversed"""
        assert interest_for_period(date(2024, 1, 10), date(2024, 1, 10), Decimal('1000'), None, Decimal('12')) == 0
        assert interest_for_period(date(2024, 1, 10), date(2024, 1, 5), Decimal('1000'), None, Decimal('12')) == 0

    def test_split_at_rate_change(self):
        """Test each sub-period uses its own rate"""
        history = [RateChangeRecord("loan-1", Decimal('12'), date(2024, 1, 16))]
        interest = interest_for_period(
            date(2024, 1, 1), date(2024, 1, 31), Decimal('100000'), history, Decimal('10')
        )
        # 15 days at 10% + 15 days at 12%
        expected = (Decimal('100000') * 10 * 15 + Decimal('100000') * 12 * 15) / Decimal('36500')
        assert interest.quantize(Decimal('0.000001')) == expected.quantize(Decimal('0.000001'))


class TestDueDateAfter:
    """Test due date resolution after a reference date"""

    def test_due_later_this_month(self):
        assert due_date_after(date(2024, 1, 2), 5) == date(2024, 1, 5)

    def test_due_rolls_to_next_month(self):
        """Test a reference on the due day moves to next month"""
        assert due_date_after(date(2024, 1, 5), 5) == date(2024, 2, 5)

    def test_due_day_clamped(self):
        """Test day 31 in February resolves to the 29th in a leap year"""
        assert due_date_after(date(2024, 1, 31), 31) == date(2024, 2, 29)

    def test_year_rollover(self):
        assert due_date_after(date(2024, 12, 20), 10) == date(2025, 1, 10)


class TestBreakdownForPayment:
    """Test splitting a payment into principal and interest"""

    def test_rate_change_mid_period(self):
        """Test interest weighted across a rate change inside the window"""
        history = [RateChangeRecord("loan-1", Decimal('12'), date(2024, 1, 16))]
        breakdown = breakdown_for_payment(
            reference_date=date(2024, 1, 1),
            payment_date=date(2024, 1, 31),
            outstanding_principal=Decimal('100000'),
            emi_amount=Decimal('5000'),
            rate_history=history,
            fallback_rate=Decimal('10')
        )

        assert breakdown.interest_component == Decimal('904.11')
        assert breakdown.principal_component == Decimal('4095.89')
        assert breakdown.new_outstanding == Decimal('95904.11')

    def test_payment_on_due_date(self):
        """Test a payment on the due date accrues the full period"""
        breakdown = breakdown_for_payment(
            date(2024, 1, 5), date(2024, 2, 5), Decimal('100000'), Decimal('10000'),
            [], due_day_of_month=5, fallback_rate=Decimal('12')
        )
        assert breakdown.interest_component == Decimal('1019.18')
        assert breakdown.principal_component == Decimal('8980.82')

    def test_early_payment_split(self):
        """Test a payment before the due date accrues in two legs"""
        breakdown = breakdown_for_payment(
            date(2024, 1, 5), date(2024, 1, 30), Decimal('100000'), Decimal('10000'),
            [], due_day_of_month=5, fallback_rate=Decimal('12')
        )
        assert breakdown.interest_component == Decimal('1001.07')
        assert breakdown.principal_component == Decimal('8998.93')
        assert breakdown.new_outstanding == Decimal('91001.07')

    def test_early_payment_cheaper_than_on_time(self):
        """Test paying early never costs more interest"""
        early = breakdown_for_payment(
            date(2024, 1, 5), date(2024, 1, 30), Decimal('100000'), Decimal('10000'),
            [], due_day_of_month=5, fallback_rate=Decimal('12')
        )
        on_time = breakdown_for_payment(
            date(2024, 1, 5), date(2024, 2, 5), Decimal('100000'), Decimal('10000'),
            [], due_day_of_month=5, fallback_rate=Decimal('12')
        )
        assert early.interest_component < on_time.interest_component

    def test_without_due_day_no_split(self):
        """Test the early split only applies when a due day is given"""
        breakdown = breakdown_for_payment(
            date(2024, 1, 5), date(2024, 1, 30), Decimal('100000'), Decimal('10000'),
            [], fallback_rate=Decimal('12')
        )
        # 25 days on the full principal
        assert breakdown.interest_component == Decimal('821.92')

    def test_components_sum_to_emi(self):
        """Test principal + interest equals the EMI exactly"""
        breakdown = breakdown_for_payment(
            date(2024, 3, 7), date(2024, 4, 3), Decimal('87654.32'), Decimal('4321.09'),
            [RateChangeRecord("loan-1", Decimal('9.75'), date(2024, 3, 20))],
            due_day_of_month=7, fallback_rate=Decimal('8.4')
        )
        assert breakdown.principal_component + breakdown.interest_component == Decimal('4321.09')

    def test_payment_before_reference_accrues_nothing(self):
        """Test a backdated payment is all principal"""
        breakdown = breakdown_for_payment(
            date(2024, 1, 10), date(2024, 1, 5), Decimal('1000'), Decimal('100'),
            [], fallback_rate=Decimal('12')
        )
        assert breakdown.interest_component == Decimal('0.00')
        assert breakdown.principal_component == Decimal('100.00')
        assert breakdown.new_outstanding == Decimal('900.00')

    def test_overpayment_floors_outstanding(self):
        """Test outstanding never goes negative"""
        breakdown = breakdown_for_payment(
            date(2024, 1, 1), date(2024, 2, 1), Decimal('500'), Decimal('5000'),
            [], fallback_rate=Decimal('0')
        )
        assert breakdown.new_outstanding == Decimal('0')

    def test_nothing_outstanding_is_zero(self):
        """Test a settled loan or empty payment yields a zero breakdown"""
        assert breakdown_for_payment(
            date(2024, 1, 1), date(2024, 2, 1), Decimal('0'), Decimal('1000'), [], fallback_rate=Decimal('12')
        ) == PaymentBreakdown.zero()
        assert breakdown_for_payment(
            date(2024, 1, 1), date(2024, 2, 1), Decimal('1000'), Decimal('0'), [], fallback_rate=Decimal('12')
        ).is_zero
        assert breakdown_for_payment(
            date(2024, 1, 1), date(2024, 2, 1), "abc", Decimal('100'), [], fallback_rate=Decimal('12')
        ).is_zero

    def test_thirty_360_month_is_one_twelfth(self):
        """Test a full 30/360 month accrues rate/12 of the principal"""
        breakdown = breakdown_for_payment(
            date(2024, 1, 5), date(2024, 2, 5), Decimal('120000'), Decimal('10661.85'),
            [], due_day_of_month=5, fallback_rate=Decimal('12'), basis=DayCountBasis.THIRTY_360
        )
        assert breakdown.interest_component == Decimal('1200.00')
        assert breakdown.principal_component == Decimal('9461.85')


class TestInstallmentPayment:
    """Test installment record invariant"""

    def test_components_must_sum_to_emi(self):
        with pytest.raises(ValueError, match="does not equal"):
            InstallmentPayment(
                sequence_number=1,
                payment_date=date(2024, 2, 1),
                emi_amount=Decimal('1000.00'),
                principal_component=Decimal('800.00'),
                interest_component=Decimal('100.00'),
                outstanding_principal_after=Decimal('9200.00')
            )

    def test_sequence_starts_at_one(self):
        with pytest.raises(ValueError):
            InstallmentPayment(0, date(2024, 2, 1), Decimal('100'), Decimal('90'), Decimal('10'), Decimal('0'))

    def test_noop_against_settled_loan(self):
        """Test a payment with no components is accepted"""
        payment = InstallmentPayment(3, date(2024, 4, 1), Decimal('100'), Decimal('0'), Decimal('0'), Decimal('0'))
        assert payment.emi_amount == Decimal('100')


class TestGenerateSchedule:
    """Test folding breakdowns over a payment history"""

    def test_sorts_payments_and_numbers_them(self):
        """Test payments are processed in date order"""
        payments = [
            ScheduledPayment(date(2024, 3, 1), Decimal('1000')),
            ScheduledPayment(date(2024, 2, 1), Decimal('1000')),
        ]
        schedule = generate_schedule(date(2024, 1, 1), Decimal('12000'), payments, fallback_rate=Decimal('0'))

        assert [p.sequence_number for p in schedule] == [1, 2]
        assert [p.payment_date for p in schedule] == [date(2024, 2, 1), date(2024, 3, 1)]
        assert schedule[-1].outstanding_principal_after == Decimal('10000.00')

    def test_outstanding_chains(self):
        """Test each outstanding is the previous minus principal"""
        payments = monthly_payments(date(2024, 2, 5), 6, Decimal('10661.85'))
        schedule = generate_schedule(
            date(2024, 1, 5), Decimal('120000'), payments, [],
            due_day_of_month=5, fallback_rate=Decimal('12')
        )
        previous = Decimal('120000')
        for entry in schedule:
            assert entry.outstanding_principal_after == previous - entry.principal_component
            assert entry.principal_component + entry.interest_component == entry.emi_amount
            previous = entry.outstanding_principal_after

    def test_thirty_360_fold_clears_loan(self):
        """Test twelve EMIs under 30/360 repay the principal within rounding"""
        payments = monthly_payments(date(2024, 2, 5), 12, Decimal('10661.85'))
        schedule = generate_schedule(
            date(2024, 1, 5), Decimal('120000'), payments, [],
            due_day_of_month=5, fallback_rate=Decimal('12'), basis=DayCountBasis.THIRTY_360
        )
        assert len(schedule) == 12
        assert schedule[0].interest_component == Decimal('1200.00')
        assert Decimal('0') <= schedule[-1].outstanding_principal_after <= Decimal('0.15')

    def test_settle_final_clears_remaining(self):
        """Test the last installment can absorb the residue"""
        payments = monthly_payments(date(2024, 2, 5), 12, Decimal('10661.85'))
        schedule = generate_schedule(
            date(2024, 1, 5), Decimal('120000'), payments, [],
            due_day_of_month=5, fallback_rate=Decimal('12'), settle_final=True
        )
        last = schedule[-1]
        assert last.outstanding_principal_after == Decimal('0')
        assert last.emi_amount == last.principal_component + last.interest_component

    def test_payments_after_payoff_are_noops(self):
        """Test extra payments on a settled loan carry no components"""
        payments = [
            ScheduledPayment(date(2024, 2, 1), Decimal('1000')),
            ScheduledPayment(date(2024, 3, 1), Decimal('1000')),
        ]
        schedule = generate_schedule(date(2024, 1, 1), Decimal('1000'), payments, fallback_rate=Decimal('0'))
        assert schedule[0].outstanding_principal_after == Decimal('0.00')
        assert schedule[1].principal_component == Decimal('0')
        assert schedule[1].interest_component == Decimal('0')
        assert schedule[1].outstanding_principal_after == Decimal('0')

    def test_zero_emi_keeps_balance(self):
        """Test a zero payment leaves the balance where it was"""
        payments = [ScheduledPayment(date(2024, 2, 1), Decimal('0'))]
        schedule = generate_schedule(date(2024, 1, 1), Decimal('5000'), payments, fallback_rate=Decimal('10'))
        assert schedule[0].outstanding_principal_after == Decimal('5000')

    def test_accepts_stored_installments(self):
        """Test stored installment records can be re-split"""
        original = generate_schedule(
            date(2024, 1, 1), Decimal('12000'),
            monthly_payments(date(2024, 2, 1), 3, Decimal('1000')),
            fallback_rate=Decimal('0')
        )
        recomputed = generate_schedule(
            date(2024, 1, 1), Decimal('12000'), original,
            [RateChangeRecord("loan-1", Decimal('12'), date(2024, 3, 1))],
            fallback_rate=Decimal('0')
        )
        # the change takes effect from the third period
        assert recomputed[1].interest_component == Decimal('0.00')
        assert recomputed[2].interest_component > Decimal('0')


class TestLoanTerms:
    """Test loan terms and projections"""

    def setup_method(self):
        """Set up a one-year loan"""
        self.terms = LoanTerms(
            principal=Decimal('120000'),
            tenure_months=12,
            start_date=date(2024, 1, 5),
            due_day_of_month=5,
            opening_annual_rate=Decimal('12'),
            account_id="loan-1"
        )

    def test_invalid_terms_rejected(self):
        """Test construction validates the terms"""
        with pytest.raises(ValueError):
            LoanTerms(Decimal('0'), 12, date(2024, 1, 1), 5, Decimal('10'))
        with pytest.raises(ValueError):
            LoanTerms(Decimal('1000'), 0, date(2024, 1, 1), 5, Decimal('10'))
        with pytest.raises(ValueError):
            LoanTerms(Decimal('1000'), 12, date(2024, 1, 1), 32, Decimal('10'))
        with pytest.raises(ValueError):
            LoanTerms(Decimal('1000'), 12, date(2024, 1, 1), 5, Decimal('-1'))

    def test_terms_immutable(self):
        """Test restructuring produces a new instance"""
        extended = self.terms.with_changes(tenure_months=24)
        assert extended.tenure_months == 24
        assert self.terms.tenure_months == 12
        with pytest.raises(Exception):
            self.terms.tenure_months = 36

    def test_emi_and_maturity(self):
        assert self.terms.emi == Decimal('10661.85')
        assert self.terms.maturity_date == date(2025, 1, 5)

    def test_due_dates_clamped(self):
        """Test a month-end due day follows short months"""
        terms = LoanTerms(Decimal('1000'), 3, date(2024, 1, 31), 31, Decimal('10'))
        assert projected_payment_dates(terms) == [date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30)]

    def test_projection_clears_principal(self):
        """Test the projected schedule ends at zero"""
        schedule = project_schedule(self.terms)
        assert len(schedule) == 12
        assert schedule[-1].outstanding_principal_after == Decimal('0')
        assert all(p.emi_amount == Decimal('10661.85') for p in schedule[:-1])
        assert all(p.account_id == "loan-1" for p in schedule)

    def test_projection_thirty_360(self):
        """Test 30/360 projection charges one twelfth of the rate each month"""
        schedule = project_schedule(self.terms, basis=DayCountBasis.THIRTY_360)
        assert schedule[0].interest_component == Decimal('1200.00')
        assert abs(schedule[-1].emi_amount - Decimal('10661.85')) <= Decimal('0.15')
        assert schedule[-1].outstanding_principal_after == Decimal('0')

    def test_zero_rate_projection(self):
        """Test a zero-interest loan is all principal"""
        terms = LoanTerms(Decimal('12000'), 12, date(2024, 1, 1), 1, Decimal('0'))
        schedule = project_schedule(terms)
        assert all(p.interest_component == Decimal('0') for p in schedule)
        assert all(p.principal_component == Decimal('1000.00') for p in schedule)
        assert schedule[-1].outstanding_principal_after == Decimal('0')


class TestCompareSchedules:
    """Test projected vs actual comparison"""

    def setup_method(self):
        """Set up a zero-rate loan with two payments made"""
        self.terms = LoanTerms(Decimal('12000'), 12, date(2024, 1, 1), 1, Decimal('0'))
        self.projected = project_schedule(self.terms)
        self.actual = [
            InstallmentPayment(1, date(2024, 2, 1), Decimal('1000'), Decimal('1000'), Decimal('0'), Decimal('11000')),
            InstallmentPayment(2, date(2024, 3, 1), Decimal('1100'), Decimal('1100'), Decimal('0'), Decimal('9900')),
        ]

    def test_statuses(self):
        """Test paid, overdue and pending rows"""
        rows = compare_schedules(self.projected, self.actual, today=date(2024, 5, 15))
        statuses = [row.status for row in rows[:5]]
        assert statuses == [
            InstallmentStatus.PAID,
            InstallmentStatus.PAID,
            InstallmentStatus.OVERDUE,
            InstallmentStatus.OVERDUE,
            InstallmentStatus.PENDING,
        ]
        assert len(rows) == 12

    def test_variances(self):
        """Test actual minus projected amounts"""
        rows = compare_schedules(self.projected, self.actual, today=date(2024, 5, 15))
        assert rows[0].emi_variance == Decimal('0')
        assert rows[1].emi_variance == Decimal('100')
        assert rows[1].principal_variance == Decimal('100')
        assert rows[2].emi_variance is None


class TestLoanSummaries:
    """Test loan summary helpers"""

    def test_total_interest(self):
        assert total_interest(Decimal('120000'), Decimal('10661.85'), 12) == Decimal('7942.20')
        assert total_interest(Decimal('120000'), Decimal('10661.85'), 0) == Decimal('0')

    def test_remaining_tenure(self):
        assert remaining_tenure(Decimal('120000'), Decimal('60000'), 12) == 6
        assert remaining_tenure(Decimal('120000'), Decimal('120000'), 12) == 12
        assert remaining_tenure(Decimal('120000'), Decimal('0'), 12) == 0

    def test_summarize_payments(self):
        """Test totals over a payment history"""
        schedule = generate_schedule(
            date(2024, 1, 1), Decimal('12000'),
            monthly_payments(date(2024, 2, 1), 3, Decimal('1000')),
            fallback_rate=Decimal('0')
        )
        summary = summarize_payments(schedule)
        assert summary.installments_made == 3
        assert summary.total_paid == Decimal('3000.00')
        assert summary.principal_paid == Decimal('3000.00')
        assert summary.interest_paid == Decimal('0.00')
        assert summary.outstanding_principal == Decimal('9000.00')

    def test_summarize_without_payments(self):
        summary = summarize_payments([], principal=Decimal('5000'))
        assert summary.installments_made == 0
        assert summary.outstanding_principal == Decimal('5000.00')
