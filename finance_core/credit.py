"""
Credit Limit Module

Available credit, utilization and over-limit checks for credit card
accounts, plus the exposure still to be billed on installment plans.
An account without a credit limit (None or 0) is never over its limit.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional

from .config import FinanceCoreConfig, get_config
from .currency import ZERO, round_money, to_decimal
from .statements import InstallmentPlan


HUNDRED = Decimal('100')


class CreditLimitStatus(Enum):
    """How close an account is to its credit limit"""
    SAFE = "safe"
    WARNING = "warning"
    DANGER = "danger"


@dataclass(frozen=True)
class CreditLimitCheck:
    """Result of testing a new charge against the credit limit"""
    is_valid: bool
    new_balance: Decimal
    excess: Decimal = ZERO
    message: Optional[str] = None


def _limit(credit_limit) -> Optional[Decimal]:
    if credit_limit is None:
        return None
    limit = to_decimal(credit_limit)
    if limit <= ZERO:
        return None
    return limit


def _utilization(current_balance, credit_limit) -> Decimal:
    limit = _limit(credit_limit)
    if limit is None:
        return ZERO
    return to_decimal(current_balance) / limit * HUNDRED


def available_credit(current_balance, credit_limit) -> Decimal:
    """Credit limit minus balance, never below 0; 0 without a limit"""
    limit = _limit(credit_limit)
    if limit is None:
        return ZERO
    return round_money(max(ZERO, limit - to_decimal(current_balance)))


def credit_utilization(current_balance, credit_limit) -> Decimal:
    """Balance as a percentage of the limit, rounded to 2 places"""
    return round_money(_utilization(current_balance, credit_limit))


def credit_limit_status(
    current_balance,
    credit_limit,
    settings: Optional[FinanceCoreConfig] = None
) -> CreditLimitStatus:
    """
    Classify utilization against the configured thresholds

    Args:
        current_balance: Amount owed on the card
        credit_limit: Card limit, None or 0 when the card has none
        settings: Configuration holding the warning and danger thresholds

    Returns:
        DANGER at or above the danger threshold, WARNING at or above the
        warning threshold, SAFE otherwise (and always SAFE without a limit)
    """
    settings = settings or get_config()
    if _limit(credit_limit) is None:
        return CreditLimitStatus.SAFE

    utilization = _utilization(current_balance, credit_limit)
    if utilization >= Decimal(settings.credit_danger_utilization):
        return CreditLimitStatus.DANGER
    if utilization >= Decimal(settings.credit_warning_utilization):
        return CreditLimitStatus.WARNING
    return CreditLimitStatus.SAFE


def credit_limit_warning(
    current_balance,
    credit_limit,
    currency: str = "INR",
    settings: Optional[FinanceCoreConfig] = None
) -> Optional[str]:
    """Message to show the card holder, None while utilization is safe"""
    status = credit_limit_status(current_balance, credit_limit, settings)
    utilization = _utilization(current_balance, credit_limit)

    if status == CreditLimitStatus.DANGER:
        return f"Credit limit exceeded! You are at {utilization:.1f}% utilization."
    if status == CreditLimitStatus.WARNING:
        available = available_credit(current_balance, credit_limit)
        return f"Approaching credit limit! {utilization:.1f}% used. {currency} {available} available."
    return None


def validate_credit_limit(current_balance, transaction_amount, credit_limit) -> CreditLimitCheck:
    """
    Check whether a new charge keeps the balance within the limit

    A balance landing exactly on the limit is allowed.
    """
    new_balance = round_money(to_decimal(current_balance) + to_decimal(transaction_amount))
    limit = _limit(credit_limit)
    if limit is None or new_balance <= limit:
        return CreditLimitCheck(is_valid=True, new_balance=new_balance)

    excess = round_money(new_balance - limit)
    return CreditLimitCheck(
        is_valid=False,
        new_balance=new_balance,
        excess=excess,
        message=(
            f"Transaction exceeds credit limit by {excess}. "
            f"Current balance: {round_money(to_decimal(current_balance))}, "
            f"Credit limit: {round_money(limit)}"
        )
    )


def total_installment_exposure(plans: Iterable[InstallmentPlan]) -> Decimal:
    """Amount still to be billed across the active installment plans"""
    return round_money(sum((plan.remaining_amount for plan in plans if plan.is_active), ZERO))
