"""
Ledger Store Module

Abstract interface to the record store that holds statement lines,
installment plans, rate changes, installment payments and advance balances,
plus an in-memory implementation for testing and local use. Monetary values
are stored as Decimal strings and dates as ISO strings.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Any, Iterable
import copy
import json
import threading
import uuid

from .amortization import InstallmentPayment
from .currency import ZERO, to_decimal
from .rates import RateChangeRecord
from .statements import StatementLineItem, InstallmentPlan, PlanStatus


LINES = "statement_lines"
PLANS = "installment_plans"
RATE_CHANGES = "rate_changes"
PAYMENTS = "installment_payments"
ADVANCES = "advance_balances"


class LedgerStore(ABC):
    """Abstract interface for the ledger record store"""

    @abstractmethod
    def get_pending_lines(self, account_id: str, up_to: Optional[date] = None) -> List[StatementLineItem]:
        """Pending and partial lines of an account, optionally dated up to a day"""
        pass

    @abstractmethod
    def get_lines(self, line_ids: Iterable[str]) -> List[StatementLineItem]:
        """Lines with the given ids, whatever their status"""
        pass

    @abstractmethod
    def save_line(self, line: StatementLineItem) -> None:
        pass

    @abstractmethod
    def get_installment_plans(self, account_id: str, active_only: bool = True) -> List[InstallmentPlan]:
        pass

    @abstractmethod
    def get_installment_plan(self, plan_id: str) -> Optional[InstallmentPlan]:
        pass

    @abstractmethod
    def save_installment_plan(self, plan: InstallmentPlan) -> None:
        pass

    @abstractmethod
    def delete_installment_plan(self, plan_id: str) -> bool:
        pass

    @abstractmethod
    def get_rate_changes(self, account_id: str) -> List[RateChangeRecord]:
        """Rate changes ordered by effective date"""
        pass

    @abstractmethod
    def append_rate_change(self, record: RateChangeRecord) -> RateChangeRecord:
        """Store a rate change; raises ValueError on a duplicate effective date"""
        pass

    @abstractmethod
    def get_installment_payments(self, account_id: str) -> List[InstallmentPayment]:
        """Installment payments ordered by sequence number"""
        pass

    @abstractmethod
    def append_installment_payment(self, payment: InstallmentPayment) -> InstallmentPayment:
        """Store a payment; raises ValueError on a duplicate sequence number"""
        pass

    @abstractmethod
    def get_advance_balance(self, account_id: str) -> Decimal:
        pass

    @abstractmethod
    def set_advance_balance(self, account_id: str, amount: Decimal) -> None:
        pass

    def begin_transaction(self) -> None:
        """Start a transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        self.begin_transaction()
        try:
            yield
            self.commit()
        except Exception:
            self.rollback()
            raise


def _line_to_dict(line: StatementLineItem) -> Dict[str, Any]:
    return {
        'id': line.id,
        'account_id': line.account_id,
        'description': line.description,
        'amount': str(line.amount) if isinstance(line.amount, Decimal) else line.amount,
        'transaction_date': line.transaction_date.isoformat(),
        'status': line.status.value,
        'paid_amount': str(line.paid_amount),
        'transaction_id': line.transaction_id,
        'plan_id': line.plan_id,
        'statement_month': line.statement_month,
        'currency': line.currency,
        'is_virtual': line.is_virtual
    }


def _line_from_dict(data: Dict[str, Any]) -> StatementLineItem:
    return StatementLineItem(
        id=data['id'],
        account_id=data['account_id'],
        description=data['description'],
        amount=data['amount'],
        transaction_date=date.fromisoformat(data['transaction_date']),
        status=data['status'],
        paid_amount=Decimal(data['paid_amount']),
        transaction_id=data.get('transaction_id'),
        plan_id=data.get('plan_id'),
        statement_month=data.get('statement_month'),
        currency=data.get('currency', 'INR'),
        is_virtual=data.get('is_virtual', False)
    )


def _plan_to_dict(plan: InstallmentPlan) -> Dict[str, Any]:
    return {
        'id': plan.id,
        'account_id': plan.account_id,
        'description': plan.description,
        'total_installments': plan.total_installments,
        'monthly_emi': str(plan.monthly_emi),
        'remaining_installments': plan.remaining_installments,
        'next_due_date': plan.next_due_date.isoformat(),
        'transaction_id': plan.transaction_id,
        'currency': plan.currency,
        'status': plan.status.value,
        'bank_charges': str(plan.bank_charges)
    }


def _plan_from_dict(data: Dict[str, Any]) -> InstallmentPlan:
    return InstallmentPlan(
        id=data['id'],
        account_id=data['account_id'],
        description=data['description'],
        total_installments=data['total_installments'],
        monthly_emi=Decimal(data['monthly_emi']),
        remaining_installments=data['remaining_installments'],
        next_due_date=date.fromisoformat(data['next_due_date']),
        transaction_id=data.get('transaction_id'),
        currency=data.get('currency', 'INR'),
        status=PlanStatus(data['status']),
        bank_charges=Decimal(data.get('bank_charges', '0'))
    )


def _rate_change_to_dict(record: RateChangeRecord) -> Dict[str, Any]:
    return {
        'id': record.id,
        'account_id': record.account_id,
        'annual_rate': str(record.annual_rate),
        'effective_date': record.effective_date.isoformat()
    }


def _rate_change_from_dict(data: Dict[str, Any]) -> RateChangeRecord:
    return RateChangeRecord(
        account_id=data['account_id'],
        annual_rate=Decimal(data['annual_rate']),
        effective_date=date.fromisoformat(data['effective_date']),
        id=data['id']
    )


def _payment_to_dict(payment: InstallmentPayment) -> Dict[str, Any]:
    return {
        'id': payment.id,
        'account_id': payment.account_id,
        'sequence_number': payment.sequence_number,
        'payment_date': payment.payment_date.isoformat(),
        'emi_amount': str(payment.emi_amount),
        'principal_component': str(payment.principal_component),
        'interest_component': str(payment.interest_component),
        'outstanding_principal_after': str(payment.outstanding_principal_after)
    }


def _payment_from_dict(data: Dict[str, Any]) -> InstallmentPayment:
    return InstallmentPayment(
        sequence_number=data['sequence_number'],
        payment_date=date.fromisoformat(data['payment_date']),
        emi_amount=Decimal(data['emi_amount']),
        principal_component=Decimal(data['principal_component']),
        interest_component=Decimal(data['interest_component']),
        outstanding_principal_after=Decimal(data['outstanding_principal_after']),
        account_id=data.get('account_id'),
        id=data['id']
    )


class InMemoryLedgerStore(LedgerStore):
    """
    In-memory ledger store for testing

    Records are deep-copied through JSON on the way in and out. Transactions
    snapshot the tables and restore them on rollback; nested atomic blocks
    join the outermost one.
    """

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {
            LINES: {}, PLANS: {}, RATE_CHANGES: {}, PAYMENTS: {}, ADVANCES: {}
        }
        self._lock = threading.RLock()
        self._snapshot: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None
        self._depth = 0

    def _save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            # Deep copy to prevent external mutation
            self._data[table][record_id] = json.loads(json.dumps(data, default=str))

    def _load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [json.loads(json.dumps(record)) for record in self._data[table].values()]

    def _find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            results = []
            for record in self._data[table].values():
                if all(record.get(key) == value for key, value in filters.items()):
                    results.append(json.loads(json.dumps(record)))
            return results

    # Statement lines

    def get_pending_lines(self, account_id: str, up_to: Optional[date] = None) -> List[StatementLineItem]:
        lines = [_line_from_dict(d) for d in self._find(LINES, {'account_id': account_id})]
        return [
            line for line in lines
            if line.is_open and (up_to is None or line.transaction_date <= up_to)
        ]

    def get_lines(self, line_ids: Iterable[str]) -> List[StatementLineItem]:
        with self._lock:
            lines = []
            for line_id in line_ids:
                record = self._data[LINES].get(line_id)
                if record is not None:
                    lines.append(_line_from_dict(json.loads(json.dumps(record))))
            return lines

    def save_line(self, line: StatementLineItem) -> None:
        self._save(LINES, line.id, _line_to_dict(line))

    # Installment plans

    def get_installment_plans(self, account_id: str, active_only: bool = True) -> List[InstallmentPlan]:
        plans = [_plan_from_dict(d) for d in self._find(PLANS, {'account_id': account_id})]
        if active_only:
            plans = [plan for plan in plans if plan.is_active]
        return plans

    def get_installment_plan(self, plan_id: str) -> Optional[InstallmentPlan]:
        with self._lock:
            record = self._data[PLANS].get(plan_id)
            if record is None:
                return None
            return _plan_from_dict(json.loads(json.dumps(record)))

    def save_installment_plan(self, plan: InstallmentPlan) -> None:
        self._save(PLANS, plan.id, _plan_to_dict(plan))

    def delete_installment_plan(self, plan_id: str) -> bool:
        with self._lock:
            if plan_id in self._data[PLANS]:
                del self._data[PLANS][plan_id]
                return True
            return False

    # Rate changes (append-only)

    def get_rate_changes(self, account_id: str) -> List[RateChangeRecord]:
        records = [_rate_change_from_dict(d) for d in self._find(RATE_CHANGES, {'account_id': account_id})]
        return sorted(records, key=lambda r: r.effective_date)

    def append_rate_change(self, record: RateChangeRecord) -> RateChangeRecord:
        with self._lock:
            effective = record.effective_date.isoformat()
            for existing in self._data[RATE_CHANGES].values():
                if existing['account_id'] == record.account_id and existing['effective_date'] == effective:
                    raise ValueError(
                        f"Rate change for account {record.account_id} effective {effective} already exists"
                    )

            if record.id is None:
                record = RateChangeRecord(
                    account_id=record.account_id,
                    annual_rate=record.annual_rate,
                    effective_date=record.effective_date,
                    id=str(uuid.uuid4())
                )
            self._save(RATE_CHANGES, record.id, _rate_change_to_dict(record))
            return record

    # Installment payments (append-only)

    def get_installment_payments(self, account_id: str) -> List[InstallmentPayment]:
        payments = [_payment_from_dict(d) for d in self._find(PAYMENTS, {'account_id': account_id})]
        return sorted(payments, key=lambda p: p.sequence_number)

    def append_installment_payment(self, payment: InstallmentPayment) -> InstallmentPayment:
        with self._lock:
            for existing in self._data[PAYMENTS].values():
                if (existing['account_id'] == payment.account_id
                        and existing['sequence_number'] == payment.sequence_number):
                    raise ValueError(
                        f"Installment {payment.sequence_number} already recorded for account {payment.account_id}"
                    )

            data = _payment_to_dict(payment)
            if data['id'] is None:
                data['id'] = str(uuid.uuid4())
            self._save(PAYMENTS, data['id'], data)
            return _payment_from_dict(data)

    # Advance balances

    def get_advance_balance(self, account_id: str) -> Decimal:
        with self._lock:
            record = self._data[ADVANCES].get(account_id)
            if record is None:
                return ZERO
            return Decimal(record['amount'])

    def set_advance_balance(self, account_id: str, amount: Decimal) -> None:
        amount = to_decimal(amount)
        if amount < ZERO:
            raise ValueError("Advance balance cannot be negative")
        self._save(ADVANCES, account_id, {'account_id': account_id, 'amount': str(amount)})

    # Transactions

    def begin_transaction(self) -> None:
        self._lock.acquire()
        if self._depth == 0:
            self._snapshot = copy.deepcopy(self._data)
        self._depth += 1

    def commit(self) -> None:
        self._depth -= 1
        if self._depth == 0:
            self._snapshot = None
        self._lock.release()

    def rollback(self) -> None:
        self._depth -= 1
        if self._depth == 0 and self._snapshot is not None:
            self._data = self._snapshot
            self._snapshot = None
        self._lock.release()
