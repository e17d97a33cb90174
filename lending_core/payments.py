"""
Payment Ledger Module

Append-mostly store of payment records. Payments keep their insertion
sequence within a loan and are never reordered; corrections are in-place
edits or deletions.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import uuid

from .amounts import AmountLike, to_amount
from .exceptions import (
    InvalidAmountError, InvalidRangeError, EmptyDateRangeError, PaymentNotFoundError
)
from .periods import DateLike, MonthOverflowPolicy, normalize_date, due_dates_between
from .storage import StorageInterface, StorageRecord


class PaymentStatus(Enum):
    """Payment classification"""
    PAID = "Paid"          # Settles one installment on its own
    PARTIAL = "Partial"    # Part of an installment chain
    ADVANCE = "Advance"    # Prepaid installment from an advance batch


@dataclass(frozen=True)
class ChainMembership:
    """Resolved chain fields written onto a payment"""
    chain_id: str
    installment_number: int
    expected_due_date: date
    installment_amount: Decimal


@dataclass
class Payment(StorageRecord):
    """A single payment recorded against a loan"""
    loan_id: str
    amount: Decimal
    payment_date: date
    status: PaymentStatus
    sequence: int
    collector: Optional[str] = None
    notes: str = ""

    # Chain membership
    chain_id: Optional[str] = None
    installment_number: Optional[int] = None
    expected_due_date: Optional[date] = None
    installment_amount: Optional[Decimal] = None

    # Advance batch
    batch_id: Optional[str] = None
    advance_from_date: Optional[date] = None
    advance_to_date: Optional[date] = None

    @property
    def is_chained(self) -> bool:
        return self.chain_id is not None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Payment':
        data = dict(data)
        data['amount'] = Decimal(data['amount'])
        data['status'] = PaymentStatus(data['status'])
        data['payment_date'] = date.fromisoformat(data['payment_date'])
        for key in ('expected_due_date', 'advance_from_date', 'advance_to_date'):
            if data.get(key):
                data[key] = date.fromisoformat(data[key])
        if data.get('installment_amount') is not None:
            data['installment_amount'] = Decimal(data['installment_amount'])
        return super().from_dict(data)


def _positive_amount(amount: AmountLike) -> Decimal:
    try:
        value = to_amount(amount)
    except ValueError as e:
        raise InvalidAmountError(str(e)) from e
    if value <= 0:
        raise InvalidAmountError(f"Payment amount must be greater than 0, got {value}")
    return value


def edit_note(before: Payment, after: Payment) -> str:
    """Human-readable description of an edit"""
    note = (
        f"Edited: Amount {before.amount}→{after.amount}, "
        f"Status {before.status.value}→{after.status.value}"
    )
    if before.payment_date != after.payment_date:
        note += f", Date {before.payment_date.isoformat()}→{after.payment_date.isoformat()}"
    return note


class PaymentLedger:
    """
    Persistent store of payment records.

    The ledger never touches loan aggregates; callers recompute them after
    every mutation.
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.payments_table = "payments"

    def _next_sequence(self, loan_id: str) -> int:
        existing = self.storage.find(self.payments_table, {"loan_id": loan_id})
        return max((p.get('sequence', 0) for p in existing), default=0) + 1

    def _save(self, payment: Payment) -> None:
        self.storage.save(self.payments_table, payment.id, payment.to_dict())

    def record(
        self,
        loan_id: str,
        amount: AmountLike,
        payment_date: DateLike,
        status: PaymentStatus,
        chain: Optional[ChainMembership] = None,
        collector: Optional[str] = None,
        notes: str = ""
    ) -> Payment:
        """
        Append one payment

        Raises:
            InvalidAmountError: If amount is zero or negative
        """
        value = _positive_amount(amount)
        now = datetime.now(timezone.utc)

        payment = Payment(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            loan_id=loan_id,
            amount=value,
            payment_date=normalize_date(payment_date),
            status=status,
            sequence=self._next_sequence(loan_id),
            collector=collector,
            notes=notes or ""
        )
        if chain is not None:
            payment.chain_id = chain.chain_id
            payment.installment_number = chain.installment_number
            payment.expected_due_date = chain.expected_due_date
            payment.installment_amount = chain.installment_amount

        self._save(payment)
        return payment

    def record_batch(
        self,
        loan,
        from_date: DateLike,
        to_date: DateLike,
        amount_per_installment: AmountLike,
        status: PaymentStatus = PaymentStatus.ADVANCE,
        collector: Optional[str] = None,
        policy: MonthOverflowPolicy = MonthOverflowPolicy.CLAMP
    ) -> List[Payment]:
        """
        Record one payment per scheduled due date inside [from_date, to_date]

        Every input is validated before the first record is written.

        Raises:
            InvalidRangeError: If from_date is after to_date
            EmptyDateRangeError: If no due date falls inside the range
            InvalidAmountError: If the per-installment amount is not positive
        """
        low = normalize_date(from_date)
        high = normalize_date(to_date)
        if low > high:
            raise InvalidRangeError(f"Range start {low} is after range end {high}")

        value = _positive_amount(amount_per_installment)

        terms = loan.terms
        boundaries = due_dates_between(
            terms.schedule_start, terms.period_type, terms.total_periods, low, high, policy
        )
        if not boundaries:
            raise EmptyDateRangeError(f"No installment falls due between {low} and {high}")

        batch_id = str(uuid.uuid4())
        sequence = self._next_sequence(loan.id)
        now = datetime.now(timezone.utc)
        payments = []

        for offset, (number, due) in enumerate(boundaries):
            payment = Payment(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                loan_id=loan.id,
                amount=value,
                payment_date=due,
                status=status,
                sequence=sequence + offset,
                collector=collector,
                notes=f"Advance payment for installment {number}",
                installment_number=number,
                expected_due_date=due,
                installment_amount=terms.expected_installment_amount(number),
                batch_id=batch_id,
                advance_from_date=low,
                advance_to_date=high
            )
            self._save(payment)
            payments.append(payment)

        return payments

    def get_payment(self, payment_id: str) -> Optional[Payment]:
        """Get payment by ID"""
        payment_dict = self.storage.load(self.payments_table, payment_id)
        if payment_dict:
            return Payment.from_dict(payment_dict)
        return None

    def require_payment(self, payment_id: str) -> Payment:
        """Get payment by ID or raise PaymentNotFoundError"""
        payment = self.get_payment(payment_id)
        if not payment:
            raise PaymentNotFoundError(f"Payment {payment_id} not found")
        return payment

    def payments_for_loan(self, loan_id: str) -> List[Payment]:
        """All payments of a loan in insertion order"""
        payments_data = self.storage.find(self.payments_table, {"loan_id": loan_id})
        return sorted((Payment.from_dict(d) for d in payments_data), key=lambda p: p.sequence)

    def get_chain(self, chain_id: str) -> List[Payment]:
        """Members of a chain in insertion order (empty if unknown)"""
        payments_data = self.storage.find(self.payments_table, {"chain_id": chain_id})
        return sorted((Payment.from_dict(d) for d in payments_data), key=lambda p: p.sequence)

    def edit(
        self,
        payment_id: str,
        new_amount: AmountLike,
        new_status: PaymentStatus,
        new_date: Optional[DateLike] = None
    ) -> Tuple[Payment, Payment]:
        """
        Overwrite amount, status and optionally date of a payment

        Returns:
            (before, after) copies of the payment

        Raises:
            PaymentNotFoundError: If the payment does not exist
            InvalidAmountError: If the new amount is not positive
        """
        value = _positive_amount(new_amount)
        before = self.require_payment(payment_id)
        after = Payment.from_dict(before.to_dict())

        after.amount = value
        after.status = new_status
        if new_date is not None:
            after.payment_date = normalize_date(new_date)

        note = edit_note(before, after)
        after.notes = f"{note}\n{before.notes}" if before.notes else note
        after.updated_at = datetime.now(timezone.utc)

        self._save(after)
        return before, after

    def delete(self, payment_id: str, delete_whole_chain: bool = False) -> List[Payment]:
        """
        Delete a payment, or every member of its chain

        Returns:
            The deleted payments
        """
        payment = self.require_payment(payment_id)

        if delete_whole_chain and payment.chain_id:
            targets = self.get_chain(payment.chain_id)
        else:
            targets = [payment]

        for target in targets:
            self.storage.delete(self.payments_table, target.id)
        return targets
