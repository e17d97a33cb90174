"""
Tests for the payment ledger
"""

import pytest
from datetime import date
from decimal import Decimal

from lending_core.audit import AuditTrail
from lending_core.exceptions import (
    InvalidAmountError, InvalidRangeError, EmptyDateRangeError, PaymentNotFoundError
)
from lending_core.loans import LoanRegistry
from lending_core.payments import ChainMembership, Payment, PaymentLedger, PaymentStatus
from lending_core.periods import PeriodType
from lending_core.schedule import LoanTerms
from lending_core.storage import InMemoryStorage


class TestPaymentLedger:
    """Test recording, editing and deleting payments"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.loan_registry = LoanRegistry(self.storage, self.audit_trail)
        self.ledger = PaymentLedger(self.storage)

        self.loan = self.loan_registry.create_loan(
            borrower_id="BORROWER001",
            terms=LoanTerms(
                principal_amount=Decimal('2500.00'),
                installment_amount=Decimal('100.00'),
                period_type=PeriodType.DAILY,
                total_periods=30,
                schedule_start=date(2025, 1, 1)
            )
        )

    def test_record_payment(self):
        payment = self.ledger.record(
            self.loan.id, Decimal('100'), "2025-01-01", PaymentStatus.PAID,
            collector="AGENT7", notes="cash"
        )

        assert payment.amount == Decimal('100.00')
        assert payment.payment_date == date(2025, 1, 1)
        assert payment.sequence == 1
        assert payment.collector == "AGENT7"
        assert not payment.is_chained

        loaded = self.ledger.get_payment(payment.id)
        assert loaded == payment

    def test_sequence_follows_insertion_order(self):
        for day in (5, 2, 9):
            self.ledger.record(self.loan.id, Decimal('100'), date(2025, 1, day), PaymentStatus.PAID)

        payments = self.ledger.payments_for_loan(self.loan.id)
        assert [p.sequence for p in payments] == [1, 2, 3]
        assert [p.payment_date.day for p in payments] == [5, 2, 9]

    @pytest.mark.parametrize("amount", [Decimal('0'), Decimal('-5'), "abc"])
    def test_non_positive_amount_rejected(self, amount):
        with pytest.raises(InvalidAmountError):
            self.ledger.record(self.loan.id, amount, date(2025, 1, 1), PaymentStatus.PAID)
        assert self.ledger.payments_for_loan(self.loan.id) == []

    def test_no_upper_bound(self):
        payment = self.ledger.record(
            self.loan.id, Decimal('999999.99'), date(2025, 1, 1), PaymentStatus.PAID
        )
        assert payment.amount == Decimal('999999.99')

    def test_chain_membership_written(self):
        membership = ChainMembership(
            chain_id="partial_L1_20250101_1",
            installment_number=1,
            expected_due_date=date(2025, 1, 1),
            installment_amount=Decimal('100.00')
        )
        first = self.ledger.record(
            self.loan.id, Decimal('40'), date(2025, 1, 1), PaymentStatus.PARTIAL, chain=membership
        )
        second = self.ledger.record(
            self.loan.id, Decimal('60'), date(2025, 1, 2), PaymentStatus.PAID, chain=membership
        )

        chain = self.ledger.get_chain("partial_L1_20250101_1")
        assert [p.id for p in chain] == [first.id, second.id]
        assert chain[0].expected_due_date == date(2025, 1, 1)
        assert chain[0].installment_amount == Decimal('100.00')
        assert self.ledger.get_chain("partial_unknown") == []

    def test_record_batch(self):
        payments = self.ledger.record_batch(
            self.loan, date(2025, 1, 1), date(2025, 1, 4), Decimal('100'), collector="AGENT7"
        )

        assert len(payments) == 4
        assert [p.payment_date for p in payments] == [date(2025, 1, d) for d in range(1, 5)]
        assert all(p.status == PaymentStatus.ADVANCE for p in payments)
        assert [p.installment_number for p in payments] == [1, 2, 3, 4]
        assert len({p.batch_id for p in payments}) == 1
        assert payments[0].advance_from_date == date(2025, 1, 1)
        assert payments[0].advance_to_date == date(2025, 1, 4)
        assert [p.sequence for p in payments] == [1, 2, 3, 4]

    def test_record_batch_inverted_range(self):
        with pytest.raises(InvalidRangeError):
            self.ledger.record_batch(self.loan, date(2025, 1, 5), date(2025, 1, 1), Decimal('100'))

    def test_record_batch_empty_range(self):
        with pytest.raises(EmptyDateRangeError):
            self.ledger.record_batch(self.loan, date(2024, 12, 1), date(2024, 12, 5), Decimal('100'))
        assert self.ledger.payments_for_loan(self.loan.id) == []

    def test_record_batch_invalid_amount(self):
        with pytest.raises(InvalidAmountError):
            self.ledger.record_batch(self.loan, date(2025, 1, 1), date(2025, 1, 4), Decimal('0'))

    def test_edit_payment(self):
        payment = self.ledger.record(
            self.loan.id, Decimal('200'), date(2025, 1, 1), PaymentStatus.PARTIAL, notes="first visit"
        )

        before, after = self.ledger.edit(
            payment.id, Decimal('300'), PaymentStatus.PAID, new_date=date(2025, 1, 3)
        )

        assert before.amount == Decimal('200.00')
        assert after.amount == Decimal('300.00')
        assert after.status == PaymentStatus.PAID
        assert after.payment_date == date(2025, 1, 3)
        assert after.sequence == before.sequence
        assert after.notes.startswith(
            "Edited: Amount 200.00→300.00, Status Partial→Paid, Date 2025-01-01→2025-01-03"
        )
        assert after.notes.endswith("first visit")
        assert self.ledger.get_payment(payment.id).amount == Decimal('300.00')

    def test_edit_without_date_change(self):
        payment = self.ledger.record(self.loan.id, Decimal('200'), date(2025, 1, 1), PaymentStatus.PAID)
        _, after = self.ledger.edit(payment.id, Decimal('150'), PaymentStatus.PAID)

        assert after.payment_date == date(2025, 1, 1)
        assert after.notes == "Edited: Amount 200.00→150.00, Status Paid→Paid"

    def test_edit_rejects_non_positive_amount(self):
        payment = self.ledger.record(self.loan.id, Decimal('200'), date(2025, 1, 1), PaymentStatus.PAID)
        with pytest.raises(InvalidAmountError):
            self.ledger.edit(payment.id, Decimal('0'), PaymentStatus.PAID)

    def test_edit_unknown_payment(self):
        with pytest.raises(PaymentNotFoundError):
            self.ledger.edit("missing", Decimal('10'), PaymentStatus.PAID)

    def test_delete_single_and_chain(self):
        membership = ChainMembership("chain_1", 1, date(2025, 1, 1), Decimal('100.00'))
        members = [
            self.ledger.record(self.loan.id, Decimal('30'), date(2025, 1, 1),
                               PaymentStatus.PARTIAL, chain=membership)
            for _ in range(3)
        ]

        deleted = self.ledger.delete(members[0].id)
        assert [p.id for p in deleted] == [members[0].id]
        assert len(self.ledger.get_chain("chain_1")) == 2

        deleted = self.ledger.delete(members[1].id, delete_whole_chain=True)
        assert len(deleted) == 2
        assert self.ledger.get_chain("chain_1") == []

    def test_delete_unknown_payment(self):
        with pytest.raises(PaymentNotFoundError):
            self.ledger.delete("missing")

    def test_payment_serialization(self):
        payment = self.ledger.record(
            self.loan.id, Decimal('100'), date(2025, 1, 1), PaymentStatus.ADVANCE
        )
        data = payment.to_dict()

        assert data['amount'] == "100.00"
        assert data['status'] == "Advance"
        assert data['payment_date'] == "2025-01-01"
        assert Payment.from_dict(data) == payment
