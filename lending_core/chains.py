"""
Chain Reconciliation Module

Groups partial payments toward one installment into a chain and decides
when an installment is resolved. A chain is complete once the sum of its
members reaches the installment amount; the shortfall it reports is
guidance only and never validated against.
"""

import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from itertools import groupby
from typing import Any, Dict, List, Optional

from .amounts import AmountLike, ZERO, sum_amounts
from .exceptions import ChainNotFoundError, NonPartialChainCompletionError, ValidationError
from .periods import DateLike, MonthOverflowPolicy, normalize_date, installment_due_date
from .payments import ChainMembership, Payment, PaymentLedger, PaymentStatus


_UNSAFE_ID_CHARS = re.compile(r'[^A-Za-z0-9]')


def chain_id_for(loan_id: str, expected_due_date: DateLike, installment_number: int) -> str:
    """partial_<sanitized loan id>_<YYYYMMDD>_<installment number>"""
    clean_loan_id = _UNSAFE_ID_CHARS.sub('_', loan_id)
    due = normalize_date(expected_due_date)
    return f"partial_{clean_loan_id}_{due.strftime('%Y%m%d')}_{installment_number}"


@dataclass(frozen=True)
class ChainHint:
    """Which installment a partial payment is meant for"""
    installment_number: int
    expected_due_date: Optional[date] = None
    installment_amount: Optional[Decimal] = None


@dataclass
class ChainSummary:
    """State of one installment chain"""
    chain_id: str
    loan_id: str
    installment_number: int
    expected_due_date: date
    installment_amount: Decimal
    total_paid: Decimal
    members: List[Payment] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return self.total_paid >= self.installment_amount

    @property
    def shortfall(self) -> Decimal:
        """Suggested remaining amount; never enforced"""
        return max(ZERO, self.installment_amount - self.total_paid)

    @property
    def member_count(self) -> int:
        return len(self.members)

    @property
    def anchor(self) -> Payment:
        return self.members[0]

    @property
    def completed_on(self) -> Optional[date]:
        if not self.is_complete:
            return None
        return max(p.payment_date for p in self.members)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'chain_id': self.chain_id,
            'loan_id': self.loan_id,
            'installment_number': self.installment_number,
            'expected_due_date': self.expected_due_date.isoformat(),
            'installment_amount': str(self.installment_amount),
            'total_paid': str(self.total_paid),
            'is_complete': self.is_complete,
            'suggested_remaining': str(self.shortfall),
            'member_count': self.member_count,
            'completed_on': self.completed_on.isoformat() if self.completed_on else None,
            'members': [p.to_dict() for p in self.members],
        }


@dataclass(frozen=True)
class ResolvedInstallment:
    """An installment settled by an unchained payment or a complete chain"""
    resolved_on: date
    expected_due_date: Optional[date]
    sequence: int  # Sequence of the payment that resolved it


def _summary_from_members(members: List[Payment]) -> ChainSummary:
    anchor = members[0]
    return ChainSummary(
        chain_id=anchor.chain_id,
        loan_id=anchor.loan_id,
        installment_number=anchor.installment_number,
        expected_due_date=anchor.expected_due_date,
        installment_amount=anchor.installment_amount,
        total_paid=sum_amounts(p.amount for p in members),
        members=list(members)
    )


def summarize_chains(payments: List[Payment]) -> Dict[str, ChainSummary]:
    """ChainSummary per chain id found in `payments`"""
    chained = sorted((p for p in payments if p.chain_id), key=lambda p: (p.chain_id, p.sequence))
    return {
        chain_id: _summary_from_members(list(members))
        for chain_id, members in groupby(chained, key=lambda p: p.chain_id)
    }


def resolved_installments(payments: List[Payment]) -> List[ResolvedInstallment]:
    """
    Installments settled by the ledger, in resolution order.

    An unchained PAID or ADVANCE payment resolves one installment; a chain
    resolves one installment once complete, at the member that pushed it
    over the installment amount. Unchained PARTIAL payments and incomplete
    chains resolve nothing.
    """
    resolved = []

    for payment in payments:
        if payment.chain_id is None and payment.status in (PaymentStatus.PAID, PaymentStatus.ADVANCE):
            resolved.append(ResolvedInstallment(
                resolved_on=payment.payment_date,
                expected_due_date=payment.expected_due_date,
                sequence=payment.sequence
            ))

    for summary in summarize_chains(payments).values():
        if not summary.is_complete:
            continue
        running = ZERO
        for member in summary.members:
            running += member.amount
            if running >= summary.installment_amount:
                resolved.append(ResolvedInstallment(
                    resolved_on=summary.completed_on,
                    expected_due_date=summary.expected_due_date,
                    sequence=member.sequence
                ))
                break

    resolved.sort(key=lambda r: r.sequence)
    return resolved


class ChainReconciler:
    """Assigns partial payments to chains and completes chains"""

    def __init__(self, ledger: PaymentLedger,
                 policy: MonthOverflowPolicy = MonthOverflowPolicy.CLAMP):
        self.ledger = ledger
        self.policy = policy

    def membership_for(self, loan, hint: ChainHint) -> ChainMembership:
        """Fill in due date and amount from the schedule where the hint omits them"""
        terms = loan.terms
        number = hint.installment_number
        if number < 1 or number > terms.total_periods:
            raise ValidationError(
                f"Installment {number} is outside the schedule of {terms.total_periods} periods"
            )

        due = hint.expected_due_date
        if due is None:
            due = installment_due_date(terms.schedule_start, terms.period_type, number, self.policy)
        else:
            due = normalize_date(due)

        amount = hint.installment_amount
        if amount is None:
            amount = terms.expected_installment_amount(number)

        return ChainMembership(
            chain_id=chain_id_for(loan.id, due, number),
            installment_number=number,
            expected_due_date=due,
            installment_amount=amount
        )

    def default_hint(self, loan, payments: List[Payment]) -> ChainHint:
        """Hint for the next unresolved installment of the loan"""
        completed = min(len(resolved_installments(payments)), loan.terms.total_periods)
        return ChainHint(installment_number=min(completed + 1, loan.terms.total_periods))

    def summarize(self, payments: List[Payment]) -> Dict[str, ChainSummary]:
        return summarize_chains(payments)

    def get_chain_summary(self, chain_id: str) -> ChainSummary:
        """
        Raises:
            ChainNotFoundError: If no payment carries the chain id
        """
        members = self.ledger.get_chain(chain_id)
        if not members:
            raise ChainNotFoundError(f"Chain {chain_id} not found")
        return _summary_from_members(members)

    def complete(
        self,
        chain_id: str,
        additional_amount: AmountLike,
        payment_date: DateLike,
        collector: Optional[str] = None,
        notes: str = ""
    ) -> Payment:
        """
        Append a PAID member to a chain anchored by a PARTIAL payment.

        The amount is not checked against the shortfall.

        Raises:
            ChainNotFoundError: If the chain has no members
            NonPartialChainCompletionError: If the anchor payment is not PARTIAL
        """
        summary = self.get_chain_summary(chain_id)
        if summary.anchor.status != PaymentStatus.PARTIAL:
            raise NonPartialChainCompletionError(
                f"Cannot complete a non-partial payment (chain {chain_id})"
            )

        membership = ChainMembership(
            chain_id=summary.chain_id,
            installment_number=summary.installment_number,
            expected_due_date=summary.expected_due_date,
            installment_amount=summary.installment_amount
        )
        return self.ledger.record(
            loan_id=summary.loan_id,
            amount=additional_amount,
            payment_date=payment_date,
            status=PaymentStatus.PAID,
            chain=membership,
            collector=collector,
            notes=notes or f"Completion payment for installment {summary.installment_number}"
        )
