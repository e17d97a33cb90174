"""
Aggregate Recomputation Module

Derives every cached loan field from the full payment ledger. Aggregates are
always recomputed from scratch and never adjusted by deltas, so running the
fold twice without a ledger change yields the same result.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Optional

from .amounts import ZERO, to_amount, sum_amounts
from .audit import AuditTrail, AuditEventType
from .chains import resolved_installments
from .exceptions import WriteConflictError
from .loans import Loan, LoanAggregates, LoanRegistry, transition_status
from .payments import Payment, PaymentLedger
from .periods import MonthOverflowPolicy, installment_due_date
from .schedule import last_completed_installment_date, next_due_date


class PaymentRating(Enum):
    """Borrower rating derived from the punctuality score"""
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    AVERAGE = "AVERAGE"
    RISKY = "RISKY"


def rating_for_score(score: Decimal) -> PaymentRating:
    if score >= 90:
        return PaymentRating.EXCELLENT
    elif score >= 75:
        return PaymentRating.GOOD
    elif score >= 60:
        return PaymentRating.AVERAGE
    return PaymentRating.RISKY


@dataclass(frozen=True)
class PaymentBehavior:
    """Punctuality summary of a loan's resolved installments"""
    resolved_installments: int
    on_time_installments: int
    late_installments: int
    punctuality_score: Decimal
    rating: PaymentRating

    def to_dict(self) -> Dict[str, Any]:
        return {
            'resolved_installments': self.resolved_installments,
            'on_time_installments': self.on_time_installments,
            'late_installments': self.late_installments,
            'punctuality_score': str(self.punctuality_score),
            'rating': self.rating.value,
        }


def payment_behavior(
    loan: Loan,
    payments: List[Payment],
    policy: MonthOverflowPolicy = MonthOverflowPolicy.CLAMP
) -> PaymentBehavior:
    """
    Score punctuality over resolved installments.

    An installment is on time when it was resolved on or before its due
    date: the chain or payment's expected due date when recorded, otherwise
    the due date of its position in resolution order.
    """
    terms = loan.terms
    resolved = resolved_installments(payments)[:terms.total_periods]

    on_time = 0
    for position, installment in enumerate(resolved, start=1):
        due = installment.expected_due_date
        if due is None:
            due = installment_due_date(terms.schedule_start, terms.period_type, position, policy)
        if installment.resolved_on <= due:
            on_time += 1

    if resolved:
        score = (Decimal(on_time) * 100 / Decimal(len(resolved))).quantize(
            Decimal('0.01'), rounding=ROUND_HALF_UP
        )
    else:
        score = Decimal('100.00')

    return PaymentBehavior(
        resolved_installments=len(resolved),
        on_time_installments=on_time,
        late_installments=len(resolved) - on_time,
        punctuality_score=score,
        rating=rating_for_score(score)
    )


def compute_aggregates(
    loan: Loan,
    payments: List[Payment],
    today: date,
    policy: MonthOverflowPolicy = MonthOverflowPolicy.CLAMP
) -> LoanAggregates:
    """Fold the whole ledger of a loan into its aggregates"""
    terms = loan.terms
    total = terms.total_contract_amount

    cumulative = to_amount(sum_amounts(p.amount for p in payments))
    completed = min(len(resolved_installments(payments)), terms.total_periods)

    last_completed = last_completed_installment_date(
        terms.schedule_start, terms.period_type, completed, policy
    )
    next_due = next_due_date(
        last_completed, terms.period_type, terms.schedule_start,
        completed, terms.total_periods, policy
    )

    return LoanAggregates(
        fully_completed_count=completed,
        cumulative_amount_paid=cumulative,
        remaining_amount=max(ZERO, total - cumulative),
        last_completed_date=last_completed,
        next_due_date=next_due,
        status=transition_status(
            loan.status, completed >= terms.total_periods, next_due, today
        ),
        punctuality_score=payment_behavior(loan, payments, policy).punctuality_score
    )


class AggregateRecomputer:
    """Loads a loan's ledger, folds it and writes the aggregates back"""

    def __init__(
        self,
        loan_registry: LoanRegistry,
        ledger: PaymentLedger,
        audit_trail: AuditTrail,
        policy: MonthOverflowPolicy = MonthOverflowPolicy.CLAMP
    ):
        self.loan_registry = loan_registry
        self.ledger = ledger
        self.audit_trail = audit_trail
        self.policy = policy

    def recompute(self, loan_id: str, today: date,
                  expected_version: Optional[int] = None) -> LoanAggregates:
        """
        Recompute and persist aggregates for one loan

        Args:
            loan_id: Loan to recompute
            today: Reference date for the overdue check
            expected_version: Loan version read at the start of the caller's
                transaction; the stored version is used when omitted

        Raises:
            LoanNotFoundError: If the loan does not exist
            WriteConflictError: If the loan changed since expected_version
        """
        loan = self.loan_registry.require_loan(loan_id)
        if expected_version is not None and loan.version != expected_version:
            raise WriteConflictError(
                f"Loan {loan_id} changed concurrently "
                f"(expected version {expected_version}, found {loan.version})"
            )
        version = loan.version

        previous = loan.aggregates
        aggregates = compute_aggregates(loan, self.ledger.payments_for_loan(loan_id), today, self.policy)

        if aggregates == previous:
            return aggregates

        self.loan_registry.save_aggregates(loan_id, aggregates, version)

        self.audit_trail.log_event(
            event_type=AuditEventType.AGGREGATES_RECOMPUTED,
            entity_type="loan",
            entity_id=loan_id,
            metadata={
                "before": previous.to_dict(),
                "after": aggregates.to_dict()
            }
        )

        if aggregates.status != previous.status:
            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_STATUS_CHANGED,
                entity_type="loan",
                entity_id=loan_id,
                metadata={
                    "old_status": previous.status.value,
                    "new_status": aggregates.status.value
                }
            )

        return aggregates
