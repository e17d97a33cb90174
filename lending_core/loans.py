"""
Loan Module

Loan records: contract terms plus the cached aggregates derived from the
payment ledger. Aggregates are written through `LoanRegistry.save_aggregates`
only, which the recomputation engine owns.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from .amounts import ZERO, to_amount
from .audit import AuditTrail, AuditEventType
from .exceptions import LoanNotFoundError, WriteConflictError
from .periods import PeriodType
from .schedule import LoanTerms, InstallmentMode
from .storage import StorageInterface, StorageRecord


class LoanStatus(Enum):
    """Loan lifecycle states"""
    ACTIVE = "active"        # Repaying, nothing past due
    OVERDUE = "overdue"      # Next due date is in the past
    COMPLETED = "completed"  # Every installment resolved (terminal until a correction)


def transition_status(previous: LoanStatus, fully_completed: bool,
                      next_due: Optional[date], today: date) -> LoanStatus:
    """
    Status implied by the recomputed aggregates.

    COMPLETED once every installment is resolved. A loan that was active
    (or already overdue) becomes OVERDUE when the next due date is strictly
    before today. Everything else is ACTIVE, which restores a completed loan
    after a correction even when its reopened installment is past due.
    """
    if fully_completed:
        return LoanStatus.COMPLETED
    if (next_due is not None and next_due < today
            and previous in (LoanStatus.ACTIVE, LoanStatus.OVERDUE)):
        return LoanStatus.OVERDUE
    return LoanStatus.ACTIVE


@dataclass(frozen=True)
class LoanAggregates:
    """Everything the recomputation engine derives from the ledger"""
    fully_completed_count: int
    cumulative_amount_paid: Decimal
    remaining_amount: Decimal
    last_completed_date: date
    next_due_date: Optional[date]
    status: LoanStatus
    punctuality_score: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            'fully_completed_count': self.fully_completed_count,
            'cumulative_amount_paid': str(self.cumulative_amount_paid),
            'remaining_amount': str(self.remaining_amount),
            'last_completed_date': self.last_completed_date.isoformat(),
            'next_due_date': self.next_due_date.isoformat() if self.next_due_date else None,
            'status': self.status.value,
            'punctuality_score': str(self.punctuality_score),
        }


@dataclass
class Loan(StorageRecord):
    """Loan with terms and ledger-derived aggregates"""
    borrower_id: str
    loan_number: str
    terms: LoanTerms
    status: LoanStatus = LoanStatus.ACTIVE

    # Derived from the payment ledger
    fully_completed_count: int = 0
    cumulative_amount_paid: Decimal = ZERO
    remaining_amount: Optional[Decimal] = None
    last_completed_date: Optional[date] = None
    next_due_date: Optional[date] = None
    punctuality_score: Decimal = Decimal('100.00')

    # Optimistic concurrency token, bumped on every aggregate write
    version: int = 0

    def __post_init__(self):
        if self.remaining_amount is None:
            self.remaining_amount = self.terms.total_contract_amount
        if self.last_completed_date is None:
            self.last_completed_date = self.terms.schedule_start
        if self.next_due_date is None and self.fully_completed_count == 0:
            self.next_due_date = self.terms.schedule_start

    @property
    def total_contract_amount(self) -> Decimal:
        return self.terms.total_contract_amount

    @property
    def aggregates(self) -> LoanAggregates:
        return LoanAggregates(
            fully_completed_count=self.fully_completed_count,
            cumulative_amount_paid=self.cumulative_amount_paid,
            remaining_amount=self.remaining_amount,
            last_completed_date=self.last_completed_date,
            next_due_date=self.next_due_date,
            status=self.status,
            punctuality_score=self.punctuality_score
        )

    def to_dict(self) -> Dict[str, Any]:
        terms = self.terms
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'borrower_id': self.borrower_id,
            'loan_number': self.loan_number,
            'terms': {
                'principal_amount': str(terms.principal_amount),
                'installment_amount': str(terms.installment_amount),
                'period_type': terms.period_type.value,
                'total_periods': terms.total_periods,
                'schedule_start': terms.schedule_start.isoformat(),
                'installment_mode': terms.installment_mode.value,
                'final_installment_amount': (
                    str(terms.final_installment_amount)
                    if terms.final_installment_amount is not None else None
                ),
            },
            'status': self.status.value,
            'fully_completed_count': self.fully_completed_count,
            'cumulative_amount_paid': str(self.cumulative_amount_paid),
            'remaining_amount': str(self.remaining_amount),
            'last_completed_date': self.last_completed_date.isoformat(),
            'next_due_date': self.next_due_date.isoformat() if self.next_due_date else None,
            'punctuality_score': str(self.punctuality_score),
            'version': self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        terms_data = data['terms']
        final_amount = terms_data.get('final_installment_amount')

        terms = LoanTerms(
            principal_amount=Decimal(terms_data['principal_amount']),
            installment_amount=Decimal(terms_data['installment_amount']),
            period_type=PeriodType(terms_data['period_type']),
            total_periods=terms_data['total_periods'],
            schedule_start=date.fromisoformat(terms_data['schedule_start']),
            installment_mode=InstallmentMode(terms_data['installment_mode']),
            final_installment_amount=Decimal(final_amount) if final_amount is not None else None
        )

        next_due = data.get('next_due_date')
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            borrower_id=data['borrower_id'],
            loan_number=data['loan_number'],
            terms=terms,
            status=LoanStatus(data['status']),
            fully_completed_count=data['fully_completed_count'],
            cumulative_amount_paid=Decimal(data['cumulative_amount_paid']),
            remaining_amount=Decimal(data['remaining_amount']),
            last_completed_date=date.fromisoformat(data['last_completed_date']),
            next_due_date=date.fromisoformat(next_due) if next_due else None,
            punctuality_score=Decimal(data['punctuality_score']),
            version=data.get('version', 0)
        )


class LoanRegistry:
    """
    Stores loans created by the approval workflow and owns the single write
    path for their derived aggregates.
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.loans_table = "loans"

    def create_loan(
        self,
        borrower_id: str,
        terms: LoanTerms,
        loan_number: Optional[str] = None
    ) -> Loan:
        """
        Register an approved loan with empty aggregates

        Args:
            borrower_id: Customer the loan was approved for
            terms: Contract terms
            loan_number: Human-facing number; generated when omitted

        Returns:
            Created Loan object
        """
        now = datetime.now(timezone.utc)
        loan_id = str(uuid.uuid4())

        loan = Loan(
            id=loan_id,
            created_at=now,
            updated_at=now,
            borrower_id=borrower_id,
            loan_number=loan_number or f"LN{loan_id[:8].upper()}",
            terms=terms
        )
        self.storage.save(self.loans_table, loan.id, loan.to_dict())

        self.audit_trail.log_event(
            event_type=AuditEventType.LOAN_CREATED,
            entity_type="loan",
            entity_id=loan.id,
            metadata={
                "borrower_id": borrower_id,
                "loan_number": loan.loan_number,
                "installment_amount": terms.installment_amount,
                "period_type": terms.period_type.value,
                "total_periods": terms.total_periods,
                "installment_mode": terms.installment_mode.value,
                "total_contract_amount": terms.total_contract_amount,
                "schedule_start": terms.schedule_start
            }
        )

        return loan

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        """Get loan by ID"""
        loan_dict = self.storage.load(self.loans_table, loan_id)
        if loan_dict:
            return Loan.from_dict(loan_dict)
        return None

    def require_loan(self, loan_id: str) -> Loan:
        """Get loan by ID or raise LoanNotFoundError"""
        loan = self.get_loan(loan_id)
        if not loan:
            raise LoanNotFoundError(f"Loan {loan_id} not found")
        return loan

    def list_loans(self, status: Optional[LoanStatus] = None) -> List[Loan]:
        """All loans, optionally filtered by status"""
        if status:
            loans_data = self.storage.find(self.loans_table, {"status": status.value})
        else:
            loans_data = self.storage.load_all(self.loans_table)
        return [Loan.from_dict(data) for data in loans_data]

    def save_aggregates(self, loan_id: str, aggregates: LoanAggregates,
                        expected_version: int) -> Loan:
        """
        Overwrite the loan's derived fields.

        Raises WriteConflictError when the stored version is no longer the one
        the caller computed from.
        """
        loan = self.require_loan(loan_id)
        if loan.version != expected_version:
            raise WriteConflictError(
                f"Loan {loan_id} changed concurrently "
                f"(expected version {expected_version}, found {loan.version})"
            )

        loan.fully_completed_count = aggregates.fully_completed_count
        loan.cumulative_amount_paid = to_amount(aggregates.cumulative_amount_paid)
        loan.remaining_amount = to_amount(aggregates.remaining_amount)
        loan.last_completed_date = aggregates.last_completed_date
        loan.next_due_date = aggregates.next_due_date
        loan.status = aggregates.status
        loan.punctuality_score = aggregates.punctuality_score
        loan.version += 1
        loan.updated_at = datetime.now(timezone.utc)

        self.storage.save(self.loans_table, loan.id, loan.to_dict())
        return loan
