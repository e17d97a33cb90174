"""
Lending Engine Module

Transactional facade over the ledger, chain reconciliation and aggregate
recomputation. Every mutation takes the loan's lock, runs in one storage
transaction together with its recomputation and audit entries, and is
retried on transient storage failures.
"""

import threading
import zlib
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from .amounts import AmountLike, sum_amounts
from .audit import AuditTrail, AuditEventType
from .chains import ChainHint, ChainReconciler, ChainSummary
from .config import LendingConfig
from .loans import Loan, LoanAggregates, LoanRegistry, LoanStatus
from .logging_config import get_logger, log_action
from .payments import Payment, PaymentLedger, PaymentStatus
from .periods import DateLike, MonthOverflowPolicy, installment_due_date, installment_number_for_date
from .recompute import AggregateRecomputer, PaymentBehavior, payment_behavior
from .schedule import InstallmentDue, LoanTerms, build_schedule
from .storage import StorageInterface, InMemoryStorage, SQLiteStorage, transient_retry


logger = get_logger("lending.engine")

# Per-loan serialization uses a fixed pool of lock stripes
LOCK_STRIPES = 64


@dataclass
class PaymentResult:
    """Outcome of recording or editing one payment"""
    payment: Payment
    aggregates: LoanAggregates
    chain: Optional[ChainSummary] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'payment': self.payment.to_dict(),
            'aggregates': self.aggregates.to_dict(),
            'chain': self.chain.to_dict() if self.chain else None,
        }


@dataclass
class AdvanceBatchResult:
    """Outcome of an advance batch"""
    payments: List[Payment]
    total_amount: Decimal
    count: int
    aggregates: LoanAggregates

    def to_dict(self) -> Dict[str, Any]:
        return {
            'payments': [p.to_dict() for p in self.payments],
            'total_amount': str(self.total_amount),
            'total_installments': self.count,
            'aggregates': self.aggregates.to_dict(),
        }


@dataclass
class DeleteResult:
    """Outcome of deleting a payment or a whole chain"""
    deleted_count: int
    deleted_chain_id: Optional[str]
    aggregates: LoanAggregates

    def to_dict(self) -> Dict[str, Any]:
        return {
            'deleted_count': self.deleted_count,
            'deleted_chain_id': self.deleted_chain_id,
            'aggregates': self.aggregates.to_dict(),
        }


@dataclass
class ChainCompletionResult:
    """Outcome of completing a chain"""
    is_chain_complete: bool
    chain_total: Decimal
    payment: Payment
    aggregates: LoanAggregates

    def to_dict(self) -> Dict[str, Any]:
        return {
            'is_chain_complete': self.is_chain_complete,
            'chain_total': str(self.chain_total),
            'payment': self.payment.to_dict(),
            'aggregates': self.aggregates.to_dict(),
        }


class LendingEngine:
    """
    Installment scheduling and payment reconciliation engine

    Args:
        storage: Storage backend shared by every component
        audit_trail: Audit trail; one on the same storage is created when omitted
        policy: Month overflow policy for monthly schedules
        retry_attempts: Attempts for transient storage failures
        retry_initial_wait: First backoff wait in seconds
        retry_max_wait: Upper bound for a single backoff wait
        clock: Returns "today" for overdue checks
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: Optional[AuditTrail] = None,
        policy: MonthOverflowPolicy = MonthOverflowPolicy.CLAMP,
        retry_attempts: int = 3,
        retry_initial_wait: float = 0.05,
        retry_max_wait: float = 1.0,
        clock: Optional[Callable[[], date]] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail or AuditTrail(storage)
        self.policy = policy
        self.retry_attempts = retry_attempts
        self.retry_initial_wait = retry_initial_wait
        self.retry_max_wait = retry_max_wait
        self.clock = clock or date.today

        self.loan_registry = LoanRegistry(storage, self.audit_trail)
        self.ledger = PaymentLedger(storage)
        self.reconciler = ChainReconciler(self.ledger, policy)
        self.recomputer = AggregateRecomputer(
            self.loan_registry, self.ledger, self.audit_trail, policy
        )

        self._locks = [threading.RLock() for _ in range(LOCK_STRIPES)]

    @classmethod
    def from_config(cls, config: LendingConfig,
                    storage: Optional[StorageInterface] = None) -> 'LendingEngine':
        """Build an engine wired the way the configuration describes"""
        if storage is None:
            if config.use_sqlite:
                storage = SQLiteStorage(config.database_path)
            else:
                storage = InMemoryStorage()

        return cls(
            storage=storage,
            audit_trail=AuditTrail(storage, enabled=config.enable_audit_logging),
            policy=MonthOverflowPolicy(config.month_overflow_policy.lower()),
            retry_attempts=config.storage_retry_attempts,
            retry_initial_wait=config.storage_retry_initial_wait_seconds,
            retry_max_wait=config.storage_retry_max_wait_seconds
        )

    def _loan_lock(self, loan_id: str) -> threading.RLock:
        """Lock stripe guarding `loan_id`; unrelated loans may share a stripe"""
        return self._locks[zlib.crc32(loan_id.encode("utf-8")) % len(self._locks)]

    def _run(self, loan_id: str, operation: Callable[[], Any]) -> Any:
        """Run `operation` under the loan lock in one transaction, retrying transient failures"""
        def attempt():
            with self._loan_lock(loan_id):
                with self.storage.atomic():
                    return operation()

        retrying = transient_retry(self.retry_attempts, self.retry_initial_wait, self.retry_max_wait)
        return retrying(attempt)

    # Loans

    def create_loan(self, borrower_id: str, terms: LoanTerms,
                    loan_number: Optional[str] = None) -> Loan:
        """Register an approved loan and derive its initial aggregates"""
        with self.storage.atomic():
            created = self.loan_registry.create_loan(borrower_id, terms, loan_number)
            self.recomputer.recompute(created.id, self.clock(), created.version)
            loan = self.loan_registry.require_loan(created.id)

        log_action(
            logger, "info", "Loan registered",
            action="create_loan", resource=loan.id,
            extra={"borrower_id": borrower_id, "total_periods": terms.total_periods}
        )
        return loan

    def get_loan(self, loan_id: str) -> Loan:
        return self.loan_registry.require_loan(loan_id)

    def list_loans(self, status: Optional[LoanStatus] = None) -> List[Loan]:
        return self.loan_registry.list_loans(status)

    def get_schedule(self, loan_id: str) -> List[InstallmentDue]:
        return build_schedule(self.get_loan(loan_id).terms, self.policy)

    def installment_for_date(self, loan_id: str, on_date: DateLike) -> InstallmentDue:
        """Installment whose period contains `on_date`, capped at the last one"""
        terms = self.get_loan(loan_id).terms
        number = min(
            installment_number_for_date(terms.schedule_start, terms.period_type, on_date, self.policy),
            terms.total_periods
        )
        return InstallmentDue(
            number=number,
            due_date=installment_due_date(terms.schedule_start, terms.period_type, number, self.policy),
            amount=terms.expected_installment_amount(number)
        )

    def list_payments(self, loan_id: str) -> List[Payment]:
        self.get_loan(loan_id)
        return self.ledger.payments_for_loan(loan_id)

    def list_chains(self, loan_id: str) -> List[ChainSummary]:
        """Every installment chain of the loan, oldest anchor first"""
        self.get_loan(loan_id)
        summaries = self.reconciler.summarize(self.ledger.payments_for_loan(loan_id))
        return sorted(summaries.values(), key=lambda summary: summary.anchor.sequence)

    # Payments

    def record_payment(
        self,
        loan_id: str,
        amount: AmountLike,
        payment_date: DateLike,
        status: PaymentStatus,
        chain_hint: Optional[ChainHint] = None,
        collector: Optional[str] = None,
        notes: str = ""
    ) -> PaymentResult:
        """
        Record one payment and recompute the loan

        PARTIAL payments always join a chain: the hinted installment's, or the
        next unresolved installment's when no hint is given.

        Raises:
            InvalidAmountError: If amount is zero or negative
            LoanNotFoundError: If the loan does not exist
        """
        def operation():
            loan = self.loan_registry.require_loan(loan_id)
            version = loan.version

            hint = chain_hint
            if hint is None and status == PaymentStatus.PARTIAL:
                hint = self.reconciler.default_hint(loan, self.ledger.payments_for_loan(loan_id))
            membership = self.reconciler.membership_for(loan, hint) if hint else None

            payment = self.ledger.record(
                loan_id=loan_id,
                amount=amount,
                payment_date=payment_date,
                status=status,
                chain=membership,
                collector=collector,
                notes=notes
            )

            self.audit_trail.log_event(
                event_type=AuditEventType.PAYMENT_RECORDED,
                entity_type="payment",
                entity_id=payment.id,
                metadata={
                    "loan_id": loan_id,
                    "amount": payment.amount,
                    "status": payment.status,
                    "payment_date": payment.payment_date,
                    "chain_id": payment.chain_id,
                    "installment_number": payment.installment_number
                },
                user_id=collector
            )

            aggregates = self.recomputer.recompute(loan_id, self.clock(), version)
            chain = self.reconciler.get_chain_summary(payment.chain_id) if payment.chain_id else None
            return PaymentResult(payment=payment, aggregates=aggregates, chain=chain)

        result = self._run(loan_id, operation)

        log_action(
            logger, "info", "Payment recorded",
            user_id=collector, action="record_payment", resource=loan_id,
            extra={
                "payment_id": result.payment.id,
                "amount": str(result.payment.amount),
                "status": result.payment.status.value,
                "chain_id": result.payment.chain_id,
                "fully_completed_count": result.aggregates.fully_completed_count
            }
        )
        return result

    def record_advance_payments(
        self,
        loan_id: str,
        from_date: DateLike,
        to_date: DateLike,
        amount_per_installment: AmountLike,
        collector: Optional[str] = None
    ) -> AdvanceBatchResult:
        """
        Record one ADVANCE payment per due date in [from_date, to_date]

        The whole batch commits or rolls back as one unit.

        Raises:
            InvalidRangeError: If from_date is after to_date
            EmptyDateRangeError: If no due date falls in the range
            InvalidAmountError: If the amount is not positive
            LoanNotFoundError: If the loan does not exist
        """
        def operation():
            loan = self.loan_registry.require_loan(loan_id)
            version = loan.version

            payments = self.ledger.record_batch(
                loan, from_date, to_date, amount_per_installment,
                status=PaymentStatus.ADVANCE, collector=collector, policy=self.policy
            )
            total_amount = sum_amounts(p.amount for p in payments)

            self.audit_trail.log_event(
                event_type=AuditEventType.ADVANCE_BATCH_RECORDED,
                entity_type="loan",
                entity_id=loan_id,
                metadata={
                    "batch_id": payments[0].batch_id,
                    "from_date": payments[0].advance_from_date,
                    "to_date": payments[0].advance_to_date,
                    "count": len(payments),
                    "total_amount": total_amount,
                    "payment_ids": [p.id for p in payments]
                },
                user_id=collector
            )

            aggregates = self.recomputer.recompute(loan_id, self.clock(), version)
            return AdvanceBatchResult(
                payments=payments,
                total_amount=total_amount,
                count=len(payments),
                aggregates=aggregates
            )

        result = self._run(loan_id, operation)

        log_action(
            logger, "info", "Advance payments recorded",
            user_id=collector, action="record_advance_payments", resource=loan_id,
            extra={"count": result.count, "total_amount": str(result.total_amount)}
        )
        return result

    def edit_payment(
        self,
        payment_id: str,
        amount: AmountLike,
        status: PaymentStatus,
        payment_date: Optional[DateLike] = None,
        user_id: Optional[str] = None
    ) -> PaymentResult:
        """
        Overwrite a payment and recompute its loan

        No check is made against the installment's expected remaining amount.

        Raises:
            PaymentNotFoundError: If the payment does not exist
            InvalidAmountError: If the new amount is not positive
        """
        loan_id = self.ledger.require_payment(payment_id).loan_id

        def operation():
            version = self.loan_registry.require_loan(loan_id).version
            before, after = self.ledger.edit(payment_id, amount, status, payment_date)

            self.audit_trail.log_event(
                event_type=AuditEventType.PAYMENT_EDITED,
                entity_type="payment",
                entity_id=payment_id,
                metadata={
                    "loan_id": loan_id,
                    "before": {
                        "amount": before.amount,
                        "status": before.status,
                        "payment_date": before.payment_date
                    },
                    "after": {
                        "amount": after.amount,
                        "status": after.status,
                        "payment_date": after.payment_date
                    }
                },
                user_id=user_id
            )

            aggregates = self.recomputer.recompute(loan_id, self.clock(), version)
            chain = self.reconciler.get_chain_summary(after.chain_id) if after.chain_id else None
            return PaymentResult(payment=after, aggregates=aggregates, chain=chain)

        result = self._run(loan_id, operation)

        log_action(
            logger, "info", "Payment edited",
            user_id=user_id, action="edit_payment", resource=payment_id,
            extra={"loan_id": loan_id, "amount": str(result.payment.amount)}
        )
        return result

    def delete_payment(self, payment_id: str, delete_chain: bool = False,
                       user_id: Optional[str] = None) -> DeleteResult:
        """
        Delete a payment, or its whole chain, and recompute the loan

        Raises:
            PaymentNotFoundError: If the payment does not exist
        """
        loan_id = self.ledger.require_payment(payment_id).loan_id

        def operation():
            version = self.loan_registry.require_loan(loan_id).version
            deleted = self.ledger.delete(payment_id, delete_whole_chain=delete_chain)

            deleted_chain_id = None
            if delete_chain and deleted[0].chain_id:
                deleted_chain_id = deleted[0].chain_id
                self.audit_trail.log_event(
                    event_type=AuditEventType.CHAIN_DELETED,
                    entity_type="chain",
                    entity_id=deleted_chain_id,
                    metadata={
                        "loan_id": loan_id,
                        "payment_ids": [p.id for p in deleted],
                        "total_amount": sum_amounts(p.amount for p in deleted)
                    },
                    user_id=user_id
                )
            else:
                self.audit_trail.log_event(
                    event_type=AuditEventType.PAYMENT_DELETED,
                    entity_type="payment",
                    entity_id=payment_id,
                    metadata={
                        "loan_id": loan_id,
                        "amount": deleted[0].amount,
                        "status": deleted[0].status,
                        "payment_date": deleted[0].payment_date,
                        "chain_id": deleted[0].chain_id
                    },
                    user_id=user_id
                )

            aggregates = self.recomputer.recompute(loan_id, self.clock(), version)
            return DeleteResult(
                deleted_count=len(deleted),
                deleted_chain_id=deleted_chain_id,
                aggregates=aggregates
            )

        result = self._run(loan_id, operation)

        log_action(
            logger, "info", "Payment deleted",
            user_id=user_id, action="delete_payment", resource=payment_id,
            extra={"loan_id": loan_id, "deleted_count": result.deleted_count}
        )
        return result

    def complete_chain(
        self,
        chain_id: str,
        additional_amount: AmountLike,
        payment_date: DateLike,
        collector: Optional[str] = None
    ) -> ChainCompletionResult:
        """
        Append a PAID member to a partial chain and recompute the loan

        Raises:
            ChainNotFoundError: If the chain has no members
            NonPartialChainCompletionError: If the chain's anchor is not PARTIAL
            InvalidAmountError: If the amount is not positive
        """
        loan_id = self.reconciler.get_chain_summary(chain_id).loan_id

        def operation():
            version = self.loan_registry.require_loan(loan_id).version
            payment = self.reconciler.complete(chain_id, additional_amount, payment_date, collector)
            summary = self.reconciler.get_chain_summary(chain_id)

            self.audit_trail.log_event(
                event_type=AuditEventType.CHAIN_COMPLETED,
                entity_type="chain",
                entity_id=chain_id,
                metadata={
                    "loan_id": loan_id,
                    "payment_id": payment.id,
                    "amount": payment.amount,
                    "chain_total": summary.total_paid,
                    "installment_amount": summary.installment_amount,
                    "is_complete": summary.is_complete
                },
                user_id=collector
            )

            aggregates = self.recomputer.recompute(loan_id, self.clock(), version)
            return ChainCompletionResult(
                is_chain_complete=summary.is_complete,
                chain_total=summary.total_paid,
                payment=payment,
                aggregates=aggregates
            )

        result = self._run(loan_id, operation)

        log_action(
            logger, "info", "Chain completion recorded",
            user_id=collector, action="complete_chain", resource=chain_id,
            extra={"loan_id": loan_id, "chain_total": str(result.chain_total),
                   "is_chain_complete": result.is_chain_complete}
        )
        return result

    # Helpers

    def get_chain(self, chain_id: str) -> ChainSummary:
        return self.reconciler.get_chain_summary(chain_id)

    def recompute_loan(self, loan_id: str) -> LoanAggregates:
        """Recompute and persist a loan's aggregates from its ledger"""
        def operation():
            version = self.loan_registry.require_loan(loan_id).version
            return self.recomputer.recompute(loan_id, self.clock(), version)

        return self._run(loan_id, operation)

    def payment_behavior(self, loan_id: str) -> PaymentBehavior:
        loan = self.get_loan(loan_id)
        return payment_behavior(loan, self.ledger.payments_for_loan(loan_id), self.policy)
