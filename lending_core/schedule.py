"""
Schedule Calculator Module

Loan terms, contract totals and the theoretical due-date schedule.
Schedule position is always driven by the number of fully-completed
installments, never by the raw number of payment records.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from .amounts import to_amount
from .exceptions import InvalidLoanTermsError
from .periods import (
    PeriodType, MonthOverflowPolicy, DateLike,
    normalize_date, add_periods, installment_due_date
)


class InstallmentMode(Enum):
    """How installment amounts are laid out over the schedule"""
    FIXED = "fixed"    # Every period charges installment_amount
    CUSTOM = "custom"  # Last period charges final_installment_amount


def total_contract_amount(
    installment_amount: Decimal,
    periods: int,
    mode: InstallmentMode,
    final_installment_amount: Optional[Decimal] = None
) -> Decimal:
    """
    Total amount the borrower owes over the whole schedule.

    fixed:  installment_amount x periods
    custom: installment_amount x (periods - 1) + final_installment_amount
    """
    if periods < 1:
        raise InvalidLoanTermsError(f"Loan must have at least one period, got {periods}")

    if mode == InstallmentMode.FIXED:
        return to_amount(installment_amount * periods)

    if final_installment_amount is None:
        raise InvalidLoanTermsError("Custom installment mode requires a final installment amount")
    if periods == 1:
        return to_amount(final_installment_amount)
    return to_amount(installment_amount * (periods - 1) + final_installment_amount)


@dataclass
class LoanTerms:
    """Contract terms the engine schedules and reconciles against"""
    principal_amount: Decimal
    installment_amount: Decimal
    period_type: PeriodType
    total_periods: int
    schedule_start: date
    installment_mode: InstallmentMode = InstallmentMode.FIXED
    final_installment_amount: Optional[Decimal] = None

    def __post_init__(self):
        self.principal_amount = to_amount(self.principal_amount)
        self.installment_amount = to_amount(self.installment_amount)
        self.schedule_start = normalize_date(self.schedule_start)
        if self.final_installment_amount is not None:
            self.final_installment_amount = to_amount(self.final_installment_amount)

        if self.total_periods < 1:
            raise InvalidLoanTermsError(f"Loan must have at least one period, got {self.total_periods}")
        if self.installment_amount <= 0:
            raise InvalidLoanTermsError("Installment amount must be greater than 0")
        if self.installment_mode == InstallmentMode.CUSTOM:
            if self.final_installment_amount is None or self.final_installment_amount <= 0:
                raise InvalidLoanTermsError(
                    "Custom installment mode requires a positive final installment amount"
                )

    @property
    def total_contract_amount(self) -> Decimal:
        return total_contract_amount(
            self.installment_amount, self.total_periods,
            self.installment_mode, self.final_installment_amount
        )

    def expected_installment_amount(self, installment_number: int) -> Decimal:
        """Amount due for the 1-based installment"""
        if (self.installment_mode == InstallmentMode.CUSTOM
                and installment_number == self.total_periods):
            return self.final_installment_amount
        return self.installment_amount


@dataclass(frozen=True)
class InstallmentDue:
    """One row of the theoretical schedule"""
    number: int
    due_date: date
    amount: Decimal


def build_schedule(
    terms: LoanTerms,
    policy: MonthOverflowPolicy = MonthOverflowPolicy.CLAMP
) -> List[InstallmentDue]:
    """Every installment of the loan with its due date and amount"""
    return [
        InstallmentDue(
            number=number,
            due_date=installment_due_date(terms.schedule_start, terms.period_type, number, policy),
            amount=terms.expected_installment_amount(number)
        )
        for number in range(1, terms.total_periods + 1)
    ]


def last_completed_installment_date(
    schedule_start: DateLike,
    period_type: PeriodType,
    fully_completed_count: int,
    policy: MonthOverflowPolicy = MonthOverflowPolicy.CLAMP
) -> date:
    """
    Due date of the last fully-completed installment.

    With nothing completed the schedule start is returned unchanged as a
    sentinel.
    """
    if fully_completed_count <= 0:
        return normalize_date(schedule_start)
    return add_periods(schedule_start, period_type, fully_completed_count - 1, policy)


def next_due_date(
    last_completed_date: DateLike,
    period_type: PeriodType,
    schedule_start: DateLike,
    fully_completed_count: int,
    total_periods: int,
    policy: MonthOverflowPolicy = MonthOverflowPolicy.CLAMP
) -> Optional[date]:
    """
    Due date of the next installment, or None once the schedule is exhausted.

    Monthly steps are re-anchored on the schedule start so a clamped month
    (Jan 31 -> Feb 28) does not shift every later due date to the 28th.
    """
    if fully_completed_count >= total_periods:
        return None
    if fully_completed_count <= 0:
        return normalize_date(schedule_start)
    if period_type == PeriodType.MONTHLY:
        return add_periods(schedule_start, period_type, fully_completed_count, policy)
    return add_periods(last_completed_date, period_type, 1, policy)
