"""
Pydantic schemas for API requests
"""

from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field

from ..chains import ChainHint
from ..payments import PaymentStatus
from ..periods import PeriodType, normalize_date
from ..schedule import LoanTerms, InstallmentMode


class LoanTermsModel(BaseModel):
    principal_amount: str = Field(..., description="Decimal amount as string")
    installment_amount: str = Field(..., description="Decimal amount as string")
    period_type: str = Field(..., description="Daily, Weekly or Monthly")
    total_periods: int = Field(..., ge=1)
    schedule_start: str = Field(..., description="ISO date of the first installment")
    installment_mode: str = Field("fixed", description="fixed or custom")
    final_installment_amount: Optional[str] = None

    def to_loan_terms(self) -> LoanTerms:
        return LoanTerms(
            principal_amount=Decimal(self.principal_amount),
            installment_amount=Decimal(self.installment_amount),
            period_type=PeriodType(self.period_type),
            total_periods=self.total_periods,
            schedule_start=normalize_date(self.schedule_start),
            installment_mode=InstallmentMode(self.installment_mode),
            final_installment_amount=(
                Decimal(self.final_installment_amount)
                if self.final_installment_amount is not None else None
            )
        )


class CreateLoanRequest(BaseModel):
    borrower_id: str
    terms: LoanTermsModel
    loan_number: Optional[str] = None


class ChainHintModel(BaseModel):
    installment_number: int = Field(..., ge=1)
    expected_due_date: Optional[str] = None  # ISO date string
    installment_amount: Optional[str] = None  # Decimal as string

    def to_chain_hint(self) -> ChainHint:
        return ChainHint(
            installment_number=self.installment_number,
            expected_due_date=(
                normalize_date(self.expected_due_date) if self.expected_due_date else None
            ),
            installment_amount=(
                Decimal(self.installment_amount) if self.installment_amount is not None else None
            )
        )


class RecordPaymentRequest(BaseModel):
    loan_id: str
    amount: str = Field(..., description="Decimal amount as string")
    payment_date: str = Field(..., description="ISO date string")
    status: str = Field(..., description="Paid, Partial or Advance")
    chain: Optional[ChainHintModel] = None
    collector: Optional[str] = None
    notes: str = ""

    def payment_status(self) -> PaymentStatus:
        return PaymentStatus(self.status)


class AdvancePaymentRequest(BaseModel):
    loan_id: str
    from_date: str = Field(..., description="ISO date string")
    to_date: str = Field(..., description="ISO date string")
    amount_per_installment: str = Field(..., description="Decimal amount as string")
    collector: Optional[str] = None


class EditPaymentRequest(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    status: str = Field(..., description="Paid, Partial or Advance")
    payment_date: Optional[str] = None  # ISO date string
    user_id: Optional[str] = None


class CompleteChainRequest(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    payment_date: str = Field(..., description="ISO date string")
    collector: Optional[str] = None
