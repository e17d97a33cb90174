"""
Payment and chain endpoints
"""

from decimal import Decimal

from fastapi import APIRouter, HTTPException, Depends, Query, status

from .deps import LendingSystem, get_lending_system, http_error
from .schemas import (
    RecordPaymentRequest, AdvancePaymentRequest, EditPaymentRequest, CompleteChainRequest
)
from ..exceptions import LendingError
from ..payments import PaymentStatus


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def record_payment(
    request: RecordPaymentRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Record a payment against a loan"""
    try:
        result = system.engine.record_payment(
            loan_id=request.loan_id,
            amount=Decimal(request.amount),
            payment_date=request.payment_date,
            status=request.payment_status(),
            chain_hint=request.chain.to_chain_hint() if request.chain else None,
            collector=request.collector,
            notes=request.notes
        )
    except (LendingError, ValueError, ArithmeticError) as e:
        raise http_error(e)

    return result.to_dict()


@router.post("/advance", status_code=status.HTTP_201_CREATED)
def record_advance_payments(
    request: AdvancePaymentRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Record one advance payment per installment falling due in a date range"""
    try:
        result = system.engine.record_advance_payments(
            loan_id=request.loan_id,
            from_date=request.from_date,
            to_date=request.to_date,
            amount_per_installment=Decimal(request.amount_per_installment),
            collector=request.collector
        )
    except (LendingError, ValueError, ArithmeticError) as e:
        raise http_error(e)

    return result.to_dict()


@router.get("/chains/{chain_id}")
def get_chain(
    chain_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Get the members and progress of an installment chain"""
    try:
        summary = system.engine.get_chain(chain_id)
    except LendingError as e:
        raise http_error(e)

    return summary.to_dict()


@router.post("/chains/{chain_id}/complete")
def complete_chain(
    chain_id: str,
    request: CompleteChainRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Append a completing payment to a partial chain"""
    try:
        result = system.engine.complete_chain(
            chain_id=chain_id,
            additional_amount=Decimal(request.amount),
            payment_date=request.payment_date,
            collector=request.collector
        )
    except (LendingError, ValueError, ArithmeticError) as e:
        raise http_error(e)

    return result.to_dict()


@router.get("/{payment_id}")
def get_payment(
    payment_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Get payment details"""
    payment = system.engine.ledger.get_payment(payment_id)
    if not payment:
        raise HTTPException(status_code=404, detail="Payment not found")

    return payment.to_dict()


@router.put("/{payment_id}")
def edit_payment(
    payment_id: str,
    request: EditPaymentRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Correct a payment's amount, status or date"""
    try:
        result = system.engine.edit_payment(
            payment_id=payment_id,
            amount=Decimal(request.amount),
            status=PaymentStatus(request.status),
            payment_date=request.payment_date,
            user_id=request.user_id
        )
    except (LendingError, ValueError, ArithmeticError) as e:
        raise http_error(e)

    return result.to_dict()


@router.delete("/{payment_id}")
def delete_payment(
    payment_id: str,
    delete_chain: bool = Query(False, description="Delete every member of the payment's chain"),
    system: LendingSystem = Depends(get_lending_system)
):
    """Delete a payment or its whole chain"""
    try:
        result = system.engine.delete_payment(payment_id, delete_chain=delete_chain)
    except LendingError as e:
        raise http_error(e)

    return result.to_dict()
