"""
Loan endpoints
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, status as http_status

from .deps import LendingSystem, get_lending_system, http_error
from .schemas import CreateLoanRequest
from ..exceptions import LendingError
from ..loans import LoanStatus


router = APIRouter()


@router.post("", status_code=http_status.HTTP_201_CREATED)
def create_loan(
    request: CreateLoanRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Register an approved loan"""
    try:
        loan = system.engine.create_loan(
            borrower_id=request.borrower_id,
            terms=request.terms.to_loan_terms(),
            loan_number=request.loan_number
        )

        return {
            "loan_id": loan.id,
            "loan_number": loan.loan_number,
            "total_contract_amount": str(loan.total_contract_amount),
            "aggregates": loan.aggregates.to_dict(),
            "message": "Loan created successfully"
        }

    except (LendingError, ValueError) as e:
        raise http_error(e)


@router.get("")
def list_loans(
    status: Optional[str] = None,
    system: LendingSystem = Depends(get_lending_system)
):
    """List loans, optionally filtered by status"""
    try:
        loans = system.engine.list_loans(LoanStatus(status) if status else None)
    except ValueError as e:
        raise http_error(e)

    return {
        "loans": [
            {
                "loan_id": loan.id,
                "loan_number": loan.loan_number,
                "borrower_id": loan.borrower_id,
                "status": loan.status.value,
                "next_due_date": loan.next_due_date.isoformat() if loan.next_due_date else None
            }
            for loan in loans
        ],
        "count": len(loans)
    }


@router.get("/{loan_id}")
def get_loan(
    loan_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Get loan details with its aggregates"""
    try:
        loan = system.engine.get_loan(loan_id)
    except LendingError as e:
        raise http_error(e)

    loan_data = loan.to_dict()
    loan_data["total_contract_amount"] = str(loan.total_contract_amount)
    return loan_data


@router.get("/{loan_id}/payments")
def get_loan_payments(
    loan_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Get all payments of a loan in insertion order"""
    try:
        payments = system.engine.list_payments(loan_id)
    except LendingError as e:
        raise http_error(e)

    return {
        "loan_id": loan_id,
        "payments": [p.to_dict() for p in payments],
        "count": len(payments)
    }


@router.get("/{loan_id}/schedule")
def get_loan_schedule(
    loan_id: str,
    as_of: Optional[date] = None,
    system: LendingSystem = Depends(get_lending_system)
):
    """Get the installment schedule of a loan, with the installment current on `as_of`"""
    try:
        schedule = system.engine.get_schedule(loan_id)
        current = system.engine.installment_for_date(loan_id, as_of) if as_of else None
    except LendingError as e:
        raise http_error(e)

    return {
        "loan_id": loan_id,
        "installments": [
            {
                "installment_number": due.number,
                "due_date": due.due_date.isoformat(),
                "amount": str(due.amount)
            }
            for due in schedule
        ],
        "current_installment": current.number if current else None
    }


@router.get("/{loan_id}/chains")
def get_loan_chains(
    loan_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Get every installment chain of a loan"""
    try:
        chains = system.engine.list_chains(loan_id)
    except LendingError as e:
        raise http_error(e)

    return {
        "loan_id": loan_id,
        "chains": [summary.to_dict() for summary in chains],
        "count": len(chains)
    }


@router.get("/{loan_id}/behavior")
def get_payment_behavior(
    loan_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Get the borrower's punctuality on this loan"""
    try:
        behavior = system.engine.payment_behavior(loan_id)
    except LendingError as e:
        raise http_error(e)

    return {"loan_id": loan_id, **behavior.to_dict()}


@router.post("/{loan_id}/recompute")
def recompute_loan(
    loan_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Recompute the loan's aggregates from its ledger"""
    try:
        aggregates = system.engine.recompute_loan(loan_id)
    except LendingError as e:
        raise http_error(e)

    return {"loan_id": loan_id, "aggregates": aggregates.to_dict()}
