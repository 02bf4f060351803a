"""
Loan endpoints
"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, Header, status

from .deps import get_loan_system, http_error
from .schemas import (
    ApplyLoanRequest, DisburseLoanRequest, RecordRepaymentRequest, CloseLoanRequest,
    MarkOverdueRequest, jsonable, serialize_loan, serialize_installment
)
from ..system import StaffLoanSystem
from ..loans import LoanStatus, LoanType
from ..exceptions import LoanError


router = APIRouter()


def _parse_status(value: Optional[str]) -> Optional[LoanStatus]:
    if value is None:
        return None
    try:
        return LoanStatus(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown loan status: {value}")


def _parse_type(value: Optional[str]) -> Optional[LoanType]:
    if value is None:
        return None
    try:
        return LoanType(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown loan type: {value}")


@router.post("", status_code=status.HTTP_201_CREATED)
async def apply_for_loan(
    request: ApplyLoanRequest,
    x_staff_id: str = Header(...),
    system: StaffLoanSystem = Depends(get_loan_system)
):
    """Apply for a loan as the calling staff member"""
    try:
        loan = system.apply_for_loan(
            x_staff_id,
            loan_type=request.loan_type,
            principal=request.principal,
            term_months=request.term_months,
            interest_rate=request.interest_rate,
            purpose=request.purpose,
            is_urgent=request.is_urgent,
            deduct_from_salary=request.deduct_from_salary,
            max_salary_deduction_percent=request.max_salary_deduction_percent,
            guarantor_id=request.guarantor_id
        )
    except LoanError as e:
        raise http_error(e)

    return serialize_loan(loan)


@router.get("")
async def list_loans(
    status: Optional[str] = None,
    loan_type: Optional[str] = None,
    staff_id: Optional[str] = None,
    branch_id: Optional[str] = None,
    system: StaffLoanSystem = Depends(get_loan_system)
):
    """List loans with optional filters"""
    loans = system.find_all(_parse_status(status), _parse_type(loan_type), staff_id, branch_id)
    return {"loans": [serialize_loan(l) for l in loans], "count": len(loans)}


@router.get("/mine")
async def my_loans(
    status: Optional[str] = None,
    x_staff_id: str = Header(...),
    system: StaffLoanSystem = Depends(get_loan_system)
):
    """Loans of the calling staff member"""
    loans = system.find_by_staff(x_staff_id, _parse_status(status))
    return {"loans": [serialize_loan(l) for l in loans], "count": len(loans)}


@router.get("/pending-approval")
async def pending_approval(system: StaffLoanSystem = Depends(get_loan_system)):
    """Applications awaiting a decision, urgent first"""
    loans = system.find_pending_approval()
    return {"loans": [serialize_loan(l) for l in loans], "count": len(loans)}


@router.get("/overdue")
async def overdue_loans(
    as_of: Optional[date] = None,
    system: StaffLoanSystem = Depends(get_loan_system)
):
    """Repaying loans with an overdue installment"""
    loans = system.find_overdue(as_of)
    return {"loans": [serialize_loan(l) for l in loans], "count": len(loans)}


@router.post("/mark-overdue")
async def mark_overdue(
    request: MarkOverdueRequest,
    system: StaffLoanSystem = Depends(get_loan_system)
):
    """Flag past-due installments as overdue"""
    return {"marked": system.mark_overdue(request.as_of)}


@router.get("/stats")
async def loan_stats(
    staff_id: Optional[str] = None,
    year: Optional[int] = None,
    system: StaffLoanSystem = Depends(get_loan_system)
):
    """Portfolio statistics for a year"""
    return jsonable(system.get_stats(staff_id, year))


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    system: StaffLoanSystem = Depends(get_loan_system)
):
    """Get loan details"""
    try:
        return serialize_loan(system.find_by_id(loan_id))
    except LoanError as e:
        raise http_error(e)


@router.get("/{loan_id}/schedule")
async def get_schedule(
    loan_id: str,
    system: StaffLoanSystem = Depends(get_loan_system)
):
    """Repayment schedule of a loan"""
    try:
        schedule = system.get_schedule(loan_id)
    except LoanError as e:
        raise http_error(e)

    return {
        "loan_id": loan_id,
        "installments": [serialize_installment(i) for i in schedule],
        "count": len(schedule)
    }


@router.post("/{loan_id}/schedule")
async def regenerate_schedule(
    loan_id: str,
    system: StaffLoanSystem = Depends(get_loan_system)
):
    """Rebuild the repayment schedule of a loan"""
    try:
        schedule = system.generate_repayment_schedule(loan_id)
    except LoanError as e:
        raise http_error(e)

    return {
        "loan_id": loan_id,
        "installments": [serialize_installment(i) for i in schedule],
        "count": len(schedule)
    }


@router.post("/{loan_id}/cancel")
async def cancel_loan(
    loan_id: str,
    x_staff_id: str = Header(...),
    system: StaffLoanSystem = Depends(get_loan_system)
):
    """Withdraw the caller's pending application"""
    try:
        return serialize_loan(system.cancel_loan(loan_id, x_staff_id))
    except LoanError as e:
        raise http_error(e)


@router.post("/{loan_id}/disburse")
async def disburse_loan(
    loan_id: str,
    request: DisburseLoanRequest,
    x_staff_id: str = Header(...),
    system: StaffLoanSystem = Depends(get_loan_system)
):
    """Disburse an approved loan"""
    try:
        loan = system.disburse_loan(
            loan_id,
            disburser_id=x_staff_id,
            disbursement_reference=request.disbursement_reference,
            disbursement_method=request.disbursement_method,
            first_repayment_date=request.first_repayment_date
        )
    except LoanError as e:
        raise http_error(e)

    return serialize_loan(loan)


@router.post("/{loan_id}/repayments")
async def record_repayment(
    loan_id: str,
    request: RecordRepaymentRequest,
    x_staff_id: Optional[str] = Header(None),
    system: StaffLoanSystem = Depends(get_loan_system)
):
    """Record a manual repayment"""
    try:
        loan = system.record_repayment(
            loan_id,
            amount=request.amount,
            payment_reference=request.payment_reference,
            payment_method=request.payment_method,
            installment_id=request.repayment_id,
            notes=request.notes,
            user_id=x_staff_id
        )
    except LoanError as e:
        raise http_error(e)

    return serialize_loan(loan)


@router.post("/{loan_id}/default")
async def mark_defaulted(
    loan_id: str,
    request: CloseLoanRequest,
    x_staff_id: str = Header(...),
    system: StaffLoanSystem = Depends(get_loan_system)
):
    """Mark a repaying loan as defaulted"""
    try:
        return serialize_loan(system.mark_defaulted(loan_id, x_staff_id, request.reason))
    except LoanError as e:
        raise http_error(e)


@router.post("/{loan_id}/write-off")
async def write_off(
    loan_id: str,
    request: CloseLoanRequest,
    x_staff_id: str = Header(...),
    system: StaffLoanSystem = Depends(get_loan_system)
):
    """Write off a loan"""
    try:
        return serialize_loan(system.write_off(loan_id, x_staff_id, request.reason))
    except LoanError as e:
        raise http_error(e)
