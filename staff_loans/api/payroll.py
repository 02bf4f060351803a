"""
Payroll endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends

from .deps import get_loan_system, http_error
from .schemas import ProcessPayrollRequest, PayrollDeductionRequest, jsonable, serialize_loan
from ..system import StaffLoanSystem
from ..exceptions import LoanError


router = APIRouter()


@router.get("/{month}/export")
async def export_payroll(
    month: str,
    system: StaffLoanSystem = Depends(get_loan_system)
):
    """Deductions payroll should make for a YYYY-MM month"""
    try:
        return jsonable(system.export_payroll_for_month(month))
    except LoanError as e:
        raise http_error(e)


@router.post("/{month}/process")
async def process_payroll(
    month: str,
    request: ProcessPayrollRequest,
    system: StaffLoanSystem = Depends(get_loan_system)
):
    """Apply a month's payroll deductions"""
    try:
        return jsonable(system.process_payroll_deductions(month, request.payroll_reference))
    except LoanError as e:
        raise http_error(e)


@router.get("/{month}/summary")
async def payroll_summary(
    month: str,
    system: StaffLoanSystem = Depends(get_loan_system)
):
    """Deduction totals per branch for a month"""
    try:
        return {"month": month, "branches": jsonable(system.summary_by_branch(month))}
    except LoanError as e:
        raise http_error(e)


@router.post("/deductions")
async def record_payroll_deduction(
    request: PayrollDeductionRequest,
    system: StaffLoanSystem = Depends(get_loan_system)
):
    """Record a single salary deduction"""
    try:
        loan = system.record_payroll_deduction(
            request.loan_id,
            request.amount,
            request.payroll_month,
            request.payroll_reference,
            installment_id=request.repayment_id
        )
    except LoanError as e:
        raise http_error(e)

    return serialize_loan(loan)


@router.get("/staff/{staff_id}")
async def staff_deductions(
    staff_id: str,
    year: Optional[int] = None,
    system: StaffLoanSystem = Depends(get_loan_system)
):
    """A staff member's salary deductions for a year"""
    deductions = system.staff_payroll_deductions(staff_id, year)
    return {"staff_id": staff_id, "deductions": jsonable(deductions)}
