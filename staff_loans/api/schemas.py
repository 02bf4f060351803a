"""
Pydantic schemas for API requests, and serializers for responses
"""

from decimal import Decimal
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field

from ..loans import Loan
from ..schedule import RepaymentInstallment


# Loan schemas
class ApplyLoanRequest(BaseModel):
    loan_type: str = Field(..., description="salary_advance, staff_loan or emergency_loan")
    principal: str = Field(..., description="Decimal amount as string")
    term_months: int
    interest_rate: Optional[str] = Field(None, description="Annual percent; type default when omitted")
    purpose: Optional[str] = None
    is_urgent: bool = False
    deduct_from_salary: bool = True
    max_salary_deduction_percent: Optional[str] = None
    guarantor_id: Optional[str] = None


class DisburseLoanRequest(BaseModel):
    disbursement_reference: str
    disbursement_method: str = Field(..., description="e.g. bank_transfer, mpesa, cash")
    first_repayment_date: Optional[date] = None


class RecordRepaymentRequest(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    payment_reference: str
    payment_method: str
    repayment_id: Optional[str] = Field(None, description="Installment to pay; earliest open one when omitted")
    notes: Optional[str] = None


class CloseLoanRequest(BaseModel):
    reason: str


class MarkOverdueRequest(BaseModel):
    as_of: Optional[date] = None


# Payroll schemas
class ProcessPayrollRequest(BaseModel):
    payroll_reference: str


class PayrollDeductionRequest(BaseModel):
    loan_id: str
    amount: str = Field(..., description="Decimal amount as string")
    payroll_month: str = Field(..., description="YYYY-MM")
    payroll_reference: str
    repayment_id: Optional[str] = None


# Approval schemas
class ApprovalCompletedRequest(BaseModel):
    target_type: str
    target_id: str
    status: str = Field(..., description="approved or rejected")
    approver_id: Optional[str] = None
    comment: Optional[str] = None
    instance_id: Optional[str] = None


class ApprovalDecisionRequest(BaseModel):
    status: str = Field(..., description="approved or rejected")
    approver_id: str
    comment: Optional[str] = None


# Staff schemas
class RegisterStaffRequest(BaseModel):
    employee_number: str
    full_name: str
    branch_id: Optional[str] = None
    branch_name: Optional[str] = None
    staff_id: Optional[str] = None
    is_active: bool = True


def jsonable(value: Any) -> Any:
    """Decimals as strings, dates as ISO strings, recursively"""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [jsonable(v) for v in value]
    if hasattr(value, 'to_dict'):
        return jsonable(value.to_dict())
    return value


def serialize_loan(loan: Loan) -> Dict[str, Any]:
    data = loan.to_dict()
    data['repayment_progress'] = str(loan.repayment_progress)
    return data


def serialize_installment(installment: RepaymentInstallment, as_of: Optional[date] = None) -> Dict[str, Any]:
    data = installment.to_dict()
    data['outstanding_amount'] = str(installment.outstanding_amount)
    data['is_overdue'] = installment.is_overdue(as_of)
    data['days_overdue'] = installment.days_overdue(as_of)
    return data
