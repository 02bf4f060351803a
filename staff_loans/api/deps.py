"""
Shared API dependencies: the loan system instance and error mapping
"""

from typing import Optional
from fastapi import HTTPException, status

from ..system import StaffLoanSystem
from ..exceptions import (
    LoanError, LoanValidationError, LoanNotFoundError, LoanConflictError, LoanForbiddenError
)


_loan_system: Optional[StaffLoanSystem] = None


def get_loan_system() -> StaffLoanSystem:
    """Dependency returning the process-wide loan system, built on first use"""
    global _loan_system
    if _loan_system is None:
        _loan_system = StaffLoanSystem()
    return _loan_system


def set_loan_system(system: Optional[StaffLoanSystem]) -> None:
    """Replace the process-wide loan system (None resets it)"""
    global _loan_system
    _loan_system = system


_STATUS_CODES = (
    (LoanValidationError, status.HTTP_400_BAD_REQUEST),
    (LoanNotFoundError, status.HTTP_404_NOT_FOUND),
    (LoanConflictError, status.HTTP_409_CONFLICT),
    (LoanForbiddenError, status.HTTP_403_FORBIDDEN),
)


def http_error(error: LoanError) -> HTTPException:
    """Translate a loan error into the matching HTTP error"""
    for error_type, status_code in _STATUS_CODES:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(error))
