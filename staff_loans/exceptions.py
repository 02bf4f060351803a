"""Exception hierarchy for the staff loans engine."""


class LoanError(Exception):
    """Base exception for all staff loan errors."""


class LoanValidationError(LoanError):
    """Raised when input fails validation before anything is changed."""


class LoanNotFoundError(LoanError):
    """Raised when a referenced loan, installment or staff member does not exist."""


class LoanConflictError(LoanError):
    """Raised when a business rule or the current status forbids the operation."""


class LoanForbiddenError(LoanError):
    """Raised when the requester may not act on the loan."""


class ApprovalEngineError(LoanError):
    """Raised when the external approval engine call fails."""
