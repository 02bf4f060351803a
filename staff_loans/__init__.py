"""
Staff Loans

Loan lifecycle and repayment engine for staff salary advances, staff loans
and emergency loans: application, approval, disbursement, flat-rate
repayment schedules, manual repayments and payroll deduction batches.
"""

__version__ = "1.0.0"
