"""
Shared fixtures: an in-memory loan system with a small staff directory
"""

import pytest
from datetime import date

from staff_loans.config import StaffLoansConfig
from staff_loans.storage import InMemoryStorage
from staff_loans.system import StaffLoanSystem


@pytest.fixture
def settings():
    return StaffLoansConfig(
        database_url="memory://",
        approval_engine_url="",
        log_format="text"
    )


@pytest.fixture
def system(settings):
    loan_system = StaffLoanSystem(settings=settings, storage=InMemoryStorage())
    yield loan_system
    loan_system.close()


@pytest.fixture
def staff(system):
    directory = system.staff_directory
    return {
        "alice": directory.register("EMP002", "Alice Wanjiru", "BR1", "Nairobi", staff_id="staff-alice"),
        "bob": directory.register("EMP001", "Bob Otieno", "BR2", "Mombasa", staff_id="staff-bob"),
        "carol": directory.register("EMP003", "Carol Njeri", "BR1", "Nairobi", staff_id="staff-carol"),
    }


@pytest.fixture
def approve(system):
    """Approve a pending loan through the local approval engine"""
    def _approve(loan, approver_id="manager-1", comment="Approved"):
        system.approval_engine.decide(loan.approval_instance_id, "approved", approver_id, comment)
        return system.find_by_id(loan.id)
    return _approve


@pytest.fixture
def active_loan(system, staff, approve):
    """Apply, approve and disburse a loan; 12000 at 10% over 12 months by default"""
    def _make(staff_id="staff-alice", loan_type="staff_loan", principal="12000",
              term_months=12, interest_rate="10", first_repayment_date=date(2025, 1, 25),
              **params):
        loan = system.apply_for_loan(
            staff_id,
            loan_type=loan_type,
            principal=principal,
            term_months=term_months,
            interest_rate=interest_rate,
            **params
        )
        approve(loan)
        return system.disburse_loan(
            loan.id, "finance-1", "TRX-001", "bank_transfer", first_repayment_date
        )
    return _make
