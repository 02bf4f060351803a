"""
Staff Loan System

Wires storage, audit, events, the approval bridge and the loan components
together and exposes the engine's operations in one place.
"""

from datetime import date
from typing import Any, Dict, List, Optional

from .config import StaffLoansConfig, get_config
from .storage import StorageInterface, KeyedLock, create_storage
from .audit import AuditTrail
from .events import EventDispatcher
from .staff import StorageStaffDirectory, StaffDirectory
from .approvals import (
    ApprovalBridge, ApprovalEngine, HttpApprovalEngineClient, InMemoryApprovalEngine
)
from .loans import Loan, LoanManager, LoanStatus, LoanType
from .schedule import ScheduleGenerator, RepaymentInstallment
from .repayments import RepaymentRecorder
from .payroll import PayrollBatchProcessor


class StaffLoanSystem:
    """Staff loan engine with all components initialized"""

    def __init__(
        self,
        settings: Optional[StaffLoansConfig] = None,
        storage: Optional[StorageInterface] = None,
        approval_engine: Optional[ApprovalEngine] = None,
        staff_directory: Optional[StaffDirectory] = None
    ):
        self.settings = settings or get_config()
        self.storage = storage or create_storage(self.settings.database_url)

        self.audit_trail = AuditTrail(self.storage)
        self.dispatcher = EventDispatcher()
        self.loan_locks = KeyedLock()
        self.staff_directory = staff_directory or StorageStaffDirectory(self.storage, self.audit_trail)

        self.approval_engine = approval_engine or self._create_approval_engine()
        self.approval_bridge = ApprovalBridge(self.approval_engine, self.dispatcher, self.settings)

        self.schedule_generator = ScheduleGenerator(
            self.storage, self.audit_trail, self.loan_locks, self.settings
        )
        self.loan_manager = LoanManager(
            self.storage, self.audit_trail, self.staff_directory, self.schedule_generator,
            loan_locks=self.loan_locks,
            dispatcher=self.dispatcher,
            approval_bridge=self.approval_bridge,
            settings=self.settings
        )
        self.repayment_recorder = RepaymentRecorder(
            self.storage, self.audit_trail, self.schedule_generator,
            loan_locks=self.loan_locks,
            dispatcher=self.dispatcher
        )
        self.payroll_processor = PayrollBatchProcessor(
            self.storage, self.audit_trail, self.staff_directory,
            self.schedule_generator, self.repayment_recorder,
            dispatcher=self.dispatcher
        )

    def _create_approval_engine(self) -> ApprovalEngine:
        """Remote engine when a URL is configured, local otherwise"""
        if not self.settings.approval_engine_url:
            return InMemoryApprovalEngine(self.storage, self.dispatcher)

        return HttpApprovalEngineClient(
            base_url=self.settings.approval_engine_url,
            timeout=self.settings.approval_engine_timeout,
            api_key=self.settings.approval_engine_api_key or None
        )

    def close(self) -> None:
        self.approval_bridge.stop_listening()
        if isinstance(self.approval_engine, HttpApprovalEngineClient):
            self.approval_engine.close()
        self.storage.close()

    # Loan lifecycle

    def apply_for_loan(self, staff_id: str, **params) -> Loan:
        return self.loan_manager.apply_for_loan(staff_id, **params)

    def cancel_loan(self, loan_id: str, requester_id: str) -> Loan:
        return self.loan_manager.cancel_loan(loan_id, requester_id)

    def disburse_loan(
        self,
        loan_id: str,
        disburser_id: str,
        disbursement_reference: str,
        disbursement_method: str,
        first_repayment_date: Optional[date] = None
    ) -> Loan:
        return self.loan_manager.disburse_loan(
            loan_id, disburser_id, disbursement_reference, disbursement_method, first_repayment_date
        )

    def mark_defaulted(self, loan_id: str, actor_id: str, reason: str) -> Loan:
        return self.loan_manager.mark_defaulted(loan_id, actor_id, reason)

    def write_off(self, loan_id: str, actor_id: str, reason: str) -> Loan:
        return self.loan_manager.write_off(loan_id, actor_id, reason)

    # Schedule and repayments

    def generate_repayment_schedule(self, loan_id: str) -> List[RepaymentInstallment]:
        return self.schedule_generator.generate(loan_id)

    def get_schedule(self, loan_id: str) -> List[RepaymentInstallment]:
        self.loan_manager.find_by_id(loan_id)
        return self.schedule_generator.get_schedule(loan_id)

    def mark_overdue(self, as_of: Optional[date] = None) -> int:
        return self.schedule_generator.mark_overdue(as_of)

    def record_repayment(self, loan_id: str, **params) -> Loan:
        return self.repayment_recorder.record_payment(loan_id, **params)

    def record_payroll_deduction(
        self,
        loan_id: str,
        amount,
        payroll_month: str,
        payroll_reference: str,
        installment_id: Optional[str] = None
    ) -> Loan:
        return self.repayment_recorder.record_payroll_deduction(
            loan_id, amount, payroll_month, payroll_reference, installment_id
        )

    # Queries

    def find_by_id(self, loan_id: str) -> Loan:
        return self.loan_manager.find_by_id(loan_id)

    def find_by_staff(self, staff_id: str, status: Optional[LoanStatus] = None) -> List[Loan]:
        return self.loan_manager.find_by_staff(staff_id, status)

    def find_all(
        self,
        status: Optional[LoanStatus] = None,
        loan_type: Optional[LoanType] = None,
        staff_id: Optional[str] = None,
        branch_id: Optional[str] = None
    ) -> List[Loan]:
        return self.loan_manager.find_all(status, loan_type, staff_id, branch_id)

    def find_pending_approval(self) -> List[Loan]:
        return self.loan_manager.find_pending_approval()

    def find_overdue(self, as_of: Optional[date] = None) -> List[Loan]:
        return self.loan_manager.find_overdue(as_of)

    def get_stats(self, staff_id: Optional[str] = None, year: Optional[int] = None) -> Dict[str, Any]:
        return self.loan_manager.get_stats(staff_id, year)

    # Payroll

    def export_payroll_for_month(self, month: str) -> Dict[str, Any]:
        return self.payroll_processor.export_for_month(month)

    def process_payroll_deductions(self, month: str, payroll_reference: str) -> Dict[str, Any]:
        return self.payroll_processor.process_payroll_deductions(month, payroll_reference)

    def summary_by_branch(self, month: str) -> List[Dict[str, Any]]:
        return self.payroll_processor.summary_by_branch(month)

    def staff_payroll_deductions(self, staff_id: str, year: Optional[int] = None) -> List[Dict[str, Any]]:
        return self.payroll_processor.staff_deductions(staff_id, year)
