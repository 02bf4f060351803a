"""
Repayment Recording Module

Applies manual and payroll payments to a loan's installments and keeps the
loan-level totals in step. Each payment is one atomic unit, serialized
against schedule regeneration for the same loan.
"""

from datetime import date
from typing import Optional
import logging

from .storage import StorageInterface, KeyedLock
from .audit import AuditTrail, AuditEventType
from .events import DomainEvent, EventDispatcher, create_loan_event
from .money import Numeric, to_decimal
from .loans import Loan, load_loan, save_loan
from .schedule import ScheduleGenerator, RepaymentInstallment, OPEN_INSTALLMENT_STATUSES
from .exceptions import LoanValidationError, LoanNotFoundError, LoanConflictError
from .logging_config import log_action

logger = logging.getLogger("staff_loans.repayments")

SALARY_DEDUCTION = "salary_deduction"


class RepaymentRecorder:
    """
    Records loan repayments
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        schedule_generator: ScheduleGenerator,
        loan_locks: Optional[KeyedLock] = None,
        dispatcher: Optional[EventDispatcher] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.schedule_generator = schedule_generator
        self.loan_locks = loan_locks or schedule_generator.loan_locks
        self.dispatcher = dispatcher

    def record_payment(
        self,
        loan_id: str,
        amount: Numeric,
        payment_reference: str,
        payment_method: str,
        installment_id: Optional[str] = None,
        notes: Optional[str] = None,
        payment_date: Optional[date] = None,
        payroll_month: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> Loan:
        """
        Apply a payment to one installment and to the loan totals

        Without ``installment_id`` the earliest open installment by due date
        is paid. Amounts above what the installment still owes are accepted
        and counted in full towards the loan.

        Raises:
            LoanValidationError: Non-positive amount
            LoanNotFoundError: Unknown loan or installment
            LoanConflictError: Loan is not repayable, or nothing is left to pay
        """
        try:
            amount = to_decimal(amount)
        except ValueError:
            raise LoanValidationError("Amount must be a number")
        if not amount.is_finite() or amount <= 0:
            raise LoanValidationError("Amount must be positive")

        with self.loan_locks.hold(loan_id), self.storage.atomic():
            loan = load_loan(self.storage, loan_id)
            if not loan.is_repayable:
                raise LoanConflictError("Can only record payments for active loans")

            installment = self._select_installment(loan, installment_id)
            if amount > installment.outstanding_amount:
                logger.warning(
                    f"Payment of {amount} exceeds the {installment.outstanding_amount} due on "
                    f"installment {installment.installment_number} of loan {loan.loan_number}"
                )

            installment.apply_payment(
                amount=amount,
                payment_date=payment_date or date.today(),
                reference=payment_reference,
                method=payment_method,
                notes=notes
            )
            if payroll_month:
                installment.payroll_reference = payment_reference
                installment.payroll_month = payroll_month
            self.schedule_generator.save_installment(installment)

            completed = loan.apply_payment(amount)
            save_loan(self.storage, loan)

            self.audit_trail.log_event(
                event_type=AuditEventType.REPAYMENT_RECORDED,
                entity_type="loan",
                entity_id=loan.id,
                user_id=user_id,
                metadata={
                    "loan_number": loan.loan_number,
                    "installment_id": installment.id,
                    "installment_number": installment.installment_number,
                    "amount": amount,
                    "reference": payment_reference,
                    "method": payment_method,
                    "payroll_month": payroll_month,
                    "total_paid": loan.total_paid,
                    "outstanding_balance": loan.outstanding_balance
                }
            )
            if completed:
                self.audit_trail.log_event(
                    event_type=AuditEventType.LOAN_COMPLETED,
                    entity_type="loan",
                    entity_id=loan.id,
                    metadata={"loan_number": loan.loan_number, "total_paid": loan.total_paid}
                )

        log_action(logger, "info", f"Recorded {amount} against loan {loan.loan_number}",
                   user_id=user_id, action="repayment", resource=f"loan:{loan.id}",
                   extra={"installment_number": installment.installment_number,
                          "method": payment_method})
        self._publish(DomainEvent.LOAN_REPAYMENT, loan)
        if completed:
            logger.info(f"Loan {loan.loan_number} fully repaid")
            self._publish(DomainEvent.LOAN_COMPLETED, loan)
        return loan

    def record_payroll_deduction(
        self,
        loan_id: str,
        amount: Numeric,
        payroll_month: str,
        payroll_reference: str,
        installment_id: Optional[str] = None
    ) -> Loan:
        """Record a salary deduction made by payroll for ``payroll_month``"""
        return self.record_payment(
            loan_id=loan_id,
            amount=amount,
            payment_reference=payroll_reference,
            payment_method=SALARY_DEDUCTION,
            installment_id=installment_id,
            notes=f"Payroll deduction for {payroll_month}",
            payroll_month=payroll_month
        )

    def _select_installment(self, loan: Loan, installment_id: Optional[str]) -> RepaymentInstallment:
        if installment_id:
            installment = self.schedule_generator.get_installment(installment_id)
            if installment.loan_id != loan.id:
                raise LoanNotFoundError(f"Repayment {installment_id} not found on loan {loan.loan_number}")
            return installment

        open_installments = [
            i for i in self.schedule_generator.get_schedule(loan.id)
            if i.status in OPEN_INSTALLMENT_STATUSES
        ]
        if not open_installments:
            raise LoanConflictError("No pending repayments found")
        return min(open_installments, key=lambda i: (i.due_date, i.installment_number))

    def _publish(self, event_type: DomainEvent, loan: Loan) -> None:
        if self.dispatcher:
            self.dispatcher.publish(create_loan_event(event_type, loan))
