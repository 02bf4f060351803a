"""
Loan Module

Staff loan record and its lifecycle: application, cancellation, approval
decision, disbursement, and the terminal default/write-off transitions.

Lifecycle::

    pending -> approved -> disbursed -> active -> completed
       |          |                       |
       |          +-> (rejected)          +-> defaulted -> written_off
       +-> cancelled / rejected

Every mutation runs inside one ``storage.atomic()`` unit. Calls to the
approval engine happen only after that unit has committed and never undo
it.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Optional, Union
from enum import Enum
import logging
import random
import uuid

from .storage import StorageInterface, StorageRecord, KeyedLock
from .audit import AuditTrail, AuditEventType
from .events import DomainEvent, EventDispatcher, create_loan_event
from .staff import StaffDirectory
from .config import StaffLoansConfig, get_config
from .money import ZERO, Numeric, to_decimal, round_money
from .amortization import installment_amount, total_interest
from .approvals import ApprovalBridge, ApprovalCompletedEvent, LOAN_TARGET_TYPE
from .exceptions import (
    LoanValidationError, LoanNotFoundError, LoanConflictError, LoanForbiddenError
)
from .logging_config import log_action

logger = logging.getLogger("staff_loans.loans")

LOANS_TABLE = "loans"


class LoanType(Enum):
    """Kinds of staff credit"""
    SALARY_ADVANCE = "salary_advance"
    STAFF_LOAN = "staff_loan"
    EMERGENCY_LOAN = "emergency_loan"

    @property
    def number_prefix(self) -> str:
        return {
            LoanType.SALARY_ADVANCE: "ADV",
            LoanType.EMERGENCY_LOAN: "EMG",
            LoanType.STAFF_LOAN: "LN",
        }[self]


class LoanStatus(Enum):
    """Loan lifecycle states"""
    DRAFT = "draft"
    PENDING = "pending"            # Awaiting approval decision
    APPROVED = "approved"
    REJECTED = "rejected"
    DISBURSED = "disbursed"        # Funds released, schedule being built
    ACTIVE = "active"              # Repaying
    COMPLETED = "completed"        # Fully repaid
    DEFAULTED = "defaulted"
    CANCELLED = "cancelled"
    WRITTEN_OFF = "written_off"


# A staff member may hold only one staff loan in these states
OPEN_STAFF_LOAN_STATUSES = (
    LoanStatus.PENDING, LoanStatus.APPROVED, LoanStatus.DISBURSED, LoanStatus.ACTIVE
)
REPAYABLE_STATUSES = (LoanStatus.ACTIVE, LoanStatus.DISBURSED)

_DECIMAL_FIELDS = (
    'principal', 'interest_rate', 'total_interest', 'total_payable',
    'monthly_installment', 'total_paid', 'outstanding_balance',
    'max_salary_deduction_percent'
)
_DATE_FIELDS = (
    'application_date', 'approval_date', 'disbursement_date',
    'first_repayment_date', 'maturity_date'
)


@dataclass
class Loan(StorageRecord):
    """Staff loan aggregate root"""
    loan_number: str
    staff_id: str
    loan_type: LoanType
    principal: Decimal
    interest_rate: Decimal              # Annual, in percent
    term_months: int
    total_interest: Decimal             # Flat-rate interest for the whole term
    total_payable: Decimal
    monthly_installment: Decimal        # Indicative EMI, display only
    application_date: date
    status: LoanStatus = LoanStatus.PENDING
    total_paid: Decimal = ZERO
    outstanding_balance: Optional[Decimal] = None
    currency: str = "KES"

    guarantor_id: Optional[str] = None
    purpose: Optional[str] = None
    remarks: Optional[str] = None
    is_urgent: bool = False
    deduct_from_salary: bool = True
    max_salary_deduction_percent: Decimal = Decimal('33')

    # Approval
    approval_instance_id: Optional[str] = None
    approval_date: Optional[date] = None
    approved_by: Optional[str] = None
    approval_comment: Optional[str] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None

    # Disbursement
    disbursement_date: Optional[date] = None
    disbursed_by: Optional[str] = None
    disbursement_reference: Optional[str] = None
    disbursement_method: Optional[str] = None
    first_repayment_date: Optional[date] = None
    maturity_date: Optional[date] = None

    created_by: Optional[str] = None
    closure_reason: Optional[str] = None   # Why it was defaulted/written off

    def __post_init__(self):
        if self.outstanding_balance is None:
            self.outstanding_balance = max(ZERO, self.total_payable - self.total_paid)

    @property
    def is_repayable(self) -> bool:
        return self.status in REPAYABLE_STATUSES

    @property
    def repayment_progress(self) -> Decimal:
        """Percentage of the payable amount already repaid"""
        if self.total_payable <= 0:
            return ZERO
        return min(Decimal('100.00'), round_money(self.total_paid / self.total_payable * 100))

    def apply_payment(self, amount: Decimal) -> bool:
        """
        Add a payment to the loan totals

        Returns:
            True if the payment completed the loan
        """
        self.total_paid = round_money(self.total_paid + amount)
        self.outstanding_balance = self.total_payable - self.total_paid
        if self.outstanding_balance <= 0:
            self.outstanding_balance = ZERO
            self.status = LoanStatus.COMPLETED
            return True
        return False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values['created_at'] = datetime.fromisoformat(data['created_at'])
        values['updated_at'] = datetime.fromisoformat(data['updated_at'])
        values['loan_type'] = LoanType(data['loan_type'])
        values['status'] = LoanStatus(data['status'])
        for name in _DECIMAL_FIELDS:
            if values.get(name) is not None:
                values[name] = Decimal(values[name])
        for name in _DATE_FIELDS:
            if values.get(name):
                values[name] = date.fromisoformat(values[name])
        return cls(**values)


def load_loan(storage: StorageInterface, loan_id: str) -> Loan:
    """Load a loan or raise LoanNotFoundError"""
    data = storage.load(LOANS_TABLE, loan_id)
    if not data:
        raise LoanNotFoundError(f"Loan {loan_id} not found")
    return Loan.from_dict(data)


def save_loan(storage: StorageInterface, loan: Loan) -> None:
    loan.updated_at = datetime.now(timezone.utc)
    storage.save(LOANS_TABLE, loan.id, loan.to_dict())


class LoanManager:
    """
    Manages the staff loan lifecycle from application to closure
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        staff_directory: StaffDirectory,
        schedule_generator,
        loan_locks: Optional[KeyedLock] = None,
        dispatcher: Optional[EventDispatcher] = None,
        approval_bridge: Optional[ApprovalBridge] = None,
        settings: Optional[StaffLoansConfig] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.staff_directory = staff_directory
        self.schedule_generator = schedule_generator
        self.loan_locks = loan_locks or KeyedLock()
        self.dispatcher = dispatcher
        self.approval_bridge = approval_bridge
        self.settings = settings or get_config()

        if approval_bridge:
            approval_bridge.listen(self.on_approval_completed)

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    def apply_for_loan(
        self,
        staff_id: str,
        loan_type: Union[LoanType, str],
        principal: Numeric,
        term_months: int,
        interest_rate: Optional[Numeric] = None,
        purpose: Optional[str] = None,
        is_urgent: bool = False,
        deduct_from_salary: bool = True,
        max_salary_deduction_percent: Optional[Numeric] = None,
        guarantor_id: Optional[str] = None,
        application_date: Optional[date] = None
    ) -> Loan:
        """
        Submit a loan application

        The loan is created in ``pending`` and then registered with the
        approval engine. If registration fails the loan stays pending with
        no ``approval_instance_id``.

        Raises:
            LoanValidationError: Bad amount, term, rate, deduction percent or guarantor
            LoanNotFoundError: Unknown applicant
            LoanForbiddenError: Applicant is not active
            LoanConflictError: Applicant already holds a conflicting loan
        """
        loan_type = self._parse_loan_type(loan_type)
        principal = self._parse_decimal(principal, "Principal")
        if principal <= 0:
            raise LoanValidationError("Principal must be positive")

        if isinstance(term_months, bool) or not isinstance(term_months, int):
            raise LoanValidationError("Term must be a whole number of months")
        if not self.settings.min_term_months <= term_months <= self.settings.max_term_months:
            raise LoanValidationError(
                f"Term must be between {self.settings.min_term_months} and "
                f"{self.settings.max_term_months} months"
            )

        if interest_rate is None:
            rate = self._default_interest_rate(loan_type)
        else:
            rate = self._parse_decimal(interest_rate, "Interest rate")
        if not Decimal('0') <= rate <= Decimal('100'):
            raise LoanValidationError("Interest rate must be between 0 and 100")

        if max_salary_deduction_percent is None:
            deduction_percent = to_decimal(self.settings.default_max_salary_deduction_percent)
        else:
            deduction_percent = self._parse_decimal(max_salary_deduction_percent, "Max salary deduction")
        if not Decimal('1') <= deduction_percent <= Decimal('50'):
            raise LoanValidationError("Max salary deduction must be between 1 and 50 percent")

        if guarantor_id and guarantor_id == staff_id:
            raise LoanValidationError("You cannot be your own guarantor")

        applied_on = application_date or date.today()

        with self.storage.atomic():
            staff = self.staff_directory.get_staff(staff_id)
            if not staff:
                raise LoanNotFoundError(f"Staff {staff_id} not found")
            if not staff.is_active:
                raise LoanForbiddenError(f"Staff {staff_id} is not active")

            existing = [Loan.from_dict(d) for d in self.storage.find(LOANS_TABLE, {'staff_id': staff_id})]
            if loan_type == LoanType.STAFF_LOAN:
                if any(l.loan_type == LoanType.STAFF_LOAN and l.status in OPEN_STAFF_LOAN_STATUSES
                       for l in existing):
                    raise LoanConflictError("You already have an active or pending staff loan")

            if loan_type == LoanType.SALARY_ADVANCE:
                for other in existing:
                    if (other.loan_type == LoanType.SALARY_ADVANCE
                            and other.status not in (LoanStatus.REJECTED, LoanStatus.CANCELLED)
                            and (other.application_date.year, other.application_date.month)
                            == (applied_on.year, applied_on.month)):
                        raise LoanConflictError("You can only request one salary advance per month")

            if guarantor_id and not self.staff_directory.get_staff(guarantor_id):
                raise LoanValidationError("Guarantor not found")

            interest = total_interest(principal, rate, term_months)
            now = datetime.now(timezone.utc)
            loan = Loan(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                loan_number=self._generate_loan_number(loan_type, applied_on.year),
                staff_id=staff_id,
                loan_type=loan_type,
                principal=round_money(principal),
                interest_rate=rate,
                term_months=term_months,
                total_interest=interest,
                total_payable=round_money(principal + interest),
                monthly_installment=installment_amount(principal, rate, term_months),
                application_date=applied_on,
                currency=self.settings.currency,
                guarantor_id=guarantor_id,
                purpose=purpose,
                is_urgent=is_urgent,
                deduct_from_salary=deduct_from_salary,
                max_salary_deduction_percent=deduction_percent,
                created_by=staff_id
            )
            save_loan(self.storage, loan)

            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_APPLIED,
                entity_type="loan",
                entity_id=loan.id,
                user_id=staff_id,
                metadata={
                    "loan_number": loan.loan_number,
                    "loan_type": loan_type.value,
                    "principal": loan.principal,
                    "interest_rate": rate,
                    "term_months": term_months,
                    "total_payable": loan.total_payable
                }
            )

        log_action(logger, "info", f"Loan {loan.loan_number} applied",
                   user_id=staff_id, action="apply", resource=f"loan:{loan.id}")
        self._publish(DomainEvent.LOAN_APPLIED, loan)

        if self.approval_bridge:
            loan = self._link_approval(loan)

        return loan

    def _link_approval(self, loan: Loan) -> Loan:
        instance_id = self.approval_bridge.initiate_for_loan(loan)

        if instance_id is None:
            self.audit_trail.log_event(
                event_type=AuditEventType.APPROVAL_LINK_FAILED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={"loan_number": loan.loan_number}
            )
            return loan

        with self.loan_locks.hold(loan.id), self.storage.atomic():
            # The decision may already have landed, so only the link is written
            current = load_loan(self.storage, loan.id)
            current.approval_instance_id = instance_id
            save_loan(self.storage, current)
            self.audit_trail.log_event(
                event_type=AuditEventType.APPROVAL_INITIATED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={"approval_instance_id": instance_id}
            )
        return current

    def cancel_loan(self, loan_id: str, requester_id: str) -> Loan:
        """
        Withdraw a pending or draft application

        Raises:
            LoanNotFoundError: Unknown loan
            LoanForbiddenError: Requester is not the applicant
            LoanConflictError: Loan is past the pending stage
        """
        with self.loan_locks.hold(loan_id), self.storage.atomic():
            loan = load_loan(self.storage, loan_id)
            if loan.staff_id != requester_id:
                raise LoanForbiddenError("You can only cancel your own loan applications")
            if loan.status not in (LoanStatus.PENDING, LoanStatus.DRAFT):
                raise LoanConflictError("Only pending or draft loans can be cancelled")

            loan.status = LoanStatus.CANCELLED
            save_loan(self.storage, loan)
            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_CANCELLED,
                entity_type="loan",
                entity_id=loan.id,
                user_id=requester_id,
                metadata={"loan_number": loan.loan_number}
            )

        log_action(logger, "info", f"Loan {loan.loan_number} cancelled",
                   user_id=requester_id, action="cancel", resource=f"loan:{loan.id}")
        self._publish(DomainEvent.LOAN_CANCELLED, loan)

        if self.approval_bridge:
            self.approval_bridge.cancel_for_loan(loan)

        return loan

    # ------------------------------------------------------------------
    # Approval decision
    # ------------------------------------------------------------------

    def on_approval_completed(self, event: ApprovalCompletedEvent) -> Optional[Loan]:
        """
        Apply an approval engine decision

        Only a pending loan moves. Events for other target types, unknown
        loans, loans already decided and unknown decision values are
        ignored, so redelivered events are harmless.

        Returns:
            The updated loan, or None when the event was ignored
        """
        if event.target_type != LOAN_TARGET_TYPE:
            return None

        with self.loan_locks.hold(event.target_id), self.storage.atomic():
            data = self.storage.load(LOANS_TABLE, event.target_id)
            if not data:
                logger.warning(f"Approval decision for unknown loan {event.target_id}")
                return None

            loan = Loan.from_dict(data)
            if loan.status != LoanStatus.PENDING:
                logger.info(
                    f"Ignoring {event.status} decision for loan {loan.loan_number}: "
                    f"already {loan.status.value}"
                )
                return None

            if event.status == "approved":
                loan.status = LoanStatus.APPROVED
                loan.approval_date = date.today()
                loan.approved_by = event.approver_id
                loan.approval_comment = event.comment
                audit_type = AuditEventType.LOAN_APPROVED
                domain_event = DomainEvent.LOAN_APPROVED
            elif event.status == "rejected":
                loan.status = LoanStatus.REJECTED
                loan.rejected_by = event.approver_id
                loan.rejection_reason = event.comment
                audit_type = AuditEventType.LOAN_REJECTED
                domain_event = DomainEvent.LOAN_REJECTED
            else:
                logger.warning(f"Unknown approval status {event.status!r} for loan {loan.loan_number}")
                return None

            save_loan(self.storage, loan)
            self.audit_trail.log_event(
                event_type=audit_type,
                entity_type="loan",
                entity_id=loan.id,
                user_id=event.approver_id,
                metadata={
                    "loan_number": loan.loan_number,
                    "approval_instance_id": event.instance_id,
                    "comment": event.comment
                }
            )

        log_action(logger, "info", f"Loan {loan.loan_number} status updated to {loan.status.value}",
                   user_id=event.approver_id, action=event.status, resource=f"loan:{loan.id}")
        self._publish(domain_event, loan)
        return loan

    # ------------------------------------------------------------------
    # Disbursement and closure
    # ------------------------------------------------------------------

    def disburse_loan(
        self,
        loan_id: str,
        disburser_id: str,
        disbursement_reference: str,
        disbursement_method: str,
        first_repayment_date: Optional[date] = None
    ) -> Loan:
        """
        Release funds for an approved loan and build its repayment schedule

        Without an explicit first repayment date the next payroll date is
        used. Disbursement, schedule and activation commit together.

        Raises:
            LoanNotFoundError: Unknown loan
            LoanConflictError: Loan is not approved
        """
        with self.loan_locks.hold(loan_id), self.storage.atomic():
            loan = load_loan(self.storage, loan_id)
            if loan.status != LoanStatus.APPROVED:
                raise LoanConflictError("Only approved loans can be disbursed")

            loan.status = LoanStatus.DISBURSED
            loan.disbursement_date = date.today()
            loan.disbursed_by = disburser_id
            loan.disbursement_reference = disbursement_reference
            loan.disbursement_method = disbursement_method
            loan.first_repayment_date = first_repayment_date or self.schedule_generator.next_payroll_date()
            loan.maturity_date = self.schedule_generator.add_months(loan.first_repayment_date, loan.term_months)
            save_loan(self.storage, loan)

            self.schedule_generator.generate(loan.id)

            loan.status = LoanStatus.ACTIVE
            save_loan(self.storage, loan)

            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_DISBURSED,
                entity_type="loan",
                entity_id=loan.id,
                user_id=disburser_id,
                metadata={
                    "loan_number": loan.loan_number,
                    "principal": loan.principal,
                    "reference": disbursement_reference,
                    "method": disbursement_method,
                    "first_repayment_date": loan.first_repayment_date.isoformat(),
                    "maturity_date": loan.maturity_date.isoformat()
                }
            )

        log_action(logger, "info", f"Loan {loan.loan_number} disbursed",
                   user_id=disburser_id, action="disburse", resource=f"loan:{loan.id}",
                   extra={"reference": disbursement_reference})
        self._publish(DomainEvent.LOAN_DISBURSED, loan)
        return loan

    def mark_defaulted(self, loan_id: str, actor_id: str, reason: str) -> Loan:
        """Move an active or disbursed loan to defaulted"""
        return self._close(
            loan_id, actor_id, reason,
            allowed=REPAYABLE_STATUSES,
            target=LoanStatus.DEFAULTED,
            audit_type=AuditEventType.LOAN_DEFAULTED
        )

    def write_off(self, loan_id: str, actor_id: str, reason: str) -> Loan:
        """Write off an active, disbursed or defaulted loan"""
        return self._close(
            loan_id, actor_id, reason,
            allowed=REPAYABLE_STATUSES + (LoanStatus.DEFAULTED,),
            target=LoanStatus.WRITTEN_OFF,
            audit_type=AuditEventType.LOAN_WRITTEN_OFF
        )

    def _close(self, loan_id, actor_id, reason, allowed, target, audit_type) -> Loan:
        if not reason or not reason.strip():
            raise LoanValidationError("A reason is required")

        with self.loan_locks.hold(loan_id), self.storage.atomic():
            loan = load_loan(self.storage, loan_id)
            if loan.status not in allowed:
                raise LoanConflictError(
                    f"Cannot move a {loan.status.value} loan to {target.value}"
                )
            loan.status = target
            loan.closure_reason = reason
            save_loan(self.storage, loan)
            self.audit_trail.log_event(
                event_type=audit_type,
                entity_type="loan",
                entity_id=loan.id,
                user_id=actor_id,
                metadata={
                    "loan_number": loan.loan_number,
                    "reason": reason,
                    "outstanding_balance": loan.outstanding_balance
                }
            )

        log_action(logger, "warning", f"Loan {loan.loan_number} {target.value}",
                   user_id=actor_id, action=target.value, resource=f"loan:{loan.id}")
        return loan

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_id(self, loan_id: str) -> Loan:
        return load_loan(self.storage, loan_id)

    def find_by_staff(self, staff_id: str, status: Optional[LoanStatus] = None) -> List[Loan]:
        """A staff member's loans, newest first"""
        filters = {'staff_id': staff_id}
        if status:
            filters['status'] = status.value
        loans = [Loan.from_dict(d) for d in self.storage.find(LOANS_TABLE, filters)]
        return sorted(loans, key=lambda l: l.created_at, reverse=True)

    def find_all(
        self,
        status: Optional[LoanStatus] = None,
        loan_type: Optional[LoanType] = None,
        staff_id: Optional[str] = None,
        branch_id: Optional[str] = None
    ) -> List[Loan]:
        """All loans matching the filters, newest first"""
        filters = {}
        if status:
            filters['status'] = status.value
        if loan_type:
            filters['loan_type'] = loan_type.value
        if staff_id:
            filters['staff_id'] = staff_id
        loans = [Loan.from_dict(d) for d in self.storage.find(LOANS_TABLE, filters)]

        if branch_id:
            branch_staff = {}
            kept = []
            for loan in loans:
                if loan.staff_id not in branch_staff:
                    member = self.staff_directory.get_staff(loan.staff_id)
                    branch_staff[loan.staff_id] = member.branch_id if member else None
                if branch_staff[loan.staff_id] == branch_id:
                    kept.append(loan)
            loans = kept

        return sorted(loans, key=lambda l: l.created_at, reverse=True)

    def find_pending_approval(self) -> List[Loan]:
        """Pending loans, urgent first, then oldest application first"""
        loans = self.find_all(status=LoanStatus.PENDING)
        return sorted(loans, key=lambda l: (not l.is_urgent, l.application_date, l.created_at))

    def find_overdue(self, as_of: Optional[date] = None) -> List[Loan]:
        """Active or disbursed loans with at least one overdue installment"""
        as_of = as_of or date.today()
        overdue = []
        for loan in self.find_all():
            if not loan.is_repayable:
                continue
            schedule = self.schedule_generator.get_schedule(loan.id)
            if any(installment.is_overdue(as_of) for installment in schedule):
                overdue.append(loan)
        return overdue

    def get_stats(self, staff_id: Optional[str] = None, year: Optional[int] = None) -> Dict[str, Any]:
        """
        Loan portfolio statistics for loans applied for in ``year``

        Args:
            staff_id: Restrict to one staff member
            year: Application year, defaults to the current year
        """
        year = year or date.today().year
        loans = [l for l in self.find_all(staff_id=staff_id) if l.application_date.year == year]

        by_type: Dict[str, Dict[str, Any]] = {}
        for loan in loans:
            entry = by_type.setdefault(loan.loan_type.value, {
                "type": loan.loan_type.value, "count": 0, "amount": ZERO
            })
            entry["count"] += 1
            entry["amount"] += loan.principal

        return {
            "year": year,
            "total": len(loans),
            "pending": sum(1 for l in loans if l.status == LoanStatus.PENDING),
            "active": sum(1 for l in loans if l.status in REPAYABLE_STATUSES),
            "completed": sum(1 for l in loans if l.status == LoanStatus.COMPLETED),
            "defaulted": sum(1 for l in loans if l.status == LoanStatus.DEFAULTED),
            "total_disbursed": sum(
                (l.principal for l in loans
                 if l.status not in (LoanStatus.PENDING, LoanStatus.REJECTED)),
                ZERO
            ),
            "total_outstanding": sum((l.outstanding_balance for l in loans), ZERO),
            "total_repaid": sum((l.total_paid for l in loans), ZERO),
            "by_type": list(by_type.values())
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _generate_loan_number(self, loan_type: LoanType, year: int, attempts: int = 20) -> str:
        for _ in range(attempts):
            number = f"{loan_type.number_prefix}-{year}-{random.randint(0, 99999):05d}"
            if not self.storage.find(LOANS_TABLE, {'loan_number': number}):
                return number
        raise LoanConflictError("Could not allocate a unique loan number")

    def _default_interest_rate(self, loan_type: LoanType) -> Decimal:
        return to_decimal({
            LoanType.SALARY_ADVANCE: self.settings.salary_advance_interest_rate,
            LoanType.STAFF_LOAN: self.settings.staff_loan_interest_rate,
            LoanType.EMERGENCY_LOAN: self.settings.emergency_loan_interest_rate,
        }[loan_type])

    @staticmethod
    def _parse_loan_type(value: Union[LoanType, str]) -> LoanType:
        if isinstance(value, LoanType):
            return value
        try:
            return LoanType(value)
        except ValueError:
            raise LoanValidationError(f"Unknown loan type: {value}")

    @staticmethod
    def _parse_decimal(value: Numeric, label: str) -> Decimal:
        try:
            parsed = to_decimal(value)
        except ValueError:
            raise LoanValidationError(f"{label} must be a number")
        if not parsed.is_finite():
            raise LoanValidationError(f"{label} must be a number")
        return parsed

    def _publish(self, event_type: DomainEvent, loan: Loan) -> None:
        if self.dispatcher:
            self.dispatcher.publish(create_loan_event(event_type, loan))
