"""
Repayment Schedule Module

Builds and queries the monthly installment schedule of a loan.

Schedules are flat-rate: principal and total interest are each split
equally over the term and rounded to the cent. The last installment takes
whatever the rounding left over, so the installments add up exactly to the
loan's payable amount.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Optional
from enum import Enum
import calendar
import logging
import uuid

from .storage import StorageInterface, StorageRecord, KeyedLock
from .audit import AuditTrail, AuditEventType
from .config import StaffLoansConfig, get_config
from .money import ZERO, round_money
from .loans import LoanStatus, REPAYABLE_STATUSES, load_loan
from .exceptions import LoanNotFoundError

logger = logging.getLogger("staff_loans.schedule")

REPAYMENTS_TABLE = "loan_repayments"


class InstallmentStatus(Enum):
    """Installment states"""
    SCHEDULED = "scheduled"
    PENDING = "pending"
    PAID = "paid"
    PARTIALLY_PAID = "partially_paid"
    OVERDUE = "overdue"
    WAIVED = "waived"


# Installments a payment can still be applied to
OPEN_INSTALLMENT_STATUSES = (
    InstallmentStatus.SCHEDULED,
    InstallmentStatus.PENDING,
    InstallmentStatus.OVERDUE,
    InstallmentStatus.PARTIALLY_PAID,
)

_DECIMAL_FIELDS = (
    'principal_component', 'interest_component', 'total_amount',
    'running_balance', 'paid_amount', 'waived_amount'
)


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, clamping to the end of shorter months"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


@dataclass
class RepaymentInstallment(StorageRecord):
    """One monthly installment of a loan"""
    loan_id: str
    installment_number: int
    due_date: date
    principal_component: Decimal
    interest_component: Decimal
    total_amount: Decimal
    running_balance: Decimal          # Loan payable left after this installment
    paid_amount: Decimal = ZERO
    waived_amount: Decimal = ZERO
    status: InstallmentStatus = InstallmentStatus.SCHEDULED

    payment_date: Optional[date] = None
    payment_reference: Optional[str] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    payroll_reference: Optional[str] = None
    payroll_month: Optional[str] = None

    @property
    def outstanding_amount(self) -> Decimal:
        return self.total_amount - self.paid_amount - self.waived_amount

    @property
    def is_settled(self) -> bool:
        return self.status in (InstallmentStatus.PAID, InstallmentStatus.WAIVED)

    def is_overdue(self, as_of: Optional[date] = None) -> bool:
        return not self.is_settled and self.due_date < (as_of or date.today())

    def days_overdue(self, as_of: Optional[date] = None) -> int:
        as_of = as_of or date.today()
        if not self.is_overdue(as_of):
            return 0
        return (as_of - self.due_date).days

    def apply_payment(
        self,
        amount: Decimal,
        payment_date: date,
        reference: str,
        method: str,
        notes: Optional[str] = None
    ) -> None:
        """Add a payment; any excess over the amount due stays on this installment"""
        self.paid_amount = round_money(self.paid_amount + amount)
        self.payment_date = payment_date
        self.payment_reference = reference
        self.payment_method = method
        self.notes = notes
        if self.paid_amount >= self.total_amount:
            self.status = InstallmentStatus.PAID
        else:
            self.status = InstallmentStatus.PARTIALLY_PAID

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RepaymentInstallment':
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values['created_at'] = datetime.fromisoformat(data['created_at'])
        values['updated_at'] = datetime.fromisoformat(data['updated_at'])
        values['due_date'] = date.fromisoformat(data['due_date'])
        values['status'] = InstallmentStatus(data['status'])
        for name in _DECIMAL_FIELDS:
            values[name] = Decimal(values[name])
        if values.get('payment_date'):
            values['payment_date'] = date.fromisoformat(values['payment_date'])
        return cls(**values)


class ScheduleGenerator:
    """
    Generates and reads loan repayment schedules
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        loan_locks: Optional[KeyedLock] = None,
        settings: Optional[StaffLoansConfig] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.loan_locks = loan_locks or KeyedLock()
        self.settings = settings or get_config()

    add_months = staticmethod(add_months)

    def next_payroll_date(self, today: Optional[date] = None) -> date:
        """The configured payroll day of the month after ``today``"""
        first_of_next = add_months((today or date.today()).replace(day=1), 1)
        last_day = calendar.monthrange(first_of_next.year, first_of_next.month)[1]
        return first_of_next.replace(day=min(self.settings.payroll_day, last_day))

    def generate(self, loan_id: str, today: Optional[date] = None) -> List[RepaymentInstallment]:
        """
        Replace the loan's schedule with a freshly built one

        Due dates run monthly from the first repayment date, falling back to
        the disbursement date, the approval date and finally today.

        Args:
            loan_id: Loan to schedule
            today: Fallback anchor date

        Returns:
            Installments ordered by installment number

        Raises:
            LoanNotFoundError: Unknown loan
        """
        with self.loan_locks.hold(loan_id), self.storage.atomic():
            loan = load_loan(self.storage, loan_id)

            previous = self.storage.find(REPAYMENTS_TABLE, {'loan_id': loan_id})
            discarded = sum((Decimal(row['paid_amount']) for row in previous), ZERO)
            if discarded > 0:
                logger.warning(
                    f"Regenerating schedule of loan {loan.loan_number} discards "
                    f"{discarded} already paid on installments"
                )
            for row in previous:
                self.storage.delete(REPAYMENTS_TABLE, row['id'])

            anchor = (loan.first_repayment_date or loan.disbursement_date
                      or loan.approval_date or today or date.today())
            term = loan.term_months
            principal_component = round_money(loan.principal / term)
            interest_component = round_money(loan.total_interest / term)
            total_amount = principal_component + interest_component

            now = datetime.now(timezone.utc)
            running_balance = loan.total_payable
            installments = []
            for number in range(1, term + 1):
                if number == term:
                    principal_component = loan.principal - principal_component * (term - 1)
                    interest_component = loan.total_interest - interest_component * (term - 1)
                    total_amount = principal_component + interest_component
                running_balance = max(ZERO, running_balance - total_amount)
                installment = RepaymentInstallment(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    loan_id=loan.id,
                    installment_number=number,
                    due_date=add_months(anchor, number),
                    principal_component=principal_component,
                    interest_component=interest_component,
                    total_amount=total_amount,
                    running_balance=running_balance
                )
                self.storage.save(REPAYMENTS_TABLE, installment.id, installment.to_dict())
                installments.append(installment)

            self.audit_trail.log_event(
                event_type=AuditEventType.SCHEDULE_GENERATED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={
                    "loan_number": loan.loan_number,
                    "installments": loan.term_months,
                    "installment_amount": installments[0].total_amount,
                    "first_due_date": installments[0].due_date.isoformat(),
                    "replaced": len(previous)
                }
            )

        logger.info(f"Generated {len(installments)} installments for loan {loan.loan_number}")
        return installments

    def get_schedule(self, loan_id: str) -> List[RepaymentInstallment]:
        """Installments of a loan ordered by installment number"""
        rows = self.storage.find(REPAYMENTS_TABLE, {'loan_id': loan_id})
        installments = [RepaymentInstallment.from_dict(row) for row in rows]
        return sorted(installments, key=lambda i: i.installment_number)

    def get_installment(self, installment_id: str) -> RepaymentInstallment:
        data = self.storage.load(REPAYMENTS_TABLE, installment_id)
        if not data:
            raise LoanNotFoundError(f"Repayment {installment_id} not found")
        return RepaymentInstallment.from_dict(data)

    def save_installment(self, installment: RepaymentInstallment) -> None:
        installment.updated_at = datetime.now(timezone.utc)
        self.storage.save(REPAYMENTS_TABLE, installment.id, installment.to_dict())

    def all_installments(self) -> List[RepaymentInstallment]:
        return [RepaymentInstallment.from_dict(row) for row in self.storage.load_all(REPAYMENTS_TABLE)]

    def mark_overdue(self, as_of: Optional[date] = None) -> int:
        """
        Flag past-due scheduled/pending installments of repaying loans as overdue

        Returns:
            Number of installments flagged
        """
        as_of = as_of or date.today()
        marked = 0
        loan_statuses: Dict[str, LoanStatus] = {}

        with self.storage.atomic():
            for installment in self.all_installments():
                if installment.status not in (InstallmentStatus.SCHEDULED, InstallmentStatus.PENDING):
                    continue
                if not installment.is_overdue(as_of):
                    continue
                if installment.loan_id not in loan_statuses:
                    loan_statuses[installment.loan_id] = load_loan(self.storage, installment.loan_id).status
                if loan_statuses[installment.loan_id] not in REPAYABLE_STATUSES:
                    continue

                installment.status = InstallmentStatus.OVERDUE
                self.save_installment(installment)
                marked += 1
                self.audit_trail.log_event(
                    event_type=AuditEventType.INSTALLMENTS_MARKED_OVERDUE,
                    entity_type="loan",
                    entity_id=installment.loan_id,
                    metadata={
                        "installment_number": installment.installment_number,
                        "due_date": installment.due_date.isoformat(),
                        "days_overdue": installment.days_overdue(as_of)
                    }
                )

        if marked:
            logger.info(f"Marked {marked} installments overdue as of {as_of.isoformat()}")
        return marked
