"""
Payroll Batch Module

Monthly payroll integration: which installments payroll should deduct from
salaries this month, applying the deductions once payroll has run, and the
per-branch and per-staff views of the same data.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional, Tuple
import logging
import re

from .storage import StorageInterface
from .audit import AuditTrail, AuditEventType
from .events import DomainEvent, EventDispatcher, EventPayload
from .staff import StaffDirectory
from .money import ZERO
from .loans import Loan, LOANS_TABLE, REPAYABLE_STATUSES
from .schedule import ScheduleGenerator, InstallmentStatus
from .repayments import RepaymentRecorder
from .exceptions import LoanValidationError

logger = logging.getLogger("staff_loans.payroll")

MONTH_PATTERN = re.compile(r"^\d{4}-\d{2}$")

DEDUCTIBLE_INSTALLMENT_STATUSES = (
    InstallmentStatus.SCHEDULED, InstallmentStatus.PENDING, InstallmentStatus.OVERDUE
)

UNKNOWN_BRANCH = "Unknown"


def parse_month(month: str) -> Tuple[int, int]:
    """
    Parse a ``YYYY-MM`` payroll month

    Raises:
        LoanValidationError: If the month is malformed
    """
    if not isinstance(month, str) or not MONTH_PATTERN.match(month):
        raise LoanValidationError(f"Invalid payroll month {month!r}, expected YYYY-MM")
    year, month_number = (int(part) for part in month.split("-"))
    if not 1 <= month_number <= 12:
        raise LoanValidationError(f"Invalid payroll month {month!r}, expected YYYY-MM")
    return year, month_number


@dataclass
class PayrollDeduction:
    """One installment payroll should deduct"""
    staff_id: str
    staff_number: str
    staff_name: str
    branch_id: Optional[str]
    branch_name: str
    loan_id: str
    loan_number: str
    loan_type: str
    installment_id: str
    installment_number: int
    due_date: date
    amount: Decimal
    principal_component: Decimal
    interest_component: Decimal
    outstanding_balance: Decimal

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['due_date'] = self.due_date.isoformat()
        return data


class PayrollBatchProcessor:
    """
    Builds payroll deduction exports and applies processed payroll batches
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        staff_directory: StaffDirectory,
        schedule_generator: ScheduleGenerator,
        repayment_recorder: RepaymentRecorder,
        dispatcher: Optional[EventDispatcher] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.staff_directory = staff_directory
        self.schedule_generator = schedule_generator
        self.repayment_recorder = repayment_recorder
        self.dispatcher = dispatcher

    def _loans_by_id(self) -> Dict[str, Loan]:
        return {d['id']: Loan.from_dict(d) for d in self.storage.load_all(LOANS_TABLE)}

    def deductions_for_month(self, month: str) -> List[PayrollDeduction]:
        """Deduction rows for ``month``, by employee number then loan number"""
        year, month_number = parse_month(month)
        loans = self._loans_by_id()
        staff_cache = {}

        rows = []
        for installment in self.schedule_generator.all_installments():
            if (installment.due_date.year, installment.due_date.month) != (year, month_number):
                continue
            if installment.status not in DEDUCTIBLE_INSTALLMENT_STATUSES:
                continue
            loan = loans.get(installment.loan_id)
            if not loan or loan.status not in REPAYABLE_STATUSES or not loan.deduct_from_salary:
                continue

            if loan.staff_id not in staff_cache:
                staff_cache[loan.staff_id] = self.staff_directory.get_staff(loan.staff_id)
            staff = staff_cache[loan.staff_id]

            rows.append(PayrollDeduction(
                staff_id=loan.staff_id,
                staff_number=staff.employee_number if staff else "",
                staff_name=staff.full_name if staff else "",
                branch_id=staff.branch_id if staff else None,
                branch_name=(staff.branch_name if staff else None) or UNKNOWN_BRANCH,
                loan_id=loan.id,
                loan_number=loan.loan_number,
                loan_type=loan.loan_type.value,
                installment_id=installment.id,
                installment_number=installment.installment_number,
                due_date=installment.due_date,
                amount=installment.total_amount,
                principal_component=installment.principal_component,
                interest_component=installment.interest_component,
                outstanding_balance=installment.running_balance
            ))

        rows.sort(key=lambda r: (r.staff_number, r.loan_number, r.installment_number))
        return rows

    def export_for_month(self, month: str) -> Dict[str, Any]:
        """
        Payroll deduction file for a month

        Returns:
            ``month``, ``export_date``, ``total_deductions``, ``staff_count``
            and the ``deductions`` rows
        """
        rows = self.deductions_for_month(month)
        return {
            "month": month,
            "export_date": datetime.now(timezone.utc),
            "total_deductions": sum((r.amount for r in rows), ZERO),
            "staff_count": len({r.staff_id for r in rows}),
            "deductions": rows
        }

    def process_payroll_deductions(self, month: str, payroll_reference: str) -> Dict[str, Any]:
        """
        Apply every deduction of the month's export as a payroll repayment

        Each row is recorded in its own unit of work against the installment
        it was exported for. A failing row is reported and the batch carries on.

        Returns:
            ``processed`` and ``failed`` counts plus one result per row
        """
        if not payroll_reference or not payroll_reference.strip():
            raise LoanValidationError("Payroll reference is required")

        rows = self.deductions_for_month(month)
        results = []
        processed = failed = 0

        for row in rows:
            result = {
                "loan_id": row.loan_id,
                "loan_number": row.loan_number,
                "installment_number": row.installment_number,
                "amount": row.amount,
                "success": True
            }
            try:
                self.repayment_recorder.record_payroll_deduction(
                    loan_id=row.loan_id,
                    amount=row.amount,
                    payroll_month=month,
                    payroll_reference=payroll_reference,
                    installment_id=row.installment_id
                )
                processed += 1
            except Exception as e:
                logger.warning(f"Payroll deduction for loan {row.loan_number} failed: {e}")
                result["success"] = False
                result["error"] = str(e)
                failed += 1
            results.append(result)

        self.audit_trail.log_event(
            event_type=AuditEventType.PAYROLL_BATCH_PROCESSED,
            entity_type="payroll",
            entity_id=month,
            metadata={
                "payroll_reference": payroll_reference,
                "processed": processed,
                "failed": failed
            }
        )
        logger.info(f"Payroll {month} ({payroll_reference}): {processed} processed, {failed} failed")

        if self.dispatcher:
            self.dispatcher.publish(EventPayload(
                event_type=DomainEvent.PAYROLL_PROCESSED,
                entity_type="payroll",
                entity_id=month,
                data={"payroll_reference": payroll_reference, "processed": processed, "failed": failed}
            ))

        return {"processed": processed, "failed": failed, "results": results}

    def summary_by_branch(self, month: str) -> List[Dict[str, Any]]:
        """Staff count, loan count and deduction total per branch for a month"""
        branches: Dict[str, Dict[str, Any]] = {}
        for row in self.deductions_for_month(month):
            branch = branches.setdefault(row.branch_name, {
                "branch_id": row.branch_id,
                "branch_name": row.branch_name,
                "staff_ids": set(),
                "loan_ids": set(),
                "total_deductions": ZERO
            })
            branch["staff_ids"].add(row.staff_id)
            branch["loan_ids"].add(row.loan_id)
            branch["total_deductions"] += row.amount

        return [
            {
                "branch_id": b["branch_id"],
                "branch_name": b["branch_name"],
                "staff_count": len(b["staff_ids"]),
                "loan_count": len(b["loan_ids"]),
                "total_deductions": b["total_deductions"]
            }
            for b in sorted(branches.values(), key=lambda b: b["branch_name"])
        ]

    def staff_deductions(self, staff_id: str, year: Optional[int] = None) -> List[Dict[str, Any]]:
        """A staff member's salary-deductible installments due in ``year``, by due date"""
        year = year or date.today().year
        loans = {
            loan.id: loan
            for loan in (Loan.from_dict(d) for d in self.storage.find(LOANS_TABLE, {'staff_id': staff_id}))
            if loan.deduct_from_salary
        }

        installments = sorted(
            (i for i in self.schedule_generator.all_installments()
             if i.loan_id in loans and i.due_date.year == year),
            key=lambda i: (i.due_date, loans[i.loan_id].loan_number)
        )
        return [
            {
                "month": i.due_date.strftime("%Y-%m"),
                "loan_number": loans[i.loan_id].loan_number,
                "loan_type": loans[i.loan_id].loan_type.value,
                "amount": i.total_amount,
                "status": i.status.value,
                "payment_date": i.payment_date
            }
            for i in installments
        ]
