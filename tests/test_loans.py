"""
Test suite for the loan lifecycle

Covers application guards, pricing, approval decisions, cancellation,
disbursement, default/write-off and the loan queries.
"""

import pytest
import re
from decimal import Decimal
from datetime import date
from unittest.mock import Mock, patch

from staff_loans.loans import Loan, LoanStatus, LoanType, LoanManager, LOANS_TABLE
from staff_loans.audit import AuditEventType
from staff_loans.approvals import ApprovalCompletedEvent
from staff_loans.exceptions import (
    LoanValidationError, LoanNotFoundError, LoanConflictError, LoanForbiddenError,
    ApprovalEngineError
)


def apply(system, staff_id="staff-alice", **params):
    params.setdefault("loan_type", "staff_loan")
    params.setdefault("principal", "12000")
    params.setdefault("term_months", 12)
    return system.apply_for_loan(staff_id, **params)


class TestApplyForLoan:

    def test_application_is_pending_and_priced(self, system, staff):
        loan = apply(system, interest_rate="10", purpose="School fees")

        assert loan.status == LoanStatus.PENDING
        assert loan.principal == Decimal('12000.00')
        assert loan.total_interest == Decimal('1200.00')
        assert loan.total_payable == Decimal('13200.00')
        assert loan.outstanding_balance == Decimal('13200.00')
        assert loan.total_paid == Decimal('0.00')
        assert loan.currency == "KES"
        assert loan.application_date == date.today()
        assert loan.created_by == "staff-alice"
        assert loan.purpose == "School fees"
        assert loan.deduct_from_salary is True
        assert loan.max_salary_deduction_percent == Decimal('33')

    def test_interest_free_salary_advance(self, system, staff):
        loan = apply(system, loan_type="salary_advance", principal="12000", term_months=12)

        assert loan.interest_rate == Decimal('0')
        assert loan.monthly_installment == Decimal('1000.00')
        assert loan.total_interest == Decimal('0.00')
        assert loan.total_payable == Decimal('12000.00')

    def test_type_default_interest_rate(self, system, staff):
        loan = apply(system, loan_type="emergency_loan")

        assert loan.interest_rate == Decimal('12')
        assert loan.total_interest == Decimal('1440.00')
        assert loan.monthly_installment == Decimal('1066.19')

    def test_explicit_zero_rate_is_honoured(self, system, staff):
        loan = apply(system, interest_rate="0")

        assert loan.interest_rate == Decimal('0')
        assert loan.total_payable == Decimal('12000.00')

    @pytest.mark.parametrize("loan_type,prefix", [
        (LoanType.SALARY_ADVANCE, "ADV"),
        (LoanType.STAFF_LOAN, "LN"),
        (LoanType.EMERGENCY_LOAN, "EMG"),
    ])
    def test_loan_number_format(self, system, staff, loan_type, prefix):
        loan = apply(system, loan_type=loan_type)

        assert re.match(rf"^{prefix}-{date.today().year}-\d{{5}}$", loan.loan_number)

    def test_loan_number_collision_is_retried(self, system, staff):
        with patch("staff_loans.loans.random.randint", side_effect=[7, 7, 8]):
            first = apply(system, loan_type="emergency_loan")
            second = apply(system, "staff-bob", loan_type="emergency_loan")

        assert first.loan_number.endswith("-00007")
        assert second.loan_number.endswith("-00008")

    def test_application_is_registered_for_approval(self, system, staff):
        loan = apply(system, is_urgent=True)

        assert loan.approval_instance_id
        instance = system.approval_engine.get_instance(loan.approval_instance_id)
        assert instance["target_type"] == "staff_loan"
        assert instance["target_id"] == loan.id
        assert instance["flow_code"] == "STAFF_LOAN_DEFAULT"
        assert instance["initiator_id"] == "staff-alice"
        assert instance["is_urgent"] is True

    def test_salary_advance_uses_its_own_flow(self, system, staff):
        loan = apply(system, loan_type="salary_advance")

        instance = system.approval_engine.get_instance(loan.approval_instance_id)
        assert instance["flow_code"] == "SALARY_ADVANCE_DEFAULT"

    def test_application_is_audited(self, system, staff):
        loan = apply(system)

        events = system.audit_trail.get_events_for_entity("loan", loan.id)
        assert [e.event_type for e in events] == [
            AuditEventType.LOAN_APPLIED, AuditEventType.APPROVAL_INITIATED
        ]


class TestApplicationGuards:

    @pytest.mark.parametrize("params", [
        {"principal": "0"},
        {"principal": "-500"},
        {"principal": "lots"},
        {"term_months": 0},
        {"term_months": 61},
        {"interest_rate": "101"},
        {"interest_rate": "-1"},
        {"max_salary_deduction_percent": "0"},
        {"max_salary_deduction_percent": "51"},
        {"loan_type": "car_loan"},
    ])
    def test_invalid_input_is_rejected(self, system, staff, params):
        with pytest.raises(LoanValidationError):
            apply(system, **params)

        assert system.storage.count(LOANS_TABLE) == 0

    def test_boundary_values_are_accepted(self, system, staff):
        loan = apply(system, term_months=60, interest_rate="100", max_salary_deduction_percent="50")

        assert loan.term_months == 60

    def test_unknown_staff(self, system, staff):
        with pytest.raises(LoanNotFoundError):
            apply(system, "staff-nobody")

    def test_inactive_staff_cannot_apply(self, system, staff):
        system.staff_directory.register("EMP009", "Eve Achieng", "BR1", "Nairobi",
                                        staff_id="staff-eve", is_active=False)

        with pytest.raises(LoanForbiddenError, match="not active"):
            apply(system, "staff-eve")

        assert system.storage.count(LOANS_TABLE) == 0

    def test_own_guarantor_is_rejected(self, system, staff):
        with pytest.raises(LoanValidationError, match="own guarantor"):
            apply(system, guarantor_id="staff-alice")

    def test_unknown_guarantor_is_rejected(self, system, staff):
        with pytest.raises(LoanValidationError, match="Guarantor not found"):
            apply(system, guarantor_id="staff-ghost")

        assert system.storage.count(LOANS_TABLE) == 0

    def test_guarantor_recorded(self, system, staff):
        loan = apply(system, guarantor_id="staff-bob")
        assert loan.guarantor_id == "staff-bob"

    def test_second_open_staff_loan_is_rejected(self, system, staff):
        apply(system)

        with pytest.raises(LoanConflictError, match="active or pending staff loan"):
            apply(system)

        assert len(system.find_by_staff("staff-alice")) == 1

    def test_staff_loan_allowed_after_previous_was_rejected(self, system, staff):
        first = apply(system)
        system.approval_engine.decide(first.approval_instance_id, "rejected", "manager-1", "No")

        second = apply(system)

        assert second.status == LoanStatus.PENDING

    def test_one_salary_advance_per_month(self, system, staff):
        apply(system, loan_type="salary_advance", principal="5000", term_months=1,
              application_date=date(2025, 3, 2))

        with pytest.raises(LoanConflictError, match="one salary advance per month"):
            apply(system, loan_type="salary_advance", principal="3000", term_months=1,
                  application_date=date(2025, 3, 28))

    def test_salary_advance_in_another_month_is_allowed(self, system, staff):
        apply(system, loan_type="salary_advance", principal="5000", term_months=1,
              application_date=date(2025, 3, 2))

        loan = apply(system, loan_type="salary_advance", principal="5000", term_months=1,
                     application_date=date(2025, 4, 2))

        assert loan.status == LoanStatus.PENDING

    def test_cancelled_salary_advance_does_not_count(self, system, staff):
        first = apply(system, loan_type="salary_advance", principal="5000", term_months=1,
                      application_date=date(2025, 3, 2))
        system.cancel_loan(first.id, "staff-alice")

        second = apply(system, loan_type="salary_advance", principal="5000", term_months=1,
                       application_date=date(2025, 3, 9))

        assert second.status == LoanStatus.PENDING

    def test_different_loan_types_coexist(self, system, staff):
        apply(system, loan_type="staff_loan")
        apply(system, loan_type="salary_advance", principal="5000", term_months=1)
        apply(system, loan_type="emergency_loan", principal="8000", term_months=6)

        assert len(system.find_by_staff("staff-alice")) == 3


class TestApprovalEngineFailure:

    def test_failed_registration_leaves_loan_pending(self, system, staff):
        system.approval_engine = Mock()
        system.approval_bridge.engine = system.approval_engine
        system.approval_engine.initiate_approval.side_effect = ApprovalEngineError("engine down")

        loan = apply(system)

        assert loan.status == LoanStatus.PENDING
        assert loan.approval_instance_id is None
        stored = system.find_by_id(loan.id)
        assert stored.approval_instance_id is None
        events = system.audit_trail.get_events_for_entity("loan", loan.id)
        assert events[-1].event_type == AuditEventType.APPROVAL_LINK_FAILED

    def test_unexpected_engine_error_is_also_contained(self, system, staff):
        system.approval_bridge.engine = Mock()
        system.approval_bridge.engine.initiate_approval.side_effect = KeyError("id")

        loan = apply(system)

        assert system.find_by_id(loan.id).status == LoanStatus.PENDING


class TestCancelLoan:

    def test_owner_cancels_pending_loan(self, system, staff):
        loan = apply(system)

        cancelled = system.cancel_loan(loan.id, "staff-alice")

        assert cancelled.status == LoanStatus.CANCELLED
        assert system.find_by_id(loan.id).status == LoanStatus.CANCELLED
        instance = system.approval_engine.get_instance(loan.approval_instance_id)
        assert instance["status"] == "cancelled"

    def test_other_staff_cannot_cancel(self, system, staff):
        loan = apply(system)

        with pytest.raises(LoanForbiddenError):
            system.cancel_loan(loan.id, "staff-bob")

        assert system.find_by_id(loan.id).status == LoanStatus.PENDING

    def test_approved_loan_cannot_be_cancelled(self, system, staff, approve):
        loan = approve(apply(system))

        with pytest.raises(LoanConflictError):
            system.cancel_loan(loan.id, "staff-alice")

    def test_unknown_loan(self, system, staff):
        with pytest.raises(LoanNotFoundError):
            system.cancel_loan("missing", "staff-alice")

    def test_engine_cancel_failure_keeps_cancellation(self, system, staff):
        loan = apply(system)
        system.approval_bridge.engine = Mock()
        system.approval_bridge.engine.cancel_approval.side_effect = ApprovalEngineError("down")

        cancelled = system.cancel_loan(loan.id, "staff-alice")

        assert cancelled.status == LoanStatus.CANCELLED


class TestApprovalDecision:

    def test_approval(self, system, staff):
        loan = apply(system)

        system.approval_engine.decide(loan.approval_instance_id, "approved", "manager-1", "Looks fine")

        approved = system.find_by_id(loan.id)
        assert approved.status == LoanStatus.APPROVED
        assert approved.approval_date == date.today()
        assert approved.approved_by == "manager-1"
        assert approved.approval_comment == "Looks fine"

    def test_rejection(self, system, staff):
        loan = apply(system)

        system.approval_engine.decide(loan.approval_instance_id, "rejected", "manager-1", "Too high")

        rejected = system.find_by_id(loan.id)
        assert rejected.status == LoanStatus.REJECTED
        assert rejected.rejected_by == "manager-1"
        assert rejected.rejection_reason == "Too high"

    def test_duplicate_delivery_is_ignored(self, system, staff):
        loan = apply(system)
        event = ApprovalCompletedEvent("staff_loan", loan.id, "approved", "manager-1")

        assert system.loan_manager.on_approval_completed(event) is not None
        assert system.loan_manager.on_approval_completed(event) is None

        late_rejection = ApprovalCompletedEvent("staff_loan", loan.id, "rejected", "manager-2")
        assert system.loan_manager.on_approval_completed(late_rejection) is None
        assert system.find_by_id(loan.id).status == LoanStatus.APPROVED

    def test_other_target_types_are_ignored(self, system, staff):
        loan = apply(system)

        result = system.loan_manager.on_approval_completed(
            ApprovalCompletedEvent("leave_request", loan.id, "approved", "manager-1")
        )

        assert result is None
        assert system.find_by_id(loan.id).status == LoanStatus.PENDING

    def test_unknown_loan_is_ignored(self, system, staff):
        result = system.loan_manager.on_approval_completed(
            ApprovalCompletedEvent("staff_loan", "missing", "approved", "manager-1")
        )
        assert result is None
        assert len(system.loan_locks) == 0

    def test_unknown_decision_is_ignored(self, system, staff):
        loan = apply(system)

        result = system.loan_manager.on_approval_completed(
            ApprovalCompletedEvent("staff_loan", loan.id, "escalated", "manager-1")
        )

        assert result is None
        assert system.find_by_id(loan.id).status == LoanStatus.PENDING

    def test_decision_arrives_through_dispatcher(self, system, staff):
        loan = apply(system)

        system.approval_bridge.publish_completed(
            ApprovalCompletedEvent("staff_loan", loan.id, "approved", "manager-1")
        )

        assert system.find_by_id(loan.id).status == LoanStatus.APPROVED


class TestDisburseLoan:

    def test_disbursement_activates_loan_with_schedule(self, system, staff, approve):
        loan = approve(apply(system, interest_rate="10"))

        disbursed = system.disburse_loan(loan.id, "finance-1", "TRX-001", "bank_transfer",
                                         date(2025, 1, 25))

        assert disbursed.status == LoanStatus.ACTIVE
        assert disbursed.disbursement_date == date.today()
        assert disbursed.disbursed_by == "finance-1"
        assert disbursed.disbursement_reference == "TRX-001"
        assert disbursed.disbursement_method == "bank_transfer"
        assert disbursed.first_repayment_date == date(2025, 1, 25)
        assert disbursed.maturity_date == date(2026, 1, 25)
        assert len(system.get_schedule(loan.id)) == 12

    def test_default_first_repayment_is_next_payroll_day(self, system, staff, approve):
        loan = approve(apply(system))

        disbursed = system.disburse_loan(loan.id, "finance-1", "TRX-001", "bank_transfer")

        assert disbursed.first_repayment_date == system.schedule_generator.next_payroll_date(date.today())
        assert disbursed.first_repayment_date.day == 25

    def test_pending_loan_cannot_be_disbursed(self, system, staff):
        loan = apply(system)

        with pytest.raises(LoanConflictError, match="Only approved"):
            system.disburse_loan(loan.id, "finance-1", "TRX-001", "bank_transfer")

        assert system.get_schedule(loan.id) == []

    def test_disbursement_rolls_back_when_schedule_fails(self, system, staff, approve):
        loan = approve(apply(system))

        with patch.object(system.schedule_generator, "generate", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                system.disburse_loan(loan.id, "finance-1", "TRX-001", "bank_transfer")

        stored = system.find_by_id(loan.id)
        assert stored.status == LoanStatus.APPROVED
        assert stored.disbursement_date is None

    def test_disbursing_twice_is_rejected(self, system, staff, active_loan):
        loan = active_loan()

        with pytest.raises(LoanConflictError):
            system.disburse_loan(loan.id, "finance-1", "TRX-002", "bank_transfer")


class TestDefaultAndWriteOff:

    def test_default_then_write_off(self, system, staff, active_loan):
        loan = active_loan()

        defaulted = system.mark_defaulted(loan.id, "finance-1", "Left the company")
        assert defaulted.status == LoanStatus.DEFAULTED
        assert defaulted.closure_reason == "Left the company"

        written_off = system.write_off(loan.id, "finance-1", "Uncollectable")
        assert written_off.status == LoanStatus.WRITTEN_OFF

    def test_pending_loan_cannot_default(self, system, staff):
        loan = apply(system)

        with pytest.raises(LoanConflictError):
            system.mark_defaulted(loan.id, "finance-1", "No reason")

    def test_reason_required(self, system, staff, active_loan):
        loan = active_loan()

        with pytest.raises(LoanValidationError):
            system.write_off(loan.id, "finance-1", "  ")


class TestLoanRecord:

    def test_outstanding_defaults_to_payable_minus_paid(self):
        loan = _loan(total_payable=Decimal('1000.00'), total_paid=Decimal('250.00'))
        assert loan.outstanding_balance == Decimal('750.00')

    def test_apply_payment_completes_and_clamps(self):
        loan = _loan(total_payable=Decimal('1000.00'), total_paid=Decimal('900.00'))

        assert loan.apply_payment(Decimal('150.00')) is True
        assert loan.status == LoanStatus.COMPLETED
        assert loan.outstanding_balance == Decimal('0.00')
        assert loan.total_paid == Decimal('1050.00')

    def test_repayment_progress(self):
        loan = _loan(total_payable=Decimal('1000.00'), total_paid=Decimal('250.00'))
        assert loan.repayment_progress == Decimal('25.00')

    def test_dict_round_trip(self):
        loan = _loan(total_payable=Decimal('1000.00'), total_paid=Decimal('0.00'))
        assert Loan.from_dict(loan.to_dict()) == loan


def _loan(total_payable, total_paid):
    from datetime import datetime, timezone
    now = datetime.now(timezone.utc)
    return Loan(
        id="loan-1", created_at=now, updated_at=now,
        loan_number="LN-2025-00001", staff_id="staff-alice",
        loan_type=LoanType.STAFF_LOAN, principal=total_payable,
        interest_rate=Decimal('0'), term_months=4, total_interest=Decimal('0.00'),
        total_payable=total_payable, monthly_installment=Decimal('250.00'),
        application_date=date(2025, 1, 10), status=LoanStatus.ACTIVE,
        total_paid=total_paid
    )


class TestQueries:

    def test_find_by_id_unknown(self, system):
        with pytest.raises(LoanNotFoundError):
            system.find_by_id("missing")

    def test_find_by_staff_newest_first_with_status_filter(self, system, staff):
        first = apply(system, loan_type="staff_loan")
        second = apply(system, loan_type="emergency_loan")
        system.cancel_loan(first.id, "staff-alice")

        assert [l.id for l in system.find_by_staff("staff-alice")] == [second.id, first.id]
        assert [l.id for l in system.find_by_staff("staff-alice", LoanStatus.CANCELLED)] == [first.id]

    def test_find_all_filters(self, system, staff):
        alice = apply(system, "staff-alice")
        bob = apply(system, "staff-bob", loan_type="emergency_loan")
        carol = apply(system, "staff-carol")

        assert {l.id for l in system.find_all(branch_id="BR1")} == {alice.id, carol.id}
        assert [l.id for l in system.find_all(loan_type=LoanType.EMERGENCY_LOAN)] == [bob.id]
        assert [l.id for l in system.find_all(staff_id="staff-bob")] == [bob.id]
        assert len(system.find_all(status=LoanStatus.PENDING)) == 3

    def test_pending_approval_urgent_first_then_oldest(self, system, staff):
        older = apply(system, "staff-alice", application_date=date(2025, 1, 5))
        newer = apply(system, "staff-bob", application_date=date(2025, 1, 9))
        urgent = apply(system, "staff-carol", is_urgent=True, application_date=date(2025, 1, 12))

        assert [l.id for l in system.find_pending_approval()] == [urgent.id, older.id, newer.id]

    def test_find_overdue(self, system, staff, active_loan):
        overdue = active_loan("staff-alice", first_repayment_date=date(2025, 1, 25))
        active_loan("staff-bob", first_repayment_date=date(2025, 6, 25))

        result = system.find_overdue(as_of=date(2025, 3, 1))

        assert [l.id for l in result] == [overdue.id]

    def test_get_stats(self, system, staff, active_loan):
        year = date.today().year
        active_loan("staff-alice")
        pending = apply(system, "staff-bob", loan_type="emergency_loan", principal="8000",
                        term_months=6)
        rejected = apply(system, "staff-carol", principal="3000", term_months=3)
        system.approval_engine.decide(rejected.approval_instance_id, "rejected", "manager-1", "No")

        stats = system.get_stats(year=year)

        assert stats["total"] == 3
        assert stats["pending"] == 1
        assert stats["active"] == 1
        assert stats["completed"] == 0
        assert stats["total_disbursed"] == Decimal('12000.00')
        assert stats["total_outstanding"] == Decimal('13200.00') + pending.total_payable + rejected.total_payable
        assert stats["total_repaid"] == Decimal('0.00')
        by_type = {entry["type"]: entry for entry in stats["by_type"]}
        assert by_type["staff_loan"]["count"] == 2
        assert by_type["staff_loan"]["amount"] == Decimal('15000.00')
        assert by_type["emergency_loan"]["count"] == 1

    def test_get_stats_for_staff_and_other_year(self, system, staff, active_loan):
        active_loan("staff-alice")

        assert system.get_stats(staff_id="staff-bob")["total"] == 0
        assert system.get_stats(year=1999)["total"] == 0
