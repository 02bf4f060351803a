"""
Tests for the event dispatcher
"""

import pytest
from datetime import datetime
from decimal import Decimal
from unittest.mock import Mock

from staff_loans.events import DomainEvent, EventPayload, EventDispatcher, create_loan_event


def payload(event_type=DomainEvent.LOAN_APPROVED, entity_id="loan-1"):
    return EventPayload(
        event_type=event_type,
        entity_type="staff_loan",
        entity_id=entity_id,
        data={"status": "approved"}
    )


class TestEventPayload:

    def test_defaults(self):
        event = payload()
        assert isinstance(event.timestamp, datetime)
        assert event.event_id

    def test_dict_round_trip(self):
        original = payload(DomainEvent.APPROVAL_COMPLETED)
        restored = EventPayload.from_dict(original.to_dict())

        assert restored == original
        assert original.to_dict()["event_type"] == "approval.completed"


class TestEventDispatcher:

    def setup_method(self):
        self.dispatcher = EventDispatcher()

    def test_publish_reaches_subscribers_of_that_type_only(self):
        approved = Mock()
        rejected = Mock()
        self.dispatcher.subscribe(DomainEvent.LOAN_APPROVED, approved)
        self.dispatcher.subscribe(DomainEvent.LOAN_REJECTED, rejected)

        event = payload()
        self.dispatcher.publish(event)

        approved.assert_called_once_with(event)
        rejected.assert_not_called()

    def test_failing_handler_does_not_stop_others(self):
        failing = Mock(side_effect=RuntimeError("handler broke"))
        failing.__name__ = "failing"
        healthy = Mock()
        self.dispatcher.subscribe(DomainEvent.LOAN_APPROVED, failing)
        self.dispatcher.subscribe(DomainEvent.LOAN_APPROVED, healthy)

        self.dispatcher.publish(payload())

        healthy.assert_called_once()

    def test_raise_errors_reraises_after_all_handlers_ran(self):
        failing = Mock(side_effect=RuntimeError("database is locked"))
        failing.__name__ = "failing"
        healthy = Mock()
        self.dispatcher.subscribe(DomainEvent.APPROVAL_COMPLETED, failing)
        self.dispatcher.subscribe(DomainEvent.APPROVAL_COMPLETED, healthy)

        with pytest.raises(RuntimeError, match="database is locked"):
            self.dispatcher.publish(payload(DomainEvent.APPROVAL_COMPLETED), raise_errors=True)

        healthy.assert_called_once()

    def test_unsubscribe(self):
        handler = Mock()
        self.dispatcher.subscribe(DomainEvent.LOAN_APPROVED, handler)
        self.dispatcher.unsubscribe(DomainEvent.LOAN_APPROVED, handler)

        self.dispatcher.publish(payload())

        handler.assert_not_called()
        assert self.dispatcher.get_handler_count(DomainEvent.LOAN_APPROVED) == 0

    def test_unsubscribe_unknown_handler_is_harmless(self):
        self.dispatcher.unsubscribe(DomainEvent.LOAN_APPROVED, Mock())

    def test_handler_counts_and_clear(self):
        self.dispatcher.subscribe(DomainEvent.LOAN_APPROVED, Mock())
        self.dispatcher.subscribe(DomainEvent.LOAN_REJECTED, Mock())

        assert self.dispatcher.get_handler_count() == 2
        self.dispatcher.clear()
        assert self.dispatcher.get_handler_count() == 0

    def test_handler_may_subscribe_during_publish(self):
        late = Mock()

        def subscribe_more(event):
            self.dispatcher.subscribe(DomainEvent.LOAN_APPROVED, late)

        self.dispatcher.subscribe(DomainEvent.LOAN_APPROVED, subscribe_more)
        self.dispatcher.publish(payload())

        late.assert_not_called()
        self.dispatcher.publish(payload())
        late.assert_called_once()


class TestLoanEvent:

    def test_create_loan_event(self, system, staff):
        loan = system.apply_for_loan(
            "staff-alice", loan_type="staff_loan", principal="5000", term_months=5
        )

        event = create_loan_event(DomainEvent.LOAN_APPLIED, loan)

        assert event.entity_type == "staff_loan"
        assert event.entity_id == loan.id
        assert event.data["loan_number"] == loan.loan_number
        assert event.data["status"] == "pending"
        assert Decimal(event.data["outstanding_balance"]) == loan.total_payable
