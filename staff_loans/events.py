"""
Event System Module

Publish/subscribe dispatcher for domain events. The approval engine's
``approval.completed`` notifications arrive here and are routed to the
subscribed loan handler.
"""

from enum import Enum
from typing import Callable, Dict, List, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
import uuid
import logging
from threading import RLock


class DomainEvent(Enum):
    """Domain events that can occur in the staff loans engine"""

    # Inbound from the approval engine
    APPROVAL_COMPLETED = "approval.completed"

    # Loan events
    LOAN_APPLIED = "loan.applied"
    LOAN_CANCELLED = "loan.cancelled"
    LOAN_APPROVED = "loan.approved"
    LOAN_REJECTED = "loan.rejected"
    LOAN_DISBURSED = "loan.disbursed"
    LOAN_REPAYMENT = "loan.repayment"
    LOAN_COMPLETED = "loan.completed"

    # Payroll events
    PAYROLL_PROCESSED = "payroll.processed"


@dataclass
class EventPayload:
    """Payload for domain events"""
    event_type: DomainEvent
    entity_type: str
    entity_id: str
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'data': self.data,
            'timestamp': self.timestamp.isoformat(),
            'event_id': self.event_id
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EventPayload':
        """Create from dictionary"""
        return cls(
            event_type=DomainEvent(data['event_type']),
            entity_type=data['entity_type'],
            entity_id=data['entity_id'],
            data=data['data'],
            timestamp=datetime.fromisoformat(data['timestamp']) if isinstance(data['timestamp'], str) else data['timestamp'],
            event_id=data['event_id']
        )


class EventDispatcher:
    """Central event dispatcher - publish/subscribe pattern"""

    def __init__(self):
        self._handlers: Dict[DomainEvent, List[Callable]] = {}
        self._lock = RLock()
        self.logger = logging.getLogger("staff_loans.events")

    def subscribe(self, event_type: DomainEvent, handler: Callable) -> None:
        """Subscribe to a specific event type"""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
            self.logger.debug(f"Subscribed handler {getattr(handler, '__name__', repr(handler))} to {event_type.value}")

    def unsubscribe(self, event_type: DomainEvent, handler: Callable) -> None:
        """Unsubscribe from a specific event type"""
        with self._lock:
            try:
                self._handlers.get(event_type, []).remove(handler)
            except ValueError:
                self.logger.warning(f"Handler {getattr(handler, '__name__', repr(handler))} was not subscribed to {event_type.value}")

    def publish(self, event: EventPayload, raise_errors: bool = False) -> None:
        """
        Publish event to all subscribers

        A failing handler is logged and does not stop the other handlers.
        With ``raise_errors`` the first handler error is re-raised to the
        publisher once every handler has run; otherwise it is swallowed.
        """
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, []))

        self.logger.debug(f"Publishing event {event.event_type.value} for {event.entity_type}:{event.entity_id}")
        first_error: Optional[Exception] = None
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                self.logger.error(
                    f"Error in event handler {getattr(handler, '__name__', repr(handler))} "
                    f"for {event.event_type.value}: {e}"
                )
                if first_error is None:
                    first_error = e

        if raise_errors and first_error is not None:
            raise first_error

    def get_handler_count(self, event_type: Optional[DomainEvent] = None) -> int:
        """Get count of handlers for a specific event type or all"""
        with self._lock:
            if event_type:
                return len(self._handlers.get(event_type, []))
            return sum(len(handlers) for handlers in self._handlers.values())

    def clear(self) -> None:
        """Clear all handlers"""
        with self._lock:
            self._handlers.clear()


def create_loan_event(event_type: DomainEvent, loan) -> EventPayload:
    """Create a loan-related event"""
    return EventPayload(
        event_type=event_type,
        entity_type="staff_loan",
        entity_id=loan.id,
        data={
            "loan_number": loan.loan_number,
            "staff_id": loan.staff_id,
            "loan_type": loan.loan_type.value,
            "status": loan.status.value,
            "principal": str(loan.principal),
            "total_paid": str(loan.total_paid),
            "outstanding_balance": str(loan.outstanding_balance)
        }
    )
