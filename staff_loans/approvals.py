"""
Approval Bridge Module

Connects loan applications to the external approval workflow engine.

Outbound, the bridge asks the engine to start (or cancel) an approval
instance for a loan. These calls are best-effort: a failure is logged and
reported back as "no instance", never raised into the caller's committed
work.

Inbound, the engine announces decisions as ``approval.completed`` events on
the event dispatcher. The bridge turns them into ``ApprovalCompletedEvent``
objects and hands the ``staff_loan`` ones to the registered handler.
"""

import httpx
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .config import StaffLoansConfig, get_config
from .events import DomainEvent, EventDispatcher, EventPayload
from .exceptions import ApprovalEngineError
from .storage import StorageInterface

logger = logging.getLogger("staff_loans.approvals")

LOAN_TARGET_TYPE = "staff_loan"


@dataclass
class ApprovalCompletedEvent:
    """Decision notification from the approval engine"""
    target_type: str
    target_id: str
    status: str  # approved or rejected
    approver_id: Optional[str] = None
    comment: Optional[str] = None
    instance_id: Optional[str] = None

    def to_payload(self) -> EventPayload:
        return EventPayload(
            event_type=DomainEvent.APPROVAL_COMPLETED,
            entity_type=self.target_type,
            entity_id=self.target_id,
            data={
                "target_type": self.target_type,
                "target_id": self.target_id,
                "status": self.status,
                "approver_id": self.approver_id,
                "comment": self.comment,
                "instance_id": self.instance_id
            }
        )

    @classmethod
    def from_payload(cls, payload: EventPayload) -> 'ApprovalCompletedEvent':
        data = payload.data
        return cls(
            target_type=data.get("target_type", payload.entity_type),
            target_id=data.get("target_id", payload.entity_id),
            status=data.get("status", ""),
            approver_id=data.get("approver_id"),
            comment=data.get("comment"),
            instance_id=data.get("instance_id")
        )


class ApprovalEngine(ABC):
    """Interface onto the approval workflow engine"""

    @abstractmethod
    def initiate_approval(
        self,
        target_type: str,
        target_id: str,
        flow_code: str,
        initiator_id: str,
        is_urgent: bool = False
    ) -> Dict[str, Any]:
        """Start an approval instance; the result carries its ``id``"""
        pass

    @abstractmethod
    def cancel_approval(self, instance_id: str) -> None:
        """Cancel a running approval instance"""
        pass


class HttpApprovalEngineClient(ApprovalEngine):
    """REST client for a remote approval engine"""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        api_key: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.api_key = api_key
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def _headers(self) -> Dict[str, str]:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def initiate_approval(
        self,
        target_type: str,
        target_id: str,
        flow_code: str,
        initiator_id: str,
        is_urgent: bool = False
    ) -> Dict[str, Any]:
        try:
            response = self._client.post(
                f"{self.base_url}/approvals/instances",
                json={
                    "target_type": target_type,
                    "target_id": target_id,
                    "flow_code": flow_code,
                    "initiator_id": initiator_id,
                    "is_urgent": is_urgent
                },
                headers=self._headers()
            )
        except httpx.HTTPError as e:
            raise ApprovalEngineError(f"Approval engine unreachable: {e}") from e

        if response.status_code not in (200, 201):
            raise ApprovalEngineError(
                f"Approval engine returned {response.status_code}: {response.text}"
            )

        data = response.json()
        if not data.get("id"):
            raise ApprovalEngineError("Approval engine response has no instance id")
        return data

    def cancel_approval(self, instance_id: str) -> None:
        try:
            response = self._client.post(
                f"{self.base_url}/approvals/instances/{instance_id}/cancel",
                headers=self._headers()
            )
        except httpx.HTTPError as e:
            raise ApprovalEngineError(f"Approval engine unreachable: {e}") from e

        if response.status_code not in (200, 204):
            raise ApprovalEngineError(
                f"Approval engine returned {response.status_code}: {response.text}"
            )

    def health_check(self) -> bool:
        """Check if the approval engine is reachable"""
        try:
            return self._client.get(f"{self.base_url}/health").status_code == 200
        except httpx.HTTPError:
            return False

    def close(self):
        """Close the HTTP client"""
        self._client.close()


class InMemoryApprovalEngine(ApprovalEngine):
    """
    Approval engine kept in local storage

    Instances wait in ``pending`` until ``decide()`` is called, which
    publishes ``approval.completed`` on the dispatcher just as a remote
    engine's webhook would.
    """

    def __init__(self, storage: StorageInterface, dispatcher: EventDispatcher):
        self.storage = storage
        self.dispatcher = dispatcher
        self.table_name = "approval_instances"

    def initiate_approval(
        self,
        target_type: str,
        target_id: str,
        flow_code: str,
        initiator_id: str,
        is_urgent: bool = False
    ) -> Dict[str, Any]:
        instance = {
            "id": str(uuid.uuid4()),
            "target_type": target_type,
            "target_id": target_id,
            "flow_code": flow_code,
            "initiator_id": initiator_id,
            "is_urgent": is_urgent,
            "status": "pending",
            "created_at": datetime.now(timezone.utc).isoformat()
        }
        self.storage.save(self.table_name, instance["id"], instance)
        return instance

    def cancel_approval(self, instance_id: str) -> None:
        instance = self.get_instance(instance_id)
        if instance["status"] != "pending":
            raise ApprovalEngineError(f"Approval {instance_id} is already {instance['status']}")
        instance["status"] = "cancelled"
        self.storage.save(self.table_name, instance_id, instance)

    def decide(
        self,
        instance_id: str,
        status: str,
        approver_id: str,
        comment: Optional[str] = None
    ) -> ApprovalCompletedEvent:
        """
        Complete a pending instance and announce the decision

        Raises:
            ApprovalEngineError: If the instance is unknown or not pending,
                or the status is not approved/rejected
        """
        if status not in ("approved", "rejected"):
            raise ApprovalEngineError(f"Unsupported decision: {status}")

        instance = self.get_instance(instance_id)
        if instance["status"] != "pending":
            raise ApprovalEngineError(f"Approval {instance_id} is already {instance['status']}")

        event = ApprovalCompletedEvent(
            target_type=instance["target_type"],
            target_id=instance["target_id"],
            status=status,
            approver_id=approver_id,
            comment=comment,
            instance_id=instance_id
        )
        # Instance stays pending until the decision was applied, so it can be retried
        self.dispatcher.publish(event.to_payload(), raise_errors=True)

        instance["status"] = status
        instance["approver_id"] = approver_id
        instance["comment"] = comment
        self.storage.save(self.table_name, instance_id, instance)
        return event

    def get_instance(self, instance_id: str) -> Dict[str, Any]:
        instance = self.storage.load(self.table_name, instance_id)
        if not instance:
            raise ApprovalEngineError(f"Approval {instance_id} not found")
        return instance

    def list_instances(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        filters = {"status": status} if status else {}
        return self.storage.find(self.table_name, filters)


class ApprovalBridge:
    """Loan-facing adapter over an ApprovalEngine and the event dispatcher"""

    def __init__(
        self,
        engine: ApprovalEngine,
        dispatcher: EventDispatcher,
        settings: Optional[StaffLoansConfig] = None
    ):
        self.engine = engine
        self.dispatcher = dispatcher
        self.settings = settings or get_config()
        self._subscriptions: List[Callable[[EventPayload], None]] = []

    def flow_code_for(self, loan_type: str) -> str:
        if loan_type == "salary_advance":
            return self.settings.salary_advance_flow_code
        return self.settings.staff_loan_flow_code

    def initiate_for_loan(self, loan) -> Optional[str]:
        """
        Register a loan with the approval engine

        Returns:
            The approval instance id, or None when the engine call failed
        """
        try:
            instance = self.engine.initiate_approval(
                target_type=LOAN_TARGET_TYPE,
                target_id=loan.id,
                flow_code=self.flow_code_for(loan.loan_type.value),
                initiator_id=loan.staff_id,
                is_urgent=loan.is_urgent
            )
            return instance["id"]
        except Exception as e:
            logger.warning(f"Could not initiate approval for loan {loan.loan_number}: {e}")
            return None

    def cancel_for_loan(self, loan) -> bool:
        """Cancel the loan's approval instance, if any; False when that failed"""
        if not loan.approval_instance_id:
            return True
        try:
            self.engine.cancel_approval(loan.approval_instance_id)
            return True
        except Exception as e:
            logger.warning(f"Could not cancel approval for loan {loan.loan_number}: {e}")
            return False

    def listen(self, handler: Callable[[ApprovalCompletedEvent], Any]) -> None:
        """Route ``staff_loan`` approval decisions to ``handler``"""
        def on_completed(payload: EventPayload) -> None:
            event = ApprovalCompletedEvent.from_payload(payload)
            if event.target_type != LOAN_TARGET_TYPE:
                return
            handler(event)

        self._subscriptions.append(on_completed)
        self.dispatcher.subscribe(DomainEvent.APPROVAL_COMPLETED, on_completed)

    def stop_listening(self) -> None:
        for subscription in self._subscriptions:
            self.dispatcher.unsubscribe(DomainEvent.APPROVAL_COMPLETED, subscription)
        self._subscriptions.clear()

    def publish_completed(self, event: ApprovalCompletedEvent) -> None:
        """
        Deliver an inbound decision (e.g. from the webhook) to subscribers

        Raises:
            Whatever the loan handler raised, so the sender can redeliver
        """
        self.dispatcher.publish(event.to_payload(), raise_errors=True)
