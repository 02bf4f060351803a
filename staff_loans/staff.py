"""
Staff Directory Module

Read access to the staff directory: identity, employee number and branch
of a staff member. Loans only ever read staff records through the
``StaffDirectory`` interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional
import uuid

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType


@dataclass
class StaffMember(StorageRecord):
    """Staff member as seen by the loans engine"""
    employee_number: str
    full_name: str
    branch_id: Optional[str] = None
    branch_name: Optional[str] = None
    is_active: bool = True


class StaffDirectory(ABC):
    """Lookup interface onto the HR staff directory"""

    @abstractmethod
    def get_staff(self, staff_id: str) -> Optional[StaffMember]:
        """Return the staff member, or None when unknown"""
        pass


class StorageStaffDirectory(StaffDirectory):
    """
    Staff directory kept in the engine's own storage (table ``staff``)
    """

    def __init__(self, storage: StorageInterface, audit_trail: Optional[AuditTrail] = None):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "staff"

    def register(
        self,
        employee_number: str,
        full_name: str,
        branch_id: Optional[str] = None,
        branch_name: Optional[str] = None,
        staff_id: Optional[str] = None,
        is_active: bool = True
    ) -> StaffMember:
        """
        Add or replace a staff record

        Raises:
            ValueError: If employee number or name is blank, or the employee
                number already belongs to another staff member
        """
        if not employee_number or not employee_number.strip():
            raise ValueError("Employee number is required")
        if not full_name or not full_name.strip():
            raise ValueError("Full name is required")

        staff_id = staff_id or str(uuid.uuid4())
        clash = self.storage.find(self.table_name, {'employee_number': employee_number})
        if any(record['id'] != staff_id for record in clash):
            raise ValueError(f"Employee number {employee_number} already registered")

        now = datetime.now(timezone.utc)
        existing = self.storage.load(self.table_name, staff_id)
        member = StaffMember(
            id=staff_id,
            created_at=datetime.fromisoformat(existing['created_at']) if existing else now,
            updated_at=now,
            employee_number=employee_number.strip(),
            full_name=full_name.strip(),
            branch_id=branch_id,
            branch_name=branch_name,
            is_active=is_active
        )
        self.storage.save(self.table_name, member.id, member.to_dict())

        if self.audit_trail:
            self.audit_trail.log_event(
                event_type=AuditEventType.STAFF_REGISTERED,
                entity_type="staff",
                entity_id=member.id,
                metadata={
                    "employee_number": member.employee_number,
                    "branch_id": branch_id
                }
            )

        return member

    def get_staff(self, staff_id: str) -> Optional[StaffMember]:
        data = self.storage.load(self.table_name, staff_id)
        if not data:
            return None
        return self._staff_from_dict(data)

    def list_staff(self, branch_id: Optional[str] = None) -> List[StaffMember]:
        """All staff, optionally for one branch, by employee number"""
        filters = {'branch_id': branch_id} if branch_id else {}
        members = [self._staff_from_dict(d) for d in self.storage.find(self.table_name, filters)]
        return sorted(members, key=lambda m: m.employee_number)

    def _staff_from_dict(self, data: Dict) -> StaffMember:
        return StaffMember(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            employee_number=data['employee_number'],
            full_name=data['full_name'],
            branch_id=data.get('branch_id'),
            branch_name=data.get('branch_name'),
            is_active=data.get('is_active', True)
        )
