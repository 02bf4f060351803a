"""
Staff directory endpoints
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, status

from .deps import get_loan_system
from .schemas import RegisterStaffRequest
from ..system import StaffLoanSystem
from ..staff import StorageStaffDirectory


router = APIRouter()


def _directory(system: StaffLoanSystem) -> StorageStaffDirectory:
    if not isinstance(system.staff_directory, StorageStaffDirectory):
        raise HTTPException(status_code=404, detail="Staff are managed by an external directory")
    return system.staff_directory


@router.post("", status_code=status.HTTP_201_CREATED)
async def register_staff(
    request: RegisterStaffRequest,
    system: StaffLoanSystem = Depends(get_loan_system)
):
    """Add or replace a staff record"""
    try:
        member = _directory(system).register(
            employee_number=request.employee_number,
            full_name=request.full_name,
            branch_id=request.branch_id,
            branch_name=request.branch_name,
            staff_id=request.staff_id,
            is_active=request.is_active
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return member.to_dict()


@router.get("")
async def list_staff(
    branch_id: Optional[str] = None,
    system: StaffLoanSystem = Depends(get_loan_system)
):
    """Staff records, optionally for one branch"""
    members = _directory(system).list_staff(branch_id)
    return {"staff": [m.to_dict() for m in members], "count": len(members)}


@router.get("/{staff_id}")
async def get_staff(
    staff_id: str,
    system: StaffLoanSystem = Depends(get_loan_system)
):
    """Get a staff record"""
    member = system.staff_directory.get_staff(staff_id)
    if not member:
        raise HTTPException(status_code=404, detail="Staff not found")
    return member.to_dict()
