"""
Approval engine endpoints
"""

import logging

from fastapi import APIRouter, HTTPException, Depends, status

from .deps import get_loan_system, http_error
from .schemas import ApprovalCompletedRequest, ApprovalDecisionRequest, jsonable
from ..system import StaffLoanSystem
from ..approvals import ApprovalCompletedEvent, InMemoryApprovalEngine
from ..exceptions import LoanError


router = APIRouter()
logger = logging.getLogger("staff_loans.api.approvals")


@router.post("/completed", status_code=status.HTTP_202_ACCEPTED)
async def approval_completed(
    request: ApprovalCompletedRequest,
    system: StaffLoanSystem = Depends(get_loan_system)
):
    """
    Webhook for the approval engine's approval.completed notification

    202 only once the decision has been applied (or safely ignored); any
    failure answers 5xx so the engine redelivers.
    """
    event = ApprovalCompletedEvent(
        target_type=request.target_type,
        target_id=request.target_id,
        status=request.status,
        approver_id=request.approver_id,
        comment=request.comment,
        instance_id=request.instance_id
    )
    try:
        system.approval_bridge.publish_completed(event)
    except LoanError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Approval decision for {event.target_id} could not be applied: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Approval decision could not be applied, retry later"
        )
    return {"accepted": True}


@router.get("/instances")
async def list_instances(system: StaffLoanSystem = Depends(get_loan_system)):
    """Approval instances held by the local engine"""
    engine = system.approval_engine
    if not isinstance(engine, InMemoryApprovalEngine):
        raise HTTPException(status_code=404, detail="Approvals are handled by a remote engine")
    return {"instances": engine.list_instances()}


@router.post("/instances/{instance_id}/decide")
async def decide(
    instance_id: str,
    request: ApprovalDecisionRequest,
    system: StaffLoanSystem = Depends(get_loan_system)
):
    """Approve or reject an instance held by the local engine"""
    engine = system.approval_engine
    if not isinstance(engine, InMemoryApprovalEngine):
        raise HTTPException(status_code=404, detail="Approvals are handled by a remote engine")

    try:
        event = engine.decide(instance_id, request.status, request.approver_id, request.comment)
    except LoanError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Decision on approval {instance_id} could not be applied: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Approval decision could not be applied, retry later"
        )

    try:
        loan = system.find_by_id(event.target_id)
    except LoanError as e:
        raise http_error(e)

    return {
        "instance_id": instance_id,
        "status": event.status,
        "loan_status": loan.status.value,
        "loan": jsonable(loan.to_dict())
    }
