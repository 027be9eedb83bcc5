"""
Study Buddy Matchmaker - Report and Block Routes
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from study_buddy.dependencies import client_address, get_services, rate_limit
from study_buddy.errors import UnknownSession
from study_buddy.schemas import WireModel
from study_buddy.services import rate_limiter
from study_buddy.services.abuse import InvalidBlockTarget
from study_buddy.services.container import Services

router = APIRouter()


class ReportRequest(WireModel):
    session_id: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1)
    messages: List[Dict[str, Any]] = Field(default_factory=list)


class BlockRequest(WireModel):
    session_id: str = Field(..., min_length=1)
    blocked_user_id: str = Field(..., min_length=1)


class ActionResult(BaseModel):
    success: bool
    message: str


@router.post(
    "/report",
    response_model=ActionResult,
    dependencies=[Depends(rate_limit(rate_limiter.API, rate_limiter.REPORT))],
)
async def submit_report(body: ReportRequest, request: Request, services: Services = Depends(get_services)):
    """Store a write-once report with a snapshot of the conversation"""
    await services.abuse.submit_report(
        body.session_id,
        body.reason,
        messages=body.messages,
        ip=client_address(request),
    )
    return ActionResult(success=True, message="Report submitted successfully")


@router.post("/block", response_model=ActionResult, dependencies=[Depends(rate_limit(rate_limiter.API))])
async def block_user(body: BlockRequest, services: Services = Depends(get_services)):
    """
    Block the other member of a session from future pairing.

    The open session is not ended; clients end it separately.
    """
    try:
        await services.abuse.block_from_session(body.session_id, body.blocked_user_id)
    except UnknownSession:
        raise HTTPException(status_code=404, detail="Session not found")
    except InvalidBlockTarget:
        raise HTTPException(status_code=400, detail="Invalid user")
    return ActionResult(success=True, message="User blocked successfully")
