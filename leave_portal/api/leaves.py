import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse

from leave_portal.core.deps import get_queries, get_session, get_workflow
from leave_portal.core.identity import UserSession
from leave_portal.schemas.leave import LeaveRequest, LeaveRequestCreate, LeaveRequestResubmit, LeaveStats
from leave_portal.services.queries import (
    LeaveQueries,
    approval_level_for,
    filter_requests,
    in_scope,
    summarize,
)
from leave_portal.services.reports import REPORT_MEDIA_TYPE, build_my_leaves_report
from leave_portal.services.workflow import ApprovalWorkflow

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/leaves",
    tags=["leaves"],
)


def _can_view(session: UserSession, request: LeaveRequest, workflow: ApprovalWorkflow) -> bool:
    if request.userId == session.user_id or session.user_id in request.actedBy:
        return True
    level = approval_level_for(session.user, workflow.role_levels)
    return level in request.approvalFlow and in_scope(session.user, request)


@router.post(
    "",
    response_model=LeaveRequest,
    status_code=status.HTTP_201_CREATED,
)
async def submit_leave_request(
    payload: LeaveRequestCreate,
    session: UserSession = Depends(get_session),
    workflow: ApprovalWorkflow = Depends(get_workflow),
):
    """
    Submit a leave request. It starts pending at the first approval level.
    """
    return await workflow.submit(session, payload)


async def _my_requests(
    session: UserSession,
    queries: LeaveQueries,
    status_filter: Optional[str],
    search: Optional[str],
    leave_type: Optional[str],
) -> List[LeaveRequest]:
    requests = await queries.get_requests_for_user(session.user_id)
    return filter_requests(requests, status=status_filter, search_term=search, leave_type=leave_type)


@router.get(
    "/me",
    response_model=List[LeaveRequest],
)
async def list_my_leave_requests(
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = Query(None),
    leave_type: Optional[str] = Query(None, alias="leaveType"),
    session: UserSession = Depends(get_session),
    queries: LeaveQueries = Depends(get_queries),
):
    """
    The caller's own leave requests, newest first.
    """
    return await _my_requests(session, queries, status_filter, search, leave_type)


@router.get(
    "/me/stats",
    response_model=LeaveStats,
)
async def my_leave_stats(
    session: UserSession = Depends(get_session),
    queries: LeaveQueries = Depends(get_queries),
):
    return summarize(await queries.get_requests_for_user(session.user_id))


@router.get("/me/export")
async def export_my_leaves(
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = Query(None),
    leave_type: Optional[str] = Query(None, alias="leaveType"),
    session: UserSession = Depends(get_session),
    queries: LeaveQueries = Depends(get_queries),
):
    requests = await _my_requests(session, queries, status_filter, search, leave_type)
    report = build_my_leaves_report(requests, title=f"My Leaves - {session.user.name}")
    logger.info("Own leave report exported by %s: %d rows", session.user_id, len(requests))

    filename = f"my_leaves_{session.user.rollNumber or session.user_id}.xlsx"
    return StreamingResponse(
        report,
        media_type=REPORT_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.get(
    "/{request_id}",
    response_model=LeaveRequest,
)
async def get_leave_request(
    request_id: str,
    session: UserSession = Depends(get_session),
    workflow: ApprovalWorkflow = Depends(get_workflow),
):
    request = await workflow.get(request_id)
    if not _can_view(session, request, workflow):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to view this leave request",
        )
    return request


@router.post(
    "/{request_id}/resubmit",
    response_model=LeaveRequest,
)
async def resubmit_leave_request(
    request_id: str,
    changes: LeaveRequestResubmit,
    session: UserSession = Depends(get_session),
    workflow: ApprovalWorkflow = Depends(get_workflow),
):
    """
    Send a returned request back to the level that returned it,
    optionally with corrected dates, type or reason.
    """
    return await workflow.resubmit(session, request_id, changes)
