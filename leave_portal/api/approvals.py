import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse

from leave_portal.core.deps import get_queries, get_session, get_workflow
from leave_portal.core.identity import UserSession
from leave_portal.schemas.leave import DecisionCreate, LeaveRequest, LeaveStats
from leave_portal.schemas.user import UserRole
from leave_portal.services.queries import LeaveQueries, filter_requests, summarize
from leave_portal.services.reports import REPORT_MEDIA_TYPE, build_leave_report
from leave_portal.services.workflow import ApprovalWorkflow

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/approvals",
    tags=["approvals"],
)


def _require_approver(session: UserSession) -> None:
    if session.user.role == UserRole.STUDENT:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Teacher or HOD access required",
        )


async def _visible_requests(
    session: UserSession,
    queries: LeaveQueries,
    status_filter: Optional[str],
    department: Optional[str],
    search: Optional[str],
    leave_type: Optional[str],
) -> List[LeaveRequest]:
    _require_approver(session)
    requests = await queries.get_requests_for_approver(session.user)
    return filter_requests(
        requests,
        status=status_filter,
        department=department,
        search_term=search,
        leave_type=leave_type,
    )


@router.get(
    "",
    response_model=List[LeaveRequest],
)
async def list_requests_for_approver(
    status_filter: Optional[str] = Query(None, alias="status"),
    department: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    leave_type: Optional[str] = Query(None, alias="leaveType"),
    session: UserSession = Depends(get_session),
    queries: LeaveQueries = Depends(get_queries),
):
    """
    Requests waiting for the caller's approval level plus the ones the caller
    already decided, oldest first. Meant to be polled.
    """
    return await _visible_requests(session, queries, status_filter, department, search, leave_type)


@router.get(
    "/stats",
    response_model=LeaveStats,
)
async def approval_stats(
    session: UserSession = Depends(get_session),
    queries: LeaveQueries = Depends(get_queries),
):
    _require_approver(session)
    return summarize(await queries.get_requests_for_approver(session.user))


@router.get("/export")
async def export_leave_report(
    status_filter: Optional[str] = Query(None, alias="status"),
    department: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    leave_type: Optional[str] = Query(None, alias="leaveType"),
    session: UserSession = Depends(get_session),
    queries: LeaveQueries = Depends(get_queries),
):
    """
    Export the (filtered) approval list as an Excel workbook.
    """
    requests = await _visible_requests(session, queries, status_filter, department, search, leave_type)
    report = build_leave_report(
        requests, title=f"Leave Report - {session.user.name} ({date.today().isoformat()})"
    )
    logger.info("Leave report exported by %s: %d rows", session.user_id, len(requests))

    filename = f"leave_report_{date.today().isoformat()}.xlsx"
    return StreamingResponse(
        report,
        media_type=REPORT_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.post(
    "/{request_id}/decision",
    response_model=LeaveRequest,
)
async def decide_leave_request(
    request_id: str,
    payload: DecisionCreate,
    session: UserSession = Depends(get_session),
    workflow: ApprovalWorkflow = Depends(get_workflow),
):
    """
    Approve, reject or return a pending request. Approving at a non-final
    level forwards it to the next level; reject and return need remarks.
    """
    _require_approver(session)
    return await workflow.decide(session, request_id, payload.action, payload.remarks)
