"""
Role-scoped retrieval of leave requests and the pure filters the approval
panel applies on top of it.
"""
import logging
from typing import Dict, Iterable, List, Mapping, Optional

from leave_portal.core.gateway import PersistenceGateway, where
from leave_portal.schemas.leave import LeaveRequest, LeaveStats, LeaveStatus
from leave_portal.schemas.user import UserProfile

logger = logging.getLogger(__name__)

ACADEMIC_FIELDS = ("year", "sem", "div")
ALL = "all"


def approval_level_for(user: UserProfile, role_levels: Mapping[str, str]) -> Optional[str]:
    return role_levels.get(user.role.value)


def in_scope(approver: UserProfile, request: LeaveRequest) -> bool:
    """
    Department must agree, and so must each of year/sem/div wherever both
    the approver profile and the request carry a value.
    """
    if approver.department and request.department and approver.department != request.department:
        return False
    for name in ACADEMIC_FIELDS:
        mine = getattr(approver, name)
        theirs = getattr(request, name)
        if mine and theirs and mine != theirs:
            return False
    return True


def sort_requests(requests: Iterable[LeaveRequest], newest_first: bool = False) -> List[LeaveRequest]:
    return sorted(requests, key=lambda r: (r.submittedAt, r.id), reverse=newest_first)


def filter_requests(
    requests: Iterable[LeaveRequest],
    status: Optional[str] = None,
    department: Optional[str] = None,
    search_term: Optional[str] = None,
    leave_type: Optional[str] = None,
) -> List[LeaveRequest]:
    """
    Pure filter over an already fetched list. ``None`` or "all" disables a
    criterion; the search term is a case-insensitive substring match on the
    student name, the student id, the reason and the request id.
    """
    needle = (search_term or "").strip().lower()
    result = []
    for request in requests:
        if status not in (None, ALL) and request.status.value != status:
            continue
        if department not in (None, ALL) and request.department != department:
            continue
        if leave_type not in (None, ALL) and request.leaveType.value != leave_type:
            continue
        searchable = (request.userName, request.userId, request.reason, request.id)
        if needle and not any(needle in value.lower() for value in searchable):
            continue
        result.append(request)
    return result


def summarize(requests: Iterable[LeaveRequest]) -> LeaveStats:
    counts = {status: 0 for status in LeaveStatus}
    total = 0
    for request in requests:
        counts[request.status] += 1
        total += 1
    return LeaveStats(
        total=total,
        pending=counts[LeaveStatus.PENDING],
        approved=counts[LeaveStatus.APPROVED],
        rejectedOrReturned=counts[LeaveStatus.REJECTED] + counts[LeaveStatus.RETURNED],
    )


class LeaveQueries:
    def __init__(
        self,
        gateway: PersistenceGateway,
        collection: str,
        role_levels: Mapping[str, str],
    ) -> None:
        self.gateway = gateway
        self.collection = collection
        self.role_levels = dict(role_levels)

    async def get_requests_for_approver(self, approver: UserProfile) -> List[LeaveRequest]:
        """
        Pending requests waiting at the approver's level inside their scope,
        plus the no-longer-pending requests they acted on, ordered by
        submittedAt ascending.
        """
        found: Dict[str, LeaveRequest] = {}

        level = approval_level_for(approver, self.role_levels)
        if level is not None:
            docs = await self.gateway.query(
                self.collection,
                [
                    where("status", "==", LeaveStatus.PENDING.value),
                    where("currentApprovalLevel", "==", level),
                ],
            )
            for doc in docs:
                request = LeaveRequest.from_document(doc)
                if in_scope(approver, request):
                    found[request.id] = request

        acted = await self.gateway.query(
            self.collection,
            [
                where("actedBy", "array_contains", approver.id),
                where("status", "!=", LeaveStatus.PENDING.value),
            ],
        )
        for doc in acted:
            request = LeaveRequest.from_document(doc)
            found.setdefault(request.id, request)

        logger.debug(
            "Approver %s (level=%s): %d requests visible", approver.id, level, len(found)
        )
        return sort_requests(found.values())

    async def get_requests_for_user(self, user_id: str) -> List[LeaveRequest]:
        docs = await self.gateway.query(self.collection, [where("userId", "==", user_id)])
        return sort_requests(
            (LeaveRequest.from_document(doc) for doc in docs), newest_first=True
        )
