"""
Leave request approval workflow.

A request travels the ordered ``approvalFlow`` one level at a time:

    pending@L --approve--> pending@next(L)   (L not last)
    pending@L --approve--> approved          (L last)
    pending@L --reject---> rejected
    pending@L --return---> returned          (level stays at L)
    returned  --resubmit-> pending@L         (RETURN_POLICY == "resubmit")

approved and rejected are terminal. Every write made here is conditional on
the status/level/version the caller read, so two approvers acting on the
same snapshot cannot both succeed.
"""
import logging
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from leave_portal.core.errors import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    StaleStateError,
    ValidationError,
)
from leave_portal.core.gateway import PersistenceGateway, where
from leave_portal.core.identity import UserSession
from leave_portal.core.notifications import NotificationSink
from leave_portal.schemas.leave import (
    APPROVER_ACTIONS,
    DecisionAction,
    DecisionRecord,
    LeaveRequest,
    LeaveRequestCreate,
    LeaveRequestResubmit,
    LeaveStatus,
)
from leave_portal.schemas.user import UserProfile
from leave_portal.services.queries import approval_level_for, in_scope

logger = logging.getLogger(__name__)

DECISION_FIELDS = {
    "status",
    "currentApprovalLevel",
    "remarks",
    "approvedBy",
    "approvedAt",
    "history",
    "actedBy",
    "version",
    "updatedAt",
}

NOTIFICATION_KINDS = {
    DecisionAction.APPROVE: "success",
    DecisionAction.REJECT: "error",
    DecisionAction.RETURN: "warning",
}


def compute_days_count(from_date: date, to_date: date) -> int:
    if to_date < from_date:
        raise ValidationError(f"toDate {to_date} is before fromDate {from_date}")
    return (to_date - from_date).days + 1


def _require_reason(reason: Optional[str]) -> str:
    cleaned = (reason or "").strip()
    if not cleaned:
        raise ValidationError("A reason is required for a leave request")
    return cleaned


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApprovalWorkflow:
    def __init__(
        self,
        gateway: PersistenceGateway,
        notifications: NotificationSink,
        collection: str,
        users_collection: str,
        approval_flow: Sequence[str],
        role_levels: Mapping[str, str],
        return_policy: str = "resubmit",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not approval_flow or len(set(approval_flow)) != len(approval_flow):
            raise ValueError("approval flow must be non-empty and free of duplicates")
        self.gateway = gateway
        self.notifications = notifications
        self.collection = collection
        self.users_collection = users_collection
        self.approval_flow = list(approval_flow)
        self.role_levels = dict(role_levels)
        self.return_policy = return_policy
        self.clock = clock

    async def get(self, request_id: str) -> LeaveRequest:
        doc = await self.gateway.get(self.collection, request_id)
        if doc is None:
            raise NotFoundError(f"Leave request {request_id} not found")
        return LeaveRequest.from_document(doc)

    async def submit(self, session: UserSession, payload: LeaveRequestCreate) -> LeaveRequest:
        """
        Create a pending request at the first approval level. Identity and
        academic context come from the session user, never from the payload.
        """
        user = session.user
        reason = _require_reason(payload.reason)
        days = compute_days_count(payload.fromDate, payload.toDate)
        now = self.clock()

        request = LeaveRequest(
            id="",
            userId=user.id,
            userName=user.name,
            department=user.department,
            leaveType=payload.leaveType,
            fromDate=payload.fromDate,
            toDate=payload.toDate,
            daysCount=days,
            reason=reason,
            status=LeaveStatus.PENDING,
            approvalFlow=list(self.approval_flow),
            currentApprovalLevel=self.approval_flow[0],
            submittedAt=now,
            year=user.year,
            sem=user.sem,
            div=user.div,
            rollNumber=user.rollNumber,
            updatedAt=now,
        )
        request_id = await self.gateway.create(self.collection, request.to_document())
        request = request.model_copy(update={"id": request_id})

        logger.info(
            "Leave request %s submitted by %s (%s, %d day(s)) -> %s",
            request_id,
            user.id,
            request.leaveType.value,
            days,
            request.currentApprovalLevel,
        )
        self._notify(
            f"Leave request submitted ({request.leaveType.display_name}, {days} day(s))",
            user_id=user.id,
        )
        await self._notify_approvers(request)
        return request

    async def apply_decision(
        self,
        request: LeaveRequest,
        action: DecisionAction,
        acting_user_id: str,
        remarks: Optional[str] = "",
    ) -> LeaveRequest:
        """
        Apply one approver decision to ``request`` (the snapshot the caller
        read) and persist it with a guarded write.

        Raises InvalidStateError when the request is not pending,
        ValidationError when reject/return comes without remarks,
        StaleStateError when the stored request moved on since the snapshot,
        PersistenceError when the store fails.
        """
        if request.status != LeaveStatus.PENDING:
            outcome = "closed" if request.is_terminal else "back with the requester"
            raise InvalidStateError(
                f"Leave request {request.id} is {request.status.value} and {outcome}; "
                "only pending requests accept decisions"
            )
        try:
            action = DecisionAction(action)
        except ValueError as exc:
            raise ValidationError(f"Unknown decision {action!r}") from exc
        if action not in APPROVER_ACTIONS:
            raise ValidationError(f"{action.value!r} is not an approver decision")
        remarks = (remarks or "").strip()
        if action != DecisionAction.APPROVE and not remarks:
            raise ValidationError(f"Remarks are required to {action.value} a leave request")

        now = self.clock()
        level = request.currentApprovalLevel
        changes: Dict[str, object] = {"updatedAt": now, "version": request.version + 1}

        if action == DecisionAction.APPROVE:
            if request.is_last_level:
                changes.update(
                    status=LeaveStatus.APPROVED,
                    approvedBy=acting_user_id,
                    approvedAt=now,
                )
            else:
                next_level = request.approvalFlow[request.approvalFlow.index(level) + 1]
                changes.update(status=LeaveStatus.PENDING, currentApprovalLevel=next_level)
        elif action == DecisionAction.REJECT:
            changes["status"] = LeaveStatus.REJECTED
        else:
            changes["status"] = LeaveStatus.RETURNED

        if remarks:
            changes["remarks"] = remarks
        changes["history"] = request.history + [
            DecisionRecord(
                action=action,
                level=level,
                actorId=acting_user_id,
                remarks=remarks or None,
                at=now,
            )
        ]
        if acting_user_id not in request.actedBy:
            changes["actedBy"] = request.actedBy + [acting_user_id]

        updated = request.model_copy(update=changes)
        await self._guarded_write(
            updated,
            expected={
                "status": LeaveStatus.PENDING.value,
                "currentApprovalLevel": level,
                "version": request.version,
            },
        )

        logger.info(
            "Leave request %s: %s by %s at %s -> %s@%s",
            request.id,
            action.value,
            acting_user_id,
            level,
            updated.status.value,
            updated.currentApprovalLevel,
        )
        self._notify(
            f"{action.value} applied to request for {request.userName} ({request.userId})",
            user_id=request.userId,
            kind=NOTIFICATION_KINDS[action],
        )
        return updated

    async def decide(
        self,
        session: UserSession,
        request_id: str,
        action: DecisionAction,
        remarks: Optional[str] = "",
    ) -> LeaveRequest:
        """
        Load the request and check the session user is the approver
        currently responsible for it before applying the decision.
        """
        request = await self.get(request_id)
        self._check_responsible(session.user, request)
        return await self.apply_decision(request, action, session.user_id, remarks)

    async def resubmit(
        self,
        session: UserSession,
        request_id: str,
        changes: LeaveRequestResubmit,
    ) -> LeaveRequest:
        """
        Put a returned request back into the flow at the level that returned
        it, optionally with edited dates, type or reason.
        """
        if self.return_policy != "resubmit":
            raise InvalidStateError("Returned leave requests cannot be resubmitted")

        request = await self.get(request_id)
        if request.userId != session.user_id:
            raise AuthorizationError("Only the requester can resubmit a leave request")
        if request.status != LeaveStatus.RETURNED:
            raise InvalidStateError(
                f"Leave request {request.id} is {request.status.value}; only returned requests can be resubmitted"
            )

        from_date = changes.fromDate or request.fromDate
        to_date = changes.toDate or request.toDate
        reason = _require_reason(changes.reason if changes.reason is not None else request.reason)
        now = self.clock()

        updated = request.model_copy(
            update={
                "status": LeaveStatus.PENDING,
                "leaveType": changes.leaveType or request.leaveType,
                "fromDate": from_date,
                "toDate": to_date,
                "daysCount": compute_days_count(from_date, to_date),
                "reason": reason,
                "history": request.history
                + [
                    DecisionRecord(
                        action=DecisionAction.RESUBMIT,
                        level=request.currentApprovalLevel,
                        actorId=session.user_id,
                        at=now,
                    )
                ],
                "version": request.version + 1,
                "updatedAt": now,
            }
        )
        await self._guarded_write(
            updated,
            expected={"status": LeaveStatus.RETURNED.value, "version": request.version},
            fields=DECISION_FIELDS | {"leaveType", "fromDate", "toDate", "daysCount", "reason"},
        )

        logger.info(
            "Leave request %s resubmitted by %s -> pending@%s",
            request.id,
            session.user_id,
            updated.currentApprovalLevel,
        )
        self._notify(
            f"Leave request resubmitted to {updated.currentApprovalLevel}",
            user_id=request.userId,
        )
        await self._notify_approvers(updated)
        return updated

    def _check_responsible(self, user: UserProfile, request: LeaveRequest) -> None:
        # role and scope are checked whatever the status
        level = approval_level_for(user, self.role_levels)
        if level is None or level not in request.approvalFlow:
            raise AuthorizationError(f"{user.role.value} is not an approver for leave request {request.id}")
        if not in_scope(user, request):
            raise AuthorizationError(f"Leave request {request.id} is outside your department or class")
        if request.status == LeaveStatus.PENDING and level != request.currentApprovalLevel:
            raise AuthorizationError(
                f"Leave request {request.id} is waiting for {request.currentApprovalLevel}, not {level}"
            )

    async def _guarded_write(
        self,
        updated: LeaveRequest,
        expected: Dict[str, object],
        fields: set = DECISION_FIELDS,
    ) -> None:
        partial = updated.model_dump(mode="json", include=fields)
        written = await self.gateway.update(self.collection, updated.id, partial, expected=expected)
        if written:
            return
        if await self.gateway.get(self.collection, updated.id) is None:
            raise NotFoundError(f"Leave request {updated.id} not found")
        logger.warning("Leave request %s changed concurrently; write rejected", updated.id)
        raise StaleStateError(updated.id)

    def _notify(self, message: str, user_id: Optional[str] = None, kind: str = "info") -> None:
        try:
            self.notifications.add_notification(message, user_id=user_id, kind=kind)
        except Exception:
            logger.exception("Failed to record notification %r", message)

    async def _notify_approvers(self, request: LeaveRequest) -> None:
        """
        Tell everyone who can act on the request at its current level.
        Best effort: a failing lookup never undoes the write that preceded it.
        """
        roles: List[str] = [
            role for role, level in self.role_levels.items() if level == request.currentApprovalLevel
        ]
        if not roles:
            return
        try:
            docs = await self.gateway.query(
                self.users_collection,
                [where("role", "in", roles), where("department", "==", request.department)],
            )
        except Exception:
            logger.exception("Could not look up approvers for leave request %s", request.id)
            return

        for doc in docs:
            approver = UserProfile.model_validate(doc)
            if approver.isActive and in_scope(approver, request):
                self._notify(
                    f"New leave request from {request.userName} ({request.userId}) "
                    f"awaiting {request.currentApprovalLevel} review",
                    user_id=approver.id,
                )
