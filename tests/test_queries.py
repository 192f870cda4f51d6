import asyncio
from datetime import date

import pytest

from conftest import session_for
from leave_portal.schemas.leave import DecisionAction, LeaveStatus, LeaveType
from leave_portal.services.queries import filter_requests, in_scope, summarize


def approve(workflow, request, approver):
    return asyncio.run(workflow.decide(session_for(approver), request.id, DecisionAction.APPROVE))


class TestRequestsForApprover:
    """What each approver sees in the approval panel"""

    def test_teacher_sees_pending_at_teacher_level(self, submit, queries, users):
        request = submit()
        visible = asyncio.run(queries.get_requests_for_approver(users["teacher"]))
        assert [r.id for r in visible] == [request.id]

    def test_hod_does_not_see_teacher_level_requests(self, submit, queries, users):
        submit()
        assert asyncio.run(queries.get_requests_for_approver(users["hod"])) == []

    def test_forwarded_request_moves_to_hod(self, submit, workflow, queries, users):
        request = submit()
        approve(workflow, request, users["teacher"])

        hod_view = asyncio.run(queries.get_requests_for_approver(users["hod"]))
        teacher_view = asyncio.run(queries.get_requests_for_approver(users["teacher"]))

        assert [r.id for r in hod_view] == [request.id]
        assert hod_view[0].currentApprovalLevel == "HOD"
        # still pending at HOD, so not part of the teacher's history yet
        assert teacher_view == []

    def test_decided_request_stays_in_approver_history(self, submit, workflow, queries, users):
        request = submit()
        approve(workflow, request, users["teacher"])
        approve(workflow, request, users["hod"])

        teacher_view = asyncio.run(queries.get_requests_for_approver(users["teacher"]))
        hod_view = asyncio.run(queries.get_requests_for_approver(users["hod"]))

        assert [r.status for r in teacher_view] == [LeaveStatus.APPROVED]
        assert [r.status for r in hod_view] == [LeaveStatus.APPROVED]

    def test_other_division_teacher_sees_nothing(self, submit, queries, users):
        submit()
        assert asyncio.run(queries.get_requests_for_approver(users["teacher_b"])) == []

    def test_other_department_hod_sees_nothing(self, submit, workflow, queries, users):
        request = submit()
        approve(workflow, request, users["teacher"])
        assert asyncio.run(queries.get_requests_for_approver(users["hod_me"])) == []

    def test_student_only_sees_history(self, submit, queries, users):
        submit()
        assert asyncio.run(queries.get_requests_for_approver(users["student"])) == []

    def test_ordered_by_submission_time(self, submit, workflow, queries, users):
        first = submit(reason="Dentist")
        second = submit(users["student"], reason="Cousin's wedding")
        third = submit(reason="Sports meet", leave_type=LeaveType.OD)
        # decided requests merge into the same ordering
        asyncio.run(
            workflow.decide(session_for(users["teacher"]), first.id, DecisionAction.REJECT, "exam week")
        )

        visible = asyncio.run(queries.get_requests_for_approver(users["teacher"]))
        assert [r.id for r in visible] == [first.id, second.id, third.id]

    def test_no_duplicates(self, submit, workflow, queries, users):
        request = submit()
        asyncio.run(
            workflow.decide(session_for(users["teacher"]), request.id, DecisionAction.RETURN, "add dates")
        )
        visible = asyncio.run(queries.get_requests_for_approver(users["teacher"]))
        assert len(visible) == 1
        assert visible[0].status == LeaveStatus.RETURNED


class TestRequestsForUser:
    def test_own_requests_newest_first(self, submit, queries, users):
        first = submit(reason="Dentist")
        second = submit(reason="Match")
        submit(users["student_b"], reason="Other student")

        mine = asyncio.run(queries.get_requests_for_user(users["student"].id))
        assert [r.id for r in mine] == [second.id, first.id]


class TestScope:
    def test_matching_class(self, submit, users):
        request = submit()
        assert in_scope(users["teacher"], request)

    def test_division_mismatch(self, submit, users):
        request = submit()
        assert not in_scope(users["teacher_b"], request)

    def test_unset_fields_are_not_compared(self, submit, users):
        request = submit()
        assert in_scope(users["hod"], request)
        assert not in_scope(users["hod_me"], request)


class TestFilterRequests:
    """Pure filtering applied on top of the approver's list"""

    @pytest.fixture
    def requests(self, submit, workflow, users):
        sick = submit(leave_type=LeaveType.SL, reason="Viral fever")
        casual = submit(leave_type=LeaveType.CL, reason="Family function")
        duty = submit(users["student_b"], leave_type=LeaveType.OD, reason="Hackathon")
        asyncio.run(workflow.apply_decision(casual, DecisionAction.REJECT, "tch-001", "exam week"))
        return [sick, asyncio.run(workflow.get(casual.id)), duty]

    def test_no_criteria_returns_everything(self, requests):
        assert filter_requests(requests) == requests

    def test_all_disables_criteria(self, requests):
        assert filter_requests(requests, status="all", department="all", leave_type="all") == requests

    def test_by_status(self, requests):
        result = filter_requests(requests, status="rejected")
        assert [r.reason for r in result] == ["Family function"]

    def test_by_leave_type(self, requests):
        result = filter_requests(requests, leave_type="OD")
        assert [r.userId for r in result] == ["stu-002"]

    def test_by_department(self, requests):
        assert filter_requests(requests, department="Mechanical Engineering") == []
        assert len(filter_requests(requests, department="Computer Science")) == 3

    @pytest.mark.parametrize(
        "term, expected",
        [
            ("asha", 2),
            ("ROHAN", 1),
            ("stu-002", 1),
            ("fever", 1),
            ("  hack  ", 1),
            ("nobody", 0),
            ("", 3),
        ],
    )
    def test_search_term(self, requests, term, expected):
        assert len(filter_requests(requests, search_term=term)) == expected

    def test_criteria_combine(self, requests):
        assert filter_requests(requests, status="pending", search_term="asha") == requests[:1]

    def test_input_is_not_modified(self, requests):
        before = list(requests)
        filter_requests(requests, status="approved")
        assert requests == before


def test_summarize(submit, workflow, users):
    pending = submit()
    approved = submit()
    rejected = submit()
    returned = submit()
    approve(workflow, approved, users["teacher"])
    approve(workflow, approved, users["hod"])
    asyncio.run(workflow.decide(session_for(users["teacher"]), rejected.id, DecisionAction.REJECT, "no"))
    asyncio.run(workflow.decide(session_for(users["teacher"]), returned.id, DecisionAction.RETURN, "dates"))

    stored = [asyncio.run(workflow.get(r.id)) for r in (pending, approved, rejected, returned)]
    stats = summarize(stored)

    assert stats.total == 4
    assert stats.pending == 1
    assert stats.approved == 1
    assert stats.rejectedOrReturned == 2


def test_summarize_empty():
    stats = summarize([])
    assert (stats.total, stats.pending, stats.approved, stats.rejectedOrReturned) == (0, 0, 0, 0)


def test_date_fields_survive_storage(submit, workflow):
    request = submit(from_date=date(2024, 5, 2), to_date=date(2024, 5, 4))
    stored = asyncio.run(workflow.get(request.id))
    assert stored.fromDate == date(2024, 5, 2)
    assert stored.daysCount == 3
