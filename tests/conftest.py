import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from leave_portal.core.deps import init_services
from leave_portal.core.gateway import InMemoryGateway
from leave_portal.core.identity import UserSession
from leave_portal.core.notifications import NotificationSink
from leave_portal.main import app
from leave_portal.schemas.leave import LeaveRequestCreate, LeaveType
from leave_portal.schemas.user import UserProfile, UserRole
from leave_portal.services.queries import LeaveQueries
from leave_portal.services.workflow import ApprovalWorkflow

LEAVES = "leaveRequests"
USERS = "users"
FLOW = ["Teacher", "HOD"]
ROLE_LEVELS = {"teacher": "Teacher", "hod": "HOD"}


class FailingWriteGateway(InMemoryGateway):
    """Leave writes fail the way a dropped connection does; everything else works."""

    driver_errors = (ConnectionError,)

    async def _update(self, collection, doc_id, partial, expected):
        raise ConnectionError("connection reset by peer")


class LostRaceGateway(InMemoryGateway):
    """Every guarded write loses, as if another approver always got there first."""

    async def _update(self, collection, doc_id, partial, expected):
        if expected:
            return False
        return await super()._update(collection, doc_id, partial, expected)


class SlowLeaveGateway(InMemoryGateway):
    """Creating leave requests hangs past the timeout; users are unaffected."""

    async def _create(self, collection, doc):
        if collection == LEAVES:
            await asyncio.sleep(1)
        return await super()._create(collection, doc)


class StepClock:
    """Deterministic clock: every call is one minute after the previous one."""

    def __init__(self) -> None:
        self.current = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(minutes=1)
        return self.current


PROFILES = {
    "student": UserProfile(
        id="stu-001", name="Asha Patil", email="asha@college.test", role=UserRole.STUDENT,
        department="Computer Science", year="2nd", sem="3", div="A", rollNumber="CS23A01",
    ),
    "student_b": UserProfile(
        id="stu-002", name="Rohan Kale", email="rohan@college.test", role=UserRole.STUDENT,
        department="Computer Science", year="2nd", sem="3", div="B",
    ),
    "teacher": UserProfile(
        id="tch-001", name="Meera Joshi", email="meera@college.test", role=UserRole.TEACHER,
        department="Computer Science", year="2nd", sem="3", div="A",
    ),
    "co_teacher": UserProfile(
        id="tch-002", name="Vikram Rao", email="vikram@college.test", role=UserRole.TEACHER,
        department="Computer Science", year="2nd", sem="3", div="A",
    ),
    "teacher_b": UserProfile(
        id="tch-003", name="Nisha Shah", email="nisha@college.test", role=UserRole.TEACHER,
        department="Computer Science", year="2nd", sem="3", div="B",
    ),
    "hod": UserProfile(
        id="hod-001", name="Dr. Kulkarni", email="hod.cs@college.test", role=UserRole.HOD,
        department="Computer Science",
    ),
    "hod_me": UserProfile(
        id="hod-002", name="Dr. Desai", email="hod.me@college.test", role=UserRole.HOD,
        department="Mechanical Engineering",
    ),
}


def session_for(profile: UserProfile) -> UserSession:
    return UserSession(user=profile)


def auth(profile: UserProfile) -> dict:
    return {"X-User-Id": profile.id}


def leave_payload(
    leave_type: LeaveType = LeaveType.CL,
    from_date: date = date(2024, 4, 10),
    to_date: date = date(2024, 4, 10),
    reason: str = "Family function",
) -> LeaveRequestCreate:
    return LeaveRequestCreate(leaveType=leave_type, fromDate=from_date, toDate=to_date, reason=reason)


@pytest.fixture
def gateway():
    return InMemoryGateway()


@pytest.fixture
def users(gateway):
    """Register every test profile in the users collection."""
    async def _seed():
        for profile in PROFILES.values():
            await gateway.create(USERS, profile.model_dump(mode="json"))

    asyncio.run(_seed())
    return PROFILES


@pytest.fixture
def sink():
    return NotificationSink()


@pytest.fixture
def workflow(gateway, sink):
    return ApprovalWorkflow(
        gateway,
        sink,
        collection=LEAVES,
        users_collection=USERS,
        approval_flow=FLOW,
        role_levels=ROLE_LEVELS,
        clock=StepClock(),
    )


@pytest.fixture
def queries(gateway):
    return LeaveQueries(gateway, collection=LEAVES, role_levels=ROLE_LEVELS)


@pytest.fixture
def submit(workflow, users):
    """Submit a leave request as ``profile`` (the student by default)."""
    def _submit(profile=None, **kwargs):
        profile = profile or users["student"]
        return asyncio.run(workflow.submit(session_for(profile), leave_payload(**kwargs)))

    return _submit


@pytest.fixture
def client(gateway, users):
    """Test client backed by the in-memory store."""
    init_services(app, gateway)
    with TestClient(app) as test_client:
        yield test_client
    app.state.gateway = None


@pytest.fixture
def submitted_leave(client, users):
    """A fresh pending@Teacher request created through the API."""
    response = client.post(
        "/leaves",
        headers=auth(users["student"]),
        json={
            "leaveType": "SL",
            "fromDate": "2024-03-01",
            "toDate": "2024-03-03",
            "reason": "Fever",
        },
    )
    assert response.status_code == 201
    return response.json()
