import enum
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


class LeaveType(str, enum.Enum):
    SL = "SL"
    CL = "CL"
    OD = "OD"
    ML = "ML"
    OTH = "OTH"
    EL = "EL"
    LOP = "LOP"
    COH = "COH"

    @property
    def display_name(self) -> str:
        return LEAVE_TYPE_NAMES[self]


LEAVE_TYPE_NAMES = {
    LeaveType.SL: "Sick Leave",
    LeaveType.CL: "Casual Leave",
    LeaveType.OD: "On Duty",
    LeaveType.ML: "Medical Leave",
    LeaveType.OTH: "Other",
    LeaveType.EL: "Earned Leave",
    LeaveType.LOP: "Loss of Pay",
    LeaveType.COH: "Compensatory Off",
}


class LeaveStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    RETURNED = "returned"


TERMINAL_STATUSES = frozenset({LeaveStatus.APPROVED, LeaveStatus.REJECTED})


class DecisionAction(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"
    RETURN = "return"
    # recorded in history only, never accepted as an approver decision
    RESUBMIT = "resubmit"


APPROVER_ACTIONS = frozenset({DecisionAction.APPROVE, DecisionAction.REJECT, DecisionAction.RETURN})


class DecisionRecord(BaseModel):
    action: DecisionAction
    level: str
    actorId: str
    remarks: Optional[str] = None
    at: datetime


class LeaveRequest(BaseModel):
    """
    A leave request document as stored in the leave collection.
    """
    id: str
    userId: str
    userName: str
    department: str
    leaveType: LeaveType
    fromDate: date
    toDate: date
    daysCount: int = Field(..., ge=1)
    reason: str
    status: LeaveStatus = LeaveStatus.PENDING
    approvalFlow: List[str]
    currentApprovalLevel: str
    submittedAt: datetime

    # academic context, used to scope teacher queries to a class roster
    year: Optional[str] = None
    sem: Optional[str] = None
    div: Optional[str] = None
    rollNumber: Optional[str] = None

    remarks: Optional[str] = None
    approvedBy: Optional[str] = None
    approvedAt: Optional[datetime] = None
    history: List[DecisionRecord] = Field(default_factory=list)
    actedBy: List[str] = Field(default_factory=list)
    version: int = 0
    updatedAt: Optional[datetime] = None

    @model_validator(mode="after")
    def check_approval_level(self) -> "LeaveRequest":
        if not self.approvalFlow:
            raise ValueError("approvalFlow must not be empty")
        if self.status == LeaveStatus.PENDING and self.currentApprovalLevel not in self.approvalFlow:
            raise ValueError(
                f"currentApprovalLevel {self.currentApprovalLevel!r} is not part of the approval flow"
            )
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_last_level(self) -> bool:
        return self.approvalFlow.index(self.currentApprovalLevel) == len(self.approvalFlow) - 1

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "LeaveRequest":
        return cls.model_validate(doc)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude={"id"})


class LeaveRequestCreate(BaseModel):
    """
    POST /leaves body
    """
    leaveType: LeaveType
    fromDate: date
    toDate: date
    reason: str


class LeaveRequestResubmit(BaseModel):
    """
    POST /leaves/{id}/resubmit body; omitted fields keep their value.
    """
    leaveType: Optional[LeaveType] = None
    fromDate: Optional[date] = None
    toDate: Optional[date] = None
    reason: Optional[str] = None


class DecisionCreate(BaseModel):
    action: DecisionAction
    remarks: str = ""


class LeaveStats(BaseModel):
    total: int
    pending: int
    approved: int
    rejectedOrReturned: int
