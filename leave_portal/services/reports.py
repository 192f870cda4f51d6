from datetime import date
from io import BytesIO
from typing import Any, Callable, Iterable, List, Optional

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from leave_portal.schemas.leave import LeaveRequest, LeaveStatus

DEPARTMENT_CODES = {
    "Computer Science": "CSE",
    "Computer Science and Engineering": "CSE",
    "Information Technology": "IT",
    "Electronics and Communication": "ECE",
    "Electrical and Electronics": "EEE",
    "Electronics": "ENTC",
    "Mechanical Engineering": "ME",
    "Civil Engineering": "CIVIL",
    "Artificial Intelligence & Machine Learning": "AI&ML",
    "Data Science": "DS",
}

YEAR_CODES = {
    "1": "FY", "1st": "FY",
    "2": "SY", "2nd": "SY",
    "3": "TY", "3rd": "TY",
    "4": "LY", "4th": "LY",
}

HEADERS = [
    "Sr. No",
    "Roll No",
    "Student Name",
    "Class",
    "From Date",
    "To Date",
    "No. of Days",
    "Reason",
    "Status (Approved/Pending/Rejected)",
    "Approved By (Teacher/HOD)",
]

MY_LEAVES_HEADERS = [
    "Sr No",
    "Request ID",
    "Type of Leave",
    "Reason",
    "From Date",
    "To Date",
    "Days",
    "Status",
    "Approval Flow",
    "Final Approver",
    "Approved Date",
    "Remarks",
]

REPORT_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def department_code(department: Optional[str]) -> str:
    if not department:
        return ""
    if department in DEPARTMENT_CODES:
        return DEPARTMENT_CODES[department]
    return "".join(word[0] for word in department.split()).upper()


def class_label(request: LeaveRequest) -> str:
    year = YEAR_CODES.get(request.year or "", request.year or "")
    return f"{year} {department_code(request.department)}".strip()


def approver_label(request: LeaveRequest) -> str:
    """Level that decided the request, or where it is waiting."""
    if request.status == LeaveStatus.PENDING:
        return f"Pending with {request.currentApprovalLevel}"
    if request.history:
        return request.history[-1].level
    return request.currentApprovalLevel


def _write_workbook(
    sheet_title: str,
    title: str,
    headers: List[str],
    widths: List[int],
    requests: List[LeaveRequest],
    row_values: Callable[[int, LeaveRequest], List[Any]],
) -> BytesIO:
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_title

    title_fill = PatternFill(start_color="1F4E78", end_color="1F4E78", fill_type="solid")
    title_font = Font(color="FFFFFF", bold=True, size=14)
    header_fill = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
    header_font = Font(color="FFFFFF", bold=True)
    center = Alignment(horizontal="center", vertical="center")
    border = Border(
        left=Side(style="thin"), right=Side(style="thin"),
        top=Side(style="thin"), bottom=Side(style="thin"),
    )
    status_fills = {
        LeaveStatus.APPROVED: PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid"),
        LeaveStatus.REJECTED: PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid"),
        LeaveStatus.RETURNED: PatternFill(start_color="F8CBAD", end_color="F8CBAD", fill_type="solid"),
        LeaveStatus.PENDING: PatternFill(start_color="FFEB9C", end_color="FFEB9C", fill_type="solid"),
    }

    num_cols = len(headers)
    row_num = 1

    ws.merge_cells(start_row=row_num, start_column=1, end_row=row_num, end_column=num_cols)
    tc = ws.cell(row=row_num, column=1, value=title)
    tc.fill, tc.font, tc.alignment = title_fill, title_font, center
    row_num += 2

    for col, header in enumerate(headers, 1):
        cell = ws.cell(row=row_num, column=col, value=header)
        cell.fill, cell.font, cell.alignment, cell.border = header_fill, header_font, center, border
    row_num += 1

    if not requests:
        ws.merge_cells(start_row=row_num, start_column=1, end_row=row_num, end_column=num_cols)
        nd = ws.cell(row=row_num, column=1, value="No leave data found for the selected filters")
        nd.alignment = center
        nd.font = Font(italic=True, size=12)
    else:
        for idx, request in enumerate(requests, 1):
            for col, value in enumerate(row_values(idx, request), 1):
                cell = ws.cell(row=row_num, column=col, value=value)
                cell.fill = status_fills[request.status]
                cell.border = border
            row_num += 1

    for col, width in enumerate(widths, 1):
        ws.column_dimensions[get_column_letter(col)].width = width

    report = BytesIO()
    wb.save(report)
    report.seek(0)
    return report


def _format_date(value: Optional[date]) -> str:
    return value.strftime("%d-%m-%Y") if value else ""


def build_leave_report(requests: Iterable[LeaveRequest], title: str = "Leave Report") -> BytesIO:
    """Approver-side report: one row per student request."""
    def values(idx: int, request: LeaveRequest) -> List[Any]:
        return [
            idx,
            request.rollNumber or request.userId,
            request.userName,
            class_label(request),
            _format_date(request.fromDate),
            _format_date(request.toDate),
            request.daysCount,
            request.reason,
            request.status.value.capitalize(),
            approver_label(request),
        ]

    return _write_workbook(
        "Leave Report", title, HEADERS, [8, 16, 24, 12, 12, 12, 12, 40, 20, 24], list(requests), values
    )


def build_my_leaves_report(requests: Iterable[LeaveRequest], title: str = "My Leaves") -> BytesIO:
    """Requester-side report of their own requests."""
    def values(idx: int, request: LeaveRequest) -> List[Any]:
        return [
            idx,
            request.id,
            request.leaveType.display_name,
            " ".join(request.reason.splitlines()),
            _format_date(request.fromDate),
            _format_date(request.toDate),
            request.daysCount,
            request.status.value,
            " > ".join(request.approvalFlow),
            request.approvedBy or "",
            _format_date(request.approvedAt),
            " ".join((request.remarks or "").splitlines()),
        ]

    return _write_workbook(
        "My Leaves", title, MY_LEAVES_HEADERS, [8, 34, 18, 40, 12, 12, 8, 12, 20, 18, 14, 30],
        list(requests), values,
    )
