import io
from datetime import date
from typing import List

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import StreamingResponse

from dance_admin.api.deps import Attendance
from dance_admin.models.attendance import (
    AttendanceBulkRequest,
    AttendanceOutcome,
    AttendanceSetRequest,
    BulkAttendanceReport,
    StudentAttendanceRow,
)
from dance_admin.models.student import StudentBalanceOut
from dance_admin.services.reports import attendance_frame, export_frame

router = APIRouter()


@router.get("/students", response_model=List[StudentBalanceOut])
async def list_eligible_students(attendance: Attendance):
    """Students tracked for attendance (Enrolled or Pending Payment), by first name."""
    students = await attendance.list_eligible_students()
    return [
        StudentBalanceOut(
            student_id=s.student_id,
            full_name=s.full_name,
            balance=s.balance,
            available_credit=s.available_credit(),
        )
        for s in students
    ]


@router.get("/report")
async def download_attendance_report(
    attendance: Attendance,
    from_date: date,
    to_date: date,
    format: str = Query("csv", enum=["csv", "excel"]),
):
    """Download attendance with fees for a date range."""
    if from_date > to_date:
        raise HTTPException(status_code=400, detail="from_date must not be after to_date")
    rows = await attendance.attendance_between(from_date, to_date)
    if not rows:
        raise HTTPException(status_code=404, detail="No records found for the given dates")

    content, media_type, extension = export_frame(attendance_frame(rows), format, sheet_name="Attendance")
    return StreamingResponse(
        io.BytesIO(content),
        media_type=media_type,
        headers={
            "Content-Disposition": f"attachment; filename=attendance_{from_date}_{to_date}.{extension}"
        },
    )


@router.get("/{day}", response_model=List[StudentAttendanceRow])
async def get_daily_summary(day: date, attendance: Attendance):
    """Eligible roster with each student's attendance for the day (null when unmarked)."""
    return await attendance.summary_for(day)


@router.put("/{day}/{student_id}", response_model=AttendanceOutcome)
async def set_attendance(day: date, student_id: str, data: AttendanceSetRequest, attendance: Attendance):
    return await attendance.set_attendance(day, student_id, data.status, data.attributes)


@router.delete("/{day}/{student_id}", response_model=AttendanceOutcome)
async def remove_attendance(day: date, student_id: str, attendance: Attendance):
    """Clear a student's attendance for the day and refund its fee."""
    return await attendance.remove_attendance(day, student_id)


@router.post("/{day}/bulk", response_model=BulkAttendanceReport)
async def set_attendance_bulk(day: date, data: AttendanceBulkRequest, attendance: Attendance):
    """Mark many students at once. Partial failures are listed per student."""
    return await attendance.set_attendance_bulk(day, data.student_ids, data.status, data.attributes)


@router.post("/{day}/reconcile")
async def reconcile_date(day: date, attendance: Attendance):
    """Replay ledger postings that a failed write left pending."""
    applied = await attendance.reconcile_date(day)
    return {"date": day, "applied": applied}
