"""Student balances, holiday credits and ledger postings."""
import io
from typing import List

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import StreamingResponse

from dance_admin.api.deps import Ledger
from dance_admin.models.student import (
    ApplyCreditBody,
    ApplyCreditResult,
    HolidayCredit,
    LedgerPosting,
    StudentBalanceOut,
)
from dance_admin.services.reports import export_frame, holiday_credits_frame

router = APIRouter()


@router.get("/holiday-credits")
async def holiday_credits_report(ledger: Ledger):
    """Every holiday credit across students, newest first."""
    return await ledger.holiday_credits_report()


@router.get("/holiday-credits/export")
async def export_holiday_credits(ledger: Ledger, format: str = Query("csv", enum=["csv", "excel"])):
    rows = await ledger.holiday_credits_report()
    if not rows:
        raise HTTPException(status_code=404, detail="No holiday credits recorded")
    content, media_type, extension = export_frame(holiday_credits_frame(rows), format, sheet_name="Holiday Credits")
    return StreamingResponse(
        io.BytesIO(content),
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename=holiday_credits.{extension}"},
    )


@router.get("/{student_id}/balance", response_model=StudentBalanceOut)
async def get_balance(student_id: str, ledger: Ledger):
    student = await ledger.require_student(student_id)
    return StudentBalanceOut(
        student_id=student.student_id,
        full_name=student.full_name,
        balance=student.balance,
        available_credit=student.available_credit(),
    )


@router.get("/{student_id}/holiday-credits", response_model=List[HolidayCredit])
async def get_holiday_credits(student_id: str, ledger: Ledger):
    return await ledger.get_holiday_credits(student_id)


@router.get("/{student_id}/postings", response_model=List[LedgerPosting])
async def get_postings(student_id: str, ledger: Ledger):
    return await ledger.postings(student_id)


@router.post("/{student_id}/apply-credit", response_model=ApplyCreditResult)
async def apply_holiday_credit(student_id: str, data: ApplyCreditBody, ledger: Ledger):
    """Spend the student's available holiday credit against their balance."""
    return await ledger.apply_holiday_credit(student_id, data.amount)
