from datetime import date
from typing import List, Optional

from fastapi import APIRouter

from dance_admin.api.deps import Calendar, Holidays
from dance_admin.models.attendance import AttendanceSetRequest
from dance_admin.models.holiday import (
    FeeAdjustmentPreview,
    HolidayDeclareRequest,
    HolidayImpact,
    HolidayOut,
    HolidayReport,
)

router = APIRouter()


@router.get("/", response_model=List[HolidayOut])
async def list_holidays(calendar: Calendar, year: Optional[int] = None):
    """Fixed, moving and manually declared holidays of a year (current year by default)."""
    return calendar.holidays_in(year or date.today().year)


@router.get("/manual", response_model=List[HolidayOut])
async def list_manual_holidays(calendar: Calendar):
    return calendar.specific_holidays()


@router.get("/impact", response_model=HolidayImpact)
async def analyze_holiday_impact(holidays: Holidays, day: date, name: Optional[str] = None):
    """Who would be credited, and how much, if ``day`` became a holiday. Changes nothing."""
    return await holidays.analyze_holiday_impact(day, name)


@router.post("/preview", response_model=FeeAdjustmentPreview)
async def preview_fee_adjustment(holidays: Holidays, day: date, data: AttendanceSetRequest):
    return holidays.preview_fee_adjustment(day, data.status, data.attributes)


@router.post("/", response_model=HolidayReport)
async def declare_holiday(data: HolidayDeclareRequest, holidays: Holidays):
    """Declare a holiday and credit affected students. Requires ``confirmed: true``."""
    return await holidays.declare_holiday(data.date, data.name, confirmed=data.confirmed)


@router.post("/retroactive", response_model=HolidayReport)
async def retroactively_process_holiday(data: HolidayDeclareRequest, holidays: Holidays):
    """Credit payments made for a date that is already a holiday."""
    return await holidays.retroactively_process_holiday(data.date, data.name, confirmed=data.confirmed)


@router.delete("/{day}")
async def remove_manual_holiday(day: date, calendar: Calendar):
    """Drop a manual holiday from the calendar. Credits already issued stay."""
    return {"date": day, "removed": calendar.remove_specific_holiday(day)}
