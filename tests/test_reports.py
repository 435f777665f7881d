import io

import pandas as pd
import pytest
from conftest import DAY

from dance_admin.services.reports import (
    CSV_MEDIA_TYPE,
    EXCEL_MEDIA_TYPE,
    attendance_frame,
    export_frame,
    holiday_credits_frame,
)


async def test_attendance_csv(attendance):
    await attendance.set_attendance(DAY, "u1", "present", ["late", "noShoes"])
    await attendance.set_attendance(DAY, "u2", "absent")
    rows = await attendance.attendance_between(DAY, DAY)

    content, media_type, extension = export_frame(attendance_frame(rows), "csv")

    assert (media_type, extension) == (CSV_MEDIA_TYPE, "csv")
    df = pd.read_csv(io.BytesIO(content))
    assert list(df.columns) == ["Date", "Student ID", "Student Name", "Status", "Attributes", "Fee"]
    assert df["Fee"].tolist() == [2, 5]
    assert df.loc[0, "Attributes"] == "late, noShoes"


async def test_holiday_credits_excel(holidays, ledger, attendance):
    await attendance.set_attendance(DAY, "u1", "absent")
    await holidays.declare_holiday(DAY, "Local", confirmed=True)
    rows = await ledger.holiday_credits_report()

    content, media_type, extension = export_frame(holiday_credits_frame(rows), "excel", sheet_name="Credits")

    assert (media_type, extension) == (EXCEL_MEDIA_TYPE, "xlsx")
    df = pd.read_excel(io.BytesIO(content), sheet_name="Credits")
    assert df.loc[0, "Holiday"] == "Local"
    assert df.loc[0, "Amount"] == 5
    assert df.loc[0, "Remaining"] == 5


def test_empty_frame_keeps_headers():
    assert list(attendance_frame([]).columns)[0] == "Date"


def test_unknown_format():
    with pytest.raises(ValueError):
        export_frame(attendance_frame([]), "pdf")
