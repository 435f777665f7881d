"""CSV / Excel exports of attendance and holiday credits."""
import io
from typing import Any, Iterable

import pandas as pd

CSV_MEDIA_TYPE = "text/csv"
EXCEL_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

ATTENDANCE_COLUMNS = {
    "date": "Date",
    "student_id": "Student ID",
    "student_name": "Student Name",
    "status": "Status",
    "attributes": "Attributes",
    "fee": "Fee",
}

CREDIT_COLUMNS = {
    "date": "Date",
    "student_id": "Student ID",
    "student_name": "Student Name",
    "holiday_name": "Holiday",
    "amount": "Amount",
    "used_amount": "Used",
    "remaining": "Remaining",
    "origin_tag": "Origin",
    "reason": "Reason",
}


def _frame(rows: Iterable[dict[str, Any]], columns: dict[str, str]) -> pd.DataFrame:
    df = pd.DataFrame(list(rows), columns=list(columns))
    return df.rename(columns=columns)


def attendance_frame(rows: Iterable[dict[str, Any]]) -> pd.DataFrame:
    """Rows from ``AttendanceLedger.attendance_between``, one per student per date."""
    return _frame(rows, ATTENDANCE_COLUMNS)


def holiday_credits_frame(rows: Iterable[dict[str, Any]]) -> pd.DataFrame:
    """Rows from ``StudentBalanceLedger.holiday_credits_report``."""
    return _frame(rows, CREDIT_COLUMNS)


def export_frame(df: pd.DataFrame, format: str = "csv", sheet_name: str = "Report") -> tuple[bytes, str, str]:
    """Serialize a frame. Returns (content, media type, file extension)."""
    if format == "csv":
        stream = io.StringIO()
        df.to_csv(stream, index=False)
        return stream.getvalue().encode("utf-8"), CSV_MEDIA_TYPE, "csv"
    if format == "excel":
        output = io.BytesIO()
        with pd.ExcelWriter(output, engine="openpyxl") as writer:
            df.to_excel(writer, index=False, sheet_name=sheet_name)
        return output.getvalue(), EXCEL_MEDIA_TYPE, "xlsx"
    raise ValueError(f"Unsupported export format: {format}")
