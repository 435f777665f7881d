"""Payments are authored elsewhere; the engine only reads them."""
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel


class Payment(BaseModel):
    payment_id: str
    student_id: str
    student_name: Optional[str] = None
    amount: int
    date: datetime
    method: str = "cash"
    notes: Optional[str] = None
    # Session date the payment covers; legacy rows only mention it in notes
    applies_to_date: Optional[date] = None
