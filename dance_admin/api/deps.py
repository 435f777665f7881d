"""Shared dependencies: the services built at startup, exposed for route injection."""
from typing import Annotated

from fastapi import Depends, Request

from dance_admin.services.attendance import AttendanceLedger
from dance_admin.services.balances import StudentBalanceLedger
from dance_admin.services.calendar import HolidayCalendar
from dance_admin.services.container import Services
from dance_admin.services.holidays import HolidayReconciliationService


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_ledger(services: Annotated[Services, Depends(get_services)]) -> StudentBalanceLedger:
    return services.ledger


def get_attendance(services: Annotated[Services, Depends(get_services)]) -> AttendanceLedger:
    return services.attendance


def get_holidays(services: Annotated[Services, Depends(get_services)]) -> HolidayReconciliationService:
    return services.holidays


def get_calendar(services: Annotated[Services, Depends(get_services)]) -> HolidayCalendar:
    return services.calendar


# Type aliases for route injection
Ledger = Annotated[StudentBalanceLedger, Depends(get_ledger)]
Attendance = Annotated[AttendanceLedger, Depends(get_attendance)]
Holidays = Annotated[HolidayReconciliationService, Depends(get_holidays)]
Calendar = Annotated[HolidayCalendar, Depends(get_calendar)]
