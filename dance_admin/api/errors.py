"""Maps LedgerError codes to HTTP responses with a message fit for the admin UI."""
import logging
from enum import Enum
from typing import Callable, Dict

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from dance_admin.errors import ErrorCode, LedgerError

logger = logging.getLogger(__name__)

MessageBuilder = Callable[[LedgerError], str]


class Registration(str, Enum):
    ADDED = "added"
    DUPLICATE = "duplicate"


class ErrorHandlerRegistry:
    """
    One message builder per error code.

    ``register`` never overwrites: a second registration for the same code
    returns ``Registration.DUPLICATE`` and leaves the first in place. Use
    ``replace`` to override on purpose.
    """

    def __init__(self):
        self._handlers: Dict[ErrorCode, MessageBuilder] = {}

    def __contains__(self, code: ErrorCode) -> bool:
        return code in self._handlers

    def register(self, code: ErrorCode, handler: MessageBuilder) -> Registration:
        if code in self._handlers:
            return Registration.DUPLICATE
        self._handlers[code] = handler
        return Registration.ADDED

    def replace(self, code: ErrorCode, handler: MessageBuilder) -> None:
        self._handlers[code] = handler

    def user_message(self, exc: LedgerError) -> str:
        handler = self._handlers.get(exc.code)
        return handler(exc) if handler else exc.message

    def render(self, exc: LedgerError) -> JSONResponse:
        content = {**exc.to_dict(), "user_message": self.user_message(exc)}
        report = getattr(exc, "report", None)
        if report is not None:
            content["report"] = report.model_dump(mode="json")
        return JSONResponse(status_code=exc.status_code, content=content)

    def install(self, app: FastAPI) -> None:
        @app.exception_handler(LedgerError)
        async def ledger_error_handler(request: Request, exc: LedgerError):
            if exc.status_code >= 500:
                logger.error(f"{request.method} {request.url.path} failed: {exc}")
            return self.render(exc)


def default_registry() -> ErrorHandlerRegistry:
    registry = ErrorHandlerRegistry()
    registry.register(ErrorCode.CONFLICT, lambda e: "Someone else changed this record at the same time. Please try again.")
    registry.register(ErrorCode.UNAVAILABLE, lambda e: "The database is not reachable right now. Please try again shortly.")
    registry.register(ErrorCode.PERMISSION_DENIED, lambda e: "You do not have permission to make this change.")
    registry.register(ErrorCode.EMPTY_SELECTION, lambda e: "Select at least one student.")
    registry.register(
        ErrorCode.CONFIRMATION_REQUIRED,
        lambda e: "Review the holiday impact and confirm before marking the date as a holiday.",
    )
    return registry
