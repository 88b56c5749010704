from schemas.admin import AdminUpdate, LoginRequest
from schemas.application import (
    ApplicationCreate,
    ApplicationUpdate,
    DocumentVerification,
    StatusCheck,
    StatusUpdate,
    parse_calendar_date,
)

__all__ = [
    "AdminUpdate",
    "ApplicationCreate",
    "ApplicationUpdate",
    "DocumentVerification",
    "LoginRequest",
    "StatusCheck",
    "StatusUpdate",
    "parse_calendar_date",
]
