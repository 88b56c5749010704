from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from models import APPLICATION_STATUSES

_LABELS = {
    "name": "Name",
    "application_id": "Application ID",
    "passport_number": "Passport Number",
    "nationality": "Nationality",
    "dob": "Date of Birth",
    "address": "Address",
}


def parse_calendar_date(value: Any) -> date:
    """
    Reduce a client-supplied date or timestamp to a calendar day.
    Aware timestamps are converted to the server's local timezone first, so
    "2000-01-01T00:00:00Z" and "2000-01-01" land on the same day wherever the
    client clock and the server clock agree.
    """
    if isinstance(value, datetime):
        return (value.astimezone() if value.tzinfo else value).date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError("Invalid date")
    text = value.strip()
    if not text:
        raise ValueError("Date of Birth is required")
    try:
        if len(text) == 10:
            return date.fromisoformat(text)
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        raise ValueError("Invalid date") from None
    return parse_calendar_date(parsed)


def _clean_text(value: Any, field: str, *, required: bool) -> str:
    label = _LABELS.get(field, field)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError(f"{label} is required" if required else f"{label} cannot be empty")
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ValueError(f"{label} must be a string")
    return str(value).strip()


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ApplicationCreate(CamelModel):
    name: str
    application_id: str
    passport_number: str
    nationality: str
    dob: date
    address: str

    @field_validator("name", "application_id", "passport_number", "nationality", "address", mode="before")
    @classmethod
    def _required(cls, v: Any, info) -> str:
        return _clean_text(v, info.field_name, required=True)

    @field_validator("dob", mode="before")
    @classmethod
    def _dob(cls, v: Any) -> date:
        return parse_calendar_date(v)


class ApplicationUpdate(CamelModel):
    """Partial update; omitted fields are left untouched, explicit blanks are rejected."""

    name: Optional[str] = None
    application_id: Optional[str] = None
    passport_number: Optional[str] = None
    nationality: Optional[str] = None
    dob: Optional[date] = None
    address: Optional[str] = None

    @field_validator("name", "application_id", "passport_number", "nationality", "address", mode="before")
    @classmethod
    def _not_blank(cls, v: Any, info) -> str:
        return _clean_text(v, info.field_name, required=False)

    @field_validator("dob", mode="before")
    @classmethod
    def _dob(cls, v: Any) -> date:
        return parse_calendar_date(v)

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class StatusUpdate(CamelModel):
    status: str

    @field_validator("status", mode="before")
    @classmethod
    def _known_status(cls, v: Any) -> str:
        if v not in APPLICATION_STATUSES:
            raise ValueError("Invalid status")
        return v


class StatusCheck(CamelModel):
    application_id: str
    passport_number: str
    dob: date
    nationality: str

    @field_validator("application_id", "passport_number", "nationality", mode="before")
    @classmethod
    def _required(cls, v: Any, info) -> str:
        return _clean_text(v, info.field_name, required=True)

    @field_validator("dob", mode="before")
    @classmethod
    def _dob(cls, v: Any) -> date:
        return parse_calendar_date(v)


class DocumentVerification(CamelModel):
    """Optional query-string proof of ownership for document downloads."""

    application_id: Optional[str] = None
    passport_number: Optional[str] = None
    dob: Optional[str] = None
    nationality: Optional[str] = None

    @property
    def supplied(self) -> bool:
        return any(v is not None for v in (self.application_id, self.passport_number, self.dob, self.nationality))
