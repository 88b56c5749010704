from __future__ import annotations

from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, EmailStr, Field, ValidationError, field_validator

MSG_INVALID_EMAIL = "Please provide a valid email"


def _normalize_email(v: Any, handler) -> str:
    if isinstance(v, str):
        v = v.strip()
    try:
        email = handler(v)
    except ValidationError:
        raise ValueError(MSG_INVALID_EMAIL) from None
    if email is None:
        raise ValueError(MSG_INVALID_EMAIL)
    return email.lower()


class LoginRequest(BaseModel):
    email: EmailStr
    password: str

    @field_validator("email", mode="wrap")
    @classmethod
    def _email(cls, v: Any, handler) -> str:
        return _normalize_email(v, handler)

    @field_validator("password", mode="before")
    @classmethod
    def _password(cls, v: Any) -> str:
        if not isinstance(v, str) or not v:
            raise ValueError("Password is required")
        return v


class AdminUpdate(BaseModel):
    email: Optional[EmailStr] = None
    name: Optional[str] = None
    old_password: Optional[str] = Field(
        None, validation_alias=AliasChoices("oldPassword", "old_password")
    )
    new_password: Optional[str] = Field(
        None, validation_alias=AliasChoices("newpassword", "newPassword", "new_password")
    )

    @field_validator("email", mode="wrap")
    @classmethod
    def _email(cls, v: Any, handler) -> str:
        return _normalize_email(v, handler)

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v: Any) -> str:
        if not isinstance(v, str) or not v.strip():
            raise ValueError("Name cannot be empty")
        return v.strip()

    @field_validator("old_password", mode="before")
    @classmethod
    def _old_password(cls, v: Any) -> str:
        if not isinstance(v, str) or not v:
            raise ValueError("Old password is required to change password")
        return v

    @field_validator("new_password", mode="before")
    @classmethod
    def _new_password(cls, v: Any) -> str:
        if not isinstance(v, str) or len(v) < 6:
            raise ValueError("Password must be at least 6 characters")
        return v
