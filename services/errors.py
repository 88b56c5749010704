"""
Service-level errors. Each carries the HTTP status it maps to; the handlers in
main.py turn them into `{"error": ..., "errors": [...]}` bodies.
"""
from __future__ import annotations

from typing import Any, Optional


class ServiceError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
        errors: Optional[list[dict[str, Any]]] = None,
    ):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.errors = errors
        super().__init__(self.message)

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class ValidationFailed(ServiceError):
    status_code = 400
    default_message = "Validation failed"


class UnsupportedDocumentType(ServiceError):
    status_code = 400
    default_message = "Only PDF and DOC files are allowed"


class DocumentTooLarge(ServiceError):
    status_code = 400
    default_message = "File size too large"


class EmailChangeLocked(ServiceError):
    status_code = 400
    default_message = "Email can only be updated once"


class Unauthenticated(ServiceError):
    status_code = 401
    default_message = "Invalid or expired token"


class InvalidCredentials(ServiceError):
    status_code = 401
    default_message = "Invalid email or password"


class Forbidden(ServiceError):
    status_code = 403
    default_message = "Verification details do not match"


class NotFound(ServiceError):
    status_code = 404
    default_message = "Not found"


class Conflict(ServiceError):
    status_code = 409
    default_message = "Resource already exists"


class StorageError(ServiceError):
    status_code = 502
    default_message = "Failed to upload document"


class UpstreamStorageError(ServiceError):
    status_code = 502
    default_message = "Failed to fetch document from storage"


def format_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, str]]:
    """Flatten pydantic error dicts into `{"field", "message"}` pairs."""
    out = []
    for err in errors:
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "form")]
        field = ".".join(loc) or "body"
        if err.get("type") == "missing":
            message = f"{field} is required"
        else:
            message = str(err.get("msg", "Invalid value")).removeprefix("Value error, ")
        out.append({"field": field, "message": message})
    return out
