"""
Visa application lifecycle: record CRUD, the status state machine, and keeping
the attached document in step with the storage backend.

Storage cleanup (orphaned uploads, replaced or deleted documents) is
best-effort: failures are logged and never change the outcome of the operation
that triggered them.
"""
from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Optional
from urllib.parse import urlparse

import httpx
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from models import DEFAULT_STATUS, VisaApplication
from schemas.application import (
    ApplicationCreate,
    ApplicationUpdate,
    DocumentVerification,
    StatusCheck,
    parse_calendar_date,
)
from services.errors import Conflict, Forbidden, NotFound, UpstreamStorageError, ValidationFailed
from services.storage import (
    StorageBackend,
    file_extension,
    guess_content_type,
    is_remote_reference,
    validate_document,
)

logger = logging.getLogger(__name__)

MSG_APPLICATION_NOT_FOUND = "Application not found"
MSG_DOCUMENT_NOT_FOUND = "Document not found"
MSG_DUPLICATE_APPLICATION_ID = "Application ID already exists"

_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9._-]")


@dataclass
class DocumentUpload:
    filename: str
    content_type: Optional[str]
    data: bytes


@dataclass
class StoredDocument:
    reference: str
    provider: str
    content_type: str


@dataclass
class ResolvedDocument:
    """What the download route streams back: either a local file or an upstream body."""

    filename: str
    content_type: str
    path: Optional[str] = None
    chunks: Optional[AsyncIterator[bytes]] = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def store_document(storage: StorageBackend, upload: DocumentUpload, max_bytes: int) -> StoredDocument:
    content_type = validate_document(upload.filename, upload.content_type, len(upload.data), max_bytes)
    reference = await run_in_threadpool(storage.store, upload.data, upload.filename, content_type)
    return StoredDocument(reference=reference, provider=storage.provider, content_type=content_type)


async def discard_document(storage: StorageBackend, reference: str) -> None:
    try:
        await run_in_threadpool(storage.remove, reference)
    except Exception:
        logger.warning("Could not remove stored document %s", reference, exc_info=True)


async def _get_or_404(session: AsyncSession, record_id: str) -> VisaApplication:
    result = await session.execute(select(VisaApplication).where(VisaApplication.id == record_id))
    app = result.scalar_one_or_none()
    if not app:
        raise NotFound(MSG_APPLICATION_NOT_FOUND)
    return app


async def check_status(session: AsyncSession, query: StatusCheck) -> VisaApplication:
    result = await session.execute(
        select(VisaApplication).where(
            VisaApplication.application_id == query.application_id,
            VisaApplication.passport_number == query.passport_number,
            VisaApplication.nationality == query.nationality,
            VisaApplication.dob == query.dob,
        )
    )
    app = result.scalar_one_or_none()
    if not app:
        raise NotFound(MSG_APPLICATION_NOT_FOUND)
    return app


async def list_applications(session: AsyncSession) -> list[VisaApplication]:
    result = await session.execute(
        select(VisaApplication).order_by(VisaApplication.created_at.desc(), VisaApplication.id.desc())
    )
    return list(result.scalars().all())


async def get_application(session: AsyncSession, record_id: str) -> VisaApplication:
    return await _get_or_404(session, record_id)


async def create_application(
    session: AsyncSession,
    body: ApplicationCreate,
    document: Optional[StoredDocument] = None,
) -> VisaApplication:
    now = _now()
    app = VisaApplication(
        id=uuid.uuid4().hex,
        status=DEFAULT_STATUS,
        created_at=now,
        updated_at=now,
        **body.model_dump(),
    )
    if document is not None:
        app.document_ref = document.reference
        app.document_provider = document.provider
        app.document_content_type = document.content_type
    session.add(app)
    try:
        await session.flush()
    except IntegrityError as e:
        await session.rollback()
        raise Conflict(MSG_DUPLICATE_APPLICATION_ID) from e
    return app


async def create_application_with_document(
    session: AsyncSession,
    storage: StorageBackend,
    body: ApplicationCreate,
    upload: Optional[DocumentUpload],
    max_bytes: int,
) -> VisaApplication:
    if upload is None:
        return await create_application(session, body)
    stored = await store_document(storage, upload, max_bytes)
    try:
        app = await create_application(session, body, stored)
        await session.commit()
    except Exception:
        await discard_document(storage, stored.reference)
        raise
    return app


async def update_application(session: AsyncSession, record_id: str, body: ApplicationUpdate) -> VisaApplication:
    app = await _get_or_404(session, record_id)
    changes = body.changes()
    new_key = changes.pop("application_id", None)
    if new_key is not None and new_key != app.application_id:
        raise ValidationFailed(
            "Application ID cannot be changed",
            errors=[{"field": "applicationId", "message": "Application ID cannot be changed"}],
        )
    for key, value in changes.items():
        setattr(app, key, value)
    app.updated_at = _now()
    await session.flush()
    return app


async def update_status(session: AsyncSession, record_id: str, status: str) -> VisaApplication:
    # Any transition is allowed, including out of Success/Rejected
    app = await _get_or_404(session, record_id)
    app.status = status
    app.updated_at = _now()
    await session.flush()
    return app


async def attach_document(
    session: AsyncSession,
    storage: StorageBackend,
    record_id: str,
    upload: DocumentUpload,
    max_bytes: int,
) -> VisaApplication:
    """
    Upload first, then look the record up. A missing record or a failed commit
    means the fresh upload is removed again; a replaced document's old object
    is removed only once the new reference is committed.
    """
    stored = await store_document(storage, upload, max_bytes)
    try:
        app = await _get_or_404(session, record_id)
        previous = app.document_ref
        app.document_ref = stored.reference
        app.document_provider = stored.provider
        app.document_content_type = stored.content_type
        app.updated_at = _now()
        await session.commit()
    except Exception:
        await discard_document(storage, stored.reference)
        raise
    if previous and previous != stored.reference:
        await discard_document(storage, previous)
    return app


async def delete_application(session: AsyncSession, storage: StorageBackend, record_id: str) -> None:
    app = await _get_or_404(session, record_id)
    reference = app.document_ref
    await session.delete(app)
    await session.commit()
    if reference:
        await discard_document(storage, reference)


def verification_matches(app: VisaApplication, verification: DocumentVerification) -> bool:
    fields = (verification.application_id, verification.passport_number, verification.dob, verification.nationality)
    if any(v is None for v in fields):
        return False
    try:
        dob = parse_calendar_date(verification.dob)
    except ValueError:
        return False
    return (
        verification.application_id == app.application_id
        and verification.passport_number == app.passport_number
        and verification.nationality == app.nationality
        and dob == app.dob
    )


def download_filename(app: VisaApplication) -> str:
    ext = file_extension(urlparse(app.document_ref).path if is_remote_reference(app.document_ref) else app.document_ref)
    stem = _UNSAFE_FILENAME.sub("_", app.application_id) or "application"
    return f"{stem}-document.{ext}" if ext else f"{stem}-document"


async def fetch_remote_document(url: str, timeout: float) -> tuple[AsyncIterator[bytes], Optional[str]]:
    """
    Open a streamed GET on the stored object, following redirects.

    Failures before the first byte are a 502. The returned iterator owns the
    connection and closes it once the body has been consumed.
    """
    client = httpx.AsyncClient(timeout=timeout, follow_redirects=True)
    try:
        r = await client.send(client.build_request("GET", url), stream=True)
    except httpx.HTTPError as e:
        await client.aclose()
        logger.warning("Fetching document from storage failed: %s", e)
        raise UpstreamStorageError() from e
    if r.is_error:
        await r.aclose()
        await client.aclose()
        logger.warning("Fetching document from storage failed: HTTP %s for %s", r.status_code, url)
        raise UpstreamStorageError()

    async def body() -> AsyncIterator[bytes]:
        try:
            async for chunk in r.aiter_bytes():
                yield chunk
        finally:
            await r.aclose()
            await client.aclose()

    return body(), r.headers.get("content-type")


async def open_document(
    session: AsyncSession,
    record_id: str,
    verification: DocumentVerification,
    *,
    is_admin: bool,
    fetch_timeout: float,
) -> ResolvedDocument:
    app = await _get_or_404(session, record_id)
    if verification.supplied:
        if not verification_matches(app, verification):
            raise Forbidden()
    elif not is_admin:
        raise Forbidden("Verification details are required")

    reference = app.document_ref
    if not reference:
        raise NotFound(MSG_DOCUMENT_NOT_FOUND)
    recorded_type = app.document_content_type or guess_content_type(reference)
    filename = download_filename(app)

    if is_remote_reference(reference):
        chunks, upstream_type = await fetch_remote_document(reference, fetch_timeout)
        content_type = upstream_type
        if not content_type or content_type.startswith(("application/octet-stream", "binary/octet-stream")):
            content_type = recorded_type
        return ResolvedDocument(filename=filename, content_type=content_type, chunks=chunks)

    if not Path(reference).is_file():
        raise NotFound(MSG_DOCUMENT_NOT_FOUND)
    return ResolvedDocument(filename=filename, content_type=recorded_type, path=reference)
