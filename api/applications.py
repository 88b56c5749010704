from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import FileResponse, StreamingResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_admin, get_optional_admin, get_settings, get_storage
from config import Settings
from database import get_db
from models import Admin, VisaApplication
from schemas.application import (
    ApplicationCreate,
    ApplicationUpdate,
    DocumentVerification,
    StatusCheck,
    StatusUpdate,
)
from services import applications as lifecycle
from services.errors import DocumentTooLarge, Unauthenticated, ValidationFailed, format_validation_errors
from services.storage import StorageBackend

router = APIRouter(prefix="/applications", tags=["applications"])


def _app_to_response(app: VisaApplication, *, public: bool = False) -> dict[str, Any]:
    """Serialize an application with camelCase keys. The public view hides storage details."""
    out = {
        "id": app.id,
        "name": app.name,
        "applicationId": app.application_id,
        "passportNumber": app.passport_number,
        "nationality": app.nationality,
        "dob": app.dob.isoformat() if app.dob else None,
        "address": app.address,
        "status": app.status,
        "hasDocument": bool(app.document_ref),
        "createdAt": app.created_at.isoformat() if app.created_at else None,
        "updatedAt": app.updated_at.isoformat() if app.updated_at else None,
    }
    if not public:
        out["documentRef"] = app.document_ref
        out["documentProvider"] = app.document_provider
    return out


async def _read_upload(file: Optional[UploadFile], max_bytes: int) -> Optional[lifecycle.DocumentUpload]:
    if file is None or not file.filename:
        return None
    # Never buffer more than one byte past the limit
    data = await file.read(max_bytes + 1)
    if len(data) > max_bytes:
        raise DocumentTooLarge()
    return lifecycle.DocumentUpload(filename=file.filename, content_type=file.content_type, data=data)


@router.post("/check-status")
async def check_status(body: StatusCheck, db: AsyncSession = Depends(get_db)):
    app = await lifecycle.check_status(db, body)
    return _app_to_response(app, public=True)


@router.get("")
async def list_applications(
    db: AsyncSession = Depends(get_db),
    _admin: Admin = Depends(get_current_admin),
):
    apps = await lifecycle.list_applications(db)
    return [_app_to_response(a) for a in apps]


@router.get("/{record_id}")
async def get_application(
    record_id: str,
    db: AsyncSession = Depends(get_db),
    _admin: Admin = Depends(get_current_admin),
):
    app = await lifecycle.get_application(db, record_id)
    return _app_to_response(app)


@router.post("", status_code=201)
async def create_application(
    body: ApplicationCreate,
    db: AsyncSession = Depends(get_db),
    _admin: Admin = Depends(get_current_admin),
):
    app = await lifecycle.create_application(db, body)
    return _app_to_response(app)


@router.post("/with-document", status_code=201)
async def create_application_with_document(
    name: Optional[str] = Form(None),
    applicationId: Optional[str] = Form(None),
    passportNumber: Optional[str] = Form(None),
    nationality: Optional[str] = Form(None),
    dob: Optional[str] = Form(None),
    address: Optional[str] = Form(None),
    document: Optional[UploadFile] = File(None),
    db: AsyncSession = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
    settings: Settings = Depends(get_settings),
    _admin: Admin = Depends(get_current_admin),
):
    fields = {
        "name": name,
        "applicationId": applicationId,
        "passportNumber": passportNumber,
        "nationality": nationality,
        "dob": dob,
        "address": address,
    }
    try:
        body = ApplicationCreate.model_validate({k: v for k, v in fields.items() if v is not None})
    except ValidationError as e:
        raise ValidationFailed(errors=format_validation_errors(e.errors())) from None
    upload = await _read_upload(document, settings.max_upload_bytes)
    app = await lifecycle.create_application_with_document(db, storage, body, upload, settings.max_upload_bytes)
    return _app_to_response(app)


@router.put("/{record_id}")
async def update_application(
    record_id: str,
    body: ApplicationUpdate,
    db: AsyncSession = Depends(get_db),
    _admin: Admin = Depends(get_current_admin),
):
    app = await lifecycle.update_application(db, record_id, body)
    return _app_to_response(app)


@router.patch("/{record_id}/status")
async def update_status(
    record_id: str,
    body: StatusUpdate,
    db: AsyncSession = Depends(get_db),
    _admin: Admin = Depends(get_current_admin),
):
    app = await lifecycle.update_status(db, record_id, body.status)
    return _app_to_response(app)


@router.post("/{record_id}/document")
async def upload_document(
    record_id: str,
    document: Optional[UploadFile] = File(None),
    db: AsyncSession = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
    settings: Settings = Depends(get_settings),
    _admin: Admin = Depends(get_current_admin),
):
    upload = await _read_upload(document, settings.max_upload_bytes)
    if upload is None:
        raise ValidationFailed("No file uploaded")
    app = await lifecycle.attach_document(db, storage, record_id, upload, settings.max_upload_bytes)
    return _app_to_response(app)


@router.delete("/{record_id}")
async def delete_application(
    record_id: str,
    db: AsyncSession = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
    _admin: Admin = Depends(get_current_admin),
):
    await lifecycle.delete_application(db, storage, record_id)
    return {"message": "Application deleted successfully"}


@router.get("/{record_id}/document")
async def download_document(
    record_id: str,
    application_id: Optional[str] = Query(None, alias="applicationId"),
    passport_number: Optional[str] = Query(None, alias="passportNumber"),
    dob: Optional[str] = Query(None),
    nationality: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    admin: Optional[Admin] = Depends(get_optional_admin),
):
    if settings.document_download_requires_auth and admin is None:
        raise Unauthenticated()
    verification = DocumentVerification(
        application_id=application_id,
        passport_number=passport_number,
        dob=dob,
        nationality=nationality,
    )
    doc = await lifecycle.open_document(
        db,
        record_id,
        verification,
        is_admin=admin is not None,
        fetch_timeout=settings.document_fetch_timeout,
    )
    if doc.path is not None:
        return FileResponse(doc.path, media_type=doc.content_type, filename=doc.filename)
    return StreamingResponse(
        doc.chunks,
        media_type=doc.content_type,
        headers={"Content-Disposition": f'attachment; filename="{doc.filename}"'},
    )
