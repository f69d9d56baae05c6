import logging
from datetime import datetime
from typing import List, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File as FastAPIFile, Form, Query, Response, UploadFile
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, field_serializer
from sqlalchemy.orm import Session

from filegate.api.dependencies import get_context, get_db, get_gateway_user_id, get_staged_store
from filegate.core.context import StorageContext
from filegate.core.exceptions import InvalidRequest, NotFound
from filegate.services.metadata_index import DEFAULT_LIMIT, metadata_index
from filegate.storage.staged_store import StagedObjectStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/files", tags=["objects"])


class FileRecordSummary(BaseModel):
    file_id: str
    filename: str
    created_at: datetime
    size: int
    owner_id: str
    task_id: Optional[str] = None

    @field_serializer("created_at")
    def serialize_created_at(self, value: datetime, _info):
        return value.isoformat() if value else None


@router.get("", response_model=List[FileRecordSummary])
def list_objects(
    user_id: Optional[str] = Query(None),
    task_id: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    offset: Optional[str] = Query(None),
    gateway_user_id: Optional[str] = Depends(get_gateway_user_id),
    db: Session = Depends(get_db),
):
    """
    List live objects, newest first.

    ``limit`` and ``offset`` are taken as raw strings: invalid values fall
    back to their defaults instead of failing validation.
    """
    records = metadata_index.list(
        db,
        owner_id=user_id or gateway_user_id,
        task_id=task_id,
        limit=limit if limit is not None else DEFAULT_LIMIT,
        offset=offset if offset is not None else 0,
    )
    return [record.to_summary() for record in records]


@router.post("", response_model=FileRecordSummary, status_code=201)
def upload_object(
    file: Optional[UploadFile] = FastAPIFile(None),
    owner_id: Optional[str] = Form(None),
    task_id: Optional[str] = Form(None),
    gateway_user_id: Optional[str] = Depends(get_gateway_user_id),
    store: StagedObjectStore = Depends(get_staged_store),
    context: StorageContext = Depends(get_context),
    db: Session = Depends(get_db),
):
    """
    Upload a file; owner comes from the form or the X-User-Id header.

    The body is staged in the temp area first and committed by the store.
    """
    if file is None:
        raise InvalidRequest(code="NO_FILE")

    try:
        temp_path, size = store.stage_upload(
            file.file, file.filename, max_bytes=context.settings.MAX_FILE_SIZE
        )
    finally:
        file.file.close()

    return store.create_from_upload(
        db,
        temp_path,
        original_name=file.filename,
        size=size,
        mime_type=file.content_type,
        owner_id=owner_id or gateway_user_id,
        task_id=task_id,
    )


@router.get("/{file_id}")
def download_object(
    file_id: str,
    store: StagedObjectStore = Depends(get_staged_store),
    db: Session = Depends(get_db),
):
    """Stream object content with its stored Content-Type"""
    record, chunks = store.open_for_read(db, file_id)
    return StreamingResponse(
        chunks,
        media_type=record.mime_type,
        headers={"Content-Disposition": f"inline; filename*=UTF-8''{quote(record.filename)}"},
    )


@router.delete("/{file_id}", status_code=204)
def delete_object(
    file_id: str,
    store: StagedObjectStore = Depends(get_staged_store),
    db: Session = Depends(get_db),
):
    """Soft-delete an object; its blob stays on disk"""
    record = metadata_index.get_by_id(db, file_id)
    if record is None or not store.remove(db, file_id):
        raise NotFound("Resource not found")
    logger.info(f"Soft-deleted object {file_id}")
    return Response(status_code=204)
