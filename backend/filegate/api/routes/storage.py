import logging
from typing import List, Optional
from urllib.parse import quote

from fastapi import APIRouter, Body, Depends, File as FastAPIFile, Request, UploadFile
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from filegate.api.dependencies import get_context, get_path_store
from filegate.core.context import StorageContext
from filegate.core.exceptions import InvalidKey, InvalidRequest, NotFound, StorageError
from filegate.storage.base import FileInfo, PathKeyedStore
from filegate.storage.key_safety import decode_key, validate_key

logger = logging.getLogger(__name__)

# Mounted at /api/storage in local mode and at /api/s3 in cloud mode
router = APIRouter(tags=["storage"])


class UploadedFile(BaseModel):
    key: str
    location: str
    bucket: str
    original_name: str
    size: int
    content_type: str
    uploaded_at: Optional[str] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UploadResponse(BaseModel):
    success: bool = True
    message: str
    file: UploadedFile


class UploadManyResponse(BaseModel):
    success: bool = True
    message: str
    files: List[UploadedFile]


class FileListResponse(BaseModel):
    success: bool = True
    count: int
    files: List[FileInfo]


class FileDetailResponse(BaseModel):
    success: bool = True
    file: FileInfo


class PreviewResponse(BaseModel):
    success: bool = True
    url: str
    expires_in: Optional[int] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DeleteKeysRequest(BaseModel):
    keys: Optional[List[str]] = None


def _client_key(raw: str) -> str:
    """Decode a key taken from the URL and validate it"""
    return validate_key(decode_key(raw))


def _describe_upload(request: Request, info: FileInfo, store: PathKeyedStore) -> UploadedFile:
    return UploadedFile(
        key=info.key,
        location=request.url_for("get_file", key=quote(info.key, safe="")).path,
        bucket=store.bucket_name,
        original_name=info.original_name,
        size=info.size,
        content_type=info.content_type,
        uploaded_at=info.metadata.get("uploadedAt") or info.metadata.get("uploadedat"),
    )


def _save(upload: UploadFile, store: PathKeyedStore, context: StorageContext, field_name: str) -> FileInfo:
    try:
        return store.save_upload(
            upload.file,
            upload.filename,
            upload.content_type,
            field_name=field_name,
            max_bytes=context.settings.MAX_FILE_SIZE,
        )
    finally:
        upload.file.close()


@router.post("/upload", response_model=UploadResponse)
def upload_file(
    request: Request,
    file: Optional[UploadFile] = FastAPIFile(None),
    store: PathKeyedStore = Depends(get_path_store),
    context: StorageContext = Depends(get_context),
):
    """Upload a single file"""
    if file is None:
        raise InvalidRequest("No file uploaded", code="NO_FILE")
    info = _save(file, store, context, "file")
    logger.info(f"Uploaded {info.key} ({info.size} bytes)")
    return UploadResponse(
        message="File uploaded successfully",
        file=_describe_upload(request, info, store),
    )


@router.post("/upload-multiple", response_model=UploadManyResponse)
def upload_files(
    request: Request,
    files: Optional[List[UploadFile]] = FastAPIFile(None),
    store: PathKeyedStore = Depends(get_path_store),
    context: StorageContext = Depends(get_context),
):
    """Upload up to MAX_FILES_PER_UPLOAD files in one request"""
    if not files:
        raise InvalidRequest("No files uploaded", code="NO_FILE")
    if len(files) > context.settings.MAX_FILES_PER_UPLOAD:
        raise InvalidRequest(
            f"At most {context.settings.MAX_FILES_PER_UPLOAD} files per upload",
            code="TOO_MANY_FILES",
        )

    uploaded = [_describe_upload(request, _save(f, store, context, "files"), store) for f in files]
    return UploadManyResponse(
        message=f"{len(uploaded)} file(s) uploaded successfully",
        files=uploaded,
    )


@router.get("/files", response_model=FileListResponse)
def list_files(store: PathKeyedStore = Depends(get_path_store)):
    """List all stored files, newest first"""
    files = store.list()
    return FileListResponse(count=len(files), files=files)


# Registered before /files/{key} so "/view" is not swallowed by the key
@router.get("/files/{key:path}/view", name="view_file")
def view_file(key: str, store: PathKeyedStore = Depends(get_path_store)):
    """Serve file content inline for previews"""
    info, chunks = store.open(_client_key(key))
    return StreamingResponse(
        chunks,
        media_type=info.content_type,
        headers={"Content-Length": str(info.size)},
    )


@router.get("/files/{key:path}", response_model=FileDetailResponse, name="get_file")
def get_file(key: str, store: PathKeyedStore = Depends(get_path_store)):
    """Get file details"""
    info = store.get(_client_key(key))
    if info is None:
        raise NotFound()
    return FileDetailResponse(file=info)


@router.get("/download/{key:path}")
def download_file(key: str, store: PathKeyedStore = Depends(get_path_store)):
    """Download a file as an attachment under its original name"""
    info, chunks = store.open(_client_key(key))
    return StreamingResponse(
        chunks,
        media_type=info.content_type,
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(info.original_name)}",
            "Content-Length": str(info.size),
        },
    )


@router.get("/preview/{key:path}", response_model=PreviewResponse)
def preview_file(
    key: str,
    request: Request,
    store: PathKeyedStore = Depends(get_path_store),
):
    """
    URL a browser can load the file from.

    S3 hands out a presigned URL; local storage points at the view route,
    which never expires.
    """
    safe_key = _client_key(key)
    if store.get(safe_key) is None:
        raise NotFound()

    url = store.presigned_url(safe_key)
    if url is None:
        url = str(request.url_for("view_file", key=quote(safe_key, safe="")))
    return PreviewResponse(url=url, expires_in=store.presigned_url_expires)


@router.delete("/files/{key:path}")
def delete_file(key: str, store: PathKeyedStore = Depends(get_path_store)):
    """Delete a file and its metadata; deleting a missing key succeeds"""
    safe_key = _client_key(key)
    store.delete(safe_key)
    return {"success": True, "message": "File deleted successfully", "key": safe_key}


@router.delete("/files")
def delete_files(
    payload: Optional[DeleteKeysRequest] = Body(None),
    store: PathKeyedStore = Depends(get_path_store),
):
    """
    Delete several keys at once.

    Each key is handled on its own; rejected keys are reported in
    ``errors`` without stopping the rest.
    """
    if payload is None or not payload.keys:
        raise InvalidRequest("No keys provided", code="NO_KEYS")

    deleted = []
    errors = []
    for raw_key in payload.keys:
        try:
            safe_key = _client_key(raw_key)
            store.delete(safe_key)
            deleted.append({"key": safe_key})
        except InvalidKey:
            errors.append({"key": raw_key, "error": "Invalid key"})
        except StorageError as e:
            logger.error(f"Bulk delete failed for {raw_key!r}: {e}")
            errors.append({"key": raw_key, "error": "Failed to delete file"})

    response = {
        "success": True,
        "message": f"{len(deleted)} file(s) deleted successfully",
        "deleted": deleted,
    }
    if errors:
        response["errors"] = errors
    return response
