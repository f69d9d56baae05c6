import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, BinaryIO, Dict, Iterator, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel

from filegate.storage.key_safety import sanitize_upload_name

DEFAULT_CONTENT_TYPE = "application/octet-stream"
STREAM_CHUNK_SIZE = 64 * 1024


class FileInfo(BaseModel):
    """
    Description of one stored blob in a path-keyed backend.

    Serialized with camelCase names (``lastModified``, ``contentType``...)
    to keep the JSON contract of the storage API.
    """
    key: str
    size: int
    last_modified: datetime
    etag: str
    content_type: str = DEFAULT_CONTENT_TYPE
    original_name: str
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @field_serializer("last_modified")
    def serialize_last_modified(self, value: datetime, _info):
        return value.isoformat() if value else None


class PathKeyedStore(ABC):
    """
    Storage backend addressed by client-visible keys.

    The HTTP layer is written against this interface only; the concrete
    backend (local filesystem or S3) is picked once at startup.
    """

    def __init__(self):
        self._stamp_lock = threading.Lock()
        self._last_stamp = 0

    @abstractmethod
    def init(self) -> None:
        """Prepare the backend (create directories, check the bucket)."""

    def _next_stamp(self) -> int:
        # Milliseconds, strictly increasing per store so keys never repeat
        with self._stamp_lock:
            stamp = max(int(time.time() * 1000), self._last_stamp + 1)
            self._last_stamp = stamp
            return stamp

    def build_key(self, original_name: Optional[str]) -> str:
        """Generate a fresh key for an upload of ``original_name``."""
        return f"{self._next_stamp()}-{sanitize_upload_name(original_name)}"

    @abstractmethod
    def put(
        self,
        key: str,
        data: Union[bytes, BinaryIO],
        metadata: Dict[str, Any],
        max_bytes: Optional[int] = None,
    ) -> int:
        """Store the blob under ``key`` with its metadata; return bytes written."""

    @abstractmethod
    def get(self, key: str) -> Optional[FileInfo]:
        """Return info for ``key`` or None when the blob does not exist."""

    @abstractmethod
    def list(self) -> List[FileInfo]:
        """All stored blobs, newest first."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove the blob and its metadata. Missing files are not an error."""

    @abstractmethod
    def open(self, key: str) -> Tuple[FileInfo, Iterator[bytes]]:
        """Return info and a chunk iterator over the content, or raise NotFound."""

    def presigned_url(self, key: str) -> Optional[str]:
        """Time-limited direct URL, when the backend can issue one."""
        return None

    @property
    def presigned_url_expires(self) -> Optional[int]:
        return None

    @property
    def bucket_name(self) -> str:
        return "local-storage"

    def save_upload(
        self,
        data: Union[bytes, BinaryIO],
        original_name: Optional[str],
        content_type: Optional[str],
        field_name: str = "file",
        max_bytes: Optional[int] = None,
    ) -> FileInfo:
        """
        Store an upload under a freshly generated key and return its info.

        The sidecar metadata mirrors what the upload carried so downloads can
        restore the original name and content type.
        """
        key = self.build_key(original_name)
        metadata = {
            "fieldName": field_name,
            "originalName": original_name or key,
            "contentType": content_type or DEFAULT_CONTENT_TYPE,
            "uploadedAt": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }
        size = self.put(key, data, metadata, max_bytes=max_bytes)
        stored = self.get(key)
        if stored is not None:
            return stored
        # Blob was deleted right after the write; report what was stored
        metadata["size"] = size
        return FileInfo(
            key=key,
            size=size,
            last_modified=datetime.now(timezone.utc),
            etag='""',
            content_type=metadata["contentType"],
            original_name=metadata["originalName"],
            metadata=metadata,
        )
