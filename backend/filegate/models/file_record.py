import uuid
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Boolean, Column, DateTime, String

from filegate.core.database import Base

DEFAULT_MIME_TYPE = "application/octet-stream"
MAX_FILENAME_LENGTH = 255
MAX_MIME_TYPE_LENGTH = 100


def _utcnow():
    return datetime.now(timezone.utc)


class FileRecord(Base):
    """
    Index entry for a blob in the staged object store.

    The blob itself lives on disk at ``path`` (relative to the object files
    root). Rows are never removed; deletion only sets ``is_deleted``.
    """
    __tablename__ = "files"

    # Server-generated UUID4 - clients never choose it
    file_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # Display name, separators replaced and capped at 255 characters
    filename = Column(String(MAX_FILENAME_LENGTH), nullable=False)
    # "<first two chars of file_id>/<file_id>" - assigned once, never updated
    path = Column(String, nullable=False, unique=True)
    size = Column(BigInteger, nullable=False)
    mime_type = Column(String(MAX_MIME_TYPE_LENGTH), nullable=False, default=DEFAULT_MIME_TYPE)
    # Set in Python with microseconds so listings order uploads within a second
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    owner_id = Column(String, nullable=False, index=True)
    task_id = Column(String, nullable=True, index=True)
    is_deleted = Column(Boolean, nullable=False, default=False, index=True)

    def to_summary(self) -> dict:
        return {
            "file_id": self.file_id,
            "filename": self.filename,
            "created_at": self.created_at,
            "size": self.size,
            "owner_id": self.owner_id,
            "task_id": self.task_id,
        }

    def __repr__(self):
        return f"<FileRecord(file_id={self.file_id}, path={self.path}, is_deleted={self.is_deleted})>"
