"""
Upload-then-commit object storage.

Uploads land in ``<root>/s3_temp``. Committing one generates a UUID, renames
the temp file to ``<root>/s3_files/<id[:2]>/<id>`` and then inserts its
index row. Clients address objects only by the generated file_id.
"""
import logging
import os
import re
import time
import uuid
from pathlib import Path
from typing import BinaryIO, Iterator, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from filegate.core.exceptions import (
    FileMissing,
    InvalidKey,
    InvalidRequest,
    NotFound,
    StorageError,
    StorageFault,
)
from filegate.models.file_record import (
    DEFAULT_MIME_TYPE,
    MAX_FILENAME_LENGTH,
    MAX_MIME_TYPE_LENGTH,
    FileRecord,
)
from filegate.services.metadata_index import metadata_index
from filegate.storage.key_safety import validate_key
from filegate.storage.utils import copy_stream, iter_file

logger = logging.getLogger(__name__)

_UNSAFE_TEMP_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


def sanitize_display_name(name: Optional[str]) -> str:
    return (name or "file").replace("/", "_").replace("\\", "_")[:MAX_FILENAME_LENGTH]


def sanitize_mime_type(mime_type: Optional[str]) -> str:
    return (mime_type or DEFAULT_MIME_TYPE)[:MAX_MIME_TYPE_LENGTH]


class StagedObjectStore:
    def __init__(self, storage_dir: Union[str, Path]):
        self.storage_dir = Path(storage_dir)
        self.files_dir = self.storage_dir / "s3_files"
        self.temp_dir = self.storage_dir / "s3_temp"

    def ensure_dirs(self) -> None:
        try:
            self.files_dir.mkdir(parents=True, exist_ok=True)
            self.temp_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to initialize object storage at {self.storage_dir}: {e}")
            raise StorageFault(f"Cannot create object storage directories: {e}") from e

    def stage_upload(
        self,
        data: Union[bytes, BinaryIO],
        original_name: Optional[str],
        max_bytes: Optional[int] = None,
    ) -> Tuple[Path, int]:
        """
        Write incoming bytes into the temp area.

        Returns the temp path and the number of bytes written. A partial file
        left by a failed or oversized upload is removed.
        """
        self.ensure_dirs()
        base_name = _UNSAFE_TEMP_CHARS.sub("_", os.path.basename(original_name or "file"))
        temp_path = self.temp_dir / (
            f"upload-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}-{base_name}"
        )
        try:
            with open(temp_path, "xb") as f:
                size = copy_stream(data, f, max_bytes)
        except OSError as e:
            self._discard(temp_path)
            logger.error(f"Failed to stage upload {original_name!r}: {e}")
            raise StorageFault(f"Failed to stage upload: {e}") from e
        except Exception:
            self._discard(temp_path)
            raise
        return temp_path, size

    @staticmethod
    def generate_path() -> Tuple[str, str]:
        """
        New file_id and its sharded relative path.

        The first two hex characters of the UUID pick one of 256 shard
        directories.
        """
        file_id = str(uuid.uuid4())
        return file_id, f"{file_id[:2]}/{file_id}"

    def absolute_path(self, relative_path: str) -> Path:
        """Resolve a stored relative path; refuses anything leaving the files root"""
        try:
            safe = validate_key(relative_path, self.files_dir)
        except InvalidKey as e:
            raise StorageFault(f"Invalid stored path {relative_path!r}") from e
        return self.files_dir / safe

    def move_to_permanent(self, temp_path: Union[str, Path], relative_path: str) -> Path:
        """Rename a temp blob into the files tree, creating the shard directory"""
        target = self.absolute_path(relative_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        os.rename(temp_path, target)
        return target

    def create_from_upload(
        self,
        db: Session,
        temp_path: Union[str, Path],
        original_name: Optional[str],
        size: int,
        mime_type: Optional[str],
        owner_id: Optional[str],
        task_id: Optional[str] = None,
    ) -> dict:
        """
        Commit a staged upload and return its summary.

        Order: owner check, generate id/path, rename blob, insert row. Any
        failure removes a temp file that is still present. If the rename
        succeeded but the insert failed, the blob is left in place without a
        row and reported by reconciliation.
        """
        temp_path = Path(temp_path)
        if not owner_id:
            self._discard(temp_path)
            raise InvalidRequest(code="MISSING_OWNER_ID")

        file_id, relative_path = self.generate_path()
        try:
            self.move_to_permanent(temp_path, relative_path)
        except (OSError, StorageError) as e:
            self._discard(temp_path)
            logger.error(f"Failed to move upload into {relative_path}: {e}")
            if isinstance(e, StorageError):
                raise
            raise StorageFault(f"Failed to commit upload: {e}") from e

        record = FileRecord(
            file_id=file_id,
            filename=sanitize_display_name(original_name),
            path=relative_path,
            size=size,
            mime_type=sanitize_mime_type(mime_type),
            owner_id=owner_id,
            task_id=task_id or None,
        )
        try:
            metadata_index.insert(db, record)
        except StorageError:
            logger.error(
                f"Stranded blob at {relative_path}: index insert failed for file_id={file_id}"
            )
            raise

        logger.info(f"Stored object {file_id} ({size} bytes) for owner {owner_id}")
        return record.to_summary()

    def open_for_read(self, db: Session, file_id: str) -> Tuple[FileRecord, Iterator[bytes]]:
        record = metadata_index.get_by_id(db, file_id)
        if record is None or record.is_deleted:
            raise NotFound("Resource not found")

        absolute = self.absolute_path(record.path)
        try:
            handle = open(absolute, "rb")
        except FileNotFoundError as e:
            logger.warning(f"Blob missing for file_id={file_id} at {record.path}")
            raise FileMissing("Resource not found") from e
        except OSError as e:
            raise StorageFault(f"Failed to open blob for {file_id}: {e}") from e
        return record, iter_file(handle)

    def remove(self, db: Session, file_id: str) -> bool:
        """Soft-delete only; the blob stays on disk"""
        return metadata_index.soft_delete(db, file_id)

    def find_inconsistencies(self, db: Session) -> Tuple[List[str], List[str]]:
        """
        Compare the blob tree with the index.

        Returns (stranded, missing): relative paths on disk with no record,
        and file_ids of live records whose blob is absent. Nothing is changed.
        """
        known = metadata_index.list_paths(db)
        indexed_paths = {path for _, path, _ in known}

        on_disk = set()
        if self.files_dir.exists():
            for blob in self.files_dir.glob("*/*"):
                if blob.is_file():
                    on_disk.add(blob.relative_to(self.files_dir).as_posix())

        stranded = sorted(on_disk - indexed_paths)
        missing = sorted(
            file_id for file_id, path, is_deleted in known
            if not is_deleted and path not in on_disk
        )
        return stranded, missing

    def purge_stale_uploads(self, max_age_seconds: int) -> int:
        """Delete temp files older than ``max_age_seconds``; return how many"""
        if not self.temp_dir.exists():
            return 0
        cutoff = time.time() - max_age_seconds
        removed = 0
        for entry in self.temp_dir.iterdir():
            try:
                if entry.is_file() and entry.stat().st_mtime < cutoff:
                    entry.unlink()
                    removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Could not remove stale upload {entry.name}: {e}")
        return removed

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove temp file {path}: {e}")
