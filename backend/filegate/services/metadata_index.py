import logging
from typing import List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from filegate.core.exceptions import Conflict, StorageFault
from filegate.models.file_record import FileRecord

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
MAX_LIMIT = 1000


def _parse_int(value, default: int) -> int:
    # Unparsable or zero values fall back to the default
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed or default


def clamp_limit(limit) -> int:
    return min(max(_parse_int(limit, DEFAULT_LIMIT), 1), MAX_LIMIT)


def clamp_offset(offset) -> int:
    return max(_parse_int(offset, 0), 0)


class MetadataIndex:
    """
    Queryable record of staged objects.

    Every mutation is a single statement committed on its own, so concurrent
    requests need no application-level locking.
    """

    @staticmethod
    def insert(db: Session, record: FileRecord) -> FileRecord:
        """Insert a new record; a file_id or path collision raises Conflict"""
        db.add(record)
        try:
            db.commit()
        except IntegrityError as e:
            db.rollback()
            logger.error(f"Index conflict for file_id={record.file_id} path={record.path}: {e}")
            raise Conflict(f"File record {record.file_id} collides with an existing record") from e
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to insert file record {record.file_id}: {e}")
            raise StorageFault(f"Failed to insert file record: {e}") from e
        db.refresh(record)
        return record

    @staticmethod
    def list(
        db: Session,
        owner_id: Optional[str] = None,
        task_id: Optional[str] = None,
        limit=DEFAULT_LIMIT,
        offset=0,
    ) -> List[FileRecord]:
        """
        One page of live records, newest first.

        ``limit`` is clamped to [1, 1000] (100 when missing or invalid) and
        ``offset`` to >= 0. file_id breaks ties between equal timestamps so
        consecutive pages never overlap.
        """
        query = db.query(FileRecord).filter(FileRecord.is_deleted.is_(False))
        if owner_id:
            query = query.filter(FileRecord.owner_id == owner_id)
        if task_id:
            query = query.filter(FileRecord.task_id == task_id)

        return (
            query.order_by(FileRecord.created_at.desc(), FileRecord.file_id.desc())
            .limit(clamp_limit(limit))
            .offset(clamp_offset(offset))
            .all()
        )

    @staticmethod
    def get_by_id(db: Session, file_id: str) -> Optional[FileRecord]:
        """Fetch a record whether or not it was soft-deleted"""
        return db.query(FileRecord).filter(FileRecord.file_id == file_id).first()

    @staticmethod
    def soft_delete(db: Session, file_id: str) -> bool:
        """Flag a record as deleted; False when no such record exists"""
        try:
            result = db.execute(
                update(FileRecord)
                .where(FileRecord.file_id == file_id)
                .values(is_deleted=True)
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to soft-delete {file_id}: {e}")
            raise StorageFault(f"Failed to delete file record: {e}") from e
        return result.rowcount > 0

    @staticmethod
    def list_paths(db: Session) -> List[Tuple[str, str, bool]]:
        """(file_id, path, is_deleted) for every record, for reconciliation"""
        rows = db.query(FileRecord.file_id, FileRecord.path, FileRecord.is_deleted).all()
        return [(row.file_id, row.path, row.is_deleted) for row in rows]


metadata_index = MetadataIndex()
