import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, BinaryIO, Dict, Iterator, List, Optional, Tuple, Union

from filegate.core.exceptions import InvalidKey, NotFound, StorageFault
from filegate.storage.base import DEFAULT_CONTENT_TYPE, FileInfo, PathKeyedStore
from filegate.storage.key_safety import validate_key
from filegate.storage.utils import copy_stream, iter_file

logger = logging.getLogger(__name__)


class LocalFileStore(PathKeyedStore):
    """
    Blobs under ``<root>/files`` with a JSON sidecar per key under
    ``<root>/metadata``.

    Each blob is named by its key; the sidecar lives at
    ``metadata/<key>.json``. A blob without a sidecar is still served, with
    default content type and its key as original name.
    """

    def __init__(self, storage_dir: Union[str, Path]):
        self.storage_dir = Path(storage_dir)
        self.files_dir = self.storage_dir / "files"
        self.metadata_dir = self.storage_dir / "metadata"
        super().__init__()

    def init(self) -> None:
        try:
            self.files_dir.mkdir(parents=True, exist_ok=True)
            self.metadata_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to initialize local storage at {self.storage_dir}: {e}")
            raise StorageFault(f"Cannot create storage directories: {e}") from e
        logger.info(f"Local storage initialized: {self.storage_dir}")

    def file_path(self, key: str) -> Path:
        """Get full path to a blob; raises InvalidKey for unsafe keys"""
        return self.files_dir / validate_key(key, self.files_dir)

    def metadata_path(self, key: str) -> Path:
        return self.metadata_dir / f"{validate_key(key, self.files_dir)}.json"

    def put(
        self,
        key: str,
        data: Union[bytes, BinaryIO],
        metadata: Dict[str, Any],
        max_bytes: Optional[int] = None,
    ) -> int:
        file_path = self.file_path(key)
        try:
            # Fails when a path component is an existing blob
            file_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Cannot create parent directory for {key}: {e}")
            raise StorageFault(f"Cannot create parent directory for {key}: {e}") from e

        try:
            # "xb" refuses to overwrite an existing blob
            with open(file_path, "xb") as f:
                written = copy_stream(data, f, max_bytes)
        except FileExistsError as e:
            raise StorageFault(f"Blob already exists for key {key}") from e
        except OSError as e:
            self._discard(file_path)
            logger.error(f"Failed to write blob {key}: {e}")
            raise StorageFault(f"Failed to write blob {key}: {e}") from e
        except Exception:
            self._discard(file_path)
            raise

        self.save_metadata(key, {**metadata, "size": written})
        return written

    def save_metadata(self, key: str, metadata: Dict[str, Any]) -> bool:
        """
        Write the sidecar for ``key``.

        A failed write is logged and reported as False; the blob stays and
        is served with default metadata.
        """
        metadata_path = self.metadata_path(key)
        try:
            metadata_path.parent.mkdir(parents=True, exist_ok=True)
            metadata_path.write_text(json.dumps(metadata, indent=2), encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to write metadata for {key}: {e}")
            return False
        return True

    def get_metadata(self, key: str) -> Optional[Dict[str, Any]]:
        metadata_path = self.metadata_path(key)
        try:
            data = json.loads(metadata_path.read_text(encoding="utf-8"))
        except (FileNotFoundError, NotADirectoryError):
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable metadata for {key}: {e}")
            return None
        return data if isinstance(data, dict) else None

    def _build_info(self, key: str, stats: os.stat_result) -> FileInfo:
        metadata = self.get_metadata(key) or {}
        return FileInfo(
            key=key,
            size=stats.st_size,
            last_modified=datetime.fromtimestamp(stats.st_mtime, tz=timezone.utc),
            etag=f'"{int(stats.st_mtime * 1000)}"',
            content_type=metadata.get("contentType") or DEFAULT_CONTENT_TYPE,
            original_name=metadata.get("originalName") or key,
            metadata=metadata,
        )

    def get(self, key: str) -> Optional[FileInfo]:
        file_path = self.file_path(key)
        try:
            stats = file_path.stat()
        except (FileNotFoundError, NotADirectoryError):
            # A path component that is a blob means the key cannot exist
            return None
        except OSError as e:
            raise StorageFault(f"Failed to stat {key}: {e}") from e
        if not file_path.is_file():
            return None
        return self._build_info(key, stats)

    def open(self, key: str) -> Tuple[FileInfo, Iterator[bytes]]:
        info = self.get(key)
        if info is None:
            raise NotFound()
        try:
            handle = open(self.file_path(key), "rb")
        except (FileNotFoundError, NotADirectoryError) as e:
            # Deleted between stat and open
            raise NotFound() from e
        return info, iter_file(handle)

    def list(self) -> List[FileInfo]:
        """
        Every blob in the files root, newest first.

        Listing is best effort: a failing directory read is logged and
        returns an empty list so the API stays available.
        """
        try:
            entries = list(os.scandir(self.files_dir))
        except FileNotFoundError:
            logger.info(f"Files directory {self.files_dir} does not exist yet")
            return []
        except OSError:
            logger.exception(f"Listing failed for {self.files_dir}")
            return []

        files = []
        for entry in entries:
            try:
                if entry.is_dir():
                    continue
                stats = entry.stat()
                files.append(self._build_info(validate_key(entry.name, self.files_dir), stats))
            except InvalidKey:
                logger.warning(f"Skipping entry with unsafe name: {entry.name!r}")
            except FileNotFoundError:
                # Removed while listing
                continue
            except OSError as e:
                logger.warning(f"Skipping unreadable entry {entry.name!r}: {e}")

        return sorted(files, key=lambda info: info.last_modified, reverse=True)

    def delete(self, key: str) -> None:
        """Delete blob and sidecar; either may already be gone"""
        failures = []
        for path in (self.file_path(key), self.metadata_path(key)):
            try:
                path.unlink()
            except (FileNotFoundError, NotADirectoryError, IsADirectoryError):
                # Absent, or the key names a directory or sits under a blob
                pass
            except OSError as e:
                logger.error(f"Failed to delete {path}: {e}")
                failures.append(str(e))
        if failures:
            raise StorageFault(f"Failed to delete {key}: {'; '.join(failures)}")

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink()
        except (FileNotFoundError, NotADirectoryError):
            pass
        except OSError as e:
            logger.warning(f"Could not remove partial file {path}: {e}")
