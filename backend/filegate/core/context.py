import logging
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from filegate.core.config import Settings
from filegate.core.database import Base, create_db_engine, create_session_factory
from filegate.storage.base import PathKeyedStore
from filegate.storage.local_storage import LocalFileStore
from filegate.storage.s3_storage import S3ObjectStore, create_s3_client
from filegate.storage.staged_store import StagedObjectStore

logger = logging.getLogger(__name__)


class StorageContext:
    """
    Everything the API needs to reach storage, built once per process.

    Local mode: a LocalFileStore for key-addressed files plus a
    StagedObjectStore with its SQL metadata index. Cloud mode: an
    S3ObjectStore only. ``open`` runs at startup, ``close`` at shutdown.
    """

    def __init__(self, settings: Settings, s3_client=None):
        self.settings = settings
        self.local_mode = settings.use_local_storage
        self.engine: Optional[Engine] = None
        self.session_factory: Optional[sessionmaker] = None
        self.staged_store: Optional[StagedObjectStore] = None

        if self.local_mode:
            self.path_store: PathKeyedStore = LocalFileStore(settings.STORAGE_DIR)
            self.staged_store = StagedObjectStore(settings.S3_STORAGE_DIR)
        else:
            client = s3_client or create_s3_client(
                settings.AWS_ACCESS_KEY_ID,
                settings.AWS_SECRET_ACCESS_KEY,
                settings.AWS_REGION,
            )
            self.path_store = S3ObjectStore(
                client, settings.AWS_S3_BUCKET_NAME, settings.PRESIGNED_URL_EXPIRES
            )

    def open(self) -> None:
        """Create directories, the bucket or the index schema; failures are fatal"""
        self.path_store.init()
        if self.staged_store is not None:
            self.staged_store.ensure_dirs()
            self.engine = create_db_engine(self.settings.get_database_url())
            # FileRecord is registered on Base through the staged_store import
            Base.metadata.create_all(bind=self.engine)
            self.session_factory = create_session_factory(self.engine)
        logger.info(f"Storage context opened ({'local' if self.local_mode else 'AWS S3'} mode)")

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None
            self.session_factory = None
        logger.info("Storage context closed")
