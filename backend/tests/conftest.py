import pytest
from fastapi.testclient import TestClient

from filegate.core.config import Settings
from filegate.core.database import Base, create_db_engine, create_session_factory
from filegate.main import create_app
from filegate.storage.local_storage import LocalFileStore
from filegate.storage.staged_store import StagedObjectStore


@pytest.fixture
def settings(tmp_path):
    # Dedicated temp directories so tests never touch real storage
    return Settings(
        _env_file=None,
        STORAGE_DIR=str(tmp_path / "storage"),
        S3_STORAGE_DIR=str(tmp_path / "storage"),
        S3_DB_DIR=str(tmp_path / "storage"),
        USE_LOCAL_STORAGE=True,
        ENABLE_SCHEDULER=False,
    )


@pytest.fixture
def local_store(tmp_path):
    store = LocalFileStore(tmp_path / "local")
    store.init()
    return store


@pytest.fixture
def session_factory(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'index.db'}")
    Base.metadata.create_all(bind=engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def staged_store(tmp_path):
    store = StagedObjectStore(tmp_path / "objects")
    store.ensure_dirs()
    return store


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as test_client:
        yield test_client
