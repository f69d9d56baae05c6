from typing import Iterator, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from filegate.core.context import StorageContext
from filegate.core.exceptions import StorageFault
from filegate.storage.base import PathKeyedStore
from filegate.storage.staged_store import StagedObjectStore


def get_context(request: Request) -> StorageContext:
    """Storage context built at startup and stored on app.state"""
    return request.app.state.context


def get_path_store(context: StorageContext = Depends(get_context)) -> PathKeyedStore:
    return context.path_store


def get_staged_store(context: StorageContext = Depends(get_context)) -> StagedObjectStore:
    if context.staged_store is None:
        raise StorageFault("Object store is not configured")
    return context.staged_store


def get_db(context: StorageContext = Depends(get_context)) -> Iterator[Session]:
    """
    Database session for one request.

    Closed after the response is sent, even when the handler raised.
    """
    if context.session_factory is None:
        raise StorageFault("Metadata index is not open")
    db = context.session_factory()
    try:
        # Code after yield runs when the request completes
        yield db
    finally:
        # Always close session, even if request raises an exception
        db.close()


def get_gateway_user_id(x_user_id: Optional[str] = Header(None)) -> Optional[str]:
    """Caller identity forwarded by the API gateway in X-User-Id"""
    # Opaque string; no authentication happens in this service
    return x_user_id or None
