import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from filegate.api.routes import objects, storage
from filegate.core.config import Settings, get_settings
from filegate.core.context import StorageContext
from filegate.core.exceptions import StorageError, StorageFault
from filegate.core.scheduler import start_scheduler, stop_scheduler

logger = logging.getLogger(__name__)


async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    """
    Render core errors as ``{"error", "code"}`` JSON.

    Storage faults are logged with their cause and reported opaquely.
    """
    if isinstance(exc, StorageFault):
        logger.error(f"{request.method} {request.url.path} failed: {exc}", exc_info=exc)
        message = exc.error
    else:
        message = str(exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": message, "code": exc.code},
    )


def create_app(settings: Optional[Settings] = None, context: Optional[StorageContext] = None) -> FastAPI:
    """
    Build the API for one storage mode.

    The backend is chosen here, once: local mode serves key-addressed files
    at /api/storage and indexed objects at /api/s3; cloud mode serves the
    key-addressed API over S3 at /api/s3.
    """
    # Tests pass their own settings and context; production reads .env once
    settings = settings or get_settings()
    context = context or StorageContext(settings)
    logging.getLogger("filegate").setLevel(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup: open storage (fatal on failure) and start maintenance jobs
        Shutdown: stop jobs and release the database engine
        """
        # Startup - a storage failure here aborts the process
        context.open()
        scheduler = start_scheduler(context)
        yield
        # Shutdown
        stop_scheduler(scheduler)
        context.close()

    app = FastAPI(
        title="Filegate Storage API",
        description="File storage gateway over local and S3-style backends",
        version="1.0.0",
        lifespan=lifespan,
    )
    # Route dependencies read the context from app.state
    app.state.context = context

    # CORS middleware - allows the browser client to call the API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),  # List of allowed frontend URLs
        allow_credentials=True,  # Allow cookies/auth headers
        allow_methods=["*"],  # Allow all HTTP methods
        allow_headers=["*"],  # Allow all headers
    )
    # Every StorageError becomes {"error", "code"} with its own status
    app.add_exception_handler(StorageError, storage_error_handler)

    # Register API route modules - one backend per process, never re-checked per request
    if context.local_mode:
        logger.info("Using S3-like storage (local files + SQL metadata index)")
        app.include_router(objects.router, prefix="/api/s3")
        app.include_router(storage.router, prefix="/api/storage")
    else:
        logger.info(f"Using AWS S3 bucket {settings.AWS_S3_BUCKET_NAME!r}")
        app.include_router(storage.router, prefix="/api/s3")

    @app.get("/", include_in_schema=False)
    async def root():
        """Redirect to the browser client"""
        return RedirectResponse(url=settings.CLIENT_URL, status_code=302)

    @app.get("/api/health")
    async def health():
        """Health check endpoint - used by monitoring/deployment tools"""
        return {"status": "ok", "message": "S3 Storage API is running"}

    return app
