"""
Background scheduler for periodic maintenance.

Jobs (local mode only):
- Purge temp uploads abandoned before commit
- Reconcile the object blob tree with the metadata index (report only)
"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from filegate.core.context import StorageContext

logger = logging.getLogger(__name__)


def cleanup_stale_uploads_job(context: StorageContext) -> int:
    """
    Remove temp uploads older than TEMP_UPLOAD_MAX_AGE_SECONDS.

    A temp file survives only when the process died between receiving an
    upload and committing it.
    """
    if context.staged_store is None:
        return 0
    removed = context.staged_store.purge_stale_uploads(
        context.settings.TEMP_UPLOAD_MAX_AGE_SECONDS
    )
    if removed:
        logger.info(f"Removed {removed} stale temp upload(s)")
    return removed


def reconcile_objects_job(context: StorageContext) -> dict:
    """
    Log blobs without index rows and live rows without blobs.

    Nothing is deleted: stranded blobs come from an index insert failing
    after the rename, and need an operator decision.
    """
    if context.staged_store is None or context.session_factory is None:
        return {"stranded": [], "missing": []}

    db = context.session_factory()
    try:
        stranded, missing = context.staged_store.find_inconsistencies(db)
    except Exception:
        logger.exception("Error in reconcile_objects_job")
        return {"stranded": [], "missing": []}
    finally:
        db.close()

    for path in stranded:
        logger.warning(f"Stranded blob without index entry: {path}")
    for file_id in missing:
        logger.warning(f"Index entry {file_id} has no blob on disk")
    if not stranded and not missing:
        logger.info("Reconciliation completed: blob tree and index agree")
    return {"stranded": stranded, "missing": missing}


def start_scheduler(context: StorageContext) -> BackgroundScheduler | None:
    """
    Start the maintenance jobs for ``context``.

    Called from the FastAPI lifespan; returns None when there is nothing to
    schedule (cloud mode or ENABLE_SCHEDULER off).
    """
    if not context.settings.ENABLE_SCHEDULER or context.staged_store is None:
        return None

    scheduler = BackgroundScheduler()
    interval = IntervalTrigger(minutes=context.settings.CLEANUP_INTERVAL_MINUTES)
    scheduler.add_job(
        cleanup_stale_uploads_job,
        trigger=interval,
        args=[context],
        id="cleanup_stale_uploads",
        name="Cleanup stale temp uploads",
        replace_existing=True,
    )
    scheduler.add_job(
        reconcile_objects_job,
        trigger=interval,
        args=[context],
        id="reconcile_objects",
        name="Reconcile blobs with metadata index",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        f"Background scheduler started. Maintenance jobs run every "
        f"{context.settings.CLEANUP_INTERVAL_MINUTES} minutes."
    )
    return scheduler


def stop_scheduler(scheduler: BackgroundScheduler | None) -> None:
    if scheduler is not None and scheduler.running:
        scheduler.shutdown()
        logger.info("Background scheduler stopped.")
