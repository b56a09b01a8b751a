"""
Celery tasks for exporting stored collections.

This module contains Celery tasks for automatic and manual creation of JSON
snapshots of the collections store. Tasks use functions from the
utils.exporter module and retry on failures.

Attributes:
    logger: Logger for registering export events.
    celery_app: Celery application instance imported from configuration.

Functions:
    create_collections_export: Task for scheduled export creation.
    manual_export: Task for manual export creation.
"""

from mlautos.config.celery_config import celery_app
from mlautos.core.storage import SQLKeyValueStore
from mlautos.utils.exporter import cleanup_old_exports, export_collections
from mlautos.utils.logger import get_logger

logger = get_logger(__name__)


@celery_app.task(
    bind=True, max_retries=3, name="mlautos.tasks.export.create_collections_export"
)
def create_collections_export(self):
    """
    Task for creating the collections export on schedule.

    Writes the snapshot and removes outdated ones. On failure the task is
    retried up to three times with exponential delay (60s, 120s, 240s).

    Returns:
        dict: {"status": "success", "file": path} or {"status": "error", "message": ...}.
    """
    logger.info("Starting collections export task")

    export_file = export_collections(SQLKeyValueStore())
    cleanup_old_exports()

    if export_file:
        return {"status": "success", "file": str(export_file)}

    logger.error("Failed to create collections export")
    # Retry task on error with exponential delay
    self.retry(countdown=60 * (2**self.request.retries))
    return {"status": "error", "message": "Failed to create collections export"}


@celery_app.task(name="mlautos.tasks.export.manual_export")
def manual_export():
    """
    Task for manual export creation, without retries or cleanup.

    Examples:
        >>> result = manual_export.delay()
    """
    logger.info("Starting manual collections export")
    export_file = export_collections(SQLKeyValueStore())
    if export_file:
        return {"status": "success", "file": str(export_file)}
    return {"status": "error", "message": "Failed to create collections export"}
