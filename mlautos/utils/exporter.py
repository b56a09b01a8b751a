"""
Module for exporting stored collections.

This module writes JSON snapshots of the key-value store and batch reports
to EXPORTS_DIR and manages their storage, removing snapshots older than a
retention period.

Attributes:
    logger: Logger for registering export events.
    EXPORTS_DIR: Directory for storing exports, imported from settings.

Functions:
    export_collections: Writes every stored collection to one JSON file.
    save_batch_summary: Writes the report of a batch scrape.
    cleanup_old_exports: Removes exports created before specified period.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from mlautos.config.settings import EXPORTS_DIR
from mlautos.core.exceptions import StorageError
from mlautos.core.storage import KeyValueStore
from mlautos.utils.logger import get_logger

logger = get_logger(__name__)

EXPORT_PREFIX = "mlautos_export_"
BATCH_PREFIX = "mlautos_batch_"


def _write_json(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)


def export_collections(
    store: KeyValueStore, exports_dir: Path = EXPORTS_DIR
) -> Optional[Path]:
    """
    Export every stored collection to a JSON file.

    Forms the filename with current date and time. Collections that cannot
    be read are listed under "errors" instead of failing the export.

    Args:
        store (KeyValueStore): Store to export.
        exports_dir (Path): Target directory.

    Returns:
        Optional[Path]: Path of the written file, None on error.
    """
    try:
        collections: Dict[str, Any] = {}
        errors: Dict[str, str] = {}
        for key in store.list():
            try:
                value = store.get(key)
            except StorageError as e:
                logger.error(f"Skipping unreadable collection {key}: {e}")
                errors[key] = str(e)
                continue
            if value is not None:
                collections[key] = value

        timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        export_file = exports_dir / f"{EXPORT_PREFIX}{timestamp}.json"
        _write_json(
            export_file,
            {
                "exportedAt": datetime.now().astimezone().isoformat(),
                "totalCollections": len(collections),
                "totalCars": sum(c.get("count") or 0 for c in collections.values()),
                "collections": collections,
                "errors": errors,
            },
        )
        logger.info(f"Collections export successfully created: {export_file}")
        return export_file
    except (StorageError, OSError, TypeError, ValueError):
        logger.error("Error creating collections export", exc_info=True)
        return None


def save_batch_summary(
    summary: Dict[str, Any], exports_dir: Path = EXPORTS_DIR
) -> Optional[Path]:
    """Write a batch report next to the collection exports."""
    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    summary_file = exports_dir / f"{BATCH_PREFIX}{timestamp}.json"
    try:
        _write_json(summary_file, summary)
    except (OSError, TypeError, ValueError):
        logger.error("Error saving batch summary", exc_info=True)
        return None
    logger.info(f"Batch summary saved: {summary_file}")
    return summary_file


def cleanup_old_exports(days_to_keep: int = 30, exports_dir: Path = EXPORTS_DIR) -> int:
    """
    Removes old exports.

    Recognizes only files with the export or batch prefix and the '.json'
    extension; file age is taken from the last modification time.

    Args:
        days_to_keep (int, optional): Number of days to keep exports.
        exports_dir (Path): Directory to clean.

    Returns:
        int: Number of removed files.
    """
    removed = 0
    now = datetime.now()
    try:
        for pattern in (f"{EXPORT_PREFIX}*.json", f"{BATCH_PREFIX}*.json"):
            for export_file in exports_dir.glob(pattern):
                file_time = datetime.fromtimestamp(export_file.stat().st_mtime)
                if (now - file_time).days > days_to_keep:
                    export_file.unlink()
                    removed += 1
                    logger.info(f"Removed old export: {export_file}")
    except OSError:
        logger.error("Error cleaning up old exports", exc_info=True)
    return removed
