"""
Cleanup: delete stale downloader artifacts from the temp directory.
"""

import logging
import shutil
import time
from pathlib import Path

from clipcutter.core.constants import DOWNLOAD_TEMP_DIR, TEMP_FILE_MAX_AGE_SEC

logger = logging.getLogger(__name__)


def cleanup_temp_downloads(temp_dir: Path | None = None,
                           max_age_sec: float = TEMP_FILE_MAX_AGE_SEC,
                           now: float | None = None) -> int:
    """
    Delete files older than max_age_sec. Younger files may still be in use
    by a running job. Returns the number of entries removed.
    """
    temp_dir = Path(temp_dir or DOWNLOAD_TEMP_DIR)
    if not temp_dir.exists():
        return 0

    cutoff = (now if now is not None else time.time()) - max_age_sec
    removed = 0
    for path in temp_dir.iterdir():
        try:
            if path.stat().st_mtime >= cutoff:
                continue
            if path.is_dir():
                shutil.rmtree(path)
            else:
                path.unlink()
            removed += 1
            logger.debug("Deleted: %s", path)
        except OSError as e:
            logger.warning("Failed to delete %s: %s", path, e)

    if removed:
        logger.info("Removed %d stale temp downloads", removed)
    return removed
