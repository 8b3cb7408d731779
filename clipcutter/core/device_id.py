"""
Stable per-installation device identifier, persisted on first use.
"""

import logging
import uuid
from pathlib import Path

from clipcutter.core.constants import DEVICE_ID_PATH

logger = logging.getLogger(__name__)


def get_device_id(path: Path | None = None) -> str:
    path = path or DEVICE_ID_PATH
    try:
        existing = path.read_text().strip()
    except FileNotFoundError:
        existing = ""
    except OSError as e:
        logger.warning("Failed to read device id: %s", e)
        existing = ""
    if existing:
        return existing

    device_id = str(uuid.uuid4()).upper()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(device_id)
        logger.info("Generated new device id")
    except OSError as e:
        # Still usable for this run; a new id is generated next time
        logger.warning("Failed to persist device id: %s", e)
    return device_id
