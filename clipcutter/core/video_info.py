"""
Video metadata fetching via yt-dlp --dump-json.
"""

import json
import logging
import threading
from typing import Optional

from clipcutter.core.constants import (
    METADATA_TIMEOUT, SAFETY_REFERER, SAFETY_DELAY_RANGE,
)
from clipcutter.core.content_cache import ContentCache
from clipcutter.core.download_video import classify_tool_error
from clipcutter.core.error_codes import ToolReportedFailure
from clipcutter.core.models import VideoInfo
from clipcutter.core.process_runner import ProcessInvocation, run_process
from clipcutter.core.safety import pick_user_agent, safety_delay
from clipcutter.core.url_parse import validate_video_url

logger = logging.getLogger(__name__)


def fetch_video_info(url: str, ytdlp_path: str,
                     cache: Optional[ContentCache] = None,
                     cancel_event: Optional[threading.Event] = None,
                     timeout: float = METADATA_TIMEOUT,
                     delay_range: tuple[float, float] = SAFETY_DELAY_RANGE,
                     runner=run_process) -> VideoInfo:
    """
    Fetch title, duration and available heights for a video.
    Served from the metadata cache when a fresh record exists; otherwise
    yt-dlp runs after the same random delay as a download.
    """
    video_id = validate_video_url(url)
    if cache is not None:
        cached = cache.lookup_metadata_only(video_id)
        if cached is not None:
            logger.info("Using cached metadata for %s", video_id)
            return cached

    safety_delay(cancel_event, delay_range=delay_range)

    args = (
        "--dump-json",
        "--no-playlist",
        "--skip-download",
        "--user-agent", pick_user_agent(),
        "--referer", SAFETY_REFERER,
        url,
    )
    outcome = runner(ProcessInvocation(executable=ytdlp_path, args=args, timeout=timeout),
                     cancel_event)

    if not outcome.success:
        raw = outcome.error_text.strip() or outcome.output_text.strip() or "Unknown error"
        raise ToolReportedFailure(classify_tool_error(raw),
                                  exit_code=outcome.exit_code, details=raw)

    try:
        data = json.loads(outcome.output_text)
    except ValueError as e:
        raise ToolReportedFailure("Failed to read video information",
                                  details=str(e)) from e

    info = VideoInfo.from_ytdlp(data)
    if not info.id and video_id:
        info.id = video_id

    if cache is not None:
        cache.save_metadata(info)
    return info
