"""
Video download via yt-dlp.

The downloader runs with merged stdout/stderr so progress lines and errors
arrive in order. Failures are translated into user-facing messages by
classify_tool_error(); expired-fragment failures are retried.
"""

import logging
import random
import threading
import uuid
from pathlib import Path
from typing import Callable, Optional

from clipcutter.core.constants import (
    StreamMode, DOWNLOAD_TIMEOUT, DOWNLOAD_TEMP_DIR, DEFAULT_HEIGHT,
    SAFETY_DELAY_RANGE, SAFETY_SLEEP_INTERVAL, SAFETY_MAX_SLEEP_INTERVAL,
    SAFETY_REFERER, MAX_DOWNLOAD_ATTEMPTS, DOWNLOAD_RETRY_DELAY,
)
from clipcutter.core.content_cache import ContentCache
from clipcutter.core.error_codes import JobCancelled, ToolReportedFailure
from clipcutter.core.models import ClipJob
from clipcutter.core.process_runner import ProcessInvocation, run_process
from clipcutter.core.progress_parse import parse_download_progress
from clipcutter.core.safety import pick_user_agent, safety_delay

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

# (needles, message); every needle must appear, checked in order
_ERROR_RULES = [
    (("HTTP Error 429",),
     "YouTube has temporarily blocked downloads from your IP. "
     "Please wait a few hours before trying again."),
    (("Too Many Requests",),
     "YouTube has temporarily blocked downloads from your IP. "
     "Please wait a few hours before trying again."),
    (("Sign in to confirm you're not a bot",),
     "YouTube is requiring verification. This usually means too many "
     "downloads. Please wait before trying again."),
    (("Sign in to confirm your age",),
     "This video is age-restricted. YouTube requires sign-in which is not supported."),
    (("age-restricted",),
     "This video is age-restricted. YouTube requires sign-in which is not supported."),
    (("Private video",),
     "This video is private and cannot be downloaded."),
    (("geo-restricted",),
     "This video is not available in your region."),
    (("not available in your country",),
     "This video is not available in your region."),
    (("HTTP Error 403",),
     "Access denied. The video may be restricted or removed."),
    (("Video unavailable",),
     "This video is unavailable or has been removed."),
    (("members-only",),
     "This video is for members only and cannot be downloaded."),
    (("HTTP Error 404",),
     "Video not found. Please check the URL."),
    (("No video formats found",),
     "No downloadable video formats found. The video may be restricted."),
]


def build_format_selector(quality: str) -> str:
    """
    yt-dlp --format expression for a quality label such as "1080p" or "best".
    Unknown labels fall back to the 720p chain.
    """
    label = (quality or "").strip().lower()
    if label == "best":
        return "bestvideo+bestaudio/best"

    height = DEFAULT_HEIGHT
    if label.endswith("p") and label[:-1].isdigit():
        height = int(label[:-1])
    elif label:
        logger.warning("Unknown quality %r, using %dp", quality, DEFAULT_HEIGHT)

    return (f"bestvideo[height<={height}]+bestaudio[ext=m4a]/"
            f"bestvideo[height<={height}]+bestaudio/"
            f"best[height<={height}]/best")


def classify_tool_error(text: str) -> str:
    """Map raw downloader output to a message a user can act on."""
    for needles, message in _ERROR_RULES:
        if all(n in text for n in needles):
            return message
    return text


def is_fragment_error(text: str) -> bool:
    """Expired CDN fragment tokens; a fresh attempt usually succeeds."""
    return ("fragment" in text and "403" in text) or ("100%" in text and "ERROR" in text)


def build_downloader_args(url: str, quality: str, ffmpeg_path: str,
                          output_template: str, user_agent: str,
                          attempt: int = 1) -> list[str]:
    args = [
        "--format", build_format_selector(quality),
        "--ffmpeg-location", ffmpeg_path,
        "--output", output_template,
        "--no-playlist",
        "--newline",
        "--progress",
        "--sleep-interval", str(SAFETY_SLEEP_INTERVAL),
        "--max-sleep-interval", str(SAFETY_MAX_SLEEP_INTERVAL),
        "--user-agent", user_agent,
        "--referer", SAFETY_REFERER,
    ]
    if attempt > 1:
        args.extend([
            "--retries", "10",
            "--fragment-retries", "10",
            "--retry-sleep", "3",
        ])
    args.append(url)
    return args


def _run_attempt(job: ClipJob, ytdlp_path: str, ffmpeg_path: str, temp_dir: Path,
                 attempt: int, timeout: float, cancel_event, on_progress,
                 runner, rng, delay_range) -> Path:
    safety_delay(cancel_event, rng=rng, delay_range=delay_range)

    base_name = uuid.uuid4().hex
    output_template = str(temp_dir / f"{base_name}.%(ext)s")
    user_agent = pick_user_agent(rng)

    def on_output(line: str):
        if "ERROR" in line:
            logger.warning("yt-dlp: %s", line)
        pct = parse_download_progress(line)
        if pct is not None and on_progress is not None:
            on_progress(pct / 100.0)

    invocation = ProcessInvocation(
        executable=ytdlp_path,
        args=tuple(build_downloader_args(
            job.url, job.quality, ffmpeg_path, output_template, user_agent, attempt)),
        timeout=timeout,
        stream_mode=StreamMode.MERGED,
        on_output=on_output,
    )
    outcome = runner(invocation, cancel_event)

    if not outcome.success:
        raw = outcome.output_text.strip() or "Unknown error"
        logger.error("yt-dlp failed with exit code %d", outcome.exit_code)
        raise ToolReportedFailure(classify_tool_error(raw),
                                  exit_code=outcome.exit_code, details=raw)

    # yt-dlp picks the container, so find the file by its unique prefix
    produced = sorted(p for p in temp_dir.glob(f"{base_name}.*")
                      if not p.name.endswith((".part", ".ytdl")))
    if not produced:
        raw = outcome.output_text.strip()
        logger.error("yt-dlp reported success but no %s.* file exists in %s",
                     base_name, temp_dir)
        raise ToolReportedFailure("Downloaded file not found. Please try again.",
                                  exit_code=outcome.exit_code, details=raw)
    return produced[0]


def download_video(job: ClipJob, ytdlp_path: str, ffmpeg_path: str,
                   temp_dir: Path | None = None,
                   cache: Optional[ContentCache] = None,
                   cancel_event: Optional[threading.Event] = None,
                   on_progress: Optional[ProgressCallback] = None,
                   timeout: float = DOWNLOAD_TIMEOUT,
                   delay_range: tuple[float, float] = SAFETY_DELAY_RANGE,
                   retry_delay: float = DOWNLOAD_RETRY_DELAY,
                   runner=run_process,
                   rng: random.Random | None = None) -> Path:
    """
    Download job.url at job.quality.

    Returns the downloaded file in temp_dir; the caller owns and deletes it.
    A copy is stored in the cache when one is given. on_progress receives
    0–1 for this stage only. Every yt-dlp run is preceded by a random delay.
    """
    temp_dir = Path(temp_dir or DOWNLOAD_TEMP_DIR)
    temp_dir.mkdir(parents=True, exist_ok=True)
    event = cancel_event or threading.Event()

    last_error: Optional[ToolReportedFailure] = None
    for attempt in range(1, MAX_DOWNLOAD_ATTEMPTS + 1):
        if attempt > 1:
            logger.info("Retrying download (attempt %d/%d)", attempt, MAX_DOWNLOAD_ATTEMPTS)
            # Give the CDN a moment to hand out fresh tokens
            if event.wait(retry_delay):
                raise JobCancelled()
        try:
            downloaded = _run_attempt(job, ytdlp_path, ffmpeg_path, temp_dir, attempt,
                                      timeout, event, on_progress, runner, rng,
                                      delay_range)
            break
        except ToolReportedFailure as e:
            last_error = e
            if is_fragment_error(e.details):
                logger.warning("Fragment error on attempt %d", attempt)
                continue
            raise
    else:
        raise last_error

    logger.info("Downloaded video: %s", downloaded)

    # The cache keeps its own copy; the temp file stays this job's working copy
    if cache is not None:
        cache.save(downloaded, job.video_info, job.quality, url=job.url)

    return downloaded
