"""
Trim and crop a downloaded video with ffmpeg.
"""

import logging
import re
import threading
from pathlib import Path
from typing import Callable, Optional

from clipcutter.core.constants import (
    AspectMode, CROP_FILTERS, CLIP_TIMEOUT, TIME_PATTERN, StreamMode,
)
from clipcutter.core.content_cache import url_identity
from clipcutter.core.error_codes import InvalidInput, ToolReportedFailure
from clipcutter.core.models import ClipJob
from clipcutter.core.process_runner import ProcessInvocation, run_process
from clipcutter.core.progress_parse import parse_transcode_progress

logger = logging.getLogger(__name__)

_TIME_RE = re.compile(TIME_PATTERN)
_UNSAFE_ID_RE = re.compile(r'[^A-Za-z0-9_-]')
_MAX_ID_LEN = 64


def time_to_seconds(value: str) -> int:
    m = _TIME_RE.match(value or "")
    if not m:
        raise InvalidInput(f"Invalid time {value!r}, expected HH:MM:SS")
    hours, minutes, seconds = (int(g) for g in m.groups())
    return hours * 3600 + minutes * 60 + seconds


def validate_time_range(start: str, end: str) -> int:
    """Return the clip length in seconds; raise InvalidInput if unusable."""
    length = time_to_seconds(end) - time_to_seconds(start)
    if length <= 0:
        raise InvalidInput(f"End time {end} must be after start time {start}")
    return length


def clip_source_id(job: ClipJob) -> str:
    """Filesystem-safe id of the job's source video, or a short URL hash."""
    content_id = job.video_info.id if job.video_info and job.video_info.id else ""
    if not content_id:
        content_id = url_identity(job.url)[:16]
    return _UNSAFE_ID_RE.sub("_", content_id)[:_MAX_ID_LEN]


def build_output_filename(start: str, end: str, aspect_mode: str = AspectMode.ORIGINAL,
                          source_id: str = "") -> str:
    prefix = f"clip_{source_id}_" if source_id else "clip_"
    suffix = "" if aspect_mode == AspectMode.ORIGINAL else f"_{aspect_mode}"
    return f"{prefix}{start}_to_{end}{suffix}.mp4".replace(":", "-")


def build_clip_args(input_path: Path, start: str, end: str,
                    aspect_mode: str, output_path: Path) -> list[str]:
    args = [
        "-i", str(input_path),
        "-ss", start,
        "-to", end,
        "-c:v", "libx264",
        "-c:a", "aac",
        "-preset", "medium",
        "-crf", "23",
    ]
    crop = CROP_FILTERS.get(aspect_mode)
    if crop:
        args.extend(["-vf", crop])
    args.extend([
        "-avoid_negative_ts", "make_zero",
        "-y",
        str(output_path),
    ])
    return args


def clip_video(input_path: str | Path, job: ClipJob, ffmpeg_path: str,
               output_dir: str | Path,
               cancel_event: Optional[threading.Event] = None,
               on_progress: Optional[Callable[[float], None]] = None,
               timeout: float = CLIP_TIMEOUT,
               runner=run_process) -> Path:
    """
    Cut job.start_time..job.end_time out of input_path, cropping for
    job.aspect_mode. on_progress receives 0–1 for this stage only.
    """
    input_path = Path(input_path)
    if not input_path.is_file():
        raise InvalidInput(f"Input video not found: {input_path}")
    if job.aspect_mode != AspectMode.ORIGINAL and job.aspect_mode not in CROP_FILTERS:
        raise InvalidInput(f"Unknown aspect mode {job.aspect_mode!r}")
    clip_length = validate_time_range(job.start_time, job.end_time)

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    # Same range from different videos must not share an output file
    output_path = output_dir / build_output_filename(
        job.start_time, job.end_time, job.aspect_mode, clip_source_id(job))

    # ffmpeg announces the source duration, not the clip's, so seed the total
    total = [float(clip_length)]

    def on_line(line: str):
        progress = parse_transcode_progress(line, total[0])
        total[0] = progress.total_duration
        if progress.fraction is not None and on_progress is not None:
            on_progress(progress.fraction)

    invocation = ProcessInvocation(
        executable=ffmpeg_path,
        args=tuple(build_clip_args(input_path, job.start_time, job.end_time,
                                   job.aspect_mode, output_path)),
        timeout=timeout,
        stream_mode=StreamMode.SEPARATE,
        on_error=on_line,
    )
    outcome = runner(invocation, cancel_event)

    if not outcome.success:
        raw = outcome.error_text.strip()
        tail = "\n".join(raw.splitlines()[-5:]) or "Unknown error"
        logger.error("ffmpeg failed with exit code %d: %s", outcome.exit_code, tail)
        raise ToolReportedFailure(f"Video processing failed: {tail}",
                                  exit_code=outcome.exit_code, details=raw)
    if not output_path.exists():
        raise ToolReportedFailure("Clip file was not created",
                                  exit_code=outcome.exit_code,
                                  details=outcome.error_text)

    logger.info("Created clip: %s", output_path)
    return output_path
