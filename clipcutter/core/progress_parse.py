"""
Progress parsers for yt-dlp and ffmpeg output lines.

Both are pure functions. The ffmpeg parser needs the total duration that
ffmpeg announces once near the start of its output, so the caller carries
that value from one call to the next.
"""

import re
from typing import NamedTuple, Optional

_DOWNLOAD_RE = re.compile(r'\[download\]\s+(\d+(?:\.\d+)?)%')
_DURATION_RE = re.compile(r'Duration:\s*(\d{2}):(\d{2}):(\d{2}(?:\.\d+)?)')
_TIME_RE = re.compile(r'time=\s*(\d{2}):(\d{2}):(\d{2}(?:\.\d+)?)')


class TranscodeProgress(NamedTuple):
    total_duration: Optional[float]   # seconds, carried into the next call
    fraction: Optional[float]         # 0–1, None when the line has no progress


def _to_seconds(hours: str, minutes: str, seconds: str) -> float:
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def parse_timestamp(text: str) -> Optional[float]:
    """Convert HH:MM:SS or HH:MM:SS.ss to seconds."""
    m = re.fullmatch(r'(\d{2}):(\d{2}):(\d{2}(?:\.\d+)?)', text.strip())
    if not m:
        return None
    return _to_seconds(*m.groups())


def parse_download_progress(line: str) -> Optional[float]:
    """
    Extract the percentage from a yt-dlp progress line, e.g.
    "[download]  45.5% of 15.30MiB at 2.1MiB/s ETA 00:05" -> 45.5
    """
    m = _DOWNLOAD_RE.search(line)
    if not m:
        return None
    return min(float(m.group(1)), 100.0)


def parse_transcode_progress(line: str,
                             total_duration: Optional[float] = None) -> TranscodeProgress:
    """
    Parse one line of ffmpeg stderr.

    A "Duration: HH:MM:SS.ss" line announces the total; later
    "time=HH:MM:SS.ss" lines yield elapsed/total once a total is known.
    """
    if total_duration is None:
        m = _DURATION_RE.search(line)
        if m:
            total = _to_seconds(*m.groups())
            total_duration = total if total > 0 else None

    fraction = None
    if total_duration:
        m = _TIME_RE.search(line)
        if m:
            elapsed = _to_seconds(*m.groups())
            fraction = max(0.0, min(elapsed / total_duration, 1.0))

    return TranscodeProgress(total_duration, fraction)
