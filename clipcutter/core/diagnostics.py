"""
Diagnostics: tool version detection and system checks.
"""

import logging
import platform
import shutil
from pathlib import Path

from clipcutter.core.constants import APP_VERSION, VERSION_CHECK_TIMEOUT
from clipcutter.core.content_cache import ContentCache, format_bytes
from clipcutter.core.error_codes import JobError, LaunchFailure
from clipcutter.core.process_runner import run_simple

logger = logging.getLogger(__name__)


def _tool_version(executable: str, flag: str) -> str:
    try:
        result = run_simple(executable, [flag], timeout=VERSION_CHECK_TIMEOUT)
    except LaunchFailure:
        return "Not installed"
    except JobError as e:
        return f"Error: {e.message}"
    if result.success:
        lines = result.output_text.strip().splitlines()
        return lines[0] if lines else "Unknown"
    return f"Error (rc={result.exit_code})"


def get_ytdlp_version(ytdlp_path: str) -> str:
    """Return yt-dlp version string, or error message."""
    return _tool_version(ytdlp_path, "--version")


def get_ffmpeg_version(ffmpeg_path: str) -> str:
    """Return the first line of ffmpeg -version, or error message."""
    return _tool_version(ffmpeg_path, "-version")


def tool_available(path: str) -> bool:
    if not path:
        return False
    p = Path(path)
    if p.is_absolute():
        return p.is_file()
    return shutil.which(path) is not None


def get_diagnostics(ytdlp_path: str, ffmpeg_path: str,
                    cache: ContentCache | None = None) -> dict:
    """Gather all diagnostic information."""
    info = {
        "app_version": APP_VERSION,
        "platform": platform.platform(),
        "ytdlp_version": get_ytdlp_version(ytdlp_path),
        "ffmpeg_version": get_ffmpeg_version(ffmpeg_path),
    }
    if cache is not None:
        info["cache"] = {
            "path": str(cache.cache_dir),
            "entries": len(cache.entries()),
            "size": format_bytes(cache.total_size()),
            "enabled": cache.enabled,
        }
    return info
