"""
Video URL parsing and admission checks.
"""

import re
from urllib.parse import urlparse, parse_qs

from clipcutter.core.constants import (
    ErrorCode, YOUTUBE_URL_PATTERNS, MAX_URL_LENGTH, ALLOWED_SCHEMES,
    ALLOWED_VIDEO_HOSTS, SUSPICIOUS_URL_PATTERNS,
)
from clipcutter.core.error_codes import InvalidInput

_VIDEO_ID_RE = re.compile(r'^[a-zA-Z0-9_-]{11}$')
# C0 control characters and DEL
_CONTROL_CHARS = re.compile(r'[\x00-\x1f\x7f]')


def extract_video_id(url: str) -> str | None:
    """
    Extract the 11-character video_id from a YouTube URL.
    Returns None if the URL carries no recognisable id.
    """
    url = url.strip()
    if not url:
        return None

    for pattern in YOUTUBE_URL_PATTERNS:
        m = re.search(pattern, url)
        if m:
            return m.group(1)

    # Fallback: parse query string for 'v' parameter
    parsed = urlparse(url)
    if 'youtube.com' in parsed.netloc or 'youtu.be' in parsed.netloc:
        v = parse_qs(parsed.query).get('v', [None])[0]
        if v and _VIDEO_ID_RE.match(v):
            return v

    return None


def _reject(url: str, reason: str):
    shown = url if len(url) <= 80 else url[:77] + "..."
    raise InvalidInput(f"{reason}: {shown!r}", code=ErrorCode.INVALID_URL)


def validate_video_url(url: str) -> str | None:
    """
    Admit a URL for download.

    Returns the video id, or None when the URL is acceptable but has no id
    (e.g. a channel page). Raises InvalidInput with ERR_INVALID_URL otherwise.
    """
    if url is None or not url.strip():
        raise InvalidInput("URL is empty", code=ErrorCode.INVALID_URL)
    if len(url) > MAX_URL_LENGTH:
        _reject(url, f"URL longer than {MAX_URL_LENGTH} characters")
    if _CONTROL_CHARS.search(url):
        _reject(url, "URL contains control characters")

    url = url.strip()
    lowered = url.lower()
    for marker in SUSPICIOUS_URL_PATTERNS:
        if marker in lowered:
            _reject(url, "URL contains a disallowed scheme")

    parsed = urlparse(url)
    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        _reject(url, "URL must use http or https")
    host = (parsed.hostname or '').lower()
    if host not in ALLOWED_VIDEO_HOSTS:
        _reject(url, "Not a supported video host")

    return extract_video_id(url)


def is_video_url(url: str) -> bool:
    """Quick check that a string is an admissible video URL with an id."""
    try:
        return validate_video_url(url) is not None
    except InvalidInput:
        return False
