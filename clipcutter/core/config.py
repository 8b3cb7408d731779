"""
Application configuration manager.
Stores settings in a JSON file under Application Support.
"""

import json
import logging
import os
from pathlib import Path

from clipcutter.core.constants import (
    CONFIG_PATH, DEFAULT_OUTPUT_ROOT, CONTENT_CACHE_DIR, CONTENT_CACHE_MAX_BYTES,
    DEFAULT_API_BASE_URL, API_BASE_URL_ENV, DOWNLOAD_TIMEOUT, CLIP_TIMEOUT,
    DEFAULT_QUALITY, QUALITY_OPTIONS, BIN_DIR,
)

# Validation bounds
_TIMEOUT_MIN = 30             # seconds
_TIMEOUT_MAX = 4 * 3600
_CACHE_MAX_BYTES_MIN = 100 * 1024 * 1024
_CACHE_MAX_BYTES_MAX = 100 * 1024 * 1024 * 1024

logger = logging.getLogger(__name__)

_DEFAULTS = {
    'output_root': str(DEFAULT_OUTPUT_ROOT),
    'cache_dir': str(CONTENT_CACHE_DIR),
    'ytdlp_path': str(BIN_DIR / "yt-dlp"),
    'ffmpeg_path': str(BIN_DIR / "ffmpeg"),
    'api_base_url': DEFAULT_API_BASE_URL,
    'download_timeout': DOWNLOAD_TIMEOUT,
    'clip_timeout': CLIP_TIMEOUT,
    'cache_enabled': True,
    'cache_max_bytes': CONTENT_CACHE_MAX_BYTES,
    'default_quality': DEFAULT_QUALITY,
}


class AppConfig:
    """Manages application configuration stored as JSON."""

    def __init__(self, config_path: Path | None = None):
        self.path = config_path or CONFIG_PATH
        self._data: dict = {}
        self.load()

    def load(self):
        """Load config from disk, merging with defaults."""
        self._data = dict(_DEFAULTS)
        if self.path.exists():
            try:
                with open(self.path, 'r') as f:
                    saved = json.load(f)
            except (OSError, ValueError) as e:
                logger.warning("Failed to load config: %s", e)
                return
            for key, value in saved.items():
                self._data[key] = self._validate(key, value)

    def save(self):
        """Persist config to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(self._data, f, indent=2)

    def get(self, key: str, default=None):
        return self._data.get(key, default)

    def set(self, key: str, value):
        value = self._validate(key, value)
        self._data[key] = value
        self.save()

    def _validate(self, key: str, value):
        """Validate and coerce config values to safe ranges."""
        if key in ('download_timeout', 'clip_timeout'):
            try:
                value = int(value)
            except (TypeError, ValueError):
                logger.warning("Invalid %s %r, using default", key, value)
                return _DEFAULTS[key]
            return max(_TIMEOUT_MIN, min(_TIMEOUT_MAX, value))

        if key == 'cache_max_bytes':
            try:
                value = int(value)
            except (TypeError, ValueError):
                logger.warning("Invalid cache_max_bytes %r, using default", value)
                return CONTENT_CACHE_MAX_BYTES
            return max(_CACHE_MAX_BYTES_MIN, min(_CACHE_MAX_BYTES_MAX, value))

        if key == 'default_quality':
            if str(value).lower() not in QUALITY_OPTIONS:
                logger.warning("Invalid default_quality %r, using %s", value, DEFAULT_QUALITY)
                return DEFAULT_QUALITY
            return str(value).lower()

        if key == 'cache_enabled':
            return bool(value)

        if key == 'api_base_url':
            value = str(value).strip().rstrip('/')
            if not value.startswith(('https://', 'http://')):
                logger.warning("Invalid api_base_url %r, using default", value)
                return DEFAULT_API_BASE_URL

        return value

    def as_dict(self) -> dict:
        return dict(self._data)

    @property
    def output_root(self) -> str:
        return self._data.get('output_root', str(DEFAULT_OUTPUT_ROOT))

    @output_root.setter
    def output_root(self, value: str):
        self._data['output_root'] = value
        self.save()

    @property
    def cache_dir(self) -> Path:
        return Path(self._data.get('cache_dir', str(CONTENT_CACHE_DIR)))

    @property
    def ytdlp_path(self) -> str:
        return self._data.get('ytdlp_path', '')

    @property
    def ffmpeg_path(self) -> str:
        return self._data.get('ffmpeg_path', '')

    @property
    def api_base_url(self) -> str:
        # The environment wins so staging backends can be selected per run
        override = os.environ.get(API_BASE_URL_ENV, '').strip()
        if override:
            return override.rstrip('/')
        return self._data.get('api_base_url', DEFAULT_API_BASE_URL)

    @property
    def download_timeout(self) -> int:
        return self._data.get('download_timeout', DOWNLOAD_TIMEOUT)

    @property
    def clip_timeout(self) -> int:
        return self._data.get('clip_timeout', CLIP_TIMEOUT)

    @property
    def cache_enabled(self) -> bool:
        return self._data.get('cache_enabled', True)

    @cache_enabled.setter
    def cache_enabled(self, value: bool):
        self._data['cache_enabled'] = bool(value)
        self.save()

    @property
    def cache_max_bytes(self) -> int:
        return self._data.get('cache_max_bytes', CONTENT_CACHE_MAX_BYTES)

    @property
    def default_quality(self) -> str:
        return self._data.get('default_quality', DEFAULT_QUALITY)
