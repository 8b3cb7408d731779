"""
Persistent cache of downloaded videos and their metadata.

Layout under the cache directory:
    videos/<key>.<ext>     payload
    videos/<key>.json      sidecar record (CachedVideoEntry)
    metadata/<hash>.json   metadata-only record (VideoInfo + cached_at)

<key> is sha256("<content id or url hash>_<quality>"). Entries expire after
24 hours and the payloads together never exceed the byte budget; the least
recently used entries are evicted to make room.
"""

import hashlib
import json
import logging
import os
import shutil
import threading
import time
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Callable, Optional

from clipcutter.core.constants import (
    CONTENT_CACHE_DIR, CONTENT_CACHE_TTL_SEC, CONTENT_CACHE_MAX_BYTES,
    CONTENT_CACHE_MAX_ENTRIES,
)
from clipcutter.core.models import CachedVideoEntry, VideoInfo

logger = logging.getLogger(__name__)


def url_identity(url: str) -> str:
    return "url-" + hashlib.sha256(url.strip().encode('utf-8')).hexdigest()


def cache_key(content_id: str, quality: str) -> str:
    combined = f"{content_id}_{quality.lower()}"
    return hashlib.sha256(combined.encode('utf-8')).hexdigest()


def format_bytes(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.1f} {unit}" if unit != "B" else f"{int(value)} B"
        value /= 1024
    return f"{value:.1f} GB"


def _write_json_atomic(path: Path, data: dict):
    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
    with open(tmp, 'w') as f:
        json.dump(data, f, indent=2)
    os.replace(tmp, path)


class ContentCache:
    """Video payload + metadata cache. All index access goes through one lock."""

    def __init__(self, cache_dir: Path | None = None,
                 max_bytes: int = CONTENT_CACHE_MAX_BYTES,
                 ttl_sec: float = CONTENT_CACHE_TTL_SEC,
                 max_entries: int = CONTENT_CACHE_MAX_ENTRIES,
                 enabled: bool = True,
                 clock: Callable[[], float] = time.time):
        self.cache_dir = Path(cache_dir or CONTENT_CACHE_DIR)
        self.videos_dir = self.cache_dir / "videos"
        self.metadata_dir = self.cache_dir / "metadata"
        self.max_bytes = max_bytes
        self.ttl_sec = ttl_sec
        self.max_entries = max_entries
        self.enabled = enabled
        self._clock = clock
        self._lock = threading.RLock()
        self._index: dict[str, CachedVideoEntry] = {}
        self._metadata: dict[str, tuple[VideoInfo, float]] = {}

        self.videos_dir.mkdir(parents=True, exist_ok=True)
        self.metadata_dir.mkdir(parents=True, exist_ok=True)
        self._load()

    # ── Index persistence ─────────────────────────────────────────────

    def _load(self):
        for sidecar in self.videos_dir.glob("*.json"):
            try:
                with open(sidecar, 'r') as f:
                    entry = CachedVideoEntry.from_dict(json.load(f))
            except (OSError, ValueError, TypeError, KeyError) as e:
                logger.warning("Dropping unreadable cache record %s: %s", sidecar.name, e)
                self._discard_files(sidecar.stem, sidecar)
                continue
            self._index[entry.key] = entry

        for record in self.metadata_dir.glob("*.json"):
            try:
                with open(record, 'r') as f:
                    data = json.load(f)
                info = VideoInfo.from_dict(data['video_info'])
                self._metadata[info.id] = (info, float(data['cached_at']))
            except (OSError, ValueError, TypeError, KeyError) as e:
                logger.warning("Dropping unreadable metadata record %s: %s", record.name, e)
                self._unlink(record)

        if self._index:
            logger.info("Loaded %d cached videos (%s)",
                        len(self._index), format_bytes(self.total_size()))

    def _sidecar_path(self, key: str) -> Path:
        return self.videos_dir / f"{key}.json"

    def _metadata_path(self, content_id: str) -> Path:
        name = hashlib.sha256(content_id.encode('utf-8')).hexdigest()[:32]
        return self.metadata_dir / f"{name}.json"

    @staticmethod
    def _unlink(path: Path):
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to delete %s: %s", path, e)

    def _discard_files(self, key: str, sidecar: Path):
        for payload in self.videos_dir.glob(f"{key}.*"):
            if payload != sidecar:
                self._unlink(payload)
        self._unlink(sidecar)

    # ── Internal helpers (lock held) ──────────────────────────────────

    def _is_expired(self, cached_at: float) -> bool:
        return self._clock() - cached_at > self.ttl_sec

    def _remove_entry(self, key: str):
        entry = self._index.pop(key, None)
        if entry is None:
            return
        self._unlink(Path(entry.file_path))
        self._unlink(self._sidecar_path(key))

    def _evict_for(self, incoming_size: int):
        """Drop least-recently-used entries until incoming_size fits."""
        by_age = sorted(self._index.values(), key=lambda e: e.last_accessed)
        for entry in by_age:
            over_bytes = self.total_size() + incoming_size > self.max_bytes
            over_count = len(self._index) + 1 > self.max_entries
            if not (over_bytes or over_count):
                break
            logger.info("Evicting cached video %s (%s)",
                        entry.content_id, format_bytes(entry.file_size))
            self._remove_entry(entry.key)

    def _resolve_identity(self, content_id: Optional[str], url: Optional[str]) -> Optional[str]:
        if content_id:
            return content_id
        if url:
            return url_identity(url)
        return None

    # ── Public API ────────────────────────────────────────────────────

    def save(self, payload_path: str | Path, metadata: VideoInfo | None,
             quality: str, url: str | None = None) -> bool:
        """
        Copy a downloaded payload into the cache.
        Returns False (and leaves the cache untouched) when caching is
        disabled, the identity is unknown, or the payload cannot fit at all.
        """
        if not self.enabled:
            return False

        identity = self._resolve_identity(metadata.id if metadata else None, url)
        if identity is None:
            logger.debug("Not caching %s: no content id or url", payload_path)
            return False

        source = Path(payload_path)
        try:
            size = source.stat().st_size
        except OSError as e:
            logger.warning("Cannot cache %s: %s", source, e)
            return False
        if size > self.max_bytes:
            logger.info("Not caching %s: %s exceeds cache budget",
                        source.name, format_bytes(size))
            return False

        key = cache_key(identity, quality)
        ext = source.suffix or ".mp4"
        dest = self.videos_dir / f"{key}{ext}"
        staging = self.videos_dir / f".{key}.{uuid.uuid4().hex}.partial"

        # Copy outside the lock; only the index swap is serialised
        try:
            shutil.copyfile(source, staging)
        except OSError as e:
            logger.error("Failed to cache video: %s", e)
            self._unlink(staging)
            return False

        now = self._clock()
        entry = CachedVideoEntry(
            key=key,
            content_id=identity,
            quality=quality,
            file_path=str(dest),
            file_size=size,
            cached_at=now,
            last_accessed=now,
            title=metadata.title if metadata else "",
            duration=metadata.duration if metadata else 0.0,
            uploader=metadata.uploader if metadata else "",
        )

        with self._lock:
            self._remove_entry(key)
            self._evict_for(size)
            try:
                os.replace(staging, dest)
                _write_json_atomic(self._sidecar_path(key), entry.to_dict())
            except OSError as e:
                logger.error("Failed to cache video: %s", e)
                self._unlink(staging)
                self._unlink(dest)
                return False
            self._index[key] = entry

        if metadata is not None:
            self.save_metadata(metadata)

        logger.info("Cached video %s at %s (%s)", identity, quality, format_bytes(size))
        return True

    def lookup(self, content_id: str | None, quality: str,
               url: str | None = None) -> CachedVideoEntry | None:
        """Return a fresh entry whose payload still exists, else None."""
        if not self.enabled:
            return None
        identity = self._resolve_identity(content_id, url)
        if identity is None:
            return None

        key = cache_key(identity, quality)
        with self._lock:
            entry = self._index.get(key)
            if entry is None:
                return None
            if self._is_expired(entry.cached_at):
                self._remove_entry(key)
                return None
            if not Path(entry.file_path).is_file():
                logger.warning("Cached file missing for %s, dropping entry", identity)
                self._remove_entry(key)
                return None

            entry = replace(entry, last_accessed=self._clock())
            self._index[key] = entry
            try:
                _write_json_atomic(self._sidecar_path(key), entry.to_dict())
            except OSError as e:
                logger.warning("Failed to update cache record: %s", e)

        logger.info("Cache hit for video %s at %s", identity, quality)
        return entry

    def checkout(self, content_id: str | None, quality: str, dest_dir: str | Path,
                 url: str | None = None) -> Path | None:
        """
        Give the caller its own link (or copy) of a cached payload.

        The working copy survives eviction of the entry, so a job can keep
        using it while other jobs fill the cache. The caller deletes it.
        """
        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        with self._lock:
            entry = self.lookup(content_id, quality, url=url)
            if entry is None:
                return None
            source = Path(entry.file_path)
            working = dest_dir / f"{uuid.uuid4().hex}{source.suffix}"
            try:
                os.link(source, working)
            except OSError:
                # Different filesystem; fall back to a full copy
                try:
                    shutil.copyfile(source, working)
                except OSError as e:
                    logger.warning("Failed to check out cached video: %s", e)
                    self._unlink(working)
                    return None
        return working

    def save_metadata(self, info: VideoInfo):
        if not self.enabled or not info.id:
            return
        now = self._clock()
        with self._lock:
            self._metadata[info.id] = (info, now)
            if len(self._metadata) > self.max_entries:
                oldest = min(self._metadata, key=lambda k: self._metadata[k][1])
                self._metadata.pop(oldest, None)
                self._unlink(self._metadata_path(oldest))
            try:
                _write_json_atomic(self._metadata_path(info.id),
                                   {'video_info': info.to_dict(), 'cached_at': now})
            except OSError as e:
                logger.warning("Failed to write metadata record: %s", e)

    def lookup_metadata_only(self, content_id: str | None) -> VideoInfo | None:
        if not self.enabled or not content_id:
            return None
        with self._lock:
            cached = self._metadata.get(content_id)
            if cached is None:
                return None
            info, cached_at = cached
            if self._is_expired(cached_at):
                self._metadata.pop(content_id, None)
                self._unlink(self._metadata_path(content_id))
                return None
        return info

    def purge_expired(self) -> int:
        """Remove every stale video and metadata entry. Returns count removed."""
        removed = 0
        with self._lock:
            for key in [k for k, e in self._index.items() if self._is_expired(e.cached_at)]:
                self._remove_entry(key)
                removed += 1
            for cid in [c for c, (_, t) in self._metadata.items() if self._is_expired(t)]:
                self._metadata.pop(cid, None)
                self._unlink(self._metadata_path(cid))
                removed += 1
        if removed:
            logger.info("Removed %d expired cache entries", removed)
        return removed

    def remove(self, content_id: str | None, quality: str, url: str | None = None):
        identity = self._resolve_identity(content_id, url)
        if identity is None:
            return
        with self._lock:
            self._remove_entry(cache_key(identity, quality))

    def clear(self):
        with self._lock:
            for key in list(self._index):
                self._remove_entry(key)
            for cid in list(self._metadata):
                self._unlink(self._metadata_path(cid))
            self._metadata.clear()
        logger.info("Cleared content cache")

    def total_size(self) -> int:
        with self._lock:
            return sum(e.file_size for e in self._index.values())

    def entries(self) -> list[CachedVideoEntry]:
        with self._lock:
            return list(self._index.values())
