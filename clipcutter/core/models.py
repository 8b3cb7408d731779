"""
Data models (plain dataclasses) for ClipCutter.
"""

import uuid
from dataclasses import dataclass, field, asdict
from typing import Optional

from clipcutter.core.constants import JobStatus, AspectMode, DEFAULT_QUALITY


@dataclass
class VideoInfo:
    id: str
    title: str = ""
    duration: float = 0.0            # seconds
    uploader: str = ""
    thumbnail: Optional[str] = None
    heights: list[int] = field(default_factory=list)

    @classmethod
    def from_ytdlp(cls, data: dict) -> "VideoInfo":
        heights = sorted({
            int(f['height']) for f in data.get('formats') or []
            if f.get('height') and f.get('vcodec') != 'none'
        })
        return cls(
            id=str(data.get('id', '')),
            title=data.get('title') or '',
            duration=float(data.get('duration') or 0),
            uploader=data.get('uploader') or data.get('channel') or '',
            thumbnail=data.get('thumbnail'),
            heights=heights,
        )

    @classmethod
    def from_dict(cls, data: dict) -> "VideoInfo":
        return cls(
            id=data['id'],
            title=data.get('title', ''),
            duration=float(data.get('duration', 0)),
            uploader=data.get('uploader', ''),
            thumbnail=data.get('thumbnail'),
            heights=list(data.get('heights', [])),
        )

    def to_dict(self) -> dict:
        return asdict(self)

    def quality_options(self) -> list[str]:
        """Quality labels this video can satisfy, highest first, plus 'best'."""
        labels = [f"{h}p" for h in sorted(self.heights, reverse=True) if h >= 360]
        return labels + ["best"]


@dataclass
class ClipJob:
    url: str
    start_time: str                  # HH:MM:SS
    end_time: str                    # HH:MM:SS
    aspect_mode: str = AspectMode.ORIGINAL
    quality: str = DEFAULT_QUALITY
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: str = JobStatus.PENDING
    progress: float = 0.0            # 0–1 across the whole job
    downloaded_path: Optional[str] = None
    output_path: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    video_info: Optional[VideoInfo] = None
    used_cache: bool = False


@dataclass
class CachedVideoEntry:
    key: str
    content_id: str                  # video id, or "url-<sha256>" when unknown
    quality: str
    file_path: str
    file_size: int
    cached_at: float                 # epoch seconds
    last_accessed: float
    title: str = ""
    duration: float = 0.0
    uploader: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "CachedVideoEntry":
        return cls(**{k: data[k] for k in cls.__dataclass_fields__ if k in data})

    def to_dict(self) -> dict:
        return asdict(self)
