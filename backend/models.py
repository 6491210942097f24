#===============================================================
# Project:      TubeRelay
# File:         Core data model
#===============================================================

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, List, Dict, Any

from errors import ClientError


# Video IDs
VIDEO_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{11}$")
PLACEHOLDER_IDS = {"undefined", "null", "none", "nan"}

WATCH_URL = "https://www.youtube.com/watch?v={video_id}"
EMBED_URL = "https://www.youtube.com/embed/{video_id}"
THUMBNAIL_URL = "https://img.youtube.com/vi/{video_id}/maxresdefault.jpg"


def validate_video_id(video_id: Optional[str]) -> str:
    """
    Return the video id if it is safe to use, else raise ClientError.
    Nothing downstream interpolates an id that has not passed here.
    """
    if not isinstance(video_id, str) or not video_id.strip():
        raise ClientError("Invalid or missing videoId", details="empty")

    candidate = video_id.strip()
    if candidate.lower() in PLACEHOLDER_IDS or not VIDEO_ID_PATTERN.match(candidate):
        raise ClientError("Invalid or missing videoId", details=candidate[:32])

    return candidate


def watch_url(video_id: str) -> str:
    return WATCH_URL.format(video_id=video_id)


# MIME Types
MIME_TYPES = {
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".m4v": "video/x-m4v",
    ".mkv": "video/x-matroska",
}

CONTAINER_MIME_TYPES = {
    "mp4": "video/mp4",
    "webm": "video/webm",
}

# Container the relay advertises by default
NATIVE_CONTAINER = "mp4"


def get_mime_type(path: str) -> str:
    """Get MIME type for file path."""
    ext = Path(path).suffix.lower()
    return MIME_TYPES.get(ext, "application/octet-stream")


# Media Sources
class SourceKind(Enum):
    """Where the relay reads media bytes from."""
    REMOTE_DIRECT = "remote_direct"
    LOCAL_FILE = "local_file"


@dataclass(frozen=True)
class MediaSourceDescriptor:
    """A resolved, fetchable media source. Produced fresh per request."""
    kind: SourceKind
    locator: str  # URL or filesystem path
    mime_type: str = "video/mp4"
    total_size: Optional[int] = None  # bytes, None when unknown until fetched
    supports_byte_ranges: bool = True
    height: Optional[int] = None
    headers: Dict[str, str] = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True)
class ByteRange:
    """Inclusive byte window. end=None means to the end of the resource."""
    start: int
    end: Optional[int] = None

    def __post_init__(self):
        if self.start < 0:
            raise ValueError("range start must be >= 0")
        if self.end is not None and self.end < self.start:
            raise ValueError("range end must be >= start")

    @property
    def length(self) -> Optional[int]:
        if self.end is None:
            return None
        return self.end - self.start + 1

    def to_header(self) -> str:
        end = "" if self.end is None else str(self.end)
        return f"bytes={self.start}-{end}"


# Provider Results
@dataclass
class FormatInfo:
    """One downloadable format as reported by the provider."""
    id: str
    container: str
    quality: str
    has_video: bool
    has_audio: bool
    height: Optional[int] = None
    filesize: Optional[int] = None
    url: Optional[str] = None
    http_headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_ytdlp(cls, data: dict) -> "FormatInfo":
        """Create FormatInfo from a yt-dlp format dict."""
        vcodec = data.get("vcodec")
        acodec = data.get("acodec")
        height = data.get("height")
        quality = data.get("format_note") or (f"{height}p" if height else "unknown")

        return cls(
            id=str(data.get("format_id", "")),
            container=(data.get("ext") or "unknown").lower(),
            quality=quality,
            has_video=bool(vcodec) and vcodec != "none",
            has_audio=bool(acodec) and acodec != "none",
            height=height,
            filesize=data.get("filesize"),
            url=data.get("url"),
            http_headers=dict(data.get("http_headers") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "quality": self.quality,
            "container": self.container,
            "hasVideo": self.has_video,
            "hasAudio": self.has_audio,
            "filesize": self.filesize if self.filesize else "unknown",
        }


@dataclass
class VideoMetadata:
    """Descriptive metadata for one video."""
    video_id: str
    title: str
    description: str
    channel_name: str
    thumbnail: str
    duration_seconds: int
    views: int
    upload_date: str
    formats: List[FormatInfo] = field(default_factory=list)

    @classmethod
    def from_ytdlp(cls, video_id: str, info: dict) -> "VideoMetadata":
        """Create VideoMetadata from a yt-dlp info dict."""
        return cls(
            video_id=video_id,
            title=info.get("title") or "Unknown Title",
            description=info.get("description") or "",
            channel_name=info.get("channel") or info.get("uploader") or "Unknown Channel",
            thumbnail=info.get("thumbnail") or THUMBNAIL_URL.format(video_id=video_id),
            duration_seconds=int(info.get("duration") or 0),
            views=int(info.get("view_count") or 0),
            upload_date=format_upload_date(info.get("upload_date")),
            formats=[FormatInfo.from_ytdlp(f) for f in info.get("formats") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "channelName": self.channel_name,
            "embedUrl": EMBED_URL.format(video_id=self.video_id),
            "thumbnail": self.thumbnail,
            "duration": format_duration(self.duration_seconds),
            "views": str(self.views),
            "uploadDate": self.upload_date,
        }


def format_duration(seconds: Optional[int]) -> str:
    """Format seconds as m:ss."""
    if not seconds:
        return "0:00"
    seconds = int(seconds)
    return f"{seconds // 60}:{seconds % 60:02d}"


def format_upload_date(raw: Optional[str]) -> str:
    """yt-dlp reports YYYYMMDD."""
    if raw and len(raw) == 8 and raw.isdigit():
        return f"{raw[:4]}-{raw[4:6]}-{raw[6:]}"
    return raw or "Unknown"
