#===============================================================
# Project:      TubeRelay
# File:         Source resolution strategies with ordered fallback
#===============================================================

import logging
from dataclasses import dataclass
from typing import Optional, List, Iterable, Union

from config import DEFAULT_QUALITY_CEILING
from errors import RelayError, NotFound, Forbidden, ResolutionFailed
from models import (
    FormatInfo, MediaSourceDescriptor, SourceKind,
    CONTAINER_MIME_TYPES, NATIVE_CONTAINER, get_mime_type,
)
from cache_store import LocalCacheStore, cache_store
from youtube_client import YouTubeClient, youtube_client


log = logging.getLogger(__name__)

TERMINAL_ERRORS = (NotFound, Forbidden)


# Strategy Results
@dataclass(frozen=True)
class Resolved:
    descriptor: MediaSourceDescriptor


@dataclass(frozen=True)
class Unavailable:
    reason: str
    error: Optional[RelayError] = None


StrategyResult = Union[Resolved, Unavailable]


# Format Selection
def select_format(formats: Iterable[FormatInfo], quality_ceiling: int) -> Optional[FormatInfo]:
    """
    Best progressive format at or below the ceiling.

    Candidates need audio and video, a container the relay can serve and
    a plain http(s) URL (no manifests). Ranked by height, then the
    relay's native container, then known filesize.
    """
    candidates = [
        f for f in formats
        if f.has_video and f.has_audio
        and f.container in CONTAINER_MIME_TYPES
        and f.height and f.height <= quality_ceiling
        and f.url and f.url.startswith(("http://", "https://"))
    ]
    if not candidates:
        return None

    return max(
        candidates,
        key=lambda f: (f.height, f.container == NATIVE_CONTAINER, f.filesize or 0),
    )


# Strategies
class DirectUrlStrategy:
    """Byte-addressable URL straight from the platform's CDN."""

    name = "direct"
    kind = SourceKind.REMOTE_DIRECT

    def __init__(self, client: Optional[YouTubeClient] = None):
        self.client = client or youtube_client

    async def attempt(self, video_id: str, quality_ceiling: int) -> StrategyResult:
        try:
            formats = await self.client.list_formats(video_id)
        except RelayError as e:
            return Unavailable(e.message, error=e)
        except Exception as e:
            log.warning("Direct lookup for %s raised %s: %s", video_id, type(e).__name__, e)
            return Unavailable(type(e).__name__)

        chosen = select_format(formats, quality_ceiling)
        if chosen is None:
            return Unavailable(f"no progressive mp4/webm format at or below {quality_ceiling}p")

        log.info("Direct source for %s: format %s (%sp %s)", video_id, chosen.id, chosen.height, chosen.container)
        return Resolved(MediaSourceDescriptor(
            kind=SourceKind.REMOTE_DIRECT,
            locator=chosen.url,
            mime_type=CONTAINER_MIME_TYPES[chosen.container],
            total_size=chosen.filesize,
            supports_byte_ranges=True,
            height=chosen.height,
            headers=chosen.http_headers,
        ))


class LocalCacheStrategy:
    """Cached (or freshly downloaded) local copy."""

    name = "local"
    kind = SourceKind.LOCAL_FILE

    def __init__(self, store: Optional[LocalCacheStore] = None):
        self.store = store or cache_store

    async def attempt(self, video_id: str, quality_ceiling: int) -> StrategyResult:
        try:
            path = await self.store.ensure_materialized(video_id, quality_ceiling)
            size = path.stat().st_size
        except RelayError as e:
            return Unavailable(e.details or e.message, error=e)
        except Exception as e:
            log.warning("Local cache for %s raised %s: %s", video_id, type(e).__name__, e)
            return Unavailable(type(e).__name__)

        return Resolved(MediaSourceDescriptor(
            kind=SourceKind.LOCAL_FILE,
            locator=str(path),
            mime_type=get_mime_type(str(path)),
            total_size=size,
            supports_byte_ranges=True,
        ))


# Resolver
class SourceResolver:
    """Tries each strategy in preference order until one resolves."""

    def __init__(self, strategies: Optional[List] = None):
        self.strategies = strategies if strategies is not None else [
            DirectUrlStrategy(),
            LocalCacheStrategy(),
        ]

    async def resolve(
        self,
        video_id: str,
        quality_ceiling: Optional[int] = None,
        skip: Iterable[SourceKind] = (),
    ) -> MediaSourceDescriptor:
        ceiling = quality_ceiling or DEFAULT_QUALITY_CEILING
        skipped = set(skip)
        reasons = []

        for strategy in self.strategies:
            if strategy.kind in skipped:
                continue

            result = await strategy.attempt(video_id, ceiling)
            if isinstance(result, Resolved):
                return result.descriptor

            if isinstance(result.error, TERMINAL_ERRORS):
                raise result.error

            log.warning("Strategy %s unavailable for %s: %s", strategy.name, video_id, result.reason)
            reasons.append(f"{strategy.name}: {result.reason}")

        raise ResolutionFailed(details="; ".join(reasons) or "no strategies available")


source_resolver = SourceResolver()
