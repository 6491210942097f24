#===============================================================
# Project:      TubeRelay
# File:         yt-dlp client for metadata, formats and search
#===============================================================

import asyncio
import logging
from typing import Optional, Dict, Any, List

import yt_dlp
from yt_dlp.utils import DownloadError, ExtractorError

from config import RESOLVE_TIMEOUT, USER_AGENT
from errors import ResolutionFailed, classify_upstream_error
from models import FormatInfo, VideoMetadata, format_duration, watch_url


log = logging.getLogger(__name__)

SEARCH_LIMIT = 10
SEARCH_PAGE_SIZE = 5


class YouTubeClient:
    """
    Talks to the platform through yt-dlp.

    yt-dlp is synchronous, so every call runs in a worker thread and is
    bounded by `timeout`. A timed-out thread is abandoned, not killed;
    the caller gets ResolutionFailed straight away.
    """

    def __init__(self, timeout: float = RESOLVE_TIMEOUT):
        self.timeout = timeout
        self._ydl_opts = {
            "quiet": True,
            "no_warnings": True,
            "noplaylist": True,
            "skip_download": True,
            "http_headers": {"User-Agent": USER_AGENT},
        }

    # Raw Extraction
    def _extract_sync(self, url: str, extra_opts: Optional[Dict[str, Any]] = None) -> dict:
        opts = dict(self._ydl_opts)
        if extra_opts:
            opts.update(extra_opts)
        with yt_dlp.YoutubeDL(opts) as ydl:
            info = ydl.extract_info(url, download=False)
        if not info:
            raise ExtractorError("No info extracted")
        return ydl.sanitize_info(info)

    async def _extract(self, url: str, extra_opts: Optional[Dict[str, Any]] = None) -> dict:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._extract_sync, url, extra_opts),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise ResolutionFailed(details=f"Provider timed out after {self.timeout}s")
        except (DownloadError, ExtractorError) as e:
            raise classify_upstream_error(e)

    async def extract_info(self, video_id: str) -> dict:
        """Full info dict for one video (formats included)."""
        log.debug("Extracting info for %s", video_id)
        return await self._extract(watch_url(video_id))

    # Metadata
    async def get_metadata(self, video_id: str) -> VideoMetadata:
        info = await self.extract_info(video_id)
        metadata = VideoMetadata.from_ytdlp(video_id, info)
        log.info("Video details retrieved: %s", metadata.title)
        return metadata

    async def list_formats(self, video_id: str) -> List[FormatInfo]:
        info = await self.extract_info(video_id)
        return [FormatInfo.from_ytdlp(f) for f in info.get("formats") or []]

    async def get_duration(self, video_id: str) -> Optional[int]:
        info = await self.extract_info(video_id)
        duration = info.get("duration")
        return int(duration) if duration else None

    # Search
    async def search(self, keyword: str, page: int = 1) -> List[Dict[str, str]]:
        """Keyword search; returns one page of flat results."""
        page = max(1, page)
        limit = max(SEARCH_LIMIT, page * SEARCH_PAGE_SIZE)
        log.info("Searching YouTube for: %s", keyword)

        info = await self._extract(f"ytsearch{limit}:{keyword}", {"extract_flat": "in_playlist"})
        entries = [e for e in info.get("entries") or [] if e]

        offset = (page - 1) * SEARCH_PAGE_SIZE
        results = [self._search_entry(e) for e in entries[offset:offset + SEARCH_PAGE_SIZE]]
        log.info("Found %d videos", len(results))
        return results

    @staticmethod
    def _search_entry(entry: dict) -> Dict[str, str]:
        video_id = entry.get("id", "")
        thumbnails = entry.get("thumbnails") or []
        return {
            "title": entry.get("title") or "",
            "url": entry.get("url") or (watch_url(video_id) if video_id else ""),
            "channel": entry.get("channel") or entry.get("uploader") or "",
            "views": str(entry["view_count"]) if entry.get("view_count") else "",
            "uploadDate": entry.get("upload_date") or "",
            "thumbnail": thumbnails[0].get("url", "") if thumbnails else "",
            "duration": format_duration(entry.get("duration")) if entry.get("duration") else "",
        }


youtube_client = YouTubeClient()
