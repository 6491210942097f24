import asyncio

import httpx


VIDEO_ID = "dQw4w9WgXcQ"
PAYLOAD = bytes(range(256)) * 64  # 16 KiB, byte i == i % 256


def make_info(formats=None, **overrides):
    """yt-dlp style info dict."""
    info = {
        "id": VIDEO_ID,
        "title": "Never Gonna Give You Up",
        "description": "The official video",
        "channel": "Rick Astley",
        "thumbnail": "https://i.ytimg.com/vi/dQw4w9WgXcQ/maxresdefault.jpg",
        "duration": 212,
        "view_count": 1500000000,
        "upload_date": "20091025",
        "formats": formats if formats is not None else [
            {"format_id": "18", "ext": "mp4", "height": 360, "vcodec": "avc1", "acodec": "mp4a",
             "url": "https://cdn.example/18.mp4", "filesize": len(PAYLOAD), "format_note": "360p"},
            {"format_id": "22", "ext": "mp4", "height": 720, "vcodec": "avc1", "acodec": "mp4a",
             "url": "https://cdn.example/22.mp4", "format_note": "720p"},
            {"format_id": "140", "ext": "m4a", "vcodec": "none", "acodec": "mp4a",
             "url": "https://cdn.example/140.m4a", "filesize": 3400000},
        ],
    }
    info.update(overrides)
    return info


class StaticStrategy:
    """Strategy double returning a fixed result and counting attempts."""

    def __init__(self, name, kind, result):
        self.name = name
        self.kind = kind
        self.result = result
        self.calls = 0

    async def attempt(self, video_id, quality_ceiling):
        self.calls += 1
        return self.result


def mock_client_factory(handler):
    return lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler))


def run(coro):
    return asyncio.run(coro)
