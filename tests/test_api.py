import httpx
import pytest
from yt_dlp.utils import DownloadError

import routes_stream
from models import MediaSourceDescriptor, SourceKind
from resolver import SourceResolver, Resolved, Unavailable
from streamer import Streamer

from helpers import VIDEO_ID, PAYLOAD, StaticStrategy, mock_client_factory


def test_health(api):
    response = api.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "OK"}


# Video ID Validation
@pytest.mark.parametrize("path", [
    "/api/video/undefined",
    "/api/formats/undefined",
    "/api/stream/undefined",
    "/api/video/",
    "/api/formats/",
    "/api/stream/",
    "/api/video/not-a-valid-id-at-all",
    "/api/stream/short",
])
def test_invalid_video_ids_are_rejected(api, fake_provider, path):
    response = api.get(path, headers={"Range": "bytes=0-"})

    assert response.status_code == 400
    assert "error" in response.json()
    assert fake_provider.state["calls"] == []
    assert api.local_strategy.calls == 0


# Metadata
def test_video_details(api):
    response = api.get(f"/api/video/{VIDEO_ID}")

    assert response.status_code == 200
    assert response.json() == {
        "title": "Never Gonna Give You Up",
        "description": "The official video",
        "channelName": "Rick Astley",
        "embedUrl": f"https://www.youtube.com/embed/{VIDEO_ID}",
        "thumbnail": "https://i.ytimg.com/vi/dQw4w9WgXcQ/maxresdefault.jpg",
        "duration": "3:32",
        "views": "1500000000",
        "uploadDate": "2009-10-25",
    }


@pytest.mark.parametrize("message,status,error", [
    ("ERROR: [youtube] x: Video unavailable", 404, "Video not found or unavailable"),
    ("ERROR: [youtube] x: Private video. Sign in if you've been granted access", 403, "Video is private"),
    ("ERROR: [youtube] x: Sign in to confirm your age", 403, "Age-restricted video"),
    ("ERROR: [youtube] x: HTTP Error 429: Too Many Requests", 500, "Failed to resolve video source"),
])
def test_video_details_errors(api, fake_provider, message, status, error):
    fake_provider.state["error"] = DownloadError(message)

    response = api.get(f"/api/video/{VIDEO_ID}")

    assert response.status_code == status
    assert response.json()["error"] == error


def test_error_bodies_never_carry_tracebacks(api, fake_provider):
    fake_provider.state["error"] = DownloadError("ERROR: boom\nTraceback (most recent call last):\n  File \"/srv/app.py\"")

    body = api.get(f"/api/video/{VIDEO_ID}").json()

    assert "Traceback" not in body.get("details", "")
    assert "/srv/app.py" not in body.get("details", "")


def test_formats(api):
    response = api.get(f"/api/formats/{VIDEO_ID}")

    assert response.status_code == 200
    formats = response.json()["formats"]
    assert formats[0] == {
        "id": "18", "quality": "360p", "container": "mp4",
        "hasVideo": True, "hasAudio": True, "filesize": len(PAYLOAD),
    }
    assert formats[1]["filesize"] == "unknown"
    assert formats[2]["hasVideo"] is False


# Search
def test_search_requires_keyword(api):
    response = api.get("/api/youtube_search")
    assert response.status_code == 400
    assert response.json()["error"] == "Keyword parameter is required"


def test_search_returns_first_page(api, fake_provider):
    fake_provider.state["info"] = {"entries": [
        {"id": f"vid{i:08d}", "title": f"Result {i}", "channel": "Chan", "view_count": i * 10, "duration": 65}
        for i in range(8)
    ]}

    response = api.get("/api/youtube_search", params={"keyword": "lofi"})

    assert response.status_code == 200
    results = response.json()
    assert len(results) == 5
    assert results[0]["title"] == "Result 0"
    assert results[1]["views"] == "10"
    assert results[0]["duration"] == "1:05"
    assert fake_provider.state["calls"][0].startswith("ytsearch10:lofi")


# Streaming
def test_stream_closed_range(api):
    response = api.get(f"/api/stream/{VIDEO_ID}", headers={"Range": "bytes=10-1033"})

    assert response.status_code == 206
    assert response.headers["content-range"] == f"bytes 10-1033/{len(PAYLOAD)}"
    assert response.headers["content-length"] == "1024"
    assert response.headers["accept-ranges"] == "bytes"
    assert response.headers["content-type"] == "video/mp4"
    assert response.content == PAYLOAD[10:1034]


@pytest.mark.parametrize("start,end", [(0, 0), (0, 16383), (16383, 16383), (4000, 4095)])
def test_stream_window_length_matches_range(api, start, end):
    response = api.get(f"/api/stream/{VIDEO_ID}", headers={"Range": f"bytes={start}-{end}"})

    assert response.status_code == 206
    assert response.headers["content-range"] == f"bytes {start}-{end}/{len(PAYLOAD)}"
    assert len(response.content) == end - start + 1


def test_stream_open_range_is_clamped(api):
    response = api.get(f"/api/stream/{VIDEO_ID}", headers={"Range": "bytes=0-"})

    assert response.status_code == 206
    assert response.headers["content-range"] == f"bytes 0-4096/{len(PAYLOAD)}"
    assert len(response.content) == 4097


def test_stream_start_past_end_is_416(api):
    response = api.get(f"/api/stream/{VIDEO_ID}", headers={"Range": f"bytes={len(PAYLOAD)}-"})

    assert response.status_code == 416
    assert response.headers["content-range"] == f"bytes */{len(PAYLOAD)}"
    assert response.json()["error"] == "Requested range not satisfiable"


def test_stream_without_range_is_416_and_resolves_nothing(api):
    response = api.get(f"/api/stream/{VIDEO_ID}")

    assert response.status_code == 416
    assert response.json()["error"] == "Range header required"
    assert api.local_strategy.calls == 0


def test_stream_malformed_range_is_400(api):
    response = api.get(f"/api/stream/{VIDEO_ID}", headers={"Range": "bytes=-500"})
    assert response.status_code == 400


def test_stream_includes_cached_duration(api):
    api.head(f"/api/stream/{VIDEO_ID}")
    response = api.get(f"/api/stream/{VIDEO_ID}", headers={"Range": "bytes=0-9"})
    assert response.headers["x-video-duration"] == "212"


def test_stream_rejects_out_of_range_quality(api):
    response = api.get(f"/api/stream/{VIDEO_ID}", params={"quality": 5}, headers={"Range": "bytes=0-9"})
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request parameters"


def test_head_reports_duration_without_body(api):
    response = api.head(f"/api/stream/{VIDEO_ID}")

    assert response.status_code == 200
    assert response.headers["x-video-duration"] == "212"
    assert response.headers["accept-ranges"] == "bytes"
    assert response.content == b""
    assert api.local_strategy.calls == 0


def test_stream_resolution_failure_is_500_json(api, monkeypatch):
    failing = StaticStrategy("local", SourceKind.LOCAL_FILE, Unavailable("exit 1"))
    monkeypatch.setattr(routes_stream, "source_resolver", SourceResolver([failing]))

    response = api.get(f"/api/stream/{VIDEO_ID}", headers={"Range": "bytes=0-9"})

    assert response.status_code == 500
    assert response.json()["error"] == "Failed to resolve video source"
    assert response.json()["details"] == "local: exit 1"


def test_stream_falls_back_to_local_when_direct_upstream_fails(api, monkeypatch, local_descriptor):
    remote = MediaSourceDescriptor(kind=SourceKind.REMOTE_DIRECT, locator="https://cdn.example/22.mp4")
    direct = StaticStrategy("direct", SourceKind.REMOTE_DIRECT, Resolved(remote))
    local = StaticStrategy("local", SourceKind.LOCAL_FILE, Resolved(local_descriptor))
    monkeypatch.setattr(routes_stream, "source_resolver", SourceResolver([direct, local]))
    monkeypatch.setattr(routes_stream, "streamer", Streamer(
        client_factory=mock_client_factory(lambda request: httpx.Response(403, text="signature expired")),
    ))

    response = api.get(f"/api/stream/{VIDEO_ID}", headers={"Range": "bytes=0-99"})

    assert response.status_code == 206
    assert response.content == PAYLOAD[:100]
    assert direct.calls == 1
    assert local.calls == 1
