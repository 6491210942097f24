from pathlib import Path

import pytest
from fastapi.testclient import TestClient

import main
import routes_stream
import routes_video
from duration import DurationResolver
from models import MediaSourceDescriptor, SourceKind
from resolver import SourceResolver, Resolved
from streamer import Streamer
from youtube_client import YouTubeClient

from helpers import VIDEO_ID, PAYLOAD, make_info, StaticStrategy


@pytest.fixture
def media_file(tmp_path) -> Path:
    path = tmp_path / f"{VIDEO_ID}-720p.mp4"
    path.write_bytes(PAYLOAD)
    return path


@pytest.fixture
def local_descriptor(media_file) -> MediaSourceDescriptor:
    return MediaSourceDescriptor(
        kind=SourceKind.LOCAL_FILE,
        locator=str(media_file),
        mime_type="video/mp4",
        total_size=len(PAYLOAD),
    )


@pytest.fixture
def fake_provider(monkeypatch):
    """Real YouTubeClient with yt-dlp itself replaced by a dict (or an exception)."""
    client = YouTubeClient(timeout=5)
    state = {"info": make_info(), "error": None, "calls": []}

    def extract_sync(url, extra_opts=None):
        state["calls"].append(url)
        if state["error"] is not None:
            raise state["error"]
        return state["info"]

    monkeypatch.setattr(client, "_extract_sync", extract_sync)
    client.state = state
    return client


@pytest.fixture
def api(monkeypatch, fake_provider, local_descriptor):
    """TestClient over the app with every collaborator swapped for a local double."""
    local = StaticStrategy("local", SourceKind.LOCAL_FILE, Resolved(local_descriptor))
    resolver = SourceResolver(strategies=[local])

    async def probe(video_id):
        return 212

    durations = DurationResolver(probes=[probe], timeout=5)

    monkeypatch.setattr(routes_video, "youtube_client", fake_provider)
    monkeypatch.setattr(routes_stream, "source_resolver", resolver)
    monkeypatch.setattr(routes_stream, "duration_resolver", durations)
    monkeypatch.setattr(routes_stream, "streamer", Streamer(chunk_size=4096, buffer_size=1024))

    client = TestClient(main.app)
    client.local_strategy = local
    client.durations = durations
    return client
