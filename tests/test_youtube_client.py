import time

import pytest
from yt_dlp.utils import DownloadError

from errors import NotFound, ResolutionFailed
from youtube_client import YouTubeClient

from helpers import VIDEO_ID, run


def test_slow_extraction_is_resolution_failed(monkeypatch):
    client = YouTubeClient(timeout=0.1)

    def stalled(url, extra_opts=None):
        time.sleep(0.5)
        return {}

    monkeypatch.setattr(client, "_extract_sync", stalled)

    started = time.monotonic()
    with pytest.raises(ResolutionFailed) as exc_info:
        run(client.extract_info(VIDEO_ID))

    assert "timed out" in exc_info.value.details
    assert time.monotonic() - started < 5


def test_extractor_errors_are_classified(fake_provider):
    fake_provider.state["error"] = DownloadError("ERROR: [youtube] dQw4w9WgXcQ: Video unavailable")

    with pytest.raises(NotFound):
        run(fake_provider.list_formats(VIDEO_ID))
