#===============================================================
# Project:      TubeRelay
# File:         Local cache of downloaded videos (yt-dlp subprocess)
#===============================================================

import os
import uuid
import asyncio
import logging
from pathlib import Path
from typing import Optional, Dict, List, Protocol, Tuple

from config import VIDEO_CACHE_DIR, YTDLP_PATH, DOWNLOAD_TIMEOUT
from errors import DownloadFailed
from models import watch_url


log = logging.getLogger(__name__)


class Downloader(Protocol):
    async def download(self, video_id: str, quality_ceiling: int, dest: Path) -> None:
        """Write the complete video to `dest` or raise DownloadFailed."""


# yt-dlp Subprocess
class YtDlpDownloader:
    """
    Runs the yt-dlp executable as an owned child process.

    The process is killed and reaped on every exit path other than a
    normal exit: timeout, an error while talking to it, or the download
    task being cancelled at shutdown. Requesters going away never cancel
    it; the cache store shields the shared task from them.
    """

    def __init__(self, ytdlp_path: str = YTDLP_PATH, timeout: float = DOWNLOAD_TIMEOUT):
        self.ytdlp_path = ytdlp_path
        self.timeout = timeout

    def build_cmd(self, video_id: str, quality_ceiling: int, dest: Path) -> List[str]:
        """
        Progressive (audio+video) mp4 only, so no merge step is needed and
        the bytes match the .mp4 cache path they are served from.
        """
        fmt = (
            f"best[height<={quality_ceiling}][ext=mp4][vcodec!=none][acodec!=none]"
            f"/best[height<={quality_ceiling}][ext=mp4]"
        )
        return [
            self.ytdlp_path,
            "--no-playlist",
            "--no-part",
            "--no-progress",
            "--quiet",
            "-f", fmt,
            "-o", str(dest),
            watch_url(video_id),
        ]

    async def download(self, video_id: str, quality_ceiling: int, dest: Path) -> None:
        cmd = self.build_cmd(video_id, quality_ceiling, dest)
        log.info("Downloading %s (<=%sp)", video_id, quality_ceiling)

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                stdin=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise DownloadFailed(details=f"Could not start downloader: {e.strerror or e}")

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise DownloadFailed(details=f"Download timed out after {self.timeout}s")
        finally:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()

        if proc.returncode != 0:
            tail = stderr.decode(errors="replace").strip()[-500:]
            log.error("yt-dlp exited %s for %s: %s", proc.returncode, video_id, tail)
            raise DownloadFailed(details=f"Downloader exited with code {proc.returncode}")


# Cache Store
class LocalCacheStore:
    """
    On-disk cache of complete downloads keyed by (video id, quality ceiling).

    A file at the final path is always complete: downloads land in a
    hidden temp file and are renamed into place only after success.
    """

    def __init__(
        self,
        cache_dir: str = VIDEO_CACHE_DIR,
        downloader: Optional[Downloader] = None,
    ):
        self.cache_dir = Path(cache_dir)
        self.downloader = downloader or YtDlpDownloader()
        self._inflight: Dict[Tuple[str, int], asyncio.Task] = {}

    def path_for(self, video_id: str, quality_ceiling: int) -> Path:
        """Deterministic cache path. video_id must already be validated."""
        return self.cache_dir / f"{video_id}-{quality_ceiling}p.mp4"

    def lookup(self, video_id: str, quality_ceiling: int) -> Optional[Path]:
        path = self.path_for(video_id, quality_ceiling)
        return path if path.is_file() else None

    async def ensure_materialized(self, video_id: str, quality_ceiling: int) -> Path:
        """Return the cached file, downloading it first on a miss."""
        cached = self.lookup(video_id, quality_ceiling)
        if cached:
            log.debug("Cache hit: %s", cached.name)
            return cached

        key = (video_id, quality_ceiling)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._materialize(video_id, quality_ceiling))
            self._inflight[key] = task
            task.add_done_callback(lambda t: self._finished(key, t))
        else:
            log.debug("Joining in-flight download for %s", video_id)

        # Shielded so one requester going away does not cancel the download for the rest
        return await asyncio.shield(task)

    async def _materialize(self, video_id: str, quality_ceiling: int) -> Path:
        final_path = self.path_for(video_id, quality_ceiling)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = self.cache_dir / f".{final_path.stem}.{uuid.uuid4().hex}.part"

        try:
            await self.downloader.download(video_id, quality_ceiling, tmp_path)
            if not tmp_path.is_file() or tmp_path.stat().st_size == 0:
                raise DownloadFailed(details="Downloader produced no output")
            os.replace(tmp_path, final_path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

        log.info("Cached %s (%d bytes)", final_path.name, final_path.stat().st_size)
        return final_path

    def _finished(self, key: Tuple[str, int], task: asyncio.Task) -> None:
        self._inflight.pop(key, None)
        # Retrieve the outcome here; every requester may have gone already
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            log.warning("Download of %s at %sp failed: %s", key[0], key[1], error)


cache_store = LocalCacheStore()
