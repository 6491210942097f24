#===============================================================
# Project:      TubeRelay
# File:         Range stream relay
#===============================================================

import re
import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple, AsyncIterator, Callable, Dict

import aiofiles
import httpx
from fastapi.responses import StreamingResponse, Response

from config import STREAM_CHUNK_SIZE, READ_BUFFER_SIZE, UPSTREAM_TIMEOUT, USER_AGENT
from errors import ClientError, RangeRequired, RangeNotSatisfiable, StreamFailed
from models import ByteRange, MediaSourceDescriptor, SourceKind


log = logging.getLogger(__name__)

RANGE_PATTERN = re.compile(r"^bytes=(\d+)-(\d*)$")
CONTENT_RANGE_PATTERN = re.compile(r"^bytes\s+(?:(\d+)-(\d+)|\*)/(\d+|\*)$")

ClientFactory = Callable[[], httpx.AsyncClient]


# Range Header Parser
def parse_range_header(range_header: Optional[str]) -> ByteRange:
    """
    Parse `bytes=<start>-[<end>]`.

    A missing header is RangeRequired (416). Suffix ranges (`bytes=-N`),
    multiple ranges and `end < start` are rejected as ClientError.
    """
    if range_header is None or not range_header.strip():
        raise RangeRequired()

    match = RANGE_PATTERN.match(range_header.strip().replace(" ", ""))
    if not match:
        raise ClientError("Invalid Range header", details=range_header[:64])

    start = int(match.group(1))
    end = int(match.group(2)) if match.group(2) else None
    if end is not None and end < start:
        raise ClientError("Invalid Range header", details=range_header[:64])

    return ByteRange(start, end)


def clamp_range(byte_range: ByteRange, total_size: int, chunk_size: int = STREAM_CHUNK_SIZE) -> ByteRange:
    """
    Fit a range to a known total size.
    Open-ended ranges are capped at `start + chunk_size`.
    """
    if byte_range.start >= total_size:
        raise RangeNotSatisfiable(total_size=total_size)

    last = total_size - 1
    if byte_range.end is None:
        end = min(byte_range.start + chunk_size, last)
    else:
        end = min(byte_range.end, last)
    return ByteRange(byte_range.start, end)


def parse_content_range(value: Optional[str]) -> Tuple[Optional[int], Optional[int], Optional[int]]:
    """(start, end, total) from an upstream Content-Range; None where absent or `*`."""
    if not value:
        return None, None, None
    match = CONTENT_RANGE_PATTERN.match(value.strip())
    if not match:
        return None, None, None
    start, end, total = match.groups()
    return (
        int(start) if start is not None else None,
        int(end) if end is not None else None,
        int(total) if total != "*" else None,
    )


# Byte Sources
class LocalFileSource:
    """Reads a window of a finished cache file."""

    def __init__(self, path: str, buffer_size: int = READ_BUFFER_SIZE):
        self.path = Path(path)
        self.buffer_size = buffer_size
        self._file = None
        self._start = 0
        self.closed = False

    async def open(self, byte_range: ByteRange, chunk_size: int) -> Tuple[ByteRange, Optional[int]]:
        try:
            total = self.path.stat().st_size
        except OSError:
            raise StreamFailed(details="Cached file is missing")

        window = clamp_range(byte_range, total, chunk_size)
        self._file = await aiofiles.open(self.path, "rb")
        await self._file.seek(window.start)
        return window, total

    async def chunks(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._file.read(self.buffer_size)
            if not chunk:
                return
            yield chunk

    async def aclose(self) -> None:
        if self._file is not None and not self.closed:
            await self._file.close()
        self.closed = True


class RemoteHttpSource:
    """
    Reads a window from the platform's CDN with an upstream Range request.
    Sources that do not support byte ranges are fetched whole and the
    bytes before the window are skipped.

    The upstream client is created per session and closed with it; the
    response is opened (status and headers read) in `open` so failures
    surface before our own headers are committed.
    """

    def __init__(
        self,
        descriptor: MediaSourceDescriptor,
        client_factory: Optional[ClientFactory] = None,
        buffer_size: int = READ_BUFFER_SIZE,
    ):
        self.descriptor = descriptor
        self.buffer_size = buffer_size
        self._client_factory = client_factory or default_client_factory
        self._client: Optional[httpx.AsyncClient] = None
        self._response: Optional[httpx.Response] = None
        self._skip = 0
        self.closed = False

    async def open(self, byte_range: ByteRange, chunk_size: int) -> Tuple[ByteRange, Optional[int]]:
        total = self.descriptor.total_size
        if total is not None:
            byte_range = clamp_range(byte_range, total, chunk_size)

        headers = {"User-Agent": USER_AGENT}
        headers.update(self.descriptor.headers)
        if self.descriptor.supports_byte_ranges:
            headers["Range"] = byte_range.to_header()
        headers["Accept-Encoding"] = "identity"

        self._client = self._client_factory()
        try:
            request = self._client.build_request("GET", self.descriptor.locator, headers=headers)
            self._response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            await self.aclose()
            raise StreamFailed(details=f"Upstream request failed: {type(e).__name__}")

        try:
            return self._frame(byte_range, total, chunk_size)
        except Exception:
            await self.aclose()
            raise

    def _frame(self, byte_range: ByteRange, total: Optional[int], chunk_size: int) -> Tuple[ByteRange, Optional[int]]:
        """Work out the window actually being served from the upstream response."""
        response = self._response
        status = response.status_code

        if status == 416:
            _, _, upstream_total = parse_content_range(response.headers.get("content-range"))
            raise RangeNotSatisfiable(total_size=upstream_total or total)

        if status == 206:
            up_start, up_end, up_total = parse_content_range(response.headers.get("content-range"))
            if up_start is not None and up_start != byte_range.start:
                raise StreamFailed(details="Upstream returned a different range")
            total = up_total if up_total is not None else total
            end = up_end if up_end is not None else byte_range.end
            if end is None and total is not None:
                end = total - 1
            if end is None:
                raise StreamFailed(details="Upstream did not report a range end")
            return ByteRange(byte_range.start, end), total

        if status == 200:
            # Range ignored: the body starts at byte 0
            length = response.headers.get("content-length")
            if not length or not length.isdigit():
                raise StreamFailed(details="Upstream did not report a length")
            total = int(length)
            window = clamp_range(byte_range, total, chunk_size)
            self._skip = window.start
            return window, total

        raise StreamFailed(details=f"Upstream responded {status}")

    async def chunks(self) -> AsyncIterator[bytes]:
        skip = self._skip
        async for chunk in self._response.aiter_bytes(chunk_size=self.buffer_size):
            if skip:
                if len(chunk) <= skip:
                    skip -= len(chunk)
                    continue
                chunk = chunk[skip:]
                skip = 0
            yield chunk

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._response is not None:
            await self._response.aclose()
        if self._client is not None:
            await self._client.aclose()


def default_client_factory() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(UPSTREAM_TIMEOUT),
        follow_redirects=True,
    )


# Stream Session
class SessionState(Enum):
    IDLE = "idle"
    RANGE_VALIDATED = "range_validated"
    SOURCE_BOUND = "source_bound"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"


TERMINAL_STATES = (SessionState.COMPLETED, SessionState.ABORTED, SessionState.FAILED)


class StreamSession:
    """
    One relay operation: a byte window copied from one source to one client.

    The session owns its source handle exclusively and releases it on
    every terminal transition.
    """

    def __init__(
        self,
        video_id: str,
        descriptor: MediaSourceDescriptor,
        chunk_size: int = STREAM_CHUNK_SIZE,
        buffer_size: int = READ_BUFFER_SIZE,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.video_id = video_id
        self.descriptor = descriptor
        self.chunk_size = chunk_size
        self.buffer_size = buffer_size
        self.client_factory = client_factory
        self.state = SessionState.IDLE
        self.requested: Optional[ByteRange] = None
        self.window: Optional[ByteRange] = None
        self.total_size: Optional[int] = None
        self.bytes_sent = 0
        self._source = None
        self._body: Optional[AsyncIterator[bytes]] = None

    def _transition(self, expected: SessionState, new: SessionState) -> None:
        if self.state is not expected:
            raise RuntimeError(f"Session in {self.state.value}, expected {expected.value}")
        self.state = new

    # Idle -> RangeValidated
    def use_range(self, byte_range: ByteRange) -> None:
        """byte_range comes from parse_range_header."""
        self.requested = byte_range
        self._transition(SessionState.IDLE, SessionState.RANGE_VALIDATED)

    # RangeValidated -> SourceBound
    async def bind(self) -> None:
        if self.state is not SessionState.RANGE_VALIDATED:
            raise RuntimeError(f"Cannot bind a session in {self.state.value}")

        self._source = self._make_source()
        try:
            self.window, self.total_size = await self._source.open(self.requested, self.chunk_size)
        except Exception:
            self.state = SessionState.FAILED
            await self._source.aclose()
            raise

        self._transition(SessionState.RANGE_VALIDATED, SessionState.SOURCE_BOUND)
        log.debug(
            "Bound %s %s-%s/%s from %s",
            self.video_id, self.window.start, self.window.end,
            self.total_size, self.descriptor.kind.value,
        )

    def _make_source(self):
        if self.descriptor.kind is SourceKind.LOCAL_FILE:
            return LocalFileSource(self.descriptor.locator, self.buffer_size)
        return RemoteHttpSource(self.descriptor, self.client_factory, self.buffer_size)

    def response_headers(self, duration: Optional[int] = None) -> Dict[str, str]:
        if self.window is None:
            raise RuntimeError("Session is not bound")

        end = "" if self.window.end is None else str(self.window.end)
        total = "*" if self.total_size is None else str(self.total_size)
        headers = {
            "Content-Range": f"bytes {self.window.start}-{end}/{total}",
            "Accept-Ranges": "bytes",
            "Content-Type": self.descriptor.mime_type,
            "Cache-Control": "no-cache",
        }
        if self.window.length is not None:
            headers["Content-Length"] = str(self.window.length)
        if duration:
            headers["X-Video-Duration"] = str(duration)
        return headers

    # SourceBound -> Streaming -> Completed | Aborted | Failed
    def body(self) -> AsyncIterator[bytes]:
        if self._body is None:
            self._body = self._copy()
        return self._body

    async def _copy(self) -> AsyncIterator[bytes]:
        self._transition(SessionState.SOURCE_BOUND, SessionState.STREAMING)
        remaining = self.window.length

        try:
            async for chunk in self._source.chunks():
                if remaining is not None:
                    chunk = chunk[:remaining]
                    remaining -= len(chunk)
                self.bytes_sent += len(chunk)
                yield chunk
                if remaining == 0:
                    break

            if remaining:
                raise StreamFailed(details=f"Source ended {remaining} bytes early")
            self.state = SessionState.COMPLETED
            log.debug("Completed %s: %d bytes", self.video_id, self.bytes_sent)

        except (GeneratorExit, asyncio.CancelledError):
            self.state = SessionState.ABORTED
            log.info(
                "Client disconnected from %s after %d bytes (range %s-%s)",
                self.video_id, self.bytes_sent, self.window.start, self.window.end,
            )
            raise

        except Exception as e:
            self.state = SessionState.FAILED
            log.error(
                "Stream failed for %s range %s-%s after %d bytes: %s: %s",
                self.video_id, self.window.start, self.window.end,
                self.bytes_sent, type(e).__name__, e,
            )
            raise

        finally:
            await self._source.aclose()

    async def close(self) -> None:
        """Release everything. Safe to call in any state, any number of times."""
        if self._body is not None:
            await self._body.aclose()
        if self._source is not None:
            await self._source.aclose()
        if self.state not in TERMINAL_STATES:
            self.state = SessionState.ABORTED


class SessionResponse(StreamingResponse):
    """StreamingResponse that always closes its session, even on disconnect."""

    def __init__(self, session: StreamSession, headers: Dict[str, str]):
        super().__init__(
            session.body(),
            status_code=206,
            media_type=session.descriptor.mime_type,
            headers=headers,
        )
        self.session = session

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await asyncio.shield(self.session.close())


# Streamer
class Streamer:
    """Builds range responses for resolved sources."""

    def __init__(
        self,
        chunk_size: int = STREAM_CHUNK_SIZE,
        buffer_size: int = READ_BUFFER_SIZE,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.chunk_size = chunk_size
        self.buffer_size = buffer_size
        self.client_factory = client_factory

    def session(self, video_id: str, descriptor: MediaSourceDescriptor) -> StreamSession:
        return StreamSession(
            video_id,
            descriptor,
            chunk_size=self.chunk_size,
            buffer_size=self.buffer_size,
            client_factory=self.client_factory,
        )

    async def stream(
        self,
        video_id: str,
        descriptor: MediaSourceDescriptor,
        byte_range: ByteRange,
        duration: Optional[int] = None,
    ) -> SessionResponse:
        """
        Bind the source and return a 206 response for the window.
        Everything that can fail before headers are sent fails here.
        """
        session = self.session(video_id, descriptor)
        session.use_range(byte_range)
        await session.bind()
        return SessionResponse(session, session.response_headers(duration))

    @staticmethod
    def probe_response(duration: Optional[int], mime_type: str = "video/mp4") -> Response:
        """Header-only answer for HEAD requests."""
        headers = {"Accept-Ranges": "bytes", "Cache-Control": "no-cache"}
        if duration:
            headers["X-Video-Duration"] = str(duration)
        return Response(status_code=200, media_type=mime_type, headers=headers)


streamer = Streamer()
