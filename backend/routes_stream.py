# Project:      TubeRelay
# File:         Streaming API routes

import logging
from typing import Optional
from fastapi import APIRouter, Request, Query

from config import DEFAULT_QUALITY_CEILING
from duration import duration_resolver
from errors import ClientError, StreamFailed
from models import SourceKind, validate_video_id
from resolver import source_resolver
from streamer import streamer, parse_range_header


log = logging.getLogger(__name__)

# Router
router = APIRouter(prefix="/api/stream", tags=["Streaming"])


# Streaming Endpoints
@router.api_route("/", methods=["GET", "HEAD"], include_in_schema=False)
async def missing_video_id():
    raise ClientError("Invalid or missing videoId", details="empty")


@router.api_route("/{video_id}", methods=["GET", "HEAD"])
async def stream_video(
    video_id: str,
    request: Request,
    quality: Optional[int] = Query(None, ge=144, le=4320, description="Maximum height in pixels"),
):
    """
    Stream a byte range of a video.

    - **video_id**: YouTube video id
    - **quality**: height ceiling, defaults to the configured ceiling

    GET requires a Range header. HEAD only reports the duration.
    """
    video_id = validate_video_id(video_id)

    if request.method == "HEAD":
        duration = await duration_resolver.get_duration(video_id)
        return streamer.probe_response(duration)

    byte_range = parse_range_header(request.headers.get("range"))
    ceiling = quality or DEFAULT_QUALITY_CEILING

    descriptor = await source_resolver.resolve(video_id, ceiling)
    duration = duration_resolver.cached(video_id)

    try:
        return await streamer.stream(video_id, descriptor, byte_range, duration)
    except StreamFailed as e:
        if descriptor.kind is not SourceKind.REMOTE_DIRECT:
            raise
        log.warning("Direct source failed for %s (%s), falling back to local cache", video_id, e.details)

    descriptor = await source_resolver.resolve(video_id, ceiling, skip=(SourceKind.REMOTE_DIRECT,))
    return await streamer.stream(video_id, descriptor, byte_range, duration)
