# Project:      TubeRelay
# File:         Metadata, formats and search API routes

from typing import List, Union
from fastapi import APIRouter, Query
from pydantic import BaseModel

from errors import ClientError
from models import FormatInfo, validate_video_id
from youtube_client import youtube_client


# Router
router = APIRouter(prefix="/api", tags=["Videos"])


# Response Models
class VideoDetailsResponse(BaseModel):
    """Video details, shaped for the frontend player page."""
    title: str
    description: str
    channelName: str
    embedUrl: str
    thumbnail: str
    duration: str
    views: str
    uploadDate: str


class FormatResponse(BaseModel):
    id: str
    quality: str
    container: str
    hasVideo: bool
    hasAudio: bool
    filesize: Union[int, str]

    @classmethod
    def from_format(cls, f: FormatInfo) -> "FormatResponse":
        return cls(**f.to_dict())


class FormatsResponse(BaseModel):
    formats: List[FormatResponse]


class SearchResult(BaseModel):
    title: str
    url: str
    channel: str
    views: str
    uploadDate: str
    thumbnail: str
    duration: str


# Endpoints
@router.get("/video/", include_in_schema=False)
@router.get("/formats/", include_in_schema=False)
async def missing_video_id():
    raise ClientError("Video ID is required")


@router.get("/video/{video_id}", response_model=VideoDetailsResponse)
async def get_video(video_id: str):
    """
    Get details for one video.

    - **video_id**: YouTube video id
    """
    video_id = validate_video_id(video_id)
    metadata = await youtube_client.get_metadata(video_id)
    return VideoDetailsResponse(**metadata.to_dict())


@router.get("/formats/{video_id}", response_model=FormatsResponse)
async def get_formats(video_id: str):
    """List every format the platform offers for a video."""
    video_id = validate_video_id(video_id)
    formats = await youtube_client.list_formats(video_id)
    return FormatsResponse(formats=[FormatResponse.from_format(f) for f in formats])


@router.get("/youtube_search", response_model=List[SearchResult])
async def search_videos(
    keyword: str = Query("", description="Search terms"),
    page: int = Query(1, ge=1, le=20),
):
    """Keyword search, five results per page."""
    if not keyword.strip():
        raise ClientError("Keyword parameter is required")

    results = await youtube_client.search(keyword.strip(), page)
    return [SearchResult(**r) for r in results]
