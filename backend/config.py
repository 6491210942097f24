#===============================================================
# Project:      TubeRelay
# File:         Environment configuration
#===============================================================

import os
from typing import List
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name, "")
    try:
        return int(value) if value else default
    except ValueError:
        return default


def _list_env(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


# Quality / Streaming
DEFAULT_QUALITY_CEILING = _int_env("DEFAULT_QUALITY_CEILING", 720)
STREAM_CHUNK_SIZE = _int_env("STREAM_CHUNK_SIZE", 1024 * 1024)  # Open-ended range window
READ_BUFFER_SIZE = _int_env("READ_BUFFER_SIZE", 64 * 1024)

# Local Cache
VIDEO_CACHE_DIR = os.getenv("VIDEO_CACHE_DIR", "./cache")
YTDLP_PATH = os.getenv("YTDLP_PATH", "yt-dlp")

# Timeouts (seconds)
RESOLVE_TIMEOUT = _int_env("RESOLVE_TIMEOUT", 20)
PROBE_TIMEOUT = _int_env("PROBE_TIMEOUT", 20)
UPSTREAM_TIMEOUT = _int_env("UPSTREAM_TIMEOUT", 15)
DOWNLOAD_TIMEOUT = _int_env("DOWNLOAD_TIMEOUT", 600)

# HTTP
CORS_ORIGINS = _list_env("CORS_ORIGINS", "*")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
DEBUG = bool(os.getenv("DEBUG"))

USER_AGENT = os.getenv(
    "USER_AGENT",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36",
)
