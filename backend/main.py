#===============================================================
# Project:      TubeRelay
# File:         Main application entry point (FastAPI)
#===============================================================

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import CORS_ORIGINS, DEBUG, LOG_LEVEL, VIDEO_CACHE_DIR, DEFAULT_QUALITY_CEILING
from errors import RelayError, RangeNotSatisfiable


# Logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
for lib in ["httpx", "httpcore"]:
    logging.getLogger(lib).setLevel(logging.WARNING)

log = logging.getLogger("tuberelay")


# Lifespan Events (startup/shutdown)
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    log.info("Starting TubeRelay (cache: %s, default ceiling: %sp)", VIDEO_CACHE_DIR, DEFAULT_QUALITY_CEILING)
    yield
    log.info("Shutting down TubeRelay...")


# Create FastAPI app
app = FastAPI(
    title="TubeRelay",
    description="Video search, metadata and range-streaming relay",
    version="0.1.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials="*" not in CORS_ORIGINS,
    allow_methods=["GET", "HEAD"],
    allow_headers=["Range", "Content-Type"],
    expose_headers=["Content-Range", "Content-Length", "Accept-Ranges", "X-Video-Duration"],
)


# Exception Handlers
@app.exception_handler(RelayError)
async def relay_error_handler(request: Request, exc: RelayError):
    """Structured {error, details} body for every known failure."""
    if exc.status_code >= 500:
        log.error("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc)
    else:
        log.info("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc)

    headers = {}
    if isinstance(exc, RangeNotSatisfiable) and exc.total_size is not None:
        headers["Content-Range"] = f"bytes */{exc.total_size}"

    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    fields = ", ".join(".".join(str(p) for p in err.get("loc", ())[1:]) for err in exc.errors())
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request parameters", "details": fields or None},
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


# Global Exception Handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch all unhandled exceptions and return a clean error response."""
    error_id = f"ERR-{id(exc)}"
    log.exception("Unhandled exception [%s]: %s: %s", error_id, type(exc).__name__, exc)

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "error_id": error_id,
            "details": str(exc) if DEBUG else "An unexpected error occurred",
        }
    )


# Health Check Endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "OK"}


# Register API Routers
from routes_video import router as video_router
from routes_stream import router as stream_router

app.include_router(video_router)
app.include_router(stream_router)


if __name__ == "__main__":
    import os
    import uvicorn
    uvicorn.run("main:app", host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "5000")))
