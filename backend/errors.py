#===============================================================
# Project:      TubeRelay
# File:         Error taxonomy and upstream error classification
#===============================================================

from typing import Optional


class RelayError(Exception):
    """
    Base class for every error the relay reports to a client.

    `message` and `details` are sent to the client as
    `{"error": message, "details": details}`, so they must never
    carry stack traces or filesystem paths.
    """
    status_code = 500
    message = "Internal server error"

    def __init__(self, message: Optional[str] = None, details: Optional[str] = None):
        self.message = message or self.message
        self.details = details
        super().__init__(self.message if details is None else f"{self.message}: {details}")

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


# Client Errors (never retried)
class ClientError(RelayError):
    status_code = 400
    message = "Bad request"


class RangeRequired(RelayError):
    status_code = 416
    message = "Range header required"


class RangeNotSatisfiable(RelayError):
    status_code = 416
    message = "Requested range not satisfiable"

    def __init__(self, total_size: Optional[int] = None, details: Optional[str] = None):
        self.total_size = total_size
        super().__init__(details=details)


# Platform-reported Unavailability (never retried)
class NotFound(RelayError):
    status_code = 404
    message = "Video not found or unavailable"


class Forbidden(RelayError):
    status_code = 403
    message = "Video is private"


# Transient Upstream Trouble (safe for the client to retry)
class ResolutionFailed(RelayError):
    message = "Failed to resolve video source"


class ProbeFailed(RelayError):
    message = "Failed to probe video duration"


class DownloadFailed(RelayError):
    message = "Failed to download video"


class StreamFailed(RelayError):
    message = "Failed to stream video"


# Upstream Classification
NOT_FOUND_MARKERS = ("video unavailable", "not found", "has been removed", "does not exist")
AGE_MARKERS = ("confirm your age", "age-restricted", "age restricted", "inappropriate for some users")


def classify_upstream_error(error: Exception) -> RelayError:
    """Map a provider error message onto the relay's taxonomy."""
    text = str(error)
    lowered = text.lower()

    if "private" in lowered:
        return Forbidden("Video is private")
    if any(marker in lowered for marker in AGE_MARKERS):
        return Forbidden("Age-restricted video")
    if any(marker in lowered for marker in NOT_FOUND_MARKERS):
        return NotFound()
    return ResolutionFailed(details=_short(text))


def _short(text: str, limit: int = 200) -> str:
    """Keep the first line of an upstream message, bounded in length."""
    first_line = text.strip().splitlines()[0] if text.strip() else ""
    return first_line[:limit]
