from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

VALIDATION_ERROR = "VALIDATION_ERROR"
INVALID_VIDEO_SIZE = "INVALID_VIDEO_SIZE"
RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
JOB_FAILED = "JOB_FAILED"
TIMEOUT = "TIMEOUT"
TOOL_UNAVAILABLE = "TOOL_UNAVAILABLE"


class SogniGenError(Exception):
    """Base class for every error surfaced to callers.

    Carries a stable machine-readable ``code`` next to the human readable
    message. ``hint`` is only set when a corrected parameter value can be
    suggested.
    """

    code = VALIDATION_ERROR

    def __init__(
        self,
        message: str,
        hint: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": False,
            "errorCode": self.code,
            "error": self.message,
        }
        if self.hint:
            payload["hint"] = self.hint
        if self.details:
            payload["errorDetails"] = self.details
        return payload


class RequestValidationError(SogniGenError):
    """Raised when an option combination is invalid."""

    code = VALIDATION_ERROR


class InvalidVideoSizeError(SogniGenError):
    code = INVALID_VIDEO_SIZE


class ResourceNotFoundError(SogniGenError):
    code = RESOURCE_NOT_FOUND

    def __init__(self, locator: str):
        super().__init__(f"Reference file not found: {locator}", details={"path": locator})
        self.locator = locator


class DownloadError(SogniGenError):
    code = RESOURCE_NOT_FOUND


class JobFailedError(SogniGenError):
    code = JOB_FAILED

    def __init__(self, message: str, correlation_id: Optional[str] = None):
        details = {"correlationId": correlation_id} if correlation_id else None
        super().__init__(message, details=details)
        self.correlation_id = correlation_id


class JobTimeoutError(SogniGenError):
    code = TIMEOUT

    def __init__(self, timeout_sec: float, correlation_id: Optional[str] = None):
        details: dict[str, Any] = {"timeoutSec": timeout_sec}
        if correlation_id:
            details["correlationId"] = correlation_id
        super().__init__(f"Timeout after {timeout_sec:g}s", details=details)
        self.timeout_sec = timeout_sec
        self.correlation_id = correlation_id


class ToolUnavailableError(SogniGenError):
    code = TOOL_UNAVAILABLE


class ConfigError(SogniGenError):
    code = VALIDATION_ERROR

    def __init__(self, message: str, path: Optional[Path] = None, line: Optional[int] = None):
        self.path = path
        self.line = line
        if path:
            loc = f"{path}"
            if line:
                loc += f":{line}"
            message = f"{loc}: {message}"
        super().__init__(message)
