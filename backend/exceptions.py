"""
Custom Exceptions for ServeSense
Provides structured error handling with error codes and HTTP status mapping.

Transient absence (no pose / no racket this tick) is never an exception;
those paths return None and the tick is skipped.
"""

from typing import Optional, Dict, Any


class ServeSenseException(Exception):
    """Base exception for all ServeSense errors"""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to API response format"""
        result = {
            "error": self.code,
            "detail": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Resource Errors (404)
# =============================================================================

class SessionNotFound(ServeSenseException):
    """Raised when a saved session doesn't exist"""
    def __init__(self, session_key: str):
        super().__init__(
            f"Session not found: {session_key}",
            "SESSION_NOT_FOUND",
            404,
            {"session_key": session_key}
        )


class VideoNotFound(ServeSenseException):
    """Raised when video file doesn't exist"""
    def __init__(self, video_path: str):
        super().__init__(
            f"Video not found: {video_path}",
            "VIDEO_NOT_FOUND",
            404,
            {"video_path": video_path}
        )


# =============================================================================
# Validation Errors (400, 413, 415, 422)
# =============================================================================

class ValidationError(ServeSenseException):
    """Raised when input validation fails"""
    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(message, "VALIDATION_ERROR", 400, details)


class InvalidVideoFormat(ServeSenseException):
    """Raised when video format is not supported"""
    def __init__(self, content_type: str, allowed_types: list):
        super().__init__(
            f"Invalid video format: {content_type}. Allowed: {', '.join(allowed_types)}",
            "INVALID_VIDEO_FORMAT",
            415,
            {"content_type": content_type, "allowed_types": allowed_types}
        )


class FileTooLarge(ServeSenseException):
    """Raised when uploaded file exceeds size limit"""
    def __init__(self, file_size_mb: float, max_size_mb: int):
        super().__init__(
            f"File too large: {file_size_mb:.1f}MB (max {max_size_mb}MB)",
            "FILE_TOO_LARGE",
            413,
            {"file_size_mb": file_size_mb, "max_size_mb": max_size_mb}
        )


class InsufficientPoseData(ServeSenseException):
    """Raised when no metric vector could be computed from a video"""
    def __init__(self, message: str = "Insufficient pose data for analysis"):
        super().__init__(message, "INSUFFICIENT_POSE_DATA", 422)


# =============================================================================
# Processing Errors (422, 500, 503)
# =============================================================================

class VideoProcessingError(ServeSenseException):
    """Raised when video processing fails"""
    def __init__(self, message: str, stage: Optional[str] = None):
        details = {"stage": stage} if stage else {}
        super().__init__(message, "VIDEO_PROCESSING_ERROR", 422, details)


class FrameDecodeError(ServeSenseException):
    """Raised when a video source cannot be opened or decoded"""
    def __init__(self, message: str):
        super().__init__(message, "FRAME_DECODE_ERROR", 422, {"stage": "frame_source"})


class PoseEstimatorUnavailable(ServeSenseException):
    """Raised only when a neural pose estimator is explicitly required but cannot load"""
    def __init__(self, backend: str, reason: str):
        super().__init__(
            f"Pose estimator '{backend}' unavailable: {reason}",
            "POSE_ESTIMATOR_UNAVAILABLE",
            503,
            {"backend": backend}
        )


class SessionPersistenceError(ServeSenseException):
    """Raised when a session record cannot be written; callers may retry"""
    def __init__(self, message: str, session_key: Optional[str] = None):
        details = {"session_key": session_key} if session_key else {}
        super().__init__(message, "SESSION_PERSISTENCE_ERROR", 500, details)


# =============================================================================
# Resource Exhaustion Errors (429)
# =============================================================================

class RateLimitExceeded(ServeSenseException):
    """Raised when rate limit is exceeded"""
    def __init__(self, limit: str, retry_after: Optional[int] = None):
        details = {"limit": limit}
        if retry_after:
            details["retry_after_seconds"] = retry_after
        super().__init__(
            f"Rate limit exceeded: {limit}",
            "RATE_LIMIT_EXCEEDED",
            429,
            details
        )
