"""Custom exception classes and error handling."""

from typing import Any

from fastapi import HTTPException, status


class AppException(HTTPException):
    """Base application exception."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(
            status_code=status_code,
            detail={
                "success": False,
                "error": {
                    "code": code,
                    "message": message,
                    "details": details or {},
                },
            },
        )


class ValidationError(AppException):
    """Data validation failed."""

    def __init__(
        self,
        message: str = "Validation error",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            code="VALIDATION_ERROR",
            message=message,
            details=details,
        )


class UploadError(AppException):
    """File upload failed."""

    def __init__(
        self,
        message: str = "Upload failed",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            code="UPLOAD_FAILED",
            message=message,
            details=details,
        )


class ConflictError(AppException):
    """Request conflicts with existing data."""

    def __init__(
        self,
        message: str = "Conflict",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            code="CONFLICT",
            message=message,
            details=details,
        )


class NotFoundError(AppException):
    """Resource not found."""

    def __init__(
        self,
        resource: str = "Resource",
        identifier: str | None = None,
    ):
        details = {}
        if identifier:
            details["identifier"] = identifier
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            code="NOT_FOUND",
            message=f"{resource} not found",
            details=details,
        )


class InternalError(AppException):
    """Internal server error."""

    def __init__(
        self,
        message: str = "Internal server error",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            code="INTERNAL_ERROR",
            message=message,
            details=details,
        )


class ScoringFailed(AppException):
    """A synchronous scoring run ended in a classified pipeline failure."""

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            code=code,
            message=message,
            details=details,
        )


# ==========================================
# Scoring pipeline errors
# ==========================================
# These are plain exceptions raised inside the per-file pipeline. They are
# caught by the scoring task and recorded per file, never sent to the client
# directly.


class ScoringError(Exception):
    """Base class for per-file pipeline failures."""

    code = "SCORING_FAILED"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class DocumentConversionError(ScoringError):
    """The uploaded document could not be rasterized."""

    code = "DOCUMENT_CONVERSION_FAILED"


class StudentIdentificationFailure(ScoringError):
    """No student number could be resolved for the page."""

    code = "STUDENT_NOT_IDENTIFIED"


class RegionExtractionError(ScoringError):
    """Neither the warp nor the template path produced a crop."""

    code = "REGION_EXTRACTION_FAILED"


class RegionOutOfBoundsError(RegionExtractionError):
    """The scaled template box collapsed to zero area after clipping."""

    code = "REGION_OUT_OF_BOUNDS"


class VisionExtractionError(ScoringError):
    """The vision model failed or returned an unparsable value."""

    code = "VISION_EXTRACTION_FAILED"


class VisionConfigurationError(VisionExtractionError):
    """The vision model is not configured (missing API key)."""

    code = "VISION_NOT_CONFIGURED"
