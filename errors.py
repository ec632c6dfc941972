"""Error types raised by the image service components"""

from typing import Optional


class ImageServiceError(Exception):
    """Base exception for image service errors."""

    error_code = "IMAGE_SERVICE_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code


class ValidationError(ImageServiceError):
    """Request input is missing, malformed or not allowed."""
    error_code = "VALIDATION_ERROR"


class UnsupportedFormatError(ValidationError):
    """Declared MIME type is not on the allow-list."""
    error_code = "INVALID_FILE_TYPE"


class PayloadTooLargeError(ValidationError):
    """Upload exceeds the configured size limit."""
    error_code = "PAYLOAD_TOO_LARGE"


class DecodeError(ImageServiceError):
    """Image content could not be decoded."""
    error_code = "DECODE_ERROR"


class EncodeError(ImageServiceError):
    """Raster could not be encoded."""
    error_code = "ENCODE_ERROR"


class NotFoundError(ImageServiceError):
    """No stored image for the given id."""
    error_code = "IMAGE_NOT_FOUND"


class StorageError(ImageServiceError):
    """Reading or writing asset bytes or metadata failed."""
    error_code = "STORAGE_ERROR"
