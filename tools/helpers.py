"""Shared helper functions for tool implementations"""

import base64
import binascii
import logging
import re
from typing import Any, Dict, Optional, Tuple

from errors import ImageServiceError, ValidationError
from models.asset import AssetRecord

logger = logging.getLogger("ImageServer")

DATA_URI_REGEX = re.compile(r'^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[\w.+-]+=[\w.+-]+)*);base64,', re.IGNORECASE)


def decode_image_payload(image_base64: str, mime_type: Optional[str] = None) -> Tuple[bytes, str]:
    """Decode a base64 string or data URI into bytes and a MIME type.

    An explicit mime_type wins over the one declared in a data URI.

    Raises:
        ValidationError: If the payload is missing, not base64, or has no MIME type
    """
    if not image_base64 or not isinstance(image_base64, str):
        raise ValidationError("No file uploaded")

    payload = image_base64.strip()
    declared = None
    match = DATA_URI_REGEX.match(payload)
    if match:
        declared = match.group("mime")
        payload = payload[match.end():]

    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Image data is not valid base64: {e}")

    effective_mime = mime_type or declared
    if not effective_mime:
        raise ValidationError("mime_type is required when image data is not a data URI")
    return data, effective_mime


def error_response(exc: Exception, operation: str) -> Dict[str, Any]:
    """Translate an exception into the error dict returned by tools"""
    if isinstance(exc, ImageServiceError):
        logger.warning(f"{operation} failed [{exc.error_code}]: {exc.message}")
        return {"error": exc.message, "error_code": exc.error_code}
    logger.exception(f"{operation} failed unexpectedly")
    return {"error": f"Internal server error: {exc}", "error_code": "INTERNAL_ERROR"}


def record_response(record: AssetRecord) -> Dict[str, Any]:
    return record.to_dict()
