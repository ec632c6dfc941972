"""Image decoding and encoding for uploaded assets"""

import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Dict, Tuple

from PIL import Image, UnidentifiedImageError

from errors import DecodeError, EncodeError, UnsupportedFormatError, ValidationError

logger = logging.getLogger("ImageCodec")

ALLOWED_INPUT_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp")

# Pillow decoder names for the allowed input types
_PIL_DECODERS = ("JPEG", "PNG", "GIF", "WEBP")

OUTPUT_FORMAT = "webp"
OUTPUT_QUALITY = 80

# format -> (Pillow format, mime type, file extension)
OUTPUT_FORMATS = {
    "webp": ("WEBP", "image/webp", "webp"),
    "png": ("PNG", "image/png", "png"),
    "jpeg": ("JPEG", "image/jpeg", "jpg"),
}
_FORMAT_ALIASES = {"jpg": "jpeg"}


@dataclass(frozen=True)
class EncodedImage:
    """Encoded image bytes plus what a caller needs to serve them"""
    data: bytes
    mime_type: str
    extension: str
    size_px: Tuple[int, int]

    @property
    def bytes_len(self) -> int:
        return len(self.data)


def normalize_mime_type(mime_type: str) -> str:
    """Lower-case a MIME type and drop parameters such as '; charset=...'"""
    return (mime_type or "").split(";", 1)[0].strip().lower()


def normalize_format(target_format: str) -> str:
    """Resolve an output format name, raising ValidationError if unknown."""
    key = (target_format or "").strip().lower().lstrip(".")
    key = _FORMAT_ALIASES.get(key, key)
    if key not in OUTPUT_FORMATS:
        raise ValidationError(
            f"Unsupported output format '{target_format}'. "
            f"Supported formats: {', '.join(sorted(OUTPUT_FORMATS))}"
        )
    return key


def extension_for_format(target_format: str) -> str:
    return OUTPUT_FORMATS[normalize_format(target_format)][2]


def _to_raster(im: Image.Image) -> Image.Image:
    """Normalize a decoded image to RGB or RGBA"""
    if im.mode in ("RGB", "RGBA"):
        return im.copy()
    if im.mode == "P":
        # Palette images carry transparency in their info dict
        return im.convert("RGBA") if "transparency" in im.info else im.convert("RGB")
    if im.mode in ("LA", "PA", "La", "RGBa"):
        return im.convert("RGBA")
    if im.mode == "L":
        return im.convert("RGB")
    if im.mode.startswith("I") or im.mode == "F":
        # 16/32 bit greyscale: scale down to 8 bit before expanding to RGB
        return im.convert("I").point(lambda v: v * (1 / 256)).convert("L").convert("RGB")
    return im.convert("RGB")


def decode_image(data: bytes, declared_mime_type: str) -> Image.Image:
    """Decode image bytes into an RGB or RGBA raster.

    The declared MIME type is checked against ALLOWED_INPUT_TYPES before
    any decoding happens. Only the first frame of an animated image is kept.

    Args:
        data: Raw uploaded bytes
        declared_mime_type: MIME type supplied by the caller

    Returns:
        Pillow Image in RGB or RGBA mode

    Raises:
        UnsupportedFormatError: If the declared type is not allowed
        DecodeError: If the content cannot be decoded
    """
    mime_type = normalize_mime_type(declared_mime_type)
    if mime_type not in ALLOWED_INPUT_TYPES:
        raise UnsupportedFormatError(
            f"Invalid file type '{declared_mime_type}'. "
            f"Allowed types: {', '.join(ALLOWED_INPUT_TYPES)}"
        )

    try:
        with Image.open(BytesIO(data), formats=_PIL_DECODERS) as loaded_im:
            loaded_im.seek(0)
            loaded_im.load()
            raster = _to_raster(loaded_im)
    except Image.DecompressionBombError as e:
        raise DecodeError(f"Image is too large to decode safely: {e}")
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError, EOFError) as e:
        raise DecodeError(f"Failed to decode {mime_type} image: {e}")

    logger.debug(f"Decoded {mime_type} image: {raster.size[0]}x{raster.size[1]} mode={raster.mode}")
    return raster


def encode_image(
    raster: Image.Image,
    target_format: str = OUTPUT_FORMAT,
    quality: int = OUTPUT_QUALITY,
) -> EncodedImage:
    """Encode a raster to bytes.

    Raises:
        ValidationError: If the format or quality is not supported
        EncodeError: If Pillow fails to encode the raster
    """
    key = normalize_format(target_format)
    if isinstance(quality, bool) or not isinstance(quality, int) or not 1 <= quality <= 100:
        raise ValidationError(f"Quality must be an integer between 1 and 100, got {quality!r}")

    pil_format, mime_type, extension = OUTPUT_FORMATS[key]
    im = raster
    save_kwargs: Dict[str, Any] = {"format": pil_format}

    if key == "webp":
        save_kwargs["quality"] = quality
        save_kwargs["method"] = 4
    elif key == "jpeg":
        if im.mode in ("RGBA", "LA"):
            # JPEG has no alpha: flatten onto white
            background = Image.new("RGB", im.size, (255, 255, 255))
            background.paste(im, mask=im.split()[-1])
            im = background
        elif im.mode != "RGB":
            im = im.convert("RGB")
        save_kwargs["quality"] = quality
        save_kwargs["optimize"] = True
    else:
        save_kwargs["optimize"] = True

    buf = BytesIO()
    try:
        im.save(buf, **save_kwargs)
    except (OSError, ValueError, KeyError) as e:
        raise EncodeError(f"Failed to encode image as {key}: {e}")

    encoded = buf.getvalue()
    logger.debug(f"Encoded {im.size[0]}x{im.size[1]} image as {key} quality={quality}: {len(encoded)}B")
    return EncodedImage(data=encoded, mime_type=mime_type, extension=extension, size_px=im.size)


def get_image_metadata(image_bytes: bytes) -> Dict[str, Any]:
    """Extract width, height, format from image bytes"""
    try:
        with Image.open(BytesIO(image_bytes)) as img:
            return {
                "width": img.width,
                "height": img.height,
                "format": img.format
            }
    except (UnidentifiedImageError, OSError) as e:
        logger.warning(f"Failed to extract image metadata: {e}")
        return {"width": None, "height": None, "format": None}

