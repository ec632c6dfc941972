"""Pixel transforms applied to decoded rasters.

Edits are described by a TransformConfig and applied by apply_transforms
in a fixed order: rotate, flip, flop, brightness, contrast, grayscale.
Every step is skipped when its value is the default.

Colour steps work on 8-bit channels through lookup tables, so brightness
and contrast are exact per-channel affine maps clamped to [0, 255]. Alpha
is never touched by a colour step.
"""

import logging
import math
from dataclasses import dataclass, fields
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from PIL import Image

from errors import ValidationError

logger = logging.getLogger("ImageServer")

PIPELINE_ORDER = ("rotate", "flip", "flop", "brightness", "contrast", "grayscale")

MAX_WIDTH = 2000
MAX_HEIGHT = 2000

CONTRAST_PIVOT = 128

TRUE_STRINGS = {"1", "true", "yes", "on"}
FALSE_STRINGS = {"0", "false", "no", "off"}

# Accepted parameter names -> TransformConfig field
PARAM_ALIASES = {
    "rotate": "rotate_degrees",
    "rotateDegrees": "rotate_degrees",
    "rotate_degrees": "rotate_degrees",
    "flip": "flip",
    "flop": "flop",
    "brightness": "brightness",
    "brightnessFactor": "brightness",
    "brightness_factor": "brightness",
    "contrast": "contrast",
    "contrastFactor": "contrast",
    "contrast_factor": "contrast",
    "grayscale": "grayscale",
    "greyscale": "grayscale",
}


def parse_number(name: str, value: Any) -> float:
    """Parse a finite number from an int, float or numeric string"""
    if isinstance(value, bool):
        raise ValidationError(f"Parameter '{name}' must be a number, got boolean {value!r}")
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            raise ValidationError(f"Parameter '{name}' must be a number, got {value!r}")
    else:
        raise ValidationError(f"Parameter '{name}' must be a number, got {type(value).__name__}")
    if not math.isfinite(number):
        raise ValidationError(f"Parameter '{name}' must be finite, got {value!r}")
    return number


def parse_flag(name: str, value: Any) -> bool:
    """Parse a boolean from a bool, 0/1 or one of the accepted strings"""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUE_STRINGS:
            return True
        if lowered in FALSE_STRINGS:
            return False
    raise ValidationError(f"Parameter '{name}' must be a boolean, got {value!r}")


def _is_absent(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


@dataclass(frozen=True)
class TransformConfig:
    """Requested edits for the transform pipeline"""
    rotate_degrees: float = 0.0
    flip: bool = False
    flop: bool = False
    brightness: float = 1.0
    contrast: float = 1.0
    grayscale: bool = False

    def __post_init__(self):
        for name in ("rotate_degrees", "brightness", "contrast"):
            object.__setattr__(self, name, parse_number(name, getattr(self, name)))
        for name in ("flip", "flop", "grayscale"):
            object.__setattr__(self, name, parse_flag(name, getattr(self, name)))
        if self.brightness < 0:
            raise ValidationError(f"Parameter 'brightness' must be >= 0, got {self.brightness}")
        object.__setattr__(self, "rotate_degrees", self.rotate_degrees % 360)

    @classmethod
    def from_params(cls, params: Optional[Mapping[str, Any]]) -> "TransformConfig":
        """Build a config from loosely typed request parameters.

        Missing keys, None and blank strings take the default. Everything
        else must parse cleanly or the whole request is rejected.
        """
        if params is None:
            return cls()
        if not isinstance(params, Mapping):
            raise ValidationError(f"Transform options must be an object, got {type(params).__name__}")

        values: Dict[str, Any] = {}
        for key, raw_value in params.items():
            field_name = PARAM_ALIASES.get(key)
            if field_name is None:
                raise ValidationError(
                    f"Unknown transform parameter '{key}'. "
                    f"Supported: rotate, flip, flop, brightness, contrast, grayscale"
                )
            if field_name in values:
                raise ValidationError(f"Parameter '{key}' conflicts with another alias for '{field_name}'")
            if _is_absent(raw_value):
                continue
            if field_name in ("flip", "flop", "grayscale"):
                values[field_name] = parse_flag(key, raw_value)
            else:
                values[field_name] = parse_number(key, raw_value)

        return cls(**values)

    @property
    def is_identity(self) -> bool:
        return self == TransformConfig()

    def active_steps(self) -> List[str]:
        """Names of the steps that will run, in pipeline order"""
        defaults = TransformConfig()
        field_for_step = {
            "rotate": "rotate_degrees",
            "flip": "flip",
            "flop": "flop",
            "brightness": "brightness",
            "contrast": "contrast",
            "grayscale": "grayscale",
        }
        return [
            step for step in PIPELINE_ORDER
            if getattr(self, field_for_step[step]) != getattr(defaults, field_for_step[step])
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def _clamp(value: float) -> int:
    # Huge factors overflow to inf; compare before rounding
    if math.isnan(value) or value <= 0:
        return 0
    if value >= 255:
        return 255
    return int(math.floor(value + 0.5))


def _apply_to_colour_bands(raster: Image.Image, lut: List[int]) -> Image.Image:
    bands = raster.split()
    colour = [band.point(lut) for band in bands[:3]]
    return Image.merge(raster.mode, colour + list(bands[3:]))


def rotate(raster: Image.Image, degrees: float) -> Image.Image:
    """Rotate clockwise by degrees, expanding the canvas for arbitrary angles"""
    degrees = degrees % 360
    if degrees == 0:
        return raster.copy()
    if degrees == 90:
        return raster.transpose(Image.Transpose.ROTATE_270)
    if degrees == 180:
        return raster.transpose(Image.Transpose.ROTATE_180)
    if degrees == 270:
        return raster.transpose(Image.Transpose.ROTATE_90)

    fill: Tuple[int, ...] = (0, 0, 0, 0) if raster.mode == "RGBA" else (0, 0, 0)
    # Pillow rotates counter-clockwise
    return raster.rotate(-degrees, resample=Image.Resampling.BICUBIC, expand=True, fillcolor=fill)


def flip(raster: Image.Image) -> Image.Image:
    """Mirror top to bottom"""
    return raster.transpose(Image.Transpose.FLIP_TOP_BOTTOM)


def flop(raster: Image.Image) -> Image.Image:
    """Mirror left to right"""
    return raster.transpose(Image.Transpose.FLIP_LEFT_RIGHT)


def adjust_brightness(raster: Image.Image, factor: float) -> Image.Image:
    lut = [_clamp(v * factor) for v in range(256)]
    return _apply_to_colour_bands(raster, lut)


def adjust_contrast(raster: Image.Image, factor: float) -> Image.Image:
    # factor * v - 128 * (factor - 1), written around the pivot so that
    # large factors do not produce inf - inf
    lut = [_clamp(factor * (v - CONTRAST_PIVOT) + CONTRAST_PIVOT) for v in range(256)]
    return _apply_to_colour_bands(raster, lut)


def to_grayscale(raster: Image.Image) -> Image.Image:
    """Replace R, G and B with ITU-R 601 luma, keeping alpha"""
    luma = raster.convert("RGB").convert("L")
    bands = [luma, luma, luma]
    if raster.mode == "RGBA":
        bands.append(raster.getchannel("A"))
    return Image.merge(raster.mode, bands)


_STEPS: Dict[str, Callable[[Image.Image, TransformConfig], Image.Image]] = {
    "rotate": lambda im, cfg: rotate(im, cfg.rotate_degrees),
    "flip": lambda im, cfg: flip(im),
    "flop": lambda im, cfg: flop(im),
    "brightness": lambda im, cfg: adjust_brightness(im, cfg.brightness),
    "contrast": lambda im, cfg: adjust_contrast(im, cfg.contrast),
    "grayscale": lambda im, cfg: to_grayscale(im),
}


def _ensure_raster_mode(raster: Image.Image) -> Image.Image:
    if raster.mode in ("RGB", "RGBA"):
        return raster
    if raster.mode in ("LA", "PA") or (raster.mode == "P" and "transparency" in raster.info):
        return raster.convert("RGBA")
    return raster.convert("RGB")


def apply_transforms(raster: Image.Image, config: TransformConfig) -> Image.Image:
    """Apply the configured edits in PIPELINE_ORDER and return a new raster"""
    result = _ensure_raster_mode(raster)
    if config.is_identity:
        logger.debug("No transforms requested")
        return result.copy()
    for step in config.active_steps():
        result = _STEPS[step](result, config)
    logger.debug(f"Applied transforms {config.to_dict()} -> {result.size[0]}x{result.size[1]}")
    return result


def fit_size(width: int, height: int, max_width: int = MAX_WIDTH, max_height: int = MAX_HEIGHT) -> Tuple[int, int]:
    """Largest size inside the box with the same aspect ratio, never enlarged"""
    if width <= max_width and height <= max_height:
        return width, height
    scale = min(max_width / width, max_height / height)
    new_width = max(1, min(max_width, int(round(width * scale))))
    new_height = max(1, min(max_height, int(round(height * scale))))
    return new_width, new_height


def fit_within(raster: Image.Image, max_width: int = MAX_WIDTH, max_height: int = MAX_HEIGHT) -> Image.Image:
    """Downscale to fit inside max_width x max_height, preserving aspect ratio"""
    new_size = fit_size(raster.width, raster.height, max_width, max_height)
    if new_size == raster.size:
        return raster
    logger.debug(f"Resizing {raster.size[0]}x{raster.size[1]} -> {new_size[0]}x{new_size[1]}")
    return raster.resize(new_size, Image.Resampling.LANCZOS)
