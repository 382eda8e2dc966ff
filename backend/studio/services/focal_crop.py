"""Focal-point crop geometry.

Maps a stored, normalized focal point to the visible crop rectangle of an
image rendered at a target aspect ratio. All public helpers are total: bad
geometry degrades to "no crop" (``None``) instead of raising.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from PIL import Image


@dataclass(frozen=True, slots=True)
class AspectPreset:
    width: int
    height: int
    label: str


@dataclass(frozen=True, slots=True)
class CropRect:
    """Crop rectangle in percent (0-100) of the source image box."""

    left: float
    top: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.left + self.width

    @property
    def bottom(self) -> float:
        return self.top + self.height


AUTO_ASPECT = "auto"

ASPECT_RATIOS: dict[str, AspectPreset] = {
    "16:9": AspectPreset(16, 9, "Widescreen (16:9)"),
    "4:3": AspectPreset(4, 3, "Standard (4:3)"),
    "1:1": AspectPreset(1, 1, "Square (1:1)"),
    "21:9": AspectPreset(21, 9, "Ultra-wide (21:9)"),
    "3:2": AspectPreset(3, 2, "Photo (3:2)"),
    "9:16": AspectPreset(9, 16, "Portrait (9:16)"),
}

BREAKPOINT_WIDTHS: dict[str, int] = {
    "mobile": 640,
    "tablet": 1024,
    "desktop": 1920,
    "retina": 3840,
}

_RATIO_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*[:/]\s*(\d+(?:\.\d+)?)\s*$")
_NUMBER_RE = re.compile(r"^\d+(?:\.\d+)?$")


def _positive_finite(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    number = float(value)
    if not math.isfinite(number) or number <= 0:
        return None
    return number


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(value, high))


def parse_aspect_ratio(value: str | float | int | None) -> float | None:
    """Return width/height for ``"w:h"``, a preset key, or a positive number.

    ``"auto"`` and anything malformed return ``None``.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        return _positive_finite(value)
    raw = value.strip().lower()
    if not raw or raw == AUTO_ASPECT:
        return None
    preset = ASPECT_RATIOS.get(raw)
    if preset is not None:
        return preset.width / preset.height
    if _NUMBER_RE.match(raw):
        return _positive_finite(float(raw))
    match = _RATIO_RE.match(raw)
    if match is None:
        return None
    width = float(match.group(1))
    height = float(match.group(2))
    if width <= 0 or height <= 0:
        return None
    return width / height


def compute_crop(
    source_width: float,
    source_height: float,
    target_aspect: str | float | int | None,
    focal_x: float = 0.5,
    focal_y: float = 0.5,
) -> CropRect | None:
    """Crop rectangle centered on the focal point and kept inside the source.

    The axis where the source is "too long" for the target is cut down; the
    other axis spans the full 100%. The rectangle is then centered on
    ``(focal_x * 100, focal_y * 100)`` and shifted back inside the image when
    the focal point sits near an edge.
    """
    src_w = _positive_finite(source_width)
    src_h = _positive_finite(source_height)
    target = parse_aspect_ratio(target_aspect)
    if src_w is None or src_h is None or target is None:
        return None
    if isinstance(focal_x, bool) or isinstance(focal_y, bool):
        return None
    try:
        fx = float(focal_x)
        fy = float(focal_y)
    except (TypeError, ValueError):
        return None
    if not (math.isfinite(fx) and math.isfinite(fy)):
        return None
    fx = _clamp(fx, 0.0, 1.0)
    fy = _clamp(fy, 0.0, 1.0)

    source_aspect = src_w / src_h
    if source_aspect > target:
        height = 100.0
        width = 100.0 * target / source_aspect
    else:
        width = 100.0
        height = 100.0 * source_aspect / target

    left = _clamp(fx * 100.0 - width / 2.0, 0.0, 100.0 - width)
    top = _clamp(fy * 100.0 - height / 2.0, 0.0, 100.0 - height)
    return CropRect(left=left, top=top, width=width, height=height)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def crop_box_pixels(
    source_width: int,
    source_height: int,
    target_aspect: str | float | int | None,
    focal_x: float = 0.5,
    focal_y: float = 0.5,
) -> tuple[int, int, int, int] | None:
    """Pixel box ``(left, top, right, bottom)`` for the focal crop, Pillow-style."""
    rect = compute_crop(source_width, source_height, target_aspect, focal_x, focal_y)
    if rect is None:
        return None
    src_w = int(source_width)
    src_h = int(source_height)
    if src_w <= 0 or src_h <= 0:
        return None
    width = int(_clamp(_round_half_up(rect.width * src_w / 100.0), 1, src_w))
    height = int(_clamp(_round_half_up(rect.height * src_h / 100.0), 1, src_h))
    left = int(_clamp(_round_half_up(rect.left * src_w / 100.0), 0, src_w - width))
    top = int(_clamp(_round_half_up(rect.top * src_h / 100.0), 0, src_h - height))
    return left, top, left + width, top + height


def apply_focal_crop(
    image: "Image.Image",
    target_aspect: str | float | int | None,
    focal_x: float = 0.5,
    focal_y: float = 0.5,
) -> "Image.Image":
    """Crop a Pillow image around the focal point; returns a copy when no crop applies."""
    box = crop_box_pixels(image.width, image.height, target_aspect, focal_x, focal_y)
    if box is None or box == (0, 0, image.width, image.height):
        return image.copy()
    return image.crop(box)


def focal_point_to_object_position(focal_x: float, focal_y: float) -> str:
    """CSS ``object-position`` value for a focal point."""
    fx = _clamp(float(focal_x), 0.0, 1.0) if math.isfinite(float(focal_x)) else 0.5
    fy = _clamp(float(focal_y), 0.0, 1.0) if math.isfinite(float(focal_y)) else 0.5
    return f"{fx * 100:.1f}% {fy * 100:.1f}%"


def pick_breakpoint(width: int) -> str:
    """Smallest breakpoint that still covers ``width`` pixels."""
    for name, max_width in sorted(BREAKPOINT_WIDTHS.items(), key=lambda item: item[1]):
        if width <= max_width:
            return name
    return "retina"
