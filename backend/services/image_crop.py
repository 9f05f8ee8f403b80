"""
Crop/downscale stage for card photos.

Loads a source photo, takes the largest centred 3:4 window, renders it into a
3x working buffer, caps it at a print-safe size and runs the tone pipeline.
The result is reused for both faces of a card.
"""
from __future__ import annotations

import logging
from io import BytesIO
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np
from PIL import Image, ImageDraw, ImageOps, UnidentifiedImageError

from domain.models import CARD_TONE_PRESET, ToneOptions
from services.errors import ImageLoadError
from services.text_fit import load_font
from services.tone_pipeline import timeless_bw_image

logger = logging.getLogger(__name__)

CARD_ASPECT = 3 / 4
# The 3x working buffer (720x960) is always larger than the print cap,
# so every card photo is downsized to exactly PRINT_SAFE_SIZE.
CROP_BASE_SIZE = (240, 320)
CROP_RENDER_SCALE = 3
# ~300 DPI at the printed card width
PRINT_SAFE_SIZE = (600, 800)

PLACEHOLDER_SIZE = (150, 200)
PLACEHOLDER_FILL = (240, 240, 240)
PLACEHOLDER_TEXT = (153, 153, 153)
PLACEHOLDER_LABEL = "Image"


def load_source_image(source: Union[str, Path, bytes], filename: Optional[str] = None) -> Image.Image:
    """
    Decode a photo from a path or raw bytes, honouring EXIF orientation.

    Raises ImageLoadError on any read or decode failure.
    """
    name = filename or (str(source) if not isinstance(source, bytes) else "<bytes>")
    try:
        fp = BytesIO(source) if isinstance(source, bytes) else source
        with Image.open(fp) as img:
            img.load()
            oriented = ImageOps.exif_transpose(img)
            return oriented.convert("RGBA")
    except (OSError, UnidentifiedImageError, ValueError) as exc:
        raise ImageLoadError(name, exc) from exc


def compute_crop_box(width: int, height: int, aspect: float = CARD_ASPECT) -> Tuple[float, float, float, float]:
    """Largest centred window with the given width/height aspect."""
    if width <= 0 or height <= 0:
        raise ValueError(f"invalid source size {width}x{height}")
    if width / height > aspect:
        crop_w = height * aspect
        left = (width - crop_w) / 2
        return (left, 0.0, left + crop_w, float(height))
    crop_h = width / aspect
    top = (height - crop_h) / 2
    return (0.0, top, float(width), top + crop_h)


def fit_within(size: Tuple[int, int], limit: Tuple[int, int]) -> Tuple[int, int]:
    """Shrink `size` proportionally to fit `limit`; never enlarges."""
    width, height = size
    max_w, max_h = limit
    if width <= max_w and height <= max_h:
        return size
    ratio = min(max_w / width, max_h / height)
    return (max(1, round(width * ratio)), max(1, round(height * ratio)))


def crop_to_card(
    image: Image.Image,
    base_size: Tuple[int, int] = CROP_BASE_SIZE,
    render_scale: int = CROP_RENDER_SCALE,
    max_size: Tuple[int, int] = PRINT_SAFE_SIZE,
) -> Image.Image:
    box = compute_crop_box(image.width, image.height)
    working_size = (base_size[0] * render_scale, base_size[1] * render_scale)
    working = image.convert("RGBA").resize(working_size, resample=Image.Resampling.LANCZOS, box=box)
    target = fit_within(working_size, max_size)
    if target != working_size:
        working = working.resize(target, resample=Image.Resampling.LANCZOS)
    return working


def prepare_card_image(
    image: Image.Image,
    tone: ToneOptions = CARD_TONE_PRESET,
    rng: Optional[np.random.Generator] = None,
) -> Image.Image:
    """Crop to 3:4, downsize, and convert to timeless black & white (RGBA)."""
    cropped = crop_to_card(image)
    logger.debug("[crop] %sx%s -> %sx%s", image.width, image.height, cropped.width, cropped.height)
    return timeless_bw_image(cropped, tone, rng)


def placeholder_image() -> Image.Image:
    """Neutral stand-in raster used when a card photo cannot be loaded."""
    img = Image.new("RGBA", PLACEHOLDER_SIZE, PLACEHOLDER_FILL + (255,))
    draw = ImageDraw.Draw(img)
    w, h = PLACEHOLDER_SIZE
    draw.text((w / 2, h / 2), PLACEHOLDER_LABEL, fill=PLACEHOLDER_TEXT, font=load_font("DejaVuSans.ttf", 20), anchor="mm")
    return img
