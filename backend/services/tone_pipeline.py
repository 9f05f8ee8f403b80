"""
Timeless black & white tone pipeline.

Converts an RGBA pixel buffer into a monochrome buffer tuned for halftone and
ink printing. Stage order is fixed:

1. BT.709 luminance written to R, G and B, plus a 256-bucket histogram
2. Auto-levels stretch between the 1st and 99th percentile
   (or tiled local contrast instead, never both)
3. Gamma via lookup table (auto-selected from the median when not given)
4. Logistic s-curve via lookup table
5. Optional film grain
6. Optional radial vignette (multiply blend)
7. Optional Floyd-Steinberg dithering to pure black and white

Buffers are numpy uint8 arrays shaped (height, width, 4). Alpha is never
modified. Everything is deterministic except grain, whose random source can be
injected as a numpy Generator.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from PIL import Image

from domain.models import ToneOptions

logger = logging.getLogger(__name__)

LUMA_R = 0.2126
LUMA_G = 0.7152
LUMA_B = 0.0722

LOW_PERCENTILE = 0.01
HIGH_PERCENTILE = 0.99
MEDIAN_PERCENTILE = 0.5

AUTO_GAMMA_DARK = 0.8
AUTO_GAMMA_BRIGHT = 1.2

LOCAL_CONTRAST_TILE = 64
VIGNETTE_INNER_STOP = 0.7
DITHER_THRESHOLD = 128


@dataclass
class LevelStats:
    lo: int
    hi: int
    median: int
    gamma: float


def _round_half_up(values: np.ndarray) -> np.ndarray:
    return np.floor(values + 0.5)


def _to_uint8(values: np.ndarray) -> np.ndarray:
    return np.clip(_round_half_up(values), 0, 255).astype(np.uint8)


def luminance(rgba: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Replace RGB with rounded BT.709 luminance.

    Returns (buffer, histogram). The histogram always sums to width * height.
    """
    out = rgba.copy()
    rgb = out[..., :3].astype(np.float64)
    lum = _to_uint8(LUMA_R * rgb[..., 0] + LUMA_G * rgb[..., 1] + LUMA_B * rgb[..., 2])
    out[..., 0] = lum
    out[..., 1] = lum
    out[..., 2] = lum
    hist = np.bincount(lum.ravel(), minlength=256)
    return out, hist


def percentile_value(hist: np.ndarray, percentile: float) -> int:
    """First luminance bucket whose cumulative count reaches percentile * total (per-tile bounds)."""
    total = int(hist.sum())
    if total <= 0:
        return 0
    cumulative = np.cumsum(hist)
    idx = int(np.searchsorted(cumulative, percentile * total, side="left"))
    return max(0, min(255, idx))


def percentile_index(hist: np.ndarray, percentile: float) -> int:
    """
    Whole-image percentile used for lo/hi/median.

    Accumulates buckets while the running count is below percentile * total
    and returns the count of buckets consumed, i.e. one past the bucket where
    the target is reached, capped at 255.
    """
    target = percentile * int(hist.sum())
    if target <= 0:
        return 0
    crossing = int(np.searchsorted(np.cumsum(hist), target, side="left"))
    return min(255, crossing + 1)


def auto_gamma(median: int) -> float:
    """Brighten shadow-heavy images, darken highlight-heavy ones."""
    return AUTO_GAMMA_DARK if median < 128 else AUTO_GAMMA_BRIGHT


def gamma_lut(gamma: float) -> np.ndarray:
    if gamma <= 0:
        raise ValueError(f"gamma must be positive, got {gamma}")
    x = np.arange(256, dtype=np.float64) / 255.0
    return _to_uint8(255.0 * np.power(x, gamma))


def s_curve_lut(strength: float) -> np.ndarray:
    x = np.arange(256, dtype=np.float64) / 255.0
    return _to_uint8(255.0 / (1.0 + np.exp(-strength * (x - 0.5))))


def auto_levels(values: np.ndarray, lo: int, hi: int) -> np.ndarray:
    """Linear stretch of [lo, hi] onto [0, 255]; returns float values."""
    scale = 255.0 / max(1, hi - lo)
    return np.clip((values.astype(np.float64) - lo) * scale, 0.0, 255.0)


def local_contrast(gray: np.ndarray, tile_size: int = LOCAL_CONTRAST_TILE) -> np.ndarray:
    """
    Simplified CLAHE: each tile is stretched between its own 1st/99th percentiles.

    `gray` is a 2D uint8 array; returns float values of the same shape.
    """
    height, width = gray.shape
    result = np.zeros((height, width), dtype=np.float64)
    for start_y in range(0, height, tile_size):
        for start_x in range(0, width, tile_size):
            tile = gray[start_y:start_y + tile_size, start_x:start_x + tile_size]
            tile_hist = np.bincount(tile.ravel(), minlength=256)
            tile_lo = percentile_value(tile_hist, LOW_PERCENTILE)
            tile_hi = percentile_value(tile_hist, HIGH_PERCENTILE)
            result[start_y:start_y + tile_size, start_x:start_x + tile_size] = auto_levels(
                tile, tile_lo, tile_hi
            )
    return result


def apply_grain(values: np.ndarray, intensity: float, rng: np.random.Generator) -> np.ndarray:
    noise = (rng.random(values.shape) - 0.5) * intensity
    return np.clip(values + noise, 0.0, 255.0)


def vignette_alpha(width: int, height: int, strength: float) -> np.ndarray:
    """
    Per-pixel black opacity of the radial vignette.

    Transparent out to 70% of the centre-to-corner radius, ramping linearly to
    `strength` at the full radius.
    """
    cx = width / 2.0
    cy = height / 2.0
    max_radius = math.hypot(width, height) / 2.0
    ys, xs = np.mgrid[0:height, 0:width]
    dist = np.hypot(xs + 0.5 - cx, ys + 0.5 - cy) / max(max_radius, 1e-9)
    ramp = np.clip((dist - VIGNETTE_INNER_STOP) / (1.0 - VIGNETTE_INNER_STOP), 0.0, 1.0)
    return ramp * strength


def apply_vignette(rgba: np.ndarray, strength: float) -> np.ndarray:
    """Multiply-blend a black radial gradient over the RGB channels."""
    height, width = rgba.shape[:2]
    keep = 1.0 - vignette_alpha(width, height, strength)
    out = rgba.copy()
    for channel in range(3):
        out[..., channel] = _to_uint8(out[..., channel].astype(np.float64) * keep)
    return out


def _clamp_round(value: float) -> int:
    return int(min(255, max(0, math.floor(value + 0.5))))


def apply_dithering(rgba: np.ndarray) -> np.ndarray:
    """Floyd-Steinberg error diffusion to pure black/white (threshold 128)."""
    height, width = rgba.shape[:2]
    rows = rgba[..., 0].astype(np.int32).tolist()
    for y in range(height):
        row = rows[y]
        below = rows[y + 1] if y + 1 < height else None
        for x in range(width):
            old = row[x]
            new = 0 if old < DITHER_THRESHOLD else 255
            error = old - new
            row[x] = new
            if x + 1 < width:
                row[x + 1] = _clamp_round(row[x + 1] + error * 7 / 16)
            if below is not None:
                if x > 0:
                    below[x - 1] = _clamp_round(below[x - 1] + error * 3 / 16)
                below[x] = _clamp_round(below[x] + error * 5 / 16)
                if x + 1 < width:
                    below[x + 1] = _clamp_round(below[x + 1] + error * 1 / 16)
    mono = np.asarray(rows, dtype=np.uint8).reshape(height, width)
    out = rgba.copy()
    out[..., 0] = mono
    out[..., 1] = mono
    out[..., 2] = mono
    return out


def measure_levels(hist: np.ndarray, gamma: Optional[float] = None) -> LevelStats:
    median = percentile_index(hist, MEDIAN_PERCENTILE)
    return LevelStats(
        lo=percentile_index(hist, LOW_PERCENTILE),
        hi=percentile_index(hist, HIGH_PERCENTILE),
        median=median,
        gamma=gamma if gamma is not None else auto_gamma(median),
    )


def timeless_bw(
    rgba: np.ndarray,
    options: Optional[ToneOptions] = None,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """
    Run the full tone pipeline on an RGBA buffer and return a new buffer.

    `rng` is only consulted when grain is enabled; production callers leave it
    unset and get system entropy.
    """
    options = options or ToneOptions()
    if rgba.ndim != 3 or rgba.shape[2] != 4:
        raise ValueError(f"expected an RGBA buffer shaped (h, w, 4), got {rgba.shape}")
    if rgba.shape[0] == 0 or rgba.shape[1] == 0:
        return rgba.copy()

    buf, hist = luminance(rgba)
    stats = measure_levels(hist, options.gamma)
    logger.debug(
        "[tone] lo=%s hi=%s median=%s gamma=%s local_contrast=%s",
        stats.lo, stats.hi, stats.median, stats.gamma, options.enable_local_contrast,
    )

    if options.enable_local_contrast:
        values = local_contrast(buf[..., 0])
    else:
        values = auto_levels(buf[..., 0], stats.lo, stats.hi)

    values = gamma_lut(stats.gamma)[_round_half_up(values).astype(np.intp)]
    values = s_curve_lut(options.s_curve_strength)[values].astype(np.float64)

    if options.add_grain and options.grain_intensity > 0:
        values = apply_grain(values, options.grain_intensity, rng or np.random.default_rng())

    mono = _to_uint8(values)
    buf[..., 0] = mono
    buf[..., 1] = mono
    buf[..., 2] = mono

    if options.add_vignette:
        buf = apply_vignette(buf, options.vignette_strength)
    if options.enable_dithering:
        buf = apply_dithering(buf)
    return buf


def timeless_bw_image(
    image: Image.Image,
    options: Optional[ToneOptions] = None,
    rng: Optional[np.random.Generator] = None,
) -> Image.Image:
    """Pillow convenience wrapper around `timeless_bw`; returns an RGBA image."""
    arr = np.array(image.convert("RGBA"), dtype=np.uint8)
    return Image.fromarray(timeless_bw(arr, options, rng))
