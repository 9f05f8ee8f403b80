"""
Monospace text auto-fit.

Picks the largest integer font size whose character width times a character
budget stays inside a pixel width. Budgets are tiered (5, 15 or 20 chars) by
the length of the string being drawn, so short labels get big type.

Font metrics are probed once per size and memoized in a bounded cache owned by
the TextFitter instance.
"""
from __future__ import annotations

import logging
import math
from collections import OrderedDict
from typing import Callable, Dict, Optional, Sequence

from PIL import ImageFont

from domain.models import MAX_EVENT_CHARS

logger = logging.getLogger(__name__)

BUDGET_TIERS = (5, 15, 20)
PROBE_GLYPH = "M"
REFERENCE_SIZE = 100
DEFAULT_CACHE_ENTRIES = 128

MONO_FONT_CANDIDATES: Sequence[str] = (
    "DejaVuSansMono-Bold.ttf",
    "DejaVuSansMono.ttf",
    "LiberationMono-Bold.ttf",
    "LiberationMono-Regular.ttf",
    "courbd.ttf",
    "cour.ttf",
    "Courier New Bold.ttf",
    "Courier New.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSansMono-Bold.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationMono-Bold.ttf",
    "/System/Library/Fonts/Supplemental/Courier New Bold.ttf",
)

CharWidthProbe = Callable[[int], float]


def clamp_label(text: Optional[str], limit: int = MAX_EVENT_CHARS) -> str:
    """Trim whitespace and hard-truncate to `limit` characters."""
    return (text or "").strip()[:limit]


def char_budget(text: str) -> int:
    """Budget tier for a string: 5, 15 or 20 characters."""
    length = len(text)
    for tier in BUDGET_TIERS:
        if length <= tier:
            return tier
    return BUDGET_TIERS[-1]


def resolve_font_path(preferred: Optional[str] = None) -> Optional[str]:
    """First loadable monospace font, or None when only Pillow's default is left."""
    candidates = ([preferred] if preferred else []) + list(MONO_FONT_CANDIDATES)
    for candidate in candidates:
        try:
            ImageFont.truetype(candidate, 12)
            return candidate
        except OSError:
            continue
    logger.warning("[text_fit] no monospace TrueType font found; using Pillow default font")
    return None


def load_font(font_path: Optional[str], size: int):
    size = max(1, int(size))
    if font_path:
        try:
            return ImageFont.truetype(font_path, size)
        except OSError:
            logger.warning("[text_fit] failed to load %s; using Pillow default font", font_path)
    return ImageFont.load_default(size=size)


class FontMetricsCache:
    """
    Bounded LRU memo of per-size character widths.

    Metrics depend only on font family and size, so entries never go stale.
    """

    def __init__(self, probe: CharWidthProbe, max_entries: int = DEFAULT_CACHE_ENTRIES):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._probe = probe
        self._entries: "OrderedDict[int, float]" = OrderedDict()
        self.max_entries = max_entries
        self.probe_count = 0

    def __len__(self) -> int:
        return len(self._entries)

    def char_width(self, size: int) -> float:
        size = int(size)
        if size in self._entries:
            self._entries.move_to_end(size)
            return self._entries[size]
        width = float(self._probe(size))
        self.probe_count += 1
        self._entries[size] = width
        if len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
        return width


class TextFitter:
    """
    Sizes and loads monospace fonts for card text.

    Pass `char_width` to replace the Pillow probe (tests use a linear stub).
    """

    def __init__(
        self,
        font_path: Optional[str] = None,
        char_width: Optional[CharWidthProbe] = None,
        max_entries: int = DEFAULT_CACHE_ENTRIES,
    ):
        self.font_path = font_path if char_width else resolve_font_path(font_path)
        self.metrics = FontMetricsCache(char_width or self._measure, max_entries)
        self._fonts: Dict[int, object] = {}
        self._max_fonts = max_entries

    def _measure(self, size: int) -> float:
        return float(self.font(size).getlength(PROBE_GLYPH))

    def font(self, size: int):
        size = max(1, int(size))
        font = self._fonts.get(size)
        if font is None:
            if len(self._fonts) >= self._max_fonts:
                self._fonts.clear()
            font = load_font(self.font_path, size)
            self._fonts[size] = font
        return font

    def _fits(self, size: int, budget: int, available: float) -> bool:
        return self.metrics.char_width(size) * budget <= available

    def fit_size(self, available_width: float, budget: int, max_size: Optional[int] = None) -> int:
        """
        Largest integer size with char_width(size) * budget <= available_width.

        Starts from a linear estimate off one reference probe and walks to the
        exact boundary, so hinting quirks at specific sizes are respected.
        Never returns less than 1.
        """
        if available_width <= 0 or budget <= 0:
            return 1
        per_px = self.metrics.char_width(REFERENCE_SIZE) / REFERENCE_SIZE
        if per_px <= 0:
            return max(1, max_size or 1)
        size = max(1, int(math.floor(available_width / (per_px * budget))))
        if max_size is not None:
            size = max(1, min(size, int(max_size)))
        while size > 1 and not self._fits(size, budget, available_width):
            size -= 1
        while (max_size is None or size < max_size) and self._fits(size + 1, budget, available_width):
            size += 1
        return size

    def fit_label(
        self,
        text: Optional[str],
        available_width: float,
        max_size: Optional[int] = None,
        placeholder: str = "",
    ):
        """
        Clamp a label to 20 chars and size it by its tier; returns (text, size).

        `placeholder` stands in for a blank label.
        """
        label = clamp_label(text) or placeholder
        return label, self.fit_size(available_width, char_budget(label), max_size)

    def text_width(self, text: str, size: int) -> float:
        return self.metrics.char_width(size) * len(text)
