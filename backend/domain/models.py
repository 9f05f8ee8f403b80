"""
Core domain models for the timeline card generator.
These are framework-agnostic and can be used across all services.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple, Union
import uuid


MAX_EVENT_CHARS = 20


class FaceRole(str, Enum):
    """Which side of a folded card a face is rendered for."""
    EVENT = "event"
    YEAR = "year"


@dataclass(frozen=True)
class ToneOptions:
    """
    Configuration for the black & white tone pipeline.

    gamma=None selects 0.8 or 1.2 from the measured median luminance.
    Local contrast replaces the global auto-levels stretch, it never stacks on it.
    """
    enable_local_contrast: bool = False
    add_grain: bool = True
    add_vignette: bool = False
    enable_dithering: bool = False
    gamma: Optional[float] = None
    s_curve_strength: float = 8.0  # 4-12
    grain_intensity: float = 16.0  # 0-32
    vignette_strength: float = 0.15  # 0-0.3


# Preset used for every card photo
CARD_TONE_PRESET = ToneOptions(
    enable_local_contrast=False,
    add_grain=True,
    add_vignette=False,
    enable_dithering=False,
    s_curve_strength=6.0,
    grain_intensity=12.0,
)


@dataclass
class CaptureDate:
    """Best-effort capture date returned by the metadata extractor."""
    year: int
    full_date: Optional[datetime] = None
    source: str = "Date unavailable"


@dataclass
class CardRecord:
    """
    A single timeline card as handed over by intake or the CLI manifest.

    `image` is a filesystem path or the raw encoded bytes of the photo.
    `year` is validated at the input boundary, not here.
    """
    id: str
    image: Union[str, bytes]
    filename: str
    event_name: str = ""
    year: int = 1970
    full_date: Optional[datetime] = None
    date_source: str = ""

    @staticmethod
    def generate_id() -> str:
        return uuid.uuid4().hex[:9]


# Page layout output models (all values in millimetres, top-left origin)

@dataclass(frozen=True)
class CardSlot:
    """Position of one card on a page."""
    card_index: int
    sequence_id: int
    slot_index: int
    x_mm: float
    y_mm: float
    width_mm: float
    height_mm: float

    @property
    def half_height_mm(self) -> float:
        return self.height_mm / 2

    @property
    def fold_y_mm(self) -> float:
        return self.y_mm + self.half_height_mm


@dataclass(frozen=True)
class CutGuide:
    """Vertical scissors guide between two adjacent cards."""
    x_mm: float
    y_start_mm: float
    y_end_mm: float


@dataclass
class PagePlan:
    page_index: int
    slots: List[CardSlot] = field(default_factory=list)
    cut_guides: List[CutGuide] = field(default_factory=list)


@dataclass
class PageLayoutPlan:
    """
    Derived layout for one export. Recomputed for every export call.
    """
    page_width_mm: float
    page_height_mm: float
    card_width_mm: float
    card_height_mm: float
    spacing_mm: float
    pages: List[PagePlan] = field(default_factory=list)

    @property
    def page_count(self) -> int:
        return len(self.pages)


# Drawing commands for card faces (pixel coordinates, immutable)

Color = Tuple[int, int, int]


@dataclass(frozen=True)
class FillRect:
    box: Tuple[float, float, float, float]
    fill: Color


@dataclass(frozen=True)
class StrokeRect:
    box: Tuple[float, float, float, float]
    outline: Color
    width: int


@dataclass(frozen=True)
class DrawImage:
    box: Tuple[int, int, int, int]


@dataclass(frozen=True)
class DrawText:
    """Text anchored at (x, y); anchor follows Pillow's two-letter anchors."""
    text: str
    x: float
    y: float
    size: int
    fill: Color
    anchor: str = "mm"


DrawCommand = Union[FillRect, StrokeRect, DrawImage, DrawText]


@dataclass(frozen=True)
class FacePlan:
    """Everything needed to rasterize one card face, in draw order."""
    role: FaceRole
    width_px: int
    height_px: int
    commands: Tuple[DrawCommand, ...] = ()

    def texts(self) -> List[str]:
        return [c.text for c in self.commands if isinstance(c, DrawText)]
