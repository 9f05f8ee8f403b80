"""
Card face renderer.

Composes one face of a timeline card: the toned photo, a text banner and an
invisible sequence marker. A face is first described as an immutable FacePlan
(a tuple of draw commands) and then rasterized with Pillow, so no drawing
state leaks from one command to the next.

Face layout, top to bottom:
- 1.5mm margin
- 3:4 image region, fit by width or height
- 2mm spacing
- 20mm banner (black event banner or white year badge)
- 1mm spacing
- 6mm zone holding the sequence marker (white on white)

The year face is the same composite rotated 180 degrees as a whole.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from PIL import Image, ImageDraw

from domain.models import (
    CardRecord,
    DrawCommand,
    DrawImage,
    DrawText,
    FacePlan,
    FaceRole,
    FillRect,
    StrokeRect,
)
from services.text_fit import TextFitter

logger = logging.getLogger(__name__)

IMAGE_ASPECT = 3 / 4
IMAGE_MARGIN_MM = 1.5
BANNER_HEIGHT_MM = 20.0
TEXT_SPACING_MM = 2.0
MARKER_HEIGHT_MM = 6.0
MARKER_SPACING_MM = 1.0
BANNER_INSET_MM = 4.0
TEXT_INSET_MM = 4.0
BADGE_BORDER_MM = 0.3
MARKER_TEXT_MM = 4.0

DATE_CHAR_BUDGET = 8
EMPTY_EVENT_TEXT = "? ? ?"
# Banner text never taller than this share of the banner
EVENT_TEXT_MAX_HEIGHT = 0.8
DATE_TEXT_MAX_HEIGHT = 0.45
# Secondary event line on the year face stays smaller than the date
EVENT_LINE_SCALE = 0.6

WHITE = (255, 255, 255)
BLACK = (0, 0, 0)

MONTH_ABBREVIATIONS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def format_date_text(card: CardRecord, year_counts: Optional[Dict[int, int]] = None) -> str:
    """
    "<Mon> <year>" when the card has a precise date, otherwise just the year.

    `year_counts` is accepted for callers that pass the export's per-year
    tallies; the month is shown whenever a date exists regardless of them.
    The year always comes from `card.year`, even if `full_date` disagrees.
    """
    if isinstance(card.full_date, datetime):
        return f"{MONTH_ABBREVIATIONS[card.full_date.month - 1]} {card.year}"
    return str(card.year)


@dataclass(frozen=True)
class FaceGeometry:
    """Pixel geometry of one face. Boxes are (x, y, width, height)."""
    width_px: int
    height_px: int
    px_per_mm: float
    image_box: Tuple[int, int, int, int]
    banner_box: Tuple[int, int, int, int]
    marker_y: int

    def mm(self, value: float) -> int:
        return int(round(value * self.px_per_mm))


def compute_face_geometry(card_width_mm: float, half_height_mm: float, px_per_mm: float) -> FaceGeometry:
    width = int(round(card_width_mm * px_per_mm))
    height = int(round(half_height_mm * px_per_mm))
    margin = IMAGE_MARGIN_MM * px_per_mm
    banner_h = BANNER_HEIGHT_MM * px_per_mm
    spacing = TEXT_SPACING_MM * px_per_mm

    avail_h = height - 2 * margin - banner_h - spacing - MARKER_HEIGHT_MM * px_per_mm - MARKER_SPACING_MM * px_per_mm
    avail_w = width - 2 * margin
    if avail_h <= 0 or avail_w <= 0:
        raise ValueError(f"card face {card_width_mm}x{half_height_mm}mm too small for layout")

    if avail_w / avail_h > IMAGE_ASPECT:
        image_h = int(avail_h)
        image_w = int(round(image_h * IMAGE_ASPECT))
    else:
        image_w = int(avail_w)
        image_h = int(round(image_w / IMAGE_ASPECT))
    image_x = (width - image_w) // 2
    image_y = int(round(margin))

    banner_w = int(round(width - BANNER_INSET_MM * px_per_mm))
    banner_x = (width - banner_w) // 2
    banner_y = int(round(image_y + image_h + spacing))
    banner_h_px = int(round(banner_h))
    marker_y = int(round(banner_y + banner_h_px + MARKER_SPACING_MM * px_per_mm))

    return FaceGeometry(
        width_px=width,
        height_px=height,
        px_per_mm=px_per_mm,
        image_box=(image_x, image_y, image_w, image_h),
        banner_box=(banner_x, banner_y, banner_w, banner_h_px),
        marker_y=marker_y,
    )


@dataclass
class RenderedFace:
    image: Image.Image
    plan: FacePlan
    rotated: bool = False


class CardFaceRenderer:
    """Plans and rasterizes card faces at a fixed pixel density."""

    def __init__(self, fitter: TextFitter, px_per_mm: float = 12.0):
        self.fitter = fitter
        self.px_per_mm = px_per_mm

    # ---- planning ----

    def _event_banner(self, geometry: FaceGeometry, text: str) -> List[DrawCommand]:
        bx, by, bw, bh = geometry.banner_box
        avail = bw - geometry.mm(TEXT_INSET_MM)
        label, size = self.fitter.fit_label(
            text, avail, max_size=int(bh * EVENT_TEXT_MAX_HEIGHT), placeholder=EMPTY_EVENT_TEXT
        )
        return [
            FillRect(box=(bx, by, bx + bw, by + bh), fill=BLACK),
            DrawText(text=label, x=bx + bw / 2, y=by + bh / 2, size=size, fill=WHITE),
        ]

    def _year_badge(self, geometry: FaceGeometry, date_text: str, event_name: Optional[str]) -> List[DrawCommand]:
        bx, by, bw, bh = geometry.banner_box
        avail = bw - geometry.mm(TEXT_INSET_MM)
        border = max(1, geometry.mm(BADGE_BORDER_MM))
        date_size = self.fitter.fit_size(avail, DATE_CHAR_BUDGET, max_size=int(bh * DATE_TEXT_MAX_HEIGHT))
        commands: List[DrawCommand] = [
            FillRect(box=(bx, by, bx + bw, by + bh), fill=WHITE),
            StrokeRect(box=(bx, by, bx + bw, by + bh), outline=BLACK, width=border),
            DrawText(text=date_text, x=bx + bw / 2, y=by + bh / 4, size=date_size, fill=BLACK),
        ]
        label, ev_size = self.fitter.fit_label(
            event_name, avail, max_size=max(1, int(date_size * EVENT_LINE_SCALE))
        )
        if label:
            commands.append(DrawText(text=label, x=bx + bw / 2, y=by + 3 * bh / 4, size=ev_size, fill=BLACK))
        return commands

    def plan_face(
        self,
        role: FaceRole,
        geometry: FaceGeometry,
        text: str,
        sequence_id: Optional[int] = None,
        event_name: Optional[str] = None,
    ) -> FacePlan:
        """
        Describe a face as draw commands.

        For the event face `text` is the event label; for the year face it is
        the formatted date and `event_name` adds the optional second line.
        """
        ix, iy, iw, ih = geometry.image_box
        commands: List[DrawCommand] = [
            FillRect(box=(0, 0, geometry.width_px, geometry.height_px), fill=WHITE),
            DrawImage(box=(ix, iy, iw, ih)),
        ]
        if role == FaceRole.EVENT:
            commands.extend(self._event_banner(geometry, text))
        else:
            commands.extend(self._year_badge(geometry, text, event_name))
        if sequence_id is not None:
            commands.append(
                DrawText(
                    text=str(sequence_id),
                    x=geometry.width_px / 2,
                    y=geometry.marker_y,
                    size=max(1, geometry.mm(MARKER_TEXT_MM)),
                    fill=WHITE,
                    anchor="mt",
                )
            )
        return FacePlan(role=role, width_px=geometry.width_px, height_px=geometry.height_px, commands=tuple(commands))

    # ---- rasterizing ----

    def rasterize(self, plan: FacePlan, photo: Image.Image) -> Image.Image:
        canvas = Image.new("RGB", (plan.width_px, plan.height_px), WHITE)
        draw = ImageDraw.Draw(canvas)
        for command in plan.commands:
            if isinstance(command, FillRect):
                x0, y0, x1, y1 = command.box
                draw.rectangle((x0, y0, x1 - 1, y1 - 1), fill=command.fill)
            elif isinstance(command, StrokeRect):
                x0, y0, x1, y1 = command.box
                draw.rectangle((x0, y0, x1 - 1, y1 - 1), outline=command.outline, width=command.width)
            elif isinstance(command, DrawImage):
                x, y, w, h = command.box
                fitted = photo.convert("RGBA").resize((w, h), resample=Image.Resampling.LANCZOS)
                canvas.paste(fitted, (x, y), fitted)
            elif isinstance(command, DrawText):
                draw.text(
                    (command.x, command.y),
                    command.text,
                    fill=command.fill,
                    font=self.fitter.font(command.size),
                    anchor=command.anchor,
                )
        return canvas

    def render_face(
        self,
        photo: Image.Image,
        role: FaceRole,
        card_width_mm: float,
        half_height_mm: float,
        text: str,
        sequence_id: Optional[int] = None,
        event_name: Optional[str] = None,
        rotate: bool = False,
    ) -> RenderedFace:
        geometry = compute_face_geometry(card_width_mm, half_height_mm, self.px_per_mm)
        plan = self.plan_face(role, geometry, text, sequence_id=sequence_id, event_name=event_name)
        image = self.rasterize(plan, photo)
        if rotate:
            image = rotate_face(image)
        logger.debug("[card_face] role=%s seq=%s texts=%s rotated=%s", role.value, sequence_id, plan.texts(), rotate)
        return RenderedFace(image=image, plan=plan, rotated=rotate)


def rotate_face(face: Image.Image) -> Image.Image:
    """Rotate a finished face 180 degrees about its centre (pixel exact)."""
    return face.transpose(Image.Transpose.ROTATE_180)
