"""
Timeline card export service.

Renders an ordered list of cards to a print-ready, fold-and-cut PDF.

Pipeline per export call:
1. Plan pages (5 cards per page, fold line and cut guides per card)
2. Tally years across all cards (read-only for the rest of the call)
3. For each card, in order:
   - draw the fold line
   - load the photo (awaited), crop to 3:4 and tone it
   - render the year face (rotated 180) and the event face from that one crop
   - embed both faces (awaited)
   - draw the cut guide to its left, except for the first card on a page

A card whose photo fails to load or render gets the placeholder raster instead.
Document failures abort the whole export.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
from PIL import Image

from domain.models import CARD_TONE_PRESET, CardRecord, CardSlot, FaceRole, PageLayoutPlan, ToneOptions
from services.card_face import CardFaceRenderer, RenderedFace, format_date_text
from services.card_layout import (
    CUT_GUIDE_GRAY,
    CUT_GUIDE_WIDTH_MM,
    FOLD_LINE_GRAY,
    FOLD_LINE_WIDTH_MM,
    count_years,
    cut_guide_before,
    plan_pages,
)
from services.document_backend import DocumentBackend, ReportLabDocument
from services.errors import DocumentRenderError
from services.image_crop import load_source_image, placeholder_image, prepare_card_image
from services.text_fit import TextFitter
from settings import settings

logger = logging.getLogger(__name__)

ImageLoader = Callable[[CardRecord], Awaitable[Image.Image]]


async def load_card_photo(card: CardRecord) -> Image.Image:
    """Decode a card's photo off the event loop."""
    return await asyncio.to_thread(load_source_image, card.image, card.filename)


@dataclass
class ExportContext:
    """State owned by one export call; nothing here outlives it."""
    plan: PageLayoutPlan
    year_counts: Dict[int, int]
    placeholder_ids: List[int] = field(default_factory=list)


class CardSheetExporter:
    """
    Drives layout, face rendering and the document backend for one or more exports.

    Collaborators are injectable so tests can swap in a recording document, a
    failing image loader or a seeded random source for grain.
    """

    def __init__(
        self,
        renderer: Optional[CardFaceRenderer] = None,
        image_loader: Optional[ImageLoader] = None,
        document_factory: Optional[Callable[[], DocumentBackend]] = None,
        tone: ToneOptions = CARD_TONE_PRESET,
        rng: Optional[np.random.Generator] = None,
        debug_dir: Optional[Path] = None,
    ):
        self.renderer = renderer or CardFaceRenderer(
            TextFitter(font_path=settings.FONT_PATH), px_per_mm=settings.FACE_PX_PER_MM
        )
        self.image_loader = image_loader or load_card_photo
        self.document_factory = document_factory or (lambda: ReportLabDocument(jpeg_quality=settings.JPEG_QUALITY))
        self.tone = tone
        self.rng = rng
        if debug_dir is None and settings.DEBUG_ARTIFACTS:
            debug_dir = Path(settings.DEBUG_ARTIFACTS_DIR)
        self.debug_dir = debug_dir

    async def _card_photo(self, card: CardRecord, sequence_id: int, ctx: ExportContext) -> Image.Image:
        try:
            source = await self.image_loader(card)
            return prepare_card_image(source, self.tone, self.rng)
        except DocumentRenderError:
            raise
        except Exception:
            logger.warning(
                "[export] card %s (%s): image failed, using placeholder", sequence_id, card.filename, exc_info=True
            )
            ctx.placeholder_ids.append(sequence_id)
            return placeholder_image()

    def _render_faces(
        self, card: CardRecord, photo: Image.Image, slot: CardSlot, ctx: ExportContext
    ) -> Tuple[RenderedFace, RenderedFace]:
        half = slot.half_height_mm
        year_face = self.renderer.render_face(
            photo,
            FaceRole.YEAR,
            slot.width_mm,
            half,
            format_date_text(card, ctx.year_counts),
            sequence_id=slot.sequence_id,
            event_name=card.event_name,
            rotate=True,
        )
        event_face = self.renderer.render_face(
            photo,
            FaceRole.EVENT,
            slot.width_mm,
            half,
            card.event_name,
            sequence_id=slot.sequence_id,
        )
        return year_face, event_face

    def _save_debug_faces(self, slot: CardSlot, year_face: RenderedFace, event_face: RenderedFace) -> None:
        try:
            self.debug_dir.mkdir(parents=True, exist_ok=True)
            year_face.image.save(self.debug_dir / f"card_{slot.sequence_id:03d}_year.png")
            event_face.image.save(self.debug_dir / f"card_{slot.sequence_id:03d}_event.png")
        except OSError:
            logger.warning("[export] could not write debug faces to %s", self.debug_dir, exc_info=True)

    async def _render_card(self, document: DocumentBackend, card: CardRecord, slot: CardSlot, ctx: ExportContext) -> None:
        photo = await self._card_photo(card, slot.sequence_id, ctx)
        try:
            year_face, event_face = self._render_faces(card, photo, slot, ctx)
        except Exception:
            if slot.sequence_id in ctx.placeholder_ids:
                raise
            logger.warning("[export] card %s: face render failed, using placeholder", slot.sequence_id, exc_info=True)
            ctx.placeholder_ids.append(slot.sequence_id)
            year_face, event_face = self._render_faces(card, placeholder_image(), slot, ctx)

        if self.debug_dir is not None:
            self._save_debug_faces(slot, year_face, event_face)

        half = slot.half_height_mm
        await asyncio.to_thread(document.draw_image, year_face.image, slot.x_mm, slot.y_mm, slot.width_mm, half)
        await asyncio.to_thread(document.draw_image, event_face.image, slot.x_mm, slot.y_mm + half, slot.width_mm, half)

    async def export(self, cards: Sequence[CardRecord], document: Optional[DocumentBackend] = None) -> bytes:
        """Render all cards in order and return the serialized document."""
        if not cards:
            raise ValueError("no cards to export")
        document = document or self.document_factory()
        ctx = ExportContext(plan=plan_pages(len(cards)), year_counts=count_years(cards))
        logger.info(
            "[export] %s card(s) on %s page(s), card %.1fx%.1fmm",
            len(cards), ctx.plan.page_count, ctx.plan.card_width_mm, ctx.plan.card_height_mm,
        )

        try:
            for page in ctx.plan.pages:
                document.add_page()
                for slot in page.slots:
                    card = cards[slot.card_index]
                    document.draw_line(
                        slot.x_mm, slot.fold_y_mm, slot.x_mm + slot.width_mm, slot.fold_y_mm,
                        FOLD_LINE_GRAY, FOLD_LINE_WIDTH_MM,
                    )
                    await self._render_card(document, card, slot, ctx)
                    guide = cut_guide_before(page, slot)
                    if guide is not None:
                        document.draw_line(
                            guide.x_mm, guide.y_start_mm, guide.x_mm, guide.y_end_mm,
                            CUT_GUIDE_GRAY, CUT_GUIDE_WIDTH_MM,
                        )
            data = document.finish()
        except Exception:
            logger.exception("[export] export failed")
            raise

        if ctx.placeholder_ids:
            logger.warning("[export] placeholders used for card(s) %s", ctx.placeholder_ids)
        return data


async def export_cards(cards: Sequence[CardRecord]) -> bytes:
    """Export these cards, in order, to one PDF document."""
    return await CardSheetExporter().export(cards)


def export_cards_to_pdf(
    cards: Sequence[CardRecord],
    output_path: str | Path,
    exporter: Optional[CardSheetExporter] = None,
) -> Path:
    """Synchronous convenience wrapper that writes the PDF to disk."""
    exporter = exporter or CardSheetExporter()
    data = asyncio.run(exporter.export(cards))
    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(data)
    logger.info("[export] saved %s", out)
    return out
