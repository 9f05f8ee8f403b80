"""
Document backend for card sheets.

The export service only speaks this small primitive set, in millimetres with a
top-left origin: pages, lines and raster images. The ReportLab implementation
flips coordinates to PDF space and serializes the finished document to bytes.
"""
from __future__ import annotations

import io
import logging
from typing import Protocol

from PIL import Image
from reportlab.lib.pagesizes import landscape, letter
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from services.errors import DocumentRenderError

logger = logging.getLogger(__name__)


class DocumentBackend(Protocol):
    def add_page(self) -> None: ...

    def draw_line(self, x1: float, y1: float, x2: float, y2: float, gray: int, width_mm: float) -> None: ...

    def draw_image(self, image: Image.Image, x: float, y: float, width: float, height: float) -> None: ...

    def finish(self) -> bytes: ...


def encode_jpeg(image: Image.Image, quality: int = 85) -> bytes:
    buf = io.BytesIO()
    image.convert("RGB").save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


class ReportLabDocument:
    """
    Paginated PDF on US Letter landscape.

    Pages are created lazily: the first drawing call opens page one and each
    add_page() after content starts a new one.
    """

    def __init__(self, jpeg_quality: int = 85, title: str = "Timeline Cards"):
        self.page_width_pt, self.page_height_pt = landscape(letter)
        self.jpeg_quality = jpeg_quality
        self._buffer = io.BytesIO()
        self._canvas = canvas.Canvas(self._buffer, pagesize=(self.page_width_pt, self.page_height_pt))
        self._canvas.setTitle(title)
        self._page_started = False
        self.page_count = 0

    def _y(self, y_mm: float) -> float:
        return self.page_height_pt - y_mm * mm

    def _touch(self) -> None:
        if not self._page_started:
            self._page_started = True
            self.page_count += 1

    def add_page(self) -> None:
        try:
            if self._page_started:
                self._canvas.showPage()
            self._page_started = True
            self.page_count += 1
        except Exception as exc:
            raise DocumentRenderError(f"failed to start page {self.page_count + 1}") from exc

    def draw_line(self, x1: float, y1: float, x2: float, y2: float, gray: int, width_mm: float) -> None:
        self._touch()
        try:
            c = self._canvas
            c.saveState()
            c.setStrokeGray(gray / 255.0)
            c.setLineWidth(width_mm * mm)
            c.line(x1 * mm, self._y(y1), x2 * mm, self._y(y2))
            c.restoreState()
        except Exception as exc:
            raise DocumentRenderError("failed to draw line") from exc

    def draw_image(self, image: Image.Image, x: float, y: float, width: float, height: float) -> None:
        """Embed `image` exactly at the given box, JPEG-compressed."""
        self._touch()
        try:
            reader = ImageReader(io.BytesIO(encode_jpeg(image, self.jpeg_quality)))
            self._canvas.drawImage(reader, x * mm, self._y(y + height), width=width * mm, height=height * mm)
        except Exception as exc:
            raise DocumentRenderError("failed to embed image") from exc

    def finish(self) -> bytes:
        try:
            self._canvas.save()
        except Exception as exc:
            raise DocumentRenderError("failed to serialize document") from exc
        logger.info("[document] wrote %s page(s), %s bytes", self.page_count, self._buffer.tell())
        return self._buffer.getvalue()
