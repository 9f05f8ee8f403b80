"""Render a deterministic fixture card sheet and generate per-page thumbnails.

Usage:
    python -m scripts.render_fixture_sheet      (with backend/ on PYTHONPATH)

Outputs go to `backend/tests/artifacts/fixture_run/` and are gitignored.

Generates simple synthetic photos with Pillow, builds seven cards (so the
second page is partially filled, and one card points at a missing file to
exercise the placeholder), and exports them with a seeded grain generator.

Thumbnail generation uses PyMuPDF (`fitz`) when available, otherwise it will
skip thumbnails but still produce the PDF.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import List

import numpy as np
from PIL import Image, ImageDraw

try:
    import fitz  # PyMuPDF
except ImportError:
    fitz = None

from domain.models import CardRecord
from services.export_pdf import CardSheetExporter, export_cards_to_pdf

ROOT = Path(__file__).resolve().parents[1]
ARTIFACTS_DIR = ROOT / "tests" / "artifacts" / "fixture_run"
IMAGES_DIR = ARTIFACTS_DIR / "images"

LOG = logging.getLogger("render_fixture_sheet")

# (filename, size, kind, event name, capture date or bare year)
FIXTURE_CARDS = [
    ("beach.jpg", (1600, 900), "landscape", "First swim", datetime(2019, 4, 12, 10, 0)),
    ("portrait.jpg", (800, 1200), "portrait", "Graduation", datetime(2008, 6, 1, 15, 30)),
    ("square.jpg", (1000, 1000), "face", "", 1994),
    ("tiny.jpg", (90, 120), "portrait", "Moved to Lisbon in the summer", 2021),
    ("wide.jpg", (2400, 800), "landscape", "Road trip", datetime(2015, 8, 20, 9, 0)),
    ("missing.jpg", None, None, "Lost photo", 2001),
    ("scene.jpg", (1200, 1600), "scene", "New job", datetime(2023, 1, 9, 8, 45)),
]


def ensure_fixture_images():
    IMAGES_DIR.mkdir(parents=True, exist_ok=True)
    for name, size, kind, _, _ in FIXTURE_CARDS:
        p = IMAGES_DIR / name
        if size is None or p.exists():
            continue
        img = Image.new("RGB", size, (240, 240, 240))
        d = ImageDraw.Draw(img)
        w, h = size
        if kind == "face":
            cx, cy = w // 2, h // 2
            r = min(w, h) // 4
            d.ellipse((cx - r, cy - r, cx + r, cy + r), fill=(255, 224, 189), outline=(120, 80, 40))
            d.ellipse((cx - r // 3, cy - r // 4, cx - r // 6, cy - r // 6), fill=(0, 0, 0))
            d.ellipse((cx + r // 6, cy - r // 4, cx + r // 3, cy - r // 6), fill=(0, 0, 0))
        elif kind == "landscape":
            d.rectangle((0, int(h * 0.6), w, h), fill=(34, 139, 34))
            d.rectangle((0, 0, w, int(h * 0.6)), fill=(135, 206, 235))
        elif kind == "portrait":
            d.rectangle((0, 0, w, int(h * 0.4)), fill=(70, 130, 180))
            d.rectangle((0, int(h * 0.4), w, h), fill=(205, 133, 63))
        elif kind == "scene":
            for i in range(0, w, max(1, w // 12)):
                d.line((i, 0, w - i, h), fill=(60, 60, 90), width=4)
        img.save(p, format="JPEG", quality=85)
        LOG.info("Generated fixture image %s", p)


def build_fixture_cards() -> List[CardRecord]:
    cards = []
    for idx, (name, _, _, event_name, when) in enumerate(FIXTURE_CARDS):
        full_date = when if isinstance(when, datetime) else None
        cards.append(
            CardRecord(
                id=f"fixture-{idx}",
                image=str(IMAGES_DIR / name),
                filename=name,
                event_name=event_name,
                year=full_date.year if full_date else when,
                full_date=full_date,
                date_source="Fixture",
            )
        )
    return cards


def generate_thumbnails(pdf_path: Path, out_dir: Path):
    out_dir.mkdir(parents=True, exist_ok=True)
    if fitz is None:
        LOG.warning("PyMuPDF not installed; skipping thumbnail generation")
        return []

    doc = fitz.open(str(pdf_path))
    out_files = []
    for i, page in enumerate(doc):
        pix = page.get_pixmap(dpi=150)
        out_file = out_dir / f"page_{i+1:03d}.png"
        pix.save(str(out_file))
        out_files.append(out_file)
    return out_files


def main():
    logging.basicConfig(level=logging.INFO)
    ensure_fixture_images()
    cards = build_fixture_cards()

    ARTIFACTS_DIR.mkdir(parents=True, exist_ok=True)
    out_pdf = ARTIFACTS_DIR / "fixture_cards.pdf"
    exporter = CardSheetExporter(rng=np.random.default_rng(1234))

    LOG.info("Rendering %s cards to %s", len(cards), out_pdf)
    try:
        export_cards_to_pdf(cards, out_pdf, exporter=exporter)
    except Exception:
        LOG.exception("Failed to render PDF")
        sys.exit(2)

    pages_dir = ARTIFACTS_DIR / "pages"
    thumbs = generate_thumbnails(out_pdf, pages_dir)
    LOG.info("Rendered %s page thumbnails: %s", len(thumbs), pages_dir)
    print(f"PDF: {out_pdf}")
    print(f"Pages dir: {pages_dir}")


if __name__ == "__main__":
    main()
