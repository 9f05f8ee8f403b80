"""Export timeline cards to a print-ready PDF.

Usage:
    timeline-cards photo1.jpg photo2.jpg --out cards.pdf
    timeline-cards --manifest cards.json --out cards.pdf

A manifest is a JSON list (or {"cards": [...]}) of entries:
    {"image": "beach.jpg", "event_name": "First swim", "year": 2019, "full_date": "2019-04-12T10:00:00"}

`year` and `full_date` are optional; missing dates are read from the photo.
Labels given in a manifest are remembered for the next import of the same photo.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

# Load environment variables from backend/.env (optional) before modules that read settings
load_dotenv(Path(__file__).resolve().parents[1] / ".env")

from domain.models import CardRecord
from services.errors import TimelineCardsError
from services.export_pdf import export_cards_to_pdf
from services.intake import intake_photos, remember_labels
from services.label_cache import LabelCache
from services.metadata_extractor import extract_capture_date, register_heif_opener
from services.text_fit import clamp_label

LOG = logging.getLogger("export_cards")


class ManifestCard(BaseModel):
    image: str
    event_name: str = ""
    year: Optional[int] = Field(default=None, ge=1000, le=2100)
    full_date: Optional[datetime] = None

    @field_validator("event_name", mode="before")
    @classmethod
    def _clamp_event_name(cls, value):
        return clamp_label(value if isinstance(value, str) else "")


class CardManifest(BaseModel):
    cards: List[ManifestCard]


def load_manifest(path: Path) -> CardManifest:
    data: Union[list, dict] = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, list):
        data = {"cards": data}
    return CardManifest.model_validate(data)


def cards_from_manifest(manifest: CardManifest, base_dir: Path) -> List[CardRecord]:
    cards: List[CardRecord] = []
    for entry in manifest.cards:
        image_path = Path(entry.image)
        if not image_path.is_absolute():
            image_path = base_dir / image_path
        if entry.full_date is not None:
            year, full_date, source = entry.year or entry.full_date.year, entry.full_date, "Manifest"
        elif entry.year is not None:
            year, full_date, source = entry.year, None, "Manifest"
        else:
            capture = extract_capture_date(image_path, filename=image_path.name)
            year, full_date, source = capture.year, capture.full_date, capture.source
        cards.append(
            CardRecord(
                id=CardRecord.generate_id(),
                image=str(image_path),
                filename=image_path.name,
                event_name=entry.event_name,
                year=year,
                full_date=full_date,
                date_source=source,
            )
        )
    return cards


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Generate double-sided timeline game cards as a PDF.")
    parser.add_argument("images", nargs="*", help="Photos to turn into cards, in card order.")
    parser.add_argument("--manifest", help="JSON manifest with explicit event names and dates.")
    parser.add_argument("--out", default="timeline-cards.pdf", help="Output PDF path.")
    parser.add_argument("--label-cache", help="SQLite file for remembered event labels.")
    parser.add_argument("--no-cache", action="store_true", help="Do not read or write remembered labels.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    if not args.images and not args.manifest:
        parser.error("give photos or --manifest")

    register_heif_opener()
    cache = None if args.no_cache else LabelCache(db_path=args.label_cache)

    if args.manifest:
        manifest_path = Path(args.manifest)
        try:
            manifest = load_manifest(manifest_path)
        except (OSError, ValueError, ValidationError) as exc:
            parser.error(f"invalid manifest {manifest_path}: {exc}")
        cards = cards_from_manifest(manifest, manifest_path.resolve().parent)
        if cache is not None:
            cache.purge_older_than()
            remember_labels(cards, cache)
    else:
        cards = intake_photos(args.images, cache)

    if cache is not None:
        cache.close()
    if not cards:
        LOG.error("No usable photos given")
        return 2

    try:
        out = export_cards_to_pdf(cards, args.out)
    except (TimelineCardsError, OSError):
        LOG.exception("Export failed")
        return 2

    print(f"Wrote {out} ({len(cards)} cards)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
