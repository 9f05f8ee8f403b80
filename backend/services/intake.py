"""
Photo intake.

Turns a batch of image files into CardRecords: capture date from the metadata
extractor, event label restored from the label cache when one was typed
before.
"""
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from domain.models import CardRecord
from services.label_cache import LabelCache, make_cache_key
from services.metadata_extractor import extract_capture_date
from services.text_fit import clamp_label
from settings import settings

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".jpeg", ".jpg", ".png", ".gif", ".bmp", ".webp", ".heic", ".heif"}


def is_image_file(path: Path) -> bool:
    return path.suffix.lower() in IMAGE_EXTENSIONS


def intake_photos(
    paths: Iterable[str | Path],
    cache: Optional[LabelCache] = None,
    *,
    limit: Optional[int] = None,
) -> List[CardRecord]:
    """
    Build cards for a batch of photo files, in input order.

    Non-image files and anything past `limit` are skipped with a warning.
    """
    limit = settings.MAX_CARDS if limit is None else limit
    if cache is not None:
        cache.purge_older_than()

    cards: List[CardRecord] = []
    for raw in paths:
        path = Path(raw)
        if not is_image_file(path):
            logger.warning("[intake] skipping non-image file %s", path)
            continue
        if len(cards) >= limit:
            logger.warning("[intake] batch limit %s reached; skipping %s", limit, path)
            continue

        capture = extract_capture_date(path, filename=path.name)
        cached = None
        if cache is not None:
            cached = cache.load(make_cache_key(capture.full_date, path.name))

        cards.append(
            CardRecord(
                id=CardRecord.generate_id(),
                image=str(path),
                filename=path.name,
                event_name=clamp_label(cached),
                year=capture.year,
                full_date=capture.full_date,
                date_source=capture.source,
            )
        )
        logger.info("[intake] %s: year=%s source=%s label=%r", path.name, capture.year, capture.source, cached)
    return cards


def remember_labels(cards: Sequence[CardRecord], cache: LabelCache) -> int:
    """Write non-empty event labels back to the cache; returns how many were saved."""
    saved = 0
    for card in cards:
        label = (card.event_name or "").strip()
        if not label:
            continue
        cache.save(make_cache_key(card.full_date, card.filename), label)
        saved += 1
    return saved
