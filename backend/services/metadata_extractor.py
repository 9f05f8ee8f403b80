"""
Capture date extraction service.

Finds the best-effort capture date of a photo: embedded EXIF date fields in a
fixed priority order, then the file modification time, then a final
"unavailable" fallback. Never raises.
"""
import logging
import os
from datetime import datetime
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, Optional, Union

from domain.models import CaptureDate

logger = logging.getLogger(__name__)

DATE_FIELDS = ("DateTimeOriginal", "DateTime", "DateTimeDigitized", "CreateDate", "ModifyDate")

SOURCE_MTIME = "File modification date"
SOURCE_MTIME_EXIF_ERROR = "File modification date (EXIF error)"
SOURCE_UNAVAILABLE = "Date unavailable"


def extract_capture_date(
    source: Union[str, Path, bytes],
    filename: Optional[str] = None,
    mtime: Optional[float] = None,
) -> CaptureDate:
    """
    Extract a capture date from image bytes or a path.

    Args:
        source: Path to the image, or its raw bytes
        filename: Display name used in log messages
        mtime: File modification time (epoch seconds); read from `source` when
            it is a path and this is not given

    Returns:
        CaptureDate with year, optional full date and a provenance label.
    """
    name = filename or (str(source) if not isinstance(source, bytes) else "<bytes>")
    if mtime is None and not isinstance(source, bytes):
        try:
            mtime = os.path.getmtime(source)
        except OSError:
            mtime = None

    try:
        exif_data = _read_exif_dates(source)
    except Exception:
        logger.warning("[metadata] EXIF read failed for %s", name, exc_info=True)
        return _fallback(mtime, SOURCE_MTIME_EXIF_ERROR)

    for tag in DATE_FIELDS:
        value = exif_data.get(tag)
        if not value:
            continue
        parsed = _parse_exif_datetime(value)
        if parsed:
            logger.debug("[metadata] %s: %s=%s", name, tag, parsed)
            return CaptureDate(year=parsed.year, full_date=parsed, source=f"EXIF {tag}")

    logger.debug("[metadata] %s: no EXIF date, using modification time", name)
    return _fallback(mtime, SOURCE_MTIME)


def _fallback(mtime: Optional[float], source: str) -> CaptureDate:
    if mtime is not None:
        try:
            stamp = datetime.fromtimestamp(mtime)
            return CaptureDate(year=stamp.year, full_date=stamp, source=source)
        except (OverflowError, OSError, ValueError):
            pass
    return CaptureDate(year=datetime.now().year, full_date=None, source=SOURCE_UNAVAILABLE)


def _read_exif_dates(source: Union[str, Path, bytes]) -> Dict[str, Any]:
    """
    Collect date-like EXIF values by tag name from the base IFD and the Exif sub-IFD.
    """
    from PIL import ExifTags, Image

    fp = BytesIO(source) if isinstance(source, bytes) else source
    with Image.open(fp) as img:
        exif = img.getexif()
        if not exif:
            return {}
        values: Dict[str, Any] = {}
        for tag_id, value in exif.items():
            values[ExifTags.TAGS.get(tag_id, str(tag_id))] = value
        for tag_id, value in exif.get_ifd(ExifTags.IFD.Exif).items():
            values.setdefault(ExifTags.TAGS.get(tag_id, str(tag_id)), value)
    return {k: v for k, v in values.items() if k in DATE_FIELDS}


def _parse_exif_datetime(value: Any) -> Optional[datetime]:
    """Parse an EXIF datetime string."""
    if isinstance(value, bytes):
        value = value.decode("ascii", errors="ignore")
    if not isinstance(value, str):
        return None

    text = value.strip().strip("\x00")[:19]
    formats = [
        "%Y:%m:%d %H:%M:%S",  # Standard EXIF format
        "%Y-%m-%d %H:%M:%S",  # ISO-ish format
        "%Y/%m/%d %H:%M:%S",  # Slash format
        "%Y-%m-%dT%H:%M:%S",
    ]

    for fmt in formats:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    return None


def register_heif_opener() -> bool:
    """
    Register HEIF/HEIC opener with Pillow if pillow-heif is available.

    Call this at startup to enable HEIC support.
    Safe to call multiple times or if pillow-heif is not installed.
    """
    try:
        from pillow_heif import register_heif_opener as _register
        _register()
        return True
    except ImportError:
        return False
