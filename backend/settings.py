import os
from pathlib import Path

# Basic settings helper to read environment configuration.

BACKEND_ROOT = Path(__file__).resolve().parent


def _as_bool(val: str | None, default: bool = False) -> bool:
    if val is None:
        return default
    return val.lower() in ("1", "true", "yes", "on")


def _as_int(val: str | None, default: int) -> int:
    if val is None or not val.strip():
        return default
    try:
        return int(val)
    except ValueError:
        return default


def _as_float(val: str | None, default: float) -> float:
    if val is None or not val.strip():
        return default
    try:
        return float(val)
    except ValueError:
        return default


class Settings:
    def __init__(self) -> None:
        self.FONT_PATH: str | None = os.getenv("TIMELINE_FONT_PATH") or None
        self.LABEL_CACHE_PATH: str = os.getenv("TIMELINE_LABEL_CACHE_PATH") or str(
            BACKEND_ROOT / "data" / "label_cache.sqlite"
        )
        self.LABEL_RETENTION_DAYS: int = _as_int(os.getenv("TIMELINE_LABEL_RETENTION_DAYS"), 30)
        self.FACE_PX_PER_MM: float = _as_float(os.getenv("TIMELINE_FACE_PX_PER_MM"), 12.0)
        self.JPEG_QUALITY: int = _as_int(os.getenv("TIMELINE_JPEG_QUALITY"), 85)
        self.MAX_CARDS: int = _as_int(os.getenv("TIMELINE_MAX_CARDS"), 25)
        self.DEBUG_ARTIFACTS: bool = _as_bool(os.getenv("TIMELINE_DEBUG_ARTIFACTS"), False)
        self.DEBUG_ARTIFACTS_DIR: str = os.getenv("TIMELINE_DEBUG_ARTIFACTS_DIR") or str(BACKEND_ROOT / "data" / "debug_faces")

    @property
    def label_retention_seconds(self) -> int:
        return self.LABEL_RETENTION_DAYS * 24 * 3600


settings = Settings()
