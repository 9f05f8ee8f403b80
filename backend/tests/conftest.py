import sys
from pathlib import Path

import pytest

# Ensure the backend package root is on sys.path for direct pytest runs
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from settings import settings  # noqa: E402


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """Keep tests away from the developer's label cache and debug dumps."""
    monkeypatch.setattr(settings, "LABEL_CACHE_PATH", str(tmp_path / "label_cache.sqlite"))
    monkeypatch.setattr(settings, "DEBUG_ARTIFACTS", False)
    return settings
