import io
import json
from datetime import datetime
from pathlib import Path

import pytest
from PIL import Image

from scripts import export_cards
from scripts.export_cards import CardManifest, cards_from_manifest, load_manifest, main
from services.label_cache import LabelCache, make_cache_key


def _write_photo(path):
    buf = io.BytesIO()
    Image.new("RGB", (120, 90), (30, 160, 90)).save(buf, format="JPEG")
    path.write_bytes(buf.getvalue())
    return path


def _write_manifest(tmp_path, entries):
    path = tmp_path / "cards.json"
    path.write_text(json.dumps(entries))
    return path


class TestManifest:
    def test_list_and_object_forms(self, tmp_path):
        entries = [{"image": "a.jpg", "event_name": "Swim", "year": 2019}]
        as_list = load_manifest(_write_manifest(tmp_path, entries))
        (tmp_path / "obj.json").write_text(json.dumps({"cards": entries}))
        as_obj = load_manifest(tmp_path / "obj.json")
        assert as_list == as_obj

    def test_event_name_is_trimmed_and_clamped(self):
        manifest = CardManifest.model_validate(
            {"cards": [{"image": "a.jpg", "event_name": "   An event name that keeps going  "}]}
        )
        assert manifest.cards[0].event_name == "An event name that k"

    def test_year_range(self):
        with pytest.raises(ValueError):
            CardManifest.model_validate({"cards": [{"image": "a.jpg", "year": 3000}]})

    def test_cards_resolve_relative_paths_and_dates(self, tmp_path):
        photo = _write_photo(tmp_path / "a.jpg")
        manifest = CardManifest.model_validate(
            {
                "cards": [
                    {"image": "a.jpg", "event_name": "Swim", "full_date": "2019-04-12T10:00:00"},
                    {"image": "a.jpg", "year": 1994},
                    {"image": str(photo)},
                ]
            }
        )
        cards = cards_from_manifest(manifest, tmp_path)
        assert cards[0].image == str(photo)
        assert (cards[0].year, cards[0].full_date) == (2019, datetime(2019, 4, 12, 10, 0))
        assert (cards[1].year, cards[1].full_date) == (1994, None)
        assert cards[2].date_source == "File modification date"


def test_cli_exports_manifest_and_remembers_labels(tmp_path):
    _write_photo(tmp_path / "a.jpg")
    _write_photo(tmp_path / "b.jpg")
    manifest = _write_manifest(
        tmp_path,
        [
            {"image": "a.jpg", "event_name": "First swim", "year": 2019},
            {"image": "b.jpg", "year": 2001},
        ],
    )
    out = tmp_path / "cards.pdf"
    db = tmp_path / "labels.sqlite"

    assert main(["--manifest", str(manifest), "--out", str(out), "--label-cache", str(db)]) == 0
    assert out.read_bytes().startswith(b"%PDF")
    assert LabelCache(db_path=str(db)).load(make_cache_key(None, "a.jpg")) == "First swim"


def test_cli_exports_plain_photos(tmp_path):
    photo = _write_photo(tmp_path / "a.jpg")
    out = tmp_path / "plain.pdf"
    assert main([str(photo), "--out", str(out), "--no-cache"]) == 0
    assert out.exists()


def test_cli_rejects_invalid_manifest(tmp_path):
    manifest = _write_manifest(tmp_path, [{"image": "a.jpg", "year": 99999}])
    with pytest.raises(SystemExit) as excinfo:
        main(["--manifest", str(manifest), "--no-cache"])
    assert excinfo.value.code == 2


def test_cli_requires_input():
    with pytest.raises(SystemExit):
        main([])


def test_cli_with_no_usable_photos(tmp_path):
    notes = tmp_path / "notes.txt"
    notes.write_text("not a photo")
    assert main([str(notes), "--no-cache"]) == 2


def test_cli_reports_export_failure(tmp_path, monkeypatch):
    from services.errors import DocumentRenderError

    def boom(cards, out):
        raise DocumentRenderError("disk full")

    monkeypatch.setattr(export_cards, "export_cards_to_pdf", boom)
    photo = _write_photo(tmp_path / "a.jpg")
    assert main([str(photo), "--no-cache", "--out", str(Path(tmp_path) / "x.pdf")]) == 2
