import asyncio
import io
import logging
from datetime import datetime

import numpy as np
import pytest
from PIL import Image

from domain.models import CardRecord, FaceRole
from services import export_pdf
from services.card_face import CardFaceRenderer
from services.document_backend import ReportLabDocument
from services.errors import DocumentRenderError
from services.export_pdf import CardSheetExporter, export_cards_to_pdf
from services.text_fit import TextFitter


class RecordingDocument:
    """Document backend double that records every primitive in call order."""

    def __init__(self, fail_on_image=None):
        self.events = []
        self.images = []
        self.pages = 0
        self.fail_on_image = fail_on_image

    def add_page(self):
        self.pages += 1
        self.events.append(("page", self.pages))

    def draw_line(self, x1, y1, x2, y2, gray, width_mm):
        self.events.append(("line", (x1, y1, x2, y2), gray, width_mm))

    def draw_image(self, image, x, y, width, height):
        if self.fail_on_image is not None and len(self.images) == self.fail_on_image:
            raise DocumentRenderError("disk full")
        self.images.append((image, x, y, width, height))
        self.events.append(("image", (x, y, width, height)))

    def finish(self):
        self.events.append(("finish",))
        return b"%PDF-recorded"


class RecordingRenderer(CardFaceRenderer):
    def __init__(self):
        super().__init__(TextFitter(char_width=lambda size: size * 0.6), px_per_mm=4.0)
        self.faces = []

    def render_face(self, photo, role, card_width_mm, half_height_mm, text, **kwargs):
        face = super().render_face(photo, role, card_width_mm, half_height_mm, text, **kwargs)
        self.faces.append((role, face.plan.texts(), face.rotated))
        return face


def _jpeg(color=(200, 120, 40), size=(160, 90)):
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="JPEG")
    return buf.getvalue()


def _cards(n, **overrides):
    cards = []
    for i in range(n):
        fields = dict(
            id=f"card-{i}",
            image=_jpeg(),
            filename=f"photo_{i}.jpg",
            event_name=f"Event {i}",
            year=2000 + i,
        )
        fields.update(overrides)
        cards.append(CardRecord(**fields))
    return cards


def _exporter(**kwargs):
    kwargs.setdefault("renderer", RecordingRenderer())
    kwargs.setdefault("rng", np.random.default_rng(0))
    return CardSheetExporter(**kwargs)


def _kinds(events):
    return [e[0] for e in events]


def test_draw_order_per_card():
    doc = RecordingDocument()
    data = asyncio.run(_exporter().export(_cards(2), doc))
    assert data == b"%PDF-recorded"
    assert _kinds(doc.events) == [
        "page",
        "line", "image", "image",
        "line", "image", "image", "line",
        "finish",
    ]


def test_seven_cards_on_two_pages():
    doc = RecordingDocument()
    asyncio.run(_exporter().export(_cards(7), doc))
    assert doc.pages == 2
    assert len(doc.images) == 14
    lines = [e for e in doc.events if e[0] == "line"]
    folds = [e for e in lines if e[2] == 200]
    cuts = [e for e in lines if e[2] == 150]
    assert len(folds) == 7
    assert len(cuts) == 4 + 1


def test_faces_stack_on_the_fold():
    doc = RecordingDocument()
    exporter = _exporter()
    asyncio.run(exporter.export(_cards(1), doc))
    (_, x1, y1, w1, h1), (_, x2, y2, w2, h2) = doc.images
    assert (x1, w1) == (x2, w2)
    assert h1 == h2 == pytest.approx(95.0)
    assert y2 == pytest.approx(y1 + h1)
    fold = doc.events[1]
    assert fold[1][1] == pytest.approx(y2)


def test_year_face_is_rotated_and_carries_event_name():
    renderer = RecordingRenderer()
    cards = _cards(1, full_date=datetime(2019, 4, 12), year=2019, event_name="Wedding")
    asyncio.run(_exporter(renderer=renderer).export(cards, RecordingDocument()))
    (role1, texts1, rotated1), (role2, texts2, rotated2) = renderer.faces
    assert (role1, rotated1) == (FaceRole.YEAR, True)
    assert texts1 == ["Apr 2019", "Wedding", "1"]
    assert (role2, rotated2) == (FaceRole.EVENT, False)
    assert texts2 == ["Wedding", "1"]


def test_sequence_ids_follow_input_order():
    renderer = RecordingRenderer()
    asyncio.run(_exporter(renderer=renderer).export(_cards(6), RecordingDocument()))
    markers = [texts[-1] for role, texts, _ in renderer.faces if role == FaceRole.EVENT]
    assert markers == ["1", "2", "3", "4", "5", "6"]


def test_broken_photo_gets_placeholder(monkeypatch, caplog):
    calls = []
    real_placeholder = export_pdf.placeholder_image

    def counting_placeholder():
        calls.append(1)
        return real_placeholder()

    monkeypatch.setattr(export_pdf, "placeholder_image", counting_placeholder)
    cards = _cards(3)
    cards[1].image = b"not a jpeg"

    doc = RecordingDocument()
    with caplog.at_level(logging.WARNING):
        asyncio.run(_exporter().export(cards, doc))

    assert len(calls) == 1
    assert len(doc.images) == 6
    assert "placeholder" in caplog.text


def test_loader_failure_of_any_kind_is_recovered():
    async def loader(card):
        if card.filename == "photo_0.jpg":
            raise RuntimeError("decoder crashed")
        return Image.new("RGBA", (90, 120), (0, 0, 0, 255))

    doc = RecordingDocument()
    asyncio.run(_exporter(image_loader=loader).export(_cards(2), doc))
    assert len(doc.images) == 4


def test_cards_load_in_input_order():
    seen = []

    async def loader(card):
        seen.append(card.filename)
        await asyncio.sleep(0)
        return Image.new("RGBA", (90, 120), (255, 255, 255, 255))

    asyncio.run(_exporter(image_loader=loader).export(_cards(4), RecordingDocument()))
    assert seen == ["photo_0.jpg", "photo_1.jpg", "photo_2.jpg", "photo_3.jpg"]


def test_document_failure_aborts_export():
    seen = []

    async def loader(card):
        seen.append(card.filename)
        return Image.new("RGBA", (90, 120), (255, 255, 255, 255))

    doc = RecordingDocument(fail_on_image=2)
    with pytest.raises(DocumentRenderError):
        asyncio.run(_exporter(image_loader=loader).export(_cards(4), doc))
    assert seen == ["photo_0.jpg", "photo_1.jpg"]
    assert ("finish",) not in doc.events


def test_empty_export_is_rejected():
    with pytest.raises(ValueError):
        asyncio.run(_exporter().export([], RecordingDocument()))


def test_seeded_exports_are_identical():
    first, second = RecordingDocument(), RecordingDocument()
    asyncio.run(_exporter(rng=np.random.default_rng(7)).export(_cards(1), first))
    asyncio.run(_exporter(rng=np.random.default_rng(7)).export(_cards(1), second))
    assert list(first.images[1][0].getdata()) == list(second.images[1][0].getdata())


def test_reportlab_document_end_to_end(tmp_path):
    exporter = _exporter(document_factory=lambda: ReportLabDocument(jpeg_quality=70))
    out = export_cards_to_pdf(_cards(6), tmp_path / "out" / "cards.pdf", exporter=exporter)
    data = out.read_bytes()
    assert data.startswith(b"%PDF")
    assert len(data) > 1000


def test_reportlab_page_count():
    doc = ReportLabDocument()
    asyncio.run(_exporter().export(_cards(6), doc))
    assert doc.page_count == 2


class TestReportLabDocument:
    def test_lazy_first_page(self):
        doc = ReportLabDocument()
        doc.draw_line(10, 10, 20, 10, 200, 0.2)
        assert doc.page_count == 1
        doc.add_page()
        assert doc.page_count == 2
        assert doc.finish().startswith(b"%PDF")

    def test_add_page_first_does_not_leave_blank_page(self):
        doc = ReportLabDocument()
        doc.add_page()
        doc.draw_image(Image.new("RGB", (10, 10)), 0, 0, 10, 10)
        assert doc.page_count == 1

    def test_errors_are_wrapped(self):
        doc = ReportLabDocument()
        with pytest.raises(DocumentRenderError):
            doc.draw_image(object(), 0, 0, 10, 10)


def test_debug_faces_are_saved(tmp_path):
    exporter = _exporter(debug_dir=tmp_path / "faces")
    asyncio.run(exporter.export(_cards(2), RecordingDocument()))
    saved = sorted(p.name for p in (tmp_path / "faces").iterdir())
    assert saved == ["card_001_event.png", "card_001_year.png", "card_002_event.png", "card_002_year.png"]


def test_unlabelled_card_without_date_end_to_end():
    renderer = RecordingRenderer()
    cards = _cards(1, event_name="", year=1994)
    asyncio.run(_exporter(renderer=renderer).export(cards, RecordingDocument()))
    (_, year_texts, _), (_, event_texts, _) = renderer.faces
    assert year_texts == ["1994", "1"]
    assert event_texts == ["? ? ?", "1"]


def test_fifty_char_label_never_rendered_in_full():
    renderer = RecordingRenderer()
    label = "x" * 50
    asyncio.run(_exporter(renderer=renderer).export(_cards(1, event_name=label), RecordingDocument()))
    for _, texts, _ in renderer.faces:
        assert label not in texts
        assert all(len(t) <= 20 for t in texts)
