"""
Card layout engine.

Computes where cards go on US Letter landscape pages: five cards per page,
equal spacing between cards and page edges, a fold line at each card's
vertical midpoint and cut guides between adjacent cards only.

All values are millimetres with a top-left origin. Nothing here draws; the
export service walks the plan and drives the face renderer and document.
"""
import math
from typing import Dict, Iterable, List

from domain.models import CardRecord, CardSlot, CutGuide, PageLayoutPlan, PagePlan

PAGE_WIDTH_MM = 279.4
PAGE_HEIGHT_MM = 215.9
CARDS_PER_PAGE = 5

BASE_SPACING_MM = 10.0
MAX_CARD_WIDTH_MM = 48.0
CARD_HEIGHT_MM = 190.0

FOLD_LINE_GRAY = 200
FOLD_LINE_WIDTH_MM = 0.2
CUT_GUIDE_GRAY = 150
CUT_GUIDE_WIDTH_MM = 0.1
CUT_GUIDE_OVERHANG_MM = 5.0


def card_width_mm(
    page_width: float = PAGE_WIDTH_MM,
    cards_per_page: int = CARDS_PER_PAGE,
    base_spacing: float = BASE_SPACING_MM,
) -> float:
    """Whole-millimetre card width that fits the page with base spacing, capped."""
    available = page_width - 2 * base_spacing - (cards_per_page - 1) * base_spacing
    return float(min(math.floor(available / cards_per_page), MAX_CARD_WIDTH_MM))


def card_spacing_mm(
    card_width: float,
    page_width: float = PAGE_WIDTH_MM,
    cards_per_page: int = CARDS_PER_PAGE,
) -> float:
    """Spacing that makes cards plus gaps exactly fill the page width."""
    return (page_width - cards_per_page * card_width) / (cards_per_page + 1)


def page_count(card_count: int, cards_per_page: int = CARDS_PER_PAGE) -> int:
    if card_count <= 0:
        return 0
    return math.ceil(card_count / cards_per_page)


def count_years(cards: Iterable[CardRecord]) -> Dict[int, int]:
    """Occurrences of each year across one export."""
    counts: Dict[int, int] = {}
    for card in cards:
        counts[card.year] = counts.get(card.year, 0) + 1
    return counts


def plan_pages(card_count: int) -> PageLayoutPlan:
    """
    Lay out `card_count` cards in export order.

    Sequence ids are 1-based positions in this plan and are only meaningful
    for the export that produced it.
    """
    width = card_width_mm()
    spacing = card_spacing_mm(width)
    y = (PAGE_HEIGHT_MM - CARD_HEIGHT_MM) / 2

    pages: List[PagePlan] = []
    for page_index in range(page_count(card_count)):
        page = PagePlan(page_index=page_index)
        for slot_index in range(CARDS_PER_PAGE):
            card_index = page_index * CARDS_PER_PAGE + slot_index
            if card_index >= card_count:
                break
            x = spacing + slot_index * (width + spacing)
            page.slots.append(
                CardSlot(
                    card_index=card_index,
                    sequence_id=card_index + 1,
                    slot_index=slot_index,
                    x_mm=x,
                    y_mm=y,
                    width_mm=width,
                    height_mm=CARD_HEIGHT_MM,
                )
            )
            if slot_index > 0:
                page.cut_guides.append(
                    CutGuide(
                        x_mm=x - spacing / 2,
                        y_start_mm=y - CUT_GUIDE_OVERHANG_MM,
                        y_end_mm=y + CARD_HEIGHT_MM + CUT_GUIDE_OVERHANG_MM,
                    )
                )
        pages.append(page)

    return PageLayoutPlan(
        page_width_mm=PAGE_WIDTH_MM,
        page_height_mm=PAGE_HEIGHT_MM,
        card_width_mm=width,
        card_height_mm=CARD_HEIGHT_MM,
        spacing_mm=spacing,
        pages=pages,
    )


def cut_guide_before(page: PagePlan, slot: CardSlot):
    """Cut guide drawn after `slot`'s images, or None for the first slot."""
    if slot.slot_index == 0:
        return None
    return page.cut_guides[slot.slot_index - 1]
