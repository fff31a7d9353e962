"""Page geometry for placed fields.

Fields are placed against a fixed A4 reference frame measured in PDF points.
DocuSeal expects boxes relative to the page (0-1 from the top-left corner),
so every box goes through ``normalize_box`` before it leaves the service.
"""
import re
from dataclasses import dataclass
from typing import List

from .errors import PageRangeError

PAGE_WIDTH = 595
PAGE_HEIGHT = 842

MIN_RELATIVE_SIZE = 0.01

_DIGITS = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class NormalizedBox:
    x: float
    y: float
    w: float
    h: float
    clamped: bool = False

    def area(self, page: int) -> dict:
        return {"x": self.x, "y": self.y, "w": self.w, "h": self.h, "page": page}


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def normalize_box(
    x: float,
    y: float,
    width: float,
    height: float,
    page_width: float = PAGE_WIDTH,
    page_height: float = PAGE_HEIGHT,
) -> NormalizedBox:
    raw = (x / page_width, y / page_height, width / page_width, height / page_height)
    rel_x = _clamp(raw[0], 0.0, 1.0)
    rel_y = _clamp(raw[1], 0.0, 1.0)
    rel_w = _clamp(raw[2], MIN_RELATIVE_SIZE, 1.0)
    rel_h = _clamp(raw[3], MIN_RELATIVE_SIZE, 1.0)
    return NormalizedBox(
        x=rel_x,
        y=rel_y,
        w=rel_w,
        h=rel_h,
        clamped=(rel_x, rel_y, rel_w, rel_h) != raw,
    )


def _page_number(token: str, expression: str) -> int:
    if not _DIGITS.fullmatch(token):
        raise PageRangeError(f"Invalid page range: {expression!r}", f"{token!r} is not a page number")
    page = int(token)
    if page < 1:
        raise PageRangeError(f"Invalid page range: {expression!r}", "page numbers start at 1")
    return page


def parse_pages(expression: str) -> List[int]:
    """Expand ``"1"``, ``"1-3"`` or ``"1,3,5"`` into page numbers.

    Order follows the tokens from left to right; nothing is sorted or deduplicated,
    so ``"3,1-2"`` gives ``[3, 1, 2]``.
    """
    if expression is None or not str(expression).strip():
        raise PageRangeError("Invalid page range: empty", "at least one page is required")
    expression = str(expression)
    pages: List[int] = []
    for part in expression.split(","):
        token = part.strip()
        if not token:
            raise PageRangeError(f"Invalid page range: {expression!r}", "empty page token")
        if "-" in token:
            start_raw, sep, end_raw = token.partition("-")
            start = _page_number(start_raw.strip(), expression)
            end = _page_number(end_raw.strip(), expression)
            if end < start:
                raise PageRangeError(f"Invalid page range: {expression!r}", f"{token!r} is reversed")
            pages.extend(range(start, end + 1))
        else:
            pages.append(_page_number(token, expression))
    return pages


def validate_pages(expression: str, page_count=None) -> List[int]:
    pages = parse_pages(expression)
    if page_count:
        beyond = [p for p in pages if p > page_count]
        if beyond:
            raise PageRangeError(
                f"Invalid page range: {expression!r}",
                f"document has {page_count} page(s)",
            )
    return pages
