"""HTML parsing for the service lookup and bill lookup result pages.

The portal markup is not under our control, so every helper here degrades to
the ``NOT_FOUND`` sentinel instead of raising on an unexpected layout.
"""
from __future__ import annotations

import re
from typing import Iterable, Optional

from bs4 import BeautifulSoup
from bs4.element import Tag

from .models import NOT_FOUND, ExtractionResult, FetchStatus, LookupKey

SERVICE_ROW_MIN_CELLS = 6

# Ordered by preference: the first label that yields an amount wins.
BILL_LABELS: tuple[str, ...] = ("current month bill", "total amount payable")

_AMOUNT_RE = re.compile(r"(?:₹|Rs\.?)?\s*[0-9][0-9,]*(?:\.[0-9]+)?", re.IGNORECASE)
_CURRENCY_AMOUNT_RE = re.compile(r"(?:₹|Rs\.?)\s*[0-9][0-9,]*(?:\.[0-9]+)?", re.IGNORECASE)


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html5lib")


def normalize_text(value: Optional[str]) -> str:
    """Collapse internal whitespace and trim."""

    return " ".join((value or "").split())


def _cell_text(cell: Tag) -> str:
    return normalize_text(cell.get_text(" "))


def _table_rows(soup: BeautifulSoup) -> Iterable[Tag]:
    return soup.select("table tr")


def parse_service_details(html: str, key: LookupKey) -> ExtractionResult:
    """Parse the service lookup result page for ``key``.

    The first table row with at least six data cells is the result row, with
    columns in fixed order: service number, unique service number, customer
    name, address, ERO, mobile.
    """

    soup = _soup(html)
    for row in _table_rows(soup):
        cells = row.find_all("td", recursive=False)
        if len(cells) < SERVICE_ROW_MIN_CELLS:
            continue
        values = [_cell_text(cell) for cell in cells[:SERVICE_ROW_MIN_CELLS]]
        return ExtractionResult(
            service_no=values[0] or key.composite,
            unique_service_no=values[1] or NOT_FOUND,
            customer_name=values[2] or NOT_FOUND,
            address=values[3] or NOT_FOUND,
            ero=values[4] or NOT_FOUND,
            mobile=values[5] or NOT_FOUND,
            fetch_status=FetchStatus.SUCCESS,
            circle_code=key.circle_code,
            service_number=key.service_number,
        )
    return ExtractionResult.failed(key)


def _match_amount(text: str) -> Optional[str]:
    for match in _AMOUNT_RE.finditer(text or ""):
        value = match.group(0).strip()
        if value:
            return value
    return None


def _labelled_amount(cells: list[Tag], label: str) -> Optional[str]:
    """Return the amount next to ``label`` in a row, if the row carries it."""

    texts = [_cell_text(cell) for cell in cells]
    for index, text in enumerate(texts):
        if label not in text.lower():
            continue
        if index < len(texts) - 1:
            # Adjacent cell first, then later cells up to the next labelled cell.
            for candidate in texts[index + 1:]:
                if any(other in candidate.lower() for other in BILL_LABELS):
                    break
                amount = _match_amount(candidate)
                if amount:
                    return amount
        else:
            # Label and value share a single cell ("Current Month Bill: 1,234").
            tail = text.lower().split(label, 1)[1]
            amount = _match_amount(text[len(text) - len(tail):])
            if amount:
                return amount
    return None


def parse_bill_amount(html: str) -> str:
    """Extract the bill amount from a bill lookup result page.

    A "current month bill" row is preferred over "total amount payable". When
    no labelled row matches, the first currency-prefixed amount anywhere in
    the page text is used.
    """

    soup = _soup(html)
    found: dict[str, str] = {}
    for row in _table_rows(soup):
        cells = row.find_all(["td", "th"], recursive=False)
        if not cells:
            continue
        for label in BILL_LABELS:
            if label in found:
                continue
            amount = _labelled_amount(cells, label)
            if amount:
                found[label] = amount

    for label in BILL_LABELS:
        if label in found:
            return found[label]

    body_text = normalize_text(soup.get_text(" "))
    match = _CURRENCY_AMOUNT_RE.search(body_text)
    if match:
        return match.group(0).strip()
    return NOT_FOUND


__all__ = [
    "BILL_LABELS",
    "SERVICE_ROW_MIN_CELLS",
    "normalize_text",
    "parse_service_details",
    "parse_bill_amount",
]
