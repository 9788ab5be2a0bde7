"""HTML parsing of Windows Update Catalog search pages."""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from datetime import date, datetime
from typing import Optional

from bs4 import BeautifulSoup, Tag

from .constants import (
    ARCHITECTURE_KEYWORDS,
    ARCHITECTURE_UNKNOWN,
    EVENT_ARGUMENT_ID,
    EVENT_VALIDATION_ID,
    HEADER_ROW_ID,
    KB_PATTERN,
    MIN_ROW_CELLS,
    NEXT_PAGE_ID,
    NO_RESULTS_ID,
    PAGE_SUMMARY_ID,
    PAGE_SUMMARY_PATTERN,
    RESULTS_TABLE_ID,
    SIZE_PATTERN,
    SIZE_UNITS,
    UPDATE_ID_PATTERN,
    VIEWSTATE_GENERATOR_ID,
    VIEWSTATE_ID,
)
from .models import ParseResult, SessionState, UpdateRecord

logger = logging.getLogger(__name__)

CATALOG_DATE_FORMAT = "%m/%d/%Y"
FALLBACK_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%Y-%m-%dT%H:%M:%S",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %I:%M:%S %p",
    "%B %d, %Y",
    "%b %d, %Y",
    "%d %B %Y",
    "%d %b %Y",
)

HIDDEN_SIZE_ID = re.compile(r"_originalSize$")
VISIBLE_SIZE_ID = re.compile(r"_size$")


def _normalize_text(text: str) -> str:
    """Collapse whitespace and non-breaking spaces."""
    text = text.replace("\xa0", " ")
    return re.sub(r"\s+", " ", text).strip()


def _get_cell_text(cell: Tag) -> str:
    return _normalize_text(cell.get_text(" "))


# ----------------------------------------------------------------------
# Field helpers
# ----------------------------------------------------------------------

def extract_update_id(row_id: str) -> Optional[str]:
    """Return the GUID part of a row id like '<guid>_R3', or None."""
    match = UPDATE_ID_PATTERN.match(row_id.strip())
    return match.group(1) if match else None


def extract_kb_number(title: str) -> Optional[str]:
    match = KB_PATTERN.search(title)
    return f"KB{match.group(1)}" if match else None


def parse_products(text: str) -> list[str]:
    """Split a products cell into an ordered, case-insensitively unique list."""
    products: list[str] = []
    seen: set[str] = set()
    for token in _normalize_text(text).split(", "):
        token = token.strip().strip(",").strip()
        if len(token) <= 1:
            continue
        key = token.casefold()
        if key in seen:
            continue
        seen.add(key)
        products.append(token)
    return products


def parse_catalog_date(text: str) -> Optional[date]:
    """Parse the catalog's MM/dd/yyyy date, then a few fallback formats."""
    text = _normalize_text(text)
    if not text:
        return None
    try:
        return datetime.strptime(text, CATALOG_DATE_FORMAT).date()
    except ValueError:
        pass

    for fmt in FALLBACK_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    logger.debug("Unparseable date: %r", text)
    return None


def parse_size_text(text: str) -> Optional[int]:
    """Convert a display size such as '12.3 MB' to bytes."""
    match = SIZE_PATTERN.search(text)
    if not match:
        return None
    try:
        value = float(match.group(1).replace(",", ""))
    except ValueError:
        return None
    return int(value * SIZE_UNITS[match.group(2).upper()])


def _find_hidden_size(cell: Tag) -> Optional[Tag]:
    span = cell.find("span", id=HIDDEN_SIZE_ID)
    if span is not None:
        return span
    for span in cell.find_all("span"):
        style = (span.get("style") or "").replace(" ", "").lower()
        if "display:none" in style and span.get_text(strip=True).isdigit():
            return span
    return None


def parse_size(cell: Tag) -> tuple[int, str]:
    """Return (bytes, display text) for a size cell.

    An exact byte count in a hidden span wins over the display text.
    """
    hidden = _find_hidden_size(cell)

    visible = cell.find("span", id=VISIBLE_SIZE_ID)
    if visible is not None:
        formatted = _get_cell_text(visible)
    else:
        parts = [
            s for s in cell.find_all(string=True)
            if hidden is None or all(p is not hidden for p in s.parents)
        ]
        formatted = _normalize_text(" ".join(parts))

    if hidden is not None:
        exact = hidden.get_text(strip=True)
        if exact.isdigit():
            return int(exact), formatted

    return parse_size_text(formatted) or 0, formatted


def detect_architecture(title: str, products: list[str]) -> str:
    haystack = f"{title} {' '.join(products)}".lower()
    for architecture, keywords in ARCHITECTURE_KEYWORDS:
        if any(keyword in haystack for keyword in keywords):
            return architecture
    return ARCHITECTURE_UNKNOWN


# ----------------------------------------------------------------------
# Row extraction
# ----------------------------------------------------------------------

def extract_row(tr: Tag) -> tuple[Optional[UpdateRecord], Optional[str]]:
    """Convert one results row into an UpdateRecord.

    Returns (record, None) on success, or (None, reason) when the row
    cannot be used.
    """
    cells = tr.find_all("td", recursive=False) or tr.find_all("td")
    if len(cells) < MIN_ROW_CELLS:
        return None, f"expected at least {MIN_ROW_CELLS} cells, found {len(cells)}"

    title_cell = cells[1]
    link = title_cell.find("a")
    title = _get_cell_text(link) if link is not None else _get_cell_text(title_cell)
    if not title:
        return None, "row has no title"

    products = parse_products(cells[2].get_text(" "))
    version = _get_cell_text(cells[5])
    if version.lower() == "n/a":
        version = ""
    size_in_bytes, size_formatted = parse_size(cells[6])

    record = UpdateRecord(
        title=title,
        update_id=extract_update_id(tr.get("id") or ""),
        kb_number=extract_kb_number(title),
        products=products,
        classification=_get_cell_text(cells[3]),
        last_updated=parse_catalog_date(cells[4].get_text(" ")),
        version=version or None,
        size_in_bytes=size_in_bytes,
        size_formatted=size_formatted,
        architecture=detect_architecture(title, products),
    )
    return record, None


# ----------------------------------------------------------------------
# Page parsing
# ----------------------------------------------------------------------

def _input_value(soup: BeautifulSoup, element_id: str) -> Optional[str]:
    element = soup.find(id=element_id)
    if element is None:
        return None
    return element.get("value", "")


def _refresh_session(soup: BeautifulSoup, prior: SessionState) -> SessionState:
    """Build a new SessionState from the tokens on the page."""
    tokens = {}
    for field_name, element_id in (
        ("view_state", VIEWSTATE_ID),
        ("view_state_generator", VIEWSTATE_GENERATOR_ID),
        ("event_validation", EVENT_VALIDATION_ID),
    ):
        value = _input_value(soup, element_id)
        if value is None:
            logger.debug("Token %s missing, keeping previous value", element_id)
        else:
            tokens[field_name] = value

    session = replace(
        prior,
        event_argument=_input_value(soup, EVENT_ARGUMENT_ID) or "",
        has_next_page=soup.find(id=NEXT_PAGE_ID) is not None,
        **tokens,
    )

    summary = soup.find(id=PAGE_SUMMARY_ID)
    if summary is not None:
        match = PAGE_SUMMARY_PATTERN.search(_get_cell_text(summary))
        if match:
            session = replace(
                session,
                current_page=int(match.group(1)),
                total_pages=int(match.group(2)),
            )
    return session


def parse_search_page(html: str, prior: SessionState) -> ParseResult:
    """Parse a Search.aspx response.

    Returns the no-results signal, or the refreshed session and every row
    that could be extracted. Row failures become session warnings.
    """
    soup = BeautifulSoup(html, "html.parser")

    no_results = soup.find(id=NO_RESULTS_ID)
    if no_results is not None and no_results.get_text(strip=True):
        logger.info("Catalog reported no results: %s", _get_cell_text(no_results))
        return ParseResult(session=prior, no_results=True)

    session = _refresh_session(soup, prior)

    table = soup.find(id=RESULTS_TABLE_ID)
    if table is None:
        message = "Results table not found in response"
        logger.warning(message)
        return ParseResult(session=session.with_warning(message), no_results=True, error=message)

    updates: list[UpdateRecord] = []
    warnings: list[str] = []
    for tr in table.find_all("tr"):
        row_id = (tr.get("id") or "").strip()
        if not row_id or row_id == HEADER_ROW_ID:
            continue

        try:
            record, reason = extract_row(tr)
        except (ValueError, TypeError, AttributeError, KeyError) as e:
            record, reason = None, str(e)

        if record is None:
            warnings.append(f"Failed to parse update row {row_id}: {reason}")
            continue
        updates.append(record)

    session = session.with_warnings(warnings)
    for warning in warnings:
        logger.warning(warning)

    if not updates:
        message = "No update rows found in results table"
        logger.warning(message)
        return ParseResult(session=session.with_warning(message), no_results=True)

    logger.info(
        "Parsed %d updates (page %d of %d, next page: %s)",
        len(updates),
        session.current_page,
        session.total_pages,
        "yes" if session.has_next_page else "no",
    )
    return ParseResult(session=session, updates=updates)
