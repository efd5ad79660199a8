"""Spot price extraction from the Jämtkraft price history page.

The page has been served in three shapes over time: a Next.js payload with
the tables embedded as JSON, a server-rendered ``<table>``, and plain text.
Each shape has its own strategy; they are tried in a fixed order and the
first one that recovers at least one year wins.
"""

from __future__ import annotations

import json
import re
from typing import Any, Callable, Iterator, List, Mapping, Optional, Sequence, Tuple

from bs4 import BeautifulSoup

from .errors import ApiFailed, ExtractionFailed
from .fetcher import FetchPolicy, ResilientFetcher
from .logging import get_logger
from .models import SpotPriceTable
from .numeral import parse_sv_number

logger = get_logger(__name__)

SECTION_TITLE = "Elområde 2"
SWEDISH_MONTHS = ("jan", "feb", "mar", "apr", "maj", "jun", "jul", "aug", "sep", "okt", "nov", "dec")

_WHITESPACE = re.compile(r"\s+")
_YEAR_PATTERN = re.compile(r"^\d{4}$")
_FULL_YEAR_ROW = re.compile(r"(\d{4})\s+((?:\d{1,3}[,.]\d{1,2}\s+){11}\d{1,3}[,.]\d{1,2})(?![\d,.])")
_ANY_YEAR_ROW = re.compile(r"(\d{4})\s+((?:\d{1,3}[,.]\d{1,2}(?:\s+|$))+)")
_AREA_HEADING = re.compile(r"Elområde \d+")

Strategy = Callable[[BeautifulSoup], Optional[SpotPriceTable]]


def month_from_label(label: str) -> Optional[int]:
    """Map a Swedish month header such as 'Januari' or 'maj' to 1..12."""
    prefix = label.strip()[:3].lower()
    if prefix in SWEDISH_MONTHS:
        return SWEDISH_MONTHS.index(prefix) + 1
    return None


def _parse_year(raw: Any) -> Optional[int]:
    text = _WHITESPACE.sub("", str(raw if raw is not None else ""))
    if not _YEAR_PATTERN.match(text):
        return None
    return int(text)


def _collect_row(headers: Sequence[str], values: Sequence[Any]) -> dict[int, float]:
    months: dict[int, float] = {}
    for header, raw in zip(headers, values):
        month = month_from_label(header)
        if month is None:
            continue
        value = parse_sv_number(raw)
        if value is not None:
            months[month] = value
    return months


def _from_embedded_data(soup: BeautifulSoup) -> Optional[SpotPriceTable]:
    script = soup.find("script", id="__NEXT_DATA__")
    if script is None:
        return None
    payload_text = (script.string or "").strip()
    if not payload_text:
        return None
    try:
        payload = json.loads(payload_text)
    except ValueError:
        logger.info("embedded_data_unreadable")
        return None

    table = next((t for t in _iter_inline_tables(payload) if _is_target_caption(t.get("caption"))), None)
    rows = table.get("rows") if table else None
    if not isinstance(rows, list) or not rows:
        return None

    header_row, *data_rows = rows
    if not isinstance(header_row, list):
        return None
    headers = [str(_cell_value(cell)).strip() for cell in header_row[1:]]

    result: SpotPriceTable = {}
    for row in data_rows:
        if not isinstance(row, list) or not row:
            continue
        year = _parse_year(_cell_value(row[0]))
        if year is None:
            continue
        months = _collect_row(headers, [_cell_value(cell) for cell in row[1:]])
        if months:
            result[year] = months
    return result or None


def _iter_inline_tables(node: Any) -> Iterator[Mapping[str, Any]]:
    if isinstance(node, Mapping):
        table = node.get("inlineTable")
        if isinstance(table, Mapping):
            yield table
        for value in node.values():
            yield from _iter_inline_tables(value)
    elif isinstance(node, list):
        for item in node:
            yield from _iter_inline_tables(item)


def _is_target_caption(caption: Any) -> bool:
    text = _WHITESPACE.sub(" ", str(caption or "")).strip()
    return text.endswith("2") and "elomr" in text.lower()


def _cell_value(cell: Any) -> Any:
    if isinstance(cell, Mapping):
        value = cell.get("value")
        return "" if value is None else value
    return "" if cell is None else cell


def _from_rendered_table(soup: BeautifulSoup) -> Optional[SpotPriceTable]:
    table = None
    for candidate in soup.find_all("table"):
        caption = candidate.find("caption")
        if caption is not None and caption.get_text().strip() == SECTION_TITLE:
            table = candidate
            break
    if table is None:
        return None

    head = table.find("thead")
    # first header cell is the year column
    headers = [cell.get_text().strip() for cell in head.find_all("th")][1:] if head else []
    body = table.find("tbody") or table

    result: SpotPriceTable = {}
    for row in body.find_all("tr"):
        cells = [cell.get_text().strip() for cell in row.find_all(["th", "td"])]
        if not cells:
            continue
        year = _parse_year(cells[0])
        if year is None:
            continue
        months = _collect_row(headers, cells[1:])
        if months:
            result[year] = months
    return result or None


def _from_free_text(soup: BeautifulSoup) -> Optional[SpotPriceTable]:
    body = soup.body or soup
    text = _WHITESPACE.sub(" ", body.get_text(" ")).strip()
    index = text.find(SECTION_TITLE)
    if index == -1:
        return None
    section = text[index:]
    # Other price areas repeat the same years further down the page.
    for heading in _AREA_HEADING.finditer(section):
        if heading.group(0) != SECTION_TITLE:
            section = section[: heading.start()]
            break

    result: SpotPriceTable = {}
    for match in _FULL_YEAR_ROW.finditer(section):
        values = [parse_sv_number(value) for value in match.group(2).split()]
        if len(values) != 12:
            continue
        months = {month: value for month, value in enumerate(values, start=1) if value is not None}
        if months:
            result[int(match.group(1))] = months

    # Positional mapping is only safe for complete years.
    for match in _ANY_YEAR_ROW.finditer(section):
        year = int(match.group(1))
        count = len(match.group(2).split())
        if year not in result and count < 12:
            logger.warning("free_text_partial_year_skipped", year=year, values=count)
    return result or None


STRATEGIES: Tuple[Tuple[str, Strategy], ...] = (
    ("embedded_data", _from_embedded_data),
    ("rendered_table", _from_rendered_table),
    ("free_text", _from_free_text),
)


def extract_spot_prices(
    html: str,
    strategies: Sequence[Tuple[str, Strategy]] = STRATEGIES,
) -> SpotPriceTable:
    """Return the Elområde 2 spot price table from the first strategy that succeeds."""
    soup = BeautifulSoup(html, "lxml")
    attempted: List[str] = []
    for name, strategy in strategies:
        attempted.append(name)
        table = strategy(soup)
        if table:
            logger.info(
                "spot_prices_extracted",
                strategy=name,
                years=sorted(table),
                months=sum(len(months) for months in table.values()),
            )
            return table
        logger.info("extraction_strategy_empty", strategy=name)
    raise ExtractionFailed(
        f"Could not parse Jamtkraft {SECTION_TITLE} data (tried {', '.join(attempted)})"
    )


def fetch_spot_prices(fetcher: ResilientFetcher, url: str, retries: int, retry_delay_ms: int) -> SpotPriceTable:
    logger.info("fetch_tariff_page", url=url)
    response = fetcher.fetch(
        "GET",
        url,
        FetchPolicy(
            retries=retries,
            retry_delay_ms=retry_delay_ms,
            label="Tariff page fetch",
            allow_insecure_tls=True,
        ),
        headers={"Accept": "text/html"},
    )
    if not response.is_success:
        raise ApiFailed(f"Jamtkraft request failed with {response.status_code}")
    return extract_spot_prices(response.text)
