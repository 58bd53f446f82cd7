from __future__ import annotations
import csv
import io
import logging
import re
import uuid
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, List, Optional, Set

from .errors import EmptyInputError, InputFormatError, NoValidDataError
from .io import read_catalog_text
from .mapping import resolve_field
from .models import CatalogRecord, ParsedPrice, ParseResult, ParseStats
from .normalize import clean_item_name, collapse_spaces, format_price, search_key, slugify_for_handle


log = logging.getLogger(__name__)

CATEGORY_SENTINEL = "****"
BOM = "\ufeff"


def parse_quantity(value: Optional[str]) -> int:
    m = re.match(r"\s*([-+]?\d+)", value or "")
    if not m:
        return 0
    qty = int(m.group(1))
    if qty < 0:
        log.debug(f"Clamping negative quantity {qty} to 0")
        return 0
    return qty


def parse_price(value: Optional[str]) -> Optional[ParsedPrice]:
    if not value:
        return None
    cleaned = re.sub(r"[^0-9.\-]", "", value)
    m = re.match(r"-?(?:\d+(?:\.\d*)?|\.\d+)", cleaned)
    if not m:
        return None
    try:
        amount = Decimal(m.group(0))
    except InvalidOperation:
        return None
    return ParsedPrice(value=amount, display=format_price(amount))


def category_from_header(name: str) -> str:
    s = name.replace(CATEGORY_SENTINEL, "")
    return re.sub(r"^[\s*]+|[\s*]+$", "", s)


def _new_unique_id(key: str, taken: Set[str]) -> str:
    prefix = slugify_for_handle(key) or "item"
    while True:
        uid = f"{prefix}-{uuid.uuid4().hex[:12]}"
        if uid not in taken:
            taken.add(uid)
            return uid


def _read_table(text: str) -> tuple[List[str], List[Dict[str, str]]]:
    reader = csv.reader(io.StringIO(text, newline=""), strict=True)
    header: List[str] = []
    rows: List[Dict[str, str]] = []
    try:
        for raw in reader:
            if not raw or not any(c.strip() for c in raw):
                continue
            if not header:
                header = [c.strip() for c in raw]
                continue
            d: Dict[str, str] = {}
            for i, name in enumerate(header):
                if not name or name in d:
                    continue
                d[name] = raw[i] if i < len(raw) else ""
            rows.append(d)
    except csv.Error as e:
        raise InputFormatError(f"Malformed CSV at line {reader.line_num}: {e}") from e
    return header, rows


def parse_catalog_text(text: str) -> ParseResult:
    """Parse a delimited catalog export into normalized records.

    The first non-blank row is the header. A row whose resolved name contains
    ``****`` is a category header; its category applies to every following item
    row until the next header. Rows are processed strictly in order.

    Raises EmptyInputError when there is nothing to parse, and NoValidDataError
    when parsing produced no item records, so callers never replace a catalog
    with an empty one.
    """
    if text is None:
        raise EmptyInputError("No data array: input is empty")
    if text.startswith(BOM):
        text = text[len(BOM):]
    if not text.strip():
        raise EmptyInputError("No data array: input is empty")

    header, rows = _read_table(text)
    if not header:
        raise EmptyInputError("No data array: no header row found")

    stats = ParseStats(total_rows=len(rows))
    records: List[CatalogRecord] = []
    taken: Set[str] = set()
    current_category: Optional[str] = None
    seen_header = False

    for row in rows:
        name = resolve_field(row, "name")
        if name is None:
            continue

        if CATEGORY_SENTINEL in name:
            category = category_from_header(name)
            seen_header = True
            current_category = category or None
            stats.valid_rows += 1
            if not category:
                continue
            records.append(
                CatalogRecord(
                    unique_id=_new_unique_id(category, taken),
                    raw_name=category,
                    search_key=search_key(collapse_spaces(category)),
                    category=category,
                    is_category=True,
                    position=len(records),
                )
            )
            stats.categories += 1
            continue

        cleaned = clean_item_name(name)
        if not cleaned:
            continue
        key = search_key(cleaned)

        if seen_header:
            category = current_category
        else:
            category = (resolve_field(row, "category") or "").strip() or None

        cost = parse_price(resolve_field(row, "cost"))
        sale = parse_price(resolve_field(row, "sale"))
        description = (resolve_field(row, "description") or "").strip() or None

        records.append(
            CatalogRecord(
                unique_id=_new_unique_id(key, taken),
                raw_name=name,
                search_key=key,
                category=category,
                cost_basis=cost.value if cost else None,
                cost_display=cost.display if cost else None,
                sale_price=sale.value if sale else None,
                sale_display=sale.display if sale else None,
                quantity_on_hand=parse_quantity(resolve_field(row, "quantity")),
                description=description,
                position=len(records),
            )
        )
        stats.valid_rows += 1
        stats.items += 1

    if stats.items == 0:
        raise NoValidDataError(
            f"No valid data found in file ({stats.total_rows} rows, {stats.categories} categories, 0 items)"
        )

    log.info(
        f"Parsed catalog: rows={stats.total_rows} valid={stats.valid_rows} "
        f"categories={stats.categories} items={stats.items}"
    )
    return ParseResult(records=records, stats=stats)


def parse_catalog_file(input_path: Path) -> ParseResult:
    return parse_catalog_text(read_catalog_text(input_path))
