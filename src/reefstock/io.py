from __future__ import annotations
import csv
from pathlib import Path
from typing import Iterable

from .errors import InputFormatError
from .mapping import EXPORT_HEADERS
from .models import CatalogRecord


ALLOWED_EXTENSIONS = {".csv", ".txt"}


def check_extension(filename: str) -> None:
    ext = Path(filename or "").suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise InputFormatError(
            f"Unsupported file type '{ext or filename}'; expected one of {sorted(ALLOWED_EXTENSIONS)}"
        )


def decode_upload(data: bytes, filename: str) -> str:
    """Validate the file name and decode uploaded bytes as UTF-8.

    A leading byte-order mark is left in place; the parser strips it.
    """
    check_extension(filename)
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise InputFormatError(f"{filename} is not valid UTF-8: {e}") from e


def read_catalog_text(input_path: Path) -> str:
    check_extension(input_path.name)
    if not input_path.exists():
        raise FileNotFoundError(f"Catalog file not found: {input_path}")
    return decode_upload(input_path.read_bytes(), input_path.name)


def record_to_row(record: CatalogRecord) -> dict:
    return {
        "Category": record.category or "",
        "Name": record.raw_name,
        "QtyOH": str(record.quantity_on_hand),
        "Cost": "" if record.cost_basis is None else str(record.cost_basis),
        "Sale Price": "" if record.sale_price is None else str(record.sale_price),
        "Description": record.description or "",
        "Disabled": "true" if record.disabled else "false",
        "Archived": "true" if record.archived else "false",
    }


def write_catalog_csv(output_path: Path, records: Iterable[CatalogRecord]) -> int:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with output_path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=EXPORT_HEADERS)
        writer.writeheader()
        for r in records:
            if r.is_category:
                continue
            writer.writerow(record_to_row(r))
            count += 1
    return count
