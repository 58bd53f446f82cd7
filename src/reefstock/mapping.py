from __future__ import annotations
from typing import Dict, List, Mapping, Optional


# Logical field -> header names, in preference order. Matching is case-sensitive.
FIELD_CANDIDATES: Dict[str, List[str]] = {
    "name": ["Common Name", "Name", "Item Name", "Item Number"],
    "quantity": ["QtyOH", "Qty", "Quantity", "Stock"],
    "cost": ["Cost", "Price", "Wholesale"],
    "sale": ["Sell", "Retail", "Sale Price"],
    "description": ["Description"],
    "category": ["Category"],
}

# Column order used when exporting a catalog back to CSV; re-importable as-is.
EXPORT_HEADERS = [
    "Category",
    "Name",
    "QtyOH",
    "Cost",
    "Sale Price",
    "Description",
    "Disabled",
    "Archived",
]


def resolve_field(row: Mapping[str, Optional[str]], field: str) -> Optional[str]:
    """Return the first candidate column value for ``field`` that is present and non-blank."""
    for key in FIELD_CANDIDATES[field]:
        val = row.get(key)
        if val is None:
            continue
        if str(val).strip():
            return str(val)
    return None
