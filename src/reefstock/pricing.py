"""Sale-price policy.

A manual override always wins. Otherwise the category markup rule (or the
store-wide default rule) turns the cost basis into a ``.99`` sale price.
"""

from __future__ import annotations
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal, ROUND_FLOOR
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .models import CatalogRecord, PriceMarkupRule
from .normalize import format_price


CENTS = Decimal("0.01")
PRICE_ENDING = Decimal("0.99")
EPOCH_MIN = datetime.min.replace(tzinfo=timezone.utc)

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def compute_sale_price(cost_basis: Number, markup_percentage: Number) -> Decimal:
    cost = to_decimal(cost_basis)
    markup = to_decimal(markup_percentage)
    marked_up = cost * (Decimal(1) + markup / Decimal(100))
    whole = marked_up.to_integral_value(rounding=ROUND_FLOOR)
    return (whole + PRICE_ENDING).quantize(CENTS)


def _rule_sort_key(indexed: tuple) -> tuple:
    idx, rule = indexed
    ts = rule.updated_at or EPOCH_MIN
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return (ts, idx)


def select_markup_rule(
    category: Optional[str], rules: Sequence[PriceMarkupRule]
) -> Optional[PriceMarkupRule]:
    exact = [(i, r) for i, r in enumerate(rules) if category is not None and r.category == category]
    if exact:
        return max(exact, key=_rule_sort_key)[1]
    default = [(i, r) for i, r in enumerate(rules) if r.category is None]
    if default:
        return max(default, key=_rule_sort_key)[1]
    return None


def price_record(
    record: CatalogRecord,
    rules: Sequence[PriceMarkupRule],
    overrides: Optional[Mapping[str, Decimal]] = None,
) -> Optional[Decimal]:
    if record.is_category:
        return None
    if overrides and record.id is not None and record.id in overrides:
        return to_decimal(overrides[record.id])
    if record.cost_basis is not None:
        rule = select_markup_rule(record.category, rules)
        if rule is not None:
            return compute_sale_price(record.cost_basis, rule.markup_percentage)
    return record.sale_price


def apply_pricing(
    records: Iterable[CatalogRecord],
    rules: Sequence[PriceMarkupRule],
    overrides: Optional[Mapping[str, Decimal]] = None,
) -> List[CatalogRecord]:
    out: List[CatalogRecord] = []
    for r in records:
        if r.is_category:
            out.append(r)
            continue
        price = price_record(r, rules, overrides)
        display = format_price(price) if price is not None else None
        out.append(replace(r, sale_price=price, sale_display=display))
    return out


def rules_by_category(rules: Iterable[PriceMarkupRule]) -> Dict[Optional[str], PriceMarkupRule]:
    """Collapse a rule list to one effective rule per category."""
    rules = list(rules)
    out: Dict[Optional[str], PriceMarkupRule] = {}
    for cat in {r.category for r in rules}:
        picked = select_markup_rule(cat, rules)
        if picked is not None:
            out[cat] = picked
    return out
