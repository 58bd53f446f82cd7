"""Value types shared by the parser, pricing policy, assembler and store."""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional


@dataclass(frozen=True)
class ParsedPrice:
    value: Decimal
    display: str


@dataclass(frozen=True)
class NameParts:
    display_name: str
    size: Optional[str] = None
    gender: Optional[str] = None


@dataclass
class CatalogRecord:
    """One purchasable item, or one category header when ``is_category`` is set.

    Header records carry no price, quantity or image. ``search_key`` is derived
    from the cleaned name and correlates stored images across re-imports.
    """

    unique_id: str
    raw_name: str
    search_key: str
    category: Optional[str] = None
    is_category: bool = False
    cost_basis: Optional[Decimal] = None
    cost_display: Optional[str] = None
    sale_price: Optional[Decimal] = None
    sale_display: Optional[str] = None
    quantity_on_hand: int = 0
    description: Optional[str] = None
    disabled: bool = False
    archived: bool = False
    image_reference: Optional[str] = None
    position: int = 0
    id: Optional[str] = None

    def name_parts(self) -> NameParts:
        from .normalize import normalize_name

        return normalize_name(self.raw_name)


@dataclass
class ParseStats:
    total_rows: int = 0
    valid_rows: int = 0
    categories: int = 0
    items: int = 0


@dataclass
class ParseResult:
    records: List[CatalogRecord]
    stats: ParseStats


@dataclass
class PriceMarkupRule:
    # category=None is the store-wide default
    category: Optional[str]
    markup_percentage: Decimal
    id: Optional[int] = None
    updated_at: Optional[datetime] = None


@dataclass
class ManualPriceOverride:
    item_id: str
    price: Decimal
    updated_at: Optional[datetime] = None


@dataclass
class CategoryGroup:
    name: str
    category: Optional[str]
    items: List[CatalogRecord] = field(default_factory=list)


@dataclass
class CategoryStats:
    name: str
    total: int
    active: int
    disabled: int

    @property
    def status(self) -> str:
        return "active" if self.active > 0 else "disabled"


@dataclass
class CatalogStats:
    total_items: int = 0
    active_items: int = 0
    disabled_items: int = 0
    categories: List[CategoryStats] = field(default_factory=list)

    @property
    def active_categories(self) -> int:
        return sum(1 for c in self.categories if c.status == "active")

    @property
    def disabled_categories(self) -> int:
        return sum(1 for c in self.categories if c.status == "disabled")
