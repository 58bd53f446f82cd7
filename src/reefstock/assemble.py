"""Merge parsed or stored records with per-item state and shape them for display.

The catalog view is built in a fixed order: apply stored flags and images,
then price, then group. Nothing here touches storage except
:func:`load_stored_state`, which only reads.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import StorageError
from .models import CatalogRecord, CatalogStats, CategoryGroup, CategoryStats, PriceMarkupRule
from .pricing import apply_pricing

if TYPE_CHECKING:
    from .store import CatalogStore


log = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"


@dataclass
class StoredState:
    flags: Dict[str, Tuple[bool, bool]] = field(default_factory=dict)
    overrides: Dict[str, Decimal] = field(default_factory=dict)
    images: Dict[str, str] = field(default_factory=dict)


def assemble_catalog(
    records: Iterable[CatalogRecord],
    state: StoredState,
    rules: Sequence[PriceMarkupRule] = (),
) -> List[CatalogRecord]:
    merged: List[CatalogRecord] = []
    for r in records:
        if r.is_category:
            merged.append(r)
            continue
        changes = {}
        if r.id is not None and r.id in state.flags:
            disabled, archived = state.flags[r.id]
            changes["disabled"] = disabled
            changes["archived"] = archived
        image = state.images.get(r.search_key.strip().upper())
        if image is not None:
            changes["image_reference"] = image
        merged.append(replace(r, **changes) if changes else r)
    return apply_pricing(merged, rules, state.overrides)


def _visible(r: CatalogRecord, privileged: bool, include_disabled: Optional[bool]) -> bool:
    if r.archived:
        return False
    if r.disabled:
        if not privileged:
            return False
        if include_disabled is False:
            return False
    return True


def group_by_category(
    records: Iterable[CatalogRecord],
    privileged: bool = False,
    include_disabled: Optional[bool] = None,
    uncategorized_label: str = UNCATEGORIZED,
) -> List[CategoryGroup]:
    buckets: Dict[Optional[str], List[CatalogRecord]] = {}
    for r in records:
        if r.is_category or not _visible(r, privileged, include_disabled):
            continue
        buckets.setdefault(r.category or None, []).append(r)

    named = sorted(k for k in buckets if k is not None)
    groups = [
        CategoryGroup(name=k, category=k, items=sorted(buckets[k], key=lambda r: r.raw_name))
        for k in named
    ]
    if None in buckets:
        groups.append(
            CategoryGroup(
                name=uncategorized_label,
                category=None,
                items=sorted(buckets[None], key=lambda r: r.raw_name),
            )
        )
    return [g for g in groups if g.items]


def filter_records(
    records: Iterable[CatalogRecord],
    category: Optional[str] = None,
    search_term: Optional[str] = None,
    include_disabled: bool = True,
    include_archived: bool = False,
) -> List[CatalogRecord]:
    term = (search_term or "").strip().upper()
    out: List[CatalogRecord] = []
    for r in records:
        if category and r.category != category:
            continue
        if term and term not in r.search_key.upper():
            continue
        if r.disabled and not include_disabled:
            continue
        if r.archived and not include_archived:
            continue
        out.append(r)
    return out


def catalog_stats(records: Iterable[CatalogRecord]) -> CatalogStats:
    items = [r for r in records if not r.is_category and not r.archived]
    stats = CatalogStats(
        total_items=len(items),
        active_items=sum(1 for r in items if not r.disabled),
        disabled_items=sum(1 for r in items if r.disabled),
    )
    for name in sorted({r.category for r in items if r.category}):
        in_cat = [r for r in items if r.category == name]
        active = sum(1 for r in in_cat if not r.disabled)
        stats.categories.append(
            CategoryStats(name=name, total=len(in_cat), active=active, disabled=len(in_cat) - active)
        )
    return stats


def load_stored_state(store: "CatalogStore", records: Iterable[CatalogRecord]) -> StoredState:
    """Read flags, manual prices and images for ``records``.

    Images are fetched per search key; a storage failure for one key is
    logged and that key is left without an image.
    """
    state = StoredState(flags=store.get_flags(), overrides=store.list_manual_prices())
    keys = sorted({r.search_key.strip().upper() for r in records if not r.is_category and r.search_key})
    for key in keys:
        try:
            ref = store.get_image(key)
        except StorageError as e:
            log.warning(f"Skipping image for {key}: {e}")
            continue
        if ref is not None:
            state.images[key] = ref
    return state
