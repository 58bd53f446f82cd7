from __future__ import annotations
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .assemble import assemble_catalog, group_by_category, load_stored_state, UNCATEGORIZED
from .errors import CatalogError
from .images import list_images, search_key_from_path, to_data_uri
from .ingest import parse_catalog_text
from .io import read_catalog_text, write_catalog_csv
from .logging_config import log_event
from .models import CatalogRecord, CategoryGroup, ParseStats
from .store import CatalogStore


log = logging.getLogger(__name__)


@dataclass
class ImportSummary:
    total_rows: int
    valid_rows: int
    categories: int
    items: int
    stored: int
    repriced: int

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


def run_import(store: CatalogStore, text: str, dry_run: bool = False) -> ImportSummary:
    """Parse ``text`` and, if it yields items, replace the stored catalog.

    Parsing happens before anything is written. A parse error leaves the
    existing catalog untouched. Records are priced in the same transaction
    that stores them.
    """
    result = parse_catalog_text(text)
    stats: ParseStats = result.stats
    stored = 0
    repriced = 0
    if not dry_run:
        saved = store.replace_catalog(result.records)
        stored = len(saved)
        repriced = sum(
            1 for parsed, priced in zip(result.records, saved)
            if not priced.is_category and priced.sale_price != parsed.sale_price
        )
    summary = ImportSummary(
        total_rows=stats.total_rows,
        valid_rows=stats.valid_rows,
        categories=stats.categories,
        items=stats.items,
        stored=stored,
        repriced=repriced,
    )
    log_event(log, "import", dry_run=dry_run, **summary.as_dict())
    return summary


def import_file(store: CatalogStore, path: Path, dry_run: bool = False) -> ImportSummary:
    return run_import(store, read_catalog_text(Path(path)), dry_run=dry_run)


def assembled_records(store: CatalogStore) -> List[CatalogRecord]:
    records = store.list_records(include_archived=True)
    state = load_stored_state(store, records)
    return assemble_catalog(records, state, store.list_markup_rules())


def load_catalog(
    store: CatalogStore,
    privileged: bool = False,
    include_disabled: Optional[bool] = None,
    uncategorized_label: str = UNCATEGORIZED,
) -> List[CategoryGroup]:
    return group_by_category(
        assembled_records(store),
        privileged=privileged,
        include_disabled=include_disabled,
        uncategorized_label=uncategorized_label,
    )


def attach_images_from_dir(
    store: CatalogStore,
    images_dir: Path,
    records: Optional[Iterable[CatalogRecord]] = None,
) -> Dict[str, int]:
    """Store a photo for every catalog search key that has a matching file.

    The key comes from the file name (``clown_tang.jpg`` -> ``CLOWN TANG``).
    When several files map to one key the first in sorted order wins.
    """
    if records is None:
        records = store.list_records(include_disabled=True, include_archived=True)
    known = {r.search_key.strip().upper() for r in records if not r.is_category and r.search_key}
    counters = {"files": 0, "attached": 0, "skipped": 0, "errors": 0}
    done = set()
    for path in list_images(Path(images_dir)):
        counters["files"] += 1
        key = search_key_from_path(path)
        if not key or key not in known or key in done:
            counters["skipped"] += 1
            continue
        try:
            store.save_image(key, to_data_uri(path))
        except CatalogError as e:
            log.warning(f"Could not attach {path.name} to {key}: {e}")
            counters["errors"] += 1
            continue
        done.add(key)
        counters["attached"] += 1
    log_event(log, "images_attach", dir=images_dir, **counters)
    return counters


def export_catalog(store: CatalogStore, path: Path) -> int:
    count = write_catalog_csv(Path(path), assembled_records(store))
    log_event(log, "export", path=path, items=count)
    return count
