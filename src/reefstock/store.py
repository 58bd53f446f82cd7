from __future__ import annotations
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .errors import StorageError
from .images import validate_image_reference
from .models import CatalogRecord, ManualPriceOverride, PriceMarkupRule
from .normalize import format_price
from .pricing import apply_pricing, rules_by_category, to_decimal


log = logging.getLogger(__name__)


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS catalog_items (
        id TEXT PRIMARY KEY,
        unique_id TEXT NOT NULL,
        raw_name TEXT NOT NULL,
        search_key TEXT NOT NULL,
        category TEXT,
        is_category INTEGER NOT NULL DEFAULT 0,
        cost_basis TEXT,
        cost_display TEXT,
        sale_price TEXT,
        sale_display TEXT,
        quantity_on_hand INTEGER NOT NULL DEFAULT 0,
        description TEXT,
        disabled INTEGER NOT NULL DEFAULT 0,
        archived INTEGER NOT NULL DEFAULT 0,
        position INTEGER NOT NULL DEFAULT 0
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_catalog_items_search_key ON catalog_items(search_key)",
    """
    CREATE TABLE IF NOT EXISTS item_images (
        search_key TEXT PRIMARY KEY,
        image_reference TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS price_markups (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        category TEXT,
        markup_percentage TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS manual_prices (
        item_id TEXT PRIMARY KEY,
        price TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
]


def normalize_image_key(key: str) -> str:
    return (key or "").strip().upper()


def _dec(value: Optional[str]) -> Optional[Decimal]:
    return Decimal(value) if value not in (None, "") else None


def _row_to_record(r: sqlite3.Row) -> CatalogRecord:
    return CatalogRecord(
        id=r["id"],
        unique_id=r["unique_id"],
        raw_name=r["raw_name"],
        search_key=r["search_key"],
        category=r["category"],
        is_category=bool(r["is_category"]),
        cost_basis=_dec(r["cost_basis"]),
        cost_display=r["cost_display"],
        sale_price=_dec(r["sale_price"]),
        sale_display=r["sale_display"],
        quantity_on_hand=int(r["quantity_on_hand"] or 0),
        description=r["description"],
        disabled=bool(r["disabled"]),
        archived=bool(r["archived"]),
        position=int(r["position"] or 0),
    )


UPDATE_PRICE = "UPDATE catalog_items SET sale_price=?, sale_display=? WHERE id=? AND is_category=0"


def _price_columns(price: Optional[Decimal]) -> Tuple[Optional[str], Optional[str]]:
    if price is None:
        return None, None
    return str(price), format_price(price)


def escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _markup_rules(conn: sqlite3.Connection) -> List[PriceMarkupRule]:
    rows = conn.execute("SELECT * FROM price_markups ORDER BY id").fetchall()
    return [
        PriceMarkupRule(
            id=r["id"],
            category=r["category"],
            markup_percentage=Decimal(r["markup_percentage"]),
            updated_at=datetime.fromisoformat(r["updated_at"]),
        )
        for r in rows
    ]


def _manual_prices(conn: sqlite3.Connection) -> Dict[str, Decimal]:
    rows = conn.execute("SELECT item_id, price FROM manual_prices").fetchall()
    return {r["item_id"]: Decimal(r["price"]) for r in rows}


class CatalogStore:
    """Persistent catalog state in a single SQLite file.

    Construct it with a path and call :meth:`init` once before use; ``init``
    creates the schema and is safe to call again. Every SQLite failure
    surfaces as :class:`~reefstock.errors.StorageError`.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(str(self.db_path))
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open catalog database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        except sqlite3.Error as e:
            raise StorageError(f"Catalog database error: {e}") from e
        finally:
            conn.close()

    def init(self) -> "CatalogStore":
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            for stmt in SCHEMA:
                conn.execute(stmt)
        return self

    # --- catalog items ---

    def replace_catalog(self, records: Sequence[CatalogRecord]) -> List[CatalogRecord]:
        """Swap the whole catalog for ``records`` in one transaction.

        Each record's ``unique_id`` becomes its stored id and its sale price is
        set from the stored markup rules before anything is committed. Manual
        prices whose item is gone are dropped; images and markups are left
        alone.
        """
        with self._connect() as conn:
            conn.execute("DELETE FROM catalog_items")
            stored = apply_pricing(
                [replace(r, id=r.id or r.unique_id, position=pos) for pos, r in enumerate(records)],
                _markup_rules(conn),
                _manual_prices(conn),
            )
            conn.executemany(
                "INSERT INTO catalog_items(id,unique_id,raw_name,search_key,category,is_category,cost_basis,"
                "cost_display,sale_price,sale_display,quantity_on_hand,description,disabled,archived,position) "
                "VALUES(?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)",
                [
                    (
                        r.id, r.unique_id, r.raw_name, r.search_key, r.category, int(r.is_category),
                        None if r.cost_basis is None else str(r.cost_basis), r.cost_display,
                        None if r.sale_price is None else str(r.sale_price), r.sale_display,
                        int(r.quantity_on_hand), r.description, int(r.disabled), int(r.archived), r.position,
                    )
                    for r in stored
                ],
            )
            cur = conn.execute("DELETE FROM manual_prices WHERE item_id NOT IN (SELECT id FROM catalog_items)")
            dropped = cur.rowcount
        log.info(f"Replaced catalog with {len(stored)} records (dropped {dropped} manual prices)")
        return stored

    def list_records(
        self,
        category: Optional[str] = None,
        search_term: Optional[str] = None,
        include_disabled: bool = True,
        include_archived: bool = False,
    ) -> List[CatalogRecord]:
        clauses: List[str] = []
        params: List = []
        if category:
            clauses.append("category = ?")
            params.append(category)
        if search_term and search_term.strip():
            clauses.append("search_key LIKE ? ESCAPE '\\'")
            params.append(f"%{escape_like(search_term.strip().upper())}%")
        if not include_disabled:
            clauses.append("disabled = 0")
        if not include_archived:
            clauses.append("archived = 0")
        sql = "SELECT * FROM catalog_items"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY position"
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_record(r) for r in rows]

    def get_record(self, item_id: str) -> Optional[CatalogRecord]:
        with self._connect() as conn:
            r = conn.execute("SELECT * FROM catalog_items WHERE id=?", (item_id,)).fetchone()
        return _row_to_record(r) if r else None

    def _update_flag(self, column: str, item_ids: Sequence[str], flag: bool) -> int:
        if not item_ids:
            return 0
        marks = ",".join("?" for _ in item_ids)
        with self._connect() as conn:
            cur = conn.execute(
                f"UPDATE catalog_items SET {column}=? WHERE is_category=0 AND id IN ({marks})",
                [int(flag), *item_ids],
            )
            return cur.rowcount

    def set_disabled(self, item_id: str, flag: bool) -> bool:
        return self._update_flag("disabled", [item_id], flag) > 0

    def set_disabled_many(self, item_ids: Iterable[str], flag: bool) -> int:
        return self._update_flag("disabled", list(item_ids), flag)

    def set_archived(self, item_id: str, flag: bool) -> bool:
        return self._update_flag("archived", [item_id], flag) > 0

    def set_sale_price(self, item_id: str, price: Optional[Decimal]) -> bool:
        # Not an override: the next recompute replaces it.
        value = None if price is None else to_decimal(price)
        with self._connect() as conn:
            cur = conn.execute(UPDATE_PRICE, (*_price_columns(value), item_id))
            return cur.rowcount > 0

    def delete_record(self, item_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM catalog_items WHERE id=?", (item_id,))
            conn.execute("DELETE FROM manual_prices WHERE item_id=?", (item_id,))
            return cur.rowcount > 0

    def wipe_catalog(self) -> int:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM catalog_items")
            conn.execute("DELETE FROM manual_prices")
            count = cur.rowcount
        log.warning(f"Wiped catalog ({count} records)")
        return count

    def get_flags(self) -> Dict[str, Tuple[bool, bool]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, disabled, archived FROM catalog_items WHERE is_category=0"
            ).fetchall()
        return {r["id"]: (bool(r["disabled"]), bool(r["archived"])) for r in rows}

    # --- images ---

    def get_image(self, key: str) -> Optional[str]:
        with self._connect() as conn:
            r = conn.execute(
                "SELECT image_reference FROM item_images WHERE search_key=?", (normalize_image_key(key),)
            ).fetchone()
        return r["image_reference"] if r else None

    def get_images(self, keys: Iterable[str]) -> Dict[str, str]:
        wanted = sorted({normalize_image_key(k) for k in keys if k})
        if not wanted:
            return {}
        marks = ",".join("?" for _ in wanted)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT search_key, image_reference FROM item_images WHERE search_key IN ({marks})", wanted
            ).fetchall()
        return {r["search_key"]: r["image_reference"] for r in rows}

    def save_image(self, key: str, ref: str) -> str:
        ref = validate_image_reference(ref)
        norm = normalize_image_key(key)
        if not norm:
            raise StorageError("Image search key is empty")
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO item_images(search_key,image_reference,updated_at) VALUES(?,?,?)",
                (norm, ref, datetime.now(timezone.utc).isoformat()),
            )
        return norm

    def delete_image(self, key: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM item_images WHERE search_key=?", (normalize_image_key(key),))
            return cur.rowcount > 0

    # --- markups ---

    def list_markup_rules(self) -> List[PriceMarkupRule]:
        with self._connect() as conn:
            return _markup_rules(conn)

    def save_markup_rules(self, rules: Iterable[PriceMarkupRule]) -> List[PriceMarkupRule]:
        """Upsert rules keyed by category; ``None`` is the store-wide default."""
        effective = rules_by_category(rules)
        now = datetime.now(timezone.utc).isoformat()
        with self._connect() as conn:
            for category, rule in effective.items():
                conn.execute("DELETE FROM price_markups WHERE category IS ?", (category,))
                conn.execute(
                    "INSERT INTO price_markups(category,markup_percentage,updated_at) VALUES(?,?,?)",
                    (category, str(to_decimal(rule.markup_percentage)), now),
                )
        return self.list_markup_rules()

    # --- manual prices ---

    def list_manual_prices(self) -> Dict[str, Decimal]:
        with self._connect() as conn:
            return _manual_prices(conn)

    def get_manual_price(self, item_id: str) -> Optional[ManualPriceOverride]:
        with self._connect() as conn:
            r = conn.execute("SELECT * FROM manual_prices WHERE item_id=?", (item_id,)).fetchone()
        if not r:
            return None
        return ManualPriceOverride(
            item_id=r["item_id"], price=Decimal(r["price"]), updated_at=datetime.fromisoformat(r["updated_at"])
        )

    def set_manual_price(self, item_id: str, price) -> bool:
        value = to_decimal(price)
        with self._connect() as conn:
            exists = conn.execute(
                "SELECT 1 FROM catalog_items WHERE id=? AND is_category=0", (item_id,)
            ).fetchone()
            if not exists:
                return False
            conn.execute(
                "INSERT OR REPLACE INTO manual_prices(item_id,price,updated_at) VALUES(?,?,?)",
                (item_id, str(value), datetime.now(timezone.utc).isoformat()),
            )
        return True

    def clear_manual_price(self, item_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM manual_prices WHERE item_id=?", (item_id,))
            return cur.rowcount > 0

    # --- pricing ---

    def recompute_prices(self) -> int:
        """Re-run the pricing policy over every stored item in one transaction."""
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM catalog_items ORDER BY position").fetchall()
            records = [_row_to_record(r) for r in rows]
            priced = apply_pricing(records, _markup_rules(conn), _manual_prices(conn))
            changed = [
                (new.id, new.sale_price)
                for old, new in zip(records, priced)
                if not new.is_category and new.sale_price != old.sale_price
            ]
            conn.executemany(UPDATE_PRICE, [(*_price_columns(price), item_id) for item_id, price in changed])
        log.info(f"Recomputed prices: {len(changed)} of {len(records)} records changed")
        return len(changed)
