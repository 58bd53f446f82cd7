"""SQLite-backed catalog store."""

import sqlite3
from datetime import timedelta
from decimal import Decimal

import pytest

from reefstock.errors import ImageError, StorageError
from reefstock.ingest import parse_catalog_text
from reefstock.models import PriceMarkupRule
from reefstock.store import CatalogStore, escape_like


@pytest.fixture
def loaded(store, sample_csv):
    return store.replace_catalog(parse_catalog_text(sample_csv).records)


def first_item(records, name):
    return next(r for r in records if r.raw_name == name)


class TestReplaceCatalog:
    def test_records_round_trip_in_order(self, store, loaded):
        listed = store.list_records()
        assert [r.raw_name for r in listed] == [r.raw_name for r in loaded]
        clown = first_item(listed, "CLOWNFISH-MD-MALE")
        assert clown.cost_basis == Decimal("10.00")
        assert clown.id == clown.unique_id

    def test_init_is_idempotent(self, store, loaded):
        store.init()
        assert len(store.list_records()) == len(loaded)

    def test_replace_drops_orphan_manual_prices_keeps_images(self, store, loaded, sample_csv, png_data_uri):
        clown = first_item(loaded, "CLOWNFISH-MD-MALE")
        store.set_manual_price(clown.id, Decimal("5"))
        store.save_image("clownfish", png_data_uri)
        store.save_markup_rules([PriceMarkupRule(category=None, markup_percentage=Decimal("10"))])

        store.replace_catalog(parse_catalog_text(sample_csv).records)
        assert store.list_manual_prices() == {}
        assert store.get_image("CLOWNFISH") == png_data_uri
        assert len(store.list_markup_rules()) == 1


class TestItemUpdates:
    def test_disable_and_filter(self, store, loaded):
        clown = first_item(loaded, "CLOWNFISH-MD-MALE")
        assert store.set_disabled(clown.id, True)
        assert store.get_flags()[clown.id] == (True, False)
        ids = [r.id for r in store.list_records(include_disabled=False)]
        assert clown.id not in ids

    def test_bulk_disable_skips_headers(self, store, loaded):
        ids = [r.id for r in loaded]
        changed = store.set_disabled_many(ids, True)
        assert changed == len([r for r in loaded if not r.is_category])

    def test_archive_hides_by_default(self, store, loaded):
        polyp = first_item(loaded, "GREEN STAR POLYP")
        store.set_archived(polyp.id, True)
        assert polyp.id not in [r.id for r in store.list_records()]
        assert polyp.id in [r.id for r in store.list_records(include_archived=True)]

    def test_search_and_category(self, store, loaded):
        assert {r.raw_name for r in store.list_records(search_term="clown tang")} == {"CLOWN TANG-SM", "CLOWN TANG-LG"}
        assert [r.raw_name for r in store.list_records(category="CORALS")] == ["CORALS", "GREEN STAR POLYP"]

    def test_search_wildcards_are_literal(self, store, loaded):
        assert store.list_records(search_term="%") == []
        assert store.list_records(search_term="CLOWN_TANG") == []
        assert escape_like("50%_OFF\\") == "50\\%\\_OFF\\\\"

    def test_unknown_id(self, store, loaded):
        assert store.get_record("nope") is None
        assert store.set_disabled("nope", True) is False
        assert store.delete_record("nope") is False
        assert store.set_manual_price("nope", 1) is False

    def test_delete_and_wipe(self, store, loaded):
        polyp = first_item(loaded, "GREEN STAR POLYP")
        assert store.delete_record(polyp.id)
        assert store.get_record(polyp.id) is None
        assert store.wipe_catalog() == len(loaded) - 1
        assert store.list_records() == []


class TestImages:
    def test_key_is_normalized(self, store, png_data_uri):
        assert store.save_image("  clown tang ", png_data_uri) == "CLOWN TANG"
        assert store.get_image("CLOWN TANG") == png_data_uri
        assert store.get_images(["clown tang", "missing"]) == {"CLOWN TANG": png_data_uri}

    def test_invalid_reference_rejected(self, store):
        with pytest.raises(ImageError):
            store.save_image("CLOWN TANG", "ftp://example.com/a.png")

    def test_delete(self, store, png_data_uri):
        store.save_image("A", png_data_uri)
        assert store.delete_image("a")
        assert store.get_image("A") is None


class TestPricing:
    def test_recompute_applies_markup_and_override(self, store, loaded):
        store.save_markup_rules([
            PriceMarkupRule(category="FISH", markup_percentage=Decimal("20")),
            PriceMarkupRule(category=None, markup_percentage=Decimal("0")),
        ])
        blue = first_item(loaded, "BLUE TANG (5 LOT)")
        clown = first_item(loaded, "CLOWNFISH-MD-MALE")
        store.set_manual_price(clown.id, Decimal("42.00"))
        store.recompute_prices()

        assert store.get_record(blue.id).sale_price == Decimal("120.99")
        assert store.get_record(clown.id).sale_price == Decimal("42.00")
        polyp = first_item(loaded, "GREEN STAR POLYP")
        assert store.get_record(polyp.id).sale_price == Decimal("5.99")
        assert store.get_record(polyp.id).sale_display == "$5.99"

    def test_clear_manual_price(self, store, loaded):
        clown = first_item(loaded, "CLOWNFISH-MD-MALE")
        store.set_manual_price(clown.id, Decimal("42"))
        override = store.get_manual_price(clown.id)
        assert override.price == Decimal("42")
        assert override.updated_at is not None
        assert store.clear_manual_price(clown.id)
        assert store.get_manual_price(clown.id) is None
        assert not store.clear_manual_price(clown.id)

    def test_recompute_is_all_or_nothing(self, store, loaded):
        before = {r.id: r.sale_price for r in store.list_records(include_archived=True)}
        items = [r for r in loaded if not r.is_category]
        store.save_markup_rules([PriceMarkupRule(category=None, markup_percentage=Decimal("20"))])
        conn = sqlite3.connect(str(store.db_path))
        conn.execute(
            "CREATE TRIGGER fail_second BEFORE UPDATE OF sale_price ON catalog_items "
            f"WHEN NEW.id = '{items[1].id}' BEGIN SELECT RAISE(ABORT, 'disk full'); END"
        )
        conn.commit()
        conn.close()
        with pytest.raises(StorageError):
            store.recompute_prices()
        after = {r.id: r.sale_price for r in store.list_records(include_archived=True)}
        assert after == before

    def test_import_is_priced_with_stored_rules(self, store, sample_csv):
        store.save_markup_rules([PriceMarkupRule(category="FISH", markup_percentage=Decimal("20"))])
        records = store.replace_catalog(parse_catalog_text(sample_csv).records)
        blue = first_item(records, "BLUE TANG (5 LOT)")
        assert blue.sale_price == Decimal("120.99")
        assert store.get_record(blue.id).sale_display == "$120.99"
        assert store.recompute_prices() == 0

    def test_direct_sale_price_is_replaced_by_recompute(self, store, loaded):
        store.save_markup_rules([PriceMarkupRule(category=None, markup_percentage=Decimal("0"))])
        store.recompute_prices()
        polyp = first_item(loaded, "GREEN STAR POLYP")
        assert store.set_sale_price(polyp.id, Decimal("9.50"))
        assert store.get_record(polyp.id).sale_display == "$9.50"
        assert store.recompute_prices() == 1
        assert store.get_record(polyp.id).sale_price == Decimal("5.99")

    def test_timestamps_are_utc(self, store, loaded):
        store.save_markup_rules([PriceMarkupRule(category=None, markup_percentage=Decimal("5"))])
        clown = first_item(loaded, "CLOWNFISH-MD-MALE")
        store.set_manual_price(clown.id, Decimal("42"))
        assert store.list_markup_rules()[0].updated_at.utcoffset() == timedelta(0)
        assert store.get_manual_price(clown.id).updated_at.utcoffset() == timedelta(0)

    def test_markup_upsert_keyed_by_category(self, store):
        store.save_markup_rules([PriceMarkupRule(category="FISH", markup_percentage=Decimal("20"))])
        store.save_markup_rules([PriceMarkupRule(category="FISH", markup_percentage=Decimal("35"))])
        store.save_markup_rules([PriceMarkupRule(category=None, markup_percentage=Decimal("5"))])
        rules = {r.category: r.markup_percentage for r in store.list_markup_rules()}
        assert rules == {"FISH": Decimal("35"), None: Decimal("5")}


def test_sqlite_failure_is_storage_error(tmp_path, monkeypatch):
    store = CatalogStore(tmp_path / "c.sqlite3").init()

    def broken(*args, **kwargs):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(sqlite3, "connect", broken)
    with pytest.raises(StorageError):
        store.list_records()
