"""Storefront HTTP API."""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from storefront import app as app_module
from storefront.db import JobStore
from storefront.settings import SettingsFile


ADMIN = {"X-Admin-Token": "s3cret"}


@pytest.fixture
def client(tmp_path, store, monkeypatch):
    monkeypatch.setenv("REEFSTOCK_DATA_DIR", str(tmp_path))
    settings = SettingsFile(tmp_path / "settings.json").init()
    settings.update({"admin_token": "s3cret"})
    jobs = JobStore(tmp_path / "jobs.sqlite3").init()
    uploads = tmp_path / "uploads"
    uploads.mkdir()

    app = app_module.app
    app.dependency_overrides[app_module.get_store] = lambda: store
    app.dependency_overrides[app_module.get_job_store] = lambda: jobs
    app.dependency_overrides[app_module.get_settings_file] = lambda: settings
    app.dependency_overrides[app_module.get_upload_dir] = lambda: uploads
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def imported(client, sample_csv):
    resp = client.post(
        "/catalog/import",
        files={"file": ("stock.csv", sample_csv.encode("utf-8"), "text/csv")},
        headers=ADMIN,
    )
    assert resp.status_code == 200
    return resp.json()


def all_items(groups):
    return [i for g in groups for i in g["items"]]


class TestHealthAndAuth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_admin_route_needs_token(self, client):
        assert client.get("/markups").status_code == 401
        assert client.get("/markups", headers={"X-Admin-Token": "wrong"}).status_code == 401
        assert client.get("/markups", headers=ADMIN).status_code == 200

    def test_privileged_catalog_needs_token(self, client, imported):
        assert client.get("/catalog", params={"privileged": True}).status_code == 401


class TestImport:
    def test_sync_import_summary(self, imported):
        assert imported["items"] == 5
        assert imported["categories"] == 2
        assert imported["total_rows"] == 7

    def test_bad_extension_is_400(self, client, sample_csv):
        resp = client.post(
            "/catalog/import",
            files={"file": ("stock.xlsx", sample_csv.encode("utf-8"), "application/octet-stream")},
            headers=ADMIN,
        )
        assert resp.status_code == 400

    def test_header_only_is_422(self, client):
        resp = client.post(
            "/catalog/import",
            files={"file": ("stock.csv", b"Common Name,Cost\n**** FISH ****,\n", "text/csv")},
            headers=ADMIN,
        )
        assert resp.status_code == 422
        assert "No valid data" in resp.json()["detail"]

    def test_background_job(self, client, sample_csv):
        up = client.post(
            "/files",
            files={"file": ("stock.csv", sample_csv.encode("utf-8"), "text/csv")},
            headers=ADMIN,
        )
        assert up.status_code == 200
        file_id = up.json()["id"]
        assert [f["id"] for f in client.get("/files", headers=ADMIN).json()] == [file_id]

        job = client.post("/jobs/import", json={"file_id": file_id}, headers=ADMIN).json()
        status = client.get(f"/jobs/{job['id']}", headers=ADMIN).json()
        assert status["status"] == "succeeded"
        assert status["counters"]["items"] == 5

    def test_job_for_unknown_file(self, client):
        resp = client.post("/jobs/import", json={"file_id": "missing"}, headers=ADMIN)
        assert resp.status_code == 404

    def test_unknown_job(self, client):
        assert client.get("/jobs/nope", headers=ADMIN).status_code == 404


class TestCatalogView:
    def test_customer_view_grouped(self, client, imported):
        groups = client.get("/catalog").json()
        assert [g["name"] for g in groups] == ["CORALS", "FISH"]
        clown = next(i for i in all_items(groups) if i["raw_name"] == "CLOWNFISH-MD-MALE")
        assert clown["name"] == "CLOWNFISH"
        assert clown["size"] == "Medium"
        assert clown["gender"] == "Male"
        assert clown["cost_basis"] is None

    def test_search_filter(self, client, imported):
        groups = client.get("/catalog", params={"q": "clown tang"}).json()
        assert sorted(i["raw_name"] for i in all_items(groups)) == ["CLOWN TANG-LG", "CLOWN TANG-SM"]

    def test_disable_hides_from_customers(self, client, imported):
        groups = client.get("/catalog").json()
        polyp = next(i for i in all_items(groups) if i["raw_name"] == "GREEN STAR POLYP")
        resp = client.patch(f"/items/{polyp['id']}", json={"disabled": True}, headers=ADMIN)
        assert resp.status_code == 200
        assert [g["name"] for g in client.get("/catalog").json()] == ["FISH"]
        privileged = client.get("/catalog", params={"privileged": True}, headers=ADMIN).json()
        assert [g["name"] for g in privileged] == ["CORALS", "FISH"]

    def test_stats(self, client, imported):
        stats = client.get("/catalog/stats", headers=ADMIN).json()
        assert stats["total_items"] == 5
        assert stats["active_categories"] == 2

    def test_export(self, client, imported):
        resp = client.get("/catalog/export", headers=ADMIN)
        assert resp.status_code == 200
        assert resp.text.splitlines()[0].startswith("Category,Name,QtyOH")


class TestItemsAndPricing:
    def test_markups_and_manual_price(self, client, imported):
        resp = client.put(
            "/markups",
            json=[{"category": "FISH", "markup_percentage": 20}, {"category": None, "markup_percentage": 0}],
            headers=ADMIN,
        )
        assert resp.status_code == 200
        assert len(client.get("/markups", headers=ADMIN).json()) == 2

        items = {i["raw_name"]: i for i in all_items(client.get("/catalog").json())}
        assert Decimal(items["BLUE TANG (5 LOT)"]["sale_price"]) == Decimal("120.99")

        clown_id = items["CLOWNFISH-MD-MALE"]["id"]
        resp = client.put(f"/items/{clown_id}/manual-price", json={"price": "42.00"}, headers=ADMIN)
        assert resp.json()["sale_display"] == "$42.00"
        assert Decimal(client.get(f"/items/{clown_id}/manual-price", headers=ADMIN).json()["price"]) == Decimal("42.00")
        assert client.delete(f"/items/{clown_id}/manual-price", headers=ADMIN).status_code == 200
        items = {i["raw_name"]: i for i in all_items(client.get("/catalog").json())}
        assert Decimal(items["CLOWNFISH-MD-MALE"]["sale_price"]) == Decimal("12.99")

    def test_patched_price_survives_markup_changes(self, client, imported):
        items = {i["raw_name"]: i for i in all_items(client.get("/catalog").json())}
        blue_id = items["BLUE TANG (5 LOT)"]["id"]
        resp = client.patch(f"/items/{blue_id}", json={"sale_price": "77.00"}, headers=ADMIN)
        assert Decimal(resp.json()["sale_price"]) == Decimal("77.00")

        client.put("/markups", json=[{"category": None, "markup_percentage": 20}], headers=ADMIN)
        items = {i["raw_name"]: i for i in all_items(client.get("/catalog").json())}
        assert Decimal(items["BLUE TANG (5 LOT)"]["sale_price"]) == Decimal("77.00")
        assert Decimal(items["CLOWN TANG-SM"]["sale_price"]) == Decimal("24.99")
        override = client.get(f"/items/{blue_id}/manual-price", headers=ADMIN).json()
        assert Decimal(override["price"]) == Decimal("77.00")

    def test_negative_markup_rejected(self, client):
        resp = client.put("/markups", json=[{"category": None, "markup_percentage": -5}], headers=ADMIN)
        assert resp.status_code == 422

    def test_bulk_disable(self, client, imported):
        ids = [i["id"] for i in all_items(client.get("/catalog").json())]
        resp = client.post("/items/bulk", json={"ids": ids, "disabled": True}, headers=ADMIN)
        assert resp.json() == {"updated": 5}
        assert client.get("/catalog").json() == []

    def test_unknown_item_is_404(self, client, imported):
        assert client.patch("/items/nope", json={"disabled": True}, headers=ADMIN).status_code == 404
        assert client.delete("/items/nope", headers=ADMIN).status_code == 404
        assert client.put("/items/nope/manual-price", json={"price": 1}, headers=ADMIN).status_code == 404

    def test_delete_and_wipe(self, client, imported):
        item_id = all_items(client.get("/catalog").json())[0]["id"]
        assert client.delete(f"/items/{item_id}", headers=ADMIN).json() == {"deleted": True}
        assert client.post("/catalog/wipe", headers=ADMIN).status_code == 200
        assert client.get("/catalog").json() == []


class TestImages:
    def test_put_and_get(self, client, png_data_uri):
        resp = client.put("/images/clown tang", json={"image_reference": png_data_uri}, headers=ADMIN)
        assert resp.json() == {"search_key": "CLOWN TANG"}
        got = client.get("/images/CLOWN TANG").json()
        assert got["image_reference"] == png_data_uri

    def test_invalid_image_is_400(self, client):
        resp = client.put("/images/X", json={"image_reference": "not-an-image"}, headers=ADMIN)
        assert resp.status_code == 400

    def test_missing_image_is_404(self, client):
        assert client.get("/images/NOTHING").status_code == 404

    def test_fetch_uses_remote_image(self, client, monkeypatch, png_data_uri):
        monkeypatch.setattr(app_module, "fetch_image_as_data_uri", lambda url, timeout: png_data_uri)
        resp = client.post("/images/blue tang/fetch", json={"url": "https://img.example/b.png"}, headers=ADMIN)
        assert resp.status_code == 200
        assert client.get("/images/BLUE TANG").json()["image_reference"] == png_data_uri

    def test_search_url(self, client):
        url = client.get("/images/clown tang/search-url").json()["url"]
        assert "CLOWN+TANG" in url

    def test_url_image_checked_before_storing(self, client, monkeypatch):
        monkeypatch.setattr(app_module, "check_image_url", lambda url: False)
        resp = client.put("/images/X", json={"image_reference": "https://img.example/page"}, headers=ADMIN)
        assert resp.status_code == 400
        monkeypatch.setattr(app_module, "check_image_url", lambda url: True)
        resp = client.put("/images/X", json={"image_reference": "https://img.example/x.jpg"}, headers=ADMIN)
        assert resp.status_code == 200


class TestSettings:
    def test_token_not_echoed(self, client):
        body = client.get("/settings", headers=ADMIN).json()
        assert body["uncategorized_label"] == "Uncategorized"
        assert "admin_token" not in body

    def test_update_label_changes_catalog(self, client):
        client.put("/settings", json={"uncategorized_label": "Misc"}, headers=ADMIN)
        client.post(
            "/catalog/import",
            files={"file": ("stock.csv", b"Name,Cost\nLIVE ROCK,2\n", "text/csv")},
            headers=ADMIN,
        )
        assert [g["name"] for g in client.get("/catalog").json()] == ["Misc"]
