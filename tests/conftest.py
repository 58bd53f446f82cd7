"""Shared fixtures for the reefstock test suite."""

import base64

import pytest

from reefstock.store import CatalogStore


SAMPLE_CSV = """Common Name,QtyOH,Cost,Sell,Description
**** FISH ****,,,,
CLOWNFISH-MD-MALE,4,10.00,,Tank raised
BLUE TANG (5 LOT),2,$100.00,,
CLOWN TANG-SM,1,20,,
CLOWN TANG-LG,3,30,,
**** CORALS ****,,,,
GREEN STAR POLYP,-2,5.50,,
"""

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture
def sample_csv():
    return SAMPLE_CSV


@pytest.fixture
def store(tmp_path):
    return CatalogStore(tmp_path / "catalog.sqlite3").init()


@pytest.fixture
def png_data_uri():
    return "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode("ascii")


@pytest.fixture
def images_dir(tmp_path):
    d = tmp_path / "photos"
    d.mkdir()
    (d / "clown_tang.png").write_bytes(PNG_BYTES)
    (d / "blue tang.jpg").write_bytes(PNG_BYTES)
    (d / "unknown_fish.png").write_bytes(PNG_BYTES)
    (d / "notes.txt").write_text("not an image")
    return d
