from __future__ import annotations
import os
from pathlib import Path


def data_dir() -> Path:
    return Path(os.getenv("REEFSTOCK_DATA_DIR", "data"))


def db_path() -> Path:
    value = os.getenv("REEFSTOCK_DB", "")
    return Path(value) if value else data_dir() / "catalog.sqlite3"


def uncategorized_label() -> str:
    return os.getenv("UNCATEGORIZED_LABEL", "Uncategorized")


def image_fetch_timeout() -> float:
    return float(os.getenv("IMAGE_FETCH_TIMEOUT", "15"))
