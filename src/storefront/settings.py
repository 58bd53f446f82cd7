from __future__ import annotations
import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional


log = logging.getLogger(__name__)


def default_settings() -> Dict:
    return {
        "store_name": os.getenv("STORE_NAME", "Reef Stock"),
        "admin_token": os.getenv("ADMIN_TOKEN", ""),
        "uncategorized_label": os.getenv("UNCATEGORIZED_LABEL", "Uncategorized"),
    }


class SettingsFile:
    """JSON settings on disk; stored values are merged over the defaults."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def init(self) -> "SettingsFile":
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            self.save(default_settings())
        return self

    def get(self) -> Dict:
        base = default_settings()
        try:
            data = json.loads(self.path.read_text())
        except FileNotFoundError:
            return base
        except json.JSONDecodeError as e:
            log.warning(f"Ignoring unreadable settings file {self.path}: {e}")
            return base
        base.update(data or {})
        return base

    def save(self, data: Dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2))

    def update(self, changes: Dict) -> Dict:
        current = self.get()
        current.update({k: v for k, v in changes.items() if v is not None})
        self.save(current)
        return current

    def admin_token(self) -> Optional[str]:
        return self.get().get("admin_token") or None
