from __future__ import annotations
import json
import sqlite3
from pathlib import Path
from typing import Dict, List, Optional

from reefstock.errors import StorageError


def _load_json(value: Optional[str]) -> Dict:
    if not value:
        return {}
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return {}


class JobStore:
    """Uploaded files and import jobs, kept next to the catalog database."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    def init(self) -> "JobStore":
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS files (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        path TEXT NOT NULL,
                        size INTEGER NOT NULL,
                        created_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS jobs (
                        id TEXT PRIMARY KEY,
                        kind TEXT NOT NULL,
                        status TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        started_at TEXT,
                        finished_at TEXT,
                        params TEXT NOT NULL,
                        error TEXT,
                        counters TEXT
                    )
                    """
                )
        except sqlite3.Error as e:
            raise StorageError(f"Cannot initialise job database: {e}") from e
        return self

    def add_file(self, info: Dict) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO files(id,name,path,size,created_at) VALUES(?,?,?,?,?)",
                    (info["id"], info["name"], info["path"], int(info["size"]), str(info["created_at"])),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Cannot record upload: {e}") from e

    def get_file(self, file_id: str) -> Optional[Dict]:
        try:
            with self._connect() as conn:
                r = conn.execute("SELECT * FROM files WHERE id=?", (file_id,)).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot read uploads: {e}") from e
        return dict(r) if r else None

    def list_files(self) -> List[Dict]:
        try:
            with self._connect() as conn:
                rows = conn.execute("SELECT * FROM files ORDER BY created_at DESC").fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot read uploads: {e}") from e
        return [dict(r) for r in rows]

    def save_job(self, job: Dict) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO jobs(id,kind,status,created_at,started_at,finished_at,params,error,counters) "
                    "VALUES(?,?,?,?,?,?,?,?,?)",
                    (
                        job.get("id"), job.get("kind"), job.get("status"), str(job.get("created_at")),
                        str(job.get("started_at") or ""), str(job.get("finished_at") or ""),
                        json.dumps(job.get("params") or {}), job.get("error"),
                        json.dumps(job.get("counters") or {}),
                    ),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Cannot record job: {e}") from e

    def get_job(self, job_id: str) -> Optional[Dict]:
        try:
            with self._connect() as conn:
                r = conn.execute("SELECT * FROM jobs WHERE id=?", (job_id,)).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot read jobs: {e}") from e
        if not r:
            return None
        d = dict(r)
        d["params"] = _load_json(d.get("params"))
        d["counters"] = _load_json(d.get("counters"))
        for key in ("started_at", "finished_at"):
            d[key] = d.get(key) or None
        return d
