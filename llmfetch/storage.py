import logging
import sqlite3
from pathlib import Path
from typing import Iterable

import pandas as pd

from .errors import StoreError
from .metrics import FetchResult

logger = logging.getLogger(__name__)

DEFAULT_DB = "results.db"

COLUMNS = [
    "url",
    "status",
    "tier",
    "block_reason",
    "has_title",
    "word_count",
    "token_count",
    "latency_ms",
    "timestamp",
]

SCHEMA = """
CREATE TABLE IF NOT EXISTS results (
    url TEXT PRIMARY KEY,
    status TEXT,
    tier INTEGER,
    block_reason TEXT,
    has_title INTEGER,
    word_count INTEGER,
    token_count INTEGER,
    latency_ms INTEGER,
    timestamp INTEGER
);
CREATE INDEX IF NOT EXISTS idx_status ON results(status);
CREATE INDEX IF NOT EXISTS idx_tier ON results(tier);
"""

UPSERT_SQL = f"""
INSERT OR REPLACE INTO results ({", ".join(COLUMNS)})
VALUES ({", ".join("?" for _ in COLUMNS)})
"""


def result_row(result: FetchResult) -> tuple:
    return (
        result.url,
        result.status,
        result.tier,
        result.reason,
        1 if result.title else 0,
        result.word_count or 0,
        result.token_count or 0,
        result.latency_ms,
        result.timestamp,
    )


class ResultStore:
    """
    One row per URL attempt in a SQLite file, upserted by URL.

    Analytics read the whole table into a pandas DataFrame; the storage
    engine stays behind this class so it can be swapped later.
    """

    def __init__(self, conn: sqlite3.Connection, path: str, readonly: bool = False):
        self._conn = conn
        self.path = path
        self.readonly = readonly

    @classmethod
    def open(cls, path: str | Path = DEFAULT_DB, readonly: bool = False) -> "ResultStore":
        path = str(path)
        try:
            if readonly:
                if path != ":memory:" and not Path(path).exists():
                    raise StoreError(f"Result store not found: {path}")
                conn = sqlite3.connect(f"file:{path}?mode=ro", uri=True)
                # Fail now rather than on the first query.
                conn.execute("SELECT 1 FROM results LIMIT 1")
            else:
                if path != ":memory:":
                    Path(path).parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(path)
                conn.executescript(SCHEMA)
                conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Could not open result store {path}: {e}") from e
        logger.debug("Opened result store %s (readonly=%s)", path, readonly)
        return cls(conn, path, readonly)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self) -> None:
        self._conn.close()

    def upsert(self, result: FetchResult) -> None:
        self.upsert_many([result])

    def upsert_many(self, results: Iterable[FetchResult]) -> None:
        rows = [result_row(r) for r in results]
        if not rows:
            return
        with self._conn:
            self._conn.executemany(UPSERT_SQL, rows)

    def exists(self, url: str) -> bool:
        row = self._conn.execute("SELECT 1 FROM results WHERE url = ?", (url,)).fetchone()
        return row is not None

    def get(self, url: str) -> dict | None:
        cur = self._conn.execute(f"SELECT {', '.join(COLUMNS)} FROM results WHERE url = ?", (url,))
        row = cur.fetchone()
        return dict(zip(COLUMNS, row)) if row else None

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM results").fetchone()[0]

    def to_frame(self) -> pd.DataFrame:
        return pd.read_sql_query(f"SELECT {', '.join(COLUMNS)} FROM results", self._conn)
