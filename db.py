"""SQLite persistence for product records, error logs and usage metrics."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generic, Iterator, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from config import DEFAULT_DB_PATH
from models import ErrorLogEntry, ProductRecord, UsageMetric

log = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class Collection(Generic[M]):
    """One keyed table of JSON documents, decoded through ``model`` on every read.

    ``order_field`` (a numeric attribute of the model) is mirrored into its own
    column so listings can be sorted newest-first without decoding every row.
    """

    def __init__(
        self,
        store: "RecordStore",
        table: str,
        model: Type[M],
        key_field: str,
        order_field: Optional[str] = None,
    ) -> None:
        self._store = store
        self.table = table
        self.model = model
        self.key_field = key_field
        self.order_field = order_field

    def _create(self, con: sqlite3.Connection) -> None:
        con.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self.table} (
                key         TEXT PRIMARY KEY,
                sort_key    REAL DEFAULT 0,
                data        TEXT NOT NULL   -- JSON
            )
            """
        )

    def _sort_value(self, item: M) -> float:
        if not self.order_field:
            return 0.0
        return float(getattr(item, self.order_field))

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def list(self) -> List[M]:
        """Every decodable row, newest first.  Rows that fail validation are logged and skipped."""
        with self._store._conn() as con:
            rows = con.execute(
                f"SELECT key, data FROM {self.table} ORDER BY sort_key DESC, key"
            ).fetchall()
        items: List[M] = []
        for r in rows:
            try:
                items.append(self.model.model_validate_json(r["data"]))
            except ValidationError as exc:
                log.error("Skipping unreadable %s row %s: %d validation error(s)",
                          self.table, r["key"], exc.error_count())
        return items

    def get(self, key: str) -> Optional[M]:
        with self._store._conn() as con:
            row = con.execute(
                f"SELECT data FROM {self.table} WHERE key=?", (key,)
            ).fetchone()
        if not row:
            return None
        return self.model.model_validate_json(row["data"])

    def put(self, item: M) -> None:
        """Insert or replace by key."""
        with self._store._conn() as con:
            con.execute(
                f"""
                INSERT INTO {self.table} (key, sort_key, data) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    sort_key = excluded.sort_key,
                    data     = excluded.data
                """,
                (getattr(item, self.key_field), self._sort_value(item), item.model_dump_json()),
            )

    def update(self, item: M) -> bool:
        """Replace an existing row.  Returns False (and writes nothing) if the key is gone."""
        with self._store._conn() as con:
            cur = con.execute(
                f"UPDATE {self.table} SET sort_key=?, data=? WHERE key=?",
                (self._sort_value(item), item.model_dump_json(), getattr(item, self.key_field)),
            )
            return cur.rowcount > 0

    def delete(self, key: str) -> bool:
        with self._store._conn() as con:
            cur = con.execute(f"DELETE FROM {self.table} WHERE key=?", (key,))
            return cur.rowcount > 0

    def clear(self) -> None:
        with self._store._conn() as con:
            con.execute(f"DELETE FROM {self.table}")


class RecordStore:
    """The single source of truth.  Nothing is cached between calls."""

    def __init__(self, path: Union[str, Path] = DEFAULT_DB_PATH) -> None:
        self.path = Path(path)
        self.products: Collection[ProductRecord] = Collection(
            self, "products", ProductRecord, "id", order_field="created_at"
        )
        self.error_logs: Collection[ErrorLogEntry] = Collection(
            self, "error_logs", ErrorLogEntry, "id", order_field="timestamp"
        )
        self.metrics: Collection[UsageMetric] = Collection(
            self, "metrics", UsageMetric, "model_id", order_field="last_updated"
        )

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        con = sqlite3.connect(str(self.path), timeout=30)
        con.row_factory = sqlite3.Row
        try:
            con.execute("PRAGMA journal_mode=WAL")
            with con:
                yield con
        finally:
            con.close()

    def init_db(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._conn() as con:
            for collection in (self.products, self.error_logs, self.metrics):
                collection._create(con)
