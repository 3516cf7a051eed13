"""Price history and session state persistence.

Two interchangeable backends are provided for each store: an in-process
one (state is lost on exit) and an aiosqlite one sharing a single
``Database`` connection.
"""

from __future__ import annotations

import json
from bisect import bisect_left, bisect_right
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import aiosqlite
from loguru import logger

from crypto_watcher.errors import StoreReadError, StoreWriteError
from crypto_watcher.model import PricePoint

RUN_COUNT_KEY = "runCount"

SCHEMA = """
PRAGMA journal_mode=WAL;
CREATE TABLE IF NOT EXISTS key_value_store(
    key TEXT PRIMARY KEY,
    value TEXT
);
CREATE TABLE IF NOT EXISTS price_history(
    symbol_id TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    price REAL NOT NULL,
    PRIMARY KEY (symbol_id, timestamp)
);
CREATE INDEX IF NOT EXISTS idx_price_history_timestamp ON price_history (timestamp);
"""


class Database:
    """Owns the aiosqlite connection and the schema."""

    def __init__(self, path: str) -> None:
        self.path = path
        self._conn: Optional[aiosqlite.Connection] = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database is not open.")
        return self._conn

    async def open(self) -> aiosqlite.Connection:
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self.path)
        await self._conn.executescript(SCHEMA)
        await self._conn.commit()
        logger.info(f"Database initialized at {self.path} and schema verified.")
        return self._conn

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def __aenter__(self) -> "Database":
        await self.open()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()


# --------------------------------------------------------------------------- #
#  Price history
# --------------------------------------------------------------------------- #


class InMemoryPriceHistory:
    """Per-symbol points kept sorted by timestamp."""

    def __init__(self) -> None:
        self._points: Dict[str, List[PricePoint]] = {}
        self._stamps: Dict[str, List[int]] = {}

    async def append(self, symbol_id: str, timestamp: int, price: float) -> None:
        self._insert(PricePoint(symbol_id, int(timestamp), float(price)))

    async def append_many(self, points: Iterable[PricePoint]) -> None:
        for point in points:
            self._insert(point)

    def _insert(self, point: PricePoint) -> None:
        stamps = self._stamps.setdefault(point.symbol_id, [])
        points = self._points.setdefault(point.symbol_id, [])
        idx = bisect_left(stamps, point.timestamp)
        if idx < len(stamps) and stamps[idx] == point.timestamp:
            # same timestamp: last write wins
            points[idx] = point
            return
        stamps.insert(idx, point.timestamp)
        points.insert(idx, point)

    async def price_at_or_before(self, symbol_id: str, timestamp: int) -> Optional[float]:
        stamps = self._stamps.get(symbol_id)
        if not stamps:
            return None
        idx = bisect_right(stamps, timestamp)
        if idx == 0:
            return None
        return self._points[symbol_id][idx - 1].price

    async def prune(self, older_than: int) -> int:
        removed = 0
        for symbol_id, stamps in self._stamps.items():
            cut = bisect_left(stamps, older_than)
            if cut:
                del stamps[:cut]
                del self._points[symbol_id][:cut]
                removed += cut
        return removed

    async def points(self, symbol_id: str) -> List[PricePoint]:
        return list(self._points.get(symbol_id, []))

    async def count(self) -> int:
        return sum(len(p) for p in self._points.values())


class SqlitePriceHistory:
    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn

    async def append(self, symbol_id: str, timestamp: int, price: float) -> None:
        await self.append_many([PricePoint(symbol_id, int(timestamp), float(price))])

    async def append_many(self, points: Iterable[PricePoint]) -> None:
        rows = [(p.symbol_id, p.timestamp, p.price) for p in points]
        try:
            await self.conn.executemany(
                "INSERT OR REPLACE INTO price_history (symbol_id, timestamp, price) VALUES (?, ?, ?)",
                rows,
            )
            await self.conn.commit()
        except aiosqlite.Error as exc:
            await self._rollback()
            raise StoreWriteError(f"Failed to write {len(rows)} price points: {exc}") from exc

    async def price_at_or_before(self, symbol_id: str, timestamp: int) -> Optional[float]:
        try:
            async with self.conn.execute(
                "SELECT price FROM price_history WHERE symbol_id = ? AND timestamp <= ? "
                "ORDER BY timestamp DESC LIMIT 1",
                (symbol_id, timestamp),
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise StoreReadError(f"Failed to read price history for {symbol_id}: {exc}") from exc
        return float(row[0]) if row else None

    async def prune(self, older_than: int) -> int:
        try:
            cursor = await self.conn.execute(
                "DELETE FROM price_history WHERE timestamp < ?", (older_than,)
            )
            await self.conn.commit()
        except aiosqlite.Error as exc:
            await self._rollback()
            raise StoreWriteError(f"Failed to prune price history: {exc}") from exc
        return cursor.rowcount

    async def points(self, symbol_id: str) -> List[PricePoint]:
        async with self.conn.execute(
            "SELECT symbol_id, timestamp, price FROM price_history WHERE symbol_id = ? "
            "ORDER BY timestamp",
            (symbol_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [PricePoint(r[0], int(r[1]), float(r[2])) for r in rows]

    async def count(self) -> int:
        async with self.conn.execute("SELECT COUNT(*) FROM price_history") as cursor:
            row = await cursor.fetchone()
        return int(row[0])

    async def _rollback(self) -> None:
        try:
            await self.conn.rollback()
        except aiosqlite.Error as exc:  # noqa: BLE001
            logger.error(f"Rollback failed: {exc}")


# --------------------------------------------------------------------------- #
#  Session state key-value
# --------------------------------------------------------------------------- #


class InMemoryStateRepository:
    def __init__(self) -> None:
        self._values: Dict[str, Any] = {}

    async def get(self, key: str) -> Optional[Any]:
        return self._values.get(key)

    async def set(self, key: str, value: Any) -> None:
        # round-trip so callers never share mutable state with the store
        self._values[key] = json.loads(json.dumps(value))

    async def increment_run_count(self) -> int:
        count = int(self._values.get(RUN_COUNT_KEY, 0)) + 1
        self._values[RUN_COUNT_KEY] = count
        return count


class SqliteStateRepository:
    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn

    async def get(self, key: str) -> Optional[Any]:
        async with self.conn.execute(
            "SELECT value FROM key_value_store WHERE key = ?", (key,)
        ) as cursor:
            row = await cursor.fetchone()
        return json.loads(row[0]) if row else None

    async def set(self, key: str, value: Any) -> None:
        try:
            await self.conn.execute(
                "INSERT OR REPLACE INTO key_value_store (key, value) VALUES (?, ?)",
                (key, json.dumps(value)),
            )
            await self.conn.commit()
        except aiosqlite.Error as exc:
            raise StoreWriteError(f"Failed to save state {key!r}: {exc}") from exc

    async def increment_run_count(self) -> int:
        try:
            await self.conn.execute(
                "INSERT INTO key_value_store (key, value) VALUES (?, '1') "
                "ON CONFLICT(key) DO UPDATE SET value = CAST(value AS INTEGER) + 1",
                (RUN_COUNT_KEY,),
            )
            await self.conn.commit()
        except aiosqlite.Error as exc:
            raise StoreWriteError(f"Failed to update run count: {exc}") from exc
        return int(await self.get(RUN_COUNT_KEY))
