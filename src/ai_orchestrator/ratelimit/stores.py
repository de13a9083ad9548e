"""Rate-window stores offering atomic increment-with-ceiling.

``SQLiteRateWindowStore`` is safe across processes sharing one database file.
``RedisRateWindowStore`` is the store for multi-instance deployments.
``InMemoryRateWindowStore`` keeps counters in process memory and is only valid
for a single-instance deployment.
"""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Tuple

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ai_orchestrator.domain.exceptions import RateStoreUnavailableError
from ai_orchestrator.domain.interfaces import IRateWindowStore, WindowAdmission
from ai_orchestrator.domain.models import RateWindow

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS rate_windows (
    identity TEXT NOT NULL,
    window_start INTEGER NOT NULL,
    count INTEGER NOT NULL,
    last_request_at REAL NOT NULL,
    PRIMARY KEY (identity, window_start)
);
"""

# The conflict branch only fires while the ceiling has not been reached; when
# the WHERE clause is false no row is returned and nothing is written.
_ADMIT_SQL = """
INSERT INTO rate_windows (identity, window_start, count, last_request_at)
VALUES (?, ?, 1, ?)
ON CONFLICT(identity, window_start) DO UPDATE SET
    count = rate_windows.count + 1,
    last_request_at = excluded.last_request_at
WHERE rate_windows.count < ?
RETURNING count, last_request_at;
"""

_SELECT_SQL = """
SELECT count, last_request_at
FROM rate_windows
WHERE identity = ? AND window_start = ?;
"""

_ADMIT_LUA = """
local count = tonumber(redis.call('HGET', KEYS[1], 'count') or '0')
if count >= tonumber(ARGV[1]) then
    local last = redis.call('HGET', KEYS[1], 'last_request_at') or ARGV[2]
    return {0, count, last}
end
count = redis.call('HINCRBY', KEYS[1], 'count', 1)
redis.call('HSET', KEYS[1], 'last_request_at', ARGV[2])
if count == 1 then
    redis.call('EXPIRE', KEYS[1], ARGV[3])
end
return {1, count, ARGV[2]}
"""


def _from_epoch(value: float) -> datetime:
    return datetime.fromtimestamp(float(value), tz=timezone.utc)


class InMemoryRateWindowStore(IRateWindowStore):
    """Process-local counters guarded by one lock per window key.

    Windows older than the newest window seen are discarded as soon as a newer
    window starts, so memory stays bounded by the identities active in one
    window.
    """

    def __init__(self) -> None:
        self._windows: Dict[Tuple[str, datetime], RateWindow] = {}
        self._locks: Dict[Tuple[str, datetime], threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._latest_start: Optional[datetime] = None

    async def admit(
        self, identity: str, window_start: datetime, limit: int, now: datetime
    ) -> WindowAdmission:
        key = (identity, window_start)
        with self._lock_for(key):
            current = self._windows.get(key)
            if current is None:
                window = RateWindow(
                    identity=identity,
                    window_start=window_start,
                    count=1,
                    last_request_at=now,
                )
                self._windows[key] = window
                return WindowAdmission(admitted=True, window=window)
            if current.count >= limit:
                return WindowAdmission(admitted=False, window=current)
            window = current.model_copy(
                update={"count": current.count + 1, "last_request_at": now}
            )
            self._windows[key] = window
            return WindowAdmission(admitted=True, window=window)

    def get(self, identity: str, window_start: datetime) -> Optional[RateWindow]:
        return self._windows.get((identity, window_start))

    def _lock_for(self, key: Tuple[str, datetime]) -> threading.Lock:
        with self._registry_lock:
            self._discard_expired(key[1])
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def _discard_expired(self, window_start: datetime) -> None:
        if self._latest_start is not None and window_start <= self._latest_start:
            return
        self._latest_start = window_start
        for key in [k for k in self._locks if k[1] < window_start]:
            del self._locks[key]
            self._windows.pop(key, None)


class SQLiteRateWindowStore(IRateWindowStore):
    """SQLite-backed counters using a single conditional UPSERT per admission."""

    def __init__(self, db_path: str | Path, *, busy_timeout: float = 5.0):
        self._db_path = str(db_path)
        self._busy_timeout = busy_timeout
        self._ensure_schema()

    async def admit(
        self, identity: str, window_start: datetime, limit: int, now: datetime
    ) -> WindowAdmission:
        return await asyncio.to_thread(
            self.admit_sync, identity, window_start, limit, now
        )

    def admit_sync(
        self, identity: str, window_start: datetime, limit: int, now: datetime
    ) -> WindowAdmission:
        start_epoch = int(window_start.timestamp())
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    _ADMIT_SQL, (identity, start_epoch, now.timestamp(), limit)
                ).fetchall()
                admitted = bool(rows)
                row = rows[0] if rows else None
                if not admitted:
                    row = conn.execute(_SELECT_SQL, (identity, start_epoch)).fetchone()
                conn.commit()
        except sqlite3.Error as exc:
            raise RateStoreUnavailableError(
                f"SQLite rate store failed: {exc}", context={"identity": identity}
            ) from exc

        count, last_request_at = row
        window = RateWindow(
            identity=identity,
            window_start=window_start,
            count=count,
            last_request_at=_from_epoch(last_request_at),
        )
        return WindowAdmission(admitted=admitted, window=window)

    def get(self, identity: str, window_start: datetime) -> Optional[RateWindow]:
        with self._connect() as conn:
            row = conn.execute(
                _SELECT_SQL, (identity, int(window_start.timestamp()))
            ).fetchone()
        if row is None:
            return None
        count, last_request_at = row
        return RateWindow(
            identity=identity,
            window_start=window_start,
            count=count,
            last_request_at=_from_epoch(last_request_at),
        )

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path, timeout=self._busy_timeout)

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_TABLE_SQL)
            conn.commit()


class RedisRateWindowStore(IRateWindowStore):
    """Redis hash per window key, incremented by an atomic Lua script."""

    def __init__(
        self,
        client: Redis,
        *,
        key_prefix: str = "ai_orchestrator:rate",
        ttl_seconds: int = 120,
    ) -> None:
        self._client = client
        self._key_prefix = key_prefix
        self._ttl_seconds = ttl_seconds

    @classmethod
    def from_url(cls, redis_url: str, **kwargs: object) -> "RedisRateWindowStore":
        return cls(Redis.from_url(redis_url, decode_responses=True), **kwargs)  # type: ignore[arg-type]

    def key_for(self, identity: str, window_start: datetime) -> str:
        return f"{self._key_prefix}:{identity}:{int(window_start.timestamp())}"

    async def admit(
        self, identity: str, window_start: datetime, limit: int, now: datetime
    ) -> WindowAdmission:
        key = self.key_for(identity, window_start)
        try:
            admitted, count, last_request_at = await self._client.eval(
                _ADMIT_LUA, 1, key, limit, now.timestamp(), self._ttl_seconds
            )
        except RedisError as exc:
            raise RateStoreUnavailableError(
                f"Redis rate store failed: {exc}", context={"identity": identity}
            ) from exc

        window = RateWindow(
            identity=identity,
            window_start=window_start,
            count=int(count),
            last_request_at=_from_epoch(float(last_request_at)),
        )
        return WindowAdmission(admitted=bool(int(admitted)), window=window)

    async def aclose(self) -> None:
        await self._client.aclose()
