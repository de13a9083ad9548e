"""SQLite-backed, append-only response log repository."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Tuple

from ai_orchestrator.domain.models import CallStatus, LogRecord, Provider

from .interfaces import IResponseLogRepository

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS response_logs (
    id TEXT PRIMARY KEY,
    function_name TEXT NOT NULL,
    identity TEXT NOT NULL,
    caller_id TEXT,
    provider TEXT NOT NULL,
    model TEXT,
    latency_ms INTEGER NOT NULL,
    cost_estimate REAL,
    prompt_tokens INTEGER,
    completion_tokens INTEGER,
    total_tokens INTEGER,
    request_id TEXT,
    status TEXT NOT NULL,
    error TEXT,
    metadata TEXT NOT NULL,
    created_at REAL NOT NULL
);
"""

_CREATE_INDEXES_SQL = (
    "CREATE INDEX IF NOT EXISTS idx_response_logs_identity ON response_logs (identity);",
    "CREATE INDEX IF NOT EXISTS idx_response_logs_created_at ON response_logs (created_at);",
)

_INSERT_SQL = """
INSERT INTO response_logs (
    id, function_name, identity, caller_id, provider, model, latency_ms,
    cost_estimate, prompt_tokens, completion_tokens, total_tokens, request_id,
    status, error, metadata, created_at
)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

_COLUMNS = """
id, function_name, identity, caller_id, provider, model, latency_ms,
cost_estimate, prompt_tokens, completion_tokens, total_tokens, request_id,
status, error, metadata, created_at
"""

_SELECT_BY_IDENTITY_SQL = f"""
SELECT {_COLUMNS}
FROM response_logs
WHERE identity = ?
ORDER BY created_at ASC;
"""

_SELECT_BY_DATE_SQL = f"""
SELECT {_COLUMNS}
FROM response_logs
WHERE created_at BETWEEN ? AND ?
ORDER BY created_at ASC;
"""


class SQLiteResponseLogRepository(IResponseLogRepository):
    """Lightweight repository focused on persistence only."""

    def __init__(self, db_path: str | Path, *, busy_timeout: float = 5.0):
        self._db_path = str(db_path)
        self._busy_timeout = busy_timeout
        self._ensure_schema()

    def save(self, record: LogRecord) -> None:
        with self._connect() as conn:
            conn.execute(
                _INSERT_SQL,
                (
                    record.id,
                    record.function_name,
                    record.identity,
                    record.caller_id,
                    record.provider.value,
                    record.model,
                    record.latency_ms,
                    record.cost_estimate,
                    record.prompt_tokens,
                    record.completion_tokens,
                    record.total_tokens,
                    record.request_id,
                    record.status.value,
                    record.error,
                    json.dumps(dict(record.metadata), default=str),
                    record.created_at.timestamp(),
                ),
            )
            conn.commit()

    def find_by_identity(self, identity: str) -> List[LogRecord]:
        with self._connect() as conn:
            rows = conn.execute(_SELECT_BY_IDENTITY_SQL, (identity,)).fetchall()
        return [self._row_to_record(row) for row in rows]

    def find_by_date(self, start: datetime, end: datetime) -> List[LogRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                _SELECT_BY_DATE_SQL,
                (start.timestamp(), end.timestamp()),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path, timeout=self._busy_timeout)

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_TABLE_SQL)
            for statement in _CREATE_INDEXES_SQL:
                conn.execute(statement)
            conn.commit()

    @staticmethod
    def _row_to_record(row: Tuple[Any, ...]) -> LogRecord:
        (
            id_,
            function_name,
            identity,
            caller_id,
            provider,
            model,
            latency_ms,
            cost_estimate,
            prompt_tokens,
            completion_tokens,
            total_tokens,
            request_id,
            status,
            error,
            metadata,
            created_at,
        ) = row
        return LogRecord(
            id=id_,
            function_name=function_name,
            identity=identity,
            caller_id=caller_id,
            provider=Provider(provider),
            model=model,
            latency_ms=latency_ms,
            cost_estimate=cost_estimate,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
            request_id=request_id,
            status=CallStatus(status),
            error=error,
            metadata=json.loads(metadata),
            created_at=datetime.fromtimestamp(created_at, tz=timezone.utc),
        )
