"""Query adapters for the embedded SQLite engine and Cloudflare D1.

Both adapters expose the same three operations (``execute``, ``fetch_one``,
``fetch_all``) and return the same shapes, so the repository never needs to
know which engine is active. ``build_adapter`` picks one from a
``DatabaseSettings`` object once, at startup.
"""

from __future__ import annotations

import logging
import os
import sqlite3
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Sequence

import requests

logger = logging.getLogger(__name__)

SQLITE = 'sqlite'
D1 = 'd1'

PROJECT_TYPES = ('tourist-utility-service-system', 'stroke-hand-recovery-system')
INNOVATION_LEVELS = ('low', 'medium', 'high', 'breakthrough')

SCHEMA_STATEMENTS = (
    '''
    CREATE TABLE IF NOT EXISTS feedback (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_type TEXT NOT NULL CHECK (project_type IN ('tourist-utility-service-system', 'stroke-hand-recovery-system')),
        rating INTEGER NOT NULL CHECK (rating >= 1 AND rating <= 5),
        innovation TEXT CHECK (innovation IN ('low', 'medium', 'high', 'breakthrough') OR innovation IS NULL),
        comments TEXT,
        created_at DATETIME DEFAULT (strftime('%Y-%m-%d %H:%M:%f', 'now')),
        updated_at DATETIME DEFAULT (strftime('%Y-%m-%d %H:%M:%f', 'now'))
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_project_type ON feedback(project_type)',
    'CREATE INDEX IF NOT EXISTS idx_created_at ON feedback(created_at)',
)


class QueryError(Exception):
    """Raised for any failure while running a statement, whatever the engine."""


@dataclass(frozen=True)
class ExecResult:
    last_inserted_id: Optional[int]
    rows_changed: int


class QueryAdapter(Protocol):
    """Engine-neutral statement runner."""

    backend: str

    def execute(self, sql: str, params: Sequence[Any] = ()) -> ExecResult:
        ...

    def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[dict]:
        ...

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[dict]:
        ...

    def close(self) -> None:
        ...


@dataclass
class DatabaseSettings:
    backend: str = SQLITE
    path: str = 'database.sqlite'
    d1_account_id: Optional[str] = None
    d1_database_id: Optional[str] = None
    d1_api_token: Optional[str] = None
    d1_api_base: str = 'https://api.cloudflare.com/client/v4'
    d1_timeout: float = 30.0

    @classmethod
    def from_config(cls, config) -> "DatabaseSettings":
        """Build settings from a Flask config (or any mapping with the same keys)."""
        credentials = (
            config.get('D1_ACCOUNT_ID'),
            config.get('D1_DATABASE_ID'),
            config.get('D1_API_TOKEN'),
        )
        backend = (config.get('DATABASE_BACKEND') or '').strip().lower()
        if not backend:
            backend = D1 if all(credentials) else SQLITE
        if backend not in (SQLITE, D1):
            raise ValueError(f'Unknown DATABASE_BACKEND: {backend!r}')
        if backend == D1 and not all(credentials):
            raise ValueError('D1 backend requires D1_ACCOUNT_ID, D1_DATABASE_ID and D1_API_TOKEN')
        return cls(
            backend=backend,
            path=config.get('DATABASE_PATH') or 'database.sqlite',
            d1_account_id=credentials[0],
            d1_database_id=credentials[1],
            d1_api_token=credentials[2],
            d1_api_base=config.get('D1_API_BASE') or cls.d1_api_base,
            d1_timeout=float(config.get('D1_TIMEOUT') or cls.d1_timeout),
        )


class SQLiteAdapter:
    """File-backed SQLite engine for local development and tests.

    A single connection is held for the life of the process. Autocommit mode
    makes every statement its own transaction.
    """

    backend = SQLITE

    def __init__(self, path: str):
        self.path = path
        if path != ':memory:':
            directory = os.path.dirname(os.path.abspath(path))
            os.makedirs(directory, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
        self._conn.row_factory = sqlite3.Row

    def _run(self, sql: str, params: Sequence[Any]) -> sqlite3.Cursor:
        if self._conn is None:
            raise QueryError('Database connection is closed')
        try:
            return self._conn.execute(sql, tuple(params))
        except (sqlite3.Error, OverflowError) as exc:
            raise QueryError(str(exc)) from exc

    def execute(self, sql: str, params: Sequence[Any] = ()) -> ExecResult:
        cursor = self._run(sql, params)
        return ExecResult(last_inserted_id=cursor.lastrowid, rows_changed=max(cursor.rowcount, 0))

    def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[dict]:
        row = self._run(sql, params).fetchone()
        return dict(row) if row is not None else None

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[dict]:
        return [dict(row) for row in self._run(sql, params).fetchall()]

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None


class D1Adapter:
    """Cloudflare D1 accessed through the REST query endpoint."""

    backend = D1

    def __init__(
        self,
        account_id: str,
        database_id: str,
        api_token: str,
        *,
        api_base: str = 'https://api.cloudflare.com/client/v4',
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.url = f"{api_base.rstrip('/')}/accounts/{account_id}/d1/database/{database_id}/query"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'Authorization': f'Bearer {api_token}',
            'Content-Type': 'application/json',
        })

    def _query(self, sql: str, params: Sequence[Any]) -> dict:
        try:
            response = self.session.post(
                self.url,
                json={'sql': sql, 'params': list(params)},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise QueryError(f'D1 request failed: {exc}') from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise QueryError(f'D1 returned a non-JSON response (HTTP {response.status_code})') from exc

        if response.status_code >= 400 or not payload.get('success', False):
            messages = [err.get('message', str(err)) for err in payload.get('errors') or []]
            raise QueryError('; '.join(messages) or f'D1 query failed (HTTP {response.status_code})')

        results = payload.get('result') or []
        if not results:
            return {'results': [], 'meta': {}}
        return results[0]

    def execute(self, sql: str, params: Sequence[Any] = ()) -> ExecResult:
        meta = self._query(sql, params).get('meta') or {}
        return ExecResult(
            last_inserted_id=meta.get('last_row_id'),
            rows_changed=meta.get('changes') or 0,
        )

    def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[dict]:
        rows = self._query(sql, params).get('results') or []
        return rows[0] if rows else None

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[dict]:
        return list(self._query(sql, params).get('results') or [])

    def close(self) -> None:
        self.session.close()


def build_adapter(settings: DatabaseSettings, *, session: Optional[requests.Session] = None) -> QueryAdapter:
    if settings.backend == D1:
        logger.info('Using Cloudflare D1 database %s', settings.d1_database_id)
        return D1Adapter(
            settings.d1_account_id,
            settings.d1_database_id,
            settings.d1_api_token,
            api_base=settings.d1_api_base,
            timeout=settings.d1_timeout,
            session=session,
        )
    logger.info('Using local SQLite database at %s', settings.path)
    return SQLiteAdapter(settings.path)


def init_schema(adapter: QueryAdapter) -> None:
    """Create the feedback table and its indexes if they are missing."""
    for statement in SCHEMA_STATEMENTS:
        adapter.execute(statement)
    logger.info('Feedback schema ready (%s)', adapter.backend)
