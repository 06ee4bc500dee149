from __future__ import annotations
import logging
import threading
from contextlib import contextmanager
from typing import Iterable, Iterator

import psycopg2
from psycopg2.extras import execute_values

from starquery.domain.errors import StoreError
from starquery.domain.interfaces import IKeyValueStore

log = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS stargazer_keys (
    key        TEXT        PRIMARY KEY,
    value      TEXT        NOT NULL,
    expires_at TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS stargazer_keys_expires_at_idx
    ON stargazer_keys (expires_at);
"""


class PostgresKeyValueStore(IKeyValueStore):
    """
    Networked implementation of IKeyValueStore backed by PostgreSQL.

    Receives an already-built psycopg2 ThreadedConnectionPool (injected).
    Every call borrows one connection for one transaction, so concurrent
    callers never share a transaction. No client-side retrying is layered
    on top: atomicity is whatever one transaction gives.

    The pool raises instead of blocking once ``maxconn`` connections are
    out, so callers first take a slot from a semaphore of the same size and
    queue there when every connection is busy.

    Expiry is a column, not a server feature: reads ignore rows whose
    ``expires_at`` has passed and writes purge them.
    """

    def __init__(self, pool, max_connections: int) -> None:
        self._pool  = pool
        self._slots = threading.BoundedSemaphore(max_connections)

    @contextmanager
    def _cursor(self) -> Iterator:
        with self._slots:
            try:
                conn = self._pool.getconn()
            except psycopg2.Error as exc:
                raise StoreError(f"acquire connection: {exc}") from exc
            try:
                # `with conn` commits on success and rolls back on error.
                with conn:
                    with conn.cursor() as cur:
                        yield cur
            except psycopg2.Error as exc:
                raise StoreError(str(exc)) from exc
            finally:
                self._pool.putconn(conn)

    def ensure_schema(self) -> None:
        with self._cursor() as cur:
            cur.execute(SCHEMA_SQL)
        log.debug("Ensured stargazer_keys schema")

    def set_with_expiry(self, ttl_seconds: int, pairs: Iterable[tuple[str, str]]) -> None:
        """
        Upsert the whole batch in a single statement.

        execute_values sends all rows in ONE round-trip; ON CONFLICT refreshes
        both the value and the expiry so re-asserting a fact extends it.
        """
        rows = [(key, value, ttl_seconds) for key, value in pairs]
        if not rows:
            return

        with self._cursor() as cur:
            cur.execute("DELETE FROM stargazer_keys WHERE expires_at <= NOW()")
            execute_values(
                cur,
                """
                INSERT INTO stargazer_keys (key, value, expires_at)
                VALUES %s
                ON CONFLICT (key) DO UPDATE SET
                    value      = EXCLUDED.value,
                    expires_at = EXCLUDED.expires_at
                """,
                rows,
                template="(%s, %s, NOW() + make_interval(secs => %s))",
            )
        log.debug("Upserted %d keys to PostgreSQL (ttl=%ds)", len(rows), ttl_seconds)

    def get(self, key: str) -> str:
        with self._cursor() as cur:
            cur.execute(
                "SELECT value FROM stargazer_keys WHERE key = %s AND expires_at > NOW()",
                (key,),
            )
            row = cur.fetchone()
        return row[0] if row else ""

    def delete(self, key: str) -> None:
        # Row count is irrelevant: deleting an absent key is a no-op.
        with self._cursor() as cur:
            cur.execute("DELETE FROM stargazer_keys WHERE key = %s", (key,))
