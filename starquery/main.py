"""
main.py — Dependency Wiring (Composition Root)
------------------------------------------------
This module has ONE job: wire all the pieces together and serve.

  1. Reads configuration from environment variables (+ CLI overrides)
  2. Creates concrete implementations of each interface
  3. Injects them into the HTTP application
  4. Serves until interrupted, then closes every connection

Dependency graph:
                        main.py  (wires everything)
                           │
             ┌─────────────┼───────────────────┐
             ▼             ▼                   ▼
        create_app     GitHubClient     PostgresKeyValueStore
             │         (IStargazerFetcher)  / InMemoryKeyValueStore
   ┌─────────┼──────────────┐              (IKeyValueStore)
   ▼         ▼              ▼
SyncLoop  WebhookIngestor  StarQueryService
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys

import httpx
import psycopg2
import uvicorn
from psycopg2.pool import ThreadedConnectionPool

from starquery.api import create_app
from starquery.config import LOG_LEVELS, Settings, normalize_log_level, parse_repos
from starquery.domain.errors import ConfigError, StarqueryError, StoreError
from starquery.domain.interfaces import IKeyValueStore
from starquery.infrastructure.github_client import GitHubClient
from starquery.infrastructure.ip_filter import IPFilter
from starquery.infrastructure.memory_store import InMemoryKeyValueStore
from starquery.infrastructure.postgres_store import PostgresKeyValueStore

log = logging.getLogger(__name__)

POOL_MIN_CONN = 1
POOL_MAX_CONN = 10


def _build_store(settings: Settings) -> tuple[IKeyValueStore, ThreadedConnectionPool | None]:
    if not settings.database_url:
        return InMemoryKeyValueStore(), None
    try:
        pool = ThreadedConnectionPool(POOL_MIN_CONN, POOL_MAX_CONN, settings.database_url)
    except psycopg2.Error as exc:
        raise StoreError(f"connect to database: {exc}") from exc
    store = PostgresKeyValueStore(pool, max_connections=POOL_MAX_CONN)
    store.ensure_schema()
    return store, pool


async def build_and_serve(settings: Settings) -> None:
    """
    Wires all dependencies together and runs the HTTP server.

    This is the only place that knows which concrete class implements
    each interface.
    """
    store, pool = _build_store(settings)
    client = httpx.AsyncClient()

    try:
        github_client = GitHubClient(
            token  = settings.github_token,
            client = client,          # injected — GitHubClient doesn't create this
        )
        ip_filter = IPFilter(client=client) if settings.webhook_ip_filter else None

        app = create_app(
            settings  = settings,
            store     = store,
            fetcher   = github_client,
            ip_filter = ip_filter,
        )
        log.info("Serving on %s | tracked repos: %s", settings.bind_address,
                 ", ".join(str(r) for r in settings.tracked_repos) or "none")

        config = uvicorn.Config(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
        await uvicorn.Server(config).serve()

    finally:
        # Always clean up connections, even if an exception occurred
        await client.aclose()
        if pool is not None:
            pool.closeall()


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Answer 'has user U starred repository R?' from webhook and GraphQL-synced data"
    )
    parser.add_argument("--bind", help="Address to listen on, host:port (default: $BIND_ADDRESS or 127.0.0.1:8080)")
    parser.add_argument(
        "--repo",
        action  = "append",
        dest    = "repos",
        help    = "Track owner/name (repeatable; default: $TRACKED_REPOS or coder/coder)",
    )
    parser.add_argument("--log-level", help="Logging level (default: $LOG_LEVEL or INFO)")
    return parser.parse_args(argv)


def cli(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)

    # An unknown level is reported by validate() below, so log at INFO until then.
    level = normalize_log_level(args.log_level or os.environ.get("LOG_LEVEL"))
    logging.basicConfig(
        level=level if level in LOG_LEVELS else "INFO",
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        settings = Settings.from_env(os.environ).with_overrides(
            bind_address  = args.bind,
            tracked_repos = parse_repos(",".join(args.repos)) if args.repos else None,
            log_level     = normalize_log_level(args.log_level) if args.log_level else None,
        )
        settings.validate()
    except ConfigError as exc:
        log.error("Invalid configuration: %s", exc)
        sys.exit(1)

    try:
        asyncio.run(build_and_serve(settings))
    except StarqueryError as exc:
        log.error("run: %s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    cli()
