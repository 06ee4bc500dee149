"""
HTTP surface.

    GET  /{owner}/{repo}/user/{username}   200 starred | 404 not | 500 store error
    POST /webhook                          200 accepted | 400 rejected | 403 blocked | 500 store error

The background sync loop and the optional hook IP allow-list are tied to
the application's lifespan: both start with the server and are fully
stopped before shutdown returns.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from starquery.application.query import StarQueryService
from starquery.application.sync_loop import SyncLoop
from starquery.application.webhook import EVENT_HEADER, SIGNATURE_HEADER, WebhookIngestor
from starquery.config import Settings
from starquery.domain.entities import LookupResult, RepoRef
from starquery.domain.errors import StoreError, ValidationError
from starquery.domain.interfaces import IKeyValueStore, IStargazerFetcher
from starquery.infrastructure.ip_filter import IPFilter

log = logging.getLogger(__name__)


def create_app(
    settings: Settings,
    store: IKeyValueStore,
    fetcher: IStargazerFetcher | None = None,
    ip_filter: IPFilter | None = None,
) -> FastAPI:
    """
    Build the application around already-constructed dependencies.

    The sync loop only runs when a fetcher is given and at least one repo
    is tracked; the IP allow-list only gates /webhook when ``ip_filter``
    is given.
    """
    query    = StarQueryService(store)
    ingestor = WebhookIngestor(store, settings.webhook_secret, ttl=settings.stargazer_ttl)
    sync_loop = None
    if fetcher is not None and settings.tracked_repos:
        sync_loop = SyncLoop(
            fetcher  = fetcher,
            store    = store,
            repos    = settings.tracked_repos,
            interval = settings.sync_interval,
            ttl      = settings.stargazer_ttl,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if ip_filter is not None:
            await ip_filter.start()
        if sync_loop is not None:
            sync_loop.start()
        try:
            yield
        finally:
            try:
                if sync_loop is not None:
                    await sync_loop.close()
            finally:
                if ip_filter is not None:
                    await ip_filter.close()

    app = FastAPI(title="starquery", lifespan=lifespan)
    app.state.settings  = settings
    app.state.store     = store
    app.state.sync_loop = sync_loop
    app.state.ip_filter = ip_filter

    @app.get("/{owner}/{repo}/user/{username}", response_class=PlainTextResponse)
    async def starred_by_user(owner: str, repo: str, username: str):
        result = await query.lookup(RepoRef(owner=owner, name=repo), username)
        if result is LookupResult.FOUND:
            return PlainTextResponse("OK")
        if result is LookupResult.NOT_FOUND:
            return PlainTextResponse("Not Found", status_code=404)
        return PlainTextResponse("Internal server error", status_code=500)

    @app.post("/webhook", response_class=PlainTextResponse)
    async def webhook(request: Request):
        if ip_filter is not None:
            remote = request.client.host if request.client else None
            if not ip_filter.is_allowed(remote):
                log.warning("Rejected webhook from non-GitHub address %s", remote)
                return PlainTextResponse("Forbidden", status_code=403)

        body = await request.body()
        try:
            await ingestor.handle(
                event_type   = request.headers.get(EVENT_HEADER),
                signature    = request.headers.get(SIGNATURE_HEADER),
                body         = body,
                content_type = request.headers.get("content-type"),
            )
        except ValidationError as exc:
            return PlainTextResponse(str(exc), status_code=400)
        except StoreError as exc:
            log.error("Failed to update stargazer data: %s", exc)
            return PlainTextResponse("Internal server error", status_code=500)
        return PlainTextResponse("OK")

    return app
