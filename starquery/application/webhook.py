"""
GitHub webhook ingestion.

Every delivery goes through the same steps:

    received → signature verified → payload parsed → store updated
                      │                    │
                      └──── rejected ◄─────┘   (ValidationError, no mutation)

The signature is checked against the raw request bytes before anything
looks inside them. ``created`` writes the same key, value and TTL the
sync loop writes, ``deleted`` removes the key unconditionally, so both
paths converge whichever fires last.
"""

from __future__ import annotations

import enum
import hashlib
import hmac
import json
import logging
from urllib.parse import parse_qs

from starquery.domain.entities import RepoRef, StarAction, StarEvent
from starquery.domain.errors import ValidationError
from starquery.domain.interfaces import IKeyValueStore
from .stargazers import STARGAZER_TTL, remove_stargazer, store_stargazers

log = logging.getLogger(__name__)

EVENT_HEADER     = "X-GitHub-Event"
SIGNATURE_HEADER = "X-Hub-Signature-256"
SIGNATURE_PREFIX = "sha256="
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


class WebhookOutcome(enum.Enum):
    PING         = "ping"
    STAR_ADDED   = "star_added"
    STAR_REMOVED = "star_removed"


def sign(secret: str, body: bytes) -> str:
    """``sha256=<hex>`` HMAC of ``body``, as GitHub sends it."""
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return SIGNATURE_PREFIX + digest


def verify_signature(secret: str, body: bytes, signature: str | None) -> None:
    """Raise ValidationError unless ``signature`` is the HMAC of ``body``."""
    if not signature:
        raise ValidationError(f"missing {SIGNATURE_HEADER} header")
    if not signature.startswith(SIGNATURE_PREFIX):
        raise ValidationError("unsupported signature scheme")
    if not hmac.compare_digest(sign(secret, body), signature.strip()):
        raise ValidationError("payload signature does not match")


def decode_payload(body: bytes, content_type: str | None = None) -> dict:
    """
    Decode a delivery body into a dict.

    GitHub delivers either raw JSON or a form body carrying the JSON in
    its ``payload`` field.
    """
    try:
        if content_type and content_type.split(";")[0].strip().lower() == FORM_CONTENT_TYPE:
            fields = parse_qs(body.decode("utf-8"))
            raw = fields.get("payload", [""])[0]
        else:
            raw = body.decode("utf-8")
        payload = json.loads(raw)
    except (UnicodeDecodeError, ValueError) as exc:
        raise ValidationError("failed to parse request body") from exc
    if not isinstance(payload, dict):
        raise ValidationError("failed to parse request body")
    return payload


def _login(obj) -> str:
    if isinstance(obj, dict) and isinstance(obj.get("login"), str):
        return obj["login"]
    return ""


def parse_star_event(payload: dict) -> StarEvent:
    """Translate a ``star`` payload into a StarEvent."""
    repository = payload.get("repository")
    if not isinstance(repository, dict):
        raise ValidationError("missing repository")

    owner = _login(repository.get("owner"))
    if not owner:
        raise ValidationError("missing owner")

    name = repository.get("name")
    if not isinstance(name, str) or not name:
        raise ValidationError("missing name")

    login = _login(payload.get("sender"))
    if not login:
        raise ValidationError("missing sender")

    try:
        action = StarAction(payload.get("action"))
    except ValueError as exc:
        raise ValidationError(f"unsupported action: {payload.get('action')!r}") from exc

    return StarEvent(action=action, repo=RepoRef(owner=owner, name=name), login=login)


class WebhookIngestor:
    """
    Applies single star events to the store.

    Store failures propagate as StoreError; nothing is retried here
    because GitHub redelivers failed webhooks itself.
    """

    def __init__(self, store: IKeyValueStore, secret: str, ttl: int = STARGAZER_TTL) -> None:
        if not secret:
            raise ValueError("webhook secret must not be empty")
        self._store  = store
        self._secret = secret
        self._ttl    = ttl

    async def handle(
        self,
        event_type: str | None,
        signature: str | None,
        body: bytes,
        content_type: str | None = None,
    ) -> WebhookOutcome:
        verify_signature(self._secret, body, signature)

        if event_type == "ping":
            log.info("Webhook ping received")
            return WebhookOutcome.PING
        if event_type != "star":
            raise ValidationError(f"unsupported event: {event_type!r}")

        event = parse_star_event(decode_payload(body, content_type))
        return await self.apply(event)

    async def apply(self, event: StarEvent) -> WebhookOutcome:
        if event.action is StarAction.CREATED:
            log.info("Star added | repo=%s | user=%s", event.repo, event.login)
            await store_stargazers(self._store, event.repo, [event.login], self._ttl)
            return WebhookOutcome.STAR_ADDED

        log.info("Star removed | repo=%s | user=%s", event.repo, event.login)
        await remove_stargazer(self._store, event.repo, event.login)
        return WebhookOutcome.STAR_REMOVED
