from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Mapping

from starquery.domain.entities import RepoRef
from starquery.domain.errors import ConfigError

log = logging.getLogger(__name__)

DEFAULT_BIND_ADDRESS  = "127.0.0.1:8080"
DEFAULT_TRACKED_REPOS = "coder/coder"
DEFAULT_SYNC_INTERVAL = 15 * 60
DEFAULT_TTL           = 24 * 60 * 60

# Names understood by both logging.basicConfig and uvicorn.
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")
_LOG_LEVEL_ALIASES = {"WARN": "WARNING", "FATAL": "CRITICAL"}

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """
    Immutable process configuration, built once at startup and passed to
    each component's constructor. Nothing else reads the environment.
    """
    webhook_secret:    str
    bind_address:      str = DEFAULT_BIND_ADDRESS
    github_token:      str | None = None
    database_url:      str | None = None
    tracked_repos:     tuple[RepoRef, ...] = (RepoRef("coder", "coder"),)
    sync_interval:     float = DEFAULT_SYNC_INTERVAL
    stargazer_ttl:     int = DEFAULT_TTL
    webhook_ip_filter: bool = False
    log_level:         str = "INFO"

    @property
    def host(self) -> str:
        host, _, _ = self.bind_address.rpartition(":")
        return host.strip("[]") or "127.0.0.1"

    @property
    def port(self) -> int:
        _, _, port = self.bind_address.rpartition(":")
        return int(port)

    def with_overrides(self, **changes) -> Settings:
        """Copy with non-None ``changes`` applied (CLI flags)."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> Settings:
        """
        Read configuration from environment variables.
        Fails fast with ConfigError if anything required is missing or invalid.
        """
        secret = environ.get("WEBHOOK_SECRET")
        if not secret:
            raise ConfigError("missing WEBHOOK_SECRET")

        token = environ.get("GITHUB_TOKEN") or None
        if token is None:
            log.warning("GITHUB_TOKEN not set — unauthenticated requests will be rate-limited")

        database_url = environ.get("DATABASE_URL") or None
        if database_url is None:
            log.warning("DATABASE_URL not set — using in-memory store")

        settings = cls(
            webhook_secret    = secret,
            bind_address      = environ.get("BIND_ADDRESS") or DEFAULT_BIND_ADDRESS,
            github_token      = token,
            database_url      = database_url,
            tracked_repos     = parse_repos(environ.get("TRACKED_REPOS") or DEFAULT_TRACKED_REPOS),
            sync_interval     = _number(environ, "SYNC_INTERVAL_SECONDS", DEFAULT_SYNC_INTERVAL, float),
            stargazer_ttl     = _number(environ, "STARGAZER_TTL_SECONDS", DEFAULT_TTL, int),
            webhook_ip_filter = environ.get("WEBHOOK_IP_FILTER", "").strip().lower() in _TRUTHY,
            log_level         = normalize_log_level(environ.get("LOG_LEVEL")),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        try:
            self.port
        except ValueError as exc:
            raise ConfigError(f"invalid bind address: {self.bind_address!r}") from exc
        if self.sync_interval <= 0:
            raise ConfigError("sync interval must be positive")
        if self.stargazer_ttl <= 0:
            raise ConfigError("stargazer TTL must be positive")
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(f"invalid log level: {self.log_level!r}, expected one of {', '.join(LOG_LEVELS)}")


def normalize_log_level(value: str | None) -> str:
    """Upper-case a level name and map the stdlib aliases WARN and FATAL."""
    level = (value or "INFO").strip().upper()
    return _LOG_LEVEL_ALIASES.get(level, level)


def parse_repos(value: str) -> tuple[RepoRef, ...]:
    """Parse a comma-separated ``owner/name`` list."""
    try:
        return tuple(RepoRef.parse(item) for item in value.split(",") if item.strip())
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc


def _number(environ: Mapping[str, str], name: str, default, kind):
    raw = environ.get(name)
    if not raw:
        return default
    try:
        return kind(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc
