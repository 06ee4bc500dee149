from __future__ import annotations
import enum
from dataclasses import dataclass
from datetime import datetime

KEY_PREFIX = "stargazers"


@dataclass(frozen=True)
class RepoRef:
    """
    Immutable reference to a tracked GitHub repository.

    Tracked repos are fixed at startup. The same value type is also built
    on the fly from webhook payloads and query paths, so two RepoRefs with
    the same owner/name always derive the same store keys.
    """
    owner: str
    name:  str

    def __str__(self) -> str:
        return f"{self.owner}/{self.name}"

    def key(self, login: str) -> str:
        """Store key for the (repo, login) stargazer relation."""
        return f"{KEY_PREFIX}:{self.owner}/{self.name}/{login}"

    @classmethod
    def parse(cls, value: str) -> RepoRef:
        """Parse ``owner/name``. Raises ValueError on anything else."""
        owner, sep, name = value.strip().partition("/")
        if not sep or not owner or not name or "/" in name:
            raise ValueError(f"invalid repository reference: {value!r}")
        return cls(owner=owner, name=name)


@dataclass(frozen=True)
class StargazerFact:
    """
    One stargazer edge as returned by a single fetch pass.

    The cursor is only meaningful within the pass that produced it and is
    never written to the store. ``login`` is None for an edge whose account
    no longer exists; it still advances pagination but is never stored.
    """
    login:  str | None
    cursor: str


@dataclass(frozen=True)
class RateLimitState:
    remaining: int
    reset_at:  datetime | None = None

    @property
    def exhausted(self) -> bool:
        return self.remaining == 0 and self.reset_at is not None


@dataclass(frozen=True)
class SweepResult:
    """
    Immutable value object summarising one repo's sweep.
    status is "success", "failed" or "cancelled".
    """
    repo:          RepoRef
    stargazers:    int
    pages:         int
    status:        str
    elapsed_secs:  float
    error_message: str | None = None


class StarAction(str, enum.Enum):
    CREATED = "created"
    DELETED = "deleted"


@dataclass(frozen=True)
class StarEvent:
    """A parsed ``star`` webhook event."""
    action: StarAction
    repo:   RepoRef
    login:  str


class LookupResult(enum.Enum):
    FOUND     = "found"
    NOT_FOUND = "not_found"
    ERROR     = "error"
