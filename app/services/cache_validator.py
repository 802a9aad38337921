"""Conditional HTTP caching decisions.

The validator of a representation is a strong entity tag computed from its
body, plus a Last-Modified instant: the moment that entity tag was first
observed, and always later than any date served for an earlier entity tag of
the same resource. Tokens are recomputed on every
full response; the store only carries them between requests for
preconditions on writes and for the optional trusted fast path.

Decisions:
- GET/HEAD: If-None-Match (takes precedence, weak comparison, ``*`` matches)
  or If-Modified-Since -> NOT_MODIFIED, otherwise PROCEED.
- PUT/PATCH/DELETE/POST: If-Match (strong comparison) or
  If-Unmodified-Since -> PRECONDITION_FAILED when they do not hold.
"""

from __future__ import annotations

import enum
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime, parsedate_to_datetime
from typing import Callable, Mapping

from app.core.config import CacheProfileConfig, CacheSettings
from app.utils.simple_cache import SimpleTTLCache

logger = logging.getLogger(__name__)

SAFE_METHODS = frozenset({"GET", "HEAD"})


class CacheDecision(str, enum.Enum):
    PROCEED = "proceed"
    NOT_MODIFIED = "not_modified"
    PRECONDITION_FAILED = "precondition_failed"


@dataclass(frozen=True)
class CacheProfile:
    max_age: int = 65
    location: str = "private"
    must_revalidate: bool = True
    no_store: bool = False

    @classmethod
    def from_config(cls, cfg: CacheProfileConfig) -> "CacheProfile":
        return cls(
            max_age=cfg.max_age,
            location=cfg.location,
            must_revalidate=cfg.must_revalidate,
            no_store=cfg.no_store,
        )

    def cache_control(self) -> str:
        if self.no_store:
            return "no-store"
        directives = [self.location, f"max-age={self.max_age}"]
        if self.must_revalidate:
            # no-cache forces revalidation even while still fresh
            directives += ["no-cache", "must-revalidate"]
        return ", ".join(directives)


@dataclass(frozen=True)
class CacheValidationToken:
    resource_key: str
    etag: str
    last_modified: datetime | None
    max_age: int
    must_revalidate: bool


@dataclass(frozen=True)
class ConditionalHeaders:
    if_none_match: str | None = None
    if_modified_since: str | None = None
    if_match: str | None = None
    if_unmodified_since: str | None = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "ConditionalHeaders":
        return cls(
            if_none_match=headers.get("if-none-match"),
            if_modified_since=headers.get("if-modified-since"),
            if_match=headers.get("if-match"),
            if_unmodified_since=headers.get("if-unmodified-since"),
        )

    @property
    def is_conditional(self) -> bool:
        return any(
            (self.if_none_match, self.if_modified_since, self.if_match, self.if_unmodified_since)
        )


def compute_etag(body: bytes) -> str:
    """Strong entity tag of a representation."""
    return f'"{hashlib.sha256(body).hexdigest()[:32]}"'


def _opaque(tag: str) -> str:
    tag = tag.strip()
    return tag[2:] if tag.startswith("W/") else tag


def parse_etag_list(value: str) -> list[str]:
    return [tag.strip() for tag in value.split(",") if tag.strip()]


def parse_http_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_http_date(value: datetime) -> str:
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


def build_resource_key(version: str, path: str, query: str = "") -> str:
    """Resource key: one entry per representation (version + path + query)."""
    normalized = path.rstrip("/") or "/"
    return f"{version}|{normalized}|{query}"


def resource_path(resource_key: str) -> str:
    return resource_key.split("|", 2)[1]


def is_related_path(candidate: str, written: str) -> bool:
    """True if ``candidate`` is ``written``, one of its ancestors or descendants."""

    candidate = candidate.rstrip("/") or "/"
    written = written.rstrip("/") or "/"
    if candidate == written:
        return True
    if written.startswith(candidate + "/"):
        return True
    return candidate.startswith(written + "/")


class CacheValidator:
    """Computes validators and evaluates conditional requests."""

    def __init__(
        self,
        default_profile: CacheProfile | None = None,
        resource_profiles: Mapping[str, CacheProfile] | None = None,
        *,
        validator_store: SimpleTTLCache[CacheValidationToken] | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._default_profile = default_profile or CacheProfile()
        # Longest prefix first so the most specific profile wins
        self._profiles = sorted(
            (resource_profiles or {}).items(),
            key=lambda item: len(item[0]),
            reverse=True,
        )
        self._store = validator_store or SimpleTTLCache(ttl_seconds=3600, max_entries=4096)
        # Last token served per key; kept across invalidation so Last-Modified never repeats
        self._served: SimpleTTLCache[CacheValidationToken] = SimpleTTLCache(
            ttl_seconds=86400, max_entries=4096
        )
        self._clock = clock

    @classmethod
    def from_settings(cls, cfg: CacheSettings) -> "CacheValidator":
        return cls(
            CacheProfile(
                max_age=cfg.max_age,
                location=cfg.location,
                must_revalidate=cfg.must_revalidate,
            ),
            {prefix: CacheProfile.from_config(p) for prefix, p in cfg.resource_profiles.items()},
            validator_store=SimpleTTLCache(
                ttl_seconds=cfg.validator_store_ttl_seconds,
                max_entries=cfg.validator_store_max_entries,
            ),
        )

    @property
    def validator_store(self) -> SimpleTTLCache[CacheValidationToken]:
        return self._store

    def profile_for(self, path: str) -> CacheProfile:
        for prefix, profile in self._profiles:
            if path == prefix or path.startswith(prefix.rstrip("/") + "/"):
                return profile
        return self._default_profile

    def stored_token(self, resource_key: str) -> CacheValidationToken | None:
        return self._store.get(resource_key)

    def issue_token(self, resource_key: str, path: str, body: bytes) -> CacheValidationToken:
        """Compute and remember the validator for a freshly built representation."""

        profile = self.profile_for(path)
        etag = compute_etag(body)
        previous = self._served.get(resource_key)
        last_modified = self._clock().replace(microsecond=0)
        if previous is not None and previous.last_modified is not None:
            if previous.etag == etag:
                last_modified = previous.last_modified
            else:
                # A new representation must postdate every date already handed out
                last_modified = max(last_modified, previous.last_modified + timedelta(seconds=1))

        token = CacheValidationToken(
            resource_key=resource_key,
            etag=etag,
            last_modified=last_modified,
            max_age=profile.max_age,
            must_revalidate=profile.must_revalidate,
        )
        self._store.set(resource_key, token)
        self._served.set(resource_key, token)
        return token

    def evaluate(
        self,
        token: CacheValidationToken | None,
        conditions: ConditionalHeaders,
        method: str = "GET",
    ) -> CacheDecision:
        if token is None:
            return CacheDecision.PROCEED
        if method.upper() in SAFE_METHODS:
            return self._evaluate_safe(token, conditions)
        return self._evaluate_unsafe(token, conditions)

    def _evaluate_safe(
        self,
        token: CacheValidationToken,
        conditions: ConditionalHeaders,
    ) -> CacheDecision:
        if conditions.if_none_match is not None:
            tags = parse_etag_list(conditions.if_none_match)
            if "*" in tags or any(_opaque(tag) == _opaque(token.etag) for tag in tags):
                return CacheDecision.NOT_MODIFIED
            return CacheDecision.PROCEED

        since = parse_http_date(conditions.if_modified_since)
        if since is not None and token.last_modified is not None and token.last_modified <= since:
            return CacheDecision.NOT_MODIFIED
        return CacheDecision.PROCEED

    def _evaluate_unsafe(
        self,
        token: CacheValidationToken,
        conditions: ConditionalHeaders,
    ) -> CacheDecision:
        if conditions.if_match is not None:
            tags = parse_etag_list(conditions.if_match)
            if "*" in tags:
                return CacheDecision.PROCEED
            # Strong comparison: weak tags never satisfy If-Match
            if any(not tag.startswith("W/") and tag == token.etag for tag in tags):
                return CacheDecision.PROCEED
            return CacheDecision.PRECONDITION_FAILED

        since = parse_http_date(conditions.if_unmodified_since)
        if since is not None and token.last_modified is not None and token.last_modified > since:
            return CacheDecision.PRECONDITION_FAILED
        return CacheDecision.PROCEED

    def headers_for(self, token: CacheValidationToken, path: str) -> dict[str, str]:
        profile = self.profile_for(path)
        headers = {
            "ETag": token.etag,
            "Cache-Control": profile.cache_control(),
            "Expires": format_http_date(self._clock() + timedelta(seconds=profile.max_age)),
        }
        if token.last_modified is not None:
            headers["Last-Modified"] = format_http_date(token.last_modified)
        return headers

    def invalidate(self, written_path: str) -> int:
        """Forget validators of the written resource, its ancestors and descendants."""

        removed = self._store.delete_where(
            lambda key: is_related_path(resource_path(key), written_path)
        )
        if removed:
            logger.debug("cache.invalidated", extra={"path": written_path, "removed": removed})
        return removed

    def clear(self) -> None:
        self._store.clear()
        self._served.clear()
