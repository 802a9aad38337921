"""Rate limit rules, policy snapshots and the policy store.

A policy is an immutable snapshot of every rule, override and whitelist.
The store only ever swaps the snapshot reference, so a request that grabbed a
snapshot evaluates against one self-consistent rule set even while the rules
are being replaced.
"""

from __future__ import annotations

import enum
import fnmatch
import re
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping

from app.core.config import RateLimitRuleConfig, RateLimitSettings
from app.core.errors import ValidationAppError

_PERIOD_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smhd])\s*$", re.IGNORECASE)
_PERIOD_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


class WindowMode(str, enum.Enum):
    FIXED = "fixed"
    ROLLING = "rolling"


def parse_period(period: str) -> float:
    """Convert ``"5m"``-style durations to seconds.

    Raises:
        ValidationAppError: If the format is invalid or the duration is zero.
    """

    match = _PERIOD_RE.match(period or "")
    if not match:
        raise ValidationAppError(
            code="invalid_rate_limit_period",
            message=f"Invalid rate limit period '{period}'. Use <number><s|m|h|d>, e.g. '5m'",
            details={"period": period},
        )
    seconds = float(match.group(1)) * _PERIOD_UNITS[match.group(2).lower()]
    if seconds <= 0:
        raise ValidationAppError(
            code="invalid_rate_limit_period",
            message="Rate limit period must be greater than zero",
            details={"period": period},
        )
    return seconds


def _normalize_path(path: str) -> str:
    path = (path or "/").lower()
    if len(path) > 1:
        path = path.rstrip("/")
    return path


@dataclass(frozen=True)
class EndpointPattern:
    """Endpoint matcher.

    Grammar: ``"*"`` (everything), ``"<verb>:<path glob>"`` such as
    ``"get:/api/companies"`` or ``"*:/api/companies/*"``, or a bare path glob
    matching any verb.
    """

    raw: str
    verb: str
    path: str

    @classmethod
    def parse(cls, raw: str) -> "EndpointPattern":
        text = (raw or "").strip()
        if not text:
            raise ValidationAppError(
                code="invalid_rate_limit_endpoint",
                message="Rate limit endpoint pattern must not be empty",
            )
        if text == "*":
            return cls(raw=text, verb="*", path="*")
        verb, sep, path = text.partition(":")
        if not sep:
            verb, path = "*", text
        return cls(raw=text, verb=verb.strip().lower() or "*", path=_normalize_path(path.strip()))

    @property
    def is_catch_all(self) -> bool:
        return self.verb == "*" and self.path == "*"

    def matches(self, method: str, path: str) -> bool:
        if self.verb != "*" and self.verb != method.lower():
            return False
        if self.path == "*":
            return True
        return fnmatch.fnmatchcase(_normalize_path(path), self.path)

    @property
    def specificity(self) -> tuple[int, int, int, int]:
        """Higher sorts as more specific."""
        return (
            0 if self.is_catch_all else 1,
            1 if self.verb != "*" else 0,
            0 if "*" in self.path else 1,
            len(self.path.replace("*", "")),
        )


@dataclass(frozen=True)
class RateLimitRule:
    """A parsed rule: at most ``limit`` requests per ``period``."""

    endpoint: EndpointPattern
    limit: int
    period: str
    period_seconds: float

    @classmethod
    def create(cls, endpoint: str, limit: int, period: str) -> "RateLimitRule":
        if limit < 1:
            raise ValidationAppError(
                code="invalid_rate_limit",
                message="Rate limit must be >= 1",
                details={"limit": limit},
            )
        return cls(
            endpoint=EndpointPattern.parse(endpoint),
            limit=limit,
            period=period.strip(),
            period_seconds=parse_period(period),
        )

    @classmethod
    def from_config(cls, cfg: RateLimitRuleConfig) -> "RateLimitRule":
        return cls.create(cfg.endpoint, cfg.limit, cfg.period)

    @property
    def key(self) -> str:
        return f"{self.endpoint.raw}|{self.period}"


def _most_specific(
    rules: Iterable[RateLimitRule],
    method: str,
    path: str,
) -> RateLimitRule | None:
    best: RateLimitRule | None = None
    for rule in rules:
        if not rule.endpoint.matches(method, path):
            continue
        # Strictly greater keeps the first configured rule on ties
        if best is None or rule.endpoint.specificity > best.endpoint.specificity:
            best = rule
    return best


@dataclass(frozen=True)
class RateLimitPolicy:
    general_rules: tuple[RateLimitRule, ...] = ()
    client_rules: Mapping[str, tuple[RateLimitRule, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    client_whitelist: frozenset[str] = frozenset()
    endpoint_whitelist: tuple[EndpointPattern, ...] = ()
    window_mode: WindowMode = WindowMode.FIXED

    @classmethod
    def from_settings(cls, cfg: RateLimitSettings) -> "RateLimitPolicy":
        return cls(
            general_rules=tuple(RateLimitRule.from_config(rule) for rule in cfg.general_rules),
            client_rules=MappingProxyType(
                {
                    client: tuple(RateLimitRule.from_config(rule) for rule in rules)
                    for client, rules in cfg.client_rules.items()
                }
            ),
            client_whitelist=frozenset(cfg.client_whitelist),
            endpoint_whitelist=tuple(EndpointPattern.parse(p) for p in cfg.endpoint_whitelist),
            window_mode=WindowMode(cfg.window_mode),
        )

    def is_whitelisted(self, client_key: str, method: str, path: str) -> bool:
        if client_key in self.client_whitelist:
            return True
        return any(pattern.matches(method, path) for pattern in self.endpoint_whitelist)

    def resolve_rule(self, client_key: str, method: str, path: str) -> RateLimitRule | None:
        """Most specific matching rule; client overrides win over general rules."""

        overrides = self.client_rules.get(client_key)
        if overrides:
            rule = _most_specific(overrides, method, path)
            if rule is not None:
                return rule
        return _most_specific(self.general_rules, method, path)


class RateLimitPolicyStore:
    """Holds the current policy snapshot; updates are atomic swaps."""

    def __init__(self, policy: RateLimitPolicy | None = None) -> None:
        self._policy = policy or RateLimitPolicy()
        self._write_lock = threading.Lock()
        self._revision = 0

    @classmethod
    def from_settings(cls, cfg: RateLimitSettings) -> "RateLimitPolicyStore":
        return cls(RateLimitPolicy.from_settings(cfg))

    @property
    def revision(self) -> int:
        return self._revision

    def snapshot(self) -> RateLimitPolicy:
        return self._policy

    def replace(self, policy: RateLimitPolicy) -> None:
        with self._write_lock:
            self._policy = policy
            self._revision += 1

    def set_client_rules(self, client_key: str, rules: Iterable[RateLimitRule]) -> None:
        """Copy-on-write update of one client's overrides."""

        with self._write_lock:
            current = self._policy
            client_rules = dict(current.client_rules)
            client_rules[client_key] = tuple(rules)
            self._policy = RateLimitPolicy(
                general_rules=current.general_rules,
                client_rules=MappingProxyType(client_rules),
                client_whitelist=current.client_whitelist,
                endpoint_whitelist=current.endpoint_whitelist,
                window_mode=current.window_mode,
            )
            self._revision += 1
