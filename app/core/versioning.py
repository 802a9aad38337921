"""Header-based API versioning.

Handlers register one generation per version under a stable identity (e.g.
``"companies.list"``). The router picks the generation from the request's
``api-version`` header, independently of the URL. A missing header selects the
lowest version registered for that handler. Bindings are frozen at startup.
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from functools import total_ordering
from typing import Any, Callable

from app.core.errors import UnsupportedVersionError

logger = logging.getLogger(__name__)

_VERSION_RE = re.compile(r"^\s*v?(\d+)(?:\.(\d+))?\s*$", re.IGNORECASE)


@total_ordering
@dataclass(frozen=True)
class ApiVersion:
    major: int
    minor: int = 0

    @classmethod
    def parse(cls, value: str) -> "ApiVersion":
        """Parse ``"1"``, ``"1.0"`` or ``"v2"``.

        Raises:
            UnsupportedVersionError: If the value is not a version.
        """
        match = _VERSION_RE.match(value or "")
        if not match:
            raise UnsupportedVersionError(
                code="invalid_api_version",
                message=f"'{value}' is not a valid API version",
                details={"requested_version": value},
            )
        return cls(int(match.group(1)), int(match.group(2) or 0))

    def __lt__(self, other: "ApiVersion") -> bool:
        if not isinstance(other, ApiVersion):
            return NotImplemented
        return (self.major, self.minor) < (other.major, other.minor)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"


@dataclass(frozen=True)
class VersionBinding:
    handler_identity: str
    version: ApiVersion
    handler: Callable[..., Any]


class VersionRouter:
    """Maps ``(handler identity, version)`` to handler generations."""

    def __init__(self) -> None:
        self._bindings: dict[str, dict[ApiVersion, Callable[..., Any]]] = {}
        self._lock = threading.Lock()
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(
        self,
        handler_identity: str,
        version: str | ApiVersion,
        handler: Callable[..., Any],
    ) -> None:
        parsed = version if isinstance(version, ApiVersion) else ApiVersion.parse(version)
        with self._lock:
            if self._frozen:
                raise RuntimeError("Version bindings are frozen after startup")
            generations = self._bindings.setdefault(handler_identity, {})
            if parsed in generations:
                raise ValueError(f"{handler_identity} already has a handler for {parsed}")
            generations[parsed] = handler

    def versioned(self, handler_identity: str, version: str) -> Callable:
        """Decorator form of register()."""

        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self.register(handler_identity, version, func)
            return func

        return decorator

    def freeze(self) -> None:
        with self._lock:
            self._frozen = True

    def supported_versions(self, handler_identity: str | None = None) -> list[ApiVersion]:
        if handler_identity is not None:
            return sorted(self._bindings.get(handler_identity, {}))
        versions: set[ApiVersion] = set()
        for generations in self._bindings.values():
            versions.update(generations)
        return sorted(versions)

    def _unsupported(self, requested: str, handler_identity: str | None) -> UnsupportedVersionError:
        supported = [str(v) for v in self.supported_versions(handler_identity)]
        logger.info(
            "version.unsupported",
            extra={"requested_version": requested, "handler": handler_identity},
        )
        return UnsupportedVersionError(
            code="unsupported_api_version",
            message=(
                f"API version '{requested}' is not supported. "
                f"Supported versions: {', '.join(supported) or 'none'}"
            ),
            details={"requested_version": requested, "supported_versions": supported},
        )

    def negotiate(self, header_value: str | None) -> ApiVersion:
        """Validate a requested version against every registered version.

        Returns the requested version, or the lowest registered one when the
        header is absent.
        """

        supported = self.supported_versions()
        if not header_value or not header_value.strip():
            if not supported:
                raise self._unsupported("", None)
            return supported[0]
        try:
            requested = ApiVersion.parse(header_value)
        except UnsupportedVersionError:
            raise self._unsupported(header_value, None) from None
        if requested not in supported:
            raise self._unsupported(header_value, None)
        return requested

    def resolve(self, handler_identity: str, header_value: str | None) -> VersionBinding:
        """Pick the handler generation for one request.

        Raises:
            UnsupportedVersionError: Unknown/malformed version, or no
                generation registered for it.
        """

        generations = self._bindings.get(handler_identity)
        if not generations:
            raise KeyError(f"No handler registered as '{handler_identity}'")

        if not header_value or not header_value.strip():
            version = min(generations)
        else:
            try:
                version = ApiVersion.parse(header_value)
            except UnsupportedVersionError:
                raise self._unsupported(header_value, handler_identity) from None
            if version not in generations:
                raise self._unsupported(header_value, handler_identity)

        return VersionBinding(
            handler_identity=handler_identity,
            version=version,
            handler=generations[version],
        )


def resolve_for_request(request: Any, handler_identity: str) -> VersionBinding:
    """Resolve a handler generation from the request's version header."""

    governance = request.app.state.governance
    header_value = request.headers.get(governance.settings.versioning.header_name)
    return governance.version_router.resolve(handler_identity, header_value)
