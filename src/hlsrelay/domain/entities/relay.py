"""Domain entities for the stream relay.

Pure value objects and the relay error taxonomy, with no framework
dependencies, no I/O.  Everything here is created per request and
discarded at its end, except ``RefererRule`` tables which are built once
from configuration and never mutated.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal
from urllib.parse import urlsplit

ErrorKind = Literal[
    "bad-request",
    "upstream-rejected",
    "upstream-interstitial",
    "upstream-empty",
    "upstream-timeout",
    "client-disconnected",
    "internal",
]


def origin_of(url: str) -> str | None:
    """Return ``scheme://host[:port]`` of *url*, or None if it has none."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}"


class ResponseKind(str, Enum):
    """How an upstream response is handled."""

    BINARY_SEGMENT = "binary-segment"  # media bytes, streamed through
    PLAYLIST = "playlist"  # M3U8 text, rewritten
    TEXT = "text"  # other text, returned verbatim
    ERROR_PAGE = "error-page"  # HTML masquerading as a segment
    OPAQUE_ERROR = "opaque-error"  # non-2xx, retryable


@dataclass(frozen=True)
class RelayTarget:
    """A parsed absolute URL the relay will fetch."""

    url: str
    scheme: str
    host: str
    path: str

    @classmethod
    def parse(cls, raw: str) -> RelayTarget:
        """Parse *raw* into a target.

        Raises ``RelayBadRequest`` unless it is an absolute http(s) URL.
        """
        try:
            parts = urlsplit(raw.strip())
            hostname = parts.hostname or ""
            port = parts.port
            hostname.encode("idna")
        except ValueError as e:  # bad port, IDNA failure (UnicodeError)
            raise RelayBadRequest("Invalid url parameter") from e
        if (
            parts.scheme.lower() not in ("http", "https")
            or not hostname
            or any(c.isspace() for c in hostname)
            or port == 0
        ):
            raise RelayBadRequest("Invalid url parameter")
        return cls(
            url=raw.strip(),
            scheme=parts.scheme.lower(),
            host=parts.netloc,
            path=parts.path,
        )

    @property
    def hostname(self) -> str:
        return (urlsplit(self.url).hostname or "").lower()

    @property
    def origin(self) -> str:
        return f"{self.scheme}://{self.host}"

    @property
    def path_lower(self) -> str:
        return self.path.lower()


@dataclass(frozen=True)
class RefererRule:
    """One row of the hostname-pattern table.

    ``patterns`` are matched as lower-case substrings of the target
    hostname; the first rule with any matching pattern wins.
    """

    referer: str
    patterns: tuple[str, ...]

    def matches(self, hostname: str) -> bool:
        host = hostname.lower()
        return any(p in host for p in self.patterns)


@dataclass(frozen=True)
class RefererCandidate:
    """A ``(Referer, Origin)`` pair sent to the upstream CDN."""

    referer: str
    origin: str | None = None


@dataclass(frozen=True)
class HeaderOverlay:
    """Caller-supplied header overrides, keyed case-insensitively.

    ``token`` keeps the raw ``h`` query value so it can be propagated
    verbatim when the caller's headers are the ones that worked.
    """

    headers: dict[str, str] = field(default_factory=dict)
    token: str = ""

    def get(self, name: str) -> str | None:
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None

    @property
    def referer(self) -> str | None:
        value = self.get("referer")
        return value.strip() if value and value.strip() else None

    def with_candidate(self, candidate: RefererCandidate) -> HeaderOverlay:
        """Return a copy whose Referer/Origin are replaced by *candidate*.

        A candidate without an origin stores ``Origin: ""`` so the next
        hop also omits the header.
        """
        kept = {
            k: v
            for k, v in self.headers.items()
            if k.lower() not in ("referer", "origin")
        }
        kept["Referer"] = candidate.referer
        kept["Origin"] = candidate.origin or ""
        return HeaderOverlay(headers=kept)

    def __bool__(self) -> bool:
        return bool(self.headers)


@dataclass(frozen=True)
class RelayRequest:
    """One inbound relay request, transport-independent.

    ``relay_base`` is the prefix for rewritten playlist URIs ("" for
    relative URIs).  ``is_disconnected`` reports whether the caller has
    gone away; the referer cascade stops retrying once it returns True.
    """

    url: str | None
    token: str | None = None
    range_header: str | None = None
    relay_base: str = ""
    is_disconnected: Callable[[], Awaitable[bool]] | None = None


@dataclass(frozen=True)
class RelayResult:
    """Outcome of one relay request, ready for response assembly.

    Exactly one of ``body`` (fully read text/playlist) or ``stream``
    (async byte iterator for binary pass-through) is set.
    """

    status_code: int
    kind: ResponseKind
    content_type: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | None = None
    stream: AsyncIterator[bytes] | None = None
    working_overlay: HeaderOverlay | None = None


class RelayError(Exception):
    """Base error for the relay use case."""

    kind: ErrorKind = "internal"
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class RelayBadRequest(RelayError):
    kind: ErrorKind = "bad-request"
    status_code = 400


class UpstreamRejected(RelayError):
    """All referer candidates were exhausted without an acceptable response."""

    kind: ErrorKind = "upstream-rejected"

    def __init__(self, status: int | None, reason: str) -> None:
        super().__init__(f"Upstream error: {reason}")
        self.upstream_status = status
        self.reason = reason
        self.status_code = status if status is not None and status >= 400 else 502


class UpstreamInterstitial(RelayError):
    """The CDN kept serving an HTML page where media bytes were expected."""

    kind: ErrorKind = "upstream-interstitial"
    status_code = 502


class UpstreamEmptyPlaylist(RelayError):
    """A 2xx playlist response with an empty body."""

    kind: ErrorKind = "upstream-empty"
    status_code = 502


class UpstreamTimeout(RelayError):
    kind: ErrorKind = "upstream-timeout"
    status_code = 504


class ClientDisconnected(RelayError):
    """The caller went away while the referer cascade was still running."""

    kind: ErrorKind = "client-disconnected"
    status_code = 499


class RelayInternalError(RelayError):
    """Unexpected failure during fetch, decode or rewrite."""

    kind: ErrorKind = "internal"
    status_code = 500

    def __init__(self, message: str, *, stage: str) -> None:
        super().__init__(message)
        self.stage = stage
