"""Upstream header construction and the referer retry cascade.

The cascade is a plain function from ``(send, candidates)`` to
``(reply, winning candidate)``.  It knows nothing about the transport:
``send`` is any coroutine taking a header mapping and returning an
``UpstreamReply``, which keeps it unit-testable with fakes.

Attempts are strictly sequential and un-delayed.  Trying referers in
parallel would multiply upstream load and trip CDN rate limits, and a
CDN rejection is instant, so backing off buys nothing.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass

import structlog

from hlsrelay.domain.entities import (
    HeaderOverlay,
    RefererCandidate,
    RelayInternalError,
    UpstreamTimeout,
)
from hlsrelay.domain.ports import UpstreamReply

log = structlog.get_logger(__name__)

PLAYLIST_MARKER = "#EXTM3U"

# Overlay entries that would break the upstream request if forwarded.
_NEVER_FORWARD = frozenset({"host", "content-length", "connection", "range"})

SendFn = Callable[[Mapping[str, str]], Awaitable[UpstreamReply]]
AcceptFn = Callable[[UpstreamReply], Awaitable[bool]]
StopFn = Callable[[], Awaitable[bool]]


def set_header(headers: dict[str, str], name: str, value: str) -> None:
    """Set *name* on *headers*, replacing any differently-cased duplicate."""
    for key in [k for k in headers if k.lower() == name.lower()]:
        del headers[key]
    headers[name] = value


def drop_header(headers: dict[str, str], name: str) -> None:
    for key in [k for k in headers if k.lower() == name.lower()]:
        del headers[key]


def build_upstream_headers(
    user_agent: str,
    primary: RefererCandidate,
    overlay: HeaderOverlay,
    range_header: str | None = None,
) -> dict[str, str]:
    """Header set for the initial upstream attempt.

    Browser-like defaults plus the resolved Referer/Origin, then the
    caller's overlay on top.  Overlay rules:

    - empty values are ignored, so they cannot erase a computed header;
    - the one exception is an empty ``Origin`` next to an explicit
      ``Referer``, which removes the Origin header (the "bare referer"
      variant some CDNs require);
    - the inbound ``Range`` header always wins and is forwarded verbatim.
    """
    headers: dict[str, str] = {
        "User-Agent": user_agent,
        "Accept": "*/*",
        "Accept-Language": "en-US,en;q=0.9",
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
        "Referer": primary.referer,
    }
    if primary.origin:
        headers["Origin"] = primary.origin

    for name, raw_value in overlay.headers.items():
        lname = name.lower()
        if lname in _NEVER_FORWARD:
            continue
        value = raw_value.strip()
        if not value:
            if lname == "origin" and overlay.referer:
                drop_header(headers, "Origin")
            continue
        set_header(headers, name, value)

    if range_header:
        set_header(headers, "Range", range_header)
    return headers


def apply_candidate(
    headers: Mapping[str, str],
    candidate: RefererCandidate,
    *,
    with_origin: bool = True,
) -> dict[str, str]:
    """Copy *headers* with Referer/Origin replaced by *candidate*."""
    out = dict(headers)
    set_header(out, "Referer", candidate.referer)
    if with_origin and candidate.origin:
        set_header(out, "Origin", candidate.origin)
    else:
        drop_header(out, "Origin")
    return out


async def accept_playlist(reply: UpstreamReply) -> bool:
    """2xx whose body starts with ``#EXTM3U`` (body is read and cached)."""
    if not reply.is_success:
        return False
    body = await reply.read()
    text = body.decode("utf-8", errors="replace").lstrip("\ufeff \t\r\n")
    return text.startswith(PLAYLIST_MARKER)


async def accept_media(reply: UpstreamReply) -> bool:
    """2xx that is not an HTML page (body is not read)."""
    return reply.is_success and "text/html" not in reply.content_type.lower()


@dataclass(frozen=True)
class CascadeOutcome:
    """Result of one cascade pass.

    ``reply``/``winner`` are set on success.  On failure ``last_status``
    and ``last_reason`` describe the last attempt that produced a
    response (``None`` if every attempt failed at the transport level).
    ``abandoned`` is set when the pass stopped because the caller left.
    """

    reply: UpstreamReply | None
    winner: RefererCandidate | None
    attempts: int
    last_status: int | None = None
    last_reason: str = ""
    abandoned: bool = False

    @property
    def succeeded(self) -> bool:
        return self.reply is not None


async def run_referer_cascade(
    send: SendFn,
    base_headers: Mapping[str, str],
    candidates: Sequence[RefererCandidate],
    accept: AcceptFn,
    *,
    with_origin: bool = True,
    should_stop: StopFn | None = None,
) -> CascadeOutcome:
    """Try each candidate in order until *accept* approves a reply.

    Rejected replies are closed before the next attempt.  Transport
    failures of a single attempt (timeouts included) count as a
    rejection and the cascade moves on.  The returned ``winner`` has
    ``origin=None`` when the pass ran without an Origin header.

    *should_stop* is awaited before every attempt; once it returns True
    the pass ends with ``abandoned`` set and no further upstream request.
    """
    last_status: int | None = None
    last_reason = ""
    attempts = 0

    for candidate in candidates:
        if should_stop is not None and await should_stop():
            log.info("cascade_abandoned", referer=candidate.referer, attempts=attempts)
            return CascadeOutcome(
                reply=None,
                winner=None,
                attempts=attempts,
                last_status=last_status,
                last_reason=last_reason,
                abandoned=True,
            )
        headers = apply_candidate(base_headers, candidate, with_origin=with_origin)
        attempts += 1
        try:
            reply = await send(headers)
        except (UpstreamTimeout, RelayInternalError) as e:
            last_reason = e.message
            log.debug(
                "cascade_attempt_failed",
                referer=candidate.referer,
                with_origin=with_origin,
                error=type(e).__name__,
            )
            continue

        try:
            accepted = await accept(reply)
        except (UpstreamTimeout, RelayInternalError) as e:
            accepted = False
            last_reason = e.message

        if accepted:
            winner = (
                candidate
                if with_origin
                else RefererCandidate(referer=candidate.referer, origin=None)
            )
            log.info(
                "cascade_succeeded",
                referer=candidate.referer,
                with_origin=with_origin,
                attempts=attempts,
            )
            return CascadeOutcome(reply=reply, winner=winner, attempts=attempts)

        last_status = reply.status_code
        last_reason = reply.reason or last_reason
        await reply.aclose()
        log.debug(
            "cascade_attempt_rejected",
            referer=candidate.referer,
            with_origin=with_origin,
            status=reply.status_code,
        )

    return CascadeOutcome(
        reply=None,
        winner=None,
        attempts=attempts,
        last_status=last_status,
        last_reason=last_reason,
    )
