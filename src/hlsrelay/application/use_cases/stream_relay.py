"""Stream relay use case.

target URL + header overlay -> (delegate) -> initial fetch
-> referer cascade -> classify -> rewrite / pass through.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Protocol

import structlog

from hlsrelay.application.referer_cascade import (
    AcceptFn,
    CascadeOutcome,
    SendFn,
    StopFn,
    accept_media,
    accept_playlist,
    build_upstream_headers,
    run_referer_cascade,
)
from hlsrelay.domain.entities import (
    ClientDisconnected,
    HeaderOverlay,
    RefererCandidate,
    RelayBadRequest,
    RelayInternalError,
    RelayRequest,
    RelayResult,
    RelayTarget,
    ResponseKind,
    UpstreamEmptyPlaylist,
    UpstreamInterstitial,
    UpstreamRejected,
)
from hlsrelay.domain.ports import DelegatePort, UpstreamFetcherPort, UpstreamReply

# ---------------------------------------------------------------------------
# Protocols: what this use case needs from its collaborators.
# ---------------------------------------------------------------------------


class _RefererResolver(Protocol):
    def resolve(
        self, hostname: str, override: str | None = None
    ) -> RefererCandidate: ...

    def candidates_for(self, target: RelayTarget) -> tuple[RefererCandidate, ...]: ...


# Type aliases for injected pure functions.
_ClassifyFn = Callable[[str, str, int], ResponseKind]
_RewriteFn = Callable[[str, str, str, str], "str | None"]
_DecodeOverlayFn = Callable[["str | None"], HeaderOverlay]
_EncodeOverlayFn = Callable[[HeaderOverlay], str]

log = structlog.get_logger(__name__)

PLAYLIST_CONTENT_TYPE = "application/vnd.apple.mpegurl"
_DEFAULT_BINARY_TYPE = "application/octet-stream"
_PASSTHROUGH_HEADERS = (
    "content-length",
    "content-range",
    "accept-ranges",
    "content-encoding",
)

_INTERSTITIAL_MESSAGE = "CDN returned HTML instead of video data"
_EMPTY_PLAYLIST_MESSAGE = "Empty M3U8 response from upstream"
_DISCONNECTED_MESSAGE = "Client disconnected"


class StreamRelayUseCase:
    """Fetch one upstream resource on behalf of a player.

    Flow:
        1. Validate the target and decode the header overlay.
        2. Try the primary backend delegate, when configured.
        3. Initial attempt with the resolved Referer/Origin.
        4. On rejection, run the referer cascade (a second pass without
           Origin for playlists).
        5. Classify the accepted reply; HTML where a segment was expected
           triggers a media cascade.
        6. Rewrite playlists with the working overlay, stream binaries.
    """

    def __init__(
        self,
        *,
        fetcher: UpstreamFetcherPort,
        resolver: _RefererResolver,
        classify_fn: _ClassifyFn,
        rewrite_fn: _RewriteFn,
        decode_overlay_fn: _DecodeOverlayFn,
        encode_overlay_fn: _EncodeOverlayFn,
        user_agent: str,
        segment_max_age_seconds: int = 3600,
        delegate: DelegatePort | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._resolver = resolver
        self._classify_fn = classify_fn
        self._rewrite_fn = rewrite_fn
        self._decode_overlay_fn = decode_overlay_fn
        self._encode_overlay_fn = encode_overlay_fn
        self._user_agent = user_agent
        self._segment_max_age = segment_max_age_seconds
        self._delegate = delegate

    async def execute(self, request: RelayRequest) -> RelayResult:
        """Relay *request*.

        Raises:
            RelayBadRequest: missing or invalid ``url``.
            UpstreamRejected: every referer candidate was refused.
            UpstreamInterstitial: the CDN kept answering with HTML.
            UpstreamEmptyPlaylist: a 2xx playlist came back empty.
            ClientDisconnected: the caller left during the cascade.
            UpstreamTimeout: the initial attempt timed out.
            RelayInternalError: transport, decode or rewrite failure.
        """
        if not request.url or not request.url.strip():
            raise RelayBadRequest("Missing url parameter")
        target = RelayTarget.parse(request.url)
        overlay = self._decode_overlay_fn(request.token)

        if self._delegate is not None:
            result = await self._try_delegate(target, overlay, request)
            if result is not None:
                return result

        primary = self._resolver.resolve(target.hostname, overlay.referer)
        if primary.origin is None:
            primary = RefererCandidate(referer=primary.referer, origin=target.origin)
        headers = build_upstream_headers(
            self._user_agent, primary, overlay, request.range_header
        )

        async def send(h: Mapping[str, str]) -> UpstreamReply:
            return await self._fetcher.fetch(target.url, h)

        # Initial attempt: timeouts and transport errors propagate.
        reply = await send(headers)
        working = overlay

        kind = self._classify_fn(reply.content_type, target.path, reply.status_code)
        if kind is ResponseKind.OPAQUE_ERROR:
            reply, working = await self._recover_rejected(
                target, overlay, headers, reply, send, request.is_disconnected
            )
            kind = self._classify_fn(
                reply.content_type, target.path, reply.status_code
            )

        if kind is ResponseKind.ERROR_PAGE:
            await reply.aclose()
            log.info("relay_interstitial_detected", host=target.hostname)
            outcome = await run_referer_cascade(
                send,
                headers,
                self._resolver.candidates_for(target),
                accept_media,
                should_stop=request.is_disconnected,
            )
            if outcome.abandoned:
                raise ClientDisconnected(_DISCONNECTED_MESSAGE)
            if not outcome.succeeded:
                raise UpstreamInterstitial(_INTERSTITIAL_MESSAGE)
            assert outcome.reply is not None
            reply = outcome.reply
            working = self._overlay_for(overlay, outcome)
            kind = self._classify_fn(
                reply.content_type, target.path, reply.status_code
            )
            if kind is ResponseKind.ERROR_PAGE:
                await reply.aclose()
                raise UpstreamInterstitial(_INTERSTITIAL_MESSAGE)

        token = self._token_for(overlay, working)
        return await self._assemble(
            reply, kind, target, request.relay_base, token, working
        )

    # -----------------------------------------------------------------------
    # Retry handling
    # -----------------------------------------------------------------------

    async def _recover_rejected(
        self,
        target: RelayTarget,
        overlay: HeaderOverlay,
        headers: dict[str, str],
        rejected: UpstreamReply,
        send: SendFn,
        should_stop: StopFn | None = None,
    ) -> tuple[UpstreamReply, HeaderOverlay]:
        first_status = rejected.status_code
        first_reason = rejected.reason
        await rejected.aclose()

        is_playlist = target.path_lower.endswith(".m3u8")
        accept: AcceptFn = accept_playlist if is_playlist else accept_media
        candidates = self._resolver.candidates_for(target)
        log.info(
            "relay_cascade_started",
            host=target.hostname,
            status=first_status,
            candidates=len(candidates),
        )

        outcome = await run_referer_cascade(
            send, headers, candidates, accept, should_stop=should_stop
        )
        attempts = 1 + outcome.attempts
        if not outcome.succeeded and not outcome.abandoned and is_playlist:
            outcome = await run_referer_cascade(
                send,
                headers,
                candidates,
                accept,
                with_origin=False,
                should_stop=should_stop,
            )
            attempts += outcome.attempts

        if outcome.abandoned:
            raise ClientDisconnected(_DISCONNECTED_MESSAGE)

        if not outcome.succeeded:
            status = outcome.last_status or first_status
            reason = outcome.last_reason or first_reason or str(status)
            log.warning(
                "relay_upstream_rejected",
                host=target.hostname,
                status=status,
                attempts=attempts,
            )
            raise UpstreamRejected(status, reason)

        assert outcome.reply is not None
        return outcome.reply, self._overlay_for(overlay, outcome)

    @staticmethod
    def _overlay_for(overlay: HeaderOverlay, outcome: CascadeOutcome) -> HeaderOverlay:
        assert outcome.winner is not None
        return overlay.with_candidate(outcome.winner)

    def _token_for(self, overlay: HeaderOverlay, working: HeaderOverlay) -> str:
        # Caller's headers worked: propagate their token unchanged.
        if working is overlay:
            return overlay.token
        return self._encode_overlay_fn(working)

    # -----------------------------------------------------------------------
    # Delegate
    # -----------------------------------------------------------------------

    async def _try_delegate(
        self, target: RelayTarget, overlay: HeaderOverlay, request: RelayRequest
    ) -> RelayResult | None:
        assert self._delegate is not None
        reply = await self._delegate.fetch(
            target.url, request.token or "", request.range_header
        )
        if reply is None:
            return None

        kind = self._classify_fn(reply.content_type, target.path, reply.status_code)
        if kind in (ResponseKind.OPAQUE_ERROR, ResponseKind.ERROR_PAGE):
            await reply.aclose()
            log.info("delegate_reply_ignored", host=target.hostname, kind=kind.value)
            return None
        try:
            return await self._assemble(
                reply, kind, target, request.relay_base, overlay.token, overlay
            )
        except UpstreamEmptyPlaylist:
            log.info("delegate_reply_ignored", host=target.hostname, kind="empty")
            return None

    # -----------------------------------------------------------------------
    # Response assembly
    # -----------------------------------------------------------------------

    async def _assemble(
        self,
        reply: UpstreamReply,
        kind: ResponseKind,
        target: RelayTarget,
        relay_base: str,
        token: str,
        working: HeaderOverlay,
    ) -> RelayResult:
        if kind is ResponseKind.BINARY_SEGMENT:
            headers = {
                "Cache-Control": f"public, max-age={self._segment_max_age}",
            }
            for name in _PASSTHROUGH_HEADERS:
                value = reply.headers.get(name)
                if value:
                    headers[name] = value
            return RelayResult(
                status_code=reply.status_code,
                kind=kind,
                content_type=reply.content_type or _DEFAULT_BINARY_TYPE,
                headers=headers,
                stream=reply.iter_raw(),
                working_overlay=working,
            )

        try:
            body = await reply.read()
        finally:
            await reply.aclose()

        if kind is ResponseKind.PLAYLIST:
            text = body.decode("utf-8", errors="replace")
            if not text.strip("\ufeff \t\r\n"):
                raise UpstreamEmptyPlaylist(_EMPTY_PLAYLIST_MESSAGE)
            try:
                rewritten = self._rewrite_fn(text, target.url, relay_base, token)
            except ValueError as e:
                raise RelayInternalError(str(e), stage="rewrite") from e
            if rewritten is not None:
                return RelayResult(
                    status_code=200,
                    kind=ResponseKind.PLAYLIST,
                    content_type=PLAYLIST_CONTENT_TYPE,
                    headers={"Cache-Control": "no-cache"},
                    body=rewritten.encode("utf-8"),
                    working_overlay=working,
                )
            log.info("relay_playlist_passthrough", host=target.hostname)

        return RelayResult(
            status_code=reply.status_code,
            kind=ResponseKind.TEXT,
            content_type=reply.content_type,
            body=body,
            working_overlay=working,
        )
