"""Stream relay endpoint (``GET``/``OPTIONS /stream``)."""

from __future__ import annotations

from typing import Any, cast

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.responses import Response, StreamingResponse

from hlsrelay.domain.entities import (
    RelayError,
    RelayInternalError,
    RelayRequest,
    RelayTarget,
    ResponseKind,
    UpstreamRejected,
    UpstreamTimeout,
)
from hlsrelay.infrastructure.config import AppConfig
from hlsrelay.interfaces.app_state import AppState

log = structlog.get_logger(__name__)

router = APIRouter(tags=["stream"])

CORS_HEADERS: dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "*",
}


def relay_base_for(request: Request, config: AppConfig) -> str:
    """Prefix for rewritten playlist URIs ("" keeps them relative)."""
    if config.relay.public_base_url:
        return config.relay.public_base_url
    if not config.relay.absolute_playlist_urls:
        return ""
    forwarded = request.headers.get("x-forwarded-proto", "")
    scheme = forwarded.split(",")[0].strip() or request.url.scheme
    host = request.headers.get("host") or request.url.netloc
    return f"{scheme}://{host}"


def _target_host(raw_url: str | None) -> str:
    if not raw_url:
        return ""
    try:
        return RelayTarget.parse(raw_url).hostname
    except RelayError:
        return ""


def error_response(err: RelayError, *, host: str = "") -> JSONResponse:
    """Map a relay error to its JSON body and status."""
    body: dict[str, Any]
    if isinstance(err, UpstreamRejected):
        body = {"error": err.message, "status": err.upstream_status}
        log.warning("relay_rejected", host=host, status=err.upstream_status)
    elif isinstance(err, UpstreamTimeout):
        body = {"error": "Upstream timeout", "message": err.message}
        log.warning("relay_timeout", host=host)
    elif isinstance(err, RelayInternalError):
        body = {"error": "Proxy error", "message": err.message}
        log.error("relay_internal_error", host=host, stage=err.stage)
    elif err.kind == "internal":
        body = {"error": "Proxy error", "message": err.message}
        log.error("relay_internal_error", host=host, stage="unknown")
    else:
        body = {"error": err.message}
        if err.kind == "client-disconnected":
            log.info("relay_client_disconnected", host=host)
        elif err.kind != "bad-request":
            log.warning("relay_failed", host=host, kind=err.kind)

    return JSONResponse(content=body, status_code=err.status_code, headers=CORS_HEADERS)


@router.options("/stream")
async def stream_preflight(request: Request) -> Response:
    """CORS preflight, answered without any upstream I/O."""
    state = cast(AppState, request.app.state)
    headers = {
        **CORS_HEADERS,
        "Access-Control-Max-Age": str(state.config.relay.preflight_max_age_seconds),
    }
    return Response(status_code=204, headers=headers)


@router.get("/stream")
async def stream_relay(
    request: Request,
    url: str | None = None,
    h: str | None = None,
) -> Response:
    """Relay one playlist, segment or key through the referer cascade."""
    state = cast(AppState, request.app.state)
    relay_request = RelayRequest(
        url=url,
        token=h,
        range_header=request.headers.get("range"),
        relay_base=relay_base_for(request, state.config),
        is_disconnected=request.is_disconnected,
    )

    try:
        result = await state.stream_relay_uc.execute(relay_request)
    except RelayError as e:
        return error_response(e, host=_target_host(url))

    headers = {**CORS_HEADERS, **result.headers}

    if result.kind is ResponseKind.BINARY_SEGMENT and result.stream is not None:
        headers["Cross-Origin-Resource-Policy"] = "cross-origin"
        return StreamingResponse(
            state.graceful_shutdown.track_stream(result.stream),
            status_code=result.status_code,
            media_type=result.content_type,
            headers=headers,
        )

    return Response(
        content=result.body or b"",
        status_code=result.status_code,
        media_type=result.content_type or None,
        headers=headers,
    )
