"""Tests for the /stream router (request mapping and error responses)."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from hlsrelay.domain.entities import (
    ClientDisconnected,
    RelayBadRequest,
    RelayError,
    RelayInternalError,
    RelayRequest,
    RelayResult,
    ResponseKind,
    UpstreamEmptyPlaylist,
    UpstreamInterstitial,
    UpstreamRejected,
    UpstreamTimeout,
)
from hlsrelay.infrastructure.config import AppConfig
from hlsrelay.infrastructure.graceful_shutdown import GracefulShutdown
from hlsrelay.interfaces.api.stream.router import error_response, router


def _make_app(config: AppConfig, use_case: AsyncMock) -> FastAPI:
    """Create a minimal FastAPI app with the stream router."""
    app = FastAPI()
    app.include_router(router)
    app.state.config = config
    app.state.stream_relay_uc = use_case
    app.state.graceful_shutdown = GracefulShutdown()
    return app


def _text_result() -> RelayResult:
    return RelayResult(
        status_code=200,
        kind=ResponseKind.PLAYLIST,
        content_type="application/vnd.apple.mpegurl",
        headers={"Cache-Control": "no-cache"},
        body=b"#EXTM3U\n",
    )


def _sent_request(use_case: AsyncMock) -> RelayRequest:
    use_case.execute.assert_awaited_once()
    return use_case.execute.call_args[0][0]


class TestRequestMapping:
    def test_query_and_range_forwarded(self, app_config: AppConfig) -> None:
        uc = AsyncMock()
        uc.execute.return_value = _text_result()
        client = TestClient(_make_app(app_config, uc))

        resp = client.get(
            "/stream",
            params={"url": "https://cdn.example/a.m3u8", "h": "tok"},
            headers={"range": "bytes=0-"},
        )

        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == "*"
        sent = _sent_request(uc)
        assert sent.url == "https://cdn.example/a.m3u8"
        assert sent.token == "tok"
        assert sent.range_header == "bytes=0-"
        assert sent.relay_base == ""
        assert sent.is_disconnected is not None

    def test_public_base_url_wins(self, app_config: AppConfig) -> None:
        config = app_config.model_copy(
            update={
                "relay": app_config.relay.model_copy(
                    update={
                        "public_base_url": "https://pub.example",
                        "absolute_playlist_urls": True,
                    }
                )
            }
        )
        uc = AsyncMock()
        uc.execute.return_value = _text_result()

        TestClient(_make_app(config, uc)).get("/stream", params={"url": "https://x/"})

        assert _sent_request(uc).relay_base == "https://pub.example"

    def test_forwarded_proto_first_value(self, app_config: AppConfig) -> None:
        config = app_config.model_copy(
            update={
                "relay": app_config.relay.model_copy(
                    update={"absolute_playlist_urls": True}
                )
            }
        )
        uc = AsyncMock()
        uc.execute.return_value = _text_result()

        TestClient(_make_app(config, uc)).get(
            "/stream",
            params={"url": "https://x/"},
            headers={"x-forwarded-proto": "https, http", "host": "relay.example:8443"},
        )

        assert _sent_request(uc).relay_base == "https://relay.example:8443"

    def test_binary_result_streams(self, app_config: AppConfig) -> None:
        async def _chunks() -> AsyncIterator[bytes]:
            yield b"ab"
            yield b"cd"

        uc = AsyncMock()
        uc.execute.return_value = RelayResult(
            status_code=200,
            kind=ResponseKind.BINARY_SEGMENT,
            content_type="video/mp2t",
            headers={"Cache-Control": "public, max-age=3600"},
            stream=_chunks(),
        )

        resp = TestClient(_make_app(app_config, uc)).get(
            "/stream", params={"url": "https://x/seg.ts"}
        )

        assert resp.content == b"abcd"
        assert resp.headers["cross-origin-resource-policy"] == "cross-origin"
        assert resp.headers["cache-control"] == "public, max-age=3600"


# ---------------------------------------------------------------------------
# error_response
# ---------------------------------------------------------------------------


class TestErrorResponse:
    @pytest.mark.parametrize(
        ("err", "status", "body"),
        [
            (
                RelayBadRequest("Missing url parameter"),
                400,
                {"error": "Missing url parameter"},
            ),
            (
                UpstreamRejected(403, "Forbidden"),
                403,
                {"error": "Upstream error: Forbidden", "status": 403},
            ),
            (
                UpstreamRejected(None, "Upstream timeout"),
                502,
                {"error": "Upstream error: Upstream timeout", "status": None},
            ),
            (
                UpstreamInterstitial("CDN returned HTML instead of video data"),
                502,
                {"error": "CDN returned HTML instead of video data"},
            ),
            (
                UpstreamTimeout("Upstream timeout"),
                504,
                {"error": "Upstream timeout", "message": "Upstream timeout"},
            ),
            (
                RelayInternalError("bad playlist", stage="rewrite"),
                500,
                {"error": "Proxy error", "message": "bad playlist"},
            ),
            (
                UpstreamEmptyPlaylist("Empty M3U8 response from upstream"),
                502,
                {"error": "Empty M3U8 response from upstream"},
            ),
            (
                ClientDisconnected("Client disconnected"),
                499,
                {"error": "Client disconnected"},
            ),
        ],
    )
    def test_mapping(
        self, err: RelayError, status: int, body: dict[str, object]
    ) -> None:
        resp = error_response(err, host="cdn.example")
        assert resp.status_code == status
        assert resp.headers["access-control-allow-origin"] == "*"
        assert json.loads(resp.body) == body

    def test_use_case_error_becomes_json(self, app_config: AppConfig) -> None:
        uc = AsyncMock()
        uc.execute.side_effect = UpstreamTimeout("Upstream timeout")

        resp = TestClient(_make_app(app_config, uc)).get(
            "/stream", params={"url": "https://x/a.ts"}
        )

        assert resp.status_code == 504
        assert resp.json()["error"] == "Upstream timeout"
