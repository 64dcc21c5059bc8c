"""Composition root: dependency injection via FastAPI lifespan."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, cast

import httpx
import structlog
from fastapi import FastAPI

from hlsrelay.application.use_cases import StreamRelayUseCase
from hlsrelay.infrastructure.config.schema import AppConfig
from hlsrelay.infrastructure.relay import (
    HttpxDelegateClient,
    HttpxUpstreamFetcher,
    RefererResolver,
    classify_content,
    decode_overlay,
    encode_overlay,
    rewrite_playlist,
)
from hlsrelay.interfaces.app_state import AppState

log = structlog.get_logger(__name__)

_DRAIN_TIMEOUT_SECONDS = 10.0


def _build_resolver(config: AppConfig) -> RefererResolver:
    relay = config.relay
    return RefererResolver(
        rules=relay.build_rules(),
        default_referer=relay.default_referer,
        candidates=relay.build_candidates(),
    )


def _build_delegate(
    http_client: httpx.AsyncClient, config: AppConfig
) -> HttpxDelegateClient | None:
    base_url = config.relay.delegate_base_url
    if not base_url:
        return None
    return HttpxDelegateClient(
        http_client,
        base_url,
        timeout=config.relay.delegate_timeout_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan Hook: Initialize and cleanup all resources (DI Composition Root).

    Order matters:
        1. HTTP client (shared by fetcher and delegate)
        2. Referer resolver (from the configured rule table)
        3. Delegate client (optional)
        4. Stream relay use case
    """
    state = cast(AppState, app.state)
    config = state.config

    # 1) HTTP client, one connection pool for every relay request
    state.http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(config.http_timeout_seconds),
        headers={"User-Agent": config.http_user_agent},
        follow_redirects=config.http_follow_redirects,
    )
    log.info("http_client_initialized", timeout=config.http_timeout_seconds)

    # 2) Referer resolver
    state.referer_resolver = _build_resolver(config)
    log.info(
        "referer_resolver_initialized",
        rules=len(state.referer_resolver.rules),
        candidates=len(config.relay.referer_candidates),
    )

    # 3) Primary backend delegate
    state.delegate = _build_delegate(state.http_client, config)
    if state.delegate is not None:
        log.info("delegate_enabled", base_url=config.relay.delegate_base_url)

    # 4) Use case
    state.stream_relay_uc = StreamRelayUseCase(
        fetcher=HttpxUpstreamFetcher(
            state.http_client,
            timeout=config.http_timeout_seconds,
            follow_redirects=config.http_follow_redirects,
        ),
        resolver=state.referer_resolver,
        classify_fn=classify_content,
        rewrite_fn=rewrite_playlist,
        decode_overlay_fn=decode_overlay,
        encode_overlay_fn=encode_overlay,
        user_agent=config.http_user_agent,
        segment_max_age_seconds=config.relay.segment_max_age_seconds,
        delegate=state.delegate,
    )

    state.graceful_shutdown.mark_ready()
    log.info("app_startup_complete")

    try:
        yield
    finally:
        await state.graceful_shutdown.wait_for_drain(timeout=_DRAIN_TIMEOUT_SECONDS)

        await state.http_client.aclose()
        log.info("http_client_closed")

        log.info("app_shutdown_complete")
