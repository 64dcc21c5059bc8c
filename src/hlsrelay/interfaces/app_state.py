"""Application state container for FastAPI dependency injection."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
from starlette.datastructures import State

from hlsrelay.infrastructure.config import AppConfig
from hlsrelay.infrastructure.graceful_shutdown import GracefulShutdown

if TYPE_CHECKING:
    from hlsrelay.application.use_cases import StreamRelayUseCase
    from hlsrelay.domain.ports import DelegatePort
    from hlsrelay.infrastructure.relay import RefererResolver


class AppState(State):
    """FastAPI application state with all DI resources.

    Lifecycle managed by composition.py::lifespan().
    """

    # Configuration
    config: AppConfig

    # Infrastructure
    http_client: httpx.AsyncClient
    referer_resolver: RefererResolver

    # Primary backend delegate (optional, relay.delegate_base_url)
    delegate: DelegatePort | None

    # Application Services
    stream_relay_uc: StreamRelayUseCase

    # Graceful shutdown (request tracking + drain)
    graceful_shutdown: GracefulShutdown
