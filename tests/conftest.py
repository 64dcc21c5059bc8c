"""Shared test fixtures for the hlsrelay test suite."""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field

import pytest

from hlsrelay.domain.entities import RefererCandidate, RefererRule
from hlsrelay.infrastructure.config import AppConfig
from hlsrelay.infrastructure.relay import RefererResolver

# ---------------------------------------------------------------------------
# Fake upstream reply (satisfies the UpstreamReply protocol)
# ---------------------------------------------------------------------------


@dataclass
class FakeReply:
    """In-memory ``UpstreamReply`` for use-case and cascade tests."""

    status_code: int = 200
    body: bytes = b""
    content_type: str = ""
    reason: str = "OK"
    headers: dict[str, str] = field(default_factory=dict)
    closed: bool = False
    reads: int = 0

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    async def read(self) -> bytes:
        self.reads += 1
        return self.body

    async def iter_raw(self) -> AsyncIterator[bytes]:
        try:
            yield self.body
        finally:
            self.closed = True

    async def aclose(self) -> None:
        self.closed = True


class FakeFetcher:
    """Records every fetch and answers from a queue of replies/exceptions."""

    def __init__(self, *replies: FakeReply | Exception) -> None:
        self._replies = list(replies)
        self.calls: list[dict[str, str]] = []
        self.urls: list[str] = []

    async def fetch(self, url: str, headers: Mapping[str, str]) -> FakeReply:
        self.urls.append(url)
        self.calls.append(dict(headers))
        if not self._replies:
            raise AssertionError("unexpected upstream fetch")
        nxt = self._replies.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt


@pytest.fixture()
def referer_rules() -> tuple[RefererRule, ...]:
    return (
        RefererRule(
            referer="https://megacloud.blog/", patterns=("megacloud", "rapid-cloud")
        ),
        RefererRule(referer="https://vidcloud.blog/", patterns=("vidcloud",)),
        RefererRule(referer="https://animepahe.ru/", patterns=("kwik",)),
    )


@pytest.fixture()
def resolver(referer_rules: tuple[RefererRule, ...]) -> RefererResolver:
    return RefererResolver(
        rules=referer_rules,
        default_referer="https://megacloud.blog/",
        candidates=(
            RefererCandidate("https://megacloud.blog/", "https://megacloud.blog"),
            RefererCandidate("https://hianime.to/", "https://hianime.to"),
        ),
    )


@pytest.fixture()
def app_config() -> AppConfig:
    """Test configuration with a short timeout and the default rule table."""
    return AppConfig.model_validate(
        {
            "environment": "test",
            "http": {"timeout_seconds": 5.0},
            "logging": {"level": "WARNING", "format": "console"},
        }
    )


@pytest.fixture()
def make_reply() -> type[FakeReply]:
    """Factory for fake upstream replies."""
    return FakeReply


@pytest.fixture()
def make_fetcher() -> type[FakeFetcher]:
    """Factory for fake upstream fetchers."""
    return FakeFetcher
