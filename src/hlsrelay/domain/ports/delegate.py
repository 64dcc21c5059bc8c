"""Port for the optional primary backend delegate."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from hlsrelay.domain.ports.upstream import UpstreamReply


@runtime_checkable
class DelegatePort(Protocol):
    """Out-of-process relay tried before the direct fetch.

    Used when this relay runs on infrastructure whose egress IPs are
    commonly blocked by CDNs.
    """

    async def fetch(
        self, url: str, token: str, range_header: str | None = None
    ) -> UpstreamReply | None:
        """Fetch *url* through the delegate.

        Returns the reply on 2xx/206, ``None`` on any failure.
        """
        ...
