"""Primary backend delegate client.

Some hosting providers' egress IPs are routinely blocked by the CDNs.
When a delegate base URL is configured, the same ``url``/``h`` request
is first sent to ``{base}/stream`` on that relay; only a 2xx/206 reply
is used, anything else falls through to the direct fetch.
"""

from __future__ import annotations

import httpx
import structlog

from hlsrelay.infrastructure.relay.upstream import HttpxUpstreamReply

log = structlog.get_logger(__name__)


class HttpxDelegateClient:
    """``DelegatePort`` implementation on a shared ``httpx.AsyncClient``."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        *,
        timeout: float = 25.0,
    ) -> None:
        self._client = http_client
        self._base_url = base_url.rstrip("/")
        self._timeout = httpx.Timeout(timeout)

    @property
    def base_url(self) -> str:
        return self._base_url

    async def fetch(
        self, url: str, token: str, range_header: str | None = None
    ) -> HttpxUpstreamReply | None:
        params = {"url": url}
        if token:
            params["h"] = token
        headers = {"Accept": "*/*", "User-Agent": "Mozilla/5.0"}
        if range_header:
            headers["Range"] = range_header

        try:
            request = self._client.build_request(
                "GET",
                f"{self._base_url}/stream",
                params=params,
                headers=headers,
                timeout=self._timeout,
            )
            response = await self._client.send(
                request, stream=True, follow_redirects=True
            )
        except httpx.HTTPError as e:
            log.warning("delegate_error", error=type(e).__name__)
            return None

        if response.is_success:
            log.info("delegate_succeeded", status=response.status_code)
            return HttpxUpstreamReply(response)

        log.warning("delegate_rejected", status=response.status_code)
        await response.aclose()
        return None
