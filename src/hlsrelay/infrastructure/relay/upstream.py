"""httpx adapter for upstream CDN fetches.

Every fetch is issued in streaming mode so segment bytes flow through
the relay without loading a whole 2-10 MB segment into memory; playlist
bodies are read on demand.  The adapter never retries: retry policy is
owned by the referer cascade.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping

import httpx
import structlog

from hlsrelay.domain.entities import RelayInternalError, UpstreamTimeout

log = structlog.get_logger(__name__)

_CHUNK_SIZE = 65536


def _host_of(url: str) -> str:
    try:
        return httpx.URL(url).host
    except httpx.InvalidURL:
        return ""


class HttpxUpstreamReply:
    """``UpstreamReply`` backed by a streamed ``httpx.Response``."""

    def __init__(self, response: httpx.Response) -> None:
        self._response = response

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def reason(self) -> str:
        return self._response.reason_phrase

    @property
    def headers(self) -> Mapping[str, str]:
        return self._response.headers

    @property
    def content_type(self) -> str:
        return self._response.headers.get("content-type", "")

    @property
    def is_success(self) -> bool:
        return self._response.is_success

    async def read(self) -> bytes:
        """Read (and cache) the decoded body."""
        try:
            return await self._response.aread()
        except httpx.TimeoutException as e:
            raise UpstreamTimeout("Upstream timeout while reading body") from e
        except httpx.HTTPError as e:
            raise RelayInternalError(str(e) or type(e).__name__, stage="read") from e

    async def iter_raw(self) -> AsyncIterator[bytes]:
        """Yield the undecoded body and close the response afterwards.

        Headers have already been sent when this runs, so a transport
        failure mid-body can only end the stream early.
        """
        try:
            if self._response.is_stream_consumed:
                yield self._response.content
                return
            async for chunk in self._response.aiter_raw(chunk_size=_CHUNK_SIZE):
                yield chunk
        except httpx.HTTPError as e:
            log.warning(
                "upstream_stream_aborted",
                host=_host_of(str(self._response.url)),
                error=type(e).__name__,
            )
        finally:
            await self._response.aclose()

    async def aclose(self) -> None:
        await self._response.aclose()


class HttpxUpstreamFetcher:
    """``UpstreamFetcherPort`` implementation on a shared ``httpx.AsyncClient``.

    The client's connection pool is safe for concurrent use; no other
    state is kept between requests.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        timeout: float = 25.0,
        follow_redirects: bool = True,
    ) -> None:
        self._client = http_client
        self._timeout = httpx.Timeout(timeout)
        self._follow_redirects = follow_redirects

    async def fetch(self, url: str, headers: Mapping[str, str]) -> HttpxUpstreamReply:
        try:
            request = self._client.build_request(
                "GET", url, headers=dict(headers), timeout=self._timeout
            )
            response = await self._client.send(
                request,
                stream=True,
                follow_redirects=self._follow_redirects,
            )
        except httpx.TimeoutException as e:
            raise UpstreamTimeout("Upstream timeout") from e
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            raise RelayInternalError(str(e) or type(e).__name__, stage="fetch") from e

        log.debug(
            "upstream_response",
            host=response.url.host,
            status=response.status_code,
            content_type=response.headers.get("content-type", ""),
        )
        return HttpxUpstreamReply(response)
