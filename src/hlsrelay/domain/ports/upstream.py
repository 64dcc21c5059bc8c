"""Port for fetching resources from the upstream CDN."""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from typing import Protocol, runtime_checkable


@runtime_checkable
class UpstreamReply(Protocol):
    """An upstream response whose body has not necessarily been read.

    Header lookups are case-insensitive.  ``read()`` may be called more
    than once and returns the same bytes; ``iter_raw()`` streams the body
    undecoded and closes the reply when exhausted.
    """

    @property
    def status_code(self) -> int: ...

    @property
    def reason(self) -> str: ...

    @property
    def headers(self) -> Mapping[str, str]: ...

    @property
    def content_type(self) -> str:
        """Raw ``content-type`` header value ("" when absent)."""
        ...

    @property
    def is_success(self) -> bool: ...

    async def read(self) -> bytes: ...

    def iter_raw(self) -> AsyncIterator[bytes]: ...

    async def aclose(self) -> None: ...


@runtime_checkable
class UpstreamFetcherPort(Protocol):
    """Issues one GET against the upstream with an exact header set.

    Implementations never retry on their own; the referer cascade owns
    retry policy.

    Raises:
        UpstreamTimeout: the request exceeded its deadline.
        RelayInternalError: any other transport failure (stage "fetch").
    """

    async def fetch(self, url: str, headers: Mapping[str, str]) -> UpstreamReply: ...
