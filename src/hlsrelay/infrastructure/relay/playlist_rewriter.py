"""HLS playlist rewriting.

Every URI in a playlist (segment lines, variant playlist lines and
``URI="..."`` attributes of ``#EXT-X-KEY`` / ``#EXT-X-MAP`` /
``#EXT-X-MEDIA`` tags) is resolved against the playlist's own URL and
replaced by a relay URL, so the player fetches every sub-resource
through the relay with the header overlay that worked for the playlist.
"""

from __future__ import annotations

import re
from urllib.parse import parse_qs, quote, urljoin, urlsplit

import structlog

log = structlog.get_logger(__name__)

RELAY_PATH = "/stream"

_URI_ATTR_RE = re.compile(r'URI="([^"]+)"')


def looks_like_playlist(text: str) -> bool:
    """True when *text* carries the playlist marker or any ``#EXT`` tag.

    A 2xx error body fetched from a ``.m3u8`` path fails this check and
    is passed through untouched.
    """
    return "#EXTM3U" in text or "#EXT" in text


def build_relay_url(relay_base: str, absolute_url: str, token: str = "") -> str:
    """Build ``<relay_base>/stream?url=...[&h=...]`` for *absolute_url*.

    *relay_base* is ``""`` for relative URLs or ``scheme://host[/prefix]``.

    >>> build_relay_url("", "https://cdn.example/a/seg-1.ts")
    '/stream?url=https%3A%2F%2Fcdn.example%2Fa%2Fseg-1.ts'
    """
    url = f"{relay_base.rstrip('/')}{RELAY_PATH}?url={quote(absolute_url, safe='')}"
    if token:
        url += f"&h={quote(token, safe='')}"
    return url


def extract_target(relay_url: str) -> tuple[str, str]:
    """Inverse of ``build_relay_url``: return ``(target_url, token)``.

    Raises ``ValueError`` if *relay_url* carries no ``url`` parameter.
    """
    params = parse_qs(urlsplit(relay_url).query, keep_blank_values=True)
    if "url" not in params:
        raise ValueError(f"not a relay URL: {relay_url!r}")
    return params["url"][0], params.get("h", [""])[0]


def _resolve(reference: str, base_url: str) -> str:
    resolved = urljoin(base_url, reference)
    parts = urlsplit(resolved)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValueError(f"unresolvable playlist reference: {reference!r}")
    return resolved


def _rewrite_uri_attributes(
    line: str, base_url: str, relay_base: str, token: str
) -> str:
    def _sub(match: re.Match[str]) -> str:
        try:
            absolute = _resolve(match.group(1), base_url)
        except ValueError:
            return match.group(0)
        return f'URI="{build_relay_url(relay_base, absolute, token)}"'

    return _URI_ATTR_RE.sub(_sub, line)


def _split_line_ending(line: str) -> tuple[str, str]:
    body = line.rstrip("\r\n")
    return body, line[len(body):]


def rewrite_playlist(
    text: str,
    base_url: str,
    relay_base: str = "",
    token: str = "",
) -> str | None:
    """Rewrite every URI in an M3U8 playlist to go through the relay.

    Args:
        text: Raw playlist body.
        base_url: URL the playlist was fetched from; relative and
            root-relative references resolve against it.
        relay_base: Prefix for relay URLs ("" = relative ``/stream?...``).
        token: Header overlay token appended as ``h`` to every URI.

    Returns:
        The rewritten playlist, or ``None`` when *text* is not a
        playlist (see ``looks_like_playlist``).  Line count, line endings
        and tag lines are preserved; a reference that cannot be resolved
        is left as-is.
    """
    if not looks_like_playlist(text):
        return None

    lines: list[str] = []
    rewritten = 0
    for line in text.splitlines(keepends=True):
        body, ending = _split_line_ending(line)
        stripped = body.strip()

        if not stripped:
            lines.append(line)
            continue

        if stripped.startswith("#"):
            if 'URI="' in stripped:
                body = _rewrite_uri_attributes(body, base_url, relay_base, token)
                rewritten += 1
            lines.append(body + ending)
            continue

        try:
            absolute = _resolve(stripped, base_url)
        except ValueError:
            log.debug("playlist_line_unresolvable", line_length=len(stripped))
            lines.append(line)
            continue

        lines.append(build_relay_url(relay_base, absolute, token) + ending)
        rewritten += 1

    log.debug(
        "playlist_rewritten",
        uris=rewritten,
        bytes_in=len(text),
        has_overlay=bool(token),
    )
    return "".join(lines)
