"""Upstream response classification by content-type and target path."""

from __future__ import annotations

from hlsrelay.domain.entities import ResponseKind

# Path extensions that must carry media/key bytes.  ``.html`` and
# ``.jpg`` are disguised segment names used by some CDNs.
SEGMENT_EXTENSIONS: tuple[str, ...] = (
    ".ts",
    ".m4s",
    ".mp4",
    ".key",
    ".jpg",
    ".jpeg",
    ".html",
)


def is_playlist_path(path: str) -> bool:
    return path.lower().endswith(".m3u8")


def is_segment_path(path: str) -> bool:
    return path.lower().endswith(SEGMENT_EXTENSIONS)


def is_html(content_type: str) -> bool:
    return "text/html" in content_type.lower()


def classify_content(
    content_type: str, path: str, status_code: int = 200
) -> ResponseKind:
    """Decide how an upstream response is relayed.

    ``OPAQUE_ERROR``
        any non-2xx status; retried through the referer cascade.
    ``ERROR_PAGE``
        HTML where the path promises a binary segment (interstitial).
    ``PLAYLIST``
        content-type contains ``mpegurl`` or the path ends in ``.m3u8``.
    ``BINARY_SEGMENT``
        no ``text`` marker in the content-type, or a segment extension.
    ``TEXT``
        anything else, returned verbatim.
    """
    if not 200 <= status_code < 300:
        return ResponseKind.OPAQUE_ERROR
    ct = content_type.lower()
    if is_segment_path(path) and is_html(ct):
        return ResponseKind.ERROR_PAGE
    if "mpegurl" in ct or is_playlist_path(path):
        return ResponseKind.PLAYLIST
    if "text" not in ct or is_segment_path(path):
        return ResponseKind.BINARY_SEGMENT
    return ResponseKind.TEXT


def is_interstitial(content_type: str, path: str) -> bool:
    """HTML served for a path that must carry binary media."""
    return classify_content(content_type, path) is ResponseKind.ERROR_PAGE
