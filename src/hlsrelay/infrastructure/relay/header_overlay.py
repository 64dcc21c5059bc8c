"""Codec for the ``h`` query parameter (base64-encoded JSON header map)."""

from __future__ import annotations

import base64
import binascii
import json

import structlog

from hlsrelay.domain.entities import HeaderOverlay

log = structlog.get_logger(__name__)


def _b64decode(token: str) -> bytes:
    # Query decoding turns an unescaped "+" into a space.
    cleaned = token.strip().replace(" ", "+")
    cleaned += "=" * (-len(cleaned) % 4)
    if "-" in cleaned or "_" in cleaned:
        return base64.urlsafe_b64decode(cleaned)
    return base64.b64decode(cleaned, validate=True)


def decode_overlay(token: str | None) -> HeaderOverlay:
    """Decode an ``h`` token into a ``HeaderOverlay``.

    Undecodable tokens, non-object JSON and non-string values are
    ignored; a broken token never fails the request.  Header values are
    never logged.
    """
    if not token or not token.strip():
        return HeaderOverlay()

    try:
        parsed = json.loads(_b64decode(token).decode("utf-8"))
    except (binascii.Error, ValueError) as e:
        # json.JSONDecodeError and UnicodeDecodeError are ValueErrors.
        log.debug("header_overlay_ignored", reason=type(e).__name__)
        return HeaderOverlay()

    if not isinstance(parsed, dict):
        log.debug("header_overlay_ignored", reason="not_an_object")
        return HeaderOverlay()

    headers = {
        str(k): v for k, v in parsed.items() if isinstance(k, str) and isinstance(v, str)
    }
    return HeaderOverlay(headers=headers, token=token.strip())


def encode_overlay(overlay: HeaderOverlay) -> str:
    """Encode *overlay* headers as a standard base64 JSON token ("" if empty)."""
    if not overlay.headers:
        return ""
    raw = json.dumps(overlay.headers, separators=(",", ":"))
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")
