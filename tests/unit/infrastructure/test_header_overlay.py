"""Tests for the ``h`` token codec."""

from __future__ import annotations

import base64
import json

from hlsrelay.domain.entities import HeaderOverlay
from hlsrelay.infrastructure.relay import decode_overlay, encode_overlay


def _token(obj: object, *, urlsafe: bool = False, pad: bool = True) -> str:
    raw = json.dumps(obj).encode("utf-8")
    encoded = (base64.urlsafe_b64encode if urlsafe else base64.b64encode)(raw)
    text = encoded.decode("ascii")
    return text if pad else text.rstrip("=")


def _token_containing(chars: str, *, urlsafe: bool = False) -> tuple[dict, str]:
    for i in range(256):
        obj = {"X-Key": "~" * i + "?>"}
        token = _token(obj, urlsafe=urlsafe, pad=False)
        if any(c in token for c in chars) and token[-1] not in chars:
            return obj, token
    raise AssertionError(f"no token containing {chars!r}")


class TestDecodeOverlay:
    def test_standard_base64(self) -> None:
        token = _token({"Referer": "https://megacloud.blog/"})
        overlay = decode_overlay(token)
        assert overlay.referer == "https://megacloud.blog/"
        assert overlay.token == token

    def test_urlsafe_unpadded(self) -> None:
        obj, token = _token_containing("-_", urlsafe=True)
        assert decode_overlay(token).headers == obj

    def test_plus_turned_into_space_is_repaired(self) -> None:
        obj, token = _token_containing("+")
        broken = token.replace("+", " ")
        assert decode_overlay(broken).headers == obj

    def test_none_and_blank(self) -> None:
        assert decode_overlay(None) == HeaderOverlay()
        assert decode_overlay("   ") == HeaderOverlay()

    def test_garbage_is_ignored(self) -> None:
        assert decode_overlay("!!!not-base64!!!") == HeaderOverlay()

    def test_non_json_is_ignored(self) -> None:
        token = base64.b64encode(b"referer=x").decode("ascii")
        assert decode_overlay(token) == HeaderOverlay()

    def test_non_object_json_is_ignored(self) -> None:
        assert decode_overlay(_token(["a", "b"])) == HeaderOverlay()

    def test_non_string_values_dropped(self) -> None:
        overlay = decode_overlay(_token({"Referer": "https://a/", "X-N": 5}))
        assert overlay.headers == {"Referer": "https://a/"}


class TestEncodeOverlay:
    def test_empty_overlay_encodes_to_empty_token(self) -> None:
        assert encode_overlay(HeaderOverlay()) == ""

    def test_encoded_token_decodes_back(self) -> None:
        overlay = HeaderOverlay(
            headers={"Referer": "https://hianime.to/", "Origin": ""}
        )
        assert decode_overlay(encode_overlay(overlay)).headers == overlay.headers

    def test_compact_json(self) -> None:
        token = encode_overlay(HeaderOverlay(headers={"A": "1"}))
        assert base64.b64decode(token) == b'{"A":"1"}'
