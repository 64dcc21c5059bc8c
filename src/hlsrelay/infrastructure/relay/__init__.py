from .classifier import classify_content, is_interstitial
from .delegate import HttpxDelegateClient
from .header_overlay import decode_overlay, encode_overlay
from .playlist_rewriter import build_relay_url, extract_target, rewrite_playlist
from .referer_resolver import RefererResolver
from .upstream import HttpxUpstreamFetcher, HttpxUpstreamReply

__all__ = [
    "HttpxDelegateClient",
    "HttpxUpstreamFetcher",
    "HttpxUpstreamReply",
    "RefererResolver",
    "build_relay_url",
    "classify_content",
    "decode_overlay",
    "encode_overlay",
    "extract_target",
    "is_interstitial",
    "rewrite_playlist",
]
