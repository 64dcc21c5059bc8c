from .relay import (
    ClientDisconnected,
    ErrorKind,
    HeaderOverlay,
    RefererCandidate,
    RefererRule,
    RelayBadRequest,
    RelayError,
    RelayInternalError,
    RelayRequest,
    RelayResult,
    RelayTarget,
    ResponseKind,
    UpstreamEmptyPlaylist,
    UpstreamInterstitial,
    UpstreamRejected,
    UpstreamTimeout,
    origin_of,
)

__all__ = [
    "ClientDisconnected",
    "ErrorKind",
    "HeaderOverlay",
    "RefererCandidate",
    "RefererRule",
    "RelayBadRequest",
    "RelayError",
    "RelayInternalError",
    "RelayRequest",
    "RelayResult",
    "RelayTarget",
    "ResponseKind",
    "UpstreamEmptyPlaylist",
    "UpstreamInterstitial",
    "UpstreamRejected",
    "UpstreamTimeout",
    "origin_of",
]
